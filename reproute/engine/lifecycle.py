"""Allocation lifecycle.

    allocated ──> in_transit ──> delivered | failed | returned
        └───────────────────────> failed | returned

Terminal statuses accept no further transition. Entering one releases the
partner's capacity slot; both the reserve and the release are keyed by the
allocation id, so a retried call never counts twice. Every call here is a
single attempt: retries belong to the surrounding workflow.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..database import store_session
from ..enums import AllocationStatus
from ..errors import DirectoryUnavailable, InvalidTransition, NotFound, ValidationError
from ..models import Allocation
from ..partners.directory import PartnerDirectory
from ..schemas import AllocationDecision, AllocationRecord, FeedbackInput, OrderDetails
from ..utils.clock import utcnow
from ..utils.logging import logger

TRANSITIONS: Dict[AllocationStatus, frozenset] = {
    AllocationStatus.ALLOCATED: frozenset({AllocationStatus.IN_TRANSIT, AllocationStatus.FAILED,
                                           AllocationStatus.RETURNED}),
    AllocationStatus.IN_TRANSIT: frozenset({AllocationStatus.DELIVERED, AllocationStatus.FAILED,
                                            AllocationStatus.RETURNED}),
    AllocationStatus.DELIVERED: frozenset(),
    AllocationStatus.FAILED: frozenset(),
    AllocationStatus.RETURNED: frozenset(),
}

TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# extra keys update_status knows how to store
_EXTRA_FIELDS = ("failure_reason", "attempt_count", "return_reason", "actual_delivery_time",
                 "estimated_delivery_time")


def parse_status(status: Union[AllocationStatus, str]) -> AllocationStatus:
    try:
        return AllocationStatus(status.lower() if isinstance(status, str) else status)
    except ValueError:
        raise ValidationError(f"unknown allocation status {status!r}")


def can_transition(current: AllocationStatus, target: AllocationStatus) -> bool:
    return target in TRANSITIONS[current]


class AllocationLifecycleManager:
    def __init__(self, sessions: sessionmaker, directory: PartnerDirectory):
        self._sessions = sessions
        self.directory = directory

    def _session(self):
        return store_session(self._sessions, DirectoryUnavailable)

    def create_allocation(self, order: OrderDetails, decision: AllocationDecision,
                          estimated_delivery_time: Optional[datetime] = None) -> AllocationRecord:
        """Persist the allocation for an order and reserve a capacity slot.

        A retry for the same order returns the stored allocation and re-issues
        the (idempotent) reservation in case the first attempt stopped short.
        """
        if decision.order_id != order.order_id:
            raise ValidationError("decision does not belong to this order")

        with self._session() as db:
            row = self._row_for_order(db, order.order_id)
            if row is None:
                now = utcnow()
                row = Allocation(
                    id=f"{order.order_id}_{uuid.uuid4().hex[:12]}",
                    order_id=order.order_id,
                    user_id=order.user_id,
                    partner_id=decision.partner_id,
                    partner_name=decision.partner_name,
                    order_value=order.order_value,
                    product_category=order.product_category,
                    destination=order.destination,
                    method=decision.method.value,
                    confidence=decision.confidence,
                    reasoning=list(decision.reasoning),
                    user_reputation=decision.user_reputation,
                    delivery_success_probability=decision.delivery_success_probability,
                    status=AllocationStatus.ALLOCATED.value,
                    allocated_at=now,
                    updated_at=now,
                    estimated_delivery_time=estimated_delivery_time,
                    comments=[],
                )
                db.add(row)
                try:
                    db.commit()
                    logger.info("Order %s allocated to partner %s (%s)", order.order_id,
                                decision.partner_id, decision.method.value)
                except IntegrityError:
                    # a concurrent call for the same order committed first
                    db.rollback()
                    row = self._row_for_order(db, order.order_id)
                    if row is None:
                        raise
                    logger.info("Order %s allocated concurrently as %s", order.order_id, row.id)
            else:
                logger.info("Order %s already allocated as %s", order.order_id, row.id)
            record = AllocationRecord.model_validate(row)

        if record.status == AllocationStatus.ALLOCATED.value or record.status == AllocationStatus.IN_TRANSIT.value:
            self.directory.increment_capacity(record.partner_id, record.id)
        return record

    def update_status(self, allocation_id: str, new_status: Union[AllocationStatus, str],
                      extra: Optional[Dict[str, Any]] = None) -> AllocationRecord:
        target = parse_status(new_status)
        extra = dict(extra or {})
        feedback = extra.pop("feedback", None)
        if feedback is not None and target is not AllocationStatus.DELIVERED:
            raise ValidationError("feedback can only be attached when an allocation is delivered")
        if feedback is not None and not isinstance(feedback, FeedbackInput):
            feedback = FeedbackInput.model_validate(feedback)

        current = self.get_allocation(allocation_id)
        status = AllocationStatus(current.status)
        if not can_transition(status, target):
            raise InvalidTransition("allocation", status.value, target.value)

        # release first: the release is idempotent, the status write is not
        if target in TERMINAL:
            self.directory.decrement_capacity(current.partner_id, allocation_id)

        with self._session() as db:
            row = db.get(Allocation, allocation_id, with_for_update=True)
            if row is None:
                raise NotFound("allocation", allocation_id)
            if AllocationStatus(row.status) is not status:
                # moved underneath us since the read above
                raise InvalidTransition("allocation", row.status, target.value)

            now = utcnow()
            row.status = target.value
            row.updated_at = now
            for key in _EXTRA_FIELDS:
                if key in extra and extra[key] is not None:
                    setattr(row, key, extra[key])
            if target is AllocationStatus.DELIVERED and row.actual_delivery_time is None:
                row.actual_delivery_time = now
            if feedback is not None:
                row.customer_rating = feedback.customer_rating
                row.partner_rating = feedback.partner_rating
                row.comments = list(row.comments or []) + list(feedback.comments)
            db.commit()
            logger.info("Allocation %s: %s -> %s", allocation_id, status.value, target.value)
            return AllocationRecord.model_validate(row)

    @staticmethod
    def _row_for_order(db, order_id: str) -> Optional[Allocation]:
        return db.execute(select(Allocation).where(Allocation.order_id == order_id)).scalar_one_or_none()

    def get_allocation(self, allocation_id: str) -> AllocationRecord:
        with self._session() as db:
            row = db.get(Allocation, allocation_id)
            if row is None:
                raise NotFound("allocation", allocation_id)
            return AllocationRecord.model_validate(row)

    def get_allocation_for_order(self, order_id: str) -> AllocationRecord:
        with self._session() as db:
            row = self._row_for_order(db, order_id)
            if row is None:
                raise NotFound("allocation for order", order_id)
            return AllocationRecord.model_validate(row)

    def list_partner_allocations(self, partner_id: str, limit: int = 50) -> List[AllocationRecord]:
        with self._session() as db:
            rows = db.execute(
                select(Allocation).where(Allocation.partner_id == partner_id)
                .order_by(desc(Allocation.allocated_at)).limit(limit)
            ).scalars().all()
            return [AllocationRecord.model_validate(r) for r in rows]

    def list_user_allocations(self, user_id: str, limit: int = 20) -> List[AllocationRecord]:
        with self._session() as db:
            rows = db.execute(
                select(Allocation).where(Allocation.user_id == user_id)
                .order_by(desc(Allocation.allocated_at)).limit(limit)
            ).scalars().all()
            return [AllocationRecord.model_validate(r) for r in rows]
