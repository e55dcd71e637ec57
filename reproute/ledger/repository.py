# reproute/ledger/repository.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import case, desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..database import insert_ignore, store_session
from ..enums import FailureReason, OrderStatus
from ..errors import InvalidTransition, LedgerUnavailable, NotFound, ValidationError
from ..models import LedgerOrder, ReputationEvent, UserReputation
from ..schemas import OrderRecord, RecentOrder, ReputationReceipt, UserBehaviorStats
from ..utils.clock import utcnow
from ..utils.logging import logger

RECENT_ORDER_LIMIT = 20

# Forward-only order lifecycle. RETURNED / DELIVERY_FAILED / CANCELLED end the order with a penalty.
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.CREATED: {OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED,
                          OrderStatus.DELIVERY_FAILED, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED,
                       OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED, OrderStatus.COMPLETED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.RETURNED},
    OrderStatus.COMPLETED: {OrderStatus.RETURNED},
    OrderStatus.RETURNED: set(),
    OrderStatus.DELIVERY_FAILED: set(),
    OrderStatus.CANCELLED: set(),
}

_INACTIVE = {OrderStatus.RETURNED, OrderStatus.DELIVERY_FAILED, OrderStatus.CANCELLED, OrderStatus.COMPLETED}


class LedgerAdapter:
    """Durable reputation counters and order records.

    The ledger is append-only from the engine's point of view: reputation only
    changes through `adjust_reputation`, and orders only move forward.
    """

    def __init__(self, sessions: sessionmaker):
        self._sessions = sessions

    def _session(self):
        return store_session(self._sessions, LedgerUnavailable)

    # ---------- reputation ----------
    def get_user_reputation(self, user_id: str) -> int:
        with self._session() as db:
            score = db.execute(
                select(UserReputation.score).where(UserReputation.user_id == user_id)
            ).scalar_one_or_none()
        return int(score or 0)

    def adjust_reputation(self, user_id: str, delta: int, reason: str | None = None,
                          dedup_key: str | None = None) -> Optional[ReputationReceipt]:
        """Apply a signed delta. Decreases clamp at zero; a zero delta writes nothing.

        With a `dedup_key` the delta lands at most once: a repeated call gets
        the receipt of the first one back instead of a second write.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        delta = int(delta)
        if delta == 0:
            return None

        with self._session() as db:
            if dedup_key:
                existing = self._event_by_key(db, dedup_key)
                if existing is not None:
                    logger.info("Reputation delta %s already applied (receipt %s)", dedup_key, existing.receipt_id)
                    return self._receipt(existing)

            if delta > 0:
                db.execute(insert_ignore(db, UserReputation, user_id=user_id, score=0, updated_at=utcnow()))
            # touching the row takes its write lock, so `old` holds until commit
            old = db.execute(
                update(UserReputation)
                .where(UserReputation.user_id == user_id)
                .values(updated_at=utcnow())
                .returning(UserReputation.score)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if old is None or (delta < 0 and old == 0):
                db.rollback()
                return None  # nothing to take away

            if delta > 0:
                target = UserReputation.score + delta
            else:
                target = case((UserReputation.score > -delta, UserReputation.score + delta), else_=0)
            new = db.execute(
                update(UserReputation)
                .where(UserReputation.user_id == user_id)
                .values(score=target)
                .returning(UserReputation.score)
                .execution_options(synchronize_session=False)
            ).scalar_one()

            event = ReputationEvent(
                receipt_id=uuid.uuid4().hex,
                user_id=user_id,
                requested_delta=delta,
                applied_delta=new - old,
                resulting_score=new,
                reason=reason,
                dedup_key=dedup_key,
                created_at=utcnow(),
            )
            db.add(event)
            try:
                db.commit()
            except IntegrityError:
                # a concurrent call with the same key committed first; its receipt stands
                db.rollback()
                existing = self._event_by_key(db, dedup_key) if dedup_key else None
                if existing is None:
                    raise
                return self._receipt(existing)
            receipt = self._receipt(event)

        logger.info("Reputation for %s: %s -> %s (requested %+d, reason=%s)", user_id, old, new, delta, reason)
        return receipt

    @staticmethod
    def _event_by_key(db, dedup_key: str) -> Optional[ReputationEvent]:
        return db.execute(
            select(ReputationEvent).where(ReputationEvent.dedup_key == dedup_key)
        ).scalar_one_or_none()

    @staticmethod
    def _receipt(event: ReputationEvent) -> ReputationReceipt:
        return ReputationReceipt(
            receipt_id=event.receipt_id,
            user_id=event.user_id,
            requested_delta=event.requested_delta,
            applied_delta=event.applied_delta,
            new_reputation=event.resulting_score,
            recorded_at=event.created_at,
        )

    # ---------- behavior ----------
    def get_user_behavior_stats(self, user_id: str) -> UserBehaviorStats:
        with self._session() as db:
            total, completed, returned, failed, value = db.execute(
                select(
                    func.count(LedgerOrder.order_id),
                    func.sum(case((LedgerOrder.status == OrderStatus.COMPLETED.value, 1), else_=0)),
                    func.sum(case((LedgerOrder.status == OrderStatus.RETURNED.value, 1), else_=0)),
                    func.sum(case((LedgerOrder.status == OrderStatus.DELIVERY_FAILED.value, 1), else_=0)),
                    func.sum(LedgerOrder.order_value),
                ).where(LedgerOrder.user_id == user_id)
            ).one()
            rows = db.execute(
                select(LedgerOrder)
                .where(LedgerOrder.user_id == user_id)
                .order_by(desc(LedgerOrder.created_at))
                .limit(RECENT_ORDER_LIMIT)
            ).scalars().all()

        total = int(total or 0)
        value = float(value or 0.0)
        recent = [
            RecentOrder(
                order_id=r.order_id,
                order_value=r.order_value,
                status=r.status,
                product_category=r.product_category,
                destination=r.destination,
                created_at=r.created_at,
            )
            for r in rows
        ]

        avg_gap = None
        if len(recent) > 1:
            gaps = [
                (recent[i].created_at - recent[i + 1].created_at).total_seconds() / 86400
                for i in range(len(recent) - 1)
            ]
            avg_gap = sum(gaps) / len(gaps)

        return UserBehaviorStats(
            user_id=user_id,
            total_orders=total,
            completed_orders=int(completed or 0),
            returned_orders=int(returned or 0),
            delivery_failures=int(failed or 0),
            total_value=value,
            avg_value=value / total if total else 0.0,
            recent_orders=recent,
            avg_days_between_orders=avg_gap,
        )

    # ---------- orders ----------
    def get_order(self, order_id: str) -> OrderRecord:
        with self._session() as db:
            row = db.get(LedgerOrder, order_id)
            if row is None:
                raise NotFound("order", order_id)
            return OrderRecord.model_validate(row)

    def create_order(self, order_id: str, user_id: str, order_value: float,
                     product_category: str, destination: str) -> OrderRecord:
        if not order_id or not user_id:
            raise ValidationError("order_id and user_id are required")
        if order_value is None or order_value <= 0:
            raise ValidationError("order_value must be positive")
        if not product_category or not destination:
            raise ValidationError("product_category and destination are required")

        with self._session() as db:
            if db.get(LedgerOrder, order_id) is not None:
                raise ValidationError(f"order {order_id!r} already exists")
            now = utcnow()
            row = LedgerOrder(
                order_id=order_id,
                user_id=user_id,
                order_value=float(order_value),
                product_category=product_category,
                destination=destination,
                status=OrderStatus.CREATED.value,
                delivery_attempts=0,
                failure_reason=FailureReason.NONE.value,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            logger.info("Ledger order %s created for user %s (%.2f, %s -> %s)",
                        order_id, user_id, order_value, product_category, destination)
            return OrderRecord.model_validate(row)

    def _transition(self, order_id: str, target: OrderStatus, **values) -> OrderRecord:
        with self._session() as db:
            row = db.get(LedgerOrder, order_id, with_for_update=True)
            if row is None:
                raise NotFound("order", order_id)
            current = OrderStatus(row.status)
            if target not in ORDER_TRANSITIONS[current]:
                raise InvalidTransition("order", current.value, target.value)
            row.status = target.value
            row.updated_at = utcnow()
            row.is_active = target not in _INACTIVE
            for k, v in values.items():
                setattr(row, k, v)
            db.commit()
            logger.info("Ledger order %s: %s -> %s", order_id, current.value, target.value)
            return OrderRecord.model_validate(row)

    def mark_paid(self, order_id: str) -> OrderRecord:
        return self._transition(order_id, OrderStatus.PAID)

    def mark_shipped(self, order_id: str) -> OrderRecord:
        return self._transition(order_id, OrderStatus.SHIPPED)

    def record_delivery_failure(self, order_id: str, reason: FailureReason | str,
                                attempt_count: int | None = None) -> OrderRecord:
        try:
            reason = FailureReason(reason.upper() if isinstance(reason, str) else reason)
        except ValueError:
            raise ValidationError(f"unknown delivery failure reason {reason!r}")
        if reason is FailureReason.NONE:
            raise ValidationError("a delivery failure needs a reason")
        current = self.get_order(order_id)
        attempts = max(current.delivery_attempts + 1, int(attempt_count or 0))
        return self._transition(order_id, OrderStatus.DELIVERY_FAILED,
                                failure_reason=reason.value, delivery_attempts=attempts)

    def record_product_return(self, order_id: str, reason: str | None = None) -> OrderRecord:
        return self._transition(order_id, OrderStatus.RETURNED, return_reason=reason, returned_at=utcnow())

    def mark_completed(self, order_id: str) -> OrderRecord:
        return self._transition(order_id, OrderStatus.COMPLETED)

    def cancel_order(self, order_id: str) -> OrderRecord:
        return self._transition(order_id, OrderStatus.CANCELLED)
