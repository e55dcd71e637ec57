# reproute/partners/directory.py
from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..database import store_session
from ..enums import PartnerStatus
from ..errors import DirectoryUnavailable, NotFound, ValidationError
from ..models import CapacityEvent, LogisticsPartner, PartnerCapacity
from ..schemas import CapacityStatus, PartnerInput, PartnerView
from ..utils.clock import utcnow
from ..utils.logging import logger

RESERVE = "reserve"
RELEASE = "release"


class PartnerDirectory:
    """Partner records plus the per-partner in-flight capacity counter.

    Counters are only ever changed by a single UPDATE with an arithmetic
    expression, paired with a capacity event row whose (allocation_id,
    direction) key makes the change idempotent under retries.
    """

    def __init__(self, sessions: sessionmaker):
        self._sessions = sessions

    def _session(self):
        return store_session(self._sessions, DirectoryUnavailable)

    # ---------- partner records ----------
    def add_partner(self, data: PartnerInput) -> PartnerView:
        if data.max_reputation is not None and data.max_reputation < data.min_reputation:
            raise ValidationError("max_reputation must be >= min_reputation")
        if data.max_order_value < data.min_order_value:
            raise ValidationError("max_order_value must be >= min_order_value")

        partner_id = data.id or uuid.uuid4().hex[:20]
        now = utcnow()
        with self._session() as db:
            if db.get(LogisticsPartner, partner_id) is not None:
                raise ValidationError(f"partner {partner_id!r} already exists")
            row = LogisticsPartner(
                id=partner_id,
                name=data.name,
                min_reputation=data.min_reputation,
                max_reputation=data.max_reputation,
                service_areas=[a.strip().lower() for a in data.service_areas if a and a.strip()],
                special_capabilities=list(data.special_capabilities),
                contact={"email": data.email, "phone": data.phone, "address": data.address},
                operational_status=PartnerStatus(data.operational_status).value,
                daily_order_limit=data.daily_order_limit,
                max_order_value=data.max_order_value,
                min_order_value=data.min_order_value,
                preferred_categories=list(data.preferred_categories),
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.add(PartnerCapacity(partner_id=partner_id, current_orders=0, updated_at=now))
            db.commit()
            logger.info("Logistic partner %s (%s) added", data.name, partner_id)
            return self._view(row, 0)

    def get_partner(self, partner_id: str) -> PartnerView:
        with self._session() as db:
            row = db.get(LogisticsPartner, partner_id)
            if row is None:
                raise NotFound("partner", partner_id)
            return self._view(row, self._current(db, partner_id))

    def list_active_partners(self) -> list[PartnerView]:
        with self._session() as db:
            rows = db.execute(
                select(LogisticsPartner, PartnerCapacity.current_orders)
                .outerjoin(PartnerCapacity, PartnerCapacity.partner_id == LogisticsPartner.id)
                .where(LogisticsPartner.operational_status == PartnerStatus.ACTIVE.value)
                .order_by(LogisticsPartner.created_at, LogisticsPartner.id)
            ).all()
            return [self._view(p, current or 0) for p, current in rows]

    def list_partners_by_area(self, area: str) -> list[PartnerView]:
        """Active partners naming the area, or the all-area partners if none do."""
        active = self.list_active_partners()
        specific = [p for p in active if p.service_areas and p.serves(area)]
        if specific:
            return specific
        return [p for p in active if not p.service_areas]

    def set_status(self, partner_id: str, status: PartnerStatus | str) -> PartnerView:
        try:
            status = PartnerStatus(status)
        except ValueError:
            raise ValidationError(f"unknown operational status {status!r}")
        with self._session() as db:
            row = db.get(LogisticsPartner, partner_id)
            if row is None:
                raise NotFound("partner", partner_id)
            row.operational_status = status.value
            row.updated_at = utcnow()
            db.commit()
            logger.info("Partner %s is now %s", partner_id, status.value)
            return self._view(row, self._current(db, partner_id))

    def update_performance(self, partner_id: str, performance: dict[str, Any]) -> PartnerView:
        with self._session() as db:
            row = db.get(LogisticsPartner, partner_id)
            if row is None:
                raise NotFound("partner", partner_id)
            row.success_rate = float(performance.get("success_rate") or 0.0)
            row.avg_delivery_hours = float(performance.get("avg_delivery_hours") or 0.0)
            row.customer_rating = float(performance.get("customer_rating") or 0.0)
            row.total_orders_handled = int(performance.get("total_orders_handled") or 0)
            row.updated_at = utcnow()
            db.commit()
            return self._view(row, self._current(db, partner_id))

    # ---------- capacity ----------
    def increment_capacity(self, partner_id: str, allocation_id: str) -> int:
        return self._apply(partner_id, allocation_id, RESERVE)

    def decrement_capacity(self, partner_id: str, allocation_id: str) -> int:
        return self._apply(partner_id, allocation_id, RELEASE)

    def get_capacity(self, partner_id: str) -> CapacityStatus:
        with self._session() as db:
            row = db.get(LogisticsPartner, partner_id)
            if row is None:
                raise NotFound("partner", partner_id)
            current = self._current(db, partner_id)
            limit = row.daily_order_limit
        return CapacityStatus(
            partner_id=partner_id,
            current_orders=current,
            daily_order_limit=limit,
            available=max(limit - current, 0),
            utilization=round(current / limit, 4) if limit else 1.0,
        )

    def _apply(self, partner_id: str, allocation_id: str, direction: str) -> int:
        if not allocation_id:
            raise ValidationError("allocation_id is required for capacity changes")
        with self._session() as db:
            # the event row goes first so a duplicate aborts before the counter moves
            db.add(CapacityEvent(partner_id=partner_id, allocation_id=allocation_id,
                                 direction=direction, created_at=utcnow()))
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                logger.info("Capacity %s for allocation %s already applied", direction, allocation_id)
                return self._current(db, partner_id)

            if direction == RELEASE and not self._reserved(db, allocation_id):
                # the slot was never taken; keep the release on record so a retry stays a no-op
                db.commit()
                logger.warning("Release for allocation %s without a reservation; counter untouched", allocation_id)
                return self._current(db, partner_id)

            stmt = update(PartnerCapacity).where(PartnerCapacity.partner_id == partner_id)
            if direction == RESERVE:
                stmt = stmt.values(current_orders=PartnerCapacity.current_orders + 1, updated_at=utcnow())
            else:
                stmt = stmt.where(PartnerCapacity.current_orders > 0).values(
                    current_orders=PartnerCapacity.current_orders - 1, updated_at=utcnow()
                )
            result = db.execute(stmt)

            if result.rowcount == 0 and direction == RESERVE:
                if db.get(LogisticsPartner, partner_id) is None:
                    raise NotFound("partner", partner_id)
                db.add(PartnerCapacity(partner_id=partner_id, current_orders=1, updated_at=utcnow()))
            db.commit()
            current = self._current(db, partner_id)
        logger.debug("Capacity %s for partner %s via %s -> %s", direction, partner_id, allocation_id, current)
        return current

    # ---------- helpers ----------
    @staticmethod
    def _reserved(db: Session, allocation_id: str) -> bool:
        return db.execute(
            select(CapacityEvent.id).where(CapacityEvent.allocation_id == allocation_id,
                                           CapacityEvent.direction == RESERVE)
        ).first() is not None

    @staticmethod
    def _current(db: Session, partner_id: str) -> int:
        value = db.execute(
            select(PartnerCapacity.current_orders).where(PartnerCapacity.partner_id == partner_id)
        ).scalar_one_or_none()
        return int(value or 0)

    @staticmethod
    def _view(row: LogisticsPartner, current: int) -> PartnerView:
        view = PartnerView.model_validate(row)
        return view.model_copy(update={"current_orders": int(current)})
