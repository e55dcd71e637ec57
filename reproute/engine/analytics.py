# reproute/engine/analytics.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..database import store_session
from ..enums import AllocationMethod, AllocationStatus
from ..errors import DirectoryUnavailable, ValidationError
from ..models import Allocation
from ..schemas import AllocationRecord, PartnerAnalytics, SystemAnalytics
from ..utils.clock import utcnow


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [float(v) for v in values if v is not None]
    return round(sum(present) / len(present), 4) if present else None


def summarize_partner(partner_id: str, records: list[AllocationRecord], days: int,
                      now: datetime) -> PartnerAnalytics:
    """Fold one partner's allocations. Records missing a timestamp or rating
    are left out of that average only."""
    delivered = [r for r in records if r.status == AllocationStatus.DELIVERED.value]
    durations = [
        (r.actual_delivery_time - r.allocated_at).total_seconds() / 3600
        for r in delivered
        if r.actual_delivery_time is not None and r.allocated_at is not None
    ]
    total = len(records)
    return PartnerAnalytics(
        partner_id=partner_id,
        period_days=days,
        total_allocations=total,
        delivered=len(delivered),
        success_rate=round(len(delivered) / total, 4) if total else 0.0,
        avg_delivery_hours=_mean(durations),
        avg_customer_rating=_mean(r.customer_rating for r in delivered),
        calculated_at=now,
    )


def summarize_system(records: list[AllocationRecord], days: int, now: datetime) -> SystemAnalytics:
    methods = {m.value: 0 for m in AllocationMethod}
    statuses = {s.value: 0 for s in AllocationStatus}
    for r in records:
        methods[r.method] = methods.get(r.method, 0) + 1
        statuses[r.status] = statuses.get(r.status, 0) + 1
    return SystemAnalytics(
        period_days=days,
        total_allocations=len(records),
        allocation_methods=methods,
        status_distribution=statuses,
        average_confidence=_mean(r.confidence for r in records),
        average_delivery_success_probability=_mean(r.delivery_success_probability for r in records),
        calculated_at=now,
    )


class AnalyticsAggregator:
    """Windowed read-side view over allocation records. Never writes."""

    def __init__(self, sessions: sessionmaker):
        self._sessions = sessions

    def _window(self, partner_id: Optional[str], days: int, now: datetime) -> list[AllocationRecord]:
        if days <= 0:
            raise ValidationError("days must be positive")
        cutoff = now - timedelta(days=days)
        stmt = select(Allocation).where(Allocation.allocated_at >= cutoff)
        if partner_id is not None:
            stmt = stmt.where(Allocation.partner_id == partner_id)
        with store_session(self._sessions, DirectoryUnavailable) as db:
            rows = db.execute(stmt).scalars().all()
            return [AllocationRecord.model_validate(r) for r in rows]

    def partner_analytics(self, partner_id: str, days: int = 30, now: Optional[datetime] = None) -> PartnerAnalytics:
        now = now or utcnow()
        return summarize_partner(partner_id, self._window(partner_id, days, now), days, now)

    def system_analytics(self, days: int = 30, now: Optional[datetime] = None) -> SystemAnalytics:
        now = now or utcnow()
        return summarize_system(self._window(None, days, now), days, now)
