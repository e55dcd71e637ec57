# reproute/services/orders.py
from __future__ import annotations

import secrets
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..database import get_ledger_sessionmaker, get_sessionmaker, store_session
from ..engine.allocation import AllocationEngine
from ..engine.analytics import AnalyticsAggregator
from ..engine.decision import DecisionEngine
from ..engine.lifecycle import TERMINAL, AllocationLifecycleManager
from ..enums import AllocationStatus, EventType, FailureReason, OrderStatus, POSITIVE_BEHAVIORS
from ..errors import DirectoryUnavailable, NotFound, ValidationError
from ..ledger.repository import LedgerAdapter
from ..models import EvidenceLog
from ..oracle.client import ScoringOracleClient
from ..partners.directory import PartnerDirectory
from ..schemas import AllocationRecord, FeedbackInput, OrderDetails, PartnerView, ScoreResult
from ..utils.logging import logger


class OrderWorkflow:
    """Order-processing workflow: the one place that applies side effects.

    Each step is safe to repeat. Ledger transitions already made are skipped,
    a reputation delta is applied once per (order, event) as recorded in the
    evidence log, and allocation writes are idempotent. That lets the Celery
    tasks retry a whole call after a store outage.
    """

    def __init__(self, ledger: LedgerAdapter, directory: PartnerDirectory, decisions: DecisionEngine,
                 allocator: AllocationEngine, lifecycle: AllocationLifecycleManager,
                 analytics: AnalyticsAggregator, sessions: sessionmaker):
        self.ledger = ledger
        self.directory = directory
        self.decisions = decisions
        self.allocator = allocator
        self.lifecycle = lifecycle
        self.analytics = analytics
        self._sessions = sessions

    # ---------- order lifecycle ----------
    def create_order(self, user_id: str, order_value: float, product_category: str, destination: str,
                     order_id: Optional[str] = None) -> Dict[str, Any]:
        order_id = order_id or secrets.token_hex(16)
        order = OrderDetails(order_id=order_id, user_id=user_id, order_value=float(order_value),
                             product_category=product_category, destination=destination)
        logger.info("Processing order %s for user %s", order_id, user_id)

        try:
            existing = self.ledger.get_order(order_id)
        except NotFound:
            existing = None
        if existing is None:
            self.ledger.create_order(order_id, user_id, order.order_value, product_category, destination)
            self.record_evidence(order_id, "input", order.model_dump())
        elif existing.user_id != user_id:
            raise ValidationError(f"order {order_id!r} belongs to another user")

        score, receipt = self._score_and_apply(order_id, user_id, EventType.PURCHASE_CREATED, {
            "order_id": order_id,
            "order_value": order.order_value,
            "product_category": product_category,
            "destination": destination,
        })

        # independent reads, fetched side by side
        with ThreadPoolExecutor(max_workers=2) as pool:
            reputation_f = pool.submit(self.ledger.get_user_reputation, user_id)
            candidates_f = pool.submit(self.candidate_pool, order)
            reputation = reputation_f.result()
            candidates = candidates_f.result()

        decision = self.allocator.allocate(user_id, order, candidates, reputation=reputation)
        allocation = self.lifecycle.create_allocation(order, decision)
        self.record_evidence(order_id, "allocation", decision.model_dump(mode="json"))

        return {
            "order_id": order_id,
            "user_id": user_id,
            "reputation_analysis": score.model_dump(mode="json"),
            "reputation_receipt": receipt,
            "logistic_allocation": decision.model_dump(mode="json"),
            "allocation_id": allocation.id,
        }

    def record_payment(self, order_id: str) -> Dict[str, Any]:
        order = self.ledger.get_order(order_id)
        if order.status != OrderStatus.PAID.value:
            order = self.ledger.mark_paid(order_id)
        score, receipt = self._score_and_apply(order_id, order.user_id, EventType.PAYMENT_COMPLETED, {
            "order_id": order_id,
            "order_value": order.order_value,
            "product_category": order.product_category,
            "destination": order.destination,
        })
        return {"order_id": order_id, "order_status": order.status,
                "reputation_analysis": score.model_dump(mode="json"), "reputation_receipt": receipt}

    def mark_in_transit(self, order_id: str) -> Dict[str, Any]:
        order = self.ledger.get_order(order_id)
        if order.status != OrderStatus.SHIPPED.value:
            order = self.ledger.mark_shipped(order_id)
        allocation = self._advance(order_id, AllocationStatus.IN_TRANSIT)
        return {"order_id": order_id, "order_status": order.status,
                "allocation": allocation.model_dump(mode="json") if allocation else None}

    def record_delivery_failure(self, order_id: str, reason: FailureReason | str,
                                attempt_count: int = 1) -> Dict[str, Any]:
        order = self.ledger.get_order(order_id)
        if order.status != OrderStatus.DELIVERY_FAILED.value:
            order = self.ledger.record_delivery_failure(order_id, reason, attempt_count)
        event = (EventType.DELIVERY_FAILED_REFUSED
                 if order.failure_reason == FailureReason.CUSTOMER_REFUSED.value
                 else EventType.DELIVERY_FAILED_ABSENT)
        score, receipt = self._score_and_apply(order_id, order.user_id, event, {
            "order_id": order_id,
            "reason": order.failure_reason,
            "attempt_count": order.delivery_attempts,
            "order_value": order.order_value,
            "destination": order.destination,
        })
        allocation = self._advance(order_id, AllocationStatus.FAILED, {
            "failure_reason": order.failure_reason,
            "attempt_count": order.delivery_attempts,
        })
        return self._outcome(order_id, score, receipt, allocation)

    def record_return(self, order_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        order = self.ledger.get_order(order_id)
        if order.status != OrderStatus.RETURNED.value:
            order = self.ledger.record_product_return(order_id, reason)
        days = (order.returned_at - order.created_at).days if order.returned_at else None
        score, receipt = self._score_and_apply(order_id, order.user_id, EventType.PRODUCT_RETURNED, {
            "order_id": order_id,
            "return_reason": order.return_reason,
            "order_value": order.order_value,
            "product_category": order.product_category,
            "days_since_purchase": days,
        })
        allocation = self._advance(order_id, AllocationStatus.RETURNED, {"return_reason": order.return_reason})
        return self._outcome(order_id, score, receipt, allocation)

    def complete_order(self, order_id: str, feedback: Optional[FeedbackInput] = None) -> Dict[str, Any]:
        order = self.ledger.get_order(order_id)
        if order.status != OrderStatus.COMPLETED.value:
            order = self.ledger.mark_completed(order_id)
        score, receipt = self._score_and_apply(order_id, order.user_id, EventType.ORDER_COMPLETED, {
            "order_id": order_id,
            "order_value": order.order_value,
            "product_category": order.product_category,
        })
        extra = {"feedback": feedback} if feedback is not None else {}
        allocation = self._advance(order_id, AllocationStatus.DELIVERED, extra)
        return self._outcome(order_id, score, receipt, allocation)

    def record_positive_behavior(self, user_id: str, behavior_type: str,
                                 details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            event = EventType((behavior_type or "").upper())
        except ValueError:
            raise ValidationError(f"unknown behavior type {behavior_type!r}")
        if event not in POSITIVE_BEHAVIORS:
            raise ValidationError(f"{event.value} is not a positive behavior")
        context = {"impact": "medium", **(details or {})}
        order_id = context.get("order_id")
        if order_id:
            score, receipt = self._score_and_apply(order_id, user_id, event, context)
        else:
            score = self.decisions.score_event(user_id, event, context)
            receipt = self._apply(user_id, score)
        return {"user_id": user_id, "behavior_type": event.value,
                "reputation_analysis": score.model_dump(mode="json"), "reputation_receipt": receipt}

    # ---------- partners ----------
    def candidate_pool(self, order: OrderDetails) -> List[PartnerView]:
        """Active partners with a free slot whose value limits admit the order.

        When every partner is full the whole active list is returned, so a
        busy network slows orders down instead of rejecting them.
        """
        active = self.directory.list_active_partners()
        gated = [
            p for p in active
            if p.available_capacity > 0 and p.min_order_value <= order.order_value <= p.max_order_value
        ]
        if not gated and active:
            logger.warning("No partner has spare capacity for order %s; using all %d active partners",
                           order.order_id, len(active))
            return active
        return gated

    def refresh_partner_performance(self, partner_id: str, days: Optional[int] = None) -> PartnerView:
        days = days or settings.ANALYTICS_DEFAULT_DAYS
        self.directory.get_partner(partner_id)
        stats = self.analytics.partner_analytics(partner_id, days)
        return self.directory.update_performance(partner_id, {
            "success_rate": stats.success_rate,
            "avg_delivery_hours": stats.avg_delivery_hours,
            "customer_rating": stats.avg_customer_rating,
            "total_orders_handled": stats.total_allocations,
        })

    def partner_report(self, partner_id: str, days: Optional[int] = None) -> Dict[str, Any]:
        days = days or settings.ANALYTICS_DEFAULT_DAYS
        self.directory.get_partner(partner_id)
        return {
            "performance": self.analytics.partner_analytics(partner_id, days).model_dump(mode="json"),
            "capacity": self.directory.get_capacity(partner_id).model_dump(),
            "recent_allocations": [a.model_dump(mode="json")
                                   for a in self.lifecycle.list_partner_allocations(partner_id, 10)],
        }

    def user_analytics(self, user_id: str) -> Dict[str, Any]:
        stats = self.ledger.get_user_behavior_stats(user_id)
        allocations = self.lifecycle.list_user_allocations(user_id)
        distribution: Dict[str, int] = {}
        for a in allocations:
            name = a.partner_name or a.partner_id
            distribution[name] = distribution.get(name, 0) + 1
        return {
            "user_id": user_id,
            "current_reputation": self.ledger.get_user_reputation(user_id),
            "statistics": stats.model_dump(mode="json"),
            "metrics": {
                "success_rate": round(stats.success_rate, 4),
                "return_rate": round(stats.return_rate, 4),
                "delivery_failure_rate": round(stats.failure_rate, 4),
            },
            "logistics_history": {
                "total_allocations": len(allocations),
                "recent_allocations": [a.model_dump(mode="json") for a in allocations[:5]],
                "partner_distribution": distribution,
            },
        }

    # ---------- evidence ----------
    def record_evidence(self, order_id: str, key: str, value: Any) -> None:
        with store_session(self._sessions, DirectoryUnavailable) as db:
            db.add(EvidenceLog(order_id=order_id, key=key, value=value))
            db.commit()

    def get_evidence(self, order_id: str) -> List[Dict[str, Any]]:
        with store_session(self._sessions, DirectoryUnavailable) as db:
            rows = db.execute(
                select(EvidenceLog).where(EvidenceLog.order_id == order_id).order_by(EvidenceLog.id)
            ).scalars().all()
            return [{"key": r.key, "value": r.value, "created_at": r.created_at} for r in rows]

    def _evidence_value(self, order_id: str, key: str) -> Optional[Any]:
        with store_session(self._sessions, DirectoryUnavailable) as db:
            return db.execute(
                select(EvidenceLog.value).where(EvidenceLog.order_id == order_id, EvidenceLog.key == key)
                .order_by(EvidenceLog.id.desc()).limit(1)
            ).scalar_one_or_none()

    # ---------- helpers ----------
    def _apply(self, user_id: str, score: ScoreResult,
               dedup_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
        receipt = self.ledger.adjust_reputation(user_id, score.reputation_change, reason=score.event_type,
                                                dedup_key=dedup_key)
        return receipt.model_dump(mode="json") if receipt else None

    def _score_and_apply(self, order_id: str, user_id: str, event: EventType, context: Dict[str, Any]):
        key = f"reputation:{event.value}"
        done = self._evidence_value(order_id, key)
        if done is not None:
            logger.info("Reputation for %s on order %s already applied", event.value, order_id)
            return ScoreResult.model_validate(done["score"]), done["receipt"]

        score = self.decisions.score_event(user_id, event, context)
        # the ledger holds one receipt per (order, event), so a retry after a lost
        # evidence write gets the first receipt back
        receipt = self._apply(user_id, score, dedup_key=f"{order_id}:{event.value}")
        self.record_evidence(order_id, key, {"score": score.model_dump(mode="json"), "receipt": receipt})
        return score, receipt

    def _advance(self, order_id: str, target: AllocationStatus,
                 extra: Optional[Dict[str, Any]] = None) -> Optional[AllocationRecord]:
        try:
            allocation = self.lifecycle.get_allocation_for_order(order_id)
        except NotFound:
            logger.warning("Order %s has no allocation to move to %s", order_id, target.value)
            return None
        current = AllocationStatus(allocation.status)
        if current is target:
            return allocation
        if current in TERMINAL:
            logger.info("Allocation %s already closed as %s; leaving it", allocation.id, current.value)
            return allocation
        if target is AllocationStatus.DELIVERED and current is AllocationStatus.ALLOCATED:
            allocation = self.lifecycle.update_status(allocation.id, AllocationStatus.IN_TRANSIT)
        return self.lifecycle.update_status(allocation.id, target, extra)

    @staticmethod
    def _outcome(order_id: str, score: ScoreResult, receipt, allocation: Optional[AllocationRecord]) -> Dict[str, Any]:
        return {
            "order_id": order_id,
            "reputation_analysis": score.model_dump(mode="json"),
            "reputation_receipt": receipt,
            "allocation": allocation.model_dump(mode="json") if allocation else None,
        }


def build_workflow(ledger_sessions: Optional[sessionmaker] = None, sessions: Optional[sessionmaker] = None,
                   oracle: Any = None) -> OrderWorkflow:
    sessions = sessions or get_sessionmaker()
    ledger = LedgerAdapter(ledger_sessions or get_ledger_sessionmaker())
    directory = PartnerDirectory(sessions)
    oracle = oracle if oracle is not None else ScoringOracleClient.from_settings()
    return OrderWorkflow(
        ledger=ledger,
        directory=directory,
        decisions=DecisionEngine(ledger, oracle),
        allocator=AllocationEngine(ledger, oracle),
        lifecycle=AllocationLifecycleManager(sessions, directory),
        analytics=AnalyticsAggregator(sessions),
        sessions=sessions,
    )
