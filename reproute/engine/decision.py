"""Reputation decision engine.

A behavioral event is scored by trying an ordered list of tiers. Each tier is
a plain function of the scoring context that either returns a `ScoreResult`
or an `Unavailable` marker explaining why it stepped aside:

    new_customer  ->  oracle  ->  fallback

The fallback tier always answers, so an oracle outage can never fail a call.
Ledger reads happen before the tiers run and propagate their errors: there
is no safe score without the user's history.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..enums import EventType
from ..errors import ValidationError
from ..ledger.repository import LedgerAdapter
from ..rules import tables
from ..schemas import ScoreResult, UserBehaviorStats
from ..utils.clock import utcnow
from ..utils.logging import logger


class Unavailable:
    __slots__ = ("reason",)

    def __init__(self, reason: str):
        self.reason = reason

    def __repr__(self) -> str:
        return f"Unavailable({self.reason!r})"


class ScoringContext:
    def __init__(self, user_id: str, event_type: str, context: Dict[str, Any],
                 stats: UserBehaviorStats, oracle: Any):
        self.user_id = user_id
        self.event_type = event_type
        self.context = context
        self.stats = stats
        self.oracle = oracle
        self.failures: List[str] = []

    def user_summary(self) -> Dict[str, Any]:
        return {
            "total_orders": self.stats.total_orders,
            "success_rate": round(self.stats.success_rate, 4),
            "avg_order_value": round(self.stats.avg_value, 2),
        }


TierOutcome = Union[ScoreResult, Unavailable]
Tier = Callable[[ScoringContext], TierOutcome]


def tier_new_customer(ctx: ScoringContext) -> TierOutcome:
    if ctx.stats.total_orders > 0:
        return Unavailable("customer has order history")
    if ctx.event_type in tables.PURCHASE_EVENTS:
        return Unavailable("purchase events are always analysed")
    return ScoreResult(
        user_id=ctx.user_id,
        event_type=ctx.event_type,
        reputation_change=tables.new_customer_delta(ctx.event_type),
        confidence=tables.NEW_CUSTOMER_CONFIDENCE,
        tier="new_customer",
        oracle_used=False,
        new_customer=True,
        analysis={
            "customer_tier": "new",
            "risk_level": "low",
            "primary_factors": ["New customer baseline"],
            "explanation": f"New customer baseline scoring for {ctx.event_type}",
            "recommendations": ["Monitor initial behavior patterns"],
        },
        scored_at=utcnow(),
    )


def tier_oracle(ctx: ScoringContext) -> TierOutcome:
    if ctx.oracle is None:
        return Unavailable("oracle not configured")
    result = ctx.oracle.analyze_reputation_change(ctx.stats, ctx.event_type, ctx.context)
    if not result.ok:
        return Unavailable(f"{result.status}: {result.error}")
    analysis = result.value

    # auxiliary call; losing it only drops the field
    risk = ctx.oracle.predict_customer_risk(ctx.stats)
    if not risk.ok:
        logger.warning("Risk prediction for %s skipped: %s", ctx.user_id, risk.error)

    return ScoreResult(
        user_id=ctx.user_id,
        event_type=ctx.event_type,
        reputation_change=int(round(analysis.reputation_change)),
        confidence=analysis.confidence,
        tier="oracle",
        oracle_used=True,
        analysis={
            "customer_tier": analysis.customer_tier,
            "risk_level": analysis.risk_level,
            "primary_factors": analysis.primary_factors,
            "explanation": analysis.explanation,
            "recommendations": analysis.recommendations,
        },
        risk_prediction=risk.value.model_dump() if risk.ok else None,
        user_summary=ctx.user_summary(),
        scored_at=utcnow(),
    )


def tier_fallback(ctx: ScoringContext) -> TierOutcome:
    reason = ctx.failures[-1] if ctx.failures else "oracle unavailable"
    return ScoreResult(
        user_id=ctx.user_id,
        event_type=ctx.event_type,
        reputation_change=tables.fallback_delta(ctx.event_type),
        confidence=tables.FALLBACK_CONFIDENCE,
        tier="fallback",
        oracle_used=False,
        fallback_reason=reason,
        analysis={
            "customer_tier": "unknown",
            "risk_level": "medium",
            "primary_factors": ["Fallback rule-based scoring"],
            "explanation": f"Rule-based scoring for {ctx.event_type}: {reason}",
            "recommendations": ["Re-score when the oracle is available"],
        },
        user_summary=ctx.user_summary(),
        scored_at=utcnow(),
    )


DEFAULT_TIERS: Sequence[Tier] = (tier_new_customer, tier_oracle, tier_fallback)


def normalize_event_type(event_type: Union[EventType, str, None]) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    value = (event_type or "").strip().upper()
    if not value:
        raise ValidationError("event_type is required")
    return value


class DecisionEngine:
    def __init__(self, ledger: LedgerAdapter, oracle: Any = None, tiers: Sequence[Tier] = DEFAULT_TIERS):
        self.ledger = ledger
        self.oracle = oracle
        self.tiers = tuple(tiers)

    def score_event(self, user_id: str, event_type: Union[EventType, str],
                    context: Optional[Dict[str, Any]] = None) -> ScoreResult:
        """Decide the reputation delta for one event. Never writes to the ledger."""
        if not user_id:
            raise ValidationError("user_id is required")
        event = normalize_event_type(event_type)
        stats = self.ledger.get_user_behavior_stats(user_id)
        ctx = ScoringContext(user_id, event, dict(context or {}), stats, self.oracle)

        for tier in self.tiers:
            outcome = tier(ctx)
            if isinstance(outcome, ScoreResult):
                logger.info("Scored %s for %s: %+d via %s (confidence %.2f)",
                            event, user_id, outcome.reputation_change, outcome.tier, outcome.confidence)
                return outcome
            ctx.failures.append(outcome.reason)
            logger.debug("Tier %s passed on %s/%s: %s", tier.__name__, user_id, event, outcome.reason)

        raise RuntimeError(f"no scoring tier produced a result for {event}")
