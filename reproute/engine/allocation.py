"""Logistics partner allocation.

Candidates are narrowed in two passes, service area then reputation band.
The oracle only ranks partners that survive both passes; whatever it says,
the chosen partner is always one of them. When it cannot help, the first
qualified partner is used so the outcome is reproducible.

The engine is a pure decision layer: persisting the allocation and moving
capacity counters is the lifecycle manager's job.
"""
from __future__ import annotations

import random
from typing import Any, List, Optional, Sequence

from ..enums import AllocationMethod
from ..errors import NoPartnersForDestination, ValidationError
from ..ledger.repository import LedgerAdapter
from ..rules import tables
from ..schemas import AllocationDecision, OrderDetails, PartnerView
from ..utils.logging import logger

NO_BAND_MATCH = "no partner matches reputation band"


def filter_by_area(partners: Sequence[PartnerView], destination: str) -> List[PartnerView]:
    return [p for p in partners if p.serves(destination)]


def filter_by_reputation(partners: Sequence[PartnerView], reputation: int) -> List[PartnerView]:
    return [p for p in partners if p.band_contains(reputation)]


def partner_metadata(partner: PartnerView) -> dict:
    return {
        "min_reputation": partner.min_reputation,
        "max_reputation": partner.max_reputation,
        "service_areas": list(partner.service_areas),
        "current_orders": partner.current_orders,
        "daily_order_limit": partner.daily_order_limit,
        "available_capacity": partner.available_capacity,
    }


def match_recommendation(qualified: Sequence[PartnerView], partner_id: Optional[str],
                         partner_name: Optional[str]) -> Optional[PartnerView]:
    """Resolve the oracle's pick against the qualified set: id first, then name."""
    if partner_id:
        for p in qualified:
            if p.id == partner_id:
                return p
    if partner_name:
        wanted = partner_name.strip().lower()
        for p in qualified:
            if p.name.strip().lower() == wanted:
                return p
    return None


class AllocationEngine:
    def __init__(self, ledger: LedgerAdapter, oracle: Any = None, rng: Optional[random.Random] = None):
        self.ledger = ledger
        self.oracle = oracle
        self.rng = rng or random.Random()

    def allocate(self, user_id: str, order: OrderDetails, candidates: Sequence[PartnerView],
                 reputation: Optional[int] = None) -> AllocationDecision:
        """Pick a partner for `order`.

        `reputation` may be passed in when the caller already fetched it in
        parallel with the candidates; otherwise it is read from the ledger.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not order.destination:
            raise ValidationError("order destination is required")

        in_area = filter_by_area(candidates, order.destination)
        if not in_area:
            logger.warning("No partner serves %r (order %s, %d candidates)",
                           order.destination, order.order_id, len(candidates))
            raise NoPartnersForDestination(order.destination)

        if reputation is None:
            reputation = self.ledger.get_user_reputation(user_id)
        qualified = filter_by_reputation(in_area, reputation)

        if not qualified:
            pick = self.rng.choice(in_area)
            logger.info("Order %s: no band match for reputation %s, random pick %s",
                        order.order_id, reputation, pick.id)
            return self._decision(order, pick, AllocationMethod.RANDOM, reputation, [],
                                  confidence=tables.RANDOM_CONFIDENCE,
                                  reasoning=[NO_BAND_MATCH],
                                  probability=tables.RANDOM_SUCCESS_PROBABILITY)

        failure = self._consult(user_id, order, reputation, qualified)
        if isinstance(failure, AllocationDecision):
            return failure

        first = qualified[0]
        logger.info("Order %s: rule fallback to %s (%s)", order.order_id, first.id, failure)
        return self._decision(order, first, AllocationMethod.RULE_FALLBACK, reputation, qualified,
                              confidence=tables.RULE_FALLBACK_CONFIDENCE,
                              reasoning=[f"oracle recommendation unusable: {failure}",
                                         "first qualified partner selected"],
                              probability=tables.RULE_FALLBACK_SUCCESS_PROBABILITY)

    def _consult(self, user_id: str, order: OrderDetails, reputation: int,
                 qualified: List[PartnerView]):
        """Return an oracle-ranked decision, or the reason the oracle could not give one."""
        if self.oracle is None:
            return "oracle not configured"
        stats = self.ledger.get_user_behavior_stats(user_id)
        result = self.oracle.analyze_allocation(stats, reputation, order, qualified)
        if not result.ok:
            return f"{result.status}: {result.error}"

        analysis = result.value
        chosen = match_recommendation(qualified, analysis.partner_id, analysis.recommended_partner)
        if chosen is None:
            logger.warning("Oracle recommended unknown partner id=%r name=%r for order %s",
                           analysis.partner_id, analysis.recommended_partner, order.order_id)
            return "recommended partner is not qualified"

        decision = self._decision(order, chosen, AllocationMethod.ORACLE_RANKED, reputation, qualified,
                                  confidence=analysis.confidence,
                                  reasoning=list(analysis.reasoning),
                                  probability=analysis.delivery_success_probability)
        decision.alternative_partners = list(analysis.alternative_partners)
        decision.risk_mitigation = list(analysis.risk_mitigation)
        logger.info("Order %s: oracle ranked %s (confidence %.2f)", order.order_id, chosen.id, analysis.confidence)
        return decision

    @staticmethod
    def _decision(order: OrderDetails, partner: PartnerView, method: AllocationMethod, reputation: int,
                  qualified: Sequence[PartnerView], confidence: float, reasoning: List[str],
                  probability: Optional[float]) -> AllocationDecision:
        return AllocationDecision(
            order_id=order.order_id,
            user_id=order.user_id,
            partner_id=partner.id,
            partner_name=partner.name,
            method=method,
            confidence=confidence,
            reasoning=reasoning,
            delivery_success_probability=probability,
            user_reputation=reputation,
            qualified_partner_ids=[p.id for p in qualified],
            partner_metadata=partner_metadata(partner),
        )
