# reproute/oracle/client.py
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Sequence

import requests

from ..config import settings
from ..errors import OracleTimeout, OracleUnavailable, UpstreamMalformed
from ..schemas import OrderDetails, PartnerView, UserBehaviorStats
from ..utils.logging import logger
from .validation import (
    SCHEMA_ERROR,
    TIMEOUT,
    UNAVAILABLE,
    OracleResult,
    validate_allocation_analysis,
    validate_reputation_analysis,
    validate_risk_prediction,
)

CHAT_PATH = "/v1/chat/completions"


def _pct(part: int, whole: int) -> str:
    return f"{(part / whole * 100):.1f}%" if whole else "0.0%"


def reputation_prompt(stats: UserBehaviorStats, event_type: str, context: Dict[str, Any]) -> List[dict]:
    recent = "\n".join(
        f"{i}. ${o.order_value:.2f} - {o.status} - {o.product_category} - Destination: {o.destination}"
        for i, o in enumerate(stats.recent_orders[:10], 1)
    ) or "none"
    user = f"""
USER STATISTICS:
- Total Orders: {stats.total_orders}
- Completed Orders: {stats.completed_orders}
- Returned Orders: {stats.returned_orders}
- Delivery Failures: {stats.delivery_failures}
- Total Order Value: ${stats.total_value:.2f}
- Average Order Value: ${stats.avg_value:.2f}
- Return Rate: {_pct(stats.returned_orders, stats.total_orders)}
- Success Rate: {stats.success_rate * 100:.1f}%
- Average Days Between Orders: {stats.avg_days_between_orders if stats.avg_days_between_orders is not None else 'N/A'}

RECENT ORDERS:
{recent}

CURRENT ACTION: {event_type}
ACTION CONTEXT: {json.dumps(context, default=str)}

Positive actions earn +5 to +50, negative actions cost -5 to -100. Escalate penalties for
repeated problems and reward loyal customers with good track records.

Respond with a JSON object:
{{"reputation_change": <integer -100..100>, "confidence": <0..1>,
  "customer_tier": "new|bronze|silver|gold|platinum", "risk_level": "low|medium|high|critical",
  "primary_factors": [..], "explanation": "..", "recommendations": [..]}}
"""
    return [
        {"role": "system", "content": "You are an e-commerce reputation analyst. Reply with valid JSON only; "
                                      "reputation_change must be a number between -100 and 100."},
        {"role": "user", "content": user},
    ]


def risk_prompt(stats: UserBehaviorStats) -> List[dict]:
    recent = "\n".join(
        f"{i}. ${o.order_value:.2f} - {o.status} - {o.destination}"
        for i, o in enumerate(stats.recent_orders[:5], 1)
    ) or "none"
    user = f"""
CUSTOMER DATA:
- Total Orders: {stats.total_orders}
- Return Rate: {_pct(stats.returned_orders, stats.total_orders)}
- Delivery Failure Rate: {_pct(stats.delivery_failures, stats.total_orders)}
- Average Order Value: ${stats.avg_value:.2f}

RECENT PATTERN:
{recent}

Respond with a JSON object:
{{"risk_score": <integer 0..100>, "risk_category": "low|medium|high|critical",
  "future_return_probability": <0..1>, "future_delivery_failure_probability": <0..1>,
  "churn_probability": <0..1>, "warning_signs": [..], "recommended_actions": [..]}}
"""
    return [
        {"role": "system", "content": "You predict customer risk in e-commerce. Reply with valid JSON only."},
        {"role": "user", "content": user},
    ]


def allocation_prompt(stats: UserBehaviorStats, reputation: int, order: OrderDetails,
                      partners: Sequence[PartnerView]) -> List[dict]:
    listing = "\n".join(
        f"{i}. id={p.id} name={p.name} - Reputation band: {p.min_reputation}-"
        f"{p.max_reputation if p.max_reputation is not None else 'no limit'} - "
        f"Areas: {', '.join(p.service_areas) or 'All'} - "
        f"Capacity: {p.current_orders}/{p.daily_order_limit} in flight - "
        f"Success rate: {p.success_rate:.2f}"
        for i, p in enumerate(partners, 1)
    )
    user = f"""
CUSTOMER PROFILE:
- User ID: {order.user_id}
- Current Reputation: {reputation}
- Total Orders: {stats.total_orders}
- Success Rate: {stats.success_rate * 100:.1f}%
- Return Rate: {_pct(stats.returned_orders, stats.total_orders)}
- Delivery Failure Rate: {_pct(stats.delivery_failures, stats.total_orders)}

ORDER DETAILS:
- Order Value: ${order.order_value:.2f}
- Product Category: {order.product_category}
- Destination: {order.destination}

QUALIFIED PARTNERS:
{listing}

Pick exactly one partner from the list above, optimising for delivery success.

Respond with a JSON object:
{{"recommended_partner": "<name>", "partner_id": "<id>", "confidence": <0..1>,
  "reasoning": [..], "risk_mitigation": [..], "alternative_partners": [..],
  "delivery_success_probability": <0..1>}}
"""
    return [
        {"role": "system", "content": "You are a logistics analyst matching customers to delivery partners. "
                                      "Reply with valid JSON only."},
        {"role": "user", "content": user},
    ]


class ScoringOracleClient:
    """Stateless client for the AI consultation service.

    `complete` raises; the specialised calls never do. They return an
    `OracleResult` so callers can fall back without try/except chains.
    """

    def __init__(self, api_key: str | None = None, base_url: str | None = None, model: str | None = None,
                 timeout: float | None = None, enabled: bool = True, http: requests.Session | None = None):
        self.api_key = api_key
        self.base_url = (base_url or settings.ORACLE_BASE_URL).rstrip("/")
        self.model = model or settings.ORACLE_MODEL
        self.timeout = timeout if timeout is not None else settings.ORACLE_TIMEOUT_SECONDS
        self.enabled = enabled
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls) -> "ScoringOracleClient":
        key = settings.ORACLE_API_KEY.get_secret_value() if settings.ORACLE_API_KEY else None
        return cls(api_key=key, enabled=settings.ORACLE_ENABLED)

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.api_key)

    def complete(self, messages: List[dict], max_tokens: int = 1000, temperature: float = 0.3) -> Dict[str, Any]:
        if not self.available:
            raise OracleUnavailable("oracle is not configured")
        url = self.base_url + CHAT_PATH
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "reproute-engine/1.0 (+requests)",
        }
        try:
            r = self.http.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise OracleTimeout(f"oracle timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise OracleUnavailable(f"oracle request failed: {e}") from e

        if r.status_code >= 400:
            snippet = (r.text or "")[:500]
            raise OracleUnavailable(f"oracle HTTP {r.status_code}: {snippet}")
        try:
            body = r.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamMalformed(f"unexpected completion envelope from {url}") from e
        if isinstance(content, dict):
            return content
        try:
            return json.loads(content)
        except (TypeError, ValueError) as e:
            raise UpstreamMalformed(f"completion content is not JSON: {str(content)[:200]!r}") from e

    def _ask(self, purpose: str, messages: List[dict], validate: Callable[[Any], OracleResult],
             max_tokens: int, temperature: float) -> OracleResult:
        try:
            raw = self.complete(messages, max_tokens=max_tokens, temperature=temperature)
        except OracleTimeout as e:
            logger.warning("Oracle %s timed out: %s", purpose, e)
            return OracleResult.failure(TIMEOUT, str(e))
        except OracleUnavailable as e:
            logger.warning("Oracle %s unavailable: %s", purpose, e)
            return OracleResult.failure(UNAVAILABLE, str(e))
        except UpstreamMalformed as e:
            logger.warning("Oracle %s malformed response: %s", purpose, e)
            return OracleResult.failure(SCHEMA_ERROR, str(e))

        result = validate(raw)
        if not result.ok:
            logger.warning("Oracle %s response rejected: %s | payload=%s", purpose, result.error,
                           json.dumps(raw, default=str)[:1000])
        return result

    def analyze_reputation_change(self, stats: UserBehaviorStats, event_type: str,
                                  context: Dict[str, Any]) -> OracleResult:
        return self._ask("reputation", reputation_prompt(stats, event_type, context),
                         validate_reputation_analysis, max_tokens=1200, temperature=0.2)

    def predict_customer_risk(self, stats: UserBehaviorStats) -> OracleResult:
        return self._ask("risk", risk_prompt(stats), validate_risk_prediction, max_tokens=800, temperature=0.3)

    def analyze_allocation(self, stats: UserBehaviorStats, reputation: int, order: OrderDetails,
                           partners: Sequence[PartnerView]) -> OracleResult:
        return self._ask("allocation", allocation_prompt(stats, reputation, order, partners),
                         validate_allocation_analysis, max_tokens=1000, temperature=0.3)
