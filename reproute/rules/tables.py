# reproute/rules/tables.py
from typing import Dict

# -----------------------------
# Tier 1: first-time customers
# -----------------------------
NEW_CUSTOMER_DELTAS: Dict[str, int] = {
    "PURCHASE_CREATED": 10,
    "PAYMENT_COMPLETED": 15,
    "DELIVERY_ACCEPTED": 20,
    "ORDER_COMPLETED": 25,
    "PRODUCT_RETURNED": -8,
    "DELIVERY_FAILED_ABSENT": -12,
    "DELIVERY_FAILED_REFUSED": -15,
}
NEW_CUSTOMER_CONFIDENCE = 0.8

# events that always go to the oracle, even with no history
PURCHASE_EVENTS = frozenset({"PURCHASE_CREATED", "PAYMENT_COMPLETED"})

# -----------------------------
# Tier 3: oracle unavailable
# -----------------------------
FALLBACK_DELTAS: Dict[str, int] = {
    "PURCHASE_CREATED": 8,
    "PAYMENT_COMPLETED": 12,
    "DELIVERY_ACCEPTED": 18,
    "ORDER_COMPLETED": 25,
    "PRODUCT_RETURNED": -12,
    "DELIVERY_FAILED_ABSENT": -18,
    "DELIVERY_FAILED_REFUSED": -25,
    "EARLY_PAYMENT": 10,
    "POSITIVE_REVIEW": 15,
}
FALLBACK_CONFIDENCE = 0.6

# oracle deltas must fall inside this band
MAX_ORACLE_DELTA = 100

# -----------------------------
# Allocation degrade paths
# -----------------------------
RANDOM_CONFIDENCE = 0.3
RANDOM_SUCCESS_PROBABILITY = 0.6
RULE_FALLBACK_CONFIDENCE = 0.5
RULE_FALLBACK_SUCCESS_PROBABILITY = 0.7


def new_customer_delta(event_type: str) -> int:
    return NEW_CUSTOMER_DELTAS.get(event_type, 0)


def fallback_delta(event_type: str) -> int:
    return FALLBACK_DELTAS.get(event_type, 0)
