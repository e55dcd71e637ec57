# tests/test_ledger.py
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from reproute.enums import OrderStatus
from reproute.errors import InvalidTransition, LedgerUnavailable, NotFound, ValidationError
from reproute.ledger.repository import LedgerAdapter
from reproute.models import ReputationEvent


def _event_count(sessions):
    with sessions() as db:
        return db.execute(select(func.count(ReputationEvent.id))).scalar_one()


def test_unknown_user_starts_at_zero(ledger):
    assert ledger.get_user_reputation("nobody") == 0


def test_increase_creates_counter(ledger):
    receipt = ledger.adjust_reputation("u1", 10, reason="PURCHASE_CREATED")
    assert receipt.applied_delta == 10
    assert receipt.new_reputation == 10
    assert ledger.get_user_reputation("u1") == 10


def test_decrease_clamps_at_zero(ledger):
    ledger.adjust_reputation("u1", 10)
    receipt = ledger.adjust_reputation("u1", -25, reason="DELIVERY_FAILED_REFUSED")
    assert receipt.requested_delta == -25
    assert receipt.applied_delta == -10
    assert receipt.new_reputation == 0
    assert ledger.get_user_reputation("u1") == 0


def test_zero_delta_writes_nothing(ledger, sessions):
    assert ledger.adjust_reputation("u1", 0) is None
    assert _event_count(sessions) == 0


def test_decrease_for_unknown_user_is_noop(ledger, sessions):
    assert ledger.adjust_reputation("ghost", -10) is None
    assert ledger.get_user_reputation("ghost") == 0
    assert _event_count(sessions) == 0


def test_every_applied_delta_leaves_a_receipt(ledger, sessions):
    ledger.adjust_reputation("u1", 5)
    ledger.adjust_reputation("u1", 7)
    assert _event_count(sessions) == 2
    assert ledger.get_user_reputation("u1") == 12


def test_order_moves_forward_only(ledger):
    ledger.create_order("o1", "u1", 250.0, "books", "Delhi")
    assert ledger.mark_shipped("o1").status == OrderStatus.SHIPPED.value
    completed = ledger.mark_completed("o1")
    assert completed.status == OrderStatus.COMPLETED.value
    assert completed.is_active is False

    returned = ledger.record_product_return("o1", "damaged")
    assert returned.status == OrderStatus.RETURNED.value
    assert returned.return_reason == "damaged"
    assert returned.returned_at is not None

    with pytest.raises(InvalidTransition):
        ledger.mark_completed("o1")


def test_shipped_order_cannot_be_cancelled(ledger):
    ledger.create_order("o1", "u1", 50.0, "books", "Delhi")
    ledger.mark_shipped("o1")
    with pytest.raises(InvalidTransition):
        ledger.cancel_order("o1")


def test_delivery_failure_needs_a_real_reason(ledger):
    ledger.create_order("o1", "u1", 50.0, "books", "Delhi")
    with pytest.raises(ValidationError):
        ledger.record_delivery_failure("o1", "NONE")
    with pytest.raises(ValidationError):
        ledger.record_delivery_failure("o1", "ALIENS")

    order = ledger.record_delivery_failure("o1", "customer_refused", attempt_count=3)
    assert order.status == OrderStatus.DELIVERY_FAILED.value
    assert order.failure_reason == "CUSTOMER_REFUSED"
    assert order.delivery_attempts == 3


def test_duplicate_order_rejected(ledger):
    ledger.create_order("o1", "u1", 50.0, "books", "Delhi")
    with pytest.raises(ValidationError):
        ledger.create_order("o1", "u1", 50.0, "books", "Delhi")


def test_invalid_order_input(ledger):
    with pytest.raises(ValidationError):
        ledger.create_order("o1", "u1", 0, "books", "Delhi")
    with pytest.raises(ValidationError):
        ledger.create_order("o2", "u1", 10.0, "books", "")


def test_missing_order(ledger):
    with pytest.raises(NotFound):
        ledger.get_order("nope")
    with pytest.raises(NotFound):
        ledger.mark_shipped("nope")


def test_behavior_stats(ledger, seed_orders):
    ids = seed_orders("u1", 4, value=100.0)
    ledger.mark_completed(ids[0])
    ledger.mark_completed(ids[1])
    ledger.record_product_return(ids[1], "wrong size")
    ledger.record_delivery_failure(ids[2], "CUSTOMER_ABSENT")

    stats = ledger.get_user_behavior_stats("u1")
    assert stats.total_orders == 4
    assert stats.completed_orders == 1
    assert stats.returned_orders == 1
    assert stats.delivery_failures == 1
    assert stats.total_value == pytest.approx(400.0)
    assert stats.avg_value == pytest.approx(100.0)
    assert len(stats.recent_orders) == 4
    assert stats.success_rate == pytest.approx(0.5)


def test_stats_for_new_user(ledger):
    stats = ledger.get_user_behavior_stats("fresh")
    assert stats.total_orders == 0
    assert stats.recent_orders == []
    assert stats.success_rate == 0.0
    assert stats.avg_days_between_orders is None


def test_store_outage_surfaces_as_ledger_unavailable(broken_sessions):
    ledger = LedgerAdapter(broken_sessions)
    with pytest.raises(LedgerUnavailable):
        ledger.get_user_reputation("u1")
    with pytest.raises(LedgerUnavailable):
        ledger.adjust_reputation("u1", 5)


def test_first_writes_for_a_new_user_race_cleanly(ledger):
    for round_no in range(3):
        user_id = f"racer-{round_no}"
        with ThreadPoolExecutor(max_workers=4) as pool:
            receipts = list(pool.map(lambda _: ledger.adjust_reputation(user_id, 5), range(4)))
        assert ledger.get_user_reputation(user_id) == 20
        assert [r.applied_delta for r in receipts] == [5, 5, 5, 5]
        # each receipt saw the score the one before it left behind
        assert sorted(r.new_reputation for r in receipts) == [5, 10, 15, 20]


def test_keyed_delta_lands_once(ledger, sessions):
    first = ledger.adjust_reputation("u1", 8, reason="PURCHASE_CREATED", dedup_key="o1:PURCHASE_CREATED")
    again = ledger.adjust_reputation("u1", 8, reason="PURCHASE_CREATED", dedup_key="o1:PURCHASE_CREATED")
    assert again.receipt_id == first.receipt_id
    assert again.new_reputation == 8
    assert ledger.get_user_reputation("u1") == 8
    assert _event_count(sessions) == 1

    ledger.adjust_reputation("u1", 8, reason="PURCHASE_CREATED", dedup_key="o2:PURCHASE_CREATED")
    assert ledger.get_user_reputation("u1") == 16


def test_keyed_delta_under_concurrency(ledger, sessions):
    with ThreadPoolExecutor(max_workers=4) as pool:
        receipts = list(pool.map(lambda _: ledger.adjust_reputation("u1", 10, dedup_key="o1:ORDER_COMPLETED"),
                                 range(4)))
    assert len({r.receipt_id for r in receipts}) == 1
    assert ledger.get_user_reputation("u1") == 10
    assert _event_count(sessions) == 1
