# tests/test_workflow.py
import pytest

from reproute.enums import AllocationStatus, OrderStatus
from reproute.errors import DirectoryUnavailable, InvalidTransition, NoPartnersForDestination, ValidationError
from reproute.schemas import FeedbackInput, OrderDetails
from reproute.services.orders import build_workflow


@pytest.fixture
def workflow(sessions, fake_oracle):
    return build_workflow(ledger_sessions=sessions, sessions=sessions, oracle=fake_oracle())


def _create(workflow, order_id, destination="Mumbai, India", value=120.0):
    return workflow.create_order("u1", value, "electronics", destination, order_id=order_id)


def test_order_happy_path(workflow, add_partner):
    add_partner("p1", service_areas=["mumbai"])

    created = _create(workflow, "o1")
    assert created["reputation_analysis"]["reputation_change"] == 8
    assert created["reputation_receipt"]["new_reputation"] == 8
    assert created["logistic_allocation"]["partner_id"] == "p1"
    assert workflow.directory.get_capacity("p1").current_orders == 1
    keys = [e["key"] for e in workflow.get_evidence("o1")]
    assert keys == ["input", "reputation:PURCHASE_CREATED", "allocation"]

    done = workflow.complete_order("o1", FeedbackInput(customer_rating=5, comments=["great"]))
    assert done["reputation_analysis"]["new_customer"] is False
    assert done["reputation_analysis"]["tier"] == "fallback"
    assert workflow.ledger.get_user_reputation("u1") == 33
    assert done["allocation"]["status"] == AllocationStatus.DELIVERED.value
    assert done["allocation"]["customer_rating"] == 5
    assert workflow.directory.get_capacity("p1").current_orders == 0


def test_create_order_retry_does_not_double_count(workflow, add_partner):
    add_partner("p1")
    first = _create(workflow, "o1")
    second = _create(workflow, "o1")
    assert first["allocation_id"] == second["allocation_id"]
    assert workflow.ledger.get_user_reputation("u1") == 8
    assert workflow.directory.get_capacity("p1").current_orders == 1


def test_retry_after_lost_evidence_write_applies_delta_once(workflow, add_partner, monkeypatch):
    add_partner("p1")
    record = workflow.record_evidence
    failures = []

    def flaky(order_id, key, value):
        if key.startswith("reputation:") and not failures:
            failures.append(key)
            raise DirectoryUnavailable("evidence store down")
        return record(order_id, key, value)

    monkeypatch.setattr(workflow, "record_evidence", flaky)
    with pytest.raises(DirectoryUnavailable):
        _create(workflow, "o1")
    assert workflow.ledger.get_user_reputation("u1") == 8

    retried = _create(workflow, "o1")
    assert failures == ["reputation:PURCHASE_CREATED"]
    assert retried["reputation_receipt"]["new_reputation"] == 8
    assert workflow.ledger.get_user_reputation("u1") == 8
    assert workflow.directory.get_capacity("p1").current_orders == 1


def test_payment_is_scored_once(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    paid = workflow.record_payment("o1")
    assert paid["order_status"] == OrderStatus.PAID.value
    assert paid["reputation_analysis"]["event_type"] == "PAYMENT_COMPLETED"
    assert paid["reputation_analysis"]["reputation_change"] == 12
    assert workflow.ledger.get_user_reputation("u1") == 20

    again = workflow.record_payment("o1")
    assert again["reputation_receipt"] == paid["reputation_receipt"]
    assert workflow.ledger.get_user_reputation("u1") == 20

    # a paid order still ships and completes
    workflow.mark_in_transit("o1")
    assert workflow.complete_order("o1")["allocation"]["status"] == AllocationStatus.DELIVERED.value


def test_order_id_belongs_to_one_user(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    with pytest.raises(ValidationError):
        workflow.create_order("u2", 10.0, "books", "Mumbai", order_id="o1")


def test_delivery_failure_penalises_and_releases(workflow, add_partner):
    add_partner("p1", service_areas=["mumbai"])
    _create(workflow, "o1")
    _create(workflow, "o2")
    assert workflow.ledger.get_user_reputation("u1") == 16

    moved = workflow.mark_in_transit("o2")
    assert moved["order_status"] == OrderStatus.SHIPPED.value
    assert moved["allocation"]["status"] == AllocationStatus.IN_TRANSIT.value

    failed = workflow.record_delivery_failure("o2", "customer_refused", 2)
    assert failed["reputation_analysis"]["event_type"] == "DELIVERY_FAILED_REFUSED"
    assert failed["reputation_analysis"]["reputation_change"] == -25
    assert failed["reputation_receipt"]["applied_delta"] == -16
    assert workflow.ledger.get_user_reputation("u1") == 0
    assert failed["allocation"]["status"] == AllocationStatus.FAILED.value
    assert failed["allocation"]["failure_reason"] == "CUSTOMER_REFUSED"
    assert workflow.directory.get_capacity("p1").current_orders == 1

    again = workflow.record_delivery_failure("o2", "customer_refused", 2)
    assert again["allocation"]["status"] == AllocationStatus.FAILED.value
    assert workflow.ledger.get_user_reputation("u1") == 0


def test_return_after_delivery_keeps_allocation_delivered(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    workflow.complete_order("o1")
    returned = workflow.record_return("o1", "changed my mind")
    assert returned["allocation"]["status"] == AllocationStatus.DELIVERED.value
    assert workflow.ledger.get_order("o1").status == OrderStatus.RETURNED.value
    assert workflow.ledger.get_user_reputation("u1") == 21


def test_undelivered_order_cannot_be_returned(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    with pytest.raises(InvalidTransition):
        workflow.record_return("o1", "cancelled at door")
    assert workflow.lifecycle.get_allocation_for_order("o1").status == AllocationStatus.ALLOCATED.value
    assert workflow.ledger.get_user_reputation("u1") == 8


def test_no_partner_for_destination(workflow, add_partner):
    add_partner("p1", service_areas=["mumbai"])
    with pytest.raises(NoPartnersForDestination):
        _create(workflow, "o1", destination="Chennai")


def test_positive_behavior(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    result = workflow.record_positive_behavior("u1", "early_payment")
    assert result["behavior_type"] == "EARLY_PAYMENT"
    assert result["reputation_analysis"]["reputation_change"] == 10
    assert workflow.ledger.get_user_reputation("u1") == 18

    with pytest.raises(ValidationError):
        workflow.record_positive_behavior("u1", "PURCHASE_CREATED")
    with pytest.raises(ValidationError):
        workflow.record_positive_behavior("u1", "bogus")


def test_candidate_pool_gates_on_capacity_and_value(workflow, add_partner):
    add_partner("full", daily_order_limit=0)
    add_partner("pricey", min_order_value=500)
    add_partner("fits")
    order = OrderDetails(order_id="o1", user_id="u1", order_value=120.0,
                         product_category="books", destination="Pune")
    assert [p.id for p in workflow.candidate_pool(order)] == ["fits"]

    workflow.directory.set_status("fits", "inactive")
    # nobody fits: every active partner stays in play
    assert {p.id for p in workflow.candidate_pool(order)} == {"full", "pricey"}


def test_refresh_partner_performance(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    workflow.complete_order("o1", FeedbackInput(customer_rating=4))
    view = workflow.refresh_partner_performance("p1", days=30)
    assert view.success_rate == 1.0
    assert view.customer_rating == 4.0
    assert view.total_orders_handled == 1


def test_user_analytics(workflow, add_partner):
    add_partner("p1")
    _create(workflow, "o1")
    report = workflow.user_analytics("u1")
    assert report["current_reputation"] == 8
    assert report["statistics"]["total_orders"] == 1
    assert report["logistics_history"]["total_allocations"] == 1
    assert report["logistics_history"]["partner_distribution"] == {"P1": 1}
