# tests/test_routes.py
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from reproute.config import settings
from reproute.main import app
from reproute.routes.deps import get_workflow
from reproute.services.orders import build_workflow
from reproute.utils.security import api_key_ok, warn_if_open


@pytest.fixture
def client(sessions, fake_oracle):
    wf = build_workflow(ledger_sessions=sessions, sessions=sessions, oracle=fake_oracle())
    app.dependency_overrides[get_workflow] = lambda: wf
    yield TestClient(app)
    app.dependency_overrides.clear()


def _partner(client, pid="p1", areas=("mumbai",)):
    r = client.post("/v1/logistics/partners", json={"id": pid, "name": pid.upper(), "service_areas": list(areas)})
    assert r.status_code == 200
    return r.json()


def _order(client, order_id="o1", destination="Mumbai, India"):
    return client.post("/v1/orders", json={"order_id": order_id, "user_id": "u1", "order_value": 120.0,
                                           "product_category": "books", "destination": destination})


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_order_lifecycle_over_http(client):
    _partner(client)
    r = _order(client)
    assert r.status_code == 200
    body = r.json()
    assert body["logistic_allocation"]["partner_id"] == "p1"

    assert client.get("/v1/orders/o1").json()["status"] == "CREATED"
    assert client.post("/v1/orders/o1/in-transit").status_code == 200
    r = client.post("/v1/orders/o1/complete", json={"feedback": {"customer_rating": 5}})
    assert r.status_code == 200
    assert r.json()["allocation"]["status"] == "delivered"

    capacity = client.get("/v1/logistics/partners/p1/capacity").json()
    assert capacity["current_orders"] == 0
    assert client.get("/v1/users/u1/reputation").json()["reputation"] == 33


def test_delivered_allocation_cannot_be_returned(client):
    _partner(client)
    allocation_id = _order(client).json()["allocation_id"]
    url = f"/v1/logistics/allocations/{allocation_id}/status"
    assert client.put(url, json={"status": "IN_TRANSIT"}).status_code == 200
    assert client.put(url, json={"status": "delivered"}).status_code == 200
    r = client.put(url, json={"status": "returned"})
    assert r.status_code == 409
    assert r.json()["error"] == "InvalidTransition"


def test_error_mapping(client):
    _partner(client)
    assert client.get("/v1/orders/missing").status_code == 404
    assert _order(client, destination="Chennai").status_code == 422
    dup = client.post("/v1/logistics/partners", json={"id": "p1", "name": "again"})
    assert dup.status_code == 400


def test_delivery_failure_endpoint(client):
    _partner(client)
    _order(client)
    r = client.post("/v1/orders/o1/delivery-failed", json={"reason": "customer_absent", "attempt_count": 2})
    assert r.status_code == 200
    assert r.json()["reputation_analysis"]["event_type"] == "DELIVERY_FAILED_ABSENT"
    assert r.json()["allocation"]["status"] == "failed"


def test_partner_listing_by_area(client):
    _partner(client, "mum", ("mumbai",))
    _partner(client, "all", ())
    ids = [p["id"] for p in client.get("/v1/logistics/partners", params={"area": "Mumbai"}).json()]
    assert ids == ["mum"]
    ids = [p["id"] for p in client.get("/v1/logistics/partners", params={"area": "Delhi"}).json()]
    assert ids == ["all"]


def test_system_analytics(client):
    _partner(client)
    _order(client)
    stats = client.get("/v1/logistics/analytics/system", params={"days": 7}).json()
    assert stats["total_allocations"] == 1
    assert stats["allocation_methods"]["rule-fallback"] == 1


def test_store_outage_is_503(broken_sessions, fake_oracle):
    wf = build_workflow(ledger_sessions=broken_sessions, sessions=broken_sessions, oracle=fake_oracle())
    app.dependency_overrides[get_workflow] = lambda: wf
    try:
        r = TestClient(app).get("/v1/users/u1/reputation")
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 503


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", SecretStr("s3cret"))
    assert client.get("/v1/users/u1/reputation").status_code == 401
    ok = client.get("/v1/users/u1/reputation", headers={"X-API-Key": "s3cret"})
    assert ok.status_code == 200


def test_api_key_check():
    assert api_key_ok(None, None)
    assert api_key_ok("a", "a")
    assert not api_key_ok("a", "b")
    assert not api_key_ok(None, "b")


def test_payment_endpoint(client):
    _partner(client)
    _order(client)
    r = client.post("/v1/orders/o1/paid")
    assert r.status_code == 200
    assert r.json()["order_status"] == "PAID"
    assert client.get("/v1/users/u1/reputation").json()["reputation"] == 20
    assert client.post("/v1/orders/missing/paid").status_code == 404


def test_open_api_warns_outside_dev(monkeypatch, caplog):
    monkeypatch.setattr(settings, "API_KEY", None)
    monkeypatch.setattr(settings, "ENV", "dev")
    assert warn_if_open() is False

    monkeypatch.setattr(settings, "ENV", "prod")
    with caplog.at_level("WARNING", logger="reproute"):
        assert warn_if_open() is True
    assert "API_KEY is not set in prod" in caplog.text

    monkeypatch.setattr(settings, "API_KEY", SecretStr("s3cret"))
    assert warn_if_open() is False
