# tests/test_oracle_client.py
import json

import pytest
import requests

from reproute.errors import OracleUnavailable, UpstreamMalformed
from reproute.oracle.client import ScoringOracleClient
from reproute.oracle.validation import SCHEMA_ERROR, TIMEOUT, UNAVAILABLE
from reproute.schemas import UserBehaviorStats


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeHTTP:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def _completion(content):
    return FakeResponse(body={"choices": [{"message": {"content": content}}]})


def _client(http, **kw):
    return ScoringOracleClient(api_key="k", base_url="https://oracle.test/", model="m", timeout=5, http=http, **kw)


STATS = UserBehaviorStats(user_id="u1", total_orders=3, completed_orders=2)


def test_successful_reputation_analysis():
    http = FakeHTTP(_completion(json.dumps({"reputation_change": -20, "confidence": 0.7})))
    result = _client(http).analyze_reputation_change(STATS, "PRODUCT_RETURNED", {"order_id": "o1"})
    assert result.ok
    assert result.value.reputation_change == -20
    sent = http.requests[0]
    assert sent["url"] == "https://oracle.test/v1/chat/completions"
    assert sent["timeout"] == 5
    assert sent["headers"]["Authorization"] == "Bearer k"
    assert sent["json"]["response_format"] == {"type": "json_object"}


def test_content_may_already_be_an_object():
    http = FakeHTTP(_completion({"risk_score": 55}))
    result = _client(http).predict_customer_risk(STATS)
    assert result.ok
    assert result.value.risk_score == 55


def test_timeout_becomes_tagged_result():
    result = _client(FakeHTTP(exc=requests.Timeout("slow"))).analyze_reputation_change(STATS, "ORDER_COMPLETED", {})
    assert result.status == TIMEOUT


def test_connection_error_and_http_error_are_unavailable():
    down = _client(FakeHTTP(exc=requests.ConnectionError("refused")))
    assert down.predict_customer_risk(STATS).status == UNAVAILABLE

    err = _client(FakeHTTP(FakeResponse(status_code=503, text="busy")))
    assert err.predict_customer_risk(STATS).status == UNAVAILABLE


def test_non_json_content_is_schema_error():
    result = _client(FakeHTTP(_completion("sure! here is your answer"))).predict_customer_risk(STATS)
    assert result.status == SCHEMA_ERROR


def test_payload_violating_contract_is_schema_error():
    http = FakeHTTP(_completion(json.dumps({"reputation_change": "a lot"})))
    result = _client(http).analyze_reputation_change(STATS, "ORDER_COMPLETED", {})
    assert result.status == SCHEMA_ERROR
    assert "reputation_change" in result.error


def test_complete_raises_on_bad_envelope():
    with pytest.raises(UpstreamMalformed):
        _client(FakeHTTP(FakeResponse(body={"unexpected": True}))).complete([])


def test_unconfigured_client_never_calls_out():
    http = FakeHTTP(exc=AssertionError("should not be called"))
    client = ScoringOracleClient(api_key=None, http=http)
    assert not client.available
    with pytest.raises(OracleUnavailable):
        client.complete([])
    assert client.predict_customer_risk(STATS).status == UNAVAILABLE
    assert http.requests == []


def test_disabled_client_is_unavailable():
    client = _client(FakeHTTP(), enabled=False)
    assert client.analyze_reputation_change(STATS, "ORDER_COMPLETED", {}).status == UNAVAILABLE
