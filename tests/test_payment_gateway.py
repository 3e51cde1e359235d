"""Unit tests for app.integrations.payment_gateway.

Test strategy
-------------
A PaymentGateway is built with a stub ``session`` that replays canned
responses (or raises) and a no-op ``sleep``, so no processor is contacted
and retries run instantly. Config comes from TestingConfig through the
autouse app context.

Coverage
--------
    - retry on 5xx / timeout / connection error, then success
    - no retry on other 4xx; error message taken from the gateway body
    - one Idempotency-Key reused across every retry of a POST
    - unconfigured gateway answers without any HTTP attempt
    - Stripe-style form flattening and cent conversion
"""

import pytest
import requests

from app.integrations.payment_gateway import PaymentGateway, flatten_params, from_cents, to_cents


class _Response:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.content = b"{}" if body is not None else b""
        self.text = str(body)

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _StubSession:
    """Replays ``outcomes`` in order; exceptions are raised, responses returned."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, headers=None, data=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "data": data, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def sleeps():
    return []


def _gateway(session, sleeps):
    return PaymentGateway(session=session, sleep=sleeps.append)


class TestRetries:
    def test_retries_server_errors_then_succeeds(self, sleeps):
        session = _StubSession(_Response(503), _Response(502), _Response(200, {"id": "cs_1", "url": "u"}))
        result = _gateway(session, sleeps).request("POST", "/checkout/sessions", params={"mode": "payment"})
        assert result.ok
        assert result.data["id"] == "cs_1"
        assert result.attempts == 3
        assert sleeps == [0.5, 1]

    def test_gives_up_after_three_retries(self, sleeps):
        session = _StubSession(*[_Response(500, {"error": {"message": "boom"}}) for _ in range(4)])
        result = _gateway(session, sleeps).request("GET", "/balance")
        assert not result.ok
        assert result.attempts == 4
        assert result.status_code == 500
        assert result.error == "HTTP 500: boom"
        assert sleeps == [0.5, 1, 2]

    def test_client_error_is_not_retried(self, sleeps):
        session = _StubSession(_Response(400, {"error": {"message": "No such payment_intent"}}))
        result = _gateway(session, sleeps).create_refund("pi_missing")
        assert not result.ok
        assert result.attempts == 1
        assert result.error == "HTTP 400: No such payment_intent"
        assert sleeps == []

    def test_rate_limit_is_retried(self, sleeps):
        session = _StubSession(_Response(429), _Response(200, {"id": "re_1"}))
        assert _gateway(session, sleeps).create_refund("pi_1").ok

    def test_timeout_and_connection_errors_are_retried(self, sleeps):
        session = _StubSession(
            requests.Timeout(), requests.ConnectionError("reset"), _Response(200, {"id": "re_1"}),
        )
        result = _gateway(session, sleeps).create_refund("pi_1")
        assert result.ok
        assert result.attempts == 3

    def test_timeout_on_every_attempt(self, sleeps):
        session = _StubSession(*[requests.Timeout() for _ in range(4)])
        result = _gateway(session, sleeps).create_refund("pi_1")
        assert not result.ok
        assert result.status_code is None
        assert result.error.startswith("Request timed out")

    def test_idempotency_key_fixed_across_retries(self, sleeps):
        session = _StubSession(_Response(503), _Response(200, {"id": "re_1"}))
        _gateway(session, sleeps).create_refund("pi_1", amount_cents=500)
        keys = {call["headers"]["Idempotency-Key"] for call in session.calls}
        assert len(keys) == 1

    def test_get_has_no_idempotency_key(self, sleeps):
        session = _StubSession(_Response(200, {}))
        _gateway(session, sleeps).request("GET", "/balance")
        assert "Idempotency-Key" not in session.calls[0]["headers"]

    def test_non_json_success_body(self, sleeps):
        session = _StubSession(_Response(200, ValueError("not json")))
        result = _gateway(session, sleeps).request("GET", "/balance")
        assert result.ok
        assert result.data == {}


class TestRequestShape:
    def test_auth_and_url(self, app, sleeps):
        session = _StubSession(_Response(200, {"id": "re_1"}))
        _gateway(session, sleeps).create_refund("pi_1", amount_cents=1250, reason="duplicate")
        call = session.calls[0]
        assert call["url"] == app.config["PAYMENT_GATEWAY_URL"].rstrip("/") + "/refunds"
        assert call["headers"]["Authorization"] == "Bearer sk_test_dummy"
        assert call["data"] == [
            ("payment_intent", "pi_1"), ("amount", "1250"), ("metadata[reason]", "duplicate"),
        ]

    def test_checkout_session_params(self, sleeps):
        session = _StubSession(_Response(200, {"id": "cs_1"}))
        _gateway(session, sleeps).create_checkout_session(
            line_items=[{"name": "Pottery", "description": "Early bird", "unit_amount": 4000}],
            metadata={"workshop_id": "7"},
            success_url="https://s", cancel_url="https://c",
            customer_email="ada@example.com",
        )
        fields = dict(session.calls[0]["data"])
        assert fields["line_items[0][price_data][unit_amount]"] == "4000"
        assert fields["line_items[0][price_data][product_data][description]"] == "Early bird"
        assert fields["metadata[workshop_id]"] == "7"
        assert fields["payment_intent_data[metadata][workshop_id]"] == "7"
        assert fields["customer_email"] == "ada@example.com"

    def test_unconfigured_gateway_makes_no_call(self, app, monkeypatch, sleeps):
        monkeypatch.setitem(app.config, "PAYMENT_GATEWAY_SECRET_KEY", "")
        session = _StubSession()
        result = _gateway(session, sleeps).create_refund("pi_1")
        assert not result.ok
        assert result.attempts == 0
        assert session.calls == []


class TestHelpers:
    def test_flatten_params(self):
        assert flatten_params({
            "a": 1, "skip": None, "flag": True,
            "nested": {"b": "x"}, "items": [{"c": 2}, "plain"],
        }) == [
            ("a", "1"), ("flag", "true"), ("nested[b]", "x"), ("items[0][c]", "2"), ("items[1]", "plain"),
        ]

    @pytest.mark.parametrize("amount, cents", [("50.00", 5000), ("35.5", 3550), ("0.005", 1), (None, 0)])
    def test_to_cents(self, amount, cents):
        assert to_cents(amount) == cents

    def test_from_cents(self):
        assert str(from_cents(3550)) == "35.50"
        assert str(from_cents(None)) == "0.00"
