"""
Payment Gateway client (Stripe-compatible REST API).

All outbound HTTP calls to the payment processor go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

  - Auth: secret key as Bearer token (PAYMENT_GATEWAY_SECRET_KEY)
  - Body: form-encoded, nested keys flattened Stripe-style
    (``line_items[0][price_data][currency]=usd``)
  - Retry: up to 3 retries, exponential backoff (0.5 s → 1 s → 2 s) on
    timeouts, connection errors, HTTP 429 and 5xx; other 4xx fail at once
  - Idempotency-Key header is fixed per logical call, so a retried POST
    cannot create a second session or refund
  - Timeout: PAYMENT_GATEWAY_TIMEOUT seconds per attempt (default 30)

Testability: pass a stub `session` (anything with ``.request(...)``) and a
no-op `sleep` to PaymentGateway() in tests.
"""

from __future__ import annotations

import logging
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

import requests
from flask import current_app

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 3
_RETRY_BACKOFF_SECONDS = [0.5, 1, 2]
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 30


def to_cents(amount) -> int:
    """Decimal currency amount to integer minor units (half-up)."""
    return int((Decimal(str(amount or 0)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(Decimal("0.01"))


class GatewayResult:
    """Structured return value from PaymentGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body, else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency of the last attempt in milliseconds.
        attempts:       Number of HTTP attempts made.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | None,
        error: str | None,
        duration_ms: int,
        attempts: int = 1,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.attempts = attempts

    def __repr__(self) -> str:
        return f"<GatewayResult ok={self.ok} status={self.status_code} attempts={self.attempts}>"


def flatten_params(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe-style form fields."""
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(flatten_params(value, name))
        elif isinstance(value, (list, tuple)):
            for idx, element in enumerate(value):
                if isinstance(element, dict):
                    pairs.extend(flatten_params(element, f"{name}[{idx}]"))
                else:
                    pairs.append((f"{name}[{idx}]", str(element)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class PaymentGateway:
    """Payment processor gateway.

    Instantiate once at module level (module-level singleton pattern).

    Usage:
        from app.integrations.payment_gateway import payment_gateway
        result = payment_gateway.create_refund("pi_123", amount_cents=2500)
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._sleep = sleep

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Configuration ────────────────────────────────────────────────────────

    @staticmethod
    def _setting(name: str, default: Any = None) -> Any:
        return current_app.config.get(name, default)

    def is_configured(self) -> bool:
        return bool(self._setting("PAYMENT_GATEWAY_SECRET_KEY"))

    # ── Core request dispatcher ───────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        timeout: int | None = None,
    ) -> GatewayResult:
        """Execute an authenticated request with retries.

        Returns:
            GatewayResult — always returns (never raises). Callers check .ok.
        """
        if not self.is_configured():
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="Payment gateway is not configured", duration_ms=0, attempts=0,
            )

        url = f"{self._setting('PAYMENT_GATEWAY_URL', '').rstrip('/')}/{path.lstrip('/')}"
        timeout = timeout or self._setting("PAYMENT_GATEWAY_TIMEOUT", _DEFAULT_TIMEOUT)
        headers = {
            "Authorization": f"Bearer {self._setting('PAYMENT_GATEWAY_SECRET_KEY')}",
            "Accept": "application/json",
        }
        if method.upper() == "POST":
            headers["Idempotency-Key"] = str(uuid.uuid4())
        body = flatten_params(params or {})

        last_error = "Unknown error"
        last_status: int | None = None
        duration_ms = 0

        for attempt in range(_RETRY_MAX + 1):  # 0..3
            retryable = False
            try:
                t0 = time.perf_counter()
                resp = self.session.request(method, url, headers=headers, data=body, timeout=timeout)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if 200 <= resp.status_code < 300:
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=data,
                        error=None, duration_ms=duration_ms, attempts=attempt + 1,
                    )

                last_error = self._error_message(resp)
                retryable = resp.status_code in _RETRYABLE_STATUS
                logger.warning(
                    "Gateway request failed attempt=%d/%d status=%d path=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, path,
                )

            except requests.Timeout:
                last_error = f"Request timed out after {timeout}s"
                retryable = True
                logger.warning(
                    "Gateway request timed out attempt=%d/%d path=%s",
                    attempt + 1, _RETRY_MAX + 1, path,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                retryable = True
                logger.warning(
                    "Gateway network error attempt=%d/%d path=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, path, last_error,
                )

            if not retryable or attempt >= _RETRY_MAX:
                return GatewayResult(
                    ok=False, status_code=last_status, data=None,
                    error=last_error, duration_ms=duration_ms, attempts=attempt + 1,
                )

            sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
            logger.info("Retrying gateway request in %ss (attempt %d)", sleep_s, attempt + 2)
            self._sleep(sleep_s)

        return GatewayResult(
            ok=False, status_code=last_status, data=None,
            error=last_error, duration_ms=duration_ms, attempts=_RETRY_MAX + 1,
        )

    @staticmethod
    def _error_message(resp) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}: {resp.text[:500]}"
        message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
        return f"HTTP {resp.status_code}: {message or str(body)[:500]}"

    # ── Payment operations ────────────────────────────────────────────────────

    def create_checkout_session(
        self,
        *,
        line_items: list[dict],
        metadata: dict,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        currency: str = "usd",
    ) -> GatewayResult:
        """Create a hosted checkout session.

        Args:
            line_items: [{"name", "description", "unit_amount" (cents)}]
            metadata:   Flat str→str map; round-trips on the webhook event.
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": int(item["unit_amount"]),
                        "product_data": {
                            "name": item["name"],
                            **({"description": item["description"]} if item.get("description") else {}),
                        },
                    },
                    "quantity": 1,
                }
                for item in line_items
            ],
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email
        return self.request("POST", "/checkout/sessions", params=params)

    def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount_cents: int | None = None,
        reason: str = "",
    ) -> GatewayResult:
        """Refund a payment intent in full (amount_cents=None) or in part."""
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = int(amount_cents)
        if reason:
            params["metadata"] = {"reason": reason}
        return self.request("POST", "/refunds", params=params)


payment_gateway = PaymentGateway()
