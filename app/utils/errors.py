"""Standardised API error responses.

Every JSON error the service returns has the same body::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details.reason`` carries the stable machine reason of cart and claim
failures (``already_in_cart``, ``expired``, ``mismatch``...), so clients
branch on it rather than on the message text.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Workshop not found")
    return api_error(E.VALIDATION_REQUIRED, "workshop_id is required")
    return api_error(E.EXPIRED, "This waitlist link has expired.", reason="expired")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes (``ERR_`` prefix)."""

    # 400 malformed input / 422 business rule
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    BUSINESS_RULE = "ERR_BUSINESS_RULE"

    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: duplicate item, or a status that already moved
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Webhook signature failures answer 400 (the gateway treats any 4xx as final)
    AUTHENTICATION = "ERR_AUTHENTICATION"

    # 410: claim link expired or already used
    EXPIRED = "ERR_EXPIRED"

    # 502: payment gateway refused or unreachable
    DEPENDENCY = "ERR_DEPENDENCY"

    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.BUSINESS_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.AUTHENTICATION: 400,
    E.EXPIRED: 410,
    E.DEPENDENCY: 502,
    E.INTERNAL: 500,
}


def status_for(code: str) -> int:
    """Default HTTP status of ``code`` (400 for unknown codes)."""
    return _DEFAULT_STATUS.get(code, 400)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    reason: str | None = None,
):
    """Return ``(jsonify(body), status)`` for a Flask view.

    Parameters
    ----------
    code : str
        One of the ``E.*`` constants.
    message : str
        Shown to the customer or administrator as-is.
    status : int, optional
        Overrides the code's default status.
    details : dict, optional
        Structured payload (field errors, dependency name...).
    reason : str, optional
        Stored as ``details["reason"]``.
    """
    body: dict = {"error": message, "code": code}
    details = dict(details or {})
    if reason:
        details["reason"] = reason
    if details:
        body["details"] = details
    return jsonify(body), status or status_for(code)
