"""
Workshop Enrollment Platform
Token Service — single-use, time-boxed waitlist claim tokens.

A claim token is a capability credential bound to one WaitlistEntry:

  - 256 bits from ``secrets`` (URL-safe text), handed out exactly once in
    the claim URL
  - only ``sha256(salt + token)`` is stored, with a per-entry random salt,
    plus the absolute expiry (now + CLAIM_TOKEN_TTL_HOURS)
  - valid only while the entry is ``notified`` and now < expiry
  - redeeming it moves the entry away from ``notified`` with a conditional
    update, so a second presentation fails with TokenAlreadyClaimed

Usage:
    from app.services import token_service

    token, expires_at = token_service.issue(entry.id)
    entry_id = token_service.validate(token, entry_id)                  # consumes
    token_service.validate(token, entry_id, consume=False)              # peek only
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from flask import current_app

from app.core.exceptions import (
    TokenAlreadyClaimed,
    TokenExpired,
    TokenMismatch,
    TokenNotFound,
)
from app.models import db
from app.models.waitlist import WaitlistEntry
from app.services import record_store

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32          # 256 bits of entropy
_SALT_BYTES = 16
_SCAN_LIMIT = 500         # most recent token-bearing entries checked on a mismatch


def _utcnow():
    return datetime.now(timezone.utc)


def _digest(salt: str, token: str) -> str:
    return hashlib.sha256(f"{salt}{token}".encode("utf-8")).hexdigest()


def _matches(entry: WaitlistEntry, token: str) -> bool:
    if not entry.token_hash or not entry.token_salt:
        return False
    return hmac.compare_digest(entry.token_hash, _digest(entry.token_salt, token))


def issue(entry_id, *, commit=True) -> tuple[str, datetime]:
    """
    Generate a fresh claim token for ``entry_id``.

    Any previously issued token for the entry stops working. Does not
    change the entry's status; the Waitlist Coordinator does that.

    Returns:
        (plaintext token, absolute expiry)
    """
    entry = record_store.get_waitlist_entry(entry_id)
    token = secrets.token_urlsafe(TOKEN_BYTES)
    salt = secrets.token_hex(_SALT_BYTES)
    ttl = current_app.config.get("CLAIM_TOKEN_TTL_HOURS", 48)
    expires_at = _utcnow() + timedelta(hours=ttl)

    entry.token_salt = salt
    entry.token_hash = _digest(salt, token)
    entry.token_expires_at = expires_at
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info("Claim token issued entry=%s expires_at=%s", entry_id, expires_at.isoformat())
    return token, expires_at


def _locate(token: str, expected_entry_id) -> WaitlistEntry:
    """Return the entry bound to ``token``; raise NotFound / Mismatch otherwise."""
    expected = db.session.get(WaitlistEntry, expected_entry_id) if expected_entry_id else None
    if expected is not None and _matches(expected, token):
        return expected

    candidates = (
        WaitlistEntry.query
        .filter(WaitlistEntry.token_hash.isnot(None))
        .order_by(WaitlistEntry.id.desc())
        .limit(_SCAN_LIMIT)
        .all()
    )
    for entry in candidates:
        if expected is not None and entry.id == expected.id:
            continue
        if _matches(entry, token):
            logger.warning(
                "Claim token presented with wrong entry id (presented=%s bound=%s)",
                expected_entry_id, entry.id,
                extra={"security_code": "claim_token_mismatch"},
            )
            raise TokenMismatch(expected_entry_id, entry.id)

    logger.warning(
        "Unknown claim token presented for entry=%s", expected_entry_id,
        extra={"security_code": "claim_token_unknown"},
    )
    raise TokenNotFound()


def validate(token, expected_entry_id, *, consume=True, target="claimed", commit=True, **fields) -> int:
    """
    Validate ``token`` for ``expected_entry_id`` and return the entry id.

    Args:
        token: Plaintext claim token from the claim URL.
        expected_entry_id: Entry id presented alongside the token.
        consume: When True, atomically move the entry ``notified`` → ``target``.
        target: Status to redeem into (``claimed``, or ``converted`` at checkout completion).
        commit: When False the caller owns the transaction (the expiry
            transition and the redemption are left uncommitted).
        **fields: Extra columns written together with the redemption.

    Raises:
        TokenNotFound, TokenMismatch, TokenExpired, TokenAlreadyClaimed
    """
    if not token:
        raise TokenNotFound()

    entry = _locate(token, expected_entry_id)

    if entry.status == "expired":
        raise TokenExpired(entry.id)

    if entry.status != "notified":
        raise TokenAlreadyClaimed(entry.id, entry.status)

    expires_at = record_store.as_utc(entry.token_expires_at)
    if expires_at is None or _utcnow() >= expires_at:
        if record_store.transition_waitlist_entry(entry.id, "notified", "expired"):
            logger.info("Claim token for entry=%s expired; entry marked expired", entry.id)
        if commit:
            db.session.commit()
        raise TokenExpired(entry.id)

    if not consume:
        return entry.id

    if not record_store.transition_waitlist_entry(entry.id, "notified", target, **fields):
        raise TokenAlreadyClaimed(entry.id, "claimed")
    if commit:
        db.session.commit()
    logger.info("Claim token redeemed entry=%s -> %s", entry.id, target)
    return entry.id
