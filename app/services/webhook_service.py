"""
Workshop Enrollment Platform
Webhook Processor — exactly-once effects from at-least-once gateway events.

Admission:
    1. verify the signature header against WEBHOOK_SIGNING_SECRET
       (AuthenticationError on failure, nothing else happens)
    2. look the event id up in the processed-event ledger; a hit is
       acknowledged without reapplying anything

Effects are applied with conditional status transitions
(``record_store.transition_enrollment``), which are the real correctness
backstop: a duplicate that slips past the ledger loses every transition
and becomes a no-op. The ledger row is written last, after the effects
committed; a crash in between only causes a harmless reprocessing.

Events whose preconditions do not hold (refund of a pending enrollment,
completion of an already completed session) are logged and acknowledged.
A handler exception is NOT acknowledged: nothing is written to the ledger
and the caller answers 5xx so the gateway retries.

Consumed events:
    checkout.session.completed      pending/failed → completed (or create)
    charge.refunded                 completed → refunded (full) / annotate (partial)
    payment_intent.payment_failed   pending → failed
"""

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    AuthenticationError,
    TokenAlreadyClaimed,
    TokenExpired,
    TokenMismatch,
    TokenNotFound,
    ValidationError,
)
from app.integrations.payment_gateway import from_cents, to_cents
from app.models import db
from app.models.enrollment import Enrollment
from app.models.ledger import ProcessedEvent
from app.models.waitlist import WaitlistEntry
from app.models.workshop import Workshop
from app.services import account_service, cart_store, record_store, token_service, waitlist_service
from app.services.cart_store import CartOwner
from app.services.notification import NotificationService, enqueue_admin_enrollment, enrollment_context

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("Gateway-Signature", "Stripe-Signature")

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_CHARGE_REFUNDED = "charge.refunded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


def _utcnow():
    return datetime.now(timezone.utc)


# ── Signature verification ───────────────────────────────────────────────────

def compute_signature(payload: bytes, timestamp, secret: str) -> str:
    """HMAC-SHA256 over ``"<timestamp>.<raw body>"``."""
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp=None) -> str:
    """Build a signature header value for ``payload`` (gateway format)."""
    timestamp = int(time.time()) if timestamp is None else int(timestamp)
    return f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


def verify_signature(payload: bytes, header: str, secret=None, tolerance=None, now=None) -> int:
    """
    Check ``header`` (``t=<unix>,v1=<hex>[,v1=<hex>...]``) against ``payload``.

    Returns:
        The signed timestamp.

    Raises:
        AuthenticationError: missing/malformed header, stale timestamp,
            no matching signature, or no configured secret.
    """
    secret = secret if secret is not None else current_app.config.get("WEBHOOK_SIGNING_SECRET")
    tolerance = tolerance if tolerance is not None else current_app.config.get("WEBHOOK_TOLERANCE_SECONDS", 300)
    now = int(time.time()) if now is None else int(now)

    def _reject(reason, code):
        logger.warning("Webhook rejected: %s", reason, extra={"security_code": code})
        raise AuthenticationError(reason)

    if not secret:
        _reject("Webhook signing secret is not configured", "webhook_secret_missing")
    if not header:
        _reject("Missing signature header", "webhook_signature_missing")

    timestamp, signatures = None, []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    if not timestamp or not timestamp.isdigit() or not signatures:
        _reject("Malformed signature header", "webhook_signature_malformed")

    if abs(now - int(timestamp)) > tolerance:
        _reject("Signature timestamp outside tolerance", "webhook_signature_stale")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        _reject("Signature mismatch", "webhook_signature_invalid")
    return int(timestamp)


# ── Processed-event ledger ───────────────────────────────────────────────────

def is_processed(event_id) -> bool:
    return db.session.query(ProcessedEvent.id).filter_by(event_id=event_id).first() is not None


def record_processed(event_id, event_type="") -> bool:
    """
    Add ``event_id`` to the ledger and trim it to the newest
    PROCESSED_EVENT_LIMIT rows. Returns False if another worker recorded it first.
    """
    db.session.add(ProcessedEvent(event_id=event_id, event_type=event_type or ""))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info("Event %s already recorded by a concurrent delivery", event_id)
        return False

    limit = current_app.config.get("PROCESSED_EVENT_LIMIT", 1000)
    cutoff = (
        db.session.query(ProcessedEvent.id)
        .order_by(ProcessedEvent.id.desc())
        .offset(limit)
        .limit(1)
        .scalar()
    )
    if cutoff is not None:
        trimmed = ProcessedEvent.query.filter(ProcessedEvent.id <= cutoff).delete(synchronize_session=False)
        logger.debug("Ledger trimmed by %d row(s)", trimmed)
    db.session.commit()
    return True


def ledger_size() -> int:
    return ProcessedEvent.query.count()


# ── Entry point ──────────────────────────────────────────────────────────────

def process_event(payload: bytes, signature_header: str) -> dict:
    """
    Admit and apply one gateway event.

    Returns:
        {"status": "processed" | "noop" | "duplicate" | "ignored",
         "event_id": ..., "event_type": ...}

    Raises:
        AuthenticationError: signature verification failed.
        ValidationError: body is not a JSON event envelope.
    """
    verify_signature(payload, signature_header)

    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationError("Malformed event payload")
    if not isinstance(event, dict) or not event.get("id"):
        raise ValidationError("Event id is missing")

    event_id = event["id"]
    event_type = event.get("type", "")
    log_extra = {"event_type": event_type}

    if is_processed(event_id):
        logger.info("Event %s already processed; acknowledged", event_id, extra=log_extra)
        return {"status": "duplicate", "event_id": event_id, "event_type": event_type}

    handler = _HANDLERS.get(event_type)
    obj = (event.get("data") or {}).get("object") or {}
    if handler is None:
        logger.info("Event %s of unhandled type acknowledged", event_id, extra=log_extra)
        outcome = "ignored"
    else:
        try:
            outcome = handler(obj)
        except Exception:
            db.session.rollback()
            logger.exception("Event %s handling failed; left for gateway retry", event_id, extra=log_extra)
            raise

    record_processed(event_id, event_type)
    logger.info("Event %s %s", event_id, outcome, extra=log_extra)
    return {"status": outcome, "event_id": event_id, "event_type": event_type}


# ── Shared helpers ───────────────────────────────────────────────────────────

def _enrollments_from_metadata(metadata) -> list[Enrollment]:
    raw = (metadata or {}).get("enrollment_ids") or ""
    ids = [int(part) for part in raw.split(",") if part.strip().isdigit()]
    if not ids:
        return []
    return Enrollment.query.filter(Enrollment.id.in_(ids)).order_by(Enrollment.id).all()


def _customer(session) -> dict:
    details = session.get("customer_details") or {}
    return {
        "email": details.get("email") or session.get("customer_email") or "",
        "name": details.get("name") or "",
        "phone": details.get("phone") or "",
    }


def _precreate_account(customer):
    """Commit the account before the completion transaction so a creation race cannot roll it back."""
    if not customer["email"]:
        return None
    try:
        account = account_service.get_or_create_account(customer["email"], customer["name"])
    except ValidationError:
        logger.warning("Gateway reported unusable customer email %r; no account link", customer["email"])
        return None
    db.session.commit()
    NotificationService.deliver([account_service.pop_welcome_notice(account)])
    return account


# ── checkout.session.completed ───────────────────────────────────────────────

def _handle_checkout_completed(session) -> str:
    session_id = session.get("id")
    if not session_id:
        logger.warning("Checkout completion without session id; acknowledged",
                       extra={"event_type": EVENT_CHECKOUT_COMPLETED})
        return "noop"
    if session.get("payment_status") not in (None, "paid", "no_payment_required"):
        logger.info("Checkout session %s completed unpaid (%s); waiting for payment",
                    session_id, session.get("payment_status"))
        return "noop"

    metadata = session.get("metadata") or {}
    customer = _customer(session)

    enrollments = record_store.enrollments_for_session(session_id) or _enrollments_from_metadata(metadata)
    if enrollments and not any(e.status in ("pending", "failed") for e in enrollments):
        logger.info("Checkout session %s already completed; no-op", session_id)
        return "noop"

    account = _precreate_account(customer)

    if enrollments:
        winners = _complete_existing(enrollments, session, customer)
    else:
        winners = _create_completed(session, metadata, customer)
    if not winners:
        logger.info("Checkout session %s produced no new completion", session_id)
        return "noop"

    now = _utcnow()
    pending = []
    for enrollment in winners:
        if account is not None:
            account_service.link_enrollment(enrollment, account)
        enrollment.append_note(f"Payment completed via gateway (session {session_id})")

    expired_workshops = _convert_claim(metadata, winners, now)

    for enrollment in winners:
        pending.append(NotificationService.enqueue(
            "enrollment_confirmation",
            recipient=enrollment.customer_email,
            context=enrollment_context(enrollment),
            enrollment_id=enrollment.id,
        ))
        pending.append(enqueue_admin_enrollment(enrollment))
    db.session.commit()
    NotificationService.deliver(pending)

    _trim_carts(metadata, account, [e.workshop_id for e in winners])
    for workshop_id in expired_workshops:
        waitlist_service.promote_next(workshop_id)

    logger.info(
        "Checkout session %s completed enrollments=%s account=%s",
        session_id, [e.id for e in winners], account.id if account else None,
    )
    return "processed"


def _complete_existing(enrollments, session, customer) -> list[Enrollment]:
    """CAS each pending/failed row of the session to completed; return the rows this call won."""
    session_id = session["id"]
    amount_total = session.get("amount_total")
    currency = session.get("currency")
    winners = []
    for enrollment in enrollments:
        fields = {
            "gateway_session_id": session_id,
            "gateway_payment_intent_id": session.get("payment_intent"),
            "gateway_customer_id": session.get("customer"),
            "completed_at": _utcnow(),
        }
        if currency:
            fields["currency"] = currency
        if len(enrollments) == 1 and amount_total is not None:
            fields["amount"] = from_cents(amount_total)
        if not record_store.transition_enrollment(enrollment.id, ("pending", "failed"), "completed", **fields):
            continue
        enrollment.customer_email = enrollment.customer_email or account_service.normalize_email(customer["email"])
        enrollment.customer_name = enrollment.customer_name or customer["name"]
        enrollment.customer_phone = enrollment.customer_phone or customer["phone"]
        winners.append(enrollment)
    return winners


def _purchased_items(metadata) -> list[dict]:
    if metadata.get("is_cart") == "true":
        data = json.loads(metadata.get("cart_data") or "[]")
        if not isinstance(data, list):
            raise ValueError("cart_data is not a list")
        return [
            {"id": int(item["id"]), "pricing_option": item.get("pricing_option") or "", "price": item.get("price")}
            for item in data
        ]
    if not metadata.get("workshop_id"):
        return []
    return [{"id": int(metadata["workshop_id"]), "pricing_option": metadata.get("pricing_option") or "", "price": None}]


def _create_completed(session, metadata, customer) -> list[Enrollment]:
    """First-time creation path: no pending rows exist for this session."""
    session_id = session["id"]
    try:
        items = _purchased_items(metadata)
    except (ValueError, KeyError, TypeError) as exc:
        logger.error("Checkout session %s carries malformed cart metadata: %s", session_id, exc,
                     extra={"event_type": EVENT_CHECKOUT_COMPLETED})
        return []
    if not items:
        logger.error("Checkout session %s has no workshop in metadata", session_id,
                     extra={"event_type": EVENT_CHECKOUT_COMPLETED})
        return []

    now = _utcnow()
    created = []
    for item in items:
        workshop = db.session.get(Workshop, item["id"])
        if workshop is None:
            logger.error("Checkout session %s references unknown workshop %s", session_id, item["id"])
            continue
        spots = record_store.remaining_spots(workshop)
        if spots is not None and spots <= 0:
            # Payment already captured; honour it and let an administrator resolve the overbooking.
            logger.warning("Checkout session %s overbooks workshop %s", session_id, workshop.id,
                           extra={"workshop_id": workshop.id})
        if len(items) == 1 and session.get("amount_total") is not None:
            amount = from_cents(session["amount_total"])
        elif item["price"] is not None:
            amount = Decimal(str(item["price"]))
        else:
            amount = Decimal(str(workshop.effective_price(item["pricing_option"])))
        enrollment = Enrollment(
            workshop_id=workshop.id,
            customer_name=customer["name"],
            customer_email=account_service.normalize_email(customer["email"]),
            customer_phone=customer["phone"],
            pricing_option=workshop.effective_option_id(item["pricing_option"]),
            amount=amount,
            currency=session.get("currency") or current_app.config.get("CURRENCY", "usd"),
            payment_method="gateway",
            gateway_session_id=session_id,
            gateway_payment_intent_id=session.get("payment_intent"),
            gateway_customer_id=session.get("customer"),
            status="completed",
            completed_at=now,
        )
        db.session.add(enrollment)
        created.append(enrollment)

    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent delivery of the same session created the rows first.
        db.session.rollback()
        logger.info("Checkout session %s rows created concurrently; no-op", session_id)
        return []
    return created


def _convert_claim(metadata, winners, now) -> list[int]:
    """
    Convert the waitlist entry referenced by the checkout, in the caller's transaction.

    Returns:
        Workshop ids whose claim had expired and must be re-offered.
    """
    entry_id = metadata.get("waitlist_entry_id")
    token = metadata.get("waitlist_token")
    if not entry_id or not token:
        return []

    entry_id = int(entry_id) if str(entry_id).isdigit() else None
    entry = db.session.get(WaitlistEntry, entry_id) if entry_id else None
    enrollment = next((e for e in winners if entry is not None and e.workshop_id == entry.workshop_id), winners[0])
    try:
        token_service.validate(
            token, entry_id, consume=True, target="converted", commit=False,
            enrollment_id=enrollment.id, converted_at=now,
        )
    except TokenExpired as exc:
        enrollment.append_note(f"Waitlist claim for entry {exc.entry_id} had expired; enrolled without it")
        logger.info("Waitlist entry %s expired before checkout completed", exc.entry_id)
        return [enrollment.workshop_id]
    except (TokenNotFound, TokenMismatch, TokenAlreadyClaimed) as exc:
        logger.warning("Waitlist conversion skipped for entry %s: %s", entry_id, exc)
        return []

    enrollment.waitlist_entry_id = enrollment.waitlist_entry_id or entry_id
    enrollment.append_note(f"Converted from waitlist entry {entry_id}")
    return []


def _trim_carts(metadata, account, workshop_ids):
    """Remove purchased workshops from the paying cart (and the account's cart)."""
    owners = []
    owner = CartOwner.from_ref(metadata.get("owner"))
    if owner is not None:
        owners.append(owner)
    if account is not None:
        account_owner = CartOwner.account(account.id)
        if account_owner not in owners:
            owners.append(account_owner)
    for target in owners:
        removed = cart_store.remove_workshops(target, workshop_ids)
        if removed:
            logger.info("Removed %d purchased item(s) from cart %s", removed, target.ref)


# ── charge.refunded ──────────────────────────────────────────────────────────

def _latest_refund_id(charge):
    refunds = (charge.get("refunds") or {}).get("data") or []
    return refunds[0].get("id") if refunds else charge.get("refund")


def _handle_charge_refunded(charge) -> str:
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        logger.info("Refund event without payment intent; acknowledged")
        return "noop"

    enrollments = record_store.enrollments_for_payment_intent(payment_intent_id)
    if not enrollments:
        logger.info("No enrollment for refunded payment intent %s", payment_intent_id)
        return "noop"

    refunded_cents = int(charge.get("amount_refunded") or 0)
    accounted = sum(to_cents(e.refund_amount) for e in enrollments if e.refund_amount is not None)
    remaining = refunded_cents - accounted
    refund_id = _latest_refund_id(charge)
    now = _utcnow()

    if remaining <= 0:
        for enrollment in enrollments:
            if enrollment.status in ("completed", "refunded"):
                enrollment.append_note("Webhook received: charge.refunded (already processed)")
        db.session.commit()
        logger.info("Refund on %s already accounted for", payment_intent_id)
        return "noop"

    freed: dict[int, int] = {}
    pending = []
    changed = False
    for enrollment in enrollments:
        if remaining <= 0:
            break
        if enrollment.status != "completed":
            logger.info("Refund skips enrollment %s in status %s", enrollment.id, enrollment.status)
            continue
        prior = enrollment.refund_amount
        outstanding = to_cents(enrollment.amount) - to_cents(prior)
        if outstanding <= 0:
            continue

        if remaining >= outstanding:
            won = record_store.transition_enrollment(
                enrollment.id, "completed", "refunded",
                refund_id=refund_id, refund_amount=enrollment.amount, refunded_at=now,
            )
            if not won:
                continue
            remaining -= outstanding
            freed[enrollment.workshop_id] = freed.get(enrollment.workshop_id, 0) + 1
            enrollment.append_note(f"Refund processed via webhook. Amount: ${from_cents(outstanding)}")
        else:
            new_total = from_cents(to_cents(prior) + remaining)
            if not record_store.annotate_partial_refund(
                enrollment.id, prior, refund_id=refund_id, refund_amount=new_total, refunded_at=now,
            ):
                continue
            enrollment.append_note(f"Partial refund processed via webhook. Amount: ${from_cents(remaining)}")
            remaining = 0

        changed = True
        pending.append(NotificationService.enqueue(
            "refund_confirmation",
            recipient=enrollment.customer_email,
            context=enrollment_context(enrollment, refund_amount="%.2f" % float(enrollment.refund_amount or 0)),
            enrollment_id=enrollment.id,
        ))

    db.session.commit()
    NotificationService.deliver(pending)

    for workshop_id, seats in freed.items():
        waitlist_service.on_seat_freed(workshop_id, seats)

    logger.info("Refund on %s applied: seats freed=%s", payment_intent_id, freed)
    return "processed" if changed else "noop"


# ── payment_intent.payment_failed ────────────────────────────────────────────

def _handle_payment_failed(intent) -> str:
    payment_intent_id = intent.get("id")
    error = (intent.get("last_payment_error") or {}).get("message") or "Unknown error"
    enrollments = _enrollments_from_metadata(intent.get("metadata")) or (
        record_store.enrollments_for_payment_intent(payment_intent_id) if payment_intent_id else []
    )

    failed = []
    for enrollment in enrollments:
        if record_store.transition_enrollment(
            enrollment.id, "pending", "failed", gateway_payment_intent_id=payment_intent_id,
        ):
            enrollment.append_note(f"Payment failed: {error}")
            failed.append(enrollment)

    if not failed:
        logger.info("Payment failure on %s matched no pending enrollment: %s", payment_intent_id, error)
        return "noop"

    pending = [
        NotificationService.enqueue(
            "payment_failed",
            recipient=enrollment.customer_email,
            context=enrollment_context(enrollment, error=error),
            enrollment_id=enrollment.id,
        )
        for enrollment in failed
    ]
    db.session.commit()
    NotificationService.deliver(pending)
    logger.warning("Payment failed for enrollments=%s: %s", [e.id for e in failed], error)
    return "processed"


_HANDLERS = {
    EVENT_CHECKOUT_COMPLETED: _handle_checkout_completed,
    EVENT_CHARGE_REFUNDED: _handle_charge_refunded,
    EVENT_PAYMENT_FAILED: _handle_payment_failed,
}
