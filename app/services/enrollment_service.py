"""
Workshop Enrollment Platform
Enrollment Service — administrator operations on enrollments.

    create_manual   record an offline payment directly as ``completed``
                    (never touches the processed-event ledger)
    refund          outbound refund through the payment gateway
    set_status      administrator override of the status machine
    enrollment_query  filtered listing for the admin API
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from app.core.exceptions import ConflictError, DependencyError, ValidationError
from app.integrations.payment_gateway import payment_gateway, to_cents
from app.models import db
from app.models.enrollment import ENROLLMENT_STATUSES, Enrollment
from app.services import account_service, record_store, waitlist_service
from app.services.account_service import validated_email
from app.services.notification import NotificationService, enqueue_admin_enrollment, enrollment_context

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def _decimal(value, field):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number.", details={field: "invalid"})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number.", details={field: "invalid"})
    return amount.quantize(Decimal("0.01"))


# ── Manual enrollment ────────────────────────────────────────────────────────

def create_manual(
    workshop_id,
    *,
    customer_email,
    customer_name="",
    customer_phone="",
    pricing_option=None,
    amount=None,
    waitlist_entry_id=None,
    note="",
):
    """
    Record an offline payment as a ``completed`` enrollment.

    The account is created/linked by email, and a confirmation plus the
    administrator notice are queued.
    A referenced waitlist entry in ``notified``/``claimed`` is converted.
    """
    workshop = record_store.get_workshop(workshop_id)
    email = validated_email(customer_email)
    price = (
        _decimal(amount, "amount") if amount not in (None, "")
        else Decimal(str(workshop.effective_price(pricing_option)))
    )
    if price < 0:
        raise ValidationError("amount must not be negative.", details={"amount": "negative"})

    entry = record_store.get_waitlist_entry(waitlist_entry_id) if waitlist_entry_id else None
    if entry is not None and entry.workshop_id != workshop.id:
        raise ValidationError("Waitlist entry belongs to a different workshop.",
                              details={"waitlist_entry_id": entry.id})
    if entry is not None and entry.status not in ("notified", "claimed"):
        raise ValidationError("Waitlist entry is not awaiting conversion.", details={"status": entry.status})

    spots = record_store.remaining_spots(workshop)
    if spots is not None and spots <= 0:
        logger.warning("Manual enrollment over capacity on workshop=%s", workshop.id)

    account = account_service.get_or_create_account(email, customer_name)
    db.session.commit()
    NotificationService.deliver([account_service.pop_welcome_notice(account)])

    enrollment = Enrollment(
        workshop_id=workshop.id,
        account_id=account.id,
        customer_name=(customer_name or "").strip(),
        customer_email=email,
        customer_phone=(customer_phone or "").strip(),
        pricing_option=workshop.effective_option_id(pricing_option),
        amount=price,
        payment_method="manual",
        status="completed",
        completed_at=_utcnow(),
    )
    enrollment.append_note("Manual enrollment recorded by administrator" + (f": {note}" if note else ""))
    db.session.add(enrollment)
    db.session.flush()

    if entry is not None:
        if not waitlist_service.convert_manually(entry.id, enrollment.id):
            db.session.rollback()
            raise ValidationError(
                "Waitlist entry is not awaiting conversion.", details={"status": entry.status},
            )
        enrollment.waitlist_entry_id = entry.id
        enrollment.append_note(f"Converted from waitlist entry {entry.id}")

    pending = [
        NotificationService.enqueue(
            "enrollment_confirmation",
            recipient=enrollment.customer_email,
            context=enrollment_context(enrollment),
            enrollment_id=enrollment.id,
        ),
        enqueue_admin_enrollment(enrollment),
    ]
    db.session.commit()
    NotificationService.deliver(pending)

    logger.info("Manual enrollment %s created for workshop=%s account=%s", enrollment.id, workshop.id, account.id)
    return enrollment


# ── Refund ───────────────────────────────────────────────────────────────────

def refund(enrollment_id, amount=None, reason=""):
    """
    Refund a gateway payment in full (``amount`` None) or in part.

    Returns:
        dict with ``enrollment``, ``refund_id``, ``amount`` and ``full``.

    Raises:
        ValidationError: not refundable, or amount outside (0, amount paid].
        ConflictError: a refund was already issued for this enrollment.
        DependencyError: the gateway refused or was unreachable.
    """
    enrollment = record_store.get_enrollment(enrollment_id)
    if enrollment.status != "completed":
        raise ValidationError("Only completed enrollments can be refunded.", details={"status": enrollment.status})
    if not enrollment.gateway_payment_intent_id:
        raise ValidationError("No gateway payment is recorded for this enrollment.")
    if enrollment.refund_id:
        raise ConflictError(
            "Enrollment", "refund_id", enrollment.refund_id,
            message="A refund has already been issued for this enrollment.",
        )

    paid = Decimal(str(enrollment.amount or 0))
    value = paid if amount in (None, "") else _decimal(amount, "amount")
    if value <= 0 or value > paid:
        raise ValidationError(
            "Refund amount must be greater than zero and no more than the amount paid.",
            details={"amount": str(value), "paid": str(paid)},
        )

    result = payment_gateway.create_refund(
        enrollment.gateway_payment_intent_id, amount_cents=to_cents(value), reason=reason,
    )
    if not result.ok:
        logger.error("Refund for enrollment %s failed: %s", enrollment.id, result.error)
        raise DependencyError("payment_gateway", result.error or "Refund failed", status_code=result.status_code)

    refund_id = (result.data or {}).get("id")
    full = value == paid
    fields = {
        "refund_id": refund_id,
        "refund_amount": value,
        "refunded_at": _utcnow(),
        "refund_reason": reason or None,
    }
    if full:
        won = record_store.transition_enrollment(enrollment.id, "completed", "refunded", **fields)
    else:
        won = record_store.annotate_partial_refund(enrollment.id, enrollment.refund_amount, **fields)

    pending = []
    if won:
        label = "Refund" if full else "Partial refund"
        enrollment.append_note(f"{label} issued by administrator. Amount: ${value}" + (f" ({reason})" if reason else ""))
        pending.append(NotificationService.enqueue(
            "refund_confirmation",
            recipient=enrollment.customer_email,
            context=enrollment_context(enrollment, refund_amount="%.2f" % value),
            enrollment_id=enrollment.id,
        ))
    else:
        db.session.refresh(enrollment)
        enrollment.append_note(f"Refund {refund_id} issued; status already updated by gateway event")
    db.session.commit()
    NotificationService.deliver(pending)

    if full and won:
        waitlist_service.on_seat_freed(enrollment.workshop_id)

    logger.info("Enrollment %s refunded %s (full=%s) refund_id=%s", enrollment.id, value, full, refund_id)
    return {"enrollment": enrollment, "refund_id": refund_id, "amount": float(value), "full": full}


# ── Override & listing ───────────────────────────────────────────────────────

def set_status(enrollment_id, status, note=""):
    """Administrator override: any status, with an audit note. Frees a seat when leaving ``completed``."""
    if status not in ENROLLMENT_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(sorted(ENROLLMENT_STATUSES))}",
            details={"status": status},
        )
    enrollment = record_store.get_enrollment(enrollment_id)
    previous = record_store.override_enrollment_status(enrollment, status, note)
    db.session.commit()

    if previous == "completed" and status in ("cancelled", "refunded"):
        waitlist_service.on_seat_freed(enrollment.workshop_id)
    return enrollment


def enrollment_query(workshop_id=None, status="", email=""):
    """Filtered, newest-first enrollment query (unexecuted, for pagination)."""
    q = Enrollment.query
    if workshop_id:
        q = q.filter_by(workshop_id=workshop_id)
    if status:
        q = q.filter_by(status=status)
    if email:
        q = q.filter_by(customer_email=account_service.normalize_email(email))
    return q.order_by(Enrollment.created_at.desc(), Enrollment.id.desc())
