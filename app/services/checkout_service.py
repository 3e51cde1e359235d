"""
Workshop Enrollment Platform
Checkout Orchestrator — turns a cart (or a single workshop) into a
gateway checkout session.

Flow:
    1. validate items against live workshop state
    2. write one ``pending`` Enrollment per item and commit
    3. call the gateway with line items (cents) and correlation metadata
    4. on success, stamp the gateway session id on the pending rows;
       on failure, cancel the pending rows and raise DependencyError

The cart itself is never modified here. It is trimmed only when the
webhook confirms completion.

Metadata round-tripped through the gateway (all values strings):
    is_cart, cart_data (JSON [{id, pricing_option, price}]), workshop_ids,
    enrollment_ids, owner, and for single items workshop_id/pricing_option;
    for waitlist claims waitlist_entry_id and waitlist_token.
"""

import json
import logging
from decimal import Decimal

from flask import current_app

from app.core.exceptions import CapacityExhausted, DependencyError, ValidationError
from app.integrations.payment_gateway import payment_gateway, to_cents
from app.models import db
from app.models.enrollment import Enrollment
from app.services import cart_manager, record_store, token_service
from app.services.account_service import validated_email
from app.services.cart_store import CartOwner
from app.services.waitlist_service import held_claims

logger = logging.getLogger(__name__)

MSG_EMPTY_CART = "Your cart is empty."
MSG_FULL_WAITLIST = "This workshop is full. Please join the waitlist."
MSG_WRONG_WORKSHOP = "This waitlist link is for a different workshop."


def _success_url():
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    return f"{site}/enrollment/success?session_id={{CHECKOUT_SESSION_ID}}"


def _cancel_url():
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    return f"{site}/enrollment/cancel"


def _ensure_public_seat(workshop):
    """Seats held by outstanding waitlist claims are not for sale to others."""
    spots = record_store.remaining_spots(workshop)
    if spots is None:
        return
    if spots - held_claims(workshop.id) <= 0:
        if workshop.waitlist_enabled:
            raise CapacityExhausted(workshop.id, MSG_FULL_WAITLIST)
        raise CapacityExhausted(workshop.id)


# ── Entry points ─────────────────────────────────────────────────────────────

def checkout_cart(owner: CartOwner, customer_email=None, customer_name="", customer_phone=""):
    """
    Start a gateway checkout for every valid item in ``owner``'s cart.

    Returns:
        dict with ``checkout_url``, ``session_id``, ``enrollment_ids`` and
        ``removed_items`` (items dropped by the validation pass).
    """
    valid, invalidated = cart_manager.validate(owner)
    if not valid:
        raise ValidationError(MSG_EMPTY_CART, details={"removed_items": invalidated})

    lines = []
    for item in valid:
        workshop = record_store.get_workshop(item.workshop_id)
        _ensure_public_seat(workshop)
        lines.append((workshop, item.pricing_option, Decimal(str(item.unit_price or 0))))

    result = _start_checkout(
        lines,
        owner=owner,
        is_cart=True,
        customer_email=customer_email,
        customer_name=customer_name,
        customer_phone=customer_phone,
    )
    result["removed_items"] = invalidated
    return result


def checkout_workshop(
    workshop_id,
    pricing_option=None,
    customer_email=None,
    customer_name="",
    customer_phone="",
    waitlist_token=None,
    entry_id=None,
    owner: CartOwner | None = None,
):
    """
    Start a gateway checkout for a single workshop.

    With ``waitlist_token``/``entry_id`` the buyer is redeeming a claim: the
    token is checked here but only consumed when the webhook confirms
    payment, and the seat held by the claim is the one being bought.
    """
    workshop = cart_manager.check_workshop(workshop_id)

    entry = None
    if waitlist_token:
        entry = record_store.get_waitlist_entry(
            token_service.validate(waitlist_token, entry_id, consume=False)
        )
        if entry.workshop_id != workshop.id:
            raise ValidationError(MSG_WRONG_WORKSHOP, details={"entry_id": entry.id})
        spots = record_store.remaining_spots(workshop)
        if spots is not None and spots <= 0:
            raise CapacityExhausted(workshop.id)
        customer_email = customer_email or entry.customer_email
        customer_name = customer_name or entry.customer_name
        customer_phone = customer_phone or entry.customer_phone
    else:
        _ensure_public_seat(workshop)

    option_id = workshop.effective_option_id(pricing_option)
    price = Decimal(str(workshop.effective_price(pricing_option)))
    return _start_checkout(
        [(workshop, option_id, price)],
        owner=owner,
        is_cart=False,
        customer_email=customer_email,
        customer_name=customer_name,
        customer_phone=customer_phone,
        entry=entry,
        waitlist_token=waitlist_token,
    )


# ── Orchestration ────────────────────────────────────────────────────────────

def _metadata(lines, enrollments, *, owner, is_cart, entry, waitlist_token):
    metadata = {
        "is_cart": "true" if is_cart else "false",
        "cart_data": json.dumps([
            {"id": workshop.id, "pricing_option": option_id, "price": float(price)}
            for workshop, option_id, price in lines
        ], separators=(",", ":")),
        "workshop_ids": ",".join(str(w.id) for w, _, _ in lines),
        "enrollment_ids": ",".join(str(e.id) for e in enrollments),
    }
    if owner is not None:
        metadata["owner"] = owner.ref
    if not is_cart:
        workshop, option_id, _ = lines[0]
        metadata["workshop_id"] = str(workshop.id)
        metadata["pricing_option"] = option_id or ""
    if entry is not None:
        metadata["waitlist_entry_id"] = str(entry.id)
        metadata["waitlist_token"] = waitlist_token
    return metadata


def _start_checkout(lines, *, owner, is_cart, customer_email, customer_name, customer_phone,
                    entry=None, waitlist_token=None):
    if not payment_gateway.is_configured():
        raise DependencyError("payment_gateway", "Payment gateway is not configured")

    email = validated_email(customer_email) if customer_email else ""
    currency = current_app.config.get("CURRENCY", "usd")
    account_id = int(owner.key) if owner is not None and owner.is_account else None

    enrollments = []
    for workshop, option_id, price in lines:
        enrollment = Enrollment(
            workshop_id=workshop.id,
            account_id=account_id,
            customer_name=(customer_name or "").strip(),
            customer_email=email,
            customer_phone=(customer_phone or "").strip(),
            pricing_option=option_id or "",
            amount=price,
            currency=currency,
            payment_method="gateway",
            status="pending",
            waitlist_entry_id=entry.id if entry is not None else None,
        )
        db.session.add(enrollment)
        enrollments.append(enrollment)
    db.session.flush()
    metadata = _metadata(
        lines, enrollments, owner=owner, is_cart=is_cart, entry=entry, waitlist_token=waitlist_token,
    )
    db.session.commit()

    result = payment_gateway.create_checkout_session(
        line_items=[
            {
                "name": workshop.title,
                "description": getattr(workshop.find_option(option_id), "label", ""),
                "unit_amount": to_cents(price),
            }
            for workshop, option_id, price in lines
        ],
        metadata=metadata,
        success_url=_success_url(),
        cancel_url=_cancel_url(),
        customer_email=email or None,
        currency=currency,
    )

    session_id = (result.data or {}).get("id") if result.ok else None
    if not session_id:
        error = result.error or "Gateway response carried no session id"
        for enrollment in enrollments:
            if record_store.transition_enrollment(enrollment.id, "pending", "cancelled"):
                enrollment.append_note(f"Checkout could not be started: {error}")
        db.session.commit()
        logger.error(
            "Checkout session creation failed enrollments=%s status=%s attempts=%s: %s",
            [e.id for e in enrollments], result.status_code, result.attempts, error,
        )
        raise DependencyError("payment_gateway", error, status_code=result.status_code)

    for enrollment in enrollments:
        enrollment.gateway_session_id = session_id
    db.session.commit()

    logger.info(
        "Checkout session %s created for workshops=%s enrollments=%s owner=%s",
        session_id, metadata["workshop_ids"], metadata["enrollment_ids"], owner.ref if owner else "-",
    )
    return {
        "checkout_url": result.data.get("url"),
        "session_id": session_id,
        "enrollment_ids": [e.id for e in enrollments],
    }
