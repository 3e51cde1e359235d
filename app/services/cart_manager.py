"""
Workshop Enrollment Platform
Cart Manager — business rules on top of the Cart Store.

Validates line items against live Workshop state, prices them through the
workshop's pricing options and renders the cart snapshot returned by every
cart API call.

Errors (all from app.core.exceptions):
    AlreadyInCart        workshop already in the cart (cart left unchanged)
    WorkshopUnavailable  unknown / unpublished / checkout-disabled workshop
    CapacityExhausted    no seats left and the waitlist is disabled
    ItemNotFound         remove/update of a workshop that is not in the cart
"""

import logging
from decimal import Decimal

from app.core.exceptions import CapacityExhausted, WorkshopUnavailable
from app.models import db
from app.models.workshop import Workshop
from app.services import cart_store, record_store
from app.services.cart_store import CartOwner

logger = logging.getLogger(__name__)

MSG_ADDED = "Workshop added to cart."
MSG_REMOVED = "Item removed from cart."
MSG_UPDATED = "Cart updated."
MSG_CLEARED = "Cart cleared."
MSG_UNAVAILABLE = "Workshop not found or not available."
MSG_CHECKOUT_DISABLED = "Online enrollment is not available for this workshop."


def format_money(amount) -> str:
    return "$%.2f" % float(amount or 0)


def check_workshop(workshop_id) -> Workshop:
    """Return the workshop if a new line item for it is acceptable."""
    workshop = db.session.get(Workshop, workshop_id) if workshop_id else None
    if workshop is None or not workshop.is_published:
        raise WorkshopUnavailable(MSG_UNAVAILABLE, details={"workshop_id": workshop_id})
    if not workshop.checkout_enabled:
        raise WorkshopUnavailable(MSG_CHECKOUT_DISABLED, details={"workshop_id": workshop_id})
    spots = record_store.remaining_spots(workshop)
    if spots is not None and spots <= 0 and not workshop.waitlist_enabled:
        raise CapacityExhausted(workshop.id)
    return workshop


# ── Snapshot rendering ───────────────────────────────────────────────────────

def _item_dict(item, workshop=None):
    workshop = workshop or db.session.get(Workshop, item.workshop_id)
    option = workshop.find_option(item.pricing_option) if workshop else None
    return {
        "workshop_id": item.workshop_id,
        "title": workshop.title if workshop else "",
        "pricing_option": item.pricing_option,
        "pricing_option_label": option.label if option else "",
        "price": float(item.unit_price or 0),
        "price_formatted": format_money(item.unit_price),
        "added_at": item.added_at.isoformat() if item.added_at else None,
    }


def cart_total(items) -> Decimal:
    return sum((Decimal(str(i.unit_price or 0)) for i in items), Decimal("0"))


def snapshot(owner: CartOwner, items=None) -> dict:
    """Full current cart view: items, count, total."""
    items = cart_store.list_items(owner) if items is None else items
    total = cart_total(items)
    return {
        "items": [_item_dict(i) for i in items],
        "count": len(items),
        "total": float(total),
        "total_formatted": format_money(total),
    }


# ── Operations ───────────────────────────────────────────────────────────────

def add(owner: CartOwner, workshop_id, pricing_option=None) -> dict:
    workshop = check_workshop(workshop_id)
    option_id = workshop.effective_option_id(pricing_option)
    price = workshop.effective_price(pricing_option)
    cart_store.add_item(owner, workshop.id, option_id, price)
    logger.info("Cart add owner=%s workshop=%s option=%s price=%.2f", owner.ref, workshop.id, option_id, price)
    return snapshot(owner)


def update(owner: CartOwner, workshop_id, pricing_option) -> dict:
    """Switch an item's pricing option and re-price it."""
    workshop = record_store.get_workshop(workshop_id)
    option_id = workshop.effective_option_id(pricing_option)
    cart_store.update_item(owner, workshop.id, option_id, workshop.effective_price(pricing_option))
    return snapshot(owner)


def remove(owner: CartOwner, workshop_id) -> dict:
    cart_store.remove_item(owner, workshop_id)
    return snapshot(owner)


def clear(owner: CartOwner) -> dict:
    cart_store.clear(owner)
    return snapshot(owner)


def merge(session_owner: CartOwner, account_owner: CartOwner) -> dict:
    cart_store.merge(session_owner, account_owner)
    return snapshot(account_owner)


def validate(owner: CartOwner) -> tuple[list, list]:
    """
    Self-healing pass: re-check every line item against current state.

    Items whose workshop disappeared, was unpublished or closed for
    checkout, or ran out of seats without a waitlist are removed from the
    cart and returned separately with the reason.

    Returns:
        (valid_items, invalidated) where ``invalidated`` is a list of
        {"workshop_id", "title", "reason"} dicts.
    """
    valid, invalidated = [], []
    for item in cart_store.list_items(owner):
        try:
            check_workshop(item.workshop_id)
        except (WorkshopUnavailable, CapacityExhausted) as exc:
            workshop = db.session.get(Workshop, item.workshop_id)
            invalidated.append({
                "workshop_id": item.workshop_id,
                "title": workshop.title if workshop else "",
                "reason": str(exc),
            })
            continue
        valid.append(item)

    if invalidated:
        cart_store.remove_workshops(owner, [i["workshop_id"] for i in invalidated])
        logger.info("Cart validation dropped %d item(s) for %s", len(invalidated), owner.ref)
    return valid, invalidated
