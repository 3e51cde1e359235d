"""
Workshop Enrollment Platform
Cart Store — durable cart snapshots keyed by owner.

The owner is a tagged union, resolved once per request from the
authentication context:

    CartOwner.session("3f2a...")   anonymous visitor (cart cookie)
    CartOwner.account(42)          signed-in customer

Uniqueness of one line item per workshop is enforced by the
``uq_cart_item_workshop`` constraint, so concurrent adds from two tabs
cannot both land.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import AlreadyInCart, ItemNotFound, ValidationError
from app.models import db
from app.models.cart import Cart, CartItem

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CartOwner:
    """Either Session(key) or Account(id); never both."""

    kind: str
    key: str

    @classmethod
    def session(cls, key):
        if not key:
            raise ValidationError("Session key is required")
        return cls("session", str(key))

    @classmethod
    def account(cls, account_id):
        return cls("account", str(int(account_id)))

    @property
    def is_account(self):
        return self.kind == "account"

    @property
    def ref(self):
        """Compact reference carried through gateway metadata ("account:42")."""
        return f"{self.kind}:{self.key}"

    @classmethod
    def from_ref(cls, ref):
        kind, _, key = (ref or "").partition(":")
        if kind == "account" and key.isdigit():
            return cls.account(key)
        if kind == "session" and key:
            return cls.session(key)
        return None


# ── Reads ────────────────────────────────────────────────────────────────────

def get_cart(owner: CartOwner):
    return Cart.query.filter_by(owner_kind=owner.kind, owner_key=owner.key).first()


def _get_or_create_cart(owner: CartOwner) -> Cart:
    cart = get_cart(owner)
    if cart is not None:
        return cart
    cart = Cart(owner_kind=owner.kind, owner_key=owner.key)
    db.session.add(cart)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request created it first.
        db.session.rollback()
        cart = get_cart(owner)
    return cart


def list_items(owner: CartOwner) -> list[CartItem]:
    cart = get_cart(owner)
    return list(cart.items) if cart else []


def _touch(cart: Cart):
    cart.touched_at = _utcnow()


# ── Writes ───────────────────────────────────────────────────────────────────

def add_item(owner: CartOwner, workshop_id, pricing_option, unit_price) -> CartItem:
    """Insert a line item. Raises AlreadyInCart if the workshop is present."""
    cart = _get_or_create_cart(owner)
    if any(i.workshop_id == workshop_id for i in cart.items):
        raise AlreadyInCart(workshop_id)

    item = CartItem(
        workshop_id=workshop_id,
        pricing_option=pricing_option or "",
        unit_price=unit_price,
    )
    cart.items.append(item)
    _touch(cart)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyInCart(workshop_id)
    return item


def update_item(owner: CartOwner, workshop_id, pricing_option, unit_price) -> CartItem:
    cart = get_cart(owner)
    item = next((i for i in cart.items if i.workshop_id == workshop_id), None) if cart else None
    if item is None:
        raise ItemNotFound(workshop_id)
    item.pricing_option = pricing_option or ""
    item.unit_price = unit_price
    _touch(cart)
    db.session.commit()
    return item


def remove_item(owner: CartOwner, workshop_id):
    cart = get_cart(owner)
    item = next((i for i in cart.items if i.workshop_id == workshop_id), None) if cart else None
    if item is None:
        raise ItemNotFound(workshop_id)
    cart.items.remove(item)
    _touch(cart)
    db.session.commit()


def remove_workshops(owner: CartOwner, workshop_ids) -> int:
    """Drop the given workshops from the cart, ignoring ones not present."""
    cart = get_cart(owner)
    if cart is None or not workshop_ids:
        return 0
    wanted = {int(w) for w in workshop_ids}
    doomed = [i for i in cart.items if i.workshop_id in wanted]
    for item in doomed:
        cart.items.remove(item)
    if doomed:
        _touch(cart)
        db.session.commit()
    return len(doomed)


def clear(owner: CartOwner) -> int:
    cart = get_cart(owner)
    if cart is None:
        return 0
    count = len(cart.items)
    cart.items.clear()
    _touch(cart)
    db.session.commit()
    return count


def merge(session_owner: CartOwner, account_owner: CartOwner) -> list[int]:
    try:
        return _merge_once(session_owner, account_owner)
    except IntegrityError:
        # A concurrent add to the account cart raced us; re-read and retry once.
        db.session.rollback()
        return _merge_once(session_owner, account_owner)


def _merge_once(session_owner: CartOwner, account_owner: CartOwner) -> list[int]:
    """
    Merge the session cart into the account cart.

    Items only in the session cart are appended; for a workshop present in
    both, the account cart's line item wins. Afterwards the session items
    read here are deleted. Only those, so an add that lands concurrently in
    the session cart survives for the next merge.

    Returns:
        Workshop ids appended to the account cart.
    """
    session_cart = get_cart(session_owner)
    if session_cart is None or not session_cart.items:
        return []

    read_items = list(session_cart.items)
    read_ids = [i.id for i in read_items]

    account_cart = _get_or_create_cart(account_owner)
    present = {i.workshop_id for i in account_cart.items}
    appended = []
    for item in read_items:
        if item.workshop_id in present:
            continue
        account_cart.items.append(CartItem(
            workshop_id=item.workshop_id,
            pricing_option=item.pricing_option,
            unit_price=item.unit_price,
            added_at=item.added_at,
        ))
        present.add(item.workshop_id)
        appended.append(item.workshop_id)

    CartItem.query.filter(CartItem.id.in_(read_ids)).delete(synchronize_session="fetch")
    db.session.expire(session_cart, ["items"])
    _touch(account_cart)
    db.session.commit()

    logger.info(
        "Cart merged %s -> %s appended=%s cleared=%d",
        session_owner.ref, account_owner.ref, appended, len(read_ids),
    )
    return appended


def purge_expired(retention_days=30) -> int:
    """Delete carts untouched for ``retention_days``. Returns number of carts removed."""
    cutoff = _utcnow() - timedelta(days=retention_days)
    stale = Cart.query.filter(Cart.touched_at < cutoff).all()
    for cart in stale:
        db.session.delete(cart)
    db.session.commit()
    if stale:
        logger.info("Purged %d carts untouched since %s", len(stale), cutoff.isoformat())
    return len(stale)
