"""
Workshop Enrollment Platform
Cart blueprint — multi-item cart for guests and signed-in customers.

Endpoints:
    GET    /api/v1/cart                      snapshot (runs the self-healing validation pass)
    POST   /api/v1/cart/items                add {workshop_id, pricing_option}
    PUT    /api/v1/cart/items/<workshop_id>  change pricing option
    DELETE /api/v1/cart/items/<workshop_id>  remove one item
    DELETE /api/v1/cart                      clear
    POST   /api/v1/cart/merge                merge the guest cart into the account cart

Every response carries ``success``, a human-readable ``message`` and the
full ``cart`` snapshot, failures included.

Owner resolution (once per request):
    signed-in  → CartOwner.account(session["account_id"]); a guest cart
                 cookie on the same request is merged in and the cookie dropped
    guest      → CartOwner.session(<fb_cart_session cookie>), minted on first use
"""

import logging
import re
import secrets

from flask import Blueprint, current_app, g, jsonify, request

from app.auth import current_account_id
from app.blueprints import json_body
from app.core.exceptions import (
    AlreadyInCart,
    CapacityExhausted,
    NotFoundError,
    ValidationError,
    WorkshopUnavailable,
)
from app.models import db
from app.services import cart_manager
from app.services.cart_store import CartOwner

logger = logging.getLogger(__name__)

cart_bp = Blueprint("cart", __name__, url_prefix="/api/v1/cart")

_SESSION_KEY_RE = re.compile(r"^[0-9a-f]{32}$")
_COOKIE_MAX_AGE = 30 * 24 * 3600


# ── Owner resolution ─────────────────────────────────────────────────────────

def _cookie_name():
    return current_app.config.get("CART_COOKIE_NAME", "fb_cart_session")


def _session_key_from_cookie():
    key = request.cookies.get(_cookie_name(), "")
    return key if _SESSION_KEY_RE.match(key) else None


def resolve_cart_owner(auto_merge=True) -> CartOwner:
    """Resolve (and cache on ``g``) the cart owner for this request."""
    if getattr(g, "cart_owner", None) is not None:
        return g.cart_owner

    account_id = current_account_id()
    session_key = _session_key_from_cookie()
    if account_id is not None:
        owner = CartOwner.account(account_id)
        if session_key and auto_merge:
            cart_manager.merge(CartOwner.session(session_key), owner)
            g.drop_cart_cookie = True
    else:
        if session_key is None:
            session_key = secrets.token_hex(16)
            g.new_cart_cookie = session_key
        owner = CartOwner.session(session_key)

    g.cart_owner = owner
    return owner


def apply_cart_cookie(response):
    """after_request hook: persist a freshly minted guest key or drop a merged one."""
    new_key = g.pop("new_cart_cookie", None)
    drop = g.pop("drop_cart_cookie", False)
    g.pop("cart_owner", None)
    if new_key:
        response.set_cookie(
            _cookie_name(), new_key, max_age=_COOKIE_MAX_AGE, httponly=True, samesite="Lax",
            secure=request.is_secure,
        )
    elif drop:
        response.delete_cookie(_cookie_name())
    return response


def forget_cart_owner(exc=None):
    """teardown hook: ``g`` outlives the request when an app context is already pushed."""
    for name in ("cart_owner", "new_cart_cookie", "drop_cart_cookie"):
        g.pop(name, None)


cart_bp.after_request(apply_cart_cookie)
cart_bp.teardown_request(forget_cart_owner)


def _envelope(message, cart, *, success=True, status=200, **extra):
    body = {"success": success, "message": message, "cart": cart}
    body.update(extra)
    return jsonify(body), status


def _workshop_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("workshop_id is required", details={"workshop_id": "required"})


# ── Error handlers (cart snapshot always returned) ───────────────────────────

def _failure(exc, status):
    db.session.rollback()
    owner = resolve_cart_owner()
    return _envelope(
        str(exc), cart_manager.snapshot(owner), success=False, status=status,
        reason=getattr(exc, "reason", None),
    )


@cart_bp.errorhandler(AlreadyInCart)
def _already_in_cart(exc):
    return _failure(exc, 409)


@cart_bp.errorhandler(NotFoundError)
def _not_found(exc):
    return _failure(exc, 404)


@cart_bp.errorhandler(WorkshopUnavailable)
@cart_bp.errorhandler(CapacityExhausted)
def _unavailable(exc):
    return _failure(exc, 422)


@cart_bp.errorhandler(ValidationError)
def _invalid(exc):
    return _failure(exc, 400)


# ── Endpoints ────────────────────────────────────────────────────────────────

@cart_bp.route("", methods=["GET"])
def get_cart():
    owner = resolve_cart_owner()
    _, invalidated = cart_manager.validate(owner)
    message = ""
    if invalidated:
        message = "Some items were removed from your cart because they are no longer available."
    return _envelope(message, cart_manager.snapshot(owner), removed_items=invalidated)


@cart_bp.route("/items", methods=["POST"])
def add_item():
    data = json_body()
    owner = resolve_cart_owner()
    cart = cart_manager.add(owner, _workshop_id(data.get("workshop_id")), data.get("pricing_option"))
    return _envelope(cart_manager.MSG_ADDED, cart, status=201)


@cart_bp.route("/items/<int:workshop_id>", methods=["PUT"])
def update_item(workshop_id):
    data = json_body()
    owner = resolve_cart_owner()
    cart = cart_manager.update(owner, workshop_id, data.get("pricing_option"))
    return _envelope(cart_manager.MSG_UPDATED, cart)


@cart_bp.route("/items/<int:workshop_id>", methods=["DELETE"])
def remove_item(workshop_id):
    owner = resolve_cart_owner()
    cart = cart_manager.remove(owner, workshop_id)
    return _envelope(cart_manager.MSG_REMOVED, cart)


@cart_bp.route("", methods=["DELETE"])
def clear_cart():
    owner = resolve_cart_owner()
    cart = cart_manager.clear(owner)
    return _envelope(cart_manager.MSG_CLEARED, cart)


@cart_bp.route("/merge", methods=["POST"])
def merge_cart():
    account_id = current_account_id()
    if account_id is None:
        return jsonify({"success": False, "message": "Sign in to merge your cart."}), 401
    owner = resolve_cart_owner(auto_merge=False)
    session_key = _session_key_from_cookie()
    if session_key:
        cart = cart_manager.merge(CartOwner.session(session_key), owner)
        g.drop_cart_cookie = True
    else:
        cart = cart_manager.snapshot(owner)
    return _envelope("Cart merged.", cart)
