"""
Workshop Enrollment Platform
Checkout blueprint — start a hosted gateway checkout.

Endpoints:
    POST /api/v1/checkout/cart       the whole cart {email, name, phone}
    POST /api/v1/checkout/workshop   one workshop {workshop_id, pricing_option,
                                     email, name, phone, waitlist_token, entry_id}

Both answer ``{"checkout_url", "session_id", "enrollment_ids"}``; the
storefront redirects the customer to ``checkout_url``.
"""

import logging

from flask import Blueprint, jsonify

from app.blueprints import json_body, register_service_errors
from app.blueprints.cart_bp import apply_cart_cookie, forget_cart_owner, resolve_cart_owner
from app.core.exceptions import ValidationError
from app.services import checkout_service

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/v1/checkout")
register_service_errors(checkout_bp)
checkout_bp.after_request(apply_cart_cookie)
checkout_bp.teardown_request(forget_cart_owner)


@checkout_bp.route("/cart", methods=["POST"])
def checkout_cart():
    data = json_body()
    owner = resolve_cart_owner()
    result = checkout_service.checkout_cart(
        owner,
        customer_email=data.get("email"),
        customer_name=data.get("name", ""),
        customer_phone=data.get("phone", ""),
    )
    return jsonify(result), 200


@checkout_bp.route("/workshop", methods=["POST"])
def checkout_workshop():
    data = json_body()
    try:
        workshop_id = int(data.get("workshop_id"))
    except (TypeError, ValueError):
        raise ValidationError("workshop_id is required", details={"workshop_id": "required"})
    entry_id = data.get("entry_id")
    result = checkout_service.checkout_workshop(
        workshop_id,
        pricing_option=data.get("pricing_option"),
        customer_email=data.get("email"),
        customer_name=data.get("name", ""),
        customer_phone=data.get("phone", ""),
        waitlist_token=data.get("waitlist_token"),
        entry_id=int(entry_id) if str(entry_id or "").isdigit() else None,
        owner=resolve_cart_owner(),
    )
    return jsonify(result), 200
