"""
Workshop Enrollment Platform
Waitlist blueprint — public waitlist endpoints.

Endpoints:
    POST /api/v1/waitlist            join {workshop_id, email, name, phone}
    GET  /api/v1/waitlist/position   ?workshop_id=&email=
    GET  /api/v1/waitlist/claim      ?waitlist_token=&entry_id=  (claim-link landing)

The claim endpoint never consumes the token; it answers 410 Gone for any
link that can no longer be used (unknown, mismatched, expired, claimed).
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import json_body, register_service_errors
from app.core.exceptions import (
    TokenAlreadyClaimed,
    TokenExpired,
    TokenMismatch,
    TokenNotFound,
    ValidationError,
)
from app.services import waitlist_service
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

waitlist_bp = Blueprint("waitlist", __name__, url_prefix="/api/v1/waitlist")
register_service_errors(waitlist_bp)


def _int_arg(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} is required", details={name: "required"})


@waitlist_bp.route("", methods=["POST"])
def join_waitlist():
    data = json_body()
    result = waitlist_service.join(
        _int_arg(data.get("workshop_id"), "workshop_id"),
        data.get("email"),
        name=data.get("name", ""),
        phone=data.get("phone", ""),
    )
    entry = result["entry"]
    message = (
        "You have been added to the waitlist." if result["created"]
        else "You are already on the waitlist for this workshop."
    )
    return jsonify({
        "success": True,
        "message": message,
        "entry_id": entry.id,
        "status": entry.status,
        "position": result["position"],
    }), 201 if result["created"] else 200


@waitlist_bp.route("/position", methods=["GET"])
def waitlist_position():
    workshop_id = _int_arg(request.args.get("workshop_id"), "workshop_id")
    email = request.args.get("email", "")
    if not email:
        raise ValidationError("email is required", details={"email": "required"})
    position = waitlist_service.position(workshop_id, email)
    return jsonify({"workshop_id": workshop_id, "waiting": position is not None, "position": position})


@waitlist_bp.route("/claim", methods=["GET"])
def claim_link():
    token = request.args.get("waitlist_token", "")
    entry_id = request.args.get("entry_id", "")
    try:
        details = waitlist_service.claim_details(token, int(entry_id) if entry_id.isdigit() else None)
    except (TokenNotFound, TokenMismatch, TokenExpired, TokenAlreadyClaimed) as exc:
        return api_error(E.EXPIRED, str(exc), details={"reason": exc.reason})
    return jsonify(details)
