"""
Admin Blueprint — administrator API for the enrollment platform.

API Endpoints (JSON, X-API-Key required):
  GET    /api/v1/admin/workshops                       — List workshops (all statuses)
  POST   /api/v1/admin/workshops                       — Create workshop
  PUT    /api/v1/admin/workshops/<id>                  — Update workshop (pricing options replaced)
  GET    /api/v1/admin/workshops/<id>/waitlist         — List waitlist entries (?status=)

  GET    /api/v1/admin/enrollments                     — List (?workshop_id=&status=&email=)
  POST   /api/v1/admin/enrollments                     — Manual (offline payment) enrollment
  GET    /api/v1/admin/enrollments/<id>                — Enrollment detail
  POST   /api/v1/admin/enrollments/<id>/refund         — Gateway refund {amount?, reason}
  POST   /api/v1/admin/enrollments/<id>/status         — Status override {status, note}

  POST   /api/v1/admin/waitlist/<id>/notify            — Offer a seat to a waiting/expired entry
  POST   /api/v1/admin/waitlist/<id>/cancel            — Cancel an entry

  GET    /api/v1/admin/notifications                   — Outbox (?kind=&enrollment_id=)

Reads need the ``viewer`` role, writes ``admin``.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import require_role
from app.blueprints import json_body, paginate_query, register_service_errors
from app.core.exceptions import ValidationError
from app.services import enrollment_service, record_store, waitlist_service, workshop_service
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_service_errors(admin_bp)


# ═══════════════════════════════════════════════════════════════
# Workshops
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/workshops", methods=["GET"])
@require_role("viewer")
def list_workshops():
    workshops = workshop_service.list_workshops()
    items = []
    for workshop in workshops:
        data = workshop.to_dict()
        data["availability"] = record_store.availability(workshop)
        items.append(data)
    return jsonify({"items": items, "total": len(items)})


@admin_bp.route("/workshops", methods=["POST"])
@require_role("admin")
def create_workshop():
    workshop = workshop_service.create_workshop(json_body())
    return jsonify(workshop.to_dict()), 201


@admin_bp.route("/workshops/<int:workshop_id>", methods=["PUT"])
@require_role("admin")
def update_workshop(workshop_id):
    workshop = workshop_service.update_workshop(workshop_id, json_body())
    return jsonify(workshop.to_dict())


@admin_bp.route("/workshops/<int:workshop_id>/waitlist", methods=["GET"])
@require_role("viewer")
def list_waitlist(workshop_id):
    record_store.get_workshop(workshop_id)
    entries = waitlist_service.list_entries(workshop_id, request.args.get("status", ""))
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


# ═══════════════════════════════════════════════════════════════
# Enrollments
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/enrollments", methods=["GET"])
@require_role("viewer")
def list_enrollments():
    q = enrollment_service.enrollment_query(
        workshop_id=request.args.get("workshop_id", type=int),
        status=request.args.get("status", ""),
        email=request.args.get("email", ""),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [e.to_dict() for e in items], "total": total})


@admin_bp.route("/enrollments", methods=["POST"])
@require_role("admin")
def create_manual_enrollment():
    data = json_body()
    workshop_id = data.get("workshop_id")
    if not workshop_id:
        raise ValidationError("workshop_id is required", details={"workshop_id": "required"})
    enrollment = enrollment_service.create_manual(
        workshop_id,
        customer_email=data.get("email"),
        customer_name=data.get("name", ""),
        customer_phone=data.get("phone", ""),
        pricing_option=data.get("pricing_option"),
        amount=data.get("amount"),
        waitlist_entry_id=data.get("waitlist_entry_id"),
        note=data.get("note", ""),
    )
    return jsonify(enrollment.to_dict()), 201


@admin_bp.route("/enrollments/<int:enrollment_id>", methods=["GET"])
@require_role("viewer")
def get_enrollment(enrollment_id):
    return jsonify(record_store.get_enrollment(enrollment_id).to_dict())


@admin_bp.route("/enrollments/<int:enrollment_id>/refund", methods=["POST"])
@require_role("admin")
def refund_enrollment(enrollment_id):
    data = json_body()
    result = enrollment_service.refund(enrollment_id, amount=data.get("amount"), reason=data.get("reason", ""))
    return jsonify({
        "success": True,
        "message": "Refund processed." if result["full"] else "Partial refund processed.",
        "refund_id": result["refund_id"],
        "amount": result["amount"],
        "enrollment": result["enrollment"].to_dict(),
    })


@admin_bp.route("/enrollments/<int:enrollment_id>/status", methods=["POST"])
@require_role("admin")
def set_enrollment_status(enrollment_id):
    data = json_body()
    status = data.get("status")
    if not status:
        raise ValidationError("status is required", details={"status": "required"})
    enrollment = enrollment_service.set_status(enrollment_id, status, data.get("note", ""))
    return jsonify(enrollment.to_dict())


# ═══════════════════════════════════════════════════════════════
# Waitlist
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/waitlist/<int:entry_id>/notify", methods=["POST"])
@require_role("admin")
def notify_waitlist_entry(entry_id):
    entry, _ = waitlist_service.notify_entry(entry_id)
    return jsonify(entry.to_dict())


@admin_bp.route("/waitlist/<int:entry_id>/cancel", methods=["POST"])
@require_role("admin")
def cancel_waitlist_entry(entry_id):
    return jsonify(waitlist_service.cancel_entry(entry_id).to_dict())


# ═══════════════════════════════════════════════════════════════
# Notification outbox
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/notifications", methods=["GET"])
@require_role("viewer")
def list_notifications():
    requests_ = NotificationService.list_for(
        kind=request.args.get("kind") or None,
        enrollment_id=request.args.get("enrollment_id", type=int),
        waitlist_entry_id=request.args.get("waitlist_entry_id", type=int),
    )
    return jsonify({"items": [r.to_dict() for r in requests_], "total": len(requests_)})
