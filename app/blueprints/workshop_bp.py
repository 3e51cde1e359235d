"""
Workshop Enrollment Platform
Workshop blueprint — public catalogue reads.

Endpoints:
    GET /api/v1/workshops                          published workshops
    GET /api/v1/workshops/<id>                     one workshop with pricing options
    GET /api/v1/workshops/<id>/availability        seats, can_enroll, waitlist size
"""

from flask import Blueprint, jsonify

from app.blueprints import register_service_errors
from app.core.exceptions import NotFoundError
from app.services import record_store, workshop_service

workshop_bp = Blueprint("workshop", __name__, url_prefix="/api/v1/workshops")
register_service_errors(workshop_bp)


def _published_or_404(workshop_id):
    workshop = record_store.get_workshop(workshop_id)
    if not workshop.is_published:
        raise NotFoundError(resource="Workshop", resource_id=workshop_id)
    return workshop


@workshop_bp.route("", methods=["GET"])
def list_workshops():
    workshops = workshop_service.list_workshops(published_only=True)
    return jsonify({"items": [w.to_dict() for w in workshops], "total": len(workshops)})


@workshop_bp.route("/<int:workshop_id>", methods=["GET"])
def get_workshop(workshop_id):
    workshop = _published_or_404(workshop_id)
    data = workshop.to_dict()
    data["remaining_spots"] = record_store.remaining_spots(workshop)
    return jsonify(data)


@workshop_bp.route("/<int:workshop_id>/availability", methods=["GET"])
def workshop_availability(workshop_id):
    return jsonify(record_store.availability(_published_or_404(workshop_id)))
