"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — service health (DB, gateway config, ledger size)
    GET /api/v1/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.integrations.payment_gateway import payment_gateway
from app.models import db
from app.services import webhook_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
def health():
    """Detailed check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
        checks["processed_events"] = webhook_service.ledger_size()
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Payment gateway & webhook secret ─────────────────────────────
    checks["payment_gateway"] = {"configured": payment_gateway.is_configured()}
    checks["webhook"] = {"configured": bool(current_app.config.get("WEBHOOK_SIGNING_SECRET"))}

    checks["app"] = {
        "name": "Workshop Enrollment Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
