"""
Workshop Enrollment Platform
Blueprint registry and shared view helpers.
"""

import logging

from flask import request

from app.core.exceptions import (
    ConflictError,
    DependencyError,
    ExpiryError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> dict:
    """Request JSON as a dict ({} when absent or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _error(code, exc):
    return api_error(code, str(exc), details=getattr(exc, "details", None), reason=getattr(exc, "reason", None))


def register_service_errors(bp):
    """Map the platform exception hierarchy to JSON error responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        return _error(E.NOT_FOUND, exc)

    @bp.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return _error(E.BUSINESS_RULE, exc)

    @bp.errorhandler(InvalidTransition)
    def _invalid_transition(exc):
        db.session.rollback()
        return _error(E.CONFLICT_STATE, exc)

    @bp.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        return _error(E.CONFLICT_DUPLICATE, exc)

    @bp.errorhandler(ExpiryError)
    def _expired(exc):
        db.session.rollback()
        return _error(E.EXPIRED, exc)

    @bp.errorhandler(DependencyError)
    def _dependency(exc):
        db.session.rollback()
        logger.error("Dependency failure on %s: %s", request.path, exc)
        return api_error(E.DEPENDENCY, "The payment service is temporarily unavailable. Please try again.",
                         details={"dependency": exc.dependency})

    return bp
