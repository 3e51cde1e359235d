"""
Workshop Enrollment Platform
Authentication & Authorization Middleware.

Provides:
    - API key authentication for administrator routes (/api/v1/admin/*)
      via X-API-Key header
    - Role-based access control (RBAC) decorator
    - CSRF mitigation for state-changing JSON requests
    - Customer account identity from the signed Flask session

Security model:
    - /api/v1/admin/* requires a valid API key
    - Cart, checkout, waitlist and account routes are public; the customer
      is identified by the signed session (account) or the cart cookie
    - The gateway webhook is authenticated by its HMAC signature instead
      (see app.services.webhook_service.verify_signature)

Configuration:
    API_KEYS          — "<key>:<role>,<key>:<role>" where role is admin|viewer
    API_AUTH_ENABLED  — "false" disables admin auth (development only)
"""

import functools
import logging
import os
from typing import Optional

from flask import current_app, g, request, session

from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "viewer"}

# Role hierarchy: admin > viewer
ROLE_HIERARCHY = {
    "admin": {"admin", "viewer"},
    "viewer": {"viewer"},
}

ACCOUNT_SESSION_KEY = "account_id"

_WEBHOOK_PATH = "/api/v1/webhooks/payment"


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS (app config first, then env var) into {key: role} mapping.

    Keys without a role default to 'viewer'.
    """
    raw = current_app.config.get("API_KEYS") or os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
                role = "viewer"
            keys[key.strip()] = role
        else:
            keys[entry] = "viewer"
    return keys


def _is_auth_enabled() -> bool:
    """Check whether administrator authentication is enabled."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from the X-API-Key header."""
    key = request.headers.get("X-API-Key", "").strip()
    return key or None


# ── Customer identity ────────────────────────────────────────────────────────

def current_account_id() -> Optional[int]:
    """Return the authenticated customer account id, or None for guests."""
    raw = session.get(ACCOUNT_SESSION_KEY)
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


# ── Role decorator ───────────────────────────────────────────────────────────

def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @admin_bp.route("/enrollments/<int:eid>/refund", methods=["POST"])
        @require_role("admin")
        def refund_enrollment(eid): ...

    Role hierarchy: admin > viewer
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return api_error(E.AUTHENTICATION, "Authentication required", status=401)

            allowed = ROLE_HIERARCHY.get(user_role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, minimum_role, request.path,
                )
                return api_error(E.AUTHENTICATION, "Insufficient permissions", status=403)

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content
    type, which makes this a lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json for state-changing requests",
                status=415,
            )
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Webhook route: skipped (signature-verified in the service layer)
    - Public API routes: CSRF content-type check only
    - Admin routes: API key → g.current_user_role
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == _WEBHOOK_PATH:
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not request.path.startswith("/api/v1/admin/"):
            return None

        if not _is_auth_enabled():
            g.current_user_role = "admin"
            g.api_key = "dev-mode"
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return api_error(E.AUTHENTICATION, "Authentication required. Provide X-API-Key header.", status=401)

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS is not configured but API_AUTH_ENABLED=true")
            return api_error(E.INTERNAL, "Server authentication not configured")

        role = api_keys.get(api_key)
        if role is None:
            logger.warning(
                "Invalid API key attempt: %s...", api_key[:8],
                extra={"security_code": "invalid_api_key"},
            )
            return api_error(E.AUTHENTICATION, "Invalid API key", status=401)

        g.current_user_role = role
        g.api_key = api_key
        return None

    with app.app_context():
        logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
