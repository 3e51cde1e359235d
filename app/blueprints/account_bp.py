"""
Workshop Enrollment Platform
Account blueprint — the signed-in customer's own records.

Endpoints:
    GET /api/v1/account               account summary
    GET /api/v1/account/enrollments   ?status=
"""

from flask import Blueprint, jsonify, request

from app.auth import current_account_id
from app.blueprints import register_service_errors
from app.models import db
from app.models.enrollment import Account
from app.services import account_service
from app.utils.errors import E, api_error

account_bp = Blueprint("account", __name__, url_prefix="/api/v1/account")
register_service_errors(account_bp)


def _current_account():
    account_id = current_account_id()
    return db.session.get(Account, account_id) if account_id is not None else None


@account_bp.route("", methods=["GET"])
def get_account():
    account = _current_account()
    if account is None:
        return api_error(E.AUTHENTICATION, "Sign in to view your account.", status=401)
    return jsonify(account.to_dict())


@account_bp.route("/enrollments", methods=["GET"])
def list_my_enrollments():
    account = _current_account()
    if account is None:
        return api_error(E.AUTHENTICATION, "Sign in to view your enrollments.", status=401)
    enrollments = account_service.enrollments_for_account(account.id, request.args.get("status", ""))
    return jsonify({"items": [e.to_dict() for e in enrollments], "total": len(enrollments)})
