"""
Workshop Enrollment Platform
Webhook blueprint — inbound payment-gateway events.

Endpoint:
    POST /api/v1/webhooks/payment

Status codes (the gateway retries anything that is not 2xx):
    200  admitted: processed, duplicate, stale no-op or unhandled type
    400  signature verification failed / body is not an event
    500  handler failed; the event is not recorded, so the retry reapplies it

The route is exempt from the JSON content-type check and from rate
limiting; authenticity comes from the HMAC signature header.
"""

import logging

from flask import Blueprint, jsonify, request

from app.core.exceptions import AuthenticationError, ValidationError
from app.services import webhook_service
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/api/v1/webhooks")


def _signature_header():
    for name in webhook_service.SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return ""


@webhook_bp.route("/payment", methods=["POST"])
def receive_payment_event():
    payload = request.get_data(cache=False)
    try:
        result = webhook_service.process_event(payload, _signature_header())
    except AuthenticationError as exc:
        return api_error(E.AUTHENTICATION, str(exc))
    except ValidationError as exc:
        logger.warning("Webhook body rejected: %s", exc)
        return api_error(E.VALIDATION_INVALID, str(exc))
    except Exception as exc:
        logger.error("Webhook answered 500 for gateway retry: %s", exc)
        return api_error(E.INTERNAL, "Event processing failed", status=500)
    return jsonify({"received": True, **result}), 200
