"""
Workshop Enrollment Platform
Notification Service — fire-and-forget requests to the notification collaborator.

Each request is written to the ``notification_requests`` outbox inside the
caller's transaction (so it exists if and only if the triggering state
change committed). After commit, ``deliver()`` POSTs the pending requests
to NOTIFICATION_WEBHOOK_URL when one is configured. Delivery failures are
logged on the row and never propagate to the caller.
"""

import logging

import requests
from flask import current_app

from app.models import db
from app.models.notification import NOTIFICATION_KINDS, NotificationRequest

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification requests."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def enqueue(kind, *, recipient, context, enrollment_id=None, waitlist_entry_id=None, secret_context=None):
        """
        Queue a notification request in the current transaction (no commit).

        Args:
            kind: One of NOTIFICATION_KINDS.
            recipient: Customer email address.
            context: Flat key/value mapping for the collaborator's template.
            secret_context: Values sent on delivery but never persisted
                (the claim URL carries a plaintext token).

        Returns:
            The pending NotificationRequest, or None when there is no recipient.
        """
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        if not recipient:
            logger.warning("Notification %s skipped: no recipient (enrollment=%s entry=%s)",
                           kind, enrollment_id, waitlist_entry_id)
            return None
        req = NotificationRequest(
            kind=kind,
            recipient=recipient,
            context={k: v for k, v in context.items() if v is not None},
            enrollment_id=enrollment_id,
            waitlist_entry_id=waitlist_entry_id,
        )
        req.secret_context = dict(secret_context or {})
        db.session.add(req)
        return req

    # ── Delivery ──────────────────────────────────────────────────────────

    @staticmethod
    def deliver(pending):
        """Hand committed requests to the collaborator. Never raises."""
        pending = [p for p in pending if p is not None]
        url = current_app.config.get("NOTIFICATION_WEBHOOK_URL")
        if not pending:
            return 0
        if not url:
            for req in pending:
                logger.info("Notification queued kind=%s to=%s (no collaborator URL)", req.kind, req.recipient)
            return 0

        timeout = current_app.config.get("NOTIFICATION_TIMEOUT", 5)
        delivered = 0
        for req in pending:
            try:
                payload = req.to_dict()
                payload["context"] = {**payload["context"], **getattr(req, "secret_context", {})}
                resp = requests.post(url, json=payload, timeout=timeout)
                resp.raise_for_status()
                req.delivered = True
                req.delivery_error = None
                delivered += 1
            except requests.RequestException as exc:
                req.delivery_error = str(exc)[:500]
                logger.warning("Notification delivery failed id=%s kind=%s: %s", req.id, req.kind, exc)
        try:
            db.session.commit()
        except Exception:
            logger.exception("Could not record notification delivery state")
            db.session.rollback()
        return delivered

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for(kind=None, enrollment_id=None, waitlist_entry_id=None):
        q = NotificationRequest.query
        if kind:
            q = q.filter_by(kind=kind)
        if enrollment_id is not None:
            q = q.filter_by(enrollment_id=enrollment_id)
        if waitlist_entry_id is not None:
            q = q.filter_by(waitlist_entry_id=waitlist_entry_id)
        return q.order_by(NotificationRequest.id).all()


# ── Context helpers ──────────────────────────────────────────────────────────

def enrollment_context(enrollment, **extra):
    """Flat template context for enrollment-related notifications."""
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    ctx = {
        "customer_name": enrollment.customer_name,
        "customer_email": enrollment.customer_email,
        "workshop_id": enrollment.workshop_id,
        "workshop_title": enrollment.workshop.title if enrollment.workshop else "",
        "amount": "%.2f" % float(enrollment.amount or 0),
        "currency": enrollment.currency,
        "enrollment_id": enrollment.id,
        "enrollment_url": f"{site}/account/enrollments/{enrollment.id}",
    }
    ctx.update(extra)
    return ctx


def enqueue_admin_enrollment(enrollment):
    """Queue the administrator's new-enrollment notice; None while ADMIN_EMAIL is unset."""
    admin_email = current_app.config.get("ADMIN_EMAIL")
    if not admin_email:
        return None
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    return NotificationService.enqueue(
        "admin_enrollment",
        recipient=admin_email,
        context=enrollment_context(
            enrollment,
            payment_method=enrollment.payment_method,
            admin_url=f"{site}/admin/enrollments/{enrollment.id}",
        ),
        enrollment_id=enrollment.id,
    )
