"""
Workshop Enrollment Platform
Notification outbox model.

Models:
    - NotificationRequest: one fire-and-forget request handed to the
      external notification collaborator (templating and delivery are
      the collaborator's job)
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_KINDS = {
    "enrollment_confirmation",
    "admin_enrollment",
    "account_welcome",
    "refund_confirmation",
    "waitlist_notified",
    "waitlist_joined",
    "payment_failed",
}


class NotificationRequest(db.Model):
    """
    Outbound notification request.

    ``context`` is a flat key/value mapping (customer name, workshop title,
    amount, claim/enrollment URL, ...).
    """

    __tablename__ = "notification_requests"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(40), nullable=False, index=True)
    recipient = db.Column(db.String(255), nullable=False)
    context = db.Column(db.JSON, nullable=False, default=dict)

    enrollment_id = db.Column(db.Integer, nullable=True, index=True)
    waitlist_entry_id = db.Column(db.Integer, nullable=True, index=True)

    # Delivery tracking
    delivered = db.Column(db.Boolean, default=False)
    delivery_error = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "recipient": self.recipient,
            "context": self.context,
            "enrollment_id": self.enrollment_id,
            "waitlist_entry_id": self.waitlist_entry_id,
            "delivered": self.delivered,
            "delivery_error": self.delivery_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<NotificationRequest {self.id}: {self.kind} -> {self.recipient}>"
