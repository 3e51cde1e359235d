"""
Workshop Enrollment Platform
Waitlist model.

Models:
    - WaitlistEntry: a customer queued for a full workshop

The claim token itself is never stored; only its salted SHA-256 digest
(``token_salt`` + ``token_hash``) and the absolute expiry.
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

WAITLIST_STATUSES = {"waiting", "notified", "claimed", "converted", "expired", "cancelled"}

# Statuses that still hold a place in the queue (used for duplicate detection).
ACTIVE_WAITLIST_STATUSES = ("waiting", "notified", "claimed")

WAITLIST_TRANSITIONS = {
    "waiting":   ["notified", "cancelled"],
    "notified":  ["claimed", "converted", "expired", "cancelled"],
    "claimed":   ["converted", "cancelled"],
    "expired":   ["notified", "cancelled"],   # administrator re-issue
    "converted": [],
    "cancelled": [],
}


def validate_waitlist_transition(old_status, new_status):
    """Return True if WaitlistEntry status transition is valid."""
    return new_status in WAITLIST_TRANSITIONS.get(old_status, [])


class WaitlistEntry(db.Model):
    """Waitlist entry. Ordered FIFO by (created_at, id) within a workshop."""

    __tablename__ = "waitlist_entries"
    __table_args__ = (
        db.Index("idx_waitlist_workshop_status", "workshop_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(
        db.Integer, db.ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    customer_name = db.Column(db.String(200), default="")
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_phone = db.Column(db.String(50), default="")

    status = db.Column(db.String(20), nullable=False, default="waiting")

    token_salt = db.Column(db.String(64), nullable=True)
    token_hash = db.Column(db.String(64), nullable=True, index=True)
    token_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    enrollment_id = db.Column(db.Integer, nullable=True, comment="Enrollment this entry converted into")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    workshop = db.relationship("Workshop", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "notified_at": self.notified_at.isoformat() if self.notified_at else None,
            "converted_at": self.converted_at.isoformat() if self.converted_at else None,
            "enrollment_id": self.enrollment_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WaitlistEntry {self.id}: workshop={self.workshop_id} {self.status}>"
