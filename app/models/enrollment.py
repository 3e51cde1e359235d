"""
Workshop Enrollment Platform
Enrollment & Account models.

Models:
    - Account: customer account, correlated with enrollments by email
    - Enrollment: one seat purchase (or manual booking) for one workshop

Enrollment rows are never deleted; "removal" is a status transition.
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ENROLLMENT_STATUSES = {"pending", "completed", "cancelled", "refunded", "failed"}

ENROLLMENT_TRANSITIONS = {
    "pending":   ["completed", "failed", "cancelled"],
    "failed":    ["completed"],    # gateway retried the same session and the payment went through
    "completed": ["refunded", "cancelled"],
    "refunded":  [],
    "cancelled": [],
}


def validate_enrollment_transition(old_status, new_status):
    """Return True if Enrollment status transition is valid."""
    return new_status in ENROLLMENT_TRANSITIONS.get(old_status, [])


class Account(db.Model):
    """Customer account. Email is stored lower-cased and is unique."""

    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    display_name = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    enrollments = db.relationship("Enrollment", backref="account", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Account {self.id}: {self.email}>"


class Enrollment(db.Model):
    """
    Enrollment record.

    A gateway checkout session may cover several workshops (cart checkout),
    so the session id is unique per workshop rather than globally.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        db.UniqueConstraint("gateway_session_id", "workshop_id", name="uq_enrollment_session_workshop"),
        db.Index("idx_enrollment_workshop_status", "workshop_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(
        db.Integer, db.ForeignKey("workshops.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    account_id = db.Column(
        db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    customer_name = db.Column(db.String(200), default="")
    customer_email = db.Column(db.String(255), default="", index=True)
    customer_phone = db.Column(db.String(50), default="")

    pricing_option = db.Column(db.String(64), default="")
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    payment_method = db.Column(db.String(20), nullable=False, default="gateway", comment="gateway | manual")

    gateway_session_id = db.Column(db.String(255), nullable=True, index=True)
    gateway_payment_intent_id = db.Column(db.String(255), nullable=True, index=True)
    gateway_customer_id = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    refund_id = db.Column(db.String(255), nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)

    waitlist_entry_id = db.Column(
        db.Integer, db.ForeignKey("waitlist_entries.id", ondelete="SET NULL"), nullable=True,
    )
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    workshop = db.relationship("Workshop", lazy="joined")

    @property
    def is_partially_refunded(self):
        return self.status == "completed" and bool(self.refund_amount)

    def append_note(self, text):
        """Append a timestamped line to the free-text notes."""
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{stamp}] {text}"
        self.notes = f"{self.notes}\n{line}" if self.notes else line

    def to_dict(self):
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "workshop_title": self.workshop.title if self.workshop else None,
            "account_id": self.account_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "pricing_option": self.pricing_option,
            "amount": float(self.amount or 0),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "gateway_session_id": self.gateway_session_id,
            "gateway_payment_intent_id": self.gateway_payment_intent_id,
            "status": self.status,
            "partially_refunded": self.is_partially_refunded,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "refund_id": self.refund_id,
            "refund_amount": float(self.refund_amount) if self.refund_amount is not None else None,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "waitlist_entry_id": self.waitlist_entry_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Enrollment {self.id}: workshop={self.workshop_id} {self.status}>"
