"""
Workshop Enrollment Platform
Workshop catalogue models.

Models:
    - Workshop: a bookable session with capacity, waitlist flag and base price
    - PricingOption: named price tier attached to a workshop

The confirmed-enrollment count is never stored on the workshop; it is
derived from completed Enrollment rows at read time (see
``app.services.record_store.completed_count``).
"""

from datetime import datetime, timezone

from app.models import db


WORKSHOP_STATUSES = {"draft", "published"}


def _utcnow():
    return datetime.now(timezone.utc)


class Workshop(db.Model):
    """Administrator-managed workshop. Read-only to the enrollment pipeline."""

    __tablename__ = "workshops"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="published", comment="draft | published")
    checkout_enabled = db.Column(db.Boolean, nullable=False, default=True)
    capacity = db.Column(db.Integer, nullable=False, default=0, comment="0 = unlimited")
    waitlist_enabled = db.Column(db.Boolean, nullable=False, default=False)
    base_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    location = db.Column(db.String(300), default="")
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    pricing_options = db.relationship(
        "PricingOption",
        backref="workshop",
        cascade="all, delete-orphan",
        order_by="PricingOption.position",
        lazy="selectin",
    )

    @property
    def is_published(self):
        return self.status == "published"

    def default_option(self):
        for opt in self.pricing_options:
            if opt.is_default:
                return opt
        return self.pricing_options[0] if self.pricing_options else None

    def find_option(self, option_id):
        if not option_id:
            return None
        for opt in self.pricing_options:
            if opt.option_id == option_id:
                return opt
        return None

    def effective_price(self, option_id=None):
        """Price for ``option_id``: matching option, else default, else first, else base price."""
        opt = self.find_option(option_id) or self.default_option()
        if opt is not None:
            return float(opt.price)
        return float(self.base_price or 0)

    def effective_option_id(self, option_id=None):
        """Option id actually charged for ``option_id`` ('' when the workshop has no options)."""
        opt = self.find_option(option_id) or self.default_option()
        return opt.option_id if opt is not None else ""

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "checkout_enabled": self.checkout_enabled,
            "capacity": self.capacity,
            "waitlist_enabled": self.waitlist_enabled,
            "base_price": float(self.base_price or 0),
            "location": self.location,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "pricing_options": [o.to_dict() for o in self.pricing_options],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Workshop {self.id}: {self.title[:40]}>"


class PricingOption(db.Model):
    """One price tier of a workshop, addressed by a short string id (e.g. 'early-bird')."""

    __tablename__ = "workshop_pricing_options"
    __table_args__ = (
        db.UniqueConstraint("workshop_id", "option_id", name="uq_pricing_workshop_option"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(
        db.Integer, db.ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    option_id = db.Column(db.String(64), nullable=False)
    label = db.Column(db.String(200), nullable=False, default="")
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.option_id,
            "label": self.label,
            "price": float(self.price or 0),
            "is_default": self.is_default,
        }
