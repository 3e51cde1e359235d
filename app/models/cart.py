"""
Workshop Enrollment Platform
Cart models.

Models:
    - Cart: one snapshot per owner; owner is ("session", key) or ("account", id)
    - CartItem: a line item; at most one per workshop per cart
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


CART_OWNER_KINDS = {"session", "account"}


class Cart(db.Model):
    """Cart snapshot keyed by a single owner reference."""

    __tablename__ = "carts"
    __table_args__ = (
        db.UniqueConstraint("owner_kind", "owner_key", name="uq_cart_owner"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_kind = db.Column(db.String(10), nullable=False, comment="session | account")
    owner_key = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    touched_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Cart {self.owner_kind}:{self.owner_key} items={len(self.items)}>"


class CartItem(db.Model):
    """Line item: workshop + pricing option + unit price captured at add time."""

    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "workshop_id", name="uq_cart_item_workshop"),
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    workshop_id = db.Column(db.Integer, nullable=False)
    pricing_option = db.Column(db.String(64), default="")
    unit_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    added_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
