"""initial_enrollment_schema

Creates the enrollment platform tables:
  - workshops, workshop_pricing_options
  - accounts
  - waitlist_entries
  - enrollments
  - carts, cart_items
  - processed_events      — webhook idempotency ledger
  - notification_requests — outbound email outbox

Tables created conditionally (IF NOT EXISTS semantics) so the revision can be
stamped onto a development database that was built with db.create_all().

Revision ID: 6a1f0c2d9e41
Revises:
Create Date: 2026-10-17 09:12:40.118305
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '6a1f0c2d9e41'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Workshops ─────────────────────────────────────────────────────────
    if "workshops" not in existing:
        op.create_table(
            "workshops",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="published", comment="draft | published"),
            sa.Column("checkout_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("capacity", sa.Integer(), nullable=False, server_default="0",
                      comment="0 = unlimited"),
            sa.Column("waitlist_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("base_price", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
            sa.Column("location", sa.String(length=300), nullable=True),
            sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "workshop_pricing_options" not in existing:
        op.create_table(
            "workshop_pricing_options",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workshop_id", sa.Integer(), nullable=False),
            sa.Column("option_id", sa.String(length=64), nullable=False),
            sa.Column("label", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workshop_id", "option_id", name="uq_pricing_workshop_option"),
        )
        op.create_index("ix_workshop_pricing_options_workshop_id",
                        "workshop_pricing_options", ["workshop_id"])

    # ── Accounts ──────────────────────────────────────────────────────────
    if "accounts" not in existing:
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)

    # ── Waitlist ──────────────────────────────────────────────────────────
    if "waitlist_entries" not in existing:
        op.create_table(
            "waitlist_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workshop_id", sa.Integer(), nullable=False),
            sa.Column("customer_name", sa.String(length=200), nullable=True),
            sa.Column("customer_email", sa.String(length=255), nullable=False),
            sa.Column("customer_phone", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="waiting",
                      comment="waiting | notified | claimed | converted | expired | cancelled"),
            sa.Column("token_salt", sa.String(length=64), nullable=True),
            sa.Column("token_hash", sa.String(length=64), nullable=True),
            sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("enrollment_id", sa.Integer(), nullable=True,
                      comment="Enrollment this entry converted into"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_waitlist_entries_workshop_id", "waitlist_entries", ["workshop_id"])
        op.create_index("ix_waitlist_entries_customer_email", "waitlist_entries", ["customer_email"])
        op.create_index("ix_waitlist_entries_token_hash", "waitlist_entries", ["token_hash"])
        op.create_index("idx_waitlist_workshop_status", "waitlist_entries", ["workshop_id", "status"])

    # ── Enrollments ───────────────────────────────────────────────────────
    if "enrollments" not in existing:
        op.create_table(
            "enrollments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workshop_id", sa.Integer(), nullable=False),
            sa.Column("account_id", sa.Integer(), nullable=True),
            sa.Column("customer_name", sa.String(length=200), nullable=True),
            sa.Column("customer_email", sa.String(length=255), nullable=True),
            sa.Column("customer_phone", sa.String(length=50), nullable=True),
            sa.Column("pricing_option", sa.String(length=64), nullable=True),
            sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
            sa.Column("payment_method", sa.String(length=20), nullable=False,
                      server_default="gateway", comment="gateway | manual"),
            sa.Column("gateway_session_id", sa.String(length=255), nullable=True),
            sa.Column("gateway_payment_intent_id", sa.String(length=255), nullable=True),
            sa.Column("gateway_customer_id", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending",
                      comment="pending | completed | cancelled | refunded | failed"),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("refund_id", sa.String(length=255), nullable=True),
            sa.Column("refund_amount", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("refund_reason", sa.String(length=255), nullable=True),
            sa.Column("waitlist_entry_id", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["waitlist_entry_id"], ["waitlist_entries.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("gateway_session_id", "workshop_id",
                                name="uq_enrollment_session_workshop"),
        )
        op.create_index("ix_enrollments_workshop_id", "enrollments", ["workshop_id"])
        op.create_index("ix_enrollments_account_id", "enrollments", ["account_id"])
        op.create_index("ix_enrollments_customer_email", "enrollments", ["customer_email"])
        op.create_index("ix_enrollments_gateway_session_id", "enrollments", ["gateway_session_id"])
        op.create_index("ix_enrollments_gateway_payment_intent_id", "enrollments",
                        ["gateway_payment_intent_id"])
        op.create_index("ix_enrollments_status", "enrollments", ["status"])
        op.create_index("idx_enrollment_workshop_status", "enrollments", ["workshop_id", "status"])

    # ── Carts ─────────────────────────────────────────────────────────────
    if "carts" not in existing:
        op.create_table(
            "carts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("owner_kind", sa.String(length=10), nullable=False, comment="session | account"),
            sa.Column("owner_key", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("touched_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("owner_kind", "owner_key", name="uq_cart_owner"),
        )
        op.create_index("ix_carts_touched_at", "carts", ["touched_at"])

    if "cart_items" not in existing:
        op.create_table(
            "cart_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("cart_id", sa.Integer(), nullable=False),
            sa.Column("workshop_id", sa.Integer(), nullable=False),
            sa.Column("pricing_option", sa.String(length=64), nullable=True),
            sa.Column("unit_price", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
            sa.Column("added_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cart_id", "workshop_id", name="uq_cart_item_workshop"),
        )
        op.create_index("ix_cart_items_cart_id", "cart_items", ["cart_id"])

    # ── Webhook ledger & notification outbox ──────────────────────────────
    if "processed_events" not in existing:
        op.create_table(
            "processed_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("event_id", sa.String(length=255), nullable=False),
            sa.Column("event_type", sa.String(length=100), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("event_id"),
        )

    if "notification_requests" not in existing:
        op.create_table(
            "notification_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("recipient", sa.String(length=255), nullable=False),
            sa.Column("context", sa.JSON(), nullable=False),
            sa.Column("enrollment_id", sa.Integer(), nullable=True),
            sa.Column("waitlist_entry_id", sa.Integer(), nullable=True),
            sa.Column("delivered", sa.Boolean(), nullable=True),
            sa.Column("delivery_error", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notification_requests_kind", "notification_requests", ["kind"])
        op.create_index("ix_notification_requests_enrollment_id", "notification_requests",
                        ["enrollment_id"])
        op.create_index("ix_notification_requests_waitlist_entry_id", "notification_requests",
                        ["waitlist_entry_id"])


def downgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())
    for table in (
        "notification_requests",
        "processed_events",
        "cart_items",
        "carts",
        "enrollments",
        "waitlist_entries",
        "accounts",
        "workshop_pricing_options",
        "workshops",
    ):
        if table in existing:
            op.drop_table(table)
