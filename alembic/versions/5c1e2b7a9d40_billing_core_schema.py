"""billing_core_schema

Revision ID: 5c1e2b7a9d40
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2b7a9d40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default=sa.text("'user'")),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('ACTIVE','BLOCKED','DELETED')", name="ck_users_status"),
        sa.CheckConstraint("role IN ('user','admin','owner')", name="ck_users_role"),
        sa.CheckConstraint("email = lower(email)", name="ck_users_email_lowercase"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_created_at", "users", ["created_at"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("grant_source", sa.String(32), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False),
        sa.Column("stripe_price_id", sa.String(255), nullable=True),
        sa.Column("plan_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'eur'")),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_email", sa.String(320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "grant_source IN ('stripe_subscription','stripe_lifetime','admin_grant','promo_grant')",
            name="ck_subscriptions_grant_source",
        ),
        sa.CheckConstraint("plan_type IN ('premium','lifetime')", name="ck_subscriptions_plan_type"),
        sa.CheckConstraint("amount >= 0", name="ck_subscriptions_amount_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_subscription_id"),
    )
    op.create_index("idx_subscriptions_user_status", "subscriptions", ["user_id", "status"])
    op.create_index("idx_subscriptions_customer", "subscriptions", ["stripe_customer_id"])
    op.create_index("idx_subscriptions_customer_email", "subscriptions", ["customer_email"])
    op.create_index(
        "idx_subscriptions_local_grants_active",
        "subscriptions",
        ["user_id"],
        postgresql_where=sa.text("grant_source IN ('admin_grant','promo_grant') AND status = 'active'"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'eur'")),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("payment_type", sa.String(16), nullable=False),
        sa.Column("customer_email", sa.String(320), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("payment_type IN ('one_time','recurring')", name="ck_payments_payment_type"),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("stripe_payment_intent_id", name="uq_payments_stripe_payment_intent_id"),
    )
    op.create_index("idx_payments_user_created", "payments", ["user_id", "created_at"])
    op.create_index("idx_payments_customer", "payments", ["stripe_customer_id"])

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("plan_type", sa.String(16), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=False),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("plan_type IN ('premium','lifetime')", name="ck_promo_codes_plan_type"),
        sa.CheckConstraint(
            "duration_days IS NULL OR duration_days > 0",
            name="ck_promo_codes_duration_days_positive",
        ),
        sa.CheckConstraint("max_uses > 0", name="ck_promo_codes_max_uses_positive"),
        sa.CheckConstraint("current_uses >= 0", name="ck_promo_codes_current_uses_non_negative"),
        sa.CheckConstraint("current_uses <= max_uses", name="ck_promo_codes_current_uses_le_max"),
        sa.CheckConstraint("code = upper(code)", name="ck_promo_codes_code_normalized"),
        sa.UniqueConstraint("code", name="uq_promo_codes_code"),
    )
    op.create_index("idx_promo_codes_expires_at", "promo_codes", ["expires_at"])

    op.create_table(
        "promo_code_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promo_code_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", sa.BigInteger(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["promo_code_id"], ["promo_codes.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.UniqueConstraint("promo_code_id", "user_id", name="uq_promo_code_redemptions_code_user"),
    )
    op.create_index("idx_promo_code_redemptions_user", "promo_code_redemptions", ["user_id"])
    op.create_index("idx_promo_code_redemptions_redeemed_at", "promo_code_redemptions", ["redeemed_at"])

    op.create_table(
        "billing_sync_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("triggered_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("synced_subscriptions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("synced_payments", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("skipped_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("status IN ('OK','PARTIAL','FAILED')", name="ck_billing_sync_runs_status"),
        sa.ForeignKeyConstraint(["triggered_by_user_id"], ["users.id"]),
    )
    op.create_index("idx_billing_sync_runs_started_at", "billing_sync_runs", ["started_at"])

    op.create_table(
        "stripe_webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('PROCESSING','PROCESSED','FAILED')",
            name="ck_stripe_webhook_events_status",
        ),
    )
    op.create_index("idx_stripe_webhook_events_processed_at", "stripe_webhook_events", ["processed_at"])


def downgrade() -> None:
    op.drop_index("idx_stripe_webhook_events_processed_at", table_name="stripe_webhook_events")
    op.drop_table("stripe_webhook_events")
    op.drop_index("idx_billing_sync_runs_started_at", table_name="billing_sync_runs")
    op.drop_table("billing_sync_runs")
    op.drop_index("idx_promo_code_redemptions_redeemed_at", table_name="promo_code_redemptions")
    op.drop_index("idx_promo_code_redemptions_user", table_name="promo_code_redemptions")
    op.drop_table("promo_code_redemptions")
    op.drop_index("idx_promo_codes_expires_at", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_index("idx_payments_customer", table_name="payments")
    op.drop_index("idx_payments_user_created", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_subscriptions_local_grants_active", table_name="subscriptions")
    op.drop_index("idx_subscriptions_customer_email", table_name="subscriptions")
    op.drop_index("idx_subscriptions_customer", table_name="subscriptions")
    op.drop_index("idx_subscriptions_user_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
