"""initial order workflow schema

Revision ID: c4d1e8a2b7f3
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c4d1e8a2b7f3"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=160), nullable=False),
            sa.Column("shopify_order_id", sa.String(length=64), nullable=False),
            sa.Column("order_number", sa.String(length=64), nullable=True),
            sa.Column("merchant_id", sa.String(length=128), nullable=False),
            sa.Column("created_at", sa.BigInteger(), nullable=False),
            sa.Column("updated_at", sa.BigInteger(), nullable=True),
            sa.Column("currency", sa.String(length=8), nullable=True),
            sa.Column("financial_status", sa.String(length=32), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=True),
            sa.Column("line_items", sa.JSON(), nullable=True),
            sa.Column("subtotal", sa.Float(), nullable=True),
            sa.Column("customer_email", sa.String(length=255), nullable=True),
            sa.Column("workflow_status", sa.String(length=32), nullable=True),
            sa.Column("vendor_accept_by", sa.BigInteger(), nullable=True),
            sa.Column("vendor_accepted_at", sa.BigInteger(), nullable=True),
            sa.Column("admin_plan_by", sa.BigInteger(), nullable=True),
            sa.Column("admin_planned_at", sa.BigInteger(), nullable=True),
            sa.Column("pickup_plan", sa.JSON(), nullable=True),
            sa.Column("delivery_partner", sa.JSON(), nullable=True),
            sa.Column("pickup_assigned_by", sa.String(length=128), nullable=True),
            sa.Column("dispatched_at", sa.BigInteger(), nullable=True),
            sa.Column("invoice", sa.JSON(), nullable=True),
            sa.Column("workflow_timeline", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_orders_shopify_order_id", "orders", ["shopify_order_id"], unique=False)
        op.create_index("ix_orders_merchant_id", "orders", ["merchant_id"], unique=False)
        op.create_index("ix_orders_created_at", "orders", ["created_at"], unique=False)
        op.create_index("ix_orders_workflow_status", "orders", ["workflow_status"], unique=False)

    if not _table_exists(bind, "admin_accounts"):
        op.create_table(
            "admin_accounts",
            sa.Column("user_id", sa.String(length=128), nullable=False),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("note", sa.String(length=240), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("user_id"),
        )

    if not _table_exists(bind, "marketplace_settings"):
        op.create_table(
            "marketplace_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("deadline_policy", sa.String(length=24), nullable=False, server_default="flat"),
            sa.Column("business_open_hour", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("business_close_hour", sa.Integer(), nullable=False, server_default="19"),
            sa.Column("business_days", sa.String(length=32), nullable=False, server_default="0,1,2,3,4,5"),
            sa.Column("business_timezone", sa.String(length=64), nullable=False, server_default="Asia/Kolkata"),
            sa.Column("publication_id", sa.String(length=160), nullable=True),
            sa.Column("updated_by", sa.String(length=128), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_id", sa.String(length=128), nullable=True),
            sa.Column("subject_type", sa.String(length=80), nullable=True),
            sa.Column("subject_id", sa.String(length=160), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_platform_events_created_at", "platform_events", ["created_at"], unique=False)
        op.create_index("ix_platform_events_event_type", "platform_events", ["event_type"], unique=False)
        op.create_index("ix_platform_events_actor_id", "platform_events", ["actor_id"], unique=False)
        op.create_index("ix_platform_events_subject_id", "platform_events", ["subject_id"], unique=False)
        op.create_index("ix_platform_events_severity", "platform_events", ["severity"], unique=False)

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("overdue_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error", sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"], unique=False)
        op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"], unique=False)
        op.create_index("ix_job_runs_ok", "job_runs", ["ok"], unique=False)


def downgrade():
    bind = op.get_bind()

    for table_name in ("job_runs", "platform_events", "marketplace_settings", "admin_accounts", "orders"):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
