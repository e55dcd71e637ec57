"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import context, op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

def _stores():
    # set by env.py; a split ledger database is migrated on its own
    return context.config.attributes.get("stores", ("ledger", "directory"))

def upgrade():
    stores = _stores()
    if "ledger" in stores:
        _upgrade_ledger()
    if "directory" in stores:
        _upgrade_directory()

def downgrade():
    stores = _stores()
    if "directory" in stores:
        _downgrade_directory()
    if "ledger" in stores:
        _downgrade_ledger()

def _upgrade_ledger():
    op.create_table(
        "user_reputation",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime),
    )

    op.create_table(
        "reputation_events",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("receipt_id", sa.String(64), nullable=False, unique=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("requested_delta", sa.Integer, nullable=False),
        sa.Column("applied_delta", sa.Integer, nullable=False),
        sa.Column("resulting_score", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(64)),
        sa.Column("dedup_key", sa.String(200), unique=True),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_reputation_events_user_id", "reputation_events", ["user_id"])

    op.create_table(
        "ledger_orders",
        sa.Column("order_id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("order_value", sa.Float, nullable=False),
        sa.Column("product_category", sa.String(128), nullable=False),
        sa.Column("destination", sa.String(256), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="CREATED"),
        sa.Column("delivery_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.String(20), nullable=False, server_default="NONE"),
        sa.Column("return_reason", sa.String(512)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
        sa.Column("returned_at", sa.DateTime),
    )
    op.create_index("ix_ledger_orders_user_id", "ledger_orders", ["user_id"])

def _upgrade_directory():
    op.create_table(
        "logistics_partners",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("min_reputation", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_reputation", sa.Integer),
        sa.Column("service_areas", sa.JSON),
        sa.Column("special_capabilities", sa.JSON),
        sa.Column("contact", sa.JSON),
        sa.Column("operational_status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("daily_order_limit", sa.Integer, nullable=False, server_default="100"),
        sa.Column("max_order_value", sa.Float, nullable=False, server_default="10000"),
        sa.Column("min_order_value", sa.Float, nullable=False, server_default="0"),
        sa.Column("preferred_categories", sa.JSON),
        sa.Column("success_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("avg_delivery_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("customer_rating", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_orders_handled", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("ix_logistics_partners_operational_status", "logistics_partners", ["operational_status"])

    op.create_table(
        "partner_capacity",
        sa.Column("partner_id", sa.String(64), primary_key=True),
        sa.Column("current_orders", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime),
    )

    op.create_table(
        "capacity_events",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("partner_id", sa.String(64), nullable=False),
        sa.Column("allocation_id", sa.String(160), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("created_at", sa.DateTime),
        sa.UniqueConstraint("allocation_id", "direction", name="uq_capacity_event"),
    )
    op.create_index("ix_capacity_events_partner_id", "capacity_events", ["partner_id"])

    op.create_table(
        "order_allocations",
        sa.Column("id", sa.String(160), primary_key=True),
        sa.Column("order_id", sa.String(128), nullable=False, unique=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("partner_id", sa.String(64), nullable=False),
        sa.Column("partner_name", sa.String(128)),
        sa.Column("order_value", sa.Float),
        sa.Column("product_category", sa.String(128)),
        sa.Column("destination", sa.String(256)),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("confidence", sa.Float),
        sa.Column("reasoning", sa.JSON),
        sa.Column("user_reputation", sa.Integer),
        sa.Column("delivery_success_probability", sa.Float),
        sa.Column("status", sa.String(16), nullable=False, server_default="allocated"),
        sa.Column("allocated_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
        sa.Column("estimated_delivery_time", sa.DateTime),
        sa.Column("actual_delivery_time", sa.DateTime),
        sa.Column("failure_reason", sa.String(64)),
        sa.Column("attempt_count", sa.Integer),
        sa.Column("return_reason", sa.String(512)),
        sa.Column("customer_rating", sa.Float),
        sa.Column("partner_rating", sa.Float),
        sa.Column("comments", sa.JSON),
    )
    op.create_index("ix_order_allocations_user_id", "order_allocations", ["user_id"])
    op.create_index("ix_order_allocations_partner_id", "order_allocations", ["partner_id"])
    op.create_index("ix_order_allocations_status", "order_allocations", ["status"])
    op.create_index("ix_order_allocations_allocated_at", "order_allocations", ["allocated_at"])
    op.create_index("ix_order_allocations_partner_allocated", "order_allocations", ["partner_id", "allocated_at"])

    op.create_table(
        "evidence_log",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.String(128)),
        sa.Column("key", sa.String(64)),
        sa.Column("value", sa.JSON),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_evidence_log_order_id", "evidence_log", ["order_id"])

def _downgrade_directory():
    op.drop_index("ix_evidence_log_order_id", table_name="evidence_log")
    op.drop_table("evidence_log")

    for name in ("ix_order_allocations_partner_allocated", "ix_order_allocations_allocated_at",
                 "ix_order_allocations_status", "ix_order_allocations_partner_id", "ix_order_allocations_user_id"):
        op.drop_index(name, table_name="order_allocations")
    op.drop_table("order_allocations")

    op.drop_index("ix_capacity_events_partner_id", table_name="capacity_events")
    op.drop_table("capacity_events")
    op.drop_table("partner_capacity")

    op.drop_index("ix_logistics_partners_operational_status", table_name="logistics_partners")
    op.drop_table("logistics_partners")

def _downgrade_ledger():
    op.drop_index("ix_ledger_orders_user_id", table_name="ledger_orders")
    op.drop_table("ledger_orders")

    op.drop_index("ix_reputation_events_user_id", table_name="reputation_events")
    op.drop_table("reputation_events")

    op.drop_table("user_reputation")
