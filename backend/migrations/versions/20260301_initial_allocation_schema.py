"""Initial allocation schema: fleet, event log and financial snapshots

Revision ID: 20260301_initial_allocation_schema
Revises:
Create Date: 2026-03-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_initial_allocation_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "sites",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sites_is_active", "sites", ["is_active"])

    op.create_table(
        "suppliers",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("supplier_type", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "machine_types",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("icon", sa.String(64), nullable=True),
        sa.Column("is_attachment", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "machines",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("unit_number", sa.String(64), nullable=False),
        sa.Column("machine_type_id", sa.String(36), nullable=True),
        sa.Column("supplier_id", sa.String(36), nullable=True),
        sa.Column("ownership_type", sa.String(16), nullable=False, server_default="owned"),
        sa.Column("billing_type", sa.String(16), nullable=True),
        sa.Column("daily_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("weekly_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("monthly_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("current_site_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("is_in_downtime", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_allocation_event_id", sa.Integer(), nullable=True),
        sa.Column("planned_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["machine_type_id"], ["machine_types.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["current_site_id"], ["sites.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_number"),
    )
    op.create_index("ix_machines_machine_type_id", "machines", ["machine_type_id"])
    op.create_index("ix_machines_supplier_id", "machines", ["supplier_id"])
    op.create_index("ix_machines_current_site_id", "machines", ["current_site_id"])
    op.create_index("ix_machines_active_status", "machines", ["is_active", "status"])

    op.create_table(
        "extensions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("unit_number", sa.String(64), nullable=False),
        sa.Column("machine_type_id", sa.String(36), nullable=True),
        sa.Column("supplier_id", sa.String(36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("current_unit_id", sa.String(36), nullable=True),
        sa.Column("current_site_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["machine_type_id"], ["machine_types.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["current_unit_id"], ["machines.id"]),
        sa.ForeignKeyConstraint(["current_site_id"], ["sites.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_number"),
    )
    op.create_index("ix_extensions_machine_type_id", "extensions", ["machine_type_id"])
    op.create_index("ix_extensions_supplier_id", "extensions", ["supplier_id"])
    op.create_index("ix_extensions_current_unit_id", "extensions", ["current_unit_id"])

    op.create_table(
        "allocation_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("unit_id", sa.String(36), nullable=True),
        sa.Column("extension_id", sa.String(36), nullable=True),
        sa.Column("site_id", sa.String(36), nullable=True),
        sa.Column("destination_site_id", sa.String(36), nullable=True),
        sa.Column("supplier_id", sa.String(36), nullable=True),
        sa.Column("construction_type", sa.String(16), nullable=True),
        sa.Column("lot_building_number", sa.String(64), nullable=True),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("downtime_reason", sa.String(64), nullable=True),
        sa.Column("downtime_description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(255), nullable=True),
        sa.Column("corrects_event_id", sa.Integer(), nullable=True),
        sa.Column("correction_description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["unit_id"], ["machines.id"]),
        sa.ForeignKeyConstraint(["extension_id"], ["extensions.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["destination_site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["corrects_event_id"], ["allocation_events.id"]),
        sa.CheckConstraint("unit_id IS NOT NULL OR extension_id IS NOT NULL", name="ck_alloc_events_subject"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_allocation_events_event_type", "allocation_events", ["event_type"])
    op.create_index("ix_allocation_events_event_date", "allocation_events", ["event_date"])
    op.create_index("ix_allocation_events_status", "allocation_events", ["status"])
    op.create_index("ix_alloc_events_unit_status_date", "allocation_events", ["unit_id", "status", "event_date"])
    op.create_index("ix_alloc_events_extension_status_date", "allocation_events", ["extension_id", "status", "event_date"])
    op.create_index("ix_alloc_events_site_status", "allocation_events", ["site_id", "status"])

    op.create_table(
        "financial_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.String(36), nullable=False),
        sa.Column("site_id", sa.String(36), nullable=True),
        sa.Column("supplier_id", sa.String(36), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("downtime_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("billable_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("daily_rate", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("estimated_cost", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("machine_id", "period_start", "period_end", name="uq_fin_snapshot_machine_period"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_financial_snapshots_machine_id", "financial_snapshots", ["machine_id"])
    op.create_index("ix_financial_snapshots_site_id", "financial_snapshots", ["site_id"])
    op.create_index("ix_financial_snapshots_supplier_id", "financial_snapshots", ["supplier_id"])


def downgrade():
    op.drop_table("financial_snapshots")
    op.drop_table("allocation_events")
    op.drop_table("extensions")
    op.drop_table("machines")
    op.drop_table("machine_types")
    op.drop_table("suppliers")
    op.drop_table("sites")
