"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Create licenses table
    op.create_table(
        "licenses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("product", sa.String(255), nullable=False),
        sa.Column("plan", sa.String(255), nullable=False),
        sa.Column("term", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("seats_total", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("seats_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "utilization_percent",
            sa.Numeric(5, 2),
            sa.Computed(
                "CASE WHEN seats_total > 0 "
                "THEN ROUND(seats_used * 100.0 / seats_total, 2) ELSE 0 END",
                persisted=True,
            ),
        ),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "renewal_reminders_sent",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("last_renewal_reminder", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_suspend_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("grace_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "renewal_history",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("dba", sa.String(255), nullable=True),
        sa.Column("zip", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_payment", sa.Numeric(12, 2), nullable=True),
        sa.Column("sms_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("sms_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sms_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("appid", sa.String(255), nullable=True),
        sa.Column("countid", sa.String(255), nullable=True),
        sa.Column("mid", sa.String(255), nullable=True),
        sa.Column("license_type", sa.String(255), nullable=True),
        sa.Column("package_data", postgresql.JSONB(), nullable=True),
        sa.Column("sendbat_workspace", sa.String(255), nullable=True),
        sa.Column("coming_expired", sa.String(255), nullable=True),
        sa.Column("external_sync_status", sa.String(20), nullable=True),
        sa.Column("last_external_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_sync_error", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("updated_by", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
        sa.CheckConstraint(
            "seats_used >= 0 AND seats_used <= seats_total", name="ck_licenses_seats_used"
        ),
    )
    op.create_index("idx_licenses_status", "licenses", ["status"])
    op.create_index("idx_licenses_expires_at", "licenses", ["expires_at"])
    op.create_index("idx_licenses_appid", "licenses", ["appid"])
    op.create_index("idx_licenses_countid", "licenses", ["countid"])
    op.create_index("idx_licenses_email", "licenses", ["email"])
    op.create_index("idx_licenses_utilization", "licenses", ["utilization_percent"])

    # Create license_assignments table
    op.create_table(
        "license_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("license_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="assigned"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by", sa.String(255), nullable=True),
        sa.Column("revoked_by", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["license_id"], ["licenses.id"], ondelete="RESTRICT"),
    )
    op.create_index("idx_license_assignments_license", "license_assignments", ["license_id"])
    op.create_index("idx_license_assignments_user", "license_assignments", ["user_id"])
    # At most one non-revoked assignment per (license, user)
    op.create_index(
        "uq_license_assignments_active_user",
        "license_assignments",
        ["license_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'revoked'"),
    )

    # Create audit_events table
    op.create_table(
        "audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_events_created", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("idx_audit_events_type", "audit_events", ["type"])

    # Create external_license_snapshots table
    op.create_table(
        "external_license_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("appid", sa.String(255), nullable=True),
        sa.Column("countid", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("sync_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("license_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
        sa.ForeignKeyConstraint(["license_id"], ["licenses.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "idx_external_snapshots_status", "external_license_snapshots", ["sync_status"]
    )
    op.create_index("idx_external_snapshots_appid", "external_license_snapshots", ["appid"])
    op.create_index("idx_external_snapshots_countid", "external_license_snapshots", ["countid"])


def downgrade() -> None:
    op.drop_table("external_license_snapshots")
    op.drop_table("audit_events")
    op.drop_table("license_assignments")
    op.drop_table("licenses")
