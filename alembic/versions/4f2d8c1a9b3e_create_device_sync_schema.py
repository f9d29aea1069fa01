"""create device sync schema

Revision ID: 4f2d8c1a9b3e
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4f2d8c1a9b3e"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

account_status = sa.Enum("active", "suspended", "deactivated", name="accountstatus")
device_type = sa.Enum("desktop", "mobile", "tablet", "other", name="devicetype")
os_type = sa.Enum("windows", "macos", "linux", "ios", "android", "other", name="ostype")
content_type = sa.Enum("clipboard", "link", "file", "note", name="contenttype")
sync_state = sa.Enum(
    "pending", "in_progress", "completed", "failed", "conflict", name="syncstate"
)
conflict_strategy = sa.Enum(
    "latest_wins",
    "source_wins",
    "destination_wins",
    "manual",
    name="conflictresolutionstrategy",
)
security_event_type = sa.Enum(
    "login_success",
    "login_failed",
    "device_paired",
    "device_removed",
    "suspicious_activity",
    "password_changed",
    "password_reset_requested",
    "logout",
    name="securityeventtype",
)
security_event_severity = sa.Enum(
    "low", "medium", "high", "critical", name="securityeventseverity"
)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True, index=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_token", sa.String(64), nullable=True, index=True),
        sa.Column("reset_password_token", sa.String(64), nullable=True, index=True),
        sa.Column("reset_token_expires", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("account_status", account_status, nullable=False, server_default="active"),
        *timestamps(),
    )

    op.create_table(
        "devices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("device_name", sa.String(255), nullable=False),
        sa.Column("device_type", device_type, nullable=False, server_default="other"),
        sa.Column("os_type", os_type, nullable=False, server_default="other"),
        sa.Column("browser_type", sa.String(50), nullable=True),
        sa.Column("last_ip_address", sa.String(45), nullable=True),
        sa.Column("device_token", sa.String(64), nullable=False),
        sa.Column("device_settings", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_sync", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_interval", sa.Integer(), nullable=False, server_default="300"),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("user_id", "device_token", name="uq_user_device_token"),
    )

    op.create_table(
        "device_authentications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "device_id",
            sa.String(36),
            sa.ForeignKey("devices.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by_ip", sa.String(45), nullable=True),
        *timestamps(),
    )

    op.create_table(
        "sync_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "source_device_id",
            sa.String(36),
            sa.ForeignKey("devices.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("content_type", content_type, nullable=False, index=True),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "parent_sync_id", sa.String(36), sa.ForeignKey("sync_records.id"), nullable=True
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("checksum", sa.String(64), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
        *timestamps(),
    )
    op.create_index("ix_sync_records_user_created", "sync_records", ["user_id", "created_at"])

    op.create_table(
        "sync_delivery_statuses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "sync_id",
            sa.String(36),
            sa.ForeignKey("sync_records.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "device_id",
            sa.String(36),
            sa.ForeignKey("devices.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("sync_state", sync_state, nullable=False, server_default="pending"),
        sa.Column("last_sync_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=True),
        sa.Column("conflict_resolution_strategy", conflict_strategy, nullable=True),
        sa.UniqueConstraint("sync_id", "device_id", name="uq_sync_device"),
    )

    op.create_table(
        "security_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "device_id",
            sa.String(36),
            sa.ForeignKey("devices.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("event_type", security_event_type, nullable=False),
        sa.Column("severity", security_event_severity, nullable=False),
        sa.Column("event_description", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        *timestamps(),
    )


def downgrade() -> None:
    op.drop_table("security_events")
    op.drop_table("sync_delivery_statuses")
    op.drop_index("ix_sync_records_user_created", table_name="sync_records")
    op.drop_table("sync_records")
    op.drop_table("device_authentications")
    op.drop_table("devices")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        security_event_severity,
        security_event_type,
        conflict_strategy,
        sync_state,
        content_type,
        os_type,
        device_type,
        account_status,
    ):
        enum.drop(bind, checkfirst=True)
