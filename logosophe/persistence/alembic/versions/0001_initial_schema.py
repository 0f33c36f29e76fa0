"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-12 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


_BIGINT_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _ts(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _flag(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.false())


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "credentials",
        sa.Column("email", sa.String(), primary_key=True),
        sa.Column("role", sa.String(), nullable=False),
        _ts("created_at"),
    )

    op.create_table(
        "tenant_users",
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), primary_key=True),
        sa.Column("email", sa.String(), primary_key=True),
        sa.Column("role_id", sa.String(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_tenant_users_email", "tenant_users", ["email"])

    op.create_table(
        "subscribers",
        sa.Column("email", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _flag("banned"),
        _ts("joined_at"),
        _ts("left_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=True),
        _ts("expires_at"),
        _ts("revoked_at", nullable=True),
        _ts("created_at"),
        _ts("last_seen_at", nullable=True),
    )
    op.create_index("ix_user_sessions_email", "user_sessions", ["email"])
    op.create_index("ix_user_sessions_token_hash", "user_sessions", ["token_hash"], unique=True)

    op.create_table(
        "messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("sender_email", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(), nullable=False),
        _flag("is_archived"),
        _ts("archived_at", nullable=True),
        _flag("is_deleted"),
        _ts("deleted_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_messages_tenant_id", "messages", ["tenant_id"])
    op.create_index("ix_messages_sender_email", "messages", ["sender_email"])
    op.create_index("ix_messages_tenant_created", "messages", ["tenant_id", "created_at"])

    op.create_table(
        "message_recipients",
        sa.Column("message_id", sa.String(), sa.ForeignKey("messages.id"), primary_key=True),
        sa.Column("recipient_email", sa.String(), primary_key=True),
        _flag("is_read"),
        _ts("read_at", nullable=True),
        _flag("is_archived"),
        _ts("archived_at", nullable=True),
        _flag("is_deleted"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index("ix_message_recipients_recipient_email", "message_recipients", ["recipient_email"])

    op.create_table(
        "user_blocks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("blocker_email", sa.String(), nullable=False),
        sa.Column("blocked_email", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        sa.UniqueConstraint("blocker_email", "blocked_email", "tenant_id", name="uq_user_blocks_pair"),
    )
    op.create_index("ix_user_blocks_blocker_email", "user_blocks", ["blocker_email"])
    op.create_index("ix_user_blocks_blocked_email", "user_blocks", ["blocked_email"])
    op.create_index("ix_user_blocks_tenant_id", "user_blocks", ["tenant_id"])

    op.create_table(
        "message_rate_limits",
        sa.Column("sender_email", sa.String(), primary_key=True),
        _ts("last_message_at"),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "workflows",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("initiator_email", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("completed_at", nullable=True),
        sa.Column("completed_by", sa.String(), nullable=True),
    )
    op.create_index("ix_workflows_tenant_id", "workflows", ["tenant_id"])
    op.create_index("ix_workflows_initiator_email", "workflows", ["initiator_email"])

    op.create_table(
        "workflow_participants",
        sa.Column("workflow_id", sa.String(), sa.ForeignKey("workflows.id"), primary_key=True),
        sa.Column("participant_email", sa.String(), primary_key=True),
        sa.Column("role", sa.String(), nullable=False),
        _ts("joined_at"),
    )
    op.create_index(
        "ix_workflow_participants_participant_email", "workflow_participants", ["participant_email"]
    )

    op.create_table(
        "workflow_invitations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workflow_id", sa.String(), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("inviter_email", sa.String(), nullable=False),
        sa.Column("invitee_email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        _ts("expires_at"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_workflow_invitations_workflow_id", "workflow_invitations", ["workflow_id"])
    op.create_index("ix_workflow_invitations_invitee_email", "workflow_invitations", ["invitee_email"])

    op.create_table(
        "media_files",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("media_type", sa.String(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("storage_key", sa.String(), nullable=False, unique=True),
        sa.Column("uploaded_by", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _flag("is_deleted"),
        _ts("deleted_at", nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_media_files_uploaded_by", "media_files", ["uploaded_by"])

    op.create_table(
        "media_access",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("media_id", sa.String(), sa.ForeignKey("media_files.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("access_type", sa.String(), nullable=False),
        sa.Column("granted_by", sa.String(), nullable=False),
        _ts("granted_at"),
        sa.UniqueConstraint("media_id", "tenant_id", name="uq_media_access_tenant"),
    )
    op.create_index("ix_media_access_media_id", "media_access", ["media_id"])
    op.create_index("ix_media_access_tenant_id", "media_access", ["tenant_id"])

    op.create_table(
        "media_share_links",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("media_id", sa.String(), sa.ForeignKey("media_files.id"), nullable=False),
        sa.Column("share_token", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        _ts("expires_at", nullable=True),
        sa.Column("max_accesses", sa.Integer(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("password_hash", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_media_share_links_media_id", "media_share_links", ["media_id"])
    op.create_index("ix_media_share_links_share_token", "media_share_links", ["share_token"], unique=True)

    op.create_table(
        "system_logs",
        sa.Column("id", _BIGINT_ID, primary_key=True, autoincrement=True),
        sa.Column("log_type", sa.String(), nullable=False),
        _ts("timestamp"),
        sa.Column("user_email", sa.String(), nullable=True),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("activity_type", sa.String(), nullable=True),
        sa.Column("access_type", sa.String(), nullable=True),
        sa.Column("target_id", sa.String(), nullable=True),
        sa.Column("target_name", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        _flag("is_deleted"),
        _ts("deleted_at", nullable=True),
    )
    op.create_index("ix_system_logs_log_type", "system_logs", ["log_type"])
    op.create_index("ix_system_logs_timestamp", "system_logs", ["timestamp"])
    op.create_index("ix_system_logs_user_email", "system_logs", ["user_email"])
    op.create_index("ix_system_logs_tenant_id", "system_logs", ["tenant_id"])
    op.create_index("ix_system_logs_activity_type", "system_logs", ["activity_type"])
    # Retention sweeps scan by (is_deleted, timestamp) and (is_deleted, deleted_at).
    op.create_index("ix_system_logs_deleted_timestamp", "system_logs", ["is_deleted", "timestamp"])
    op.create_index("ix_system_logs_deleted_at", "system_logs", ["is_deleted", "deleted_at"])

    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.String(), nullable=False),
        _ts("updated_at"),
        sa.Column("updated_by", sa.String(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("system_settings")
    op.drop_index("ix_system_logs_deleted_at", table_name="system_logs")
    op.drop_index("ix_system_logs_deleted_timestamp", table_name="system_logs")
    op.drop_index("ix_system_logs_activity_type", table_name="system_logs")
    op.drop_index("ix_system_logs_tenant_id", table_name="system_logs")
    op.drop_index("ix_system_logs_user_email", table_name="system_logs")
    op.drop_index("ix_system_logs_timestamp", table_name="system_logs")
    op.drop_index("ix_system_logs_log_type", table_name="system_logs")
    op.drop_table("system_logs")
    op.drop_table("media_share_links")
    op.drop_table("media_access")
    op.drop_table("media_files")
    op.drop_table("workflow_invitations")
    op.drop_table("workflow_participants")
    op.drop_table("workflows")
    op.drop_table("message_rate_limits")
    op.drop_table("user_blocks")
    op.drop_table("message_recipients")
    op.drop_table("messages")
    op.drop_table("user_sessions")
    op.drop_table("subscribers")
    op.drop_table("tenant_users")
    op.drop_table("credentials")
    op.drop_table("tenants")
