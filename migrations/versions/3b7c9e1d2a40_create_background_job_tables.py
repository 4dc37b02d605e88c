"""create background job tables

Revision ID: 3b7c9e1d2a40
Revises:
Create Date: 2026-10-18 09:12:31.402118

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c9e1d2a40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = True, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def upgrade() -> None:
    """Upgrade schema."""
    # Queue jobs, partitioned into logical queues by queue_name
    op.create_table(
        "queue_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("queue_name", sa.Text, nullable=False, comment="Logical queue"),
        sa.Column("payload", sa.JSON, nullable=True, comment="Handler-defined job data"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="pending|processing|completed|failed|retrying",
        ),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        _timestamp("failed_at"),
        _timestamp("next_eligible_at", nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("processing_time_ms", sa.Integer, nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retrying')",
            name="queue_jobs_status_check",
        ),
        sa.CheckConstraint(
            "attempts <= max_attempts", name="queue_jobs_attempts_check"
        ),
    )
    op.create_index(
        "ix_queue_jobs_ready",
        "queue_jobs",
        ["queue_name", "status", "next_eligible_at"],
    )

    # Scheduled job configurations
    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text, nullable=False, unique=True, comment="Handler name"),
        sa.Column("cron_expression", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, comment="active|paused|error"),
        _timestamp("last_run_at"),
        _timestamp("next_run_at"),
        sa.Column("run_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error_message", sa.Text, nullable=True),
        sa.Column("last_duration_ms", sa.Integer, nullable=True),
        sa.Column("last_result", sa.JSON, nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.CheckConstraint(
            "status IN ('active', 'paused', 'error')",
            name="scheduled_jobs_status_check",
        ),
    )

    # File records swept by maintenance tasks
    op.create_table(
        "file_metadata",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("path", sa.Text, nullable=False, comment="Storage key"),
        sa.Column("original_name", sa.Text, nullable=True),
        sa.Column("category", sa.Text, nullable=False),
        sa.Column("size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("checksum", sa.Text, nullable=True),
        sa.Column("uploaded_by", sa.UUID(as_uuid=True), nullable=True),
        _timestamp("uploaded_at", nullable=False),
        _timestamp("expires_at"),
        sa.Column("is_duplicate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("original_file_id", sa.UUID(as_uuid=True), nullable=True),
        _timestamp("duplicate_detected_at"),
    )
    op.create_index("ix_file_metadata_category", "file_metadata", ["category"])
    op.create_index("ix_file_metadata_checksum", "file_metadata", ["checksum"])
    op.create_index("ix_file_metadata_expires_at", "file_metadata", ["expires_at"])

    op.create_table(
        "virus_scan_results",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("file_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "status", sa.Text, nullable=False, comment="clean|infected|quarantined|error"
        ),
        sa.Column("details", sa.Text, nullable=True),
        _timestamp("scanned_at", nullable=False),
    )
    op.create_index("ix_virus_scan_results_file_id", "virus_scan_results", ["file_id"])

    op.create_table(
        "file_access_logs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "file_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("file_metadata.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("accessed_by", sa.UUID(as_uuid=True), nullable=True),
        _timestamp("accessed_at", nullable=False),
    )
    op.create_index("ix_file_access_logs_file_id", "file_access_logs", ["file_id"])

    # Platform records used by the scheduled task catalog
    op.create_table(
        "user_sessions",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.UUID(as_uuid=True), nullable=False),
        _timestamp("created_at", nullable=False),
        _timestamp("expires_at", nullable=False),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_index("ix_user_sessions_expires_at", "user_sessions", ["expires_at"])

    op.create_table(
        "mentoring_sessions",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("mentor_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("mentee_id", sa.UUID(as_uuid=True), nullable=False),
        _timestamp("scheduled_at", nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="scheduled"),
        _timestamp("reminder_sent_at"),
    )
    op.create_index(
        "ix_mentoring_sessions_scheduled_at", "mentoring_sessions", ["scheduled_at"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("read", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "payouts",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("mentor_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.Text, nullable=False, server_default="USD"),
        sa.Column(
            "status", sa.Text, nullable=False, server_default="pending", comment="pending|paid|failed"
        ),
        sa.Column("reference", sa.Text, nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("processed_at"),
    )
    op.create_index("ix_payouts_mentor_id", "payouts", ["mentor_id"])

    op.create_table(
        "analytics_reports",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("period", sa.Text, nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("stats", sa.JSON, nullable=False),
        _timestamp("generated_at", nullable=False),
        sa.UniqueConstraint("period", "period_start", name="analytics_reports_period_uq"),
    )

    op.create_table(
        "external_sync_states",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("source", sa.Text, nullable=False, unique=True),
        sa.Column("cursor", sa.Text, nullable=True),
        sa.Column("record_count", sa.Integer, nullable=False, server_default="0"),
        _timestamp("last_synced_at"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("external_sync_states")
    op.drop_table("analytics_reports")
    op.drop_index("ix_payouts_mentor_id", table_name="payouts")
    op.drop_table("payouts")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_mentoring_sessions_scheduled_at", table_name="mentoring_sessions")
    op.drop_table("mentoring_sessions")
    op.drop_index("ix_user_sessions_expires_at", table_name="user_sessions")
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_index("ix_file_access_logs_file_id", table_name="file_access_logs")
    op.drop_table("file_access_logs")
    op.drop_index("ix_virus_scan_results_file_id", table_name="virus_scan_results")
    op.drop_table("virus_scan_results")
    op.drop_index("ix_file_metadata_expires_at", table_name="file_metadata")
    op.drop_index("ix_file_metadata_checksum", table_name="file_metadata")
    op.drop_index("ix_file_metadata_category", table_name="file_metadata")
    op.drop_table("file_metadata")
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_queue_jobs_ready", table_name="queue_jobs")
    op.drop_table("queue_jobs")
