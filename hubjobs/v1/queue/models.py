"""
Queue job records.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hubjobs.infra.database import Base, UTCDateTime, utcnow


class QueueJobStatus(str, Enum):
    """Queue job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


READY_STATUSES = (QueueJobStatus.PENDING.value, QueueJobStatus.RETRYING.value)
TERMINAL_STATUSES = (QueueJobStatus.COMPLETED.value, QueueJobStatus.FAILED.value)


class QueueJob(Base):
    """
    A unit of asynchronous work submitted to a named queue.

    All queues share one table; ``queue_name`` partitions it into one logical
    collection per queue.
    """

    __tablename__ = "queue_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Logical queue the job belongs to"
    )
    payload: Mapped[Any] = mapped_column(
        JSON, nullable=True, comment="Opaque, handler-defined job data"
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=QueueJobStatus.PENDING.value,
        comment="pending|processing|completed|failed|retrying",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher is served first"
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    next_eligible_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest dispatch time"
    )

    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[Any] = mapped_column(JSON, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retrying')",
            name="queue_jobs_status_check",
        ),
        CheckConstraint("attempts <= max_attempts", name="queue_jobs_attempts_check"),
        Index("ix_queue_jobs_ready", "queue_name", "status", "next_eligible_at"),
    )

    def is_terminal(self) -> bool:
        """Check if job is completed or failed."""
        return self.status in TERMINAL_STATUSES

    def can_retry(self) -> bool:
        """Check if another attempt is allowed after the current one."""
        return self.attempts < self.max_attempts
