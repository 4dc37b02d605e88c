"""
Scheduled job configuration records.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hubjobs.infra.database import Base, UTCDateTime, utcnow


class ScheduledJobStatus(str, Enum):
    """Scheduled job status enumeration."""

    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class ScheduledJobConfig(Base):
    """
    A named recurring task fired on a cron schedule.

    ``name`` resolves to an in-process handler. A run that fails moves the
    config to ``error`` but never stops its timer; the next successful run
    flips it back to ``active``.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="Handler name"
    )
    cron_expression: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=ScheduledJobStatus.ACTIVE.value,
        comment="active|paused|error",
    )

    # Run tracking
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'error')",
            name="scheduled_jobs_status_check",
        ),
    )

    def is_paused(self) -> bool:
        return self.status == ScheduledJobStatus.PAUSED.value
