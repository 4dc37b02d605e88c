"""
Queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hubjobs.v1.queue.models import QueueJobStatus


class QueueOptions(BaseModel):
    """Per-queue processing options, consumed once at registration."""

    concurrency: int = Field(default=5, ge=1, description="Maximum jobs in flight")
    poll_interval_ms: int = Field(default=5000, ge=10, description="Poll cadence")
    visibility_timeout_ms: int = Field(
        default=60000, ge=1000, description="Processing time before a job counts as stalled"
    )


class JobOptions(BaseModel):
    """Options for enqueueing a job."""

    priority: int = Field(default=0, ge=0, le=10, description="Higher is served first")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before failing")
    delay_seconds: int = Field(default=0, ge=0, le=86400, description="Initial delay")


class QueueJobCreate(BaseModel):
    """Schema for adding a job through the admin API."""

    queue_name: str = Field(..., min_length=1, description="Target queue")
    payload: dict[str, Any] = Field(..., description="Handler-defined job data")
    options: JobOptions = Field(default_factory=JobOptions)


class QueueJobResponse(BaseModel):
    """Schema for queue job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    queue_name: str
    payload: Any
    status: QueueJobStatus
    priority: int
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    next_eligible_at: datetime
    error: str | None = None
    result: Any = None
    processing_time_ms: int | None = None


class QueueJobListResponse(BaseModel):
    """Schema for queue job list responses."""

    jobs: list[QueueJobResponse]
    count: int
    limit: int
    offset: int


class QueueStats(BaseModel):
    """Per-status job counts for one queue; derived, never stored."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    retrying: int = 0
    total: int = 0


class QueueStatsEntry(BaseModel):
    """Queue stats as reported by the system status call."""

    queue_name: str
    stats: QueueStats
    registered: bool = False
    processing: bool = False
    in_flight: int = 0
    error: str | None = None
