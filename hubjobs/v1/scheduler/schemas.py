"""
Scheduler Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hubjobs.v1.scheduler.models import ScheduledJobStatus


class ScheduledJobCreate(BaseModel):
    """Schema for creating a scheduled job."""

    name: str = Field(..., min_length=1, description="Registered handler name")
    cron_expression: str = Field(..., description="5-field cron expression")
    status: Literal["active", "paused"] = Field(default="active")


class ScheduledJobUpdate(BaseModel):
    """Schema for updating a scheduled job."""

    cron_expression: str | None = Field(default=None, description="New cron expression")
    status: Literal["active", "paused"] | None = Field(default=None)


class ScheduledJobResponse(BaseModel):
    """Schema for scheduled job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    cron_expression: str
    status: ScheduledJobStatus
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    run_count: int
    last_error_message: str | None = None
    last_duration_ms: int | None = None
    last_result: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class ScheduledTaskStatus(BaseModel):
    """Timer state of one scheduled task, persisted or static."""

    name: str
    cron_expression: str
    status: ScheduledJobStatus
    running: bool
    persisted: bool
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    run_count: int = 0
    last_error_message: str | None = None
