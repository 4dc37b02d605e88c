"""
Scheduled job administration endpoints.

``ref`` path parameters accept either the config id or the task name; static
maintenance tasks are addressed by name.
"""

from typing import Any

from fastapi import APIRouter

from hubjobs.config.logging import get_logger
from hubjobs.v1.background import SchedulerEngineDep
from hubjobs.v1.core.exceptions import create_success_response
from hubjobs.v1.scheduler.engine import SchedulerEngine
from hubjobs.v1.scheduler.schemas import (
    ScheduledJobCreate,
    ScheduledJobResponse,
    ScheduledJobUpdate,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/scheduled-jobs", tags=["scheduled-jobs"])


def _serialize(config: Any) -> dict[str, Any]:
    return ScheduledJobResponse.model_validate(config).model_dump(mode="json")


@router.get("", response_model=dict)
async def list_scheduled_jobs(scheduler: SchedulerEngine = SchedulerEngineDep) -> dict[str, Any]:
    """List persisted scheduled jobs with the timer state of every task."""
    configs = await scheduler.list_jobs()
    return create_success_response(
        data={
            "jobs": [_serialize(config) for config in configs],
            "tasks": [task.model_dump(mode="json") for task in scheduler.get_status()],
        }
    )


@router.get("/{ref}", response_model=dict)
async def get_scheduled_job(
    ref: str, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    config = await scheduler.get_job(ref)
    return create_success_response(data=_serialize(config))


@router.post("", response_model=dict, status_code=201)
async def create_scheduled_job(
    job_request: ScheduledJobCreate, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    """Schedule a registered handler."""
    config = await scheduler.create_job(
        job_request.name, job_request.cron_expression, job_request.status
    )
    return create_success_response(data=_serialize(config), message="Scheduled job created")


@router.patch("/{ref}", response_model=dict)
async def update_scheduled_job(
    ref: str,
    job_update: ScheduledJobUpdate,
    scheduler: SchedulerEngine = SchedulerEngineDep,
) -> dict[str, Any]:
    """Change the cron expression and/or pause state of a scheduled job."""
    config = await scheduler.update_job(
        ref, cron_expression=job_update.cron_expression, status=job_update.status
    )
    return create_success_response(data=_serialize(config), message="Scheduled job updated")


@router.delete("/{ref}", response_model=dict)
async def delete_scheduled_job(
    ref: str, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    await scheduler.delete_job(ref)
    return create_success_response(data={"ref": ref, "deleted": True}, message="Scheduled job deleted")


@router.post("/{ref}/trigger", response_model=dict)
async def trigger_scheduled_job(
    ref: str, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    """Run a task now, outside its schedule."""
    outcome = await scheduler.trigger_job(ref)
    logger.info("Scheduled job triggered via API", ref=ref, success=outcome.success)
    return create_success_response(data=outcome.to_dict(), message=outcome.message)


@router.post("/{ref}/pause", response_model=dict)
async def pause_scheduled_job(
    ref: str, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    status = await scheduler.pause_job(ref)
    return create_success_response(data=status.model_dump(mode="json"), message="Scheduled job paused")


@router.post("/{ref}/resume", response_model=dict)
async def resume_scheduled_job(
    ref: str, scheduler: SchedulerEngine = SchedulerEngineDep
) -> dict[str, Any]:
    status = await scheduler.resume_job(ref)
    return create_success_response(data=status.model_dump(mode="json"), message="Scheduled job resumed")
