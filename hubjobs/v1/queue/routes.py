"""
Queue administration endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from hubjobs.config.logging import get_logger
from hubjobs.v1.background import QueueEngineDep
from hubjobs.v1.core.exceptions import NotFoundError, ValidationError, create_success_response
from hubjobs.v1.queue.engine import QueueEngine
from hubjobs.v1.queue.models import QueueJobStatus
from hubjobs.v1.queue.schemas import QueueJobCreate, QueueJobListResponse, QueueJobResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/queues", tags=["queues"])


def _parse_statuses(status: str | None) -> list[QueueJobStatus]:
    if not status:
        return list(QueueJobStatus)
    try:
        return [QueueJobStatus(s.strip()) for s in status.split(",") if s.strip()]
    except ValueError:
        raise ValidationError(
            f"Invalid status filter: {status}",
            {"allowed": [s.value for s in QueueJobStatus]},
        ) from None


@router.post("/jobs", response_model=dict, status_code=201)
async def add_job(
    job_request: QueueJobCreate, queue: QueueEngine = QueueEngineDep
) -> dict[str, Any]:
    """Add a job to a queue."""
    job = await queue.add_job(job_request.queue_name, job_request.payload, job_request.options)
    return create_success_response(
        data=QueueJobResponse.model_validate(job).model_dump(mode="json"),
        message="Job added to queue",
    )


@router.get("/{queue_name}/jobs", response_model=dict)
async def list_jobs(
    queue_name: str,
    status: str | None = Query(
        default=None, description="Comma-separated statuses (default: all)"
    ),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    queue: QueueEngine = QueueEngineDep,
) -> dict[str, Any]:
    """List jobs of a queue, most recently updated first."""
    statuses = _parse_statuses(status)
    jobs = await queue.get_jobs_by_status(queue_name, statuses, limit=limit, offset=offset)

    response_data = QueueJobListResponse(
        jobs=[QueueJobResponse.model_validate(job) for job in jobs],
        count=len(jobs),
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/{queue_name}/jobs/{job_id}", response_model=dict)
async def get_job(
    queue_name: str, job_id: UUID, queue: QueueEngine = QueueEngineDep
) -> dict[str, Any]:
    """Get one job."""
    job = await queue.get_job(queue_name, job_id)
    if job is None:
        raise NotFoundError(
            f"Job {job_id} not found in queue {queue_name}",
            {"queue": queue_name, "job_id": str(job_id)},
        )
    return create_success_response(
        data=QueueJobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{queue_name}/jobs/{job_id}/retry", response_model=dict)
async def retry_job(
    queue_name: str, job_id: UUID, queue: QueueEngine = QueueEngineDep
) -> dict[str, Any]:
    """Send a failed job back to its queue."""
    if not await queue.retry_job(queue_name, job_id):
        raise HTTPException(status_code=400, detail="Job not found or not in failed state")

    logger.info("Job retried via API", queue=queue_name, job_id=str(job_id))
    return create_success_response(
        data={"job_id": str(job_id), "retried": True}, message="Job marked for retry"
    )


@router.delete("/{queue_name}/jobs/{job_id}", response_model=dict)
async def delete_job(
    queue_name: str, job_id: UUID, queue: QueueEngine = QueueEngineDep
) -> dict[str, Any]:
    """Delete a job record."""
    await queue.delete_job(queue_name, job_id)
    return create_success_response(
        data={"job_id": str(job_id), "deleted": True}, message="Job deleted"
    )


@router.post("/{queue_name}/cleanup", response_model=dict)
async def cleanup_jobs(
    queue_name: str,
    older_than_days: int = Query(default=7, ge=0, description="Age cutoff in days"),
    queue: QueueEngine = QueueEngineDep,
) -> dict[str, Any]:
    """Delete one batch of old completed and failed jobs."""
    deleted_count = await queue.cleanup_old_jobs(queue_name, older_than_days)
    return create_success_response(
        data={"deleted_count": deleted_count, "older_than_days": older_than_days},
        message=f"Cleaned up {deleted_count} old jobs",
    )


@router.get("/{queue_name}/stats", response_model=dict)
async def get_queue_stats(
    queue_name: str, queue: QueueEngine = QueueEngineDep
) -> dict[str, Any]:
    """Per-status job counts of a queue."""
    stats = await queue.get_queue_stats(queue_name)
    return create_success_response(
        data={"queue_name": queue_name, "stats": stats.model_dump(), **queue.describe(queue_name)}
    )
