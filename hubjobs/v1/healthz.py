from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hubjobs.config.settings import Settings, SettingsDep
from hubjobs.infra.database import get_session
from hubjobs.v1.background import BackgroundJobs, BackgroundJobsDep
from hubjobs.v1.core.exceptions import create_success_response

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class BackgroundHealth(BaseModel):
    """Queue engine and scheduler summary."""

    registered_queues: int
    processing_queues: int
    in_flight_jobs: int
    scheduled_tasks: int
    running_timers: int


class HealthResponse(BaseModel):
    """Health response with database and background job status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    background: BackgroundHealth


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep,
    session: AsyncSession = Depends(get_session),
    background_jobs: BackgroundJobs = BackgroundJobsDep,
):
    """Health check endpoint with database and background job status."""

    db_health = await _check_database_health(session)

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        background=_background_health(background_jobs),
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


def _background_health(background_jobs: BackgroundJobs) -> BackgroundHealth:
    queues = [background_jobs.queue.describe(name) for name in background_jobs.queue.queue_names()]
    tasks = background_jobs.scheduler.get_status()

    return BackgroundHealth(
        registered_queues=len(queues),
        processing_queues=sum(1 for q in queues if q["processing"]),
        in_flight_jobs=sum(q["in_flight"] for q in queues),
        scheduled_tasks=len(tasks),
        running_timers=sum(1 for t in tasks if t.running),
    )
