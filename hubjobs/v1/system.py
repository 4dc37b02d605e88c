from typing import Any

from fastapi import APIRouter

from hubjobs.v1.background import BackgroundJobs, BackgroundJobsDep
from hubjobs.v1.core.exceptions import create_success_response

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status", response_model=dict)
async def get_system_status(
    background_jobs: BackgroundJobs = BackgroundJobsDep,
) -> dict[str, Any]:
    """Scheduler task states and stats of the known queues."""
    status = await background_jobs.get_system_status()
    return create_success_response(data=status)
