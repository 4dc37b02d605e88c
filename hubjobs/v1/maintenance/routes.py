"""
File maintenance endpoints.
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from hubjobs.v1.background import MaintenanceTasksDep
from hubjobs.v1.core.exceptions import create_success_response
from hubjobs.v1.maintenance.tasks import CleanupType, MaintenanceTaskSet

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class CleanupRequest(BaseModel):
    """Schema for a manual cleanup run."""

    type: CleanupType = Field(default="all", description="Which sweeps to run")


@router.post("/cleanup", response_model=dict)
async def run_cleanup(
    cleanup_request: CleanupRequest, maintenance: MaintenanceTaskSet = MaintenanceTasksDep
) -> dict[str, Any]:
    """Run file cleanup sweeps now."""
    result = await maintenance.run_manual_cleanup(cleanup_request.type)
    message = "Cleanup completed" if result["success"] else "Cleanup completed with errors"
    return create_success_response(data=result, message=message)


@router.get("/stats", response_model=dict)
async def get_cleanup_stats(
    maintenance: MaintenanceTaskSet = MaintenanceTasksDep,
) -> dict[str, Any]:
    stats = await maintenance.get_cleanup_stats()
    return create_success_response(data=stats)
