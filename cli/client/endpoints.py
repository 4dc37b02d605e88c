"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from .base import APIClient
from ..utils.config_manager import config


class HubJobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(self, base_url: str | None = None, **client_kwargs: Any):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=api_config.get("headers", {}),
            **client_kwargs,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health and status
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    def system_status(self) -> dict[str, Any]:
        return self.api.get("/system/status")

    # Queue endpoints
    def queue_stats(self, queue_name: str) -> dict[str, Any]:
        return self.api.get(f"/queues/{queue_name}/stats")

    def list_jobs(
        self,
        queue_name: str,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs of a queue"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        return self.api.get(f"/queues/{queue_name}/jobs", params)

    def get_job(self, queue_name: str, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/queues/{queue_name}/jobs/{job_id}")

    def add_job(
        self,
        queue_name: str,
        payload: dict[str, Any],
        priority: int = 0,
        max_attempts: int = 3,
        delay_seconds: int = 0,
    ) -> dict[str, Any]:
        """Add a job to a queue"""
        return self.api.post(
            "/queues/jobs",
            json={
                "queue_name": queue_name,
                "payload": payload,
                "options": {
                    "priority": priority,
                    "max_attempts": max_attempts,
                    "delay_seconds": delay_seconds,
                },
            },
        )

    def retry_job(self, queue_name: str, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/queues/{queue_name}/jobs/{job_id}/retry")

    def delete_job(self, queue_name: str, job_id: str) -> dict[str, Any]:
        return self.api.delete(f"/queues/{queue_name}/jobs/{job_id}")

    def cleanup_jobs(self, queue_name: str, older_than_days: int = 7) -> dict[str, Any]:
        return self.api.post(
            f"/queues/{queue_name}/cleanup", params={"older_than_days": older_than_days}
        )

    # Scheduled job endpoints
    def list_scheduled_jobs(self) -> dict[str, Any]:
        return self.api.get("/scheduled-jobs")

    def create_scheduled_job(
        self, name: str, cron_expression: str, status: str = "active"
    ) -> dict[str, Any]:
        return self.api.post(
            "/scheduled-jobs",
            json={"name": name, "cron_expression": cron_expression, "status": status},
        )

    def update_scheduled_job(
        self, ref: str, cron_expression: str | None = None, status: str | None = None
    ) -> dict[str, Any]:
        body = {}
        if cron_expression:
            body["cron_expression"] = cron_expression
        if status:
            body["status"] = status
        return self.api.patch(f"/scheduled-jobs/{ref}", json=body)

    def delete_scheduled_job(self, ref: str) -> dict[str, Any]:
        return self.api.delete(f"/scheduled-jobs/{ref}")

    def trigger_scheduled_job(self, ref: str) -> dict[str, Any]:
        return self.api.post(f"/scheduled-jobs/{ref}/trigger")

    def pause_scheduled_job(self, ref: str) -> dict[str, Any]:
        return self.api.post(f"/scheduled-jobs/{ref}/pause")

    def resume_scheduled_job(self, ref: str) -> dict[str, Any]:
        return self.api.post(f"/scheduled-jobs/{ref}/resume")

    # Maintenance endpoints
    def run_cleanup(self, cleanup_type: str = "all") -> dict[str, Any]:
        return self.api.post("/maintenance/cleanup", json={"type": cleanup_type})

    def cleanup_stats(self) -> dict[str, Any]:
        return self.api.get("/maintenance/stats")
