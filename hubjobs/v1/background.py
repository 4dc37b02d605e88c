"""
Process-level wiring of the background job subsystem.

BackgroundJobs owns the queue engine, the scheduler engine and the file
maintenance tasks for one process. The application creates it in its
lifespan and stores it on ``app.state``; routes reach it through
``BackgroundJobsDep``.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
from fastapi import Depends, Request

from hubjobs.config.logging import get_logger
from hubjobs.config.settings import Settings
from hubjobs.infra.database import Database, utcnow
from hubjobs.v1.core.registries import ScheduledTaskRegistry
from hubjobs.v1.maintenance.storage import FileStorage, LocalFileStorage
from hubjobs.v1.maintenance.tasks import MaintenanceTaskSet
from hubjobs.v1.queue.engine import QueueEngine
from hubjobs.v1.queue.processors import EmailSender, FileProcessor, register_default_queues
from hubjobs.v1.queue.schemas import QueueStats, QueueStatsEntry
from hubjobs.v1.scheduler.engine import SchedulerEngine
from hubjobs.v1.scheduler.handlers import (
    DEFAULT_SCHEDULES,
    PayoutGateway,
    register_default_handlers,
)

logger = get_logger(__name__)


class BackgroundJobs:
    """Queue engine, scheduler and maintenance tasks of one process."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
        http_client: httpx.AsyncClient | None = None,
        storage: FileStorage | None = None,
        quarantine_storage: FileStorage | None = None,
        payout_gateway: PayoutGateway | None = None,
        email_sender: EmailSender | None = None,
        file_processor: FileProcessor | None = None,
    ):
        self.settings = settings
        self.database = database
        self.clock = clock

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.external_sync_timeout_s
        )
        self.storage = storage or LocalFileStorage(settings.file_storage_root)
        self.quarantine_storage = quarantine_storage or LocalFileStorage(settings.quarantine_dir)
        self.payout_gateway = payout_gateway

        session_factory = database.SessionLocal
        self.queue = QueueEngine(session_factory, settings, clock=clock)
        register_default_queues(
            self.queue,
            session_factory,
            settings,
            storage=self.storage,
            http_client=self.http_client,
            email_sender=email_sender,
            file_processor=file_processor,
            clock=clock,
        )
        self.task_registry = ScheduledTaskRegistry()
        self.scheduler = SchedulerEngine(
            session_factory, settings, registry=self.task_registry, clock=clock
        )
        self.maintenance = MaintenanceTaskSet(
            session_factory,
            settings,
            storage=self.storage,
            quarantine_storage=self.quarantine_storage,
            clock=clock,
        )
        self._started = False

    async def start(self) -> None:
        """
        Start timers and poll tasks.

        The built-in queues and any queue registered on ``self.queue`` before
        this call start processing here unless ``queue_processing_enabled`` is
        off; later registrations start with ``queue.start_processing``.
        """
        if self._started:
            return

        register_default_handlers(
            self.task_registry,
            self.database.SessionLocal,
            self.settings,
            storage=self.storage,
            http_client=self.http_client,
            payout_gateway=self.payout_gateway,
            clock=self.clock,
        )
        await self.scheduler.start(defaults=DEFAULT_SCHEDULES)

        if self.settings.maintenance_enabled:
            self.maintenance.register(self.scheduler)

        if self.settings.queue_processing_enabled:
            self.queue.start_all()
        self._started = True
        logger.info("Background jobs started", queues=self.queue.queue_names())

    async def stop(self, timeout_seconds: float = 30.0) -> None:
        """Stop polling and timers, waiting (bounded) for running work."""
        await self.queue.shutdown(timeout_seconds)
        await self.scheduler.stop(timeout_seconds)
        if self._owns_http_client:
            await self.http_client.aclose()
        self._started = False
        logger.info("Background jobs stopped")

    async def get_system_status(self) -> dict[str, Any]:
        """Scheduler state plus stats of the known and registered queues."""
        queue_names = list(
            dict.fromkeys([*self.settings.known_queues, *self.queue.queue_names()])
        )

        queues = []
        for queue_name in queue_names:
            try:
                stats = await self.queue.get_queue_stats(queue_name)
                error = None
            except Exception as e:
                logger.error("Could not read queue stats", queue=queue_name, error=str(e))
                stats = QueueStats()
                error = str(e)
            queues.append(
                QueueStatsEntry(
                    queue_name=queue_name,
                    stats=stats,
                    error=error,
                    **self.queue.describe(queue_name),
                )
            )

        return {
            "scheduler": [task.model_dump(mode="json") for task in self.scheduler.get_status()],
            "queues": [entry.model_dump(mode="json") for entry in queues],
            "timestamp": self.clock().isoformat(),
        }


def get_background_jobs(request: Request) -> BackgroundJobs:
    """Background jobs owned by the running application."""
    return request.app.state.background_jobs


def get_queue_engine(
    background_jobs: BackgroundJobs = Depends(get_background_jobs),
) -> QueueEngine:
    return background_jobs.queue


def get_scheduler_engine(
    background_jobs: BackgroundJobs = Depends(get_background_jobs),
) -> SchedulerEngine:
    return background_jobs.scheduler


def get_maintenance_tasks(
    background_jobs: BackgroundJobs = Depends(get_background_jobs),
) -> MaintenanceTaskSet:
    return background_jobs.maintenance


# Convenience type aliases for dependency injection
BackgroundJobsDep = Depends(get_background_jobs)
QueueEngineDep = Depends(get_queue_engine)
SchedulerEngineDep = Depends(get_scheduler_engine)
MaintenanceTasksDep = Depends(get_maintenance_tasks)
