"""
Polling queue engine with per-queue concurrency limits and exponential backoff.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from fastapi.encoders import jsonable_encoder
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hubjobs.config.logging import get_logger, job_log_context
from hubjobs.config.settings import Settings
from hubjobs.infra.database import utcnow
from hubjobs.v1.core.exceptions import (
    ConfigurationError,
    HandlerError,
    NotFoundError,
    PermanentHandlerError,
    StoreError,
    TransientHandlerError,
)
from hubjobs.v1.core.registries import QueueHandler, as_queue_handler
from hubjobs.v1.queue.models import READY_STATUSES, QueueJob, QueueJobStatus
from hubjobs.v1.queue.schemas import JobOptions, QueueOptions, QueueStats

logger = get_logger(__name__)

STALLED_RECOVERY_BATCH = 100


@dataclass
class QueueState:
    """In-process registration of one queue."""

    name: str
    handler: QueueHandler
    options: QueueOptions
    is_processing: bool = False
    in_flight: set[UUID] = field(default_factory=set)
    poll_task: asyncio.Task | None = None
    dispatch_tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def available_slots(self) -> int:
        return self.options.concurrency - len(self.in_flight)


class QueueEngine:
    """
    Owns every named queue of the process.

    Each registered queue has a handler, its options and, while processing is
    enabled, one poll task. A poll claims ready jobs up to the queue's free
    concurrency slots and dispatches each on its own task. Every state
    transition is written to the job store before the next step runs.

    The claim is a conditional update, so one process never dispatches a job
    twice. There is no lease owner, so several engine instances sharing one
    store can still re-dispatch a job whose visibility timeout expired while
    another instance was running it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self._queues: dict[str, QueueState] = {}

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a store session, translating driver failures into StoreError."""
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(f"Job store operation failed: {e}") from e

    # Registration and processing control

    def register_queue(
        self,
        queue_name: str,
        handler: QueueHandler | Callable[[Any, QueueJob], Any],
        options: QueueOptions | None = None,
    ) -> QueueState:
        """Register the handler for a queue. Registration happens once per process."""
        if queue_name in self._queues:
            raise ConfigurationError(
                f"Queue {queue_name} is already registered", {"queue": queue_name}
            )

        if options is None:
            options = QueueOptions(
                concurrency=self.settings.queue_default_concurrency,
                poll_interval_ms=self.settings.queue_default_poll_interval_ms,
                visibility_timeout_ms=self.settings.queue_default_visibility_timeout_ms,
            )

        state = QueueState(
            name=queue_name, handler=as_queue_handler(handler), options=options
        )
        self._queues[queue_name] = state

        logger.info("Queue registered", queue=queue_name, **options.model_dump())
        return state

    def _get_state(self, queue_name: str) -> QueueState:
        state = self._queues.get(queue_name)
        if state is None:
            raise NotFoundError(
                f"Queue {queue_name} is not registered", {"queue": queue_name}
            )
        return state

    def is_registered(self, queue_name: str) -> bool:
        return queue_name in self._queues

    def queue_names(self) -> list[str]:
        return list(self._queues.keys())

    def describe(self, queue_name: str) -> dict[str, Any]:
        """In-memory state of a queue, for status reporting."""
        state = self._queues.get(queue_name)
        if state is None:
            return {"registered": False, "processing": False, "in_flight": 0}
        return {
            "registered": True,
            "processing": state.is_processing,
            "in_flight": len(state.in_flight),
        }

    def start_processing(self, queue_name: str) -> None:
        """Start the poll task for a queue. Calling it twice is a no-op."""
        state = self._get_state(queue_name)
        if state.is_processing:
            logger.info("Queue is already processing", queue=queue_name)
            return

        state.is_processing = True
        state.poll_task = asyncio.create_task(
            self._poll_loop(state), name=f"queue-poll:{queue_name}"
        )
        logger.info("Started processing queue", queue=queue_name)

    def stop_processing(self, queue_name: str) -> None:
        """Stop polling a queue. Handlers already running are not interrupted."""
        state = self._get_state(queue_name)
        if not state.is_processing:
            logger.info("Queue is not processing", queue=queue_name)
            return

        state.is_processing = False
        if state.poll_task is not None:
            state.poll_task.cancel()
            state.poll_task = None
        logger.info("Stopped processing queue", queue=queue_name)

    def start_all(self) -> None:
        for queue_name in self._queues:
            self.start_processing(queue_name)
        logger.info("Started processing all queues", queues=self.queue_names())

    def stop_all(self) -> None:
        for queue_name in self._queues:
            self.stop_processing(queue_name)
        logger.info("Stopped processing all queues")

    async def shutdown(self, timeout_seconds: float = 30.0) -> None:
        """Stop polling and wait (bounded) for in-flight handlers to finish."""
        self.stop_all()

        pending = [t for s in self._queues.values() for t in s.dispatch_tasks]
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=timeout_seconds)
        if still_running:
            logger.warning(
                "Queue engine stopped with active jobs", active_jobs=len(still_running)
            )

    # Producer API

    async def add_job(
        self,
        queue_name: str,
        payload: Any,
        options: JobOptions | None = None,
    ) -> QueueJob:
        """Persist a new pending job. The queue does not need to be registered yet."""
        options = options or JobOptions()
        now = self.clock()

        job = QueueJob(
            id=uuid4(),
            queue_name=queue_name,
            payload=payload,
            status=QueueJobStatus.PENDING.value,
            priority=options.priority,
            attempts=0,
            max_attempts=options.max_attempts,
            created_at=now,
            updated_at=now,
            next_eligible_at=now + timedelta(seconds=options.delay_seconds),
        )

        async with self._session() as session:
            session.add(job)
            await session.commit()

        logger.info(
            "Added job to queue",
            queue=queue_name,
            job_id=str(job.id),
            priority=job.priority,
            max_attempts=job.max_attempts,
            delay_seconds=options.delay_seconds,
        )
        return job

    # Polling and dispatch

    async def _poll_loop(self, state: QueueState) -> None:
        interval = state.options.poll_interval_ms / 1000
        while state.is_processing:
            try:
                await self.poll_once(state.name)
            except StoreError as e:
                # The next tick retries naturally
                logger.error("Store error while polling queue", queue=state.name, error=str(e))
            except Exception:
                logger.exception("Error polling queue", queue=state.name)

            await asyncio.sleep(interval)

    async def poll_once(self, queue_name: str) -> list[asyncio.Task]:
        """
        Run one poll tick for a queue.

        Claims up to ``concurrency - in_flight`` ready jobs and dispatches each
        on its own task. Returns the dispatch tasks so callers can await them.
        """
        state = self._get_state(queue_name)
        if state.available_slots <= 0:
            return []

        now = self.clock()
        async with self._session() as session:
            await self._recover_stalled_jobs(session, state, now)

            query = select(QueueJob).where(
                QueueJob.queue_name == queue_name,
                QueueJob.status.in_(READY_STATUSES),
                QueueJob.next_eligible_at <= now,
            )
            if state.in_flight:
                query = query.where(QueueJob.id.not_in(list(state.in_flight)))
            query = query.order_by(
                QueueJob.next_eligible_at.asc(),
                QueueJob.priority.desc(),
                QueueJob.created_at.asc(),
            ).limit(state.available_slots)

            result = await session.execute(query)
            jobs = result.scalars().all()

        tasks: list[asyncio.Task] = []
        for job in jobs:
            # Slots may have been taken by a concurrent tick while we queried
            if state.available_slots <= 0 or job.id in state.in_flight:
                continue
            state.in_flight.add(job.id)
            task = asyncio.create_task(
                self._dispatch(state, job.id), name=f"queue-job:{job.id}"
            )
            state.dispatch_tasks.add(task)
            task.add_done_callback(state.dispatch_tasks.discard)
            tasks.append(task)

        if tasks:
            logger.debug("Dispatched jobs", queue=queue_name, count=len(tasks))
        return tasks

    async def _dispatch(self, state: QueueState, job_id: UUID) -> None:
        """Process one job; errors never escape into the poll loop."""
        try:
            with job_log_context(queue=state.name, job_id=str(job_id)):
                await self._process_job(state, job_id)
        except Exception:
            logger.exception(
                "Error processing job", queue=state.name, job_id=str(job_id)
            )
        finally:
            state.in_flight.discard(job_id)

    async def _process_job(self, state: QueueState, job_id: UUID) -> None:
        job = await self._reserve(state.name, job_id)
        if job is None:
            return

        started = time.perf_counter()
        try:
            result = await state.handler.handle(job.payload, job)
        except Exception as e:
            processing_time_ms = int((time.perf_counter() - started) * 1000)
            await self._record_failure(job, e, processing_time_ms)
            return

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        await self._record_success(job, result, processing_time_ms)

    async def _reserve(self, queue_name: str, job_id: UUID) -> QueueJob | None:
        """Mark the job processing before its handler runs. Returns None if lost."""
        now = self.clock()
        async with self._session() as session:
            claim = await session.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job_id,
                    QueueJob.queue_name == queue_name,
                    QueueJob.status.in_(READY_STATUSES),
                    QueueJob.attempts < QueueJob.max_attempts,
                )
                .values(
                    status=QueueJobStatus.PROCESSING.value,
                    attempts=QueueJob.attempts + 1,
                    started_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

            if claim.rowcount != 1:
                logger.info(
                    "Job no longer claimable, skipping",
                    queue=queue_name,
                    job_id=str(job_id),
                )
                return None

            job = await session.get(QueueJob, job_id)

        logger.info(
            "Processing job",
            queue=queue_name,
            job_id=str(job_id),
            attempt=job.attempts,
            max_attempts=job.max_attempts,
        )
        return job

    async def _record_success(
        self, job: QueueJob, result: Any, processing_time_ms: int
    ) -> None:
        now = self.clock()
        async with self._session() as session:
            await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job.id)
                .values(
                    status=QueueJobStatus.COMPLETED.value,
                    completed_at=now,
                    updated_at=now,
                    result=jsonable_encoder(result) if result is not None else {},
                    error=None,
                    processing_time_ms=processing_time_ms,
                )
            )
            await session.commit()

        logger.info(
            "Job completed",
            queue=job.queue_name,
            job_id=str(job.id),
            processing_time_ms=processing_time_ms,
        )

    def _classify_failure(self, job: QueueJob, exc: Exception) -> HandlerError:
        message = str(exc) or exc.__class__.__name__
        error_class = TransientHandlerError if job.can_retry() else PermanentHandlerError
        return error_class(message, str(job.id), job.attempts, job.max_attempts)

    def retry_delay_seconds(self, attempts: int) -> int:
        """Backoff before the next attempt: base * 2^(attempts - 1)."""
        return self.settings.queue_retry_base_seconds * 2 ** (attempts - 1)

    async def _record_failure(
        self, job: QueueJob, exc: Exception, processing_time_ms: int
    ) -> None:
        failure = self._classify_failure(job, exc)
        now = self.clock()

        if isinstance(failure, TransientHandlerError):
            delay = self.retry_delay_seconds(job.attempts)
            next_eligible_at = max(now + timedelta(seconds=delay), job.next_eligible_at)
            values = {
                "status": QueueJobStatus.RETRYING.value,
                "error": failure.message,
                "next_eligible_at": next_eligible_at,
            }
            logger.warning(
                "Job failed, will retry",
                queue=job.queue_name,
                job_id=str(job.id),
                attempts=job.attempts,
                retry_in_seconds=delay,
                error=failure.message,
            )
        else:
            values = {
                "status": QueueJobStatus.FAILED.value,
                "failed_at": now,
                "error": failure.message,
            }
            logger.error(
                "Job failed permanently",
                queue=job.queue_name,
                job_id=str(job.id),
                attempts=job.attempts,
                error=failure.message,
            )

        async with self._session() as session:
            await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job.id)
                .values(updated_at=now, processing_time_ms=processing_time_ms, **values)
            )
            await session.commit()

    async def _recover_stalled_jobs(
        self, session: AsyncSession, state: QueueState, now: datetime
    ) -> int:
        """Return jobs stuck in processing past the visibility timeout to the pipeline."""
        cutoff = now - timedelta(milliseconds=state.options.visibility_timeout_ms)
        query = select(QueueJob).where(
            QueueJob.queue_name == state.name,
            QueueJob.status == QueueJobStatus.PROCESSING.value,
            QueueJob.started_at < cutoff,
        )
        if state.in_flight:
            query = query.where(QueueJob.id.not_in(list(state.in_flight)))

        result = await session.execute(query.limit(STALLED_RECOVERY_BATCH))
        stalled = result.scalars().all()
        if not stalled:
            return 0

        message = (
            f"Visibility timeout exceeded after {state.options.visibility_timeout_ms}ms"
        )
        for job in stalled:
            if job.can_retry():
                values = {
                    "status": QueueJobStatus.RETRYING.value,
                    "next_eligible_at": max(now, job.next_eligible_at),
                }
            else:
                values = {"status": QueueJobStatus.FAILED.value, "failed_at": now}
            await session.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job.id,
                    QueueJob.status == QueueJobStatus.PROCESSING.value,
                )
                .values(error=message, updated_at=now, **values)
            )
        await session.commit()

        logger.warning(
            "Recovered stalled jobs",
            queue=state.name,
            count=len(stalled),
            visibility_timeout_ms=state.options.visibility_timeout_ms,
        )
        return len(stalled)

    # Administrative API

    async def get_job(self, queue_name: str, job_id: UUID) -> QueueJob | None:
        async with self._session() as session:
            result = await session.execute(
                select(QueueJob).where(
                    QueueJob.id == job_id, QueueJob.queue_name == queue_name
                )
            )
            return result.scalar_one_or_none()

    async def get_jobs_by_status(
        self,
        queue_name: str,
        status: QueueJobStatus | str | list[QueueJobStatus | str],
        limit: int = 100,
        offset: int = 0,
    ) -> list[QueueJob]:
        """List jobs of a queue in the given status(es), most recently updated first."""
        statuses = status if isinstance(status, list) else [status]
        status_values = [QueueJobStatus(s).value for s in statuses]

        async with self._session() as session:
            result = await session.execute(
                select(QueueJob)
                .where(
                    QueueJob.queue_name == queue_name,
                    QueueJob.status.in_(status_values),
                )
                .order_by(QueueJob.updated_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def retry_job(self, queue_name: str, job_id: UUID) -> bool:
        """
        Send a failed job back to the queue.

        Returns False without touching the record unless the job is failed.
        The attempt counter restarts so the job gets a full set of attempts.
        """
        now = self.clock()
        async with self._session() as session:
            job = await self._load(session, queue_name, job_id)
            if job.status != QueueJobStatus.FAILED.value:
                return False

            result = await session.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job_id,
                    QueueJob.status == QueueJobStatus.FAILED.value,
                )
                .values(
                    status=QueueJobStatus.PENDING.value,
                    attempts=0,
                    failed_at=None,
                    next_eligible_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        success = result.rowcount > 0
        if success:
            logger.info("Job marked for retry", queue=queue_name, job_id=str(job_id))
        return success

    async def delete_job(self, queue_name: str, job_id: UUID) -> bool:
        async with self._session() as session:
            job = await self._load(session, queue_name, job_id)
            await session.delete(job)
            await session.commit()

        logger.info("Job deleted", queue=queue_name, job_id=str(job_id))
        return True

    async def cleanup_old_jobs(self, queue_name: str, older_than_days: int = 7) -> int:
        """Delete one bounded batch of completed/failed jobs older than the cutoff."""
        cutoff = self.clock() - timedelta(days=older_than_days)

        async with self._session() as session:
            ids_result = await session.execute(
                select(QueueJob.id)
                .where(
                    QueueJob.queue_name == queue_name,
                    or_(
                        and_(
                            QueueJob.status == QueueJobStatus.COMPLETED.value,
                            QueueJob.completed_at < cutoff,
                        ),
                        and_(
                            QueueJob.status == QueueJobStatus.FAILED.value,
                            QueueJob.failed_at < cutoff,
                        ),
                    ),
                )
                .limit(self.settings.queue_cleanup_batch_size)
            )
            job_ids = list(ids_result.scalars().all())
            if not job_ids:
                return 0

            await session.execute(delete(QueueJob).where(QueueJob.id.in_(job_ids)))
            await session.commit()

        logger.info(
            "Cleaned up old jobs",
            queue=queue_name,
            deleted_count=len(job_ids),
            older_than_days=older_than_days,
        )
        return len(job_ids)

    async def get_queue_stats(self, queue_name: str) -> QueueStats:
        async with self._session() as session:
            result = await session.execute(
                select(QueueJob.status, func.count(QueueJob.id))
                .where(QueueJob.queue_name == queue_name)
                .group_by(QueueJob.status)
            )
            by_status = dict(result.all())

        counts = {s.value: by_status.get(s.value, 0) for s in QueueJobStatus}
        return QueueStats(**counts, total=sum(counts.values()))

    async def _load(
        self, session: AsyncSession, queue_name: str, job_id: UUID
    ) -> QueueJob:
        result = await session.execute(
            select(QueueJob).where(
                QueueJob.id == job_id, QueueJob.queue_name == queue_name
            )
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError(
                f"Job {job_id} not found in queue {queue_name}",
                {"queue": queue_name, "job_id": str(job_id)},
            )
        return job
