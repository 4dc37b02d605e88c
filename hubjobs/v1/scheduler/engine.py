"""
Cron-driven scheduler for recurring tasks.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hubjobs.config.logging import get_logger
from hubjobs.config.settings import Settings
from hubjobs.infra.database import utcnow
from hubjobs.v1.core.exceptions import ConfigurationError, NotFoundError, StoreError
from hubjobs.v1.core.registries import (
    ScheduledTaskHandler,
    ScheduledTaskRegistry,
    TaskOutcome,
    as_task_handler,
)
from hubjobs.v1.scheduler.cron import CronExpression, validate_cron_expression
from hubjobs.v1.scheduler.models import ScheduledJobConfig, ScheduledJobStatus
from hubjobs.v1.scheduler.schemas import ScheduledTaskStatus

logger = get_logger(__name__)

# Pause before a timer retries after an unexpected error
TIMER_ERROR_BACKOFF_SECONDS = 5.0


@dataclass
class ScheduledTask:
    """Timer and run tracking of one recurring task."""

    name: str
    cron: CronExpression
    handler: ScheduledTaskHandler
    persisted: bool
    status: str = ScheduledJobStatus.ACTIVE.value
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    run_count: int = 0
    last_error_message: str | None = None
    timer: asyncio.Task | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def running(self) -> bool:
        return self.timer is not None and not self.timer.done()

    def to_status(self) -> ScheduledTaskStatus:
        return ScheduledTaskStatus(
            name=self.name,
            cron_expression=self.cron.expression,
            status=ScheduledJobStatus(self.status),
            running=self.running,
            persisted=self.persisted,
            next_run_at=self.next_run_at,
            last_run_at=self.last_run_at,
            run_count=self.run_count,
            last_error_message=self.last_error_message,
        )


class SchedulerEngine:
    """
    Owns the recurring tasks of the process.

    Persisted tasks are backed by a ScheduledJobConfig record and can be
    created, reconfigured, paused and deleted at runtime. Static tasks are
    registered in code with a fixed cadence and keep their run tracking in
    memory. Both kinds share one timer implementation: each task has one
    asyncio task that sleeps until ``next_run_at`` and runs the handler
    directly. A task's own runs never overlap.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        registry: ScheduledTaskRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.registry = registry or ScheduledTaskRegistry()
        self.clock = clock
        self._sleep = sleep
        self._tasks: dict[str, ScheduledTask] = {}

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(f"Scheduler store operation failed: {e}") from e

    # Lifecycle

    async def start(self, defaults: dict[str, str] | None = None) -> None:
        """
        Load persisted configurations and start their timers.

        When no configuration exists yet and seeding is enabled, one config
        per entry of ``defaults`` (name -> cron expression) is created first.
        """
        async with self._session() as session:
            result = await session.execute(
                select(ScheduledJobConfig).order_by(ScheduledJobConfig.name)
            )
            configs = list(result.scalars().all())

            if not configs and defaults and self.settings.scheduler_seed_defaults:
                configs = await self._seed_defaults(session, defaults)

        for config in configs:
            if config.name in self._tasks:
                continue
            if config.name not in self.registry:
                logger.warning(
                    "No handler registered for scheduled job", name=config.name
                )
                continue
            await self._activate(config)

        logger.info("Scheduler started", tasks=len(self._tasks))

    async def _seed_defaults(
        self, session: AsyncSession, defaults: dict[str, str]
    ) -> list[ScheduledJobConfig]:
        logger.info("Creating default scheduled jobs", names=list(defaults))
        now = self.clock()
        configs = []
        for name, expression in defaults.items():
            validate_cron_expression(expression)
            config = ScheduledJobConfig(
                name=name,
                cron_expression=expression,
                status=ScheduledJobStatus.ACTIVE.value,
                run_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(config)
            configs.append(config)
        await session.commit()
        return configs

    async def stop(self, timeout_seconds: float = 30.0) -> None:
        """Cancel every timer and wait (bounded) for running ticks to finish."""
        for task in self._tasks.values():
            self._cancel_timer(task)

        locked = [t.lock for t in self._tasks.values() if t.lock.locked()]
        if locked:
            waiters = [asyncio.create_task(self._wait_unlocked(lock)) for lock in locked]
            _, still_running = await asyncio.wait(waiters, timeout=timeout_seconds)
            for waiter in still_running:
                waiter.cancel()
            if still_running:
                logger.warning("Scheduler stopped with running tasks", running=len(still_running))

        logger.info("Scheduler stopped")

    @staticmethod
    async def _wait_unlocked(lock: asyncio.Lock) -> None:
        async with lock:
            pass

    # Registration

    async def register_job(
        self,
        name: str,
        cron_expression: str,
        handler: ScheduledTaskHandler | Callable[[dict[str, Any]], Awaitable[TaskOutcome]],
        status: ScheduledJobStatus = ScheduledJobStatus.ACTIVE,
    ) -> ScheduledJobConfig:
        """
        Register a persisted task and start its timer.

        The cron expression is validated before anything is persisted. An
        existing config with the same name keeps its status and run history.
        """
        cron = validate_cron_expression(cron_expression)
        self.registry.register(name, as_task_handler(handler), replace=True)

        now = self.clock()
        async with self._session() as session:
            config = await self._find_by_name(session, name)
            if config is None:
                config = ScheduledJobConfig(
                    name=name,
                    cron_expression=cron.expression,
                    status=ScheduledJobStatus(status).value,
                    run_count=0,
                    created_at=now,
                )
                session.add(config)
            else:
                config.cron_expression = cron.expression

            config.next_run_at = None if config.is_paused() else cron.next_after(now)
            config.updated_at = now
            await session.commit()

        existing = self._tasks.pop(name, None)
        if existing is not None:
            self._cancel_timer(existing)
        await self._activate(config)

        logger.info(
            "Scheduled job registered",
            name=name,
            cron_expression=cron.expression,
            status=config.status,
            next_run_at=config.next_run_at.isoformat() if config.next_run_at else None,
        )
        return config

    def register_static_task(
        self,
        name: str,
        cron_expression: str,
        handler: ScheduledTaskHandler | Callable[[dict[str, Any]], Awaitable[TaskOutcome]],
    ) -> ScheduledTask:
        """Register a task with a fixed cadence that is never persisted."""
        if name in self._tasks:
            raise ConfigurationError(
                f"Scheduled task {name} is already registered", {"name": name}
            )

        cron = validate_cron_expression(cron_expression)
        task = ScheduledTask(
            name=name,
            cron=cron,
            handler=as_task_handler(handler),
            persisted=False,
            next_run_at=cron.next_after(self.clock()),
        )
        self._tasks[name] = task
        self._start_timer(task)

        logger.info("Static task registered", name=name, cron_expression=cron.expression)
        return task

    async def _activate(self, config: ScheduledJobConfig) -> ScheduledTask:
        """Create the in-memory task for a persisted config and start its timer."""
        cron = validate_cron_expression(config.cron_expression)
        task = ScheduledTask(
            name=config.name,
            cron=cron,
            handler=self.registry.get(config.name),
            persisted=True,
            status=config.status,
            next_run_at=config.next_run_at,
            last_run_at=config.last_run_at,
            run_count=config.run_count,
            last_error_message=config.last_error_message,
        )

        if not config.is_paused():
            now = self.clock()
            if task.next_run_at is None or task.next_run_at <= now:
                # Runs missed while the process was down are not replayed
                task.next_run_at = cron.next_after(now)
                async with self._session() as session:
                    await session.execute(
                        update(ScheduledJobConfig)
                        .where(ScheduledJobConfig.id == config.id)
                        .values(next_run_at=task.next_run_at, updated_at=now)
                    )
                    await session.commit()

        self._tasks[config.name] = task
        if not config.is_paused():
            self._start_timer(task)
        return task

    # Timers

    def _start_timer(self, task: ScheduledTask) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled, timer not started", name=task.name)
            return
        if task.running:
            return
        task.timer = asyncio.create_task(
            self._run_timer(task), name=f"scheduler-timer:{task.name}"
        )

    def _cancel_timer(self, task: ScheduledTask) -> None:
        if task.timer is not None:
            task.timer.cancel()
            task.timer = None

    async def _run_timer(self, task: ScheduledTask) -> None:
        while True:
            try:
                if task.next_run_at is None:
                    task.next_run_at = task.cron.next_after(self.clock())
                scheduled_for = task.next_run_at

                while (remaining := (scheduled_for - self.clock()).total_seconds()) > 0:
                    await self._sleep(
                        min(remaining, self.settings.scheduler_max_sleep_seconds)
                    )

                # A cancelled timer must not interrupt a run in progress
                tick = asyncio.create_task(
                    self.run_tick(task.name, trigger="schedule", scheduled_for=scheduled_for)
                )
                await asyncio.shield(tick)

                if task.next_run_at is None or task.next_run_at <= scheduled_for:
                    task.next_run_at = task.cron.next_after(
                        max(self.clock(), scheduled_for)
                    )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduler timer error", name=task.name)
                await self._sleep(TIMER_ERROR_BACKOFF_SECONDS)

    # Ticks

    async def run_tick(
        self,
        name: str,
        trigger: str = "schedule",
        scheduled_for: datetime | None = None,
    ) -> TaskOutcome | None:
        """
        Run one tick of a task and record its outcome.

        ``last_run_at`` and ``run_count`` are persisted before the handler
        runs. Scheduled ticks of a paused task are skipped; manual triggers
        run regardless and leave the task paused. Handler exceptions are
        recorded as the error state and never propagate.
        """
        task = self._tasks.get(name)
        if task is None:
            return None
        if trigger == "schedule" and task.status == ScheduledJobStatus.PAUSED.value:
            return None

        async with task.lock:
            now = self.clock()
            if task.persisted:
                try:
                    async with self._session() as session:
                        started = await session.execute(
                            update(ScheduledJobConfig)
                            .where(ScheduledJobConfig.name == name)
                            .values(
                                last_run_at=now,
                                run_count=ScheduledJobConfig.run_count + 1,
                                updated_at=now,
                            )
                        )
                        await session.commit()
                except StoreError as e:
                    logger.error("Could not record scheduled run start", name=name, error=str(e))
                    return None
                if started.rowcount != 1:
                    logger.warning("Scheduled job vanished before running", name=name)
                    return None

            task.last_run_at = now
            task.run_count += 1

            logger.info("Starting scheduled job", name=name, trigger=trigger)
            started_at = time.perf_counter()
            payload = {
                "task": name,
                "trigger": trigger,
                "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
            }
            try:
                outcome = await task.handler.handle(payload)
                if not isinstance(outcome, TaskOutcome):
                    outcome = TaskOutcome(success=True, message="completed", data=outcome)
            except Exception as e:
                logger.exception("Scheduled job raised", name=name)
                outcome = TaskOutcome(success=False, message=str(e) or e.__class__.__name__)
            duration_ms = int((time.perf_counter() - started_at) * 1000)

            await self._record_outcome(task, outcome, duration_ms)
            return outcome

    async def _record_outcome(
        self, task: ScheduledTask, outcome: TaskOutcome, duration_ms: int
    ) -> None:
        now = self.clock()
        paused = task.status == ScheduledJobStatus.PAUSED.value

        if paused:
            status = ScheduledJobStatus.PAUSED.value
        elif outcome.success:
            status = ScheduledJobStatus.ACTIVE.value
        else:
            status = ScheduledJobStatus.ERROR.value
        error_message = None if outcome.success else outcome.message
        next_run_at = None if paused else task.cron.next_after(now)

        task.status = status
        task.last_error_message = error_message
        task.next_run_at = next_run_at

        if outcome.success:
            logger.info(
                "Completed scheduled job",
                name=task.name,
                duration_ms=duration_ms,
                message=outcome.message,
            )
        else:
            logger.error(
                "Failed scheduled job",
                name=task.name,
                duration_ms=duration_ms,
                error=error_message,
            )

        if not task.persisted:
            return

        try:
            async with self._session() as session:
                await session.execute(
                    update(ScheduledJobConfig)
                    .where(ScheduledJobConfig.name == task.name)
                    .values(
                        status=status,
                        last_error_message=error_message,
                        next_run_at=next_run_at,
                        last_duration_ms=duration_ms,
                        last_result=outcome.to_dict(),
                        updated_at=now,
                    )
                )
                await session.commit()
        except StoreError as e:
            logger.error("Could not record scheduled run outcome", name=task.name, error=str(e))

    # Administrative API

    async def list_jobs(self) -> list[ScheduledJobConfig]:
        async with self._session() as session:
            result = await session.execute(
                select(ScheduledJobConfig).order_by(ScheduledJobConfig.name)
            )
            return list(result.scalars().all())

    async def get_job(self, ref: str | UUID) -> ScheduledJobConfig:
        """Look up a persisted config by id or by name."""
        async with self._session() as session:
            return await self._resolve(session, ref)

    async def create_job(
        self,
        name: str,
        cron_expression: str,
        status: ScheduledJobStatus = ScheduledJobStatus.ACTIVE,
    ) -> ScheduledJobConfig:
        """Create a config for a handler that is already in the catalog."""
        cron = validate_cron_expression(cron_expression)
        if name not in self.registry:
            raise ConfigurationError(
                f"No handler registered for scheduled job {name}", {"name": name}
            )

        status = ScheduledJobStatus(status)
        now = self.clock()
        config = ScheduledJobConfig(
            name=name,
            cron_expression=cron.expression,
            status=status.value,
            run_count=0,
            next_run_at=None if status == ScheduledJobStatus.PAUSED else cron.next_after(now),
            created_at=now,
            updated_at=now,
        )

        try:
            async with self._session() as session:
                if await self._find_by_name(session, name) is not None:
                    raise ConfigurationError(
                        f"Scheduled job {name} already exists", {"name": name}
                    )
                session.add(config)
                await session.commit()
        except StoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise ConfigurationError(
                    f"Scheduled job {name} already exists", {"name": name}
                ) from e
            raise

        await self._activate(config)
        logger.info("Scheduled job created", name=name, cron_expression=cron.expression)
        return config

    async def update_job(
        self,
        ref: str | UUID,
        cron_expression: str | None = None,
        status: ScheduledJobStatus | str | None = None,
    ) -> ScheduledJobConfig:
        """
        Change the cadence and/or pause state of a persisted task.

        A new cron expression is validated first; the timer is swapped right
        after the change is committed, with no await in between.
        """
        cron = validate_cron_expression(cron_expression) if cron_expression else None
        new_status = ScheduledJobStatus(status) if status else None
        if new_status == ScheduledJobStatus.ERROR:
            raise ConfigurationError("Status can only be set to active or paused")

        now = self.clock()
        async with self._session() as session:
            config = await self._resolve(session, ref)
            if cron is not None:
                config.cron_expression = cron.expression
            if new_status == ScheduledJobStatus.PAUSED:
                config.status = ScheduledJobStatus.PAUSED.value
            elif new_status == ScheduledJobStatus.ACTIVE and config.is_paused():
                config.status = ScheduledJobStatus.ACTIVE.value

            effective_cron = cron or CronExpression(config.cron_expression)
            config.next_run_at = None if config.is_paused() else effective_cron.next_after(now)
            config.updated_at = now
            await session.commit()

        task = self._tasks.get(config.name)
        if task is not None:
            self._cancel_timer(task)
            task.cron = effective_cron
            task.status = config.status
            task.next_run_at = config.next_run_at
            if not config.is_paused():
                self._start_timer(task)

        logger.info(
            "Scheduled job updated",
            name=config.name,
            cron_expression=config.cron_expression,
            status=config.status,
        )
        return config

    async def delete_job(self, ref: str | UUID) -> bool:
        async with self._session() as session:
            config = await self._resolve(session, ref)
            name = config.name
            await session.delete(config)
            await session.commit()

        task = self._tasks.pop(name, None)
        if task is not None:
            self._cancel_timer(task)

        logger.info("Scheduled job deleted", name=name)
        return True

    async def pause_job(self, ref: str | UUID) -> ScheduledTaskStatus:
        """Stop future ticks. A run already in progress finishes normally."""
        task = self._static_task(ref)
        if task is None:
            config = await self.update_job(ref, status=ScheduledJobStatus.PAUSED)
            return self._status_of(config)

        self._cancel_timer(task)
        task.status = ScheduledJobStatus.PAUSED.value
        task.next_run_at = None
        logger.info("Static task paused", name=task.name)
        return task.to_status()

    async def resume_job(self, ref: str | UUID) -> ScheduledTaskStatus:
        task = self._static_task(ref)
        if task is None:
            config = await self.update_job(ref, status=ScheduledJobStatus.ACTIVE)
            return self._status_of(config)

        if task.status == ScheduledJobStatus.PAUSED.value:
            task.status = ScheduledJobStatus.ACTIVE.value
            task.next_run_at = task.cron.next_after(self.clock())
            self._start_timer(task)
            logger.info("Static task resumed", name=task.name)
        return task.to_status()

    async def trigger_job(self, ref: str | UUID) -> TaskOutcome:
        """Run a task immediately, outside its schedule."""
        task = self._static_task(ref)
        if task is None:
            config = await self.get_job(ref)
            task = self._tasks.get(config.name)
            if task is None:
                raise ConfigurationError(
                    f"No handler registered for scheduled job {config.name}",
                    {"name": config.name},
                )

        logger.info("Manually triggering job", name=task.name)
        outcome = await self.run_tick(task.name, trigger="manual")
        if outcome is None:
            raise StoreError(f"Scheduled job {task.name} could not be started")
        return outcome

    def get_status(self) -> list[ScheduledTaskStatus]:
        """Timer state of every task known to this process."""
        return [task.to_status() for task in self._tasks.values()]

    def get_task(self, name: str) -> ScheduledTask | None:
        return self._tasks.get(name)

    # Helpers

    def _static_task(self, ref: str | UUID) -> ScheduledTask | None:
        task = self._tasks.get(str(ref))
        if task is not None and not task.persisted:
            return task
        return None

    def _status_of(self, config: ScheduledJobConfig) -> ScheduledTaskStatus:
        task = self._tasks.get(config.name)
        if task is not None:
            return task.to_status()
        return ScheduledTaskStatus(
            name=config.name,
            cron_expression=config.cron_expression,
            status=ScheduledJobStatus(config.status),
            running=False,
            persisted=True,
            next_run_at=config.next_run_at,
            last_run_at=config.last_run_at,
            run_count=config.run_count,
            last_error_message=config.last_error_message,
        )

    async def _find_by_name(
        self, session: AsyncSession, name: str
    ) -> ScheduledJobConfig | None:
        result = await session.execute(
            select(ScheduledJobConfig).where(ScheduledJobConfig.name == name)
        )
        return result.scalar_one_or_none()

    async def _resolve(
        self, session: AsyncSession, ref: str | UUID
    ) -> ScheduledJobConfig:
        config = None
        job_id = ref if isinstance(ref, UUID) else _parse_uuid(ref)
        if job_id is not None:
            config = await session.get(ScheduledJobConfig, job_id)
        if config is None and not isinstance(ref, UUID):
            config = await self._find_by_name(session, ref)
        if config is None:
            raise NotFoundError(f"Scheduled job {ref} not found", {"ref": str(ref)})
        return config


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except (TypeError, ValueError):
        return None
