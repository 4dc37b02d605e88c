"""
Scheduled task handlers for the platform's recurring work.

Every handler implements the ScheduledTaskHandler protocol, is idempotent and
reports what it did through a TaskOutcome. They are registered in the
scheduled task registry under fixed names; DEFAULT_SCHEDULES holds the
cadence each one is seeded with.
"""

from collections.abc import Callable
from datetime import datetime, time, timedelta
from typing import Any, Protocol, runtime_checkable

import httpx
from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hubjobs.config.logging import get_logger
from hubjobs.config.settings import Settings
from hubjobs.infra.database import utcnow
from hubjobs.v1.catalog.models import (
    AnalyticsReport,
    ExternalSyncState,
    MentoringSession,
    Notification,
    Payout,
    UserSession,
)
from hubjobs.v1.core.registries import ScheduledTaskRegistry, TaskOutcome
from hubjobs.v1.maintenance.models import TEMP_FILES_CATEGORY, FileMetadata
from hubjobs.v1.maintenance.storage import FileStorage, remove_stored_objects
from hubjobs.v1.queue.models import QueueJob, QueueJobStatus

logger = get_logger(__name__)

DEFAULT_SCHEDULES: dict[str, str] = {
    "cleanupExpiredSessions": "0 */2 * * *",
    "sendReminderNotifications": "*/15 * * * *",
    "processPayouts": "0 6 * * *",
    "generateAnalyticsReports": "0 1 * * *",
    "syncExternalData": "0 */4 * * *",
    "cleanupTempFiles": "0 3 * * *",
}

EXTERNAL_SOURCE = "external"


class CleanupExpiredSessionsHandler:
    """Delete user sessions past their expiry, one bounded batch per run."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        now = self.clock()
        async with self.session_factory() as session:
            ids_result = await session.execute(
                select(UserSession.id)
                .where(UserSession.expires_at < now)
                .limit(self.settings.session_cleanup_batch_size)
            )
            session_ids = list(ids_result.scalars().all())
            if session_ids:
                await session.execute(delete(UserSession).where(UserSession.id.in_(session_ids)))
                await session.commit()

        logger.info("Expired sessions cleaned up", deleted_count=len(session_ids))
        return TaskOutcome(
            success=True,
            message=f"Deleted {len(session_ids)} expired sessions",
            data={"deleted": len(session_ids)},
        )


class SendReminderNotificationsHandler:
    """
    Remind both participants of mentoring sessions that start soon.

    A session gets its reminders once: ``reminder_sent_at`` is stamped in the
    same transaction that creates the notifications.
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

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        now = self.clock()
        window_end = now + timedelta(minutes=self.settings.reminder_window_minutes)

        async with self.session_factory() as session:
            result = await session.execute(
                select(MentoringSession).where(
                    MentoringSession.status == "scheduled",
                    MentoringSession.reminder_sent_at.is_(None),
                    MentoringSession.scheduled_at > now,
                    MentoringSession.scheduled_at <= window_end,
                )
            )
            sessions = result.scalars().all()

            for mentoring_session in sessions:
                minutes = int((mentoring_session.scheduled_at - now).total_seconds() // 60)
                for user_id in (mentoring_session.mentor_id, mentoring_session.mentee_id):
                    session.add(
                        Notification(
                            user_id=user_id,
                            type="session_reminder",
                            title="Upcoming mentoring session",
                            message=f"Your mentoring session starts in {minutes} minutes",
                            data={
                                "session_id": str(mentoring_session.id),
                                "scheduled_at": mentoring_session.scheduled_at.isoformat(),
                            },
                            created_at=now,
                        )
                    )
                mentoring_session.reminder_sent_at = now

            await session.commit()

        logger.info("Reminder notifications sent", sessions=len(sessions))
        return TaskOutcome(
            success=True,
            message=f"Sent reminders for {len(sessions)} sessions",
            data={"sessions": len(sessions), "notifications": len(sessions) * 2},
        )


@runtime_checkable
class PayoutGateway(Protocol):
    """Protocol for the payment provider that transfers mentor payouts."""

    async def transfer(self, payout: Payout) -> str:
        """
        Send one payout.

        Returns:
            Provider reference of the transfer. Raising marks the payout failed.
        """
        ...


class HttpPayoutGateway:
    """Transfers payouts by POSTing them to the provider's HTTP endpoint."""

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    async def transfer(self, payout: Payout) -> str:
        response = await self.client.post(
            self.url,
            json={
                "payout_id": str(payout.id),
                "mentor_id": str(payout.mentor_id),
                "amount_cents": payout.amount_cents,
                "currency": payout.currency,
            },
        )
        response.raise_for_status()
        return str(response.json().get("reference", payout.id))


class ProcessPayoutsHandler:
    """Pay pending payouts through the gateway; failures are kept on the payout."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        gateway: PayoutGateway | None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.gateway = gateway
        self.clock = clock

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        if self.gateway is None:
            return TaskOutcome(success=True, message="No payout gateway configured, skipped")

        paid = failed = 0
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payout)
                .where(Payout.status == "pending")
                .order_by(Payout.created_at)
                .limit(self.settings.payout_batch_size)
            )
            payouts = result.scalars().all()

            for payout in payouts:
                try:
                    payout.reference = await self.gateway.transfer(payout)
                    payout.status = "paid"
                    payout.failure_reason = None
                    paid += 1
                except Exception as e:
                    logger.warning("Payout transfer failed", payout_id=str(payout.id), error=str(e))
                    payout.status = "failed"
                    payout.failure_reason = str(e) or e.__class__.__name__
                    failed += 1
                payout.processed_at = self.clock()
                # Commit per payout so a crash never re-sends a completed transfer
                await session.commit()

        logger.info("Payouts processed", paid=paid, failed=failed)
        return TaskOutcome(
            success=True,
            message=f"Processed {paid + failed} payouts ({failed} failed)",
            data={"paid": paid, "failed": failed},
        )


class GenerateAnalyticsReportsHandler:
    """Write the daily report of the previous UTC day, once."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        today = self.clock().date()
        day = today - timedelta(days=1)
        start = datetime.combine(day, time.min, tzinfo=self.clock().tzinfo)
        end = start + timedelta(days=1)

        async with self.session_factory() as session:
            existing = await session.execute(
                select(AnalyticsReport.id).where(
                    AnalyticsReport.period == "daily",
                    AnalyticsReport.period_start == day,
                )
            )
            if existing.scalar_one_or_none() is not None:
                return TaskOutcome(
                    success=True, message=f"Report for {day.isoformat()} already exists"
                )

            stats = {
                "mentoring_sessions": await self._count(
                    session,
                    MentoringSession,
                    and_(MentoringSession.scheduled_at >= start, MentoringSession.scheduled_at < end),
                ),
                "notifications": await self._count(
                    session,
                    Notification,
                    and_(Notification.created_at >= start, Notification.created_at < end),
                ),
                "payouts_paid": await self._count(
                    session,
                    Payout,
                    and_(
                        Payout.status == "paid",
                        Payout.processed_at >= start,
                        Payout.processed_at < end,
                    ),
                ),
                "files_uploaded": await self._count(
                    session,
                    FileMetadata,
                    and_(FileMetadata.uploaded_at >= start, FileMetadata.uploaded_at < end),
                ),
                "jobs_completed": await self._count(
                    session,
                    QueueJob,
                    and_(
                        QueueJob.status == QueueJobStatus.COMPLETED.value,
                        QueueJob.completed_at >= start,
                        QueueJob.completed_at < end,
                    ),
                ),
                "jobs_failed": await self._count(
                    session,
                    QueueJob,
                    and_(
                        QueueJob.status == QueueJobStatus.FAILED.value,
                        QueueJob.failed_at >= start,
                        QueueJob.failed_at < end,
                    ),
                ),
            }

            session.add(
                AnalyticsReport(
                    period="daily",
                    period_start=day,
                    period_end=day,
                    stats=stats,
                    generated_at=self.clock(),
                )
            )
            await session.commit()

        logger.info("Analytics report generated", day=day.isoformat(), **stats)
        return TaskOutcome(
            success=True, message=f"Generated report for {day.isoformat()}", data=stats
        )

    @staticmethod
    async def _count(session: AsyncSession, model: Any, condition: Any) -> int:
        result = await session.execute(select(func.count()).select_from(model).where(condition))
        return result.scalar_one()


class SyncExternalDataHandler:
    """
    Pull new records from the external data source.

    The source answers ``GET <url>?since=<cursor>`` with
    ``{"records": [...], "cursor": "..."}``; the returned cursor is stored so
    the next run continues where this one stopped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        client: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.client = client
        self.clock = clock

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        url = self.settings.external_sync_url
        if not url:
            return TaskOutcome(success=True, message="No external source configured, skipped")

        async with self.session_factory() as session:
            result = await session.execute(
                select(ExternalSyncState).where(ExternalSyncState.source == EXTERNAL_SOURCE)
            )
            state = result.scalar_one_or_none()
            if state is None:
                state = ExternalSyncState(source=EXTERNAL_SOURCE, record_count=0)
                session.add(state)

            params = {"since": state.cursor} if state.cursor else {}
            try:
                response = await self.client.get(
                    url, params=params, timeout=self.settings.external_sync_timeout_s
                )
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error("External sync failed", url=url, error=str(e))
                return TaskOutcome(success=False, message=f"External sync failed: {e}")

            records = body.get("records", [])
            state.cursor = body.get("cursor", state.cursor)
            state.record_count = (state.record_count or 0) + len(records)
            state.last_synced_at = self.clock()
            await session.commit()

        logger.info("External data synced", records=len(records), cursor=state.cursor)
        return TaskOutcome(
            success=True,
            message=f"Synced {len(records)} records",
            data={"records": len(records), "cursor": state.cursor},
        )


class CleanupTempFilesHandler:
    """Remove temp-category files older than the configured age."""

    BATCH_SIZE = 100

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        storage: FileStorage,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.storage = storage
        self.clock = clock

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        cutoff = self.clock() - timedelta(hours=self.settings.temp_file_max_age_hours)

        async with self.session_factory() as session:
            result = await session.execute(
                select(FileMetadata.id, FileMetadata.path)
                .where(
                    FileMetadata.category == TEMP_FILES_CATEGORY,
                    FileMetadata.uploaded_at < cutoff,
                )
                .limit(self.BATCH_SIZE)
            )
            files = result.all()
            if files:
                await session.execute(
                    delete(FileMetadata).where(FileMetadata.id.in_([f.id for f in files]))
                )
                await session.commit()

        errors = await remove_stored_objects(self.storage, [f.path for f in files])

        logger.info("Temp files cleaned up", deleted_count=len(files), storage_errors=len(errors))
        return TaskOutcome(
            success=True,
            message=f"Deleted {len(files)} temp files",
            data={"deleted": len(files), "storage_errors": errors},
        )


def register_default_handlers(
    registry: ScheduledTaskRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    storage: FileStorage,
    http_client: httpx.AsyncClient,
    payout_gateway: PayoutGateway | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Register every handler of the catalog under its fixed name."""
    if payout_gateway is None and settings.payout_gateway_url:
        payout_gateway = HttpPayoutGateway(settings.payout_gateway_url, http_client)

    handlers = {
        "cleanupExpiredSessions": CleanupExpiredSessionsHandler(session_factory, settings, clock),
        "sendReminderNotifications": SendReminderNotificationsHandler(
            session_factory, settings, clock
        ),
        "processPayouts": ProcessPayoutsHandler(session_factory, settings, payout_gateway, clock),
        "generateAnalyticsReports": GenerateAnalyticsReportsHandler(session_factory, clock),
        "syncExternalData": SyncExternalDataHandler(session_factory, settings, http_client, clock),
        "cleanupTempFiles": CleanupTempFilesHandler(session_factory, settings, storage, clock),
    }
    for name, handler in handlers.items():
        registry.register(name, handler, replace=True)

    logger.info("Scheduled task handlers registered", handlers=registry.list())
