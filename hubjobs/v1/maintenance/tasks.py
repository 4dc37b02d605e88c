"""
Recurring file-store maintenance.

Five sweeps run as static scheduler tasks. Each one deletes or marks at most
a fixed batch of records per run, so a large backlog drains over several
runs instead of in one long transaction.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, Literal

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hubjobs.config.logging import get_logger
from hubjobs.config.settings import Settings
from hubjobs.infra.database import utcnow
from hubjobs.v1.core.registries import TaskOutcome
from hubjobs.v1.maintenance.models import (
    QUARANTINED_SCAN_STATUS,
    TEMP_FILES_CATEGORY,
    FileAccessLog,
    FileMetadata,
    VirusScanResult,
)
from hubjobs.v1.maintenance.storage import FileStorage, remove_stored_objects
from hubjobs.v1.scheduler.engine import SchedulerEngine

logger = get_logger(__name__)

CleanupType = Literal["expired", "temp", "quarantine", "optimize", "all"]

EXPIRED_FILES_BATCH = 100
TEMP_FILES_BATCH = 100
VIRUS_SCAN_BATCH = 100
QUARANTINE_BATCH = 50
ACCESS_LOG_BATCH = 500
DUPLICATE_WINDOW = 1000

VIRUS_SCAN_RETENTION_DAYS = 30
QUARANTINE_RETENTION_DAYS = 90
ACCESS_LOG_RETENTION_DAYS = 90


class MaintenanceTaskSet:
    """The file maintenance sweeps and their manual entry points."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        storage: FileStorage,
        quarantine_storage: FileStorage,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.storage = storage
        self.quarantine_storage = quarantine_storage
        self.clock = clock

    def schedules(self) -> dict[str, tuple[str, Callable[[], Awaitable[int]]]]:
        """Task name -> (cron expression, sweep)."""
        return {
            "expiredFileCleanup": ("0 * * * *", self.cleanup_expired_files),
            "tempFileCleanup": ("0 */6 * * *", self.cleanup_temp_files),
            "virusScanCleanup": ("0 2 * * *", self.cleanup_virus_scan_results),
            "quarantineCleanup": ("0 3 * * 0", self.cleanup_quarantined_files),
            "storageOptimization": ("0 4 * * *", self.optimize_storage),
        }

    def register(self, scheduler: SchedulerEngine) -> None:
        """Register every sweep as a static scheduler task."""
        for name, (cron_expression, sweep) in self.schedules().items():
            scheduler.register_static_task(name, cron_expression, self._as_handler(name, sweep))
        logger.info("File cleanup tasks registered", tasks=list(self.schedules()))

    def _as_handler(
        self, name: str, sweep: Callable[[], Awaitable[int]]
    ) -> Callable[[dict[str, Any]], Awaitable[TaskOutcome]]:
        async def handle(payload: dict[str, Any]) -> TaskOutcome:
            count = await sweep()
            return TaskOutcome(
                success=True, message=f"{name} processed {count} records", data={"count": count}
            )

        return handle

    # Sweeps

    async def _delete_files(self, query: Any, label: str) -> int:
        """Delete the file records selected by ``query`` and their stored objects."""
        async with self.session_factory() as session:
            result = await session.execute(query)
            files = result.all()
            if not files:
                return 0
            file_ids = [f.id for f in files]
            await session.execute(
                delete(FileAccessLog).where(FileAccessLog.file_id.in_(file_ids))
            )
            await session.execute(delete(FileMetadata).where(FileMetadata.id.in_(file_ids)))
            await session.commit()

        errors = await remove_stored_objects(self.storage, [f.path for f in files])
        logger.info(
            "Files cleaned up", kind=label, deleted_count=len(files), storage_errors=len(errors)
        )
        return len(files)

    async def cleanup_expired_files(self) -> int:
        now = self.clock()
        return await self._delete_files(
            select(FileMetadata.id, FileMetadata.path)
            .where(FileMetadata.expires_at.is_not(None), FileMetadata.expires_at < now)
            .limit(EXPIRED_FILES_BATCH),
            "expired",
        )

    async def cleanup_temp_files(self) -> int:
        cutoff = self.clock() - timedelta(hours=self.settings.temp_file_max_age_hours)
        return await self._delete_files(
            select(FileMetadata.id, FileMetadata.path)
            .where(
                FileMetadata.category == TEMP_FILES_CATEGORY,
                FileMetadata.uploaded_at < cutoff,
            )
            .limit(TEMP_FILES_BATCH),
            "temp",
        )

    async def cleanup_virus_scan_results(self) -> int:
        cutoff = self.clock() - timedelta(days=VIRUS_SCAN_RETENTION_DAYS)
        async with self.session_factory() as session:
            result = await session.execute(
                select(VirusScanResult.id)
                .where(VirusScanResult.scanned_at < cutoff)
                .limit(VIRUS_SCAN_BATCH)
            )
            scan_ids = list(result.scalars().all())
            if scan_ids:
                await session.execute(
                    delete(VirusScanResult).where(VirusScanResult.id.in_(scan_ids))
                )
                await session.commit()

        logger.info("Old virus scan results cleaned up", deleted_count=len(scan_ids))
        return len(scan_ids)

    async def cleanup_quarantined_files(self) -> int:
        """Drop quarantined scan results past retention along with the quarantined copy."""
        cutoff = self.clock() - timedelta(days=QUARANTINE_RETENTION_DAYS)
        async with self.session_factory() as session:
            result = await session.execute(
                select(VirusScanResult.id, VirusScanResult.file_id)
                .where(
                    VirusScanResult.status == QUARANTINED_SCAN_STATUS,
                    VirusScanResult.scanned_at < cutoff,
                )
                .limit(QUARANTINE_BATCH)
            )
            scans = result.all()
            if not scans:
                return 0

            await remove_stored_objects(
                self.quarantine_storage, [f"{scan.file_id}_quarantined" for scan in scans]
            )
            await session.execute(
                delete(VirusScanResult).where(VirusScanResult.id.in_([s.id for s in scans]))
            )
            await session.commit()

        logger.info("Old quarantined files cleaned up", deleted_count=len(scans))
        return len(scans)

    async def optimize_storage(self) -> int:
        """
        Mark duplicate uploads and trim old access logs.

        Among the newest uploads, files sharing a checksum are grouped and all
        but the earliest upload are marked as duplicates of it. Returns the
        number of files newly marked.
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(FileMetadata)
                .where(FileMetadata.checksum.is_not(None))
                .order_by(FileMetadata.uploaded_at.desc())
                .limit(DUPLICATE_WINDOW)
            )
            by_checksum: dict[str, list[FileMetadata]] = {}
            for file in result.scalars().all():
                by_checksum.setdefault(file.checksum, []).append(file)

            marked = 0
            for files in by_checksum.values():
                if len(files) < 2:
                    continue
                original, *duplicates = sorted(files, key=lambda f: (f.uploaded_at, str(f.id)))
                for file in duplicates:
                    if file.is_duplicate and file.original_file_id == original.id:
                        continue
                    file.is_duplicate = True
                    file.original_file_id = original.id
                    file.duplicate_detected_at = now
                    marked += 1
            await session.commit()

        if marked:
            logger.info("Storage optimization marked duplicate files", marked_count=marked)

        await self.cleanup_access_logs()
        return marked

    async def cleanup_access_logs(self) -> int:
        cutoff = self.clock() - timedelta(days=ACCESS_LOG_RETENTION_DAYS)
        async with self.session_factory() as session:
            result = await session.execute(
                select(FileAccessLog.id)
                .where(FileAccessLog.accessed_at < cutoff)
                .limit(ACCESS_LOG_BATCH)
            )
            log_ids = list(result.scalars().all())
            if log_ids:
                await session.execute(delete(FileAccessLog).where(FileAccessLog.id.in_(log_ids)))
                await session.commit()

        if log_ids:
            logger.info("Old file access logs cleaned up", deleted_count=len(log_ids))
        return len(log_ids)

    # Admin entry points

    async def run_manual_cleanup(self, cleanup_type: CleanupType) -> dict[str, Any]:
        """
        Run a subset of the sweeps now.

        Each sweep runs independently; a failing sweep adds an error string and
        the others still run.
        """
        sweeps = {
            "expired": ("expiredFiles", "Expired files cleanup", self.cleanup_expired_files),
            "temp": ("tempFiles", "Temp files cleanup", self.cleanup_temp_files),
            "quarantine": (
                "quarantinedFiles",
                "Quarantine cleanup",
                self.cleanup_quarantined_files,
            ),
            "optimize": ("optimizedFiles", "Storage optimization", self.optimize_storage),
        }

        results: dict[str, int] = {}
        errors: list[str] = []
        for kind, (result_key, label, sweep) in sweeps.items():
            if cleanup_type not in (kind, "all"):
                continue
            try:
                results[result_key] = await sweep()
            except Exception as e:
                logger.exception("Manual cleanup failed", kind=kind)
                errors.append(f"{label} failed: {e}")

        logger.info("Manual cleanup finished", cleanup_type=cleanup_type, results=results)
        return {"success": not errors, "results": results, "errors": errors}

    async def get_cleanup_stats(self) -> dict[str, int]:
        """Counts of what the sweeps would act on, plus bytes used by non-duplicates."""
        now = self.clock()
        temp_cutoff = now - timedelta(hours=self.settings.temp_file_max_age_hours)

        async with self.session_factory() as session:

            async def count(model: Any, *conditions: Any) -> int:
                result = await session.execute(
                    select(func.count()).select_from(model).where(*conditions)
                )
                return result.scalar_one()

            stats = {
                "expiredFiles": await count(
                    FileMetadata,
                    FileMetadata.expires_at.is_not(None),
                    FileMetadata.expires_at < now,
                ),
                "tempFiles": await count(
                    FileMetadata,
                    FileMetadata.category == TEMP_FILES_CATEGORY,
                    FileMetadata.uploaded_at < temp_cutoff,
                ),
                "quarantinedFiles": await count(
                    VirusScanResult, VirusScanResult.status == QUARANTINED_SCAN_STATUS
                ),
                "duplicateFiles": await count(FileMetadata, FileMetadata.is_duplicate.is_(True)),
            }
            storage_result = await session.execute(
                select(func.coalesce(func.sum(FileMetadata.size), 0)).where(
                    FileMetadata.is_duplicate.is_(False)
                )
            )
            stats["totalStorageUsed"] = int(storage_result.scalar_one())

        return stats
