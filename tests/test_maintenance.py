from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from hubjobs.v1.core.exceptions import NotFoundError, ValidationError
from hubjobs.v1.maintenance.models import (
    QUARANTINED_SCAN_STATUS,
    TEMP_FILES_CATEGORY,
    FileAccessLog,
    FileMetadata,
    VirusScanResult,
)
from hubjobs.v1.maintenance.storage import LocalFileStorage, remove_stored_objects
from hubjobs.v1.maintenance.tasks import MaintenanceTaskSet


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "files"
    root.mkdir()
    return root


@pytest.fixture
def quarantine_root(tmp_path):
    root = tmp_path / "quarantine"
    root.mkdir()
    return root


@pytest.fixture
def maintenance(session_factory, settings, clock, storage_root, quarantine_root):
    return MaintenanceTaskSet(
        session_factory,
        settings,
        LocalFileStorage(storage_root),
        LocalFileStorage(quarantine_root),
        clock,
    )


async def _add(session_factory, *records):
    async with session_factory() as session:
        session.add_all(records)
        await session.commit()


async def _count(session_factory, model, *conditions) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*conditions))
        return result.scalar_one()


class TestExpiredFiles:
    @pytest.mark.asyncio
    async def test_batch_is_capped_per_run(self, maintenance, session_factory, clock):
        expired = clock() - timedelta(days=1)
        await _add(
            session_factory,
            *[
                FileMetadata(path=f"f{i}.bin", category="documents", expires_at=expired)
                for i in range(500)
            ],
        )

        assert await maintenance.cleanup_expired_files() == 100
        assert await _count(session_factory, FileMetadata) == 400

        assert await maintenance.cleanup_expired_files() == 100
        assert await _count(session_factory, FileMetadata) == 300

    @pytest.mark.asyncio
    async def test_removes_stored_object_and_access_logs(
        self, maintenance, session_factory, clock, storage_root
    ):
        (storage_root / "gone.pdf").write_text("x")
        (storage_root / "kept.pdf").write_text("x")
        gone = FileMetadata(
            path="gone.pdf", category="documents", expires_at=clock() - timedelta(minutes=1)
        )
        kept = FileMetadata(
            path="kept.pdf", category="documents", expires_at=clock() + timedelta(days=1)
        )
        await _add(session_factory, gone, kept)
        await _add(session_factory, FileAccessLog(file_id=gone.id, accessed_at=clock()))

        assert await maintenance.cleanup_expired_files() == 1

        assert not (storage_root / "gone.pdf").exists()
        assert (storage_root / "kept.pdf").exists()
        assert await _count(session_factory, FileAccessLog) == 0

    @pytest.mark.asyncio
    async def test_missing_stored_object_does_not_block_cleanup(self, maintenance, session_factory, clock):
        await _add(
            session_factory,
            FileMetadata(
                path="never-written.bin",
                category="documents",
                expires_at=clock() - timedelta(days=1),
            ),
        )

        assert await maintenance.cleanup_expired_files() == 1
        assert await _count(session_factory, FileMetadata) == 0


class TestOtherSweeps:
    @pytest.mark.asyncio
    async def test_temp_files_older_than_max_age(self, maintenance, session_factory, clock):
        await _add(
            session_factory,
            FileMetadata(
                path="a.tmp", category=TEMP_FILES_CATEGORY, uploaded_at=clock() - timedelta(hours=25)
            ),
            FileMetadata(
                path="b.tmp", category=TEMP_FILES_CATEGORY, uploaded_at=clock() - timedelta(hours=1)
            ),
        )

        assert await maintenance.cleanup_temp_files() == 1
        assert await _count(session_factory, FileMetadata) == 1

    @pytest.mark.asyncio
    async def test_virus_scan_results_past_retention(self, maintenance, session_factory, clock):
        await _add(
            session_factory,
            VirusScanResult(file_id=uuid4(), status="clean", scanned_at=clock() - timedelta(days=31)),
            VirusScanResult(file_id=uuid4(), status="clean", scanned_at=clock() - timedelta(days=5)),
        )

        assert await maintenance.cleanup_virus_scan_results() == 1
        assert await _count(session_factory, VirusScanResult) == 1

    @pytest.mark.asyncio
    async def test_quarantined_files_past_retention(
        self, maintenance, session_factory, clock, quarantine_root
    ):
        old_file, recent_file = uuid4(), uuid4()
        (quarantine_root / f"{old_file}_quarantined").write_text("x")
        (quarantine_root / f"{recent_file}_quarantined").write_text("x")
        await _add(
            session_factory,
            VirusScanResult(
                file_id=old_file,
                status=QUARANTINED_SCAN_STATUS,
                scanned_at=clock() - timedelta(days=91),
            ),
            VirusScanResult(
                file_id=recent_file,
                status=QUARANTINED_SCAN_STATUS,
                scanned_at=clock() - timedelta(days=10),
            ),
        )

        assert await maintenance.cleanup_quarantined_files() == 1

        assert not (quarantine_root / f"{old_file}_quarantined").exists()
        assert (quarantine_root / f"{recent_file}_quarantined").exists()
        assert await _count(session_factory, VirusScanResult) == 1

    @pytest.mark.asyncio
    async def test_optimize_marks_later_uploads_as_duplicates(
        self, maintenance, session_factory, clock
    ):
        first = FileMetadata(
            path="1", category="documents", checksum="abc", size=10,
            uploaded_at=clock() - timedelta(days=3),
        )
        second = FileMetadata(
            path="2", category="documents", checksum="abc", size=10,
            uploaded_at=clock() - timedelta(days=2),
        )
        third = FileMetadata(
            path="3", category="documents", checksum="abc", size=10,
            uploaded_at=clock() - timedelta(days=1),
        )
        unique = FileMetadata(path="4", category="documents", checksum="xyz", size=5)
        await _add(session_factory, first, second, third, unique)
        await _add(
            session_factory,
            FileAccessLog(file_id=unique.id, accessed_at=clock() - timedelta(days=100)),
            FileAccessLog(file_id=unique.id, accessed_at=clock() - timedelta(days=1)),
        )

        assert await maintenance.optimize_storage() == 2
        # Already marked files are not counted again
        assert await maintenance.optimize_storage() == 0

        async with session_factory() as session:
            result = await session.execute(select(FileMetadata).order_by(FileMetadata.path))
            files = {f.path: f for f in result.scalars().all()}
        assert files["1"].is_duplicate is False
        assert files["2"].original_file_id == first.id
        assert files["3"].is_duplicate is True
        assert files["3"].duplicate_detected_at == clock()
        assert files["4"].is_duplicate is False
        assert await _count(session_factory, FileAccessLog) == 1


class TestManualCleanup:
    @pytest.mark.asyncio
    async def test_all_runs_every_sweep(self, maintenance, session_factory, clock):
        await _add(
            session_factory,
            FileMetadata(path="e", category="documents", expires_at=clock() - timedelta(days=1)),
            FileMetadata(
                path="t", category=TEMP_FILES_CATEGORY, uploaded_at=clock() - timedelta(days=2)
            ),
        )

        report = await maintenance.run_manual_cleanup("all")

        assert report == {
            "success": True,
            "results": {
                "expiredFiles": 1,
                "tempFiles": 1,
                "quarantinedFiles": 0,
                "optimizedFiles": 0,
            },
            "errors": [],
        }

    @pytest.mark.asyncio
    async def test_single_sweep(self, maintenance):
        report = await maintenance.run_manual_cleanup("temp")
        assert report["results"] == {"tempFiles": 0}

    @pytest.mark.asyncio
    async def test_failing_sweep_is_reported_and_others_run(self, maintenance, monkeypatch):
        async def broken():
            raise RuntimeError("disk unavailable")

        monkeypatch.setattr(maintenance, "cleanup_expired_files", broken)

        report = await maintenance.run_manual_cleanup("all")

        assert report["success"] is False
        assert report["errors"] == ["Expired files cleanup failed: disk unavailable"]
        assert "expiredFiles" not in report["results"]
        assert report["results"]["tempFiles"] == 0


class TestStats:
    @pytest.mark.asyncio
    async def test_cleanup_stats(self, maintenance, session_factory, clock):
        original = FileMetadata(path="o", category="documents", size=100)
        await _add(session_factory, original)
        await _add(
            session_factory,
            FileMetadata(
                path="d", category="documents", size=100, is_duplicate=True,
                original_file_id=original.id,
            ),
            FileMetadata(
                path="e", category="documents", size=40, expires_at=clock() - timedelta(days=1)
            ),
            FileMetadata(
                path="t", category=TEMP_FILES_CATEGORY, size=2,
                uploaded_at=clock() - timedelta(days=2),
            ),
            VirusScanResult(file_id=uuid4(), status=QUARANTINED_SCAN_STATUS, scanned_at=clock()),
        )

        stats = await maintenance.get_cleanup_stats()

        assert stats == {
            "expiredFiles": 1,
            "tempFiles": 1,
            "quarantinedFiles": 1,
            "duplicateFiles": 1,
            "totalStorageUsed": 142,
        }


class TestRegistration:
    @pytest.mark.asyncio
    async def test_sweeps_become_static_tasks(self, maintenance, scheduler):
        maintenance.register(scheduler)

        statuses = {s.name: s for s in scheduler.get_status()}
        assert set(statuses) == {
            "expiredFileCleanup",
            "tempFileCleanup",
            "virusScanCleanup",
            "quarantineCleanup",
            "storageOptimization",
        }
        assert statuses["quarantineCleanup"].cron_expression == "0 3 * * 0"
        assert all(not s.persisted for s in statuses.values())

        outcome = await scheduler.trigger_job("tempFileCleanup")
        assert outcome.success is True
        assert outcome.data == {"count": 0}


class TestLocalFileStorage:
    @pytest.mark.asyncio
    async def test_delete(self, storage_root):
        (storage_root / "a.txt").write_text("x")
        storage = LocalFileStorage(storage_root)

        assert await storage.delete("a.txt") is True
        assert await storage.delete("a.txt") is False

    @pytest.mark.asyncio
    async def test_key_outside_root_is_rejected(self, storage_root):
        with pytest.raises(ValidationError):
            await LocalFileStorage(storage_root).delete("../escape.txt")

    @pytest.mark.asyncio
    async def test_remove_collects_errors(self, storage_root):
        errors = await remove_stored_objects(
            LocalFileStorage(storage_root), ["missing.txt", "../escape.txt"]
        )

        assert len(errors) == 1
        assert errors[0].startswith("../escape.txt:")

    @pytest.mark.asyncio
    async def test_write_then_read_creates_directories(self, storage_root):
        storage = LocalFileStorage(storage_root)

        await storage.write("exports/report.csv", b"id\n1\n")

        assert (storage_root / "exports" / "report.csv").read_bytes() == b"id\n1\n"
        assert await storage.read("exports/report.csv") == b"id\n1\n"

    @pytest.mark.asyncio
    async def test_read_missing_object(self, storage_root):
        with pytest.raises(NotFoundError):
            await LocalFileStorage(storage_root).read("missing.txt")
