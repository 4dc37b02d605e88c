import csv
import io
import json
from datetime import timedelta
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy import select

from hubjobs.v1.catalog.models import Payout
from hubjobs.v1.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from hubjobs.v1.maintenance.models import TEMP_FILES_CATEGORY, FileMetadata
from hubjobs.v1.maintenance.storage import LocalFileStorage
from hubjobs.v1.queue.processors import (
    EMAIL_QUEUE,
    EXPORT_QUEUE,
    FILE_PROCESSING_QUEUE,
    ChecksumFileProcessor,
    EmailMessage,
    EmailQueueProcessor,
    ExportQueueProcessor,
    FileProcessingQueueProcessor,
    HttpEmailSender,
)

WELCOME = {"type": "welcome", "to": "new.mentee@example.com", "context": {"name": "Ada"}}


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "files")


async def _add(session_factory, *records):
    async with session_factory() as session:
        session.add_all(records)
        await session.commit()


async def _get_file(session_factory, file_id) -> FileMetadata:
    async with session_factory() as session:
        return await session.get(FileMetadata, file_id)


class TestBuiltInQueues:
    @pytest.mark.asyncio
    async def test_registered_with_their_options(self, background_jobs):
        queue = background_jobs.queue

        assert queue.queue_names() == [EMAIL_QUEUE, EXPORT_QUEUE, FILE_PROCESSING_QUEUE]
        assert queue._queues[EMAIL_QUEUE].options.concurrency == 10
        assert queue._queues[EXPORT_QUEUE].options.visibility_timeout_ms == 600000
        assert queue._queues[FILE_PROCESSING_QUEUE].options.poll_interval_ms == 10000

    @pytest.mark.asyncio
    async def test_email_job_added_through_the_api_completes(
        self, client, background_jobs, email_sender, drain
    ):
        response = await client.post(
            "/v1/queues/jobs", json={"queue_name": EMAIL_QUEUE, "payload": WELCOME}
        )
        job_id = response.json()["data"]["id"]

        assert await drain(background_jobs.queue, EMAIL_QUEUE) == 1

        response = await client.get(f"/v1/queues/{EMAIL_QUEUE}/jobs/{job_id}")
        job = response.json()["data"]
        assert job["status"] == "completed"
        assert job["result"] == {"message_id": "msg-1", "recipients": 1}
        assert email_sender.sent[0].to == ["new.mentee@example.com"]

    @pytest.mark.asyncio
    async def test_invalid_email_job_is_retried_not_dropped(self, client, background_jobs, drain):
        response = await client.post(
            "/v1/queues/jobs",
            json={"queue_name": EMAIL_QUEUE, "payload": {"type": "welcome", "to": "x@example.com"}},
        )
        job_id = response.json()["data"]["id"]

        await drain(background_jobs.queue, EMAIL_QUEUE)

        response = await client.get(f"/v1/queues/{EMAIL_QUEUE}/jobs/{job_id}")
        job = response.json()["data"]
        assert job["status"] == "retrying"
        assert "Missing required data" in job["error"]


class TestEmailQueueProcessor:
    @pytest.mark.asyncio
    async def test_sends_templated_email(self, queue_engine, email_sender):
        job = await queue_engine.add_job(EMAIL_QUEUE, WELCOME)

        result = await EmailQueueProcessor(email_sender).handle(WELCOME, job)

        assert result == {"message_id": "msg-1", "recipients": 1}
        assert email_sender.sent[0].context == {"name": "Ada"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "welcome", "to": "a@example.com"},
            {"type": "session-reminder", "to": "a@example.com", "context": {"name": "Ada"}},
            {"type": "carrier-pigeon", "to": "a@example.com"},
            {"type": "custom", "to": []},
            {"to": "a@example.com"},
        ],
    )
    async def test_rejects_incomplete_payloads(self, queue_engine, email_sender, payload):
        job = await queue_engine.add_job(EMAIL_QUEUE, payload)

        with pytest.raises(ValidationError):
            await EmailQueueProcessor(email_sender).handle(payload, job)
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_custom_email_gets_default_subject(self, queue_engine, email_sender):
        payload = {"type": "custom", "to": ["a@example.com", "b@example.com"], "text": "hi"}
        job = await queue_engine.add_job(EMAIL_QUEUE, payload)

        result = await EmailQueueProcessor(email_sender).handle(payload, job)

        assert result["recipients"] == 2
        assert email_sender.sent[0].subject == "No Subject"

    @pytest.mark.asyncio
    async def test_without_sender_the_attempt_fails(self, queue_engine):
        job = await queue_engine.add_job(EMAIL_QUEUE, WELCOME)

        with pytest.raises(ConfigurationError):
            await EmailQueueProcessor(None).handle(WELCOME, job)

    @pytest.mark.asyncio
    async def test_http_sender_posts_message(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202, json={"id": "provider-42"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sender = HttpEmailSender("https://mail.test/send", client)
            message_id = await sender.send(EmailMessage.model_validate(WELCOME))

        assert message_id == "provider-42"
        body = json.loads(requests[0].content)
        assert body == {
            "type": "welcome",
            "to": ["new.mentee@example.com"],
            "context": {"name": "Ada"},
        }


class TestExportQueueProcessor:
    @pytest.fixture
    def processor(self, session_factory, settings, storage, queue_engine, clock):
        return ExportQueueProcessor(session_factory, settings, storage, queue_engine, clock)

    @pytest.mark.asyncio
    async def test_csv_export_is_stored_as_expiring_temp_file(
        self, processor, queue_engine, session_factory, storage, clock
    ):
        now = clock()
        await _add(
            session_factory,
            Payout(mentor_id=uuid4(), amount_cents=1500, created_at=now - timedelta(days=2)),
            Payout(mentor_id=uuid4(), amount_cents=900, created_at=now - timedelta(days=1)),
        )
        payload = {"type": "payouts", "fields": ["amount_cents", "status"]}
        job = await queue_engine.add_job(EXPORT_QUEUE, payload)

        result = await processor.handle(payload, job)

        assert result["rows"] == 2
        assert result["path"] == f"exports/{job.id}.csv"
        content = await storage.read(result["path"])
        rows = list(csv.DictReader(io.StringIO(content.decode())))
        assert rows == [
            {"amount_cents": "1500", "status": "pending"},
            {"amount_cents": "900", "status": "pending"},
        ]

        export_file = await _get_file(session_factory, UUID(result["file_id"]))
        assert export_file.category == TEMP_FILES_CATEGORY
        assert export_file.size == len(content)
        assert export_file.expires_at == now + timedelta(days=7)
        assert export_file.original_name == "payouts-export-2026-01-05.csv"

    @pytest.mark.asyncio
    async def test_json_export_honors_date_range(
        self, processor, queue_engine, session_factory, storage, clock
    ):
        now = clock()
        await _add(
            session_factory,
            Payout(mentor_id=uuid4(), amount_cents=100, created_at=now - timedelta(days=3)),
            Payout(mentor_id=uuid4(), amount_cents=200, created_at=now),
        )
        payload = {
            "type": "payouts",
            "format": "json",
            "fields": ["amount_cents"],
            "start_date": now.date().isoformat(),
            "end_date": now.date().isoformat(),
        }
        job = await queue_engine.add_job(EXPORT_QUEUE, payload)

        result = await processor.handle(payload, job)

        assert json.loads(await storage.read(result["path"])) == [{"amount_cents": 200}]

    @pytest.mark.asyncio
    async def test_notify_email_enqueues_ready_notice(self, processor, queue_engine):
        payload = {"type": "sessions", "notify_email": "admin@example.com"}
        job = await queue_engine.add_job(EXPORT_QUEUE, payload)

        result = await processor.handle(payload, job)

        jobs = await queue_engine.get_jobs_by_status(EMAIL_QUEUE, "pending")
        assert len(jobs) == 1
        assert jobs[0].payload["to"] == "admin@example.com"
        assert jobs[0].payload["context"]["file_id"] == result["file_id"]
        assert jobs[0].max_attempts == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "users"},
            {"type": "payouts", "format": "xlsx"},
            {"type": "payouts", "fields": ["amount_cents", "password"]},
        ],
    )
    async def test_rejects_unsupported_requests(self, processor, queue_engine, storage, payload):
        job = await queue_engine.add_job(EXPORT_QUEUE, payload)

        with pytest.raises(ValidationError):
            await processor.handle(payload, job)
        assert not storage.root.exists()


class TestFileProcessingQueueProcessor:
    @pytest.fixture
    def processor(self, session_factory, storage):
        return FileProcessingQueueProcessor(session_factory, ChecksumFileProcessor(storage))

    async def _stored_file(self, session_factory, storage, name: str, content: bytes):
        file = FileMetadata(path=f"uploads/{name}", original_name=name, category="uploads")
        await storage.write(file.path, content)
        await _add(session_factory, file)
        return file

    @pytest.mark.asyncio
    async def test_fingerprints_the_stored_file(
        self, processor, queue_engine, session_factory, storage
    ):
        file = await self._stored_file(session_factory, storage, "avatar.png", b"\x89PNG data")
        payload = {"file_id": str(file.id), "type": "image"}
        job = await queue_engine.add_job(FILE_PROCESSING_QUEUE, payload)

        result = await processor.handle(payload, job)

        stored = await _get_file(session_factory, file.id)
        assert stored.size == len(b"\x89PNG data")
        assert stored.checksum == result["checksum"]
        assert len(result["checksum"]) == 64

    @pytest.mark.asyncio
    async def test_rejects_kind_that_does_not_match_the_file(
        self, processor, queue_engine, session_factory, storage
    ):
        file = await self._stored_file(session_factory, storage, "notes.pdf", b"%PDF")
        payload = {"file_id": str(file.id), "type": "video"}
        job = await queue_engine.add_job(FILE_PROCESSING_QUEUE, payload)

        with pytest.raises(ValidationError, match="not a valid video"):
            await processor.handle(payload, job)

        payload = {"file_id": str(file.id), "type": "document"}
        result = await processor.handle(payload, job)
        assert result["size"] == 4

    @pytest.mark.asyncio
    async def test_missing_file_record(self, processor, queue_engine):
        payload = {"file_id": str(uuid4()), "type": "document"}
        job = await queue_engine.add_job(FILE_PROCESSING_QUEUE, payload)

        with pytest.raises(NotFoundError):
            await processor.handle(payload, job)

    @pytest.mark.asyncio
    async def test_checksums_feed_duplicate_detection(
        self, processor, queue_engine, session_factory, storage
    ):
        first = await self._stored_file(session_factory, storage, "a.txt", b"same bytes")
        second = await self._stored_file(session_factory, storage, "b.txt", b"same bytes")

        for file in (first, second):
            payload = {"file_id": str(file.id), "type": "document"}
            job = await queue_engine.add_job(FILE_PROCESSING_QUEUE, payload)
            await processor.handle(payload, job)

        async with session_factory() as session:
            checksums = (
                await session.execute(
                    select(FileMetadata.checksum).where(FileMetadata.id.in_([first.id, second.id]))
                )
            ).scalars().all()
        assert len(set(checksums)) == 1
