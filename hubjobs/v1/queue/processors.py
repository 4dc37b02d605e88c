"""
Processors of the platform's built-in queues.

emailQueue, exportQueue and fileProcessingQueue are registered on the queue
engine when the background jobs are created. Each processor validates its
payload and hands the actual work to a collaborator protocol (email provider,
file store, file processor) so the transport can be swapped without touching
the queue semantics.
"""

import csv
import hashlib
import io
import json
import mimetypes
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Literal, Protocol, runtime_checkable
from uuid import UUID

import httpx
import pydantic
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hubjobs.config.logging import get_logger
from hubjobs.config.settings import Settings
from hubjobs.infra.database import utcnow
from hubjobs.v1.catalog.models import AnalyticsReport, MentoringSession, Notification, Payout
from hubjobs.v1.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from hubjobs.v1.maintenance.models import TEMP_FILES_CATEGORY, FileMetadata
from hubjobs.v1.maintenance.storage import FileStorage
from hubjobs.v1.queue.engine import QueueEngine
from hubjobs.v1.queue.models import QueueJob
from hubjobs.v1.queue.schemas import JobOptions, QueueOptions

logger = get_logger(__name__)

EMAIL_QUEUE = "emailQueue"
EXPORT_QUEUE = "exportQueue"
FILE_PROCESSING_QUEUE = "fileProcessingQueue"

DEFAULT_QUEUE_OPTIONS: dict[str, QueueOptions] = {
    EMAIL_QUEUE: QueueOptions(concurrency=10, poll_interval_ms=5000),
    EXPORT_QUEUE: QueueOptions(concurrency=2, poll_interval_ms=30000, visibility_timeout_ms=600000),
    FILE_PROCESSING_QUEUE: QueueOptions(
        concurrency=3, poll_interval_ms=10000, visibility_timeout_ms=300000
    ),
}

# Context fields each templated email needs
EMAIL_REQUIRED_CONTEXT: dict[str, tuple[str, ...]] = {
    "welcome": ("name",),
    "password-reset": ("resetToken",),
    "email-verification": ("verificationToken",),
    "session-confirmation": ("name", "sessionDetails"),
    "session-reminder": ("name", "sessionDetails"),
    "notification": ("name", "notification"),
    "custom": (),
}


def _parse_payload(model: type[BaseModel], payload: Any, queue_name: str) -> Any:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid {queue_name} payload",
            {"errors": jsonable_encoder(e.errors(include_url=False))},
        ) from e


# Email


class EmailMessage(BaseModel):
    """Payload of an emailQueue job."""

    type: str = Field(..., description="welcome, password-reset, ..., or custom")
    to: list[str] = Field(..., min_length=1, description="Recipients")
    subject: str | None = None
    text: str | None = None
    html: str | None = None
    template: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    cc: list[str] | None = None
    bcc: list[str] | None = None
    reply_to: str | None = None

    @pydantic.field_validator("to", mode="before")
    @classmethod
    def _single_recipient(cls, value: Any) -> Any:
        return [value] if isinstance(value, str) else value


@runtime_checkable
class EmailSender(Protocol):
    """Protocol for the provider that delivers transactional email."""

    async def send(self, message: EmailMessage) -> str:
        """
        Deliver one message.

        Returns:
            Provider message id. Raising fails the attempt and the job is retried.
        """
        ...


class HttpEmailSender:
    """Delivers email by POSTing messages to the provider's HTTP endpoint."""

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    async def send(self, message: EmailMessage) -> str:
        response = await self.client.post(
            self.url, json=message.model_dump(mode="json", exclude_none=True)
        )
        response.raise_for_status()
        return str(response.json().get("id", ""))


class EmailQueueProcessor:
    """Validate an email job and hand it to the email sender."""

    def __init__(self, sender: EmailSender | None):
        self.sender = sender

    async def handle(self, payload: Any, job: QueueJob) -> dict[str, Any]:
        message = _parse_payload(EmailMessage, payload, EMAIL_QUEUE)

        required = EMAIL_REQUIRED_CONTEXT.get(message.type)
        if required is None:
            raise ValidationError(f"Unknown email type: {message.type}", {"type": message.type})
        missing = [field for field in required if not message.context.get(field)]
        if missing:
            raise ValidationError(
                f"Missing required data for {message.type} email", {"missing": missing}
            )
        if message.type == "custom" and message.subject is None:
            message.subject = "No Subject"

        if self.sender is None:
            raise ConfigurationError("No email sender configured", {"job_id": str(job.id)})

        message_id = await self.sender.send(message)
        logger.info("Email sent", email_type=message.type, recipients=len(message.to))
        return {"message_id": message_id, "recipients": len(message.to)}


# Export

EXPORT_SOURCES: dict[str, tuple[type, Any]] = {
    "sessions": (MentoringSession, MentoringSession.scheduled_at),
    "payouts": (Payout, Payout.created_at),
    "notifications": (Notification, Notification.created_at),
    "analytics": (AnalyticsReport, AnalyticsReport.generated_at),
}


class ExportRequest(BaseModel):
    """Payload of an exportQueue job."""

    type: Literal["sessions", "payouts", "notifications", "analytics"]
    format: Literal["csv", "json"] = "csv"
    fields: list[str] | None = Field(default=None, description="Columns to keep, in order")
    start_date: date | None = None
    end_date: date | None = None
    user_id: UUID | None = Field(default=None, description="Owner of the export file")
    notify_email: str | None = Field(default=None, description="Send a ready notice here")


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _render(rows: list[dict[str, Any]], columns: list[str], fmt: str) -> bytes:
    if fmt == "json":
        return json.dumps(jsonable_encoder(rows), indent=2).encode()

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns)
    writer.writeheader()
    for row in jsonable_encoder(rows):
        writer.writerow(
            {k: json.dumps(v) if isinstance(v, (dict, list)) else v for k, v in row.items()}
        )
    return buffer.getvalue().encode()


class ExportQueueProcessor:
    """Write a table extract to storage and register it as an expiring temp file."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        storage: FileStorage,
        queue: QueueEngine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.storage = storage
        self.queue = queue
        self.clock = clock

    async def handle(self, payload: Any, job: QueueJob) -> dict[str, Any]:
        request = _parse_payload(ExportRequest, payload, EXPORT_QUEUE)
        model, date_column = EXPORT_SOURCES[request.type]

        all_columns = [column.key for column in model.__table__.columns]
        columns = request.fields or all_columns
        unknown = [field for field in columns if field not in all_columns]
        if unknown:
            raise ValidationError(
                f"Unknown fields for {request.type} export", {"fields": unknown}
            )

        query = select(model).order_by(date_column)
        if request.start_date:
            query = query.where(date_column >= _day_start(request.start_date))
        if request.end_date:
            query = query.where(date_column < _day_start(request.end_date + timedelta(days=1)))

        now = self.clock()
        async with self.session_factory() as session:
            records = (await session.execute(query)).scalars().all()
            rows = [{column: getattr(record, column) for column in columns} for record in records]

            content = _render(rows, columns, request.format)
            key = f"exports/{job.id}.{request.format}"
            await self.storage.write(key, content)

            export_file = FileMetadata(
                path=key,
                original_name=f"{request.type}-export-{now:%Y-%m-%d}.{request.format}",
                category=TEMP_FILES_CATEGORY,
                size=len(content),
                checksum=hashlib.sha256(content).hexdigest(),
                uploaded_by=request.user_id,
                uploaded_at=now,
                expires_at=now + timedelta(days=self.settings.export_expiry_days),
            )
            session.add(export_file)
            await session.commit()

        if request.notify_email:
            await self.queue.add_job(
                EMAIL_QUEUE,
                {
                    "type": "custom",
                    "to": request.notify_email,
                    "subject": f"Your {request.type} export is ready",
                    "context": {
                        "file_id": str(export_file.id),
                        "expires_at": export_file.expires_at.isoformat(),
                    },
                },
                JobOptions(max_attempts=5),
            )

        logger.info(
            "Export generated",
            export_type=request.type,
            format=request.format,
            rows=len(rows),
            file_id=str(export_file.id),
        )
        return {
            "file_id": str(export_file.id),
            "path": key,
            "rows": len(rows),
            "size": len(content),
        }


# File processing


class FileProcessingRequest(BaseModel):
    """Payload of a fileProcessingQueue job."""

    file_id: UUID
    type: Literal["image", "video", "document"]
    options: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class FileProcessor(Protocol):
    """Protocol for the component that transforms stored files."""

    async def process(
        self, kind: str, file: FileMetadata, options: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Process one stored file.

        Returns:
            Result stored on the job. ``size`` and ``checksum`` keys, when
            present, are written back to the file record.
        """
        ...


class ChecksumFileProcessor:
    """Fingerprints the stored bytes so duplicate detection can group the file."""

    def __init__(self, storage: FileStorage):
        self.storage = storage

    async def process(
        self, kind: str, file: FileMetadata, options: dict[str, Any]
    ) -> dict[str, Any]:
        content = await self.storage.read(file.path)
        return {"size": len(content), "checksum": hashlib.sha256(content).hexdigest()}


class FileProcessingQueueProcessor:
    """Check the file's kind and run it through the file processor."""

    # Media kinds that must match the file's guessed MIME type
    MIME_PREFIXES = {"image": "image/", "video": "video/"}

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        processor: FileProcessor,
    ):
        self.session_factory = session_factory
        self.processor = processor

    async def handle(self, payload: Any, job: QueueJob) -> dict[str, Any]:
        request = _parse_payload(FileProcessingRequest, payload, FILE_PROCESSING_QUEUE)

        async with self.session_factory() as session:
            file = await session.get(FileMetadata, request.file_id)
            if file is None:
                raise NotFoundError(
                    f"File {request.file_id} not found", {"file_id": str(request.file_id)}
                )

            mime_type = mimetypes.guess_type(file.original_name or file.path)[0]
            prefix = self.MIME_PREFIXES.get(request.type)
            if prefix and not (mime_type or "").startswith(prefix):
                raise ValidationError(
                    f"File is not a valid {request.type} file",
                    {"file_id": str(file.id), "mime_type": mime_type},
                )

            result = await self.processor.process(request.type, file, request.options)
            if "size" in result:
                file.size = result["size"]
            if "checksum" in result:
                file.checksum = result["checksum"]
            await session.commit()

        logger.info("File processed", file_id=str(request.file_id), kind=request.type)
        return result


def register_default_queues(
    queue: QueueEngine,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    storage: FileStorage,
    http_client: httpx.AsyncClient,
    email_sender: EmailSender | None = None,
    file_processor: FileProcessor | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Register the processors of the built-in queues with their options."""
    if email_sender is None and settings.email_api_url:
        email_sender = HttpEmailSender(settings.email_api_url, http_client)

    processors = {
        EMAIL_QUEUE: EmailQueueProcessor(email_sender),
        EXPORT_QUEUE: ExportQueueProcessor(session_factory, settings, storage, queue, clock),
        FILE_PROCESSING_QUEUE: FileProcessingQueueProcessor(
            session_factory, file_processor or ChecksumFileProcessor(storage)
        ),
    }
    for queue_name, processor in processors.items():
        queue.register_queue(queue_name, processor, DEFAULT_QUEUE_OPTIONS[queue_name])

    logger.info("Built-in queues registered", queues=list(processors))
