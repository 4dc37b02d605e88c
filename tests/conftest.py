import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from hubjobs.config.settings import Settings
from hubjobs.infra.database import Database
from hubjobs.main import create_app
from hubjobs.v1.background import BackgroundJobs
from hubjobs.v1.queue.engine import QueueEngine
from hubjobs.v1.scheduler.engine import SchedulerEngine

# Monday, so weekday-based cron expressions are easy to reason about
START_TIME = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Injectable clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        environment="test",
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'hubjobs.db'}",
        file_storage_root=str(tmp_path / "files"),
        quarantine_dir=str(tmp_path / "quarantine"),
        queue_default_poll_interval_ms=50,
        # Tests drive the queues with poll_once instead of live poll loops
        queue_processing_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Database with every table created from the ORM metadata."""
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def session_factory(database):
    return database.SessionLocal


@pytest.fixture
def queue_engine(session_factory, settings, clock) -> QueueEngine:
    return QueueEngine(session_factory, settings, clock=clock)


@pytest.fixture
async def scheduler(session_factory, settings, clock) -> AsyncGenerator[SchedulerEngine, None]:
    scheduler = SchedulerEngine(session_factory, settings, clock=clock)
    yield scheduler
    await scheduler.stop(timeout_seconds=1)


@pytest.fixture
def external_api():
    """Mock transport standing in for external HTTP services."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"records": [], "cursor": None})

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    return transport


class FakeEmailSender:
    """Records messages instead of delivering them."""

    def __init__(self):
        self.sent: list = []

    async def send(self, message) -> str:
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
async def background_jobs(settings, database, clock, external_api, email_sender):
    http_client = httpx.AsyncClient(transport=external_api)
    background_jobs = BackgroundJobs(
        settings, database, clock=clock, http_client=http_client, email_sender=email_sender
    )
    await background_jobs.start()
    yield background_jobs
    await background_jobs.stop(timeout_seconds=1)
    await http_client.aclose()


@pytest.fixture
async def client(settings, database, background_jobs) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to an app whose state is wired to the test database."""
    app = create_app(settings)
    app.state.database = database
    app.state.background_jobs = background_jobs

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
def drain():
    """Run one poll tick and wait for every dispatched job to finish."""

    async def run(queue_engine: QueueEngine, queue_name: str) -> int:
        tasks = await queue_engine.poll_once(queue_name)
        await asyncio.gather(*tasks)
        return len(tasks)

    return run
