from typing import Any

import pytest

from hubjobs.v1.core.exceptions import ConfigurationError, NotFoundError
from hubjobs.v1.core.registries import (
    CallableQueueHandler,
    CallableTaskHandler,
    QueueHandler,
    Registry,
    ScheduledTaskHandler,
    ScheduledTaskRegistry,
    TaskOutcome,
    as_queue_handler,
    as_task_handler,
)


class MockQueueHandler:
    async def handle(self, payload: Any, job: Any) -> Any:
        return {"handled": payload}


class MockTaskHandler:
    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        return TaskOutcome(success=True, message="ok")


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert "test_impl" in registry

    with pytest.raises(NotFoundError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_duplicate_and_replace():
    """Test that duplicates are rejected unless replace is requested."""
    registry = Registry[str]("Test")
    registry.register("impl", "v1")

    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register("impl", "v2")

    registry.register("impl", "v2", replace=True)
    assert registry.get("impl") == "v2"


def test_registry_unregister():
    """Test removing implementations."""
    registry = Registry[str]("Test")
    registry.register("impl", "value")

    registry.unregister("impl")
    registry.unregister("never-registered")

    assert registry.list() == []


def test_registry_freeze():
    """Test that a frozen registry rejects new registrations."""
    registry = Registry[str]("Test")
    registry.register("impl", "value")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(ConfigurationError, match="registry is frozen"):
        registry.register("other", "value")
    assert registry.get("impl") == "value"


def test_scheduled_task_registry():
    """Test the scheduled task registry instance."""
    registry = ScheduledTaskRegistry()
    registry.register("cleanupExpiredSessions", MockTaskHandler())

    assert registry.name == "ScheduledTask"
    assert isinstance(registry.get("cleanupExpiredSessions"), ScheduledTaskHandler)


def test_queue_handler_adapters():
    """Test that handler objects pass through and functions get wrapped."""
    handler = MockQueueHandler()
    assert as_queue_handler(handler) is handler
    assert isinstance(handler, QueueHandler)

    async def fn(payload, job):
        return None

    wrapped = as_queue_handler(fn)
    assert isinstance(wrapped, CallableQueueHandler)
    assert wrapped.fn is fn

    with pytest.raises(ConfigurationError):
        as_queue_handler("not a handler")


def test_task_handler_adapters():
    """Test scheduled task handler adaptation."""
    handler = MockTaskHandler()
    assert as_task_handler(handler) is handler

    async def fn(payload):
        return TaskOutcome(success=True, message="ok")

    assert isinstance(as_task_handler(fn), CallableTaskHandler)

    with pytest.raises(ConfigurationError):
        as_task_handler(42)


@pytest.mark.asyncio
async def test_callable_handlers_delegate():
    """Test that wrapped functions are awaited with their arguments."""

    async def queue_fn(payload, job):
        return {"payload": payload, "job": job}

    async def task_fn(payload):
        return TaskOutcome(success=True, message=payload["task"])

    assert await as_queue_handler(queue_fn).handle({"a": 1}, "job") == {
        "payload": {"a": 1},
        "job": "job",
    }
    outcome = await as_task_handler(task_fn).handle({"task": "syncExternalData"})
    assert outcome.message == "syncExternalData"


def test_task_outcome_to_dict():
    """Test TaskOutcome serialization."""
    outcome = TaskOutcome(success=False, message="failed", data={"paid": 0})
    assert outcome.to_dict() == {"success": False, "message": "failed", "data": {"paid": 0}}
