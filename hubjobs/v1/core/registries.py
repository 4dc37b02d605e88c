from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar, runtime_checkable

from hubjobs.v1.core.exceptions import ConfigurationError, NotFoundError

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T, replace: bool = False) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        if name in self._implementations and not replace:
            raise ConfigurationError(
                f"{self.name} '{name}' is already registered", {"name": name}
            )
        self._implementations[name] = implementation

    def unregister(self, name: str) -> None:
        """Remove an implementation; unknown names are ignored."""
        self._implementations.pop(name, None)

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise NotFoundError(
                f"No {self.name.lower()} implementation registered with name: {name}",
                {"name": name},
            )
        return self._implementations[name]

    def __contains__(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Queue handlers - perform the work of a single queued job
@runtime_checkable
class QueueHandler(Protocol):
    """Protocol for queue job handlers."""

    async def handle(self, payload: Any, job: Any) -> Any:
        """
        Process one job.

        Args:
            payload: Opaque, handler-defined job payload
            job: The QueueJob record being processed (status ``processing``)

        Returns:
            JSON-serializable result stored on the completed job. Raising marks
            the attempt as failed.
        """
        ...


class CallableQueueHandler:
    """Adapts a bare ``async def fn(payload, job)`` to the QueueHandler protocol."""

    def __init__(self, fn: Callable[[Any, Any], Awaitable[Any]]):
        self.fn = fn

    async def handle(self, payload: Any, job: Any) -> Any:
        return await self.fn(payload, job)


def as_queue_handler(handler: QueueHandler | Callable[[Any, Any], Awaitable[Any]]) -> QueueHandler:
    """Accept either a handler object or a coroutine function."""
    if isinstance(handler, QueueHandler):
        return handler
    if callable(handler):
        return CallableQueueHandler(handler)
    raise ConfigurationError(f"Invalid queue handler: {handler!r}")


# Scheduled task handlers - recurring work fired by the scheduler
@dataclass
class TaskOutcome:
    """Structured result of a scheduled task run."""

    success: bool
    message: str
    data: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "data": self.data}


@runtime_checkable
class ScheduledTaskHandler(Protocol):
    """Protocol for scheduled task handlers."""

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        """
        Run one tick of a recurring task.

        Args:
            payload: Run context (task name, trigger kind, scheduled time)

        Returns:
            TaskOutcome describing what the run did. Handlers are idempotent.
        """
        ...


class CallableTaskHandler:
    """Adapts a bare ``async def fn(payload)`` to the ScheduledTaskHandler protocol."""

    def __init__(self, fn: Callable[[dict[str, Any]], Awaitable[TaskOutcome]]):
        self.fn = fn

    async def handle(self, payload: dict[str, Any]) -> TaskOutcome:
        return await self.fn(payload)


def as_task_handler(
    handler: ScheduledTaskHandler | Callable[[dict[str, Any]], Awaitable[TaskOutcome]],
) -> ScheduledTaskHandler:
    """Accept either a handler object or a coroutine function."""
    if isinstance(handler, ScheduledTaskHandler):
        return handler
    if callable(handler):
        return CallableTaskHandler(handler)
    raise ConfigurationError(f"Invalid scheduled task handler: {handler!r}")


class ScheduledTaskRegistry(Registry[ScheduledTaskHandler]):
    """Registry for scheduled task handlers (session cleanup, reminders, payouts, ...)."""

    def __init__(self):
        super().__init__("ScheduledTask")
