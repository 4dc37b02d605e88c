"""
Stored-object collaborator behind file records.
"""

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

from hubjobs.config.logging import get_logger
from hubjobs.v1.core.exceptions import NotFoundError, ValidationError

logger = get_logger(__name__)


@runtime_checkable
class FileStorage(Protocol):
    """Protocol for the object store behind file records."""

    async def read(self, key: str) -> bytes:
        """Contents of one stored object; NotFoundError if it does not exist."""
        ...

    async def write(self, key: str, data: bytes) -> None:
        """Store an object under ``key``, replacing any previous one."""
        ...

    async def delete(self, key: str) -> bool:
        """
        Remove one stored object.

        Returns:
            True if an object was removed, False if it did not exist
        """
        ...


class LocalFileStorage:
    """Objects stored as plain files below a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValidationError(f"Storage key escapes the storage root: {key}", {"key": key})
        return path

    async def read(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"Stored file {key} does not exist", {"key": key}) from None

    async def write(self, key: str, data: bytes) -> None:
        path = self._resolve(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored file", path=str(path), size=len(data))

    async def delete(self, key: str) -> bool:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.debug("Removed stored file", path=str(path))
        return True


async def remove_stored_objects(storage: FileStorage, keys: list[str]) -> list[str]:
    """
    Delete several stored objects, continuing past individual failures.

    Returns:
        Error strings of the objects that could not be removed
    """
    errors = []
    for key in keys:
        try:
            await storage.delete(key)
        except Exception as e:
            logger.warning("Could not remove stored file", key=key, error=str(e))
            errors.append(f"{key}: {e}")
    return errors
