"""Pluggable key/value repository contract."""

from abc import ABC, abstractmethod
from typing import Any

from ensemble_conductor.core.errors import StorageError, StorageNotFoundError
from ensemble_conductor.core.result import Err, Ok

GetResult = Ok[Any] | Err[StorageNotFoundError | StorageError]
WriteResult = Ok[None] | Err[StorageError]
DeleteResult = Ok[bool] | Err[StorageError]
ListResult = Ok[list[str]] | Err[StorageError]


class Repository(ABC):
    """Async keyed storage returning explicit results.

    Values must be JSON-serializable. ``ttl`` is in seconds; an expired key
    behaves exactly like a missing one.
    """

    name: str = "repository"

    @abstractmethod
    async def get(self, key: str) -> GetResult:
        """Return ``Ok(value)`` or ``Err(StorageNotFoundError)``."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: float | None = None) -> WriteResult:
        """Store ``value`` under ``key``, replacing any existing value."""

    @abstractmethod
    async def delete(self, key: str) -> DeleteResult:
        """Remove ``key``; ``Ok(False)`` when it did not exist."""

    @abstractmethod
    async def list(self, prefix: str = "") -> ListResult:
        """Return the sorted live keys starting with ``prefix``."""
