"""In-process repository, used by default and in tests."""

import copy
import time
from collections.abc import Callable
from typing import Any

from ensemble_conductor.core.errors import StorageNotFoundError
from ensemble_conductor.core.result import Err, Ok
from ensemble_conductor.storage.repository import (
    DeleteResult,
    GetResult,
    ListResult,
    Repository,
    WriteResult,
)


class MemoryRepository(Repository):
    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock

    def _expired(self, key: str) -> bool:
        _, expires_at = self._data[key]
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return True
        return False

    async def get(self, key: str) -> GetResult:
        if key not in self._data or self._expired(key):
            return Err(StorageNotFoundError(key, self.name))
        return Ok(copy.deepcopy(self._data[key][0]))

    async def put(self, key: str, value: Any, ttl: float | None = None) -> WriteResult:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (copy.deepcopy(value), expires_at)
        return Ok(None)

    async def delete(self, key: str) -> DeleteResult:
        if key not in self._data or self._expired(key):
            return Ok(False)
        del self._data[key]
        return Ok(True)

    async def list(self, prefix: str = "") -> ListResult:
        keys = [k for k in list(self._data) if k.startswith(prefix)]
        return Ok(sorted(k for k in keys if not self._expired(k)))
