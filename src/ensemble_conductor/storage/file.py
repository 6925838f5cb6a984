"""Repository storing one JSON file per key."""

import asyncio
import json
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import quote, unquote

from ensemble_conductor.core.errors import StorageError, StorageNotFoundError
from ensemble_conductor.core.result import Err, Ok
from ensemble_conductor.storage.repository import (
    DeleteResult,
    GetResult,
    ListResult,
    Repository,
    WriteResult,
)

_SUFFIX = ".json"

_T = TypeVar("_T")


class FileRepository(Repository):
    """Durable repository under a directory.

    Each key is stored as ``<quoted key>.json`` holding the value and its
    expiry. Writes go to a temporary file that is renamed into place, so a
    reader never sees a partial record. File I/O runs in the default executor
    so the event loop is never blocked.
    """

    name = "file"

    def __init__(self, directory: str | Path, clock: Callable[[], float] = time.time):
        self.directory = Path(directory)
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{_SUFFIX}"

    def _read(self, path: Path) -> dict[str, Any] | None:
        """Return the record at ``path``, or None if missing or expired."""
        try:
            with path.open("r", encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None

        expires_at = record.get("expires_at")
        if expires_at is not None and self._clock() >= expires_at:
            path.unlink(missing_ok=True)
            return None
        return record

    async def _in_thread(self, func: Callable[..., _T], *args: Any) -> _T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _get_sync(self, key: str) -> GetResult:
        try:
            record = self._read(self._path(key))
        except (OSError, json.JSONDecodeError) as e:
            return Err(StorageError(f"Failed to read '{key}': {e}"))
        if record is None:
            return Err(StorageNotFoundError(key, self.name))
        return Ok(record["value"])

    def _put_sync(self, key: str, value: Any, ttl: float | None) -> WriteResult:
        record = {
            "key": key,
            "value": value,
            "expires_at": self._clock() + ttl if ttl is not None else None,
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f, indent=2)
                os.replace(tmp_name, self._path(key))
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            return Err(StorageError(f"Failed to write '{key}': {e}"))
        return Ok(None)

    def _delete_sync(self, key: str) -> DeleteResult:
        path = self._path(key)
        try:
            if self._read(path) is None:
                return Ok(False)
            path.unlink()
        except FileNotFoundError:
            return Ok(False)
        except (OSError, json.JSONDecodeError) as e:
            return Err(StorageError(f"Failed to delete '{key}': {e}"))
        return Ok(True)

    def _list_sync(self, prefix: str) -> ListResult:
        if not self.directory.exists():
            return Ok([])
        keys = []
        try:
            for path in self.directory.glob(f"*{_SUFFIX}"):
                key = unquote(path.name[: -len(_SUFFIX)])
                if key.startswith(prefix) and self._read(path) is not None:
                    keys.append(key)
        except (OSError, json.JSONDecodeError) as e:
            return Err(StorageError(f"Failed to list keys: {e}"))
        return Ok(sorted(keys))

    async def get(self, key: str) -> GetResult:
        return await self._in_thread(self._get_sync, key)

    async def put(self, key: str, value: Any, ttl: float | None = None) -> WriteResult:
        return await self._in_thread(self._put_sync, key, value, ttl)

    async def delete(self, key: str) -> DeleteResult:
        return await self._in_thread(self._delete_sync, key)

    async def list(self, prefix: str = "") -> ListResult:
        return await self._in_thread(self._list_sync, prefix)
