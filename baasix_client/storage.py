"""Key-value storage adapters used to persist credentials."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable
from pathlib import Path
from typing import Protocol, runtime_checkable

_LOGGER = logging.getLogger(__name__)


@runtime_checkable
class StorageAdapter(Protocol):
    """Opaque string storage.

    Methods may be plain or ``async``; callers await whatever comes back.
    """

    def get(self, key: str) -> Awaitable[str | None] | str | None: ...

    def set(self, key: str, value: str) -> Awaitable[None] | None: ...

    def remove(self, key: str) -> Awaitable[None] | None: ...


class MemoryStorage:
    """In-process storage. Contents are lost when the process exits."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str) -> None:
        self._store[key] = value

    async def remove(self, key: str) -> None:
        self._store.pop(key, None)

    async def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[str]:
        return list(self._store)

    def __len__(self) -> int:
        return len(self._store)


class JsonFileStorage:
    """Storage persisted as a single JSON object on disk.

    Keys are namespaced with ``prefix`` so several clients can share a file.
    Writes go to a temporary sibling file which then replaces the target.
    File access runs in a worker thread; a lock serializes read-modify-write
    cycles within one instance.
    """

    def __init__(self, path: Path | str, *, prefix: str = "baasix_") -> None:
        self._path = Path(path)
        self._prefix = prefix
        self._lock = asyncio.Lock()

    def _key(self, key: str) -> str:
        if key.startswith(self._prefix):
            return key
        return f"{self._prefix}{key}"

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            _LOGGER.warning("Ignoring unreadable storage file %s: %s", self._path, err)
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning("Ignoring malformed storage file %s", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _dump(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f".{self._path.name}.tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self._path)

    def _set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def _remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)

    def _clear(self) -> None:
        data = {k: v for k, v in self._load().items() if not k.startswith(self._prefix)}
        self._dump(data)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
        return data.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._set, self._key(key), value)

    async def remove(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._remove, self._key(key))

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._clear)
