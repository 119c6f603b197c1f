"""Storage backends.

Every backend is an async key-value store of serialized substates. Failures
are raised from the awaited call; the persistor observes them without blocking
its drain loop.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from statepersist.errors import StorageError
from statepersist.utils import logger


class StorageBackend(Protocol):
    """Protocol defining the interface of a storage backend."""

    async def get_item(self, key: str) -> Any: ...

    async def set_item(self, key: str, value: Any) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def get_all_keys(self) -> list[str]: ...


class MemoryStorage:
    """In-process storage. Contents are lost with the process."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(initial or {})

    async def get_item(self, key: str) -> Any:
        return self.data.get(key)

    async def set_item(self, key: str, value: Any) -> None:
        self.data[key] = value

    async def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    async def get_all_keys(self) -> list[str]:
        return list(self.data.keys())


class FileStorage:
    """Directory-backed storage with one UTF-8 text file per key.

    Keys are percent-encoded into file names so any string is a valid key.
    File I/O runs in a worker thread to keep the event loop free.

    :param directory: Directory holding the entries, created on first write.
    :type directory: str | os.PathLike[str]
    """

    SUFFIX = ".entry"

    def __init__(self, directory: str | os.PathLike[str]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{self.SUFFIX}"

    async def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {path}", key=key) from e

    async def set_item(self, key: str, value: Any) -> None:
        if not isinstance(value, str):
            raise StorageError(
                f"FileStorage stores text, got {type(value)} for key '{key}'", key=key
            )
        await asyncio.to_thread(self._write, key, value)

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # write then rename so readers never see a partial entry
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}", key=key) from e

    async def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove {path}", key=key) from e

    async def get_all_keys(self) -> list[str]:
        return await asyncio.to_thread(self._list_keys)

    def _list_keys(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self.directory.iterdir()
            if p.is_file() and p.name.endswith(self.SUFFIX)
        )


class KeysAdapter:
    """Exposes ``get_all_keys`` for a backend that only provides ``keys``."""

    def __init__(self, storage: Any):
        self.storage = storage

    async def get_item(self, key: str) -> Any:
        return await self.storage.get_item(key)

    async def set_item(self, key: str, value: Any) -> None:
        await self.storage.set_item(key, value)

    async def remove_item(self, key: str) -> None:
        await self.storage.remove_item(key)

    async def get_all_keys(self) -> list[str]:
        return list(await self.storage.keys())


def adapt_storage(storage: Any) -> StorageBackend:
    """Return a backend exposing the full ``StorageBackend`` interface."""
    missing = [
        name
        for name in ("get_item", "set_item", "remove_item")
        if not callable(getattr(storage, name, None))
    ]
    if missing:
        raise TypeError(
            f"Storage backend {type(storage).__name__} is missing: {', '.join(missing)}"
        )
    if callable(getattr(storage, "get_all_keys", None)):
        return storage
    if callable(getattr(storage, "keys", None)):
        logger.debug(f"Adapting keys() of {type(storage).__name__} to get_all_keys()")
        return KeysAdapter(storage)
    raise TypeError(
        f"Storage backend {type(storage).__name__} must provide get_all_keys() or keys()"
    )


async def purge_stored_state(
    storage: Any, key_prefix: str, keys: list[str] | None = None
) -> list[str]:
    """Remove persisted entries from ``storage``.

    With ``keys`` None every storage key starting with ``key_prefix`` is
    removed, otherwise only the entries of the given top-level keys. Returns
    the storage keys that were removed.
    """
    storage = adapt_storage(storage)
    if keys is None:
        all_keys = await storage.get_all_keys()
        targets = [k for k in all_keys if k.startswith(key_prefix)]
    else:
        targets = [f"{key_prefix}{key}" for key in keys]
    await asyncio.gather(*(storage.remove_item(k) for k in targets))
    logger.debug(f"Purged {len(targets)} stored keys with prefix '{key_prefix}'")
    return targets
