"""Restoring persisted state into a container."""

from __future__ import annotations

import asyncio
from typing import Any

from statepersist.config import PersistConfig
from statepersist.persistor import Persistor, restore_state
from statepersist.serializer import get_serializers
from statepersist.state import StateContainer
from statepersist.storage import adapt_storage
from statepersist.transforms import TransformPipeline
from statepersist.utils import logger


async def read_stored_entries(config: PersistConfig) -> dict[str, Any]:
    """Read the raw stored entries for ``config``, keyed by top-level key.

    Only storage keys carrying the configured prefix and top-level keys
    allowed by the whitelist and blacklist are read. Missing entries are
    skipped.
    """
    storage = adapt_storage(config.storage)
    prefix = config.key_prefix
    keys = [
        storage_key[len(prefix):]
        for storage_key in await storage.get_all_keys()
        if storage_key.startswith(prefix)
    ]
    keys = [key for key in keys if config.allows(key)]
    values = await asyncio.gather(
        *(storage.get_item(config.storage_key(key)) for key in keys)
    )
    return {key: value for key, value in zip(keys, values) if value is not None}


async def get_stored_state(config: PersistConfig | None = None) -> Any:
    """Read, deserialize and transform back the state stored for ``config``.

    Entries that fail to restore are reported and left out of the result.
    """
    config = config or PersistConfig()
    _, deserializer = get_serializers(config.serialize, production=config.production)

    def on_error(key: str, serial: Any, err: Exception) -> None:
        if not config.production:
            logger.warning(f"Error restoring data for key '{key}': {serial!r} {err!r}")
        if config.on_rehydrate_error is not None:
            config.on_rehydrate_error(key, err)

    entries = await read_stored_entries(config)
    return restore_state(
        entries,
        config.state_accessor,
        deserializer,
        TransformPipeline(config.transforms),
        on_error,
    )


async def persist_store(
    store: StateContainer,
    config: PersistConfig | None = None,
    *,
    skip_restore: bool = False,
) -> Persistor:
    """Create a persistor for ``store`` and rehydrate it from storage.

    The persistor is paused while stored state is read back and dispatched,
    so no write can race the restore, and resumed afterwards.

    :param store: The state container to persist.
    :type store: StateContainer
    :param config: Persistence options, defaults if None.
    :type config: PersistConfig | None
    :param skip_restore: Rehydrate with an empty payload instead of reading storage.
    :type skip_restore: bool
    :return: The running persistor.
    :rtype: Persistor
    """
    persistor = Persistor(store, config)
    persistor.pause()
    try:
        if skip_restore:
            persistor.rehydrate(None)
        else:
            entries = await read_stored_entries(persistor.config)
            logger.debug(f"Restoring {len(entries)} stored keys")
            persistor.rehydrate(entries, serial=True)
    finally:
        persistor.resume()
    return persistor
