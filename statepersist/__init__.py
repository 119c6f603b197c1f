"""Incremental persistence of application state trees.

A ``Persistor`` watches a state container, writes only the top-level
substates that changed through an ordered pipeline of reversible transforms
into an async key-value storage backend, and rehydrates a container from what
was stored.
"""

from statepersist.config import PersistConfig
from statepersist.constants import KEY_PREFIX, REHYDRATE
from statepersist.errors import PersistError, SerializationError, StorageError
from statepersist.persistor import Persistor
from statepersist.restore import get_stored_state, persist_store
from statepersist.scheduler import DrainScheduler
from statepersist.state import ModelStateAccessor, StateAccessor, StateContainer
from statepersist.storage import (
    FileStorage,
    MemoryStorage,
    StorageBackend,
    adapt_storage,
    purge_stored_state,
)
from statepersist.store import Action, ActionType, Store
from statepersist.tracker import find_dirty_keys
from statepersist.transforms import (
    ABSENT,
    CompressTransform,
    EncryptTransform,
    Transform,
    TransformPipeline,
    create_transform,
)

__all__ = [
    "ABSENT",
    "Action",
    "ActionType",
    "CompressTransform",
    "DrainScheduler",
    "EncryptTransform",
    "FileStorage",
    "KEY_PREFIX",
    "MemoryStorage",
    "ModelStateAccessor",
    "PersistConfig",
    "PersistError",
    "Persistor",
    "REHYDRATE",
    "SerializationError",
    "StateAccessor",
    "StateContainer",
    "StorageBackend",
    "StorageError",
    "Store",
    "Transform",
    "TransformPipeline",
    "adapt_storage",
    "create_transform",
    "find_dirty_keys",
    "get_stored_state",
    "persist_store",
    "purge_stored_state",
]
