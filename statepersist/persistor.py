from __future__ import annotations

import asyncio
from typing import Any, Callable

from statepersist.config import PersistConfig
from statepersist.serializer import get_serializers
from statepersist.state import StateAccessor, StateContainer
from statepersist.storage import adapt_storage, purge_stored_state
from statepersist.store import rehydrate_action
from statepersist.tracker import find_dirty_keys
from statepersist.scheduler import DrainScheduler
from statepersist.transforms import ABSENT, TransformPipeline
from statepersist.utils import logger


def restore_state(
    incoming: Any,
    accessor: StateAccessor,
    deserializer: Callable[[Any], Any],
    pipeline: TransformPipeline,
    on_error: Callable[[str, Any, Exception], None],
) -> Any:
    """Build a state tree from serialized top-level entries.

    Each entry is deserialized and passed backward through the pipeline. An
    entry that fails is reported through ``on_error`` and left out.
    """
    state = accessor.initial()
    for key, serial in accessor.iterate(incoming):
        try:
            data = deserializer(serial)
            value = pipeline.backward(data, key)
            state = accessor.set(state, key, value)
        except Exception as e:
            on_error(key, serial, e)
    return state


class Persistor:
    """Persists the top-level substates of a state container as they change.

    The persistor subscribes to ``store`` on construction. Each notification
    scans for top-level keys whose substate changed, queues them, and starts
    the drain timer when it is idle. Every tick writes one queued key.

    :param store: The state container to persist.
    :type store: StateContainer
    :param config: Persistence options, defaults if None.
    :type config: PersistConfig | None
    :param loop: Event loop for timers and writes, the running loop if None.
    :type loop: asyncio.AbstractEventLoop | None
    """

    def __init__(
        self,
        store: StateContainer,
        config: PersistConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.store = store
        self.config = config or PersistConfig()
        self.storage = adapt_storage(self.config.storage)
        self.pipeline = TransformPipeline(self.config.transforms)
        self.accessor = self.config.state_accessor
        self._serializer, self._deserializer = get_serializers(
            self.config.serialize, production=self.config.production
        )
        self._loop = loop
        self._paused = False
        self._last_state = self.accessor.initial()
        self._in_flight: set[asyncio.Task] = set()
        self.scheduler = DrainScheduler(
            drain=self._drain_key,
            interval=self.config.debounce,
            is_paused=lambda: self._paused,
            loop=loop,
        )
        self._unsubscribe: Callable[[], None] | None = store.subscribe(
            self._on_state_change
        )

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def pending_keys(self) -> tuple[str, ...]:
        return self.scheduler.pending

    @property
    def in_flight(self) -> set[asyncio.Task]:
        return set(self._in_flight)

    def _on_state_change(self) -> None:
        if self._paused:
            return
        state = self.store.get_state()
        dirty = find_dirty_keys(
            self._last_state, state, self.accessor, self.config.allows
        )
        self.scheduler.enqueue(dirty)
        self._last_state = state
        if dirty:
            logger.debug(f"Dirty keys: {dirty}")
        self.scheduler.start()

    def _drain_key(self, key: str) -> None:
        self.persist_key(self._last_state, key)

    def persist_key(self, state: Any, key: str) -> asyncio.Task | None:
        """Issue the storage write for one top-level key of ``state``.

        Returns the write task, or None when the pipeline produced ``ABSENT``
        and nothing was written.
        """
        substate = self.accessor.get(state, key)
        end_state = self.pipeline.forward(substate, key)
        if end_state is ABSENT:
            return None
        serial = self._serializer(end_state)
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(
            self.storage.set_item(self.config.storage_key(key), serial)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._write_done(key))
        return task

    def _write_done(self, key: str) -> Callable[[asyncio.Task], None]:
        def done(task: asyncio.Task) -> None:
            self._in_flight.discard(task)
            if task.cancelled():
                return
            err = task.exception()
            if err is None:
                return
            if not self.config.production:
                logger.warning(f"Error storing data for key '{key}': {err!r}")
            if self.config.on_write_error is not None:
                self.config.on_write_error(key, err)

        return done

    def flush(self) -> list[asyncio.Task]:
        """Write every pending key now, using the store's current state.

        Returns the issued write tasks. A key leaves the queue once its write
        was issued, so if one key fails to serialize the exception propagates
        and it stays queued together with every key after it.
        """
        state = self.store.get_state()
        tasks = []
        for key in self.scheduler.pending:
            task = self.persist_key(state, key)
            self.scheduler.discard(key)
            if task is not None:
                tasks.append(task)
        return tasks

    def rehydrate(self, incoming: Any = None, *, serial: bool = False) -> Any:
        """Dispatch a rehydrate action carrying ``incoming`` to the store.

        :param incoming: The state to rehydrate, or with ``serial=True`` a
            mapping of top-level keys to their serialized form.
        :type incoming: Any
        :param serial: Whether the entries of ``incoming`` still need to be
            deserialized and transformed back.
        :type serial: bool
        :return: The state that was dispatched.
        """
        if serial:
            state = restore_state(
                incoming,
                self.accessor,
                self._deserializer,
                self.pipeline,
                self._rehydrate_failed,
            )
        else:
            state = incoming
        self.store.dispatch(rehydrate_action(state))
        return state

    def _rehydrate_failed(self, key: str, serial: Any, err: Exception) -> None:
        if not self.config.production:
            logger.warning(f"Error rehydrating data for key '{key}': {serial!r} {err!r}")
        if self.config.on_rehydrate_error is not None:
            self.config.on_rehydrate_error(key, err)

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    async def purge(self, keys: list[str] | None = None) -> list[str]:
        """Remove persisted entries, all of them when ``keys`` is None."""
        return await purge_stored_state(self.storage, self.config.key_prefix, keys)

    async def wait_for_writes(self) -> None:
        """Wait until every issued write has finished, successful or not."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def close(self) -> None:
        """Stop observing the store and cancel the drain timer.

        Queued keys are left in place; call ``flush()`` first to write them.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.scheduler.stop()
