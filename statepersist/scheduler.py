"""Debounced drain loop for pending top-level keys.

The scheduler owns the queue of keys waiting to be persisted and a single
event loop handle for the next tick. Each tick hands one key to the drain
callback, so writes are issued one at a time however fast keys are queued.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

from statepersist.utils import logger


class DrainScheduler:
    """Drain pending keys one per tick on the asyncio event loop.

    :param drain: Called with the key at the head of the queue on each tick.
    :type drain: Callable[[str], Any]
    :param interval: Seconds between ticks. ``0`` schedules the next tick with
        ``loop.call_soon``.
    :type interval: float
    :param is_paused: Returns whether the owning persistor is paused.
    :type is_paused: Callable[[], bool]
    :param loop: Event loop to schedule ticks on, the running loop if None.
    :type loop: asyncio.AbstractEventLoop | None
    """

    def __init__(
        self,
        drain: Callable[[str], Any],
        interval: float = 0,
        is_paused: Callable[[], bool] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._drain = drain
        self.interval = interval
        self._is_paused = is_paused or (lambda: False)
        self._loop = loop
        self._queue: dict[str, None] = {}
        self._handle: asyncio.Handle | None = None
        self._size_at_start = 0

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._queue)

    @property
    def active(self) -> bool:
        return self._handle is not None

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, keys: Iterable[str]) -> None:
        for key in keys:
            # dict keeps insertion order and ignores keys already queued
            self._queue.setdefault(key, None)

    def start(self) -> bool:
        """Start ticking unless already ticking or there is nothing to drain.

        Returns whether a new timer was started.
        """
        if self._handle is not None or not self._queue:
            return False
        self._size_at_start = len(self._queue)
        self._handle = self._schedule()
        logger.debug(f"Drain timer started with {self._size_at_start} pending keys")
        return True

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("Drain timer cancelled")

    def discard(self, key: str) -> None:
        self._queue.pop(key, None)

    def _schedule(self) -> asyncio.Handle:
        loop = self._loop or asyncio.get_running_loop()
        if self.interval:
            return loop.call_later(self.interval, self._tick)
        return loop.call_soon(self._tick)

    def _tick(self) -> None:
        # while paused, stop only once a tick made no progress since the timer
        # started; a queue that shrank keeps draining until it is empty
        paused_idle = self._is_paused() and len(self._queue) == self._size_at_start
        if paused_idle or not self._queue:
            self._handle = None
            logger.debug("Drain timer stopped")
            return
        key = next(iter(self._queue))
        try:
            self._drain(key)
        finally:
            # a key whose drain raised is dropped too, otherwise every later
            # tick would retry it and the keys behind it would never drain
            self._queue.pop(key, None)
            self._handle = self._schedule()
