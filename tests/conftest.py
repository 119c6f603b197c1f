import asyncio

import pytest

from statepersist.storage import MemoryStorage


class RecordingStorage(MemoryStorage):
    """Memory storage that records writes and can be told to fail keys."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.calls: list[tuple[str, object]] = []
        self.fail_keys: set[str] = set()

    async def set_item(self, key, value):
        self.calls.append((key, value))
        if key in self.fail_keys:
            raise OSError(f"disk full while writing {key}")
        await super().set_item(key, value)


async def _wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0)


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def settle():
    """Wait for a persistor's drain timer to stop and its writes to finish."""

    async def _settle(persistor, timeout: float = 2.0):
        await _wait_until(lambda: not persistor.scheduler.active, timeout=timeout)
        await persistor.wait_for_writes()

    return _settle


@pytest.fixture
def storage_factory():
    return RecordingStorage
