import asyncio

import pytest

from statepersist import (
    ABSENT,
    PersistConfig,
    Persistor,
    SerializationError,
    Store,
    create_transform,
)


def make_persistor(storage, initial=None, **options):
    store = Store(initial_state=initial or {})
    persistor = Persistor(store, PersistConfig(storage=storage, **options))
    return store, persistor


class TestDirtyTracking:
    @pytest.mark.asyncio
    async def test_only_changed_key_is_written(self, storage, settle):
        store, persistor = make_persistor(storage)
        store.set_state({"a": 1, "b": 2})
        await settle(persistor)
        storage.calls.clear()

        store.set_state({"a": 1, "b": 3})
        assert persistor.pending_keys == ("b",)

        await settle(persistor)
        assert persistor.pending_keys == ()
        assert storage.calls == [("statepersist:b", "3")]

    @pytest.mark.asyncio
    async def test_whitelist_limits_persisted_keys(self, storage, settle):
        store, persistor = make_persistor(storage, whitelist=["a"])
        store.set_state({"a": 1, "b": 2})
        assert persistor.pending_keys == ("a",)

        await settle(persistor)
        assert list(storage.data) == ["statepersist:a"]

    @pytest.mark.asyncio
    async def test_blacklist_wins_over_whitelist(self, storage, settle):
        store, persistor = make_persistor(
            storage, whitelist=["a", "b"], blacklist=["b"]
        )
        store.set_state({"a": 1, "b": 2, "c": 3})
        assert persistor.pending_keys == ("a",)
        await settle(persistor)
        assert list(storage.data) == ["statepersist:a"]

    @pytest.mark.asyncio
    async def test_key_queued_once_before_drain(self, storage):
        store, persistor = make_persistor(storage, debounce=10)
        store.update_state({"a": [1]})
        store.update_state({"a": [2]})
        assert persistor.pending_keys == ("a",)
        persistor.close()

    @pytest.mark.asyncio
    async def test_drain_writes_last_scanned_state(self, storage, settle):
        store, persistor = make_persistor(storage)
        store.update_state({"a": 1})
        store.update_state({"a": 2})
        await settle(persistor)
        assert storage.calls == [("statepersist:a", "2")]


class TestWritePath:
    @pytest.mark.asyncio
    async def test_custom_prefix_is_concatenated(self, storage, settle):
        store, persistor = make_persistor(storage, key_prefix="app/")
        store.update_state({"todos": ["x"]})
        await settle(persistor)
        assert storage.data == {"app/todos": '["x"]'}

    @pytest.mark.asyncio
    async def test_transforms_run_before_serialization(self, storage, settle):
        double = create_transform(lambda s, k: s * 2, lambda s, k: s // 2)
        store, persistor = make_persistor(storage, transforms=[double])
        store.update_state({"n": 21})
        await settle(persistor)
        assert storage.data == {"statepersist:n": "42"}

    @pytest.mark.asyncio
    async def test_absent_from_transform_skips_write(self, storage, settle):
        hide = create_transform(lambda s, k: ABSENT if k == "secret" else s)
        store, persistor = make_persistor(storage, transforms=[hide])
        store.update_state({"secret": "hunter2", "public": "hello"})
        await settle(persistor)
        assert storage.data == {"statepersist:public": '"hello"'}
        assert persistor.persist_key(store.get_state(), "secret") is None

    @pytest.mark.asyncio
    async def test_serialize_disabled_stores_objects(self, storage, settle):
        store, persistor = make_persistor(storage, serialize=False)
        todos = {"items": [1, 2]}
        store.update_state({"todos": todos})
        await settle(persistor)
        assert storage.data["statepersist:todos"] is todos

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_and_draining_continues(
        self, storage, settle
    ):
        failures = []
        storage.fail_keys.add("statepersist:b")
        store, persistor = make_persistor(
            storage, on_write_error=lambda key, err: failures.append((key, err))
        )
        store.set_state({"a": 1, "b": 2, "c": 3})
        await settle(persistor)

        assert [key for key, _ in failures] == ["b"]
        assert isinstance(failures[0][1], OSError)
        assert set(storage.data) == {"statepersist:a", "statepersist:c"}

    @pytest.mark.asyncio
    async def test_cyclical_state_raises_outside_production(self, storage):
        cyclic: dict = {}
        cyclic["self"] = cyclic
        store, persistor = make_persistor(storage, debounce=10, production=False)
        store.update_state({"graph": cyclic})
        with pytest.raises(SerializationError):
            persistor.flush()
        persistor.close()

    @pytest.mark.asyncio
    async def test_cyclical_state_is_nulled_in_production(self, storage):
        cyclic: dict = {"name": "loop"}
        cyclic["self"] = cyclic
        store, persistor = make_persistor(storage, debounce=10, production=True)
        store.update_state({"graph": cyclic})
        await asyncio.gather(*persistor.flush())
        assert storage.data == {"statepersist:graph": '{"name": "loop", "self": null}'}
        persistor.close()


class TestFlush:
    @pytest.mark.asyncio
    async def test_flush_writes_whole_queue_at_once(self, storage):
        store, persistor = make_persistor(storage, debounce=10)
        store.set_state({"a": 1, "b": 2, "c": 3})
        assert persistor.pending_keys == ("a", "b", "c")

        tasks = persistor.flush()
        assert len(tasks) == 3
        assert persistor.pending_keys == ()

        await asyncio.gather(*tasks)
        assert set(storage.data) == {
            "statepersist:a",
            "statepersist:b",
            "statepersist:c",
        }
        persistor.close()

    @pytest.mark.asyncio
    async def test_flush_uses_current_store_state(self, storage):
        store, persistor = make_persistor(storage, debounce=10)
        store.update_state({"a": 1})
        persistor.pause()
        store.update_state({"a": 5})
        await asyncio.gather(*persistor.flush())
        assert storage.data == {"statepersist:a": "5"}
        persistor.close()

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_unwritten_keys_queued(self, storage):
        cyclic: dict = {}
        cyclic["self"] = cyclic
        store, persistor = make_persistor(storage, debounce=10, production=False)
        store.set_state({"a": 1, "bad": cyclic, "c": 3})
        assert persistor.pending_keys == ("a", "bad", "c")

        with pytest.raises(SerializationError):
            persistor.flush()
        await persistor.wait_for_writes()
        assert storage.data == {"statepersist:a": "1"}
        assert persistor.pending_keys == ("bad", "c")

        store.update_state({"bad": ["fixed"]})
        await asyncio.gather(*persistor.flush())
        assert storage.data == {
            "statepersist:a": "1",
            "statepersist:bad": '["fixed"]',
            "statepersist:c": "3",
        }
        assert persistor.pending_keys == ()
        persistor.close()


class TestControl:
    @pytest.mark.asyncio
    async def test_pause_ignores_changes_and_resume_waits_for_next(
        self, storage, settle
    ):
        store, persistor = make_persistor(storage)
        persistor.pause()
        persistor.pause()
        assert persistor.paused
        store.update_state({"a": 1})
        assert persistor.pending_keys == ()
        assert not persistor.scheduler.active

        persistor.resume()
        persistor.resume()
        assert not persistor.paused
        assert not persistor.scheduler.active

        store.update_state({"b": 2})
        # "a" was never scanned, so it is dirty too
        assert persistor.pending_keys == ("a", "b")
        await settle(persistor)
        assert set(storage.data) == {"statepersist:a", "statepersist:b"}

    @pytest.mark.asyncio
    async def test_pause_before_first_tick_halts_drain(self, storage, wait_until):
        store, persistor = make_persistor(storage)
        store.set_state({"a": 1, "b": 2})
        persistor.pause()

        await wait_until(lambda: not persistor.scheduler.active)
        assert persistor.pending_keys == ("a", "b")
        assert storage.calls == []

    @pytest.mark.asyncio
    async def test_close_stops_persisting(self, storage):
        store, persistor = make_persistor(storage, debounce=10)
        store.update_state({"a": 1})
        persistor.close()
        assert not persistor.scheduler.active

        store.update_state({"b": 2})
        assert persistor.pending_keys == ("a",)

    @pytest.mark.asyncio
    async def test_purge_removes_prefixed_entries(self, storage, settle):
        storage.data["other:a"] = "1"
        store, persistor = make_persistor(storage)
        store.set_state({"a": 1, "b": 2})
        await settle(persistor)

        removed = await persistor.purge(["a"])
        assert removed == ["statepersist:a"]
        assert set(storage.data) == {"statepersist:b", "other:a"}

        await persistor.purge()
        assert set(storage.data) == {"other:a"}

    @pytest.mark.asyncio
    async def test_independent_persistors(self, settle, storage_factory):
        first_storage, second_storage = storage_factory(), storage_factory()
        first_store, first = make_persistor(first_storage)
        second_store, second = make_persistor(second_storage, key_prefix="two:")

        first_store.update_state({"a": 1})
        second_store.update_state({"b": 2})
        await settle(first)
        await settle(second)

        assert first_storage.data == {"statepersist:a": "1"}
        assert second_storage.data == {"two:b": "2"}
