import pytest

from statepersist.store import Action, ActionType, Store, merge_rehydrated


class TestStore:
    def test_get_set_and_update_state(self):
        todos = ["a"]
        store = Store(initial_state={"todos": todos, "count": 0})
        store.update_state({"count": 1})
        assert store.get_state() == {"todos": ["a"], "count": 1}
        # untouched substates keep their identity
        assert store.get_state()["todos"] is todos

        store.set_state({"count": 2})
        assert store.get_state() == {"count": 2}

    def test_listeners_are_notified_until_unsubscribed(self):
        calls = []
        store = Store()
        unsubscribe = store.subscribe(lambda: calls.append(store.get_state()))
        store.update_state({"a": 1})
        unsubscribe()
        unsubscribe()
        store.update_state({"a": 2})
        assert calls == [{"a": 1}]

    def test_listener_can_unsubscribe_while_notified(self):
        calls = []
        store = Store()

        def once():
            calls.append("once")
            unsubscribe()

        unsubscribe = store.subscribe(once)
        store.subscribe(lambda: calls.append("always"))
        store.update_state({"a": 1})
        store.update_state({"a": 2})
        assert calls == ["once", "always", "always"]

    def test_dispatch_runs_reducer(self):
        def counter(state, action):
            if action.type == "increment":
                return {**state, "count": state.get("count", 0) + action.payload}
            return state

        store = Store(counter)
        returned = store.dispatch(Action(type="increment", payload=2))
        assert returned.payload == 2
        assert store.get_state() == {"count": 2}

    def test_rehydrate_is_merged_before_reducer(self):
        seen = []

        def reducer(state, action):
            seen.append(dict(state))
            return state

        store = Store(reducer, initial_state={"a": 0, "b": 0})
        store.dispatch(Action(type=ActionType.REHYDRATE, payload={"a": 1}))
        assert seen == [{"a": 1, "b": 0}]
        assert str(ActionType.REHYDRATE) == "persist/REHYDRATE"


class TestMergeRehydrated:
    def test_empty_payload_keeps_state(self):
        state = {"a": 1}
        assert merge_rehydrated(state, None) is state
        assert merge_rehydrated(state, {}) is state

    def test_payload_replaces_top_level_keys(self):
        assert merge_rehydrated({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_non_mapping_payload_is_rejected(self):
        with pytest.raises(TypeError):
            merge_rehydrated({}, ["not", "a", "dict"])
