from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from statepersist.constants import REHYDRATE
from statepersist.utils import StrEnum, logger


class ActionType(StrEnum):
    REHYDRATE = REHYDRATE


@dataclass
class Action:
    """An action dispatched to a state container.

    :param type: The type of action. Persistence emits ``ActionType.REHYDRATE``.
    :type type: ActionType | str
    :param payload: The data carried by the action, for a rehydrate this is the
        reconstructed (possibly partial) state tree.
    :type payload: Any
    """
    type: ActionType | str
    payload: Any = None


def rehydrate_action(payload: Any) -> Action:
    return Action(type=ActionType.REHYDRATE, payload=payload)


def merge_rehydrated(state: dict[str, Any], payload: Any) -> dict[str, Any]:
    """Shallow-merge a rehydrated payload into the live state.

    Keys of the payload replace the matching top-level substates; keys that
    are missing from the payload keep their live value.
    """
    if not payload:
        return state
    if not isinstance(payload, dict):
        raise TypeError(
            f"Expected dictionary payload for {ActionType.REHYDRATE}, "
            f"got {type(payload)}."
        )
    logger.debug(f"Merging rehydrated keys: {sorted(payload)}")
    return {**state, **payload}


Reducer = Callable[[dict[str, Any], Action], dict[str, Any]]


class Store:
    """A minimal state container with a reducer and change listeners.

    Every dispatch runs the reducer, replaces the state with its result and
    notifies each subscribed listener synchronously. Rehydrate actions are
    merged with ``merge_rehydrated`` before the reducer sees them.
    """

    def __init__(
        self,
        reducer: Reducer | None = None,
        initial_state: dict[str, Any] | None = None,
    ):
        self.reducer = reducer
        self.state: dict[str, Any] = initial_state or {}
        self._listeners: list[Callable[[], None]] = []

    def get_state(self) -> dict[str, Any]:
        """Get the current state."""
        return self.state

    def set_state(self, state: dict[str, Any]) -> Store:
        """Replace the state and notify listeners."""
        self.state = state
        self._notify()
        return self

    def update_state(self, values: dict[str, Any]) -> Store:
        """Replace the given top-level keys and notify listeners.

        A new top-level mapping is built, so untouched substates keep their
        identity.
        """
        return self.set_state({**self.state, **values})

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> Action:
        state = self.state
        if action.type == ActionType.REHYDRATE:
            state = merge_rehydrated(state, action.payload)
        if self.reducer is not None:
            state = self.reducer(state, action)
        self.state = state
        self._notify()
        return action

    def _notify(self) -> None:
        # listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            listener()
