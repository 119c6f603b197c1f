"""State shapes and the state container capability.

The persistor never touches a state tree directly. It goes through a
``StateAccessor`` so that containers holding something other than a plain
mapping can be persisted too.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Mapping, Protocol

from pydantic import BaseModel

from statepersist.transforms import ABSENT


class StateContainer(Protocol):
    """Protocol of the application state container being persisted."""

    def get_state(self) -> Any: ...

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]: ...

    def dispatch(self, action: Any) -> Any: ...


class StateAccessor:
    """Top-level access to a plain ``key -> substate`` mapping.

    Subclass and override all four methods to support another state shape.
    """

    def initial(self) -> Any:
        """Return a fresh, empty state tree."""
        return {}

    def iterate(self, state: Any) -> Iterator[tuple[str, Any]]:
        """Yield ``(key, substate)`` pairs of the top-level entries."""
        if state is None:
            return iter(())
        return iter(list(state.items()))

    def get(self, state: Any, key: str) -> Any:
        """Return the substate for ``key`` or ``ABSENT`` if there is none."""
        if state is None:
            return ABSENT
        return state.get(key, ABSENT)

    def set(self, state: Any, key: str, value: Any) -> Any:
        """Store ``value`` under ``key`` and return the resulting state."""
        state[key] = value
        return state


class ModelStateAccessor(StateAccessor):
    """State shape for pydantic models whose fields are the top-level keys.

    Updates never mutate a model; ``set`` returns a copy built with
    ``model_copy(update=...)``. Plain mappings (such as entries read back from
    storage) are iterated as mappings.

    :param model: The model class of the state tree.
    :type model: type[BaseModel]
    """

    def __init__(self, model: type[BaseModel]):
        self.model = model

    def initial(self) -> BaseModel:
        return self.model.model_construct()

    def iterate(self, state: Any) -> Iterator[tuple[str, Any]]:
        if isinstance(state, Mapping):
            return super().iterate(state)
        if state is None:
            return iter(())
        fields = type(state).model_fields
        return iter(
            [(name, getattr(state, name)) for name in fields if hasattr(state, name)]
        )

    def get(self, state: Any, key: str) -> Any:
        if isinstance(state, Mapping):
            return super().get(state, key)
        return getattr(state, key, ABSENT)

    def set(self, state: Any, key: str, value: Any) -> BaseModel:
        return state.model_copy(update={key: value})
