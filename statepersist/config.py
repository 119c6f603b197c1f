from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from statepersist.constants import KEY_PREFIX
from statepersist.state import StateAccessor
from statepersist.storage import MemoryStorage
from statepersist.utils import is_production


class PersistConfig(BaseModel):
    """Configuration of a persistor.

    :param serialize: Whether substates are JSON serialized before storage.
    :type serialize: bool
    :param blacklist: Top-level keys that are never persisted.
    :type blacklist: list[str]
    :param whitelist: If set, the only top-level keys that are persisted.
    :type whitelist: list[str] | None
    :param transforms: Transforms applied in order on write, reversed on rehydrate.
    :type transforms: list[Any]
    :param debounce: Seconds between drain ticks, ``0`` for back-to-back ticks.
    :type debounce: float
    :param key_prefix: Prefix prepended to every storage key.
    :type key_prefix: str
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    serialize: bool = Field(
        default=True,
        description="Serialize substates to JSON. When false the storage receives objects as-is.",
    )
    blacklist: list[str] = Field(
        default_factory=list, description="Top-level keys that are never persisted."
    )
    whitelist: list[str] | None = Field(
        default=None,
        description="Top-level keys that are exclusively persisted. None means all keys.",
    )
    transforms: list[Any] = Field(
        default_factory=list,
        description="Ordered transforms with forward/backward steps.",
    )
    debounce: float = Field(
        default=0,
        ge=0,
        description="Seconds between drain ticks. Zero fires ticks back-to-back.",
    )
    key_prefix: str = Field(
        default=KEY_PREFIX,
        description=(
            "Prefix concatenated with each top-level key to form the storage key. "
            "No separator is inserted."
        ),
    )
    storage: Any = Field(
        default_factory=MemoryStorage,
        description="Async key-value storage backend.",
    )
    state_accessor: StateAccessor = Field(
        default_factory=StateAccessor,
        description="Accessor for the shape of the state tree.",
    )
    production: bool = Field(
        default_factory=is_production,
        description="Coerce serialization failures and silence per-key warnings.",
    )
    on_write_error: Callable[[str, BaseException], Any] | None = Field(
        default=None,
        description="Called with (key, exception) when a storage write fails.",
        exclude=True,
    )
    on_rehydrate_error: Callable[[str, BaseException], Any] | None = Field(
        default=None,
        description="Called with (key, exception) when a key fails to rehydrate.",
        exclude=True,
    )

    @field_validator("debounce", mode="before")
    @classmethod
    def _falsy_debounce(cls, value: Any) -> Any:
        # ``False`` and ``None`` both mean "no delay"
        if value is None or value is False:
            return 0
        return value

    @field_validator("transforms")
    @classmethod
    def _check_transforms(cls, value: list[Any]) -> list[Any]:
        for transform in value:
            if not callable(getattr(transform, "forward", None)) or not callable(
                getattr(transform, "backward", None)
            ):
                raise ValueError(
                    f"Transform {transform!r} must define forward() and backward()."
                )
        return value

    def allows(self, key: str) -> bool:
        """Whether ``key`` passes the whitelist and blacklist.

        The blacklist takes precedence when a key is in both.
        """
        if self.whitelist is not None and key not in self.whitelist:
            return False
        if key in self.blacklist:
            return False
        return True

    def storage_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"
