"""Reversible substate transforms applied on write and on rehydrate.

A transform has a ``forward`` step that runs before a substate is serialized
and a ``backward`` step that runs after it is deserialized. A
``TransformPipeline`` applies forward steps in declared order and backward
steps in reverse order, so the last transform applied on write is the first one
undone on rehydrate.
"""

from __future__ import annotations

import base64
import json
import zlib
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from cryptography.fernet import Fernet


class _Absent:
    """Marker for "no value". Forward transforms return it to skip a write."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


@runtime_checkable
class Transform(Protocol):
    """Interface of a transform. Both steps receive the top-level key."""

    def forward(self, substate: Any, key: str) -> Any: ...

    def backward(self, substate: Any, key: str) -> Any: ...


class FunctionTransform:
    """Transform built from a pair of plain functions.

    :param forward: Called on write with ``(substate, key)``.
    :type forward: Callable | None
    :param backward: Called on rehydrate with ``(substate, key)``.
    :type backward: Callable | None
    :param whitelist: If given, only these keys are transformed.
    :type whitelist: list[str] | None
    :param blacklist: Keys that are never transformed.
    :type blacklist: list[str] | None
    """

    def __init__(
        self,
        forward: Callable[[Any, str], Any] | None = None,
        backward: Callable[[Any, str], Any] | None = None,
        whitelist: Iterable[str] | None = None,
        blacklist: Iterable[str] | None = None,
    ):
        self._forward = forward
        self._backward = backward
        self.whitelist = frozenset(whitelist) if whitelist is not None else None
        self.blacklist = frozenset(blacklist or ())

    def applies_to(self, key: str) -> bool:
        if self.whitelist is not None and key not in self.whitelist:
            return False
        return key not in self.blacklist

    def forward(self, substate: Any, key: str) -> Any:
        if self._forward is None or not self.applies_to(key):
            return substate
        return self._forward(substate, key)

    def backward(self, substate: Any, key: str) -> Any:
        if self._backward is None or not self.applies_to(key):
            return substate
        return self._backward(substate, key)


def create_transform(
    forward: Callable[[Any, str], Any] | None = None,
    backward: Callable[[Any, str], Any] | None = None,
    *,
    whitelist: Iterable[str] | None = None,
    blacklist: Iterable[str] | None = None,
) -> FunctionTransform:
    """Create a transform from a forward/backward function pair.

    Either function may be omitted, in which case that direction passes the
    substate through unchanged.
    """
    return FunctionTransform(
        forward=forward, backward=backward, whitelist=whitelist, blacklist=blacklist
    )


class TransformPipeline:
    """Immutable ordered sequence of transforms shared by every key."""

    def __init__(self, transforms: Iterable[Transform] = ()):
        self.transforms: tuple[Transform, ...] = tuple(transforms)

    def __len__(self) -> int:
        return len(self.transforms)

    def forward(self, substate: Any, key: str) -> Any:
        """Fold the forward steps left-to-right.

        Returns ``ABSENT`` as soon as the value is or becomes ``ABSENT``.
        """
        value = substate
        for transform in self.transforms:
            if value is ABSENT:
                break
            value = transform.forward(value, key)
        return value

    def backward(self, substate: Any, key: str) -> Any:
        """Fold the backward steps right-to-left."""
        value = substate
        for transform in reversed(self.transforms):
            value = transform.backward(value, key)
        return value


class CompressTransform(FunctionTransform):
    """Stores a substate as base64 of zlib-compressed JSON."""

    def __init__(
        self,
        level: int = 6,
        whitelist: Iterable[str] | None = None,
        blacklist: Iterable[str] | None = None,
    ):
        super().__init__(
            forward=self._compress,
            backward=self._decompress,
            whitelist=whitelist,
            blacklist=blacklist,
        )
        self.level = level

    def _compress(self, substate: Any, key: str) -> str:
        raw = json.dumps(substate, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(zlib.compress(raw, self.level)).decode("ascii")

    def _decompress(self, substate: str, key: str) -> Any:
        raw = zlib.decompress(base64.b64decode(substate))
        return json.loads(raw.decode("utf-8"))


class EncryptTransform(FunctionTransform):
    """Encrypts a substate with Fernet.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes), as
    returned by ``cryptography.fernet.Fernet.generate_key()``. A tampered or
    foreign token raises ``cryptography.fernet.InvalidToken`` on rehydrate,
    which drops that key from the rehydrated state.
    """

    def __init__(
        self,
        secret: str | bytes,
        whitelist: Iterable[str] | None = None,
        blacklist: Iterable[str] | None = None,
    ):
        super().__init__(
            forward=self._encrypt,
            backward=self._decrypt,
            whitelist=whitelist,
            blacklist=blacklist,
        )
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._fernet = Fernet(secret)

    def _encrypt(self, substate: Any, key: str) -> str:
        plaintext = json.dumps(substate, separators=(",", ":"), sort_keys=True)
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def _decrypt(self, substate: str, key: str) -> Any:
        token = substate.encode("ascii") if isinstance(substate, str) else substate
        return json.loads(self._fernet.decrypt(token).decode("utf-8"))
