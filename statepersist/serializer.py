"""Default JSON serializer and deserializer.

Cycles and values JSON cannot represent are serialization failures. Outside
production they raise ``SerializationError`` so the bug surfaces; in
production the offending value is stored as ``null`` so a deployed instance
keeps persisting everything else.
"""

from __future__ import annotations

import json
from typing import Any, Callable

from pydantic import BaseModel

from statepersist.errors import SerializationError


_SCALARS = (str, int, float, bool, type(None))


def _decycle(value: Any, path: str, ancestors: set[int], production: bool) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    marker = id(value)
    if marker in ancestors:
        if production:
            return None
        raise SerializationError(
            f"Cannot process cyclical state. Cycle encountered at '{path}'. "
            "Restructure the state without cycles or blacklist the top-level key.",
            path=path,
        )
    if isinstance(value, dict):
        ancestors.add(marker)
        try:
            return {
                str(k): _decycle(v, f"{path}.{k}", ancestors, production)
                for k, v in value.items()
            }
        finally:
            ancestors.discard(marker)
    if isinstance(value, (list, tuple)):
        ancestors.add(marker)
        try:
            return [
                _decycle(v, f"{path}[{i}]", ancestors, production)
                for i, v in enumerate(value)
            ]
        finally:
            ancestors.discard(marker)
    if production:
        return None
    raise SerializationError(
        f"Cannot serialize value of type {type(value).__name__} at '{path}'.",
        path=path,
    )


def serialize(data: Any, *, production: bool = False) -> str:
    """Serialize a substate to a JSON string."""
    return json.dumps(_decycle(data, "$", set(), production))


def deserialize(serial: str) -> Any:
    return json.loads(serial)


def _identity(data: Any) -> Any:
    return data


def get_serializers(
    enabled: bool = True, *, production: bool = False
) -> tuple[Callable[[Any], Any], Callable[[Any], Any]]:
    """Return the ``(serializer, deserializer)`` pair for a configuration.

    When serialization is disabled both are the identity, for backends that
    store objects as-is.
    """
    if not enabled:
        return _identity, _identity

    def _serialize(data: Any) -> str:
        return serialize(data, production=production)

    return _serialize, deserialize
