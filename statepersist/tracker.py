from __future__ import annotations

from typing import Any, Callable

from statepersist.state import StateAccessor

_SCALARS = (str, int, float, bool, type(None))


def _unchanged(previous: Any, current: Any) -> bool:
    if previous is current:
        return True
    # equal scalars built at runtime are distinct objects; compare by value
    # and require the same type so that True and 1 still differ
    return (
        type(current) in _SCALARS
        and type(previous) is type(current)
        and previous == current
    )


def find_dirty_keys(
    previous: Any,
    current: Any,
    accessor: StateAccessor,
    allows: Callable[[str], bool] | None = None,
) -> list[str]:
    """Return the top-level keys of ``current`` whose substate changed.

    Scalar substates (str, int, float, bool, None) changed when their value
    differs. Any other substate changed when it is not the same object as the
    substate under the same key in ``previous``, so equal but distinct
    containers count as changed. Keys rejected by ``allows`` are never
    reported.
    """
    dirty: list[str] = []
    for key, substate in accessor.iterate(current):
        if allows is not None and not allows(key):
            continue
        if _unchanged(accessor.get(previous, key), substate):
            continue
        dirty.append(key)
    return dirty
