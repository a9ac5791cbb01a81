"""Path engine: get/update/delete inside a state tree by key sequence.

Writes never touch their input: only the containers on the root-to-terminal
branch are copied, every sibling branch keeps its identity. Dicts stand in
for both objects and keyed maps; lists and tuples are sequences; sets and
frozensets are leaves (they cannot be traversed by key).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence, Set
from typing import Any, Union

from treestate.equality import deep_equal
from treestate.errors import PathError, StateError

PathKey = Union[str, int]
Path = Union[str, Sequence[PathKey]]


class _Sentinel:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


MISSING: Any = _Sentinel("MISSING")
"""Marks an absent location; never stored in state."""

DELETE: Any = _Sentinel("DELETE")
"""Return or pass this to remove a key instead of assigning it."""


def normalize_path(path: Path) -> tuple[PathKey, ...]:
    """Turn ``"a.0.b"`` or ``["a", 0, "b"]`` into a key tuple.

    Dotted strings turn all-digit segments into ints.
    """
    if isinstance(path, str):
        if not path:
            return ()
        return tuple(int(part) if part.isdigit() else part for part in path.split("."))
    return tuple(path)


def is_container(value: object) -> bool:
    return isinstance(value, (dict, list, tuple))


def _child(node: object, key: PathKey) -> Any:
    """Value of ``node[key]`` or MISSING. Raises PathError for non-containers."""
    if isinstance(node, Mapping):
        if key in node:
            return node[key]
        if isinstance(key, int) and str(key) in node:
            return node[str(key)]
        if isinstance(key, str) and key.isdigit() and int(key) in node:
            return node[int(key)]
        return MISSING
    if isinstance(node, (list, tuple)):
        index = _index(key)
        if index is None:
            raise PathError(f"Cannot index a sequence with {key!r}")
        if -len(node) <= index < len(node):
            return node[index]
        return MISSING
    raise PathError(f"Cannot traverse {type(node).__name__} with key {key!r}")


def _index(key: PathKey) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.lstrip("-").isdigit():
        return int(key)
    return None


def _dict_key(node: Mapping, key: PathKey) -> PathKey:
    """The key actually used by ``node`` for ``key`` (int/str tolerant)."""
    if key in node:
        return key
    if isinstance(key, int) and str(key) in node:
        return str(key)
    if isinstance(key, str) and key.isdigit() and int(key) in node:
        return int(key)
    return key


def _with(node: Any, key: PathKey, value: Any) -> Any:
    """Copy of ``node`` with ``key`` set to ``value``."""
    if isinstance(node, Mapping):
        copy = dict(node)
        copy[_dict_key(node, key)] = value
        return copy
    copy = list(node)
    index = _index(key)
    if index < 0:
        index += len(copy)
        if index < 0:
            raise PathError(f"Index {key!r} out of range")
    if index < len(copy):
        copy[index] = value
    else:
        copy.extend([None] * (index - len(copy)))
        copy.append(value)
    return tuple(copy) if isinstance(node, tuple) else copy


def _without(node: Any, key: PathKey) -> Any:
    """Copy of ``node`` with ``key`` removed (later list items shift down)."""
    if isinstance(node, Mapping):
        copy = dict(node)
        del copy[_dict_key(node, key)]
        return copy
    copy = list(node)
    del copy[_index(key)]
    return tuple(copy) if isinstance(node, tuple) else copy


def get_path(state: object, path: Path, default: Any = None) -> Any:
    """Read the value at ``path``; ``default`` when any step is missing."""
    current = state
    for key in normalize_path(path):
        if not is_container(current):
            return default
        try:
            current = _child(current, key)
        except PathError:
            return default
        if current is MISSING:
            return default
    return current


def has_path(state: object, path: Path) -> bool:
    return get_path(state, path, MISSING) is not MISSING


def update_in(root: Any, path: Path, updater: Callable[[Any], Any]) -> Any:
    """Return a new root with ``updater(current)`` written at ``path``.

    ``updater`` receives ``None`` for a missing location. Returning DELETE
    removes the key. Returns ``root`` itself when nothing changes, including
    deleting an already-absent key (no intermediates are created for it).
    """
    keys = normalize_path(path)
    if not keys:
        raise PathError("Path must contain at least one key", {"path": keys})
    return _update(root, keys, 0, updater)


def _update(node: Any, keys: tuple[PathKey, ...], depth: int, updater: Callable[[Any], Any]) -> Any:
    key = keys[depth]
    if not is_container(node):
        raise PathError(
            "Cannot navigate through non-container value in path",
            {"path": keys, "path_index": depth, "current_value": node},
        )
    if isinstance(node, (list, tuple)) and _index(key) is None:
        raise PathError(
            f"Sequence key must be an int, got {key!r}",
            {"path": keys, "path_index": depth},
        )

    current = _child(node, key)

    if depth == len(keys) - 1:
        new_value = updater(None if current is MISSING else current)
        if new_value is DELETE:
            return node if current is MISSING else _without(node, key)
        if current is not MISSING and deep_equal(current, new_value):
            return node
        return _with(node, key, new_value)

    if current is MISSING:
        # A fresh container that comes back untouched means the update was a
        # no-op (e.g. deleting below a missing key): do not create anything.
        current = [] if isinstance(keys[depth + 1], int) else {}
    new_child = _update(current, keys, depth + 1, updater)
    if new_child is current:
        return node
    return _with(node, key, new_child)


def set_path(root: Any, path: Path, value: Any) -> Any:
    """Return a new root with ``value`` at ``path`` (DELETE removes)."""
    return update_in(root, path, lambda _current: value)


def delete_path(root: Any, path: Path) -> Any:
    return update_in(root, path, lambda _current: DELETE)


def clone_state(value: Any, _active: set[int] | None = None) -> Any:
    """Deep-copy the containers of a state tree, rejecting cycles.

    Leaves (including custom objects) are shared, not copied.
    """
    if not isinstance(value, (dict, list, tuple, set, frozenset)):
        return value
    if _active is None:
        _active = set()
    marker = id(value)
    if marker in _active:
        raise StateError(
            "Circular references in state are not supported",
            {"operation": "clone_state"},
        )
    _active.add(marker)
    try:
        if isinstance(value, Mapping):
            return {key: clone_state(item, _active) for key, item in value.items()}
        if isinstance(value, list):
            return [clone_state(item, _active) for item in value]
        if isinstance(value, tuple):
            return tuple(clone_state(item, _active) for item in value)
        if isinstance(value, frozenset):
            return frozenset(value)
        if isinstance(value, Set):
            return set(value)
    finally:
        _active.discard(marker)
    return value
