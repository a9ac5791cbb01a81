"""Drafts: mutable working views of an immutable state tree.

A transaction body mutates a draft as if it were the live state. The data
lives in a ``DraftArena``: one slot per visited container holding its base
(the original object), its working copy (created on first write) and its
parent. Draft objects are thin handles holding an arena and a node id.

Copy-on-write: a container is copied the first time it (or anything below
it) is written, so the set of copied nodes is exactly the set of touched
branches. ``DraftArena.commit()`` rebuilds only those; every untouched
subtree keeps its original identity.

Once the transaction ends the arena is revoked and every handle raises.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping, MutableSequence, MutableSet, Sequence
from typing import Any

from treestate.errors import StateError, StoreError


def _draftable(value: object) -> bool:
    return isinstance(value, (dict, list, tuple, set, frozenset))


class DraftArena:
    """Working copies for one transaction."""

    __slots__ = ("_bases", "_copies", "_parents", "_children", "_handles", "_results", "_finalizing", "_revoked", "root")

    def __init__(self, state: Mapping) -> None:
        self._bases: list[Any] = []
        self._copies: list[Any] = []
        self._parents: list[int | None] = []
        self._children: list[dict] = []
        self._handles: list[Draft] = []
        self._results: dict[int, Any] = {}
        self._finalizing: set[int] = set()
        self._revoked = False
        self.root = self._handles[self._add(state, None)]

    def _add(self, base: Any, parent: int | None) -> int:
        node_id = len(self._bases)
        self._bases.append(base)
        self._copies.append(None)
        self._parents.append(parent)
        self._children.append({})
        if isinstance(base, Mapping):
            handle: Draft = DraftDict(self, node_id)
        elif isinstance(base, (list, tuple)):
            handle = DraftList(self, node_id)
        else:
            handle = DraftSet(self, node_id)
        self._handles.append(handle)
        return node_id

    def _check(self) -> None:
        if self._revoked:
            raise StoreError(
                "Draft used after its transaction ended",
                {"operation": "draft"},
            )

    # --- node access ---

    def current(self, node_id: int) -> Any:
        self._check()
        copy = self._copies[node_id]
        return self._bases[node_id] if copy is None else copy

    def writable(self, node_id: int) -> Any:
        """The node's working copy, creating it (and its ancestors') on demand."""
        self._check()
        copy = self._copies[node_id]
        if copy is not None:
            return copy
        base = self._bases[node_id]
        if isinstance(base, Mapping):
            copy = dict(base)
        elif isinstance(base, (list, tuple)):
            copy = list(base)
        else:
            copy = set(base)
        for key, child_id in self._children[node_id].items():
            copy[key] = self._handles[child_id]
        self._copies[node_id] = copy
        parent = self._parents[node_id]
        if parent is not None:
            self.writable(parent)
        return copy

    def read(self, node_id: int, key: Any) -> Any:
        """``node[key]``, wrapping container values in child drafts."""
        container = self.current(node_id)
        value = container[key]
        if isinstance(value, Draft) or not _draftable(value):
            return value
        copy = self._copies[node_id]
        if copy is None:
            child_id = self._children[node_id].get(key)
            if child_id is None:
                child_id = self._add(value, node_id)
                self._children[node_id][key] = child_id
            return self._handles[child_id]
        child_id = self._add(value, node_id)
        copy[key] = self._handles[child_id]
        return self._handles[child_id]

    def plain(self, value: Any) -> Any:
        """Plain copy of ``value``'s live content, drafts included. Not cached."""
        if isinstance(value, Draft):
            node_id = self.adopt(value)._id
            live = self.current(node_id)
            if isinstance(self._bases[node_id], tuple):
                live = tuple(live)
            return self.plain(live)
        if isinstance(value, Mapping):
            return {key: self.plain(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            items = [self.plain(item) for item in value]
            return tuple(items) if isinstance(value, tuple) else items
        return value

    def adopt(self, value: Any) -> Any:
        if isinstance(value, Draft) and value._arena is not self:
            raise StoreError(
                "Draft belongs to another transaction",
                {"operation": "draft"},
            )
        return value

    # --- commit ---

    def finalize(self, node_id: int) -> Any:
        if node_id in self._results:
            return self._results[node_id]
        if node_id in self._finalizing:
            raise StateError(
                "Transaction produced a circular reference",
                {"operation": "transaction"},
            )
        base = self._bases[node_id]
        copy = self._copies[node_id]
        if copy is None:
            result = base
        else:
            self._finalizing.add(node_id)
            try:
                if isinstance(copy, dict):
                    result = {key: self.resolve(value) for key, value in copy.items()}
                elif isinstance(copy, list):
                    items = [self.resolve(value) for value in copy]
                    result = tuple(items) if isinstance(base, tuple) else items
                else:
                    result = frozenset(copy) if isinstance(base, frozenset) else set(copy)
            finally:
                self._finalizing.discard(node_id)
            if _unchanged(base, result):
                result = base
        self._results[node_id] = result
        return result

    def resolve(self, value: Any) -> Any:
        """Replace draft handles inside ``value`` by their final values."""
        if isinstance(value, Draft):
            return self.finalize(self.adopt(value)._id)
        if isinstance(value, dict):
            resolved = {key: self.resolve(item) for key, item in value.items()}
            return value if _unchanged(value, resolved) else resolved
        if isinstance(value, (list, tuple)):
            items = [self.resolve(item) for item in value]
            if all(a is b for a, b in zip(value, items)):
                return value
            return tuple(items) if isinstance(value, tuple) else items
        return value

    def commit(self, returned: Any = None) -> Any:
        """Final state: the returned replacement if any, else the draft."""
        if returned is None or returned is self.root:
            return self.finalize(0)
        return self.resolve(returned)

    def revoke(self) -> None:
        self._revoked = True


def _unchanged(base: Any, result: Any) -> bool:
    if isinstance(base, Mapping):
        if not isinstance(result, Mapping) or len(base) != len(result):
            return False
        return all(key in base and base[key] is value for key, value in result.items())
    if isinstance(base, (list, tuple)):
        if type(base) is not type(result) or len(base) != len(result):
            return False
        return all(a is b for a, b in zip(base, result))
    return base == result


class Draft:
    """Handle onto one node of a DraftArena."""

    __slots__ = ("_arena", "_id")

    def __init__(self, arena: DraftArena, node_id: int) -> None:
        self._arena = arena
        self._id = node_id

    def _current(self) -> Any:
        return self._arena.current(self._id)

    def _writable(self) -> Any:
        return self._arena.writable(self._id)


class DraftDict(Draft, MutableMapping):
    __slots__ = ()

    def __getitem__(self, key: Any) -> Any:
        return self._arena.read(self._id, key)

    def __setitem__(self, key: Any, value: Any) -> None:
        self._writable()[key] = self._arena.adopt(value)

    def __delitem__(self, key: Any) -> None:
        del self._writable()[key]

    def __iter__(self) -> Iterator:
        return iter(self._current())

    def __len__(self) -> int:
        return len(self._current())

    def __contains__(self, key: object) -> bool:
        return key in self._current()

    def __repr__(self) -> str:
        return f"DraftDict({dict(self._current())!r})"


class DraftList(Draft, MutableSequence):
    __slots__ = ()

    def _normalize(self, index: int) -> int:
        size = len(self._current())
        if index < 0:
            index += size
        if not 0 <= index < size:
            raise IndexError("draft list index out of range")
        return index

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        return self._arena.read(self._id, self._normalize(index))

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            self._writable()[index] = [self._arena.adopt(item) for item in value]
            return
        index = self._normalize(index)
        self._writable()[index] = self._arena.adopt(value)

    def __delitem__(self, index: Any) -> None:
        if not isinstance(index, slice):
            index = self._normalize(index)
        del self._writable()[index]

    def __len__(self) -> int:
        return len(self._current())

    def insert(self, index: int, value: Any) -> None:
        self._writable().insert(index, self._arena.adopt(value))

    def sort(self, *, key=None, reverse: bool = False) -> None:
        # Items are drafts; the default order compares their live content.
        items = [self[i] for i in range(len(self))]
        items.sort(key=self._arena.plain if key is None else key, reverse=reverse)
        self._writable()[:] = items

    def reverse(self) -> None:
        self._writable().reverse()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Sequence) and not isinstance(other, (str, bytes)):
            return list(self) == list(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"DraftList({list(self._current())!r})"


class DraftSet(Draft, MutableSet):
    __slots__ = ()

    @classmethod
    def _from_iterable(cls, iterable) -> set:
        return set(iterable)

    def __contains__(self, value: object) -> bool:
        return value in self._current()

    def __iter__(self) -> Iterator:
        return iter(list(self._current()))

    def __len__(self) -> int:
        return len(self._current())

    def add(self, value: Any) -> None:
        self._writable().add(value)

    def discard(self, value: Any) -> None:
        self._writable().discard(value)

    def __repr__(self) -> str:
        return f"DraftSet({set(self._current())!r})"
