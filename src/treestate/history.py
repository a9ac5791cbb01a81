"""History: bounded undo/redo log of committed snapshots.

The log holds ``HistoryEntry(state, action)`` pairs and a cursor at the
entry matching the current state. Recording after an undo drops the redo
branch; recording past capacity evicts the oldest entry. The manager only
moves the cursor and hands back snapshots; the store applies them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from treestate.plugins import PluginManager
    from treestate.paths import PathKey

logger = logging.getLogger("treestate.history")


@dataclass(frozen=True)
class HistoryEntry:
    state: Mapping
    action: Any = None


@dataclass(frozen=True)
class HistoryChange:
    """What an undo/redo is about to do; passed to plugin hooks."""

    operation: str
    steps: int
    path: tuple[PathKey, ...] | None
    old_state: Mapping
    new_state: Mapping


@dataclass(frozen=True)
class HistorySnapshot:
    entries: tuple[HistoryEntry, ...]
    current_index: int
    initial_state: Mapping | None

    @property
    def states(self) -> tuple[Mapping, ...]:
        return tuple(entry.state for entry in self.entries)


class HistoryManager:
    """Undo/redo log with a fixed capacity."""

    def __init__(self, limit: int | None, plugins: PluginManager, initial_state: Mapping) -> None:
        self._limit = max(limit or 0, 0)
        self._plugins = plugins
        self._initial_state = initial_state
        self._entries: list[HistoryEntry] = []
        self._index = -1
        self.record(initial_state)

    @property
    def enabled(self) -> bool:
        return self._limit > 0

    @property
    def limit(self) -> int:
        return self._limit

    def record(self, state: Mapping, action: Any = None) -> None:
        if not self.enabled:
            return
        if self._index < len(self._entries) - 1:
            del self._entries[self._index + 1:]
        self._entries.append(HistoryEntry(state, action))
        overflow = len(self._entries) - self._limit
        if overflow > 0:
            del self._entries[:overflow]
        self._index = len(self._entries) - 1

    def can_undo(self, steps: int = 1) -> bool:
        return self.enabled and steps >= 1 and self._index - steps >= 0

    def can_redo(self, steps: int = 1) -> bool:
        return self.enabled and steps >= 1 and self._index + steps < len(self._entries)

    def _move(
        self,
        operation: str,
        steps: int,
        path: tuple[PathKey, ...] | None,
        current: Mapping,
        project: Callable[[Mapping], Mapping] | None,
    ) -> HistoryChange | None:
        allowed = self.can_undo(steps) if operation == "undo" else self.can_redo(steps)
        if not allowed:
            return None
        target = self._index - steps if operation == "undo" else self._index + steps
        snapshot = self._entries[target].state
        new_state = snapshot if project is None else project(snapshot)
        change = HistoryChange(operation, steps, path, current, new_state)
        if not self._plugins.before_history_change(change):
            logger.debug("%s by %d vetoed by plugin", operation, steps)
            return None
        self._index = target
        return change

    def undo(self, steps: int, path=None, current: Mapping | None = None, project=None) -> HistoryChange | None:
        """Move the cursor back ``steps`` entries.

        ``project(snapshot)`` builds the state to restore (used for path-scoped
        undo); it runs before any plugin sees the change, so a failure leaves
        the cursor where it was. Returns the change, or None when out of
        range or vetoed.
        """
        return self._move("undo", steps, path, current, project)

    def redo(self, steps: int, path=None, current: Mapping | None = None, project=None) -> HistoryChange | None:
        return self._move("redo", steps, path, current, project)

    def clear(self, seed: Mapping | None = None) -> None:
        """Drop every entry; ``seed`` becomes the new first entry."""
        self._entries = []
        self._index = -1
        if seed is not None:
            self._initial_state = seed
            self.record(seed)

    def snapshot(self) -> HistorySnapshot:
        if not self.enabled:
            return HistorySnapshot((), -1, None)
        return HistorySnapshot(tuple(self._entries), self._index, self._initial_state)

    def __len__(self) -> int:
        return len(self._entries)
