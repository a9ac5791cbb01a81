"""Diff engine: what changed between two state snapshots.

Algorithm:
    Recursive descent through both trees simultaneously, skipping any pair
    of branches that are the same object (structural sharing makes unchanged
    subtrees free to compare).
    - Dict keys: added/removed by set difference, shared keys recurse.
    - Lists/tuples: element-wise up to the shorter length, then added or
      removed tail.
    - Sets and leaves: structural equality check.

The change set is computed once per commit and shared by every subscription
in the notification pass. Root-level patches are the common currency of the
three mutation channels: ``root_patch`` builds one from two states and
``apply_patch`` applies one with the root-replace policy.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from treestate.equality import deep_equal
from treestate.paths import DELETE, MISSING, PathKey, normalize_path, Path


@dataclass(frozen=True)
class Change:
    """One changed location. ``old``/``new`` are MISSING for added/removed."""

    path: tuple[PathKey, ...]
    old: Any
    new: Any

    @property
    def kind(self) -> str:
        if self.old is MISSING:
            return "added"
        if self.new is MISSING:
            return "removed"
        return "changed"


def diff_states(before: Any, after: Any) -> list[Change]:
    """Minimal list of changed locations from ``before`` to ``after``."""
    changes: list[Change] = []
    _diff(before, after, (), changes)
    return changes


def _diff(before: Any, after: Any, path: tuple[PathKey, ...], changes: list[Change]) -> None:
    if before is after:
        return

    if isinstance(before, Mapping) and isinstance(after, Mapping):
        for key, value in before.items():
            if key not in after:
                changes.append(Change(path + (key,), value, MISSING))
        for key, value in after.items():
            if key not in before:
                changes.append(Change(path + (key,), MISSING, value))
            else:
                _diff(before[key], value, path + (key,), changes)
        return

    if (
        isinstance(before, (list, tuple))
        and isinstance(after, (list, tuple))
        and type(before) is type(after)
    ):
        shared = min(len(before), len(after))
        for index in range(shared):
            _diff(before[index], after[index], path + (index,), changes)
        for index in range(shared, len(before)):
            changes.append(Change(path + (index,), before[index], MISSING))
        for index in range(shared, len(after)):
            changes.append(Change(path + (index,), MISSING, after[index]))
        return

    if not deep_equal(before, after):
        changes.append(Change(path, before, after))


def _same_key(a: PathKey, b: PathKey) -> bool:
    return a == b or str(a) == str(b)


def touches(changes: Iterable[Change], path: Path) -> bool:
    """Whether any change is at, above or below ``path``."""
    keys = normalize_path(path)
    for change in changes:
        shared = min(len(keys), len(change.path))
        if all(_same_key(keys[i], change.path[i]) for i in range(shared)):
            return True
    return False


def root_patch(before: Mapping, after: Mapping) -> dict:
    """Patch turning ``before`` into ``after``: changed root keys only.

    Keys absent from ``after`` map to DELETE.
    """
    patch: dict = {}
    for key, value in after.items():
        if key not in before or before[key] is not value:
            patch[key] = value
    for key in before:
        if key not in after:
            patch[key] = DELETE
    return patch


def apply_patch(state: Mapping, patch: Mapping) -> Mapping:
    """Apply ``patch`` with the root-replace policy.

    Each key replaces its whole root branch. A value identical or deep-equal
    to the current one keeps the current reference. Returns ``state`` itself
    when nothing changes.
    """
    updated: dict | None = None
    for key, value in patch.items():
        if value is DELETE:
            if key in state:
                if updated is None:
                    updated = dict(state)
                del updated[key]
            continue
        if key in state and deep_equal(state[key], value):
            continue
        if updated is None:
            updated = dict(state)
        updated[key] = value
    return state if updated is None else updated
