"""Plugins: lifecycle hooks around a store.

Subclass ``Plugin`` and override the hooks you need, or pass any object with
some of these methods; missing hooks are skipped. Hooks run in plugin order.
A hook that raises is reported as a PluginError and the remaining plugins
still run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from treestate.errors import PluginError, StoreError

if TYPE_CHECKING:
    from treestate.history import HistoryChange
    from treestate.store import Store

logger = logging.getLogger("treestate.plugins")


class Plugin:
    """No-op base for store plugins."""

    name = "plugin"

    def on_store_create(self, store: Store) -> None:
        pass

    def before_state_change(self, action: Mapping, prev_state: Mapping, store: Store) -> Mapping | None:
        """Return a replacement patch, or None to keep the action."""
        return None

    def on_state_change(self, new_state: Mapping, prev_state: Mapping, action: Any, store: Store) -> None:
        pass

    def on_batch_start(self, store: Store) -> None:
        pass

    def on_batch_end(self, actions: list, state: Mapping, store: Store) -> None:
        pass

    def on_transaction_start(self, store: Store) -> None:
        pass

    def on_transaction_end(
        self,
        success: bool,
        store: Store,
        changes: Mapping | None = None,
        error: BaseException | None = None,
    ) -> None:
        pass

    def before_history_change(self, change: HistoryChange) -> bool | None:
        """Return False to veto an undo/redo."""
        return None

    def on_history_changed(self, change: HistoryChange) -> None:
        pass

    def on_error(self, error: StoreError, context: dict, store: Store) -> None:
        pass

    def on_destroy(self, store: Store) -> None:
        pass


def _plugin_name(plugin: object) -> str:
    return getattr(plugin, "name", None) or type(plugin).__name__


class PluginManager:
    """Calls hooks across an ordered plugin list."""

    def __init__(self, plugins: Sequence[object], report: Callable[[StoreError], None]) -> None:
        self._plugins = list(plugins)
        self._report = report

    def __len__(self) -> int:
        return len(self._plugins)

    def _hooks(self, hook_name: str):
        for plugin in self._plugins:
            hook = getattr(plugin, hook_name, None)
            if callable(hook):
                yield plugin, hook

    def _failed(self, plugin: object, hook_name: str, exc: Exception) -> None:
        name = _plugin_name(plugin)
        self._report(
            PluginError(
                f"Plugin {name}.{hook_name} failed",
                {"operation": hook_name, "error": exc, "plugin": name},
            )
        )

    def run(self, hook_name: str, *args: Any) -> None:
        for plugin, hook in self._hooks(hook_name):
            try:
                hook(*args)
            except Exception as exc:
                self._failed(plugin, hook_name, exc)

    def before_state_change(self, action: Mapping, prev_state: Mapping, store: Store) -> Mapping:
        for plugin, hook in self._hooks("before_state_change"):
            try:
                transformed = hook(action, prev_state, store)
            except Exception as exc:
                self._failed(plugin, "before_state_change", exc)
                continue
            if transformed is not None:
                action = transformed
        return action

    def before_history_change(self, change: HistoryChange) -> bool:
        """False as soon as one plugin vetoes."""
        for plugin, hook in self._hooks("before_history_change"):
            try:
                if hook(change) is False:
                    return False
            except Exception as exc:
                self._failed(plugin, "before_history_change", exc)
        return True

    def on_error(self, error: StoreError, store: Store) -> None:
        # Never report from here: a failing on_error hook would recurse.
        for plugin, hook in self._hooks("on_error"):
            try:
                hook(error, error.context, store)
            except Exception:
                logger.exception(
                    "Plugin %s.on_error failed while handling %r",
                    _plugin_name(plugin),
                    error,
                )
