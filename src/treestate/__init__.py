"""treestate: an immutable state tree with selectors, subscriptions and undo."""

from importlib.metadata import version as _version

__version__ = _version("treestate")

from treestate.errors import (
    StoreError,
    StateError,
    MiddlewareError,
    TransactionError,
    PathError,
    PluginError,
    ValidationError,
    PersistenceError,
)
from treestate.paths import DELETE, get_path, has_path, normalize_path, set_path, delete_path
from treestate.equality import deep_equal, is_same
from treestate.diff import Change, diff_states
from treestate.middleware import create_validator_middleware
from treestate.plugins import Plugin
from treestate.history import HistoryChange, HistoryEntry, HistorySnapshot
from treestate.selectors import Selector, ParameterizedSelector
from treestate.store import (
    Store,
    ReadOnlyStore,
    StoreOptions,
    ThunkContext,
    create_store,
    get_current_session_stores,
    cleanup_current_session_stores,
)
# textual bridge NOT auto-imported, opt-in only

__all__ = [
    "create_store",
    "get_current_session_stores",
    "cleanup_current_session_stores",
    "Store",
    "ReadOnlyStore",
    "StoreOptions",
    "ThunkContext",
    "Plugin",
    "create_validator_middleware",
    "Selector",
    "ParameterizedSelector",
    "HistoryChange",
    "HistoryEntry",
    "HistorySnapshot",
    "Change",
    "diff_states",
    "DELETE",
    "get_path",
    "has_path",
    "normalize_path",
    "set_path",
    "delete_path",
    "deep_equal",
    "is_same",
    "StoreError",
    "StateError",
    "MiddlewareError",
    "TransactionError",
    "PathError",
    "PluginError",
    "ValidationError",
    "PersistenceError",
]
