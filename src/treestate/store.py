"""Store: one immutable state tree with three ways in and one way out.

Mutations arrive through ``dispatch`` (patches and thunks), ``update_path``
and ``transaction``. Each is reduced to a root-level patch and runs the same
pipeline:

    middleware chain -> plugin before_state_change -> apply_patch -> commit

A commit swaps the canonical state, records one history entry, persists,
runs plugin on_state_change and then one notification pass. Inside a batch
the swap still happens immediately but everything after it waits for the
outermost batch exit.

Errors are reported, not raised: they go to plugin on_error hooks and then
to ``StoreOptions.on_error`` (or the ``treestate.store`` logger). The state
is left as it was before the failed operation.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from treestate.diff import Change, apply_patch, diff_states, root_patch
from treestate.draft import DraftArena
from treestate.equality import deep_equal
from treestate.errors import (
    MiddlewareError,
    PathError,
    PersistenceError,
    StateError,
    StoreError,
    TransactionError,
)
from treestate.history import HistoryManager, HistorySnapshot
from treestate.middleware import Middleware, MiddlewareExecutor
from treestate.paths import DELETE, MISSING, Path, clone_state, get_path, normalize_path, update_in
from treestate.plugins import PluginManager
from treestate.selectors import ParameterizedSelector, Selector, SelectorGraph
from treestate.subscriptions import Listener, Subscription, SubscriptionManager, Unsubscribe, WatchSubscription

logger = logging.getLogger("treestate.store")

_SESSION_ID = uuid.uuid4().hex

# Live stores of this session, in creation order.
_session_stores: list[Store] = []
_session_lock = threading.Lock()


def _noop() -> None:
    pass


@dataclass
class StoreOptions:
    """Construction options for ``create_store``."""

    name: str = "store"
    middleware: Sequence[Middleware] = field(default_factory=list)
    plugins: Sequence[object] = field(default_factory=list)
    history_limit: int | None = 0
    on_error: Callable[[StoreError], None] | None = None
    storage: Any = None
    persist_key: str | None = None
    selector_ttl: float | None = None
    selector_sweep_interval: float = 30.0


@dataclass(frozen=True)
class ThunkContext:
    """What a thunk gets to work with."""

    dispatch: Callable[[Any], Any]
    get_state: Callable[[], Mapping]
    update_path: Callable[[Path, Any], None]
    transaction: Callable[[Callable], bool]
    batch: Callable[[Callable], Any]


class Store:
    """Reactive container for one state tree. Build with ``create_store``."""

    def __init__(self, initial_state: Mapping, options: StoreOptions) -> None:
        self._options = options
        self._name = options.name
        self._destroyed = False
        self._plugins = PluginManager(options.plugins, self._report)
        self._middleware = MiddlewareExecutor(options.middleware)
        self._initial_state = initial_state
        self._state = self._load_persisted(initial_state)
        self._history = HistoryManager(options.history_limit, self._plugins, self._state)
        self._selectors = SelectorGraph(self.get_state)
        if options.selector_ttl is not None:
            self._selectors.start_sweeper(options.selector_ttl, options.selector_sweep_interval)
        self._subscriptions = SubscriptionManager()
        self._batch_depth = 0
        self._batch_start: Mapping | None = None
        self._batch_actions: list[Any] = []
        self._batch_record = False
        self._context = ThunkContext(
            dispatch=self.dispatch,
            get_state=self.get_state,
            update_path=self.update_path,
            transaction=self.transaction,
            batch=self.batch,
        )
        with _session_lock:
            _session_stores.append(self)
        self._plugins.run("on_store_create", self)

    def __repr__(self) -> str:
        return f"Store({self._name!r}, keys={list(self._state)!r})"

    # --- reading ---

    def get_state(self) -> Mapping:
        """The canonical snapshot. Treat it as read-only."""
        return self._state

    def get_name(self) -> str:
        return self._name

    def get_session_id(self) -> str:
        return _SESSION_ID

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def as_read_only(self) -> ReadOnlyStore:
        return ReadOnlyStore(self)

    # --- error reporting ---

    def _report(self, error: StoreError) -> None:
        self._plugins.on_error(error, self)
        if self._options.on_error is None:
            logger.error("[%s] %s: %r", self._name, error.message, error.context, exc_info=error.cause)
            return
        try:
            self._options.on_error(error)
        except Exception:
            logger.exception("on_error handler failed while handling %r", error)

    def _refuse(self, operation: str) -> None:
        logger.warning("[%s] %s called on a destroyed store; ignored", self._name, operation)

    # --- pipeline ---

    def _dispatch_patch(self, patch: Mapping) -> bool:
        """Run ``patch`` through middleware and plugins, then commit it.

        Returns False when the patch was aborted or failed.
        """
        prev = self._state
        try:
            final = self._middleware.execute(patch, prev)
        except MiddlewareError as exc:
            self._report(exc)
            return False
        if final is None:
            return False
        final = self._plugins.before_state_change(final, prev, self)
        if not isinstance(final, Mapping):
            self._report(
                StoreError(
                    "State update must be a mapping",
                    {"operation": "dispatch", "action": final},
                )
            )
            return False
        self._commit(apply_patch(prev, final), final)
        return True

    def _commit(self, next_state: Mapping, action: Any, record_history: bool = True) -> bool:
        prev = self._state
        if next_state is prev:
            return False
        if self._batch_depth:
            # The last commit decides: time travel already moved the history cursor.
            self._state = next_state
            self._batch_actions.append(action)
            self._batch_record = record_history
            return True
        changes = diff_states(prev, next_state)
        if not changes:
            return False
        self._state = next_state
        self._finish(prev, action, changes, record_history)
        return True

    def _finish(self, prev: Mapping, action: Any, changes: list[Change], record_history: bool = True) -> None:
        if record_history:
            self._history.record(self._state, action)
        logger.debug("[%s] committed %d change(s)", self._name, len(changes))
        self._persist()
        self._plugins.run("on_state_change", self._state, prev, action, self)
        self._subscriptions.notify(self._state, prev, changes)

    # --- dispatch ---

    def dispatch(self, action: Any) -> Any:
        """Apply a patch, or run a thunk with this store's ThunkContext.

        A patch replaces the root keys it names (``DELETE`` removes one).
        A sync thunk's return value is returned. An async thunk returns a
        Task when called inside a running event loop and a coroutine
        otherwise; its failure is reported and then raised from the awaitable.
        """
        if self._destroyed:
            self._refuse("dispatch")
            return None
        if isinstance(action, Mapping):
            self._dispatch_patch(action)
            return None
        if callable(action):
            return self._run_thunk(action)
        self._report(
            StoreError(
                f"Invalid action type: {type(action).__name__}",
                {"operation": "dispatch", "action": action},
            )
        )
        return None

    def _run_thunk(self, thunk: Callable[[ThunkContext], Any]) -> Any:
        if inspect.iscoroutinefunction(thunk):
            return self._schedule(thunk(self._context))
        try:
            result = thunk(self._context)
        except Exception as exc:
            self._report(
                StoreError(
                    "Thunk execution failed",
                    {"operation": "dispatch", "error": exc},
                )
            )
            return None
        if inspect.isawaitable(result):
            return self._schedule(result)
        return result

    def _schedule(self, awaitable: Awaitable) -> Awaitable:
        async def _guarded() -> Any:
            try:
                return await awaitable
            except Exception as exc:
                self._report(
                    StoreError(
                        "Async thunk failed",
                        {"operation": "dispatch", "error": exc},
                    )
                )
                raise

        coro = _guarded()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return coro
        return loop.create_task(coro)

    # --- update_path ---

    def update_path(self, path: Path, value: Any) -> None:
        """Replace the value at ``path``.

        ``value`` is either the new value or ``updater(current)``; an updater
        returning None, or a literal ``DELETE``, removes the key.
        """
        if self._destroyed:
            self._refuse("update_path")
            return
        if callable(value):
            updater = value

            def _apply(current: Any) -> Any:
                result = updater(current)
                return DELETE if result is None else result

        else:

            def _apply(current: Any) -> Any:
                return value

        prev = self._state
        try:
            next_state = update_in(prev, normalize_path(path), _apply)
        except PathError as exc:
            exc.context.setdefault("operation", "update_path")
            self._report(exc)
            return
        except Exception as exc:
            self._report(
                StoreError(
                    "Path update failed",
                    {"operation": "update_path", "error": exc, "path": path},
                )
            )
            return
        if next_state is prev:
            return
        self._dispatch_patch(root_patch(prev, next_state))

    # --- transaction ---

    def transaction(self, mutator: Callable[[Any], Any]) -> bool:
        """Run ``mutator`` against a draft and commit the result as one change.

        The mutator edits the draft in place or returns a replacement mapping.
        Returns False (and reports a TransactionError) if it raises; nothing
        it did is kept.
        """
        if self._destroyed:
            self._refuse("transaction")
            return False
        self._plugins.run("on_transaction_start", self)
        prev = self._state
        arena = DraftArena(prev)
        try:
            result = arena.commit(mutator(arena.root))
            if not isinstance(result, Mapping):
                raise TypeError(f"Transaction produced {type(result).__name__}, expected a mapping")
        except Exception as exc:
            error = TransactionError(
                "Transaction failed",
                {"operation": "transaction", "error": exc},
            )
            self._report(error)
            self._plugins.run("on_transaction_end", False, self, None, error)
            return False
        finally:
            arena.revoke()

        patch = root_patch(prev, result)
        if patch:
            self._dispatch_patch(patch)
        self._plugins.run("on_transaction_end", True, self, patch, None)
        return True

    # --- batching ---

    @contextmanager
    def batching(self) -> Iterator[None]:
        """Defer history and notification to the outermost exit.

        Usage:
            with store.batching():
                store.dispatch({"a": 1})
                store.update_path("b.c", 2)
            # subscribers run once here

        If the body raises, state rolls back to its value at entry and the
        exception propagates.
        """
        if self._destroyed:
            self._refuse("batch")
            yield
            return
        entry_state = self._state
        entry_record = self._batch_record
        mark = len(self._batch_actions)
        if self._batch_depth == 0:
            self._batch_start = self._state
            self._batch_actions = []
            self._batch_record = entry_record = False
            mark = 0
            self._plugins.run("on_batch_start", self)
        self._batch_depth += 1
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            self._state = entry_state
            self._batch_record = entry_record
            del self._batch_actions[mark:]
            raise
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._flush_batch(failed)

    def _flush_batch(self, failed: bool) -> None:
        start, actions, record = self._batch_start, self._batch_actions, self._batch_record
        self._batch_start, self._batch_actions, self._batch_record = None, [], False
        if self._state is not start:
            changes = diff_states(start, self._state)
            if changes:
                logger.debug("[%s] flushing batch of %d action(s)", self._name, len(actions))
                self._finish(start, list(actions), changes, record)
            else:
                self._state = start
        self._plugins.run("on_batch_end", [] if failed else actions, self._state, self)

    def batch(self, fn: Callable[[], Any]) -> Any:
        """Run ``fn`` inside ``batching()``; a raised error is reported."""
        if self._destroyed:
            self._refuse("batch")
            return None
        try:
            with self.batching():
                return fn()
        except Exception as exc:
            self._report(
                StoreError(
                    "Batch execution failed",
                    {"operation": "batch", "error": exc},
                )
            )
            return None

    # --- selectors ---

    def select(self, *args: Any) -> Selector:
        """``select(*inputs, combiner)``: a memoized selector over this store."""
        return self._selectors.select(*args)

    def select_with(self, inputs: Sequence, param_fn: Callable[..., Callable]) -> ParameterizedSelector:
        return self._selectors.select_with(inputs, param_fn)

    def _own(self, selector: Any) -> Selector:
        if isinstance(selector, Selector):
            if selector._graph is not self._selectors:
                raise StoreError("Selector belongs to another store", {"operation": "subscribe"})
            return selector
        # Unregistered, so it is freed with its subscription.
        return Selector(self._selectors, (), selector)

    # --- subscriptions ---

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """``listener(new_state, prev_state)`` after every committed change."""
        if self._destroyed:
            self._refuse("subscribe")
            return _noop
        return self._subscriptions.add(Subscription(listener, self._report))

    def _watch(
        self,
        read: Callable[[Mapping], Any],
        listener: Listener,
        *,
        equality_fn: Callable[[Any, Any], bool] = deep_equal,
        debounce_ms: float = 0,
        immediate: bool = False,
        path: tuple | None = None,
    ) -> Unsubscribe:
        subscription = WatchSubscription(
            listener,
            self._report,
            read,
            self._state,
            equality_fn=equality_fn,
            debounce_ms=debounce_ms,
            path=path,
        )
        unsubscribe = self._subscriptions.add(subscription)
        if immediate:
            subscription.fire_immediately()
        return unsubscribe

    def subscribe_to(self, selector: Any, listener: Listener, **options: Any) -> Unsubscribe:
        """``listener(new, old)`` when the selector's output changes.

        Options: ``equality_fn`` (default deep equality), ``debounce_ms``,
        ``immediate``.
        """
        if self._destroyed:
            self._refuse("subscribe_to")
            return _noop
        return self._watch(self._own(selector).evaluate, listener, **options)

    def subscribe_to_multiple(self, selectors: Sequence[Any], listener: Listener, **options: Any) -> Unsubscribe:
        """``listener(new_values, old_values)`` with a tuple of every output."""
        if self._destroyed:
            self._refuse("subscribe_to_multiple")
            return _noop
        nodes = [self._own(selector) for selector in selectors]

        def read(state: Mapping) -> tuple:
            return tuple(node.evaluate(state) for node in nodes)

        return self._watch(read, listener, **options)

    def subscribe_to_path(self, path: Path, listener: Listener, **options: Any) -> Unsubscribe:
        """``listener(new, old)`` when the value at ``path`` changes."""
        if self._destroyed:
            self._refuse("subscribe_to_path")
            return _noop
        keys = normalize_path(path)

        def read(state: Mapping) -> Any:
            return get_path(state, keys)

        return self._watch(read, listener, path=keys, **options)

    # --- history ---

    def can_undo(self, steps: int = 1) -> bool:
        return not self._destroyed and self._history.can_undo(steps)

    def can_redo(self, steps: int = 1) -> bool:
        return not self._destroyed and self._history.can_redo(steps)

    def get_history(self) -> HistorySnapshot:
        return self._history.snapshot()

    def undo(self, steps: int = 1, path: Path | None = None) -> bool:
        """Step back through history; with ``path`` only that branch is restored."""
        return self._travel("undo", steps, path)

    def redo(self, steps: int = 1, path: Path | None = None) -> bool:
        return self._travel("redo", steps, path)

    def _travel(self, operation: str, steps: int, path: Path | None) -> bool:
        if self._destroyed:
            self._refuse(operation)
            return False
        current = self._state
        keys = normalize_path(path) if path is not None else None
        project = None
        if keys:

            def project(snapshot: Mapping) -> Mapping:
                target = get_path(snapshot, keys, MISSING)
                restored = DELETE if target is MISSING else target
                return update_in(current, keys, lambda _current: restored)

        move = self._history.undo if operation == "undo" else self._history.redo
        try:
            change = move(steps, keys, current, project)
        except PathError as exc:
            exc.context.setdefault("operation", operation)
            self._report(exc)
            return False
        if change is None:
            return False
        logger.debug("[%s] %s by %d step(s)", self._name, operation, steps)
        self._commit(change.new_state, change, record_history=False)
        self._plugins.run("on_history_changed", change)
        return True

    def reset(self) -> bool:
        """Back to the construction-time state, with history re-seeded."""
        if self._destroyed:
            self._refuse("reset")
            return False
        self._history.clear(seed=self._initial_state)
        self._commit(self._initial_state, {"type": "reset"}, record_history=False)
        return True

    # --- persistence ---

    def _load_persisted(self, state: Mapping) -> Mapping:
        storage, key = self._options.storage, self._options.persist_key
        if storage is None or not key:
            return state
        try:
            saved = storage.get(key)
        except Exception as exc:
            self._report(
                PersistenceError(
                    "Failed to load persisted state",
                    {"operation": "load", "error": exc, "key": key},
                )
            )
            return state
        if saved is None:
            return state
        if not isinstance(saved, Mapping):
            self._report(
                PersistenceError(
                    "Persisted state is not a mapping",
                    {"operation": "load", "key": key},
                )
            )
            return state
        return apply_patch(state, clone_state(saved))

    def _persist(self) -> None:
        storage, key = self._options.storage, self._options.persist_key
        if storage is None or not key:
            return
        try:
            ok = storage.set(key, self._state)
        except Exception as exc:
            self._report(
                PersistenceError(
                    "Failed to persist state",
                    {"operation": "persist", "error": exc, "key": key},
                )
            )
            return
        if ok is False:
            self._report(
                PersistenceError(
                    "Failed to persist state",
                    {"operation": "persist", "key": key},
                )
            )

    # --- teardown ---

    def destroy(self, *, clear_history: bool = True, remove_persisted_state: bool = False) -> None:
        """Drop every subscription and selector. Later mutations are ignored."""
        if self._destroyed:
            return
        self._plugins.run("on_destroy", self)
        self._destroyed = True
        with _session_lock:
            if self in _session_stores:
                _session_stores.remove(self)
        self._subscriptions.clear()
        self._selectors.clear()
        if clear_history:
            self._history.clear()
        storage, key = self._options.storage, self._options.persist_key
        if remove_persisted_state and storage is not None and key:
            try:
                storage.remove(key)
            except Exception as exc:
                self._report(
                    PersistenceError(
                        "Failed to remove persisted state",
                        {"operation": "destroy", "error": exc, "key": key},
                    )
                )
        logger.debug("[%s] destroyed", self._name)


class ReadOnlyStore:
    """A view of a Store without its mutation methods."""

    __slots__ = ("_store",)

    def __init__(self, store: Store) -> None:
        self._store = store

    def get_state(self) -> Mapping:
        return self._store.get_state()

    def get_name(self) -> str:
        return self._store.get_name()

    def get_session_id(self) -> str:
        return self._store.get_session_id()

    def get_history(self) -> HistorySnapshot:
        return self._store.get_history()

    def select(self, *args: Any) -> Selector:
        return self._store.select(*args)

    def select_with(self, inputs: Sequence, param_fn: Callable[..., Callable]) -> ParameterizedSelector:
        return self._store.select_with(inputs, param_fn)

    def subscribe(self, listener: Listener) -> Unsubscribe:
        return self._store.subscribe(listener)

    def subscribe_to(self, selector: Any, listener: Listener, **options: Any) -> Unsubscribe:
        return self._store.subscribe_to(selector, listener, **options)

    def subscribe_to_multiple(self, selectors: Sequence[Any], listener: Listener, **options: Any) -> Unsubscribe:
        return self._store.subscribe_to_multiple(selectors, listener, **options)

    def subscribe_to_path(self, path: Path, listener: Listener, **options: Any) -> Unsubscribe:
        return self._store.subscribe_to_path(path, listener, **options)


def create_store(initial_state: Mapping, options: StoreOptions | None = None, **kwargs: Any) -> Store:
    """Build a Store from a mapping of initial state.

    Options come as a StoreOptions, as keyword arguments, or both (keywords
    win). Raises StateError for a non-mapping or cyclic initial state.

    Usage:
        store = create_store({"count": 0}, name="counter", history_limit=50)
        store.dispatch({"count": 1})
        store.undo()
    """
    if options is None:
        options = StoreOptions(**kwargs)
    elif kwargs:
        options = dataclasses.replace(options, **kwargs)
    if not isinstance(initial_state, Mapping):
        raise StateError(
            "Initial state must be a mapping",
            {"operation": "create_store", "state": initial_state},
        )
    return Store(clone_state(initial_state), options)


def get_current_session_stores() -> list[str]:
    """Names of the stores created in this session and not yet destroyed."""
    with _session_lock:
        return [store.get_name() for store in _session_stores]


def cleanup_current_session_stores(*, clear_history: bool = True, remove_persisted_state: bool = False) -> int:
    """Destroy every live store of this session; returns how many were destroyed."""
    with _session_lock:
        stores = list(_session_stores)
    count = 0
    for store in stores:
        try:
            store.destroy(clear_history=clear_history, remove_persisted_state=remove_persisted_state)
        except Exception:
            logger.exception("[%s] destroy failed during session cleanup", store.get_name())
            continue
        count += 1
    return count
