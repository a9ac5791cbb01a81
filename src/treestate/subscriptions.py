"""Subscriptions: listeners notified after each committed change.

Every flavor lives in one ordered list, so listeners run in registration
order regardless of kind. A notification pass walks a snapshot of that list:
subscriptions added during the pass wait for the next one, subscriptions
removed during the pass are skipped.

Watched subscriptions (selector, multi-selector, path) remember the last
value they delivered and only call the listener when ``equality_fn`` says
the new value differs. Path subscriptions also consult the commit's change
set first and skip the read entirely when their path was not touched.

Debounced subscriptions hand values to a ``_Debouncer`` instead: the first
change starts a daemon ``threading.Timer``, later changes only replace the
pending value, and the listener runs on the timer thread once the window
closes.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from treestate.diff import Change, touches
from treestate.equality import deep_equal
from treestate.errors import StoreError
from treestate.paths import PathKey

Listener = Callable[[Any, Any], None]
Unsubscribe = Callable[[], None]

_UNSET = object()


class Subscription:
    """Whole-state listener: ``listener(new_state, prev_state)`` on every commit."""

    __slots__ = ("listener", "active", "_report")

    def __init__(self, listener: Listener, report: Callable[[StoreError], None]) -> None:
        self.listener = listener
        self.active = True
        self._report = report

    def notify(self, state: Mapping, prev_state: Mapping, changes: Sequence[Change] | None) -> None:
        self._call(state, prev_state)

    def cancel(self) -> None:
        self.active = False

    def _call(self, new: Any, old: Any) -> None:
        if not self.active:
            return
        try:
            self.listener(new, old)
        except Exception as exc:
            self._report(
                StoreError(
                    "Subscriber callback failed",
                    {"operation": "notify", "error": exc},
                )
            )


class _Debouncer:
    """Collapses a burst of changes into one delayed call."""

    def __init__(self, seconds: float, fire: Listener, equality_fn: Callable[[Any, Any], bool]) -> None:
        self._seconds = seconds
        self._fire = fire
        self._equality_fn = equality_fn
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._start: Any = _UNSET
        self._latest: Any = _UNSET

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def push(self, value: Any, old: Any) -> None:
        with self._lock:
            self._latest = value
            if self._timer is None:
                self._start = old
                t = threading.Timer(self._seconds, self._flush)
                t.daemon = True
                self._timer = t
                t.start()

    def _flush(self) -> None:
        with self._lock:
            latest, start = self._latest, self._start
            self._timer = None
            self._start = self._latest = _UNSET
        if latest is _UNSET or self._equality_fn(latest, start):
            return
        self._fire(latest, start)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._start = self._latest = _UNSET


class WatchSubscription(Subscription):
    """Listener on a derived value: ``listener(new_value, old_value)``."""

    __slots__ = ("_read", "_equality_fn", "_path", "_last", "_debouncer")

    def __init__(
        self,
        listener: Listener,
        report: Callable[[StoreError], None],
        read: Callable[[Mapping], Any],
        state: Mapping,
        *,
        equality_fn: Callable[[Any, Any], bool] | None = None,
        debounce_ms: float = 0,
        path: tuple[PathKey, ...] | None = None,
    ) -> None:
        super().__init__(listener, report)
        self._read = read
        self._equality_fn = equality_fn or deep_equal
        self._path = path
        self._last = read(state)
        self._debouncer = (
            _Debouncer(debounce_ms / 1000.0, self._call, self._equality_fn)
            if debounce_ms and debounce_ms > 0
            else None
        )

    @property
    def last_value(self) -> Any:
        return self._last

    def notify(self, state: Mapping, prev_state: Mapping, changes: Sequence[Change] | None) -> None:
        if self._path is not None and changes is not None and not touches(changes, self._path):
            return
        try:
            value = self._read(state)
            if self._equality_fn(value, self._last):
                return
        except Exception as exc:
            self._report(
                StoreError(
                    "Subscription selector failed",
                    {"operation": "notify", "error": exc},
                )
            )
            return
        old, self._last = self._last, value
        if self._debouncer is not None:
            self._debouncer.push(value, old)
        else:
            self._call(value, old)

    def fire_immediately(self) -> None:
        self._call(self._last, self._last)

    def cancel(self) -> None:
        super().cancel()
        if self._debouncer is not None:
            self._debouncer.cancel()


class SubscriptionManager:
    """Ordered registry of one store's subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def add(self, subscription: Subscription) -> Unsubscribe:
        """Register ``subscription``. Returns a function that removes it."""
        self._subscriptions.append(subscription)

        def _unsubscribe() -> None:
            subscription.cancel()
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def notify(self, state: Mapping, prev_state: Mapping, changes: Sequence[Change] | None = None) -> None:
        for subscription in list(self._subscriptions):
            if subscription.active:
                subscription.notify(state, prev_state, changes)

    def clear(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
