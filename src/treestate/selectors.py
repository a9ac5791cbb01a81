"""Selectors: memoized derived values over one store's state.

A Selector caches its output against two things: the state object it last
saw and the tuple of input values that produced the output. Evaluating with
the same state is free. With a new state, inputs are re-read (upstream
selectors first, each with its own cache) and the combiner only runs when an
input is no longer reference-equal to the cached one. An output that is
deep-equal to the previous one is replaced by the previous reference, so
downstream selectors and subscribers see an unchanged value.

Selectors are bound to the graph (and store) that created them.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Generic, TypeVar

from treestate.equality import deep_equal, is_same
from treestate.errors import StoreError

logger = logging.getLogger("treestate.selectors")

T = TypeVar("T")

_UNSET = object()


class Selector(Generic[T]):
    """A memoized zero-argument view of the store state."""

    __slots__ = (
        "_graph",
        "_inputs",
        "_combiner",
        "_state",
        "_input_values",
        "_value",
        "_release",
        "recomputations",
        "last_accessed",
        "__weakref__",
    )

    def __init__(
        self,
        graph: SelectorGraph,
        inputs: tuple,
        combiner: Callable[..., T],
        release: Callable[[Selector], None] | None = None,
    ) -> None:
        self._graph = graph
        self._inputs = inputs
        self._combiner = combiner
        self._release = release
        self._state: Any = _UNSET
        self._input_values: tuple = ()
        self._value: Any = _UNSET
        self.recomputations = 0
        self.last_accessed = time.monotonic()

    @property
    def upstream(self) -> frozenset[Selector]:
        """Selectors this one reads from."""
        return frozenset(item for item in self._inputs if isinstance(item, Selector))

    @property
    def last_value(self) -> T | None:
        return None if self._value is _UNSET else self._value

    def __call__(self) -> T:
        return self.evaluate(self._graph.get_state())

    def evaluate(self, state: Mapping) -> T:
        """Output for ``state``, recomputing only when an input changed."""
        self.last_accessed = time.monotonic()
        cached = self._value is not _UNSET
        if cached and state is self._state:
            return self._value

        if self._inputs:
            values = tuple(
                item.evaluate(state) if isinstance(item, Selector) else item(state)
                for item in self._inputs
            )
        else:
            values = (state,)

        if (
            cached
            and len(values) == len(self._input_values)
            and all(is_same(a, b) for a, b in zip(values, self._input_values))
        ):
            self._state = state
            return self._value

        result = self._combiner(*values)
        self.recomputations += 1
        if cached and deep_equal(result, self._value):
            result = self._value
        self._state = state
        self._input_values = values
        self._value = result
        return result

    def dispose(self) -> None:
        """Drop the cache and unregister from the graph."""
        self._state = _UNSET
        self._input_values = ()
        self._value = _UNSET
        if self._release is not None:
            self._release(self)

    def __repr__(self) -> str:
        name = getattr(self._combiner, "__name__", "selector")
        state = "empty" if self._value is _UNSET else f"cached={self._value!r}"
        return f"Selector({name}, {state})"


class ParameterizedSelector(Generic[T]):
    """Factory of selectors keyed by their runtime arguments.

    Usage:
        by_id = store.select_with(
            [lambda s: s["todos"]],
            lambda todo_id: lambda todos: next(t for t in todos if t["id"] == todo_id),
        )
        by_id(3)()  # the todo with id 3
        by_id(3) is by_id(3)  # True
    """

    def __init__(
        self,
        graph: SelectorGraph,
        inputs: tuple,
        param_fn: Callable[..., Callable[..., T]],
        release: Callable[[ParameterizedSelector], None] | None = None,
    ) -> None:
        self._graph = graph
        self._inputs = inputs
        self._param_fn = param_fn
        self._release = release
        self._cache: dict[Any, Selector[T]] = {}

    def __call__(self, *args: Any, **kwargs: Any) -> Selector[T]:
        key = make_key(args, kwargs)
        node = self._cache.get(key)
        if node is None:
            combiner = self._param_fn(*args, **kwargs)
            if not callable(combiner):
                raise TypeError("select_with parameter function must return a combiner")
            node = Selector(self._graph, self._inputs, combiner, release=self._forget)
            self._cache[key] = node
        else:
            node.last_accessed = time.monotonic()
        return node

    def _forget(self, node: Selector) -> None:
        for key, cached in list(self._cache.items()):
            if cached is node:
                del self._cache[key]

    def sweep(self, max_idle: float, now: float) -> int:
        """Forget entries not used for more than ``max_idle`` seconds."""
        idle = [node for node in list(self._cache.values()) if now - node.last_accessed > max_idle]
        for node in idle:
            self._forget(node)
        return len(idle)

    def clear(self) -> None:
        for node in list(self._cache.values()):
            node.dispose()
        self._cache.clear()

    def dispose(self) -> None:
        """Drop every cached selector and unregister from the graph."""
        self.clear()
        if self._release is not None:
            self._release(self)

    def __len__(self) -> int:
        return len(self._cache)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        items = ((_freeze(k), _freeze(v)) for k, v in value.items())
        return ("dict", tuple(sorted(items, key=repr)))
    if isinstance(value, (list, tuple)):
        return (type(value).__name__, tuple(_freeze(item) for item in value))
    if isinstance(value, (set, frozenset)):
        return ("set", frozenset(_freeze(item) for item in value))
    try:
        hash(value)
    except TypeError:
        return ("id", id(value))
    return (type(value).__qualname__, value)


def make_key(args: tuple, kwargs: Mapping) -> tuple:
    """Stable cache key for an argument list; equal arguments give equal keys."""
    return (_freeze(args), _freeze(dict(kwargs)))


class SelectorGraph:
    """Registry of one store's selectors.

    Registered selectors and parameterized entries can be swept once idle:
    ``sweep`` unregisters them, so the next ``select`` builds a fresh node
    and the old one is freed when nothing else holds it. ``start_sweeper``
    runs ``sweep`` on a daemon ``threading.Timer`` until ``clear``.
    Factories are held weakly.
    """

    def __init__(self, get_state: Callable[[], Mapping]) -> None:
        self.get_state = get_state
        self._nodes: dict[tuple, Selector] = {}
        self._factories: weakref.WeakSet[ParameterizedSelector] = weakref.WeakSet()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._max_idle = 0.0
        self._interval = 0.0

    def _check_inputs(self, inputs: Sequence) -> tuple:
        for item in inputs:
            if isinstance(item, Selector):
                if item._graph is not self:
                    raise StoreError(
                        "Selector belongs to another store",
                        {"operation": "select"},
                    )
            elif not callable(item):
                raise TypeError(f"Selector inputs must be callable, got {item!r}")
        return tuple(inputs)

    def select(self, *args: Any) -> Selector:
        """``select(*inputs, combiner)``; ``select(fn)`` memoizes ``fn(state)``."""
        if not args:
            raise TypeError("select() needs at least a combiner")
        *inputs, combiner = args
        if not callable(combiner):
            raise TypeError("The last argument to select() must be callable")
        inputs = self._check_inputs(inputs)
        key = (combiner, inputs)
        node = self._nodes.get(key)
        if node is None:
            node = Selector(self, inputs, combiner, release=self._forget)
            self._nodes[key] = node
        return node

    def select_with(self, inputs: Sequence, param_fn: Callable[..., Callable]) -> ParameterizedSelector:
        factory = ParameterizedSelector(self, self._check_inputs(inputs), param_fn, release=self._factories.discard)
        self._factories.add(factory)
        return factory

    def _forget(self, node: Selector) -> None:
        for key, cached in list(self._nodes.items()):
            if cached is node:
                del self._nodes[key]

    def sweep(self, max_idle: float, now: float | None = None) -> int:
        """Unregister selectors idle for more than ``max_idle`` seconds.

        Returns how many were removed.
        """
        if now is None:
            now = time.monotonic()
        idle = [node for node in list(self._nodes.values()) if now - node.last_accessed > max_idle]
        for node in idle:
            self._forget(node)
        removed = len(idle)
        for factory in list(self._factories):
            removed += factory.sweep(max_idle, now)
        return removed

    def start_sweeper(self, max_idle: float, interval: float) -> None:
        with self._lock:
            if self._timer is not None:
                return
            self._max_idle = max_idle
            self._interval = interval
            self._arm()

    def _arm(self) -> None:
        t = threading.Timer(self._interval, self._tick)
        t.daemon = True
        self._timer = t
        t.start()

    def _tick(self) -> None:
        try:
            removed = self.sweep(self._max_idle)
        except Exception:
            logger.exception("Selector sweep failed")
        else:
            if removed:
                logger.debug("swept %d idle selector(s)", removed)
        with self._lock:
            if self._timer is not None:
                self._arm()

    def stop_sweeper(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None

    def clear(self) -> None:
        self.stop_sweeper()
        for node in list(self._nodes.values()):
            node.dispose()
        self._nodes.clear()
        for factory in list(self._factories):
            factory.clear()
        self._factories.clear()

    def __len__(self) -> int:
        return len(self._nodes) + sum(len(factory) for factory in list(self._factories))
