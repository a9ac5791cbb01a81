"""Middleware chain for dispatched patches.

A middleware is ``fn(action, prev_state, next)``. It may inspect or replace
the action and must call ``next(action)`` to continue; returning without
calling it aborts the dispatch. The chain runs to completion before anything
is committed, so a middleware that raises (even after calling ``next``)
leaves the state untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from treestate.diff import apply_patch
from treestate.errors import MiddlewareError, StoreError, ValidationError

logger = logging.getLogger("treestate.middleware")

Middleware = Callable[[Mapping, Mapping, Callable[[Mapping], None]], Any]

_ABORTED = object()


class MiddlewareExecutor:
    """Runs an ordered middleware list over one action."""

    def __init__(self, middleware: Sequence[Middleware]) -> None:
        self._middleware = list(middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def execute(self, action: Mapping, prev_state: Mapping) -> Mapping | None:
        """Return the action that reached the end of the chain, or None.

        Raises MiddlewareError wrapping whatever a middleware raised.
        """
        if not self._middleware:
            return action

        outcome: list[Any] = [_ABORTED]
        index = 0

        def next_middleware(payload: Mapping) -> None:
            nonlocal index
            if index < len(self._middleware):
                current = self._middleware[index]
                index += 1
                try:
                    current(payload, prev_state, next_middleware)
                except MiddlewareError:
                    raise
                except Exception as exc:
                    raise MiddlewareError(
                        "Middleware execution failed",
                        {
                            "operation": "middleware",
                            "error": exc,
                            "middleware": getattr(current, "__name__", repr(current)),
                            "action": payload,
                        },
                    ) from exc
            else:
                outcome[0] = payload

        next_middleware(action)
        if outcome[0] is _ABORTED:
            logger.debug("Action aborted by middleware: %r", action)
            return None
        return outcome[0]


def create_validator_middleware(
    validator: Callable[[Mapping, Mapping, Mapping], bool],
    on_invalid: Callable[[StoreError, Mapping], None] | None = None,
) -> Middleware:
    """Middleware that blocks patches whose resulting state fails ``validator``.

    ``validator(next_state, action, prev_state)`` sees the state the patch
    would produce. A falsy result blocks the action and hands a
    ValidationError to ``on_invalid`` (or logs it). A validator that raises
    lets the action through, so a broken validator never freezes the store.

    Usage:
        no_negatives = create_validator_middleware(
            lambda state, action, prev: state["count"] >= 0
        )
        store = create_store({"count": 0}, middleware=[no_negatives])
    """

    def _report(error: ValidationError, action: Mapping) -> None:
        if on_invalid is not None:
            on_invalid(error, action)
        else:
            logger.error("%s: %r", error.message, error.context)

    def validator_middleware(action: Mapping, prev_state: Mapping, next_fn: Callable[[Mapping], None]) -> None:
        next_state = apply_patch(prev_state, action)
        try:
            valid = validator(next_state, action, prev_state)
        except Exception as exc:
            _report(
                ValidationError(
                    "Validation middleware error",
                    {"operation": "validate", "error": exc, "action": action},
                ),
                action,
            )
            next_fn(action)
            return
        if not valid:
            _report(
                ValidationError(
                    "State update validation failed",
                    {"operation": "validate", "state": next_state, "action": action},
                ),
                action,
            )
            return
        next_fn(action)

    return validator_middleware
