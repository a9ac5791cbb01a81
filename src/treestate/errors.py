"""Error taxonomy for treestate.

Every error carries a ``context`` dict describing where it happened
(``operation``, the wrapped ``error``, the ``path`` and so on). Core
mutation channels never raise these to the caller; they are routed to the
store's ``on_error`` callback instead. ``StateError`` is the exception:
``create_store`` raises it for a malformed initial state.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for all store errors."""

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    @property
    def operation(self) -> str:
        return self.context.get("operation", "unknown")

    @property
    def cause(self) -> BaseException | None:
        return self.context.get("error")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, operation={self.operation!r})"


class StateError(StoreError):
    """Initial state is not a mapping, or contains a cycle."""


class MiddlewareError(StoreError):
    """A middleware raised while handling an action."""


class TransactionError(StoreError):
    """A transaction mutator raised; its mutations were discarded."""


class PathError(StoreError):
    """A path could not be traversed or was empty."""


class PluginError(StoreError):
    """A plugin hook raised."""


class ValidationError(StoreError):
    """A validator middleware rejected an action."""


class PersistenceError(StoreError):
    """The persistence adapter refused or failed an operation."""
