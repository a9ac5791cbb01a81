"""Structural equality over state trees.

One recursive routine, parameterized by container kind, shared by the diff
engine, the no-op checks of the update channels and selector output
stabilization.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Set

# Immutable leaves compared by value when checking "reference" equality.
_SCALARS = (str, int, float, complex, bytes, bool, type(None))


def is_same(a: object, b: object) -> bool:
    """Reference equality, with immutable scalars compared by value.

    Two equal ints or strings count as the same even when Python built
    them as separate objects.
    """
    if a is b:
        return True
    if type(a) is not type(b) or not isinstance(a, _SCALARS):
        return False
    if isinstance(a, float) and math.isnan(a) and math.isnan(b):
        return True
    return a == b


def deep_equal(a: object, b: object) -> bool:
    """Structural equality for dicts, sequences, sets and leaves."""
    if a is b:
        return True

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b:
                return False
            if not deep_equal(value, b[key]):
                return False
        return True

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, Set) and isinstance(b, Set):
        return len(a) == len(b) and a == b

    if isinstance(a, float) and isinstance(b, float):
        if math.isnan(a) and math.isnan(b):
            return True

    if type(a) is not type(b):
        # bool is an int subclass; keep True != 1 for state comparisons.
        if isinstance(a, bool) or isinstance(b, bool):
            return False
        if not (isinstance(a, (int, float)) and isinstance(b, (int, float))):
            return False

    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False
