"""Generic evaluation of catalog conditions against a context snapshot.

Absence is never falsity: a missing field satisfies no operator except
``absent``, and no comparison ever raises on unexpected value types.
"""

from __future__ import annotations

from typing import Any, Iterable

from .models import NUMERIC_OPERATORS, Condition, ContextSnapshot, resolve_field
from .utils import as_number, normalize_text


def condition_holds(condition: Condition, snapshot: ContextSnapshot) -> bool:
    if condition.is_group:
        return all(condition_holds(member, snapshot) for member in condition.members)

    actual = resolve_field(snapshot, condition.field)
    op = condition.op
    if op == "absent":
        return actual is None
    if actual is None:
        return False
    if op == "present":
        return True
    if op in NUMERIC_OPERATORS:
        return _compare_numbers(op, actual, condition.value)
    if op == "eq":
        return _equals(actual, condition.value)
    if op == "ne":
        return not _equals(actual, condition.value)
    if op == "contains":
        return _contains(actual, condition.value)
    if op == "in":
        options = condition.value if isinstance(condition.value, (list, tuple, set, frozenset)) else ()
        return any(_equals(actual, option) for option in options)
    return False


def _compare_numbers(op: str, actual: Any, expected: Any) -> bool:
    left = as_number(actual)
    right = as_number(expected)
    if left is None or right is None:
        return False
    if op == "lt":
        return left < right
    if op == "lte":
        return left <= right
    if op == "gt":
        return left > right
    return left >= right


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        # Flags compare against true/false or the legacy 1/0 spelling.
        if actual in (True, False, 0, 1) and expected in (True, False, 0, 1):
            return bool(actual) == bool(expected)
        return False
    left, right = as_number(actual), as_number(expected)
    if left is not None and right is not None:
        return left == right
    if isinstance(actual, str) and isinstance(expected, str):
        return normalize_text(actual) == normalize_text(expected)
    return False


def _contains(actual: Any, needles: Any) -> bool:
    if isinstance(actual, str):
        haystack: Iterable[Any] = (actual,)
    elif isinstance(actual, (list, tuple, set, frozenset)):
        haystack = actual
    else:
        return False
    wanted = needles if isinstance(needles, (list, tuple)) else (needles,)
    normalized_needles = [normalize_text(n) for n in wanted if isinstance(n, str) and normalize_text(n)]
    if not normalized_needles:
        return False
    for item in haystack:
        if not isinstance(item, str):
            continue
        text = normalize_text(item)
        if any(needle in text for needle in normalized_needles):
            return True
    return False
