"""Utilities supporting Insight Engine modules."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List

_TAG_SEPARATORS = re.compile(r"[\s\-_]+")


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def normalize_text(value: Any) -> str:
    """Lowercase text and collapse whitespace, hyphens and underscores.

    ``"Stressed-Out"`` and ``" stressed  out "`` both become ``"stressed out"``.
    """

    return _TAG_SEPARATORS.sub(" ", str(value)).strip().lower()


def parse_tags(raw: Any) -> List[str]:
    """Coerce a tag payload (list, JSON-ish string or comma list) to clean strings."""

    if not raw:
        return []
    if isinstance(raw, str):
        stripped = raw.strip()
        if stripped.startswith("[") and stripped.endswith("]"):
            stripped = stripped[1:-1]
        items: Iterable[Any] = (part.strip().strip("\"'") for part in stripped.split(","))
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = raw
    else:
        return []
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse datetimes, ISO-8601 strings and epoch milliseconds into aware UTC datetimes.

    Returns ``None`` when the value cannot be interpreted. Naive datetimes are
    assumed to be UTC.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def as_number(value: Any) -> float | None:
    """Return ``value`` as a finite float, or ``None`` for bools, text and NaN."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def average(values: Iterable[float]) -> float | None:
    items = list(values)
    if not items:
        return None
    return sum(items) / len(items)
