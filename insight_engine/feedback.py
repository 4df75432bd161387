"""Feedback index and suppression of matches the user pushed back on."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from .models import FeedbackRecord, Match
from .utils import parse_timestamp

logger = logging.getLogger(__name__)

NOT_RELEVANT_REASONS = frozenset({"not_relevant_now", "not_relevant"})
DEFAULT_COOLDOWN_DAYS = 7
DEFAULT_NOT_RELEVANT_WINDOW = timedelta(hours=24)

_ID_KEYS = ("rule_id", "insight_id", "ruleOrInsightId", "ruleId", "insightId")
_CREATED_KEYS = ("created_at", "createdAt")


def _as_helpful(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return value is True or (not isinstance(value, bool) and value == 1)


def _first(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _to_record(rule_id: Any, payload: Any) -> FeedbackRecord | None:
    if isinstance(payload, FeedbackRecord):
        return payload
    if not isinstance(payload, Mapping):
        return None
    key = str(rule_id if rule_id is not None else _first(payload, _ID_KEYS) or "").strip()
    created_at = parse_timestamp(_first(payload, _CREATED_KEYS))
    if not key or created_at is None:
        logger.debug("Ignoring feedback entry without usable id/timestamp: %r", payload)
        return None
    reason = payload.get("reason")
    return FeedbackRecord(
        rule_id=key,
        helpful=_as_helpful(payload.get("helpful")),
        created_at=created_at,
        reason=str(reason) if reason else None,
    )


class FeedbackIndex:
    """Latest feedback record per rule id."""

    def __init__(self, latest: Mapping[str, FeedbackRecord], *, fingerprint: str = "") -> None:
        self._latest: Dict[str, FeedbackRecord] = dict(latest)
        self.fingerprint = fingerprint or self._default_fingerprint("records")

    def _default_fingerprint(self, kind: str) -> str:
        newest = max((record.created_at for record in self._latest.values()), default=None)
        return f"{kind};n={len(self._latest)};newest={newest.isoformat() if newest else ''}"

    def __len__(self) -> int:
        return len(self._latest)

    def __iter__(self) -> Iterator[FeedbackRecord]:
        return iter(self._latest.values())

    def get_latest(self, rule_id: str) -> FeedbackRecord | None:
        key = str(rule_id or "").strip()
        if not key:
            return None
        return self._latest.get(key)

    @classmethod
    def from_latest_by_id(cls, latest_by_id: Mapping[str, Any] | None) -> "FeedbackIndex":
        """Build from a pre-reduced ``{rule_id: {created_at, helpful, reason}}`` mapping."""

        latest: Dict[str, FeedbackRecord] = {}
        for rule_id, payload in (latest_by_id or {}).items():
            record = _to_record(rule_id, payload)
            if record is not None:
                latest[record.rule_id] = record
        index = cls(latest)
        index.fingerprint = index._default_fingerprint("latestById")
        return index

    @classmethod
    def from_rows(cls, rows: Iterable[Any] | None) -> "FeedbackIndex":
        """Reduce raw feedback rows to the most recent record per rule id.

        Rows may arrive in any order; when two rows for the same id share a
        timestamp the first one seen wins.
        """

        latest: Dict[str, FeedbackRecord] = {}
        count = 0
        for row in rows or ():
            count += 1
            record = _to_record(None, row)
            if record is None:
                continue
            current = latest.get(record.rule_id)
            if current is None or record.created_at > current.created_at:
                latest[record.rule_id] = record
        index = cls(latest)
        newest = max((record.created_at for record in latest.values()), default=None)
        index.fingerprint = f"rows;n={count};newest={newest.isoformat() if newest else ''}"
        return index


def _window(value: timedelta | float | int) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(milliseconds=float(value))


def is_suppressed(
    rule_id: str,
    index: FeedbackIndex | None,
    now: datetime | float | str,
    *,
    cooldown_days: float = DEFAULT_COOLDOWN_DAYS,
    not_relevant_window: timedelta | float = DEFAULT_NOT_RELEVANT_WINDOW,
) -> bool:
    if index is None:
        return False
    latest = index.get_latest(rule_id)
    if latest is None or latest.helpful:
        return False
    current = parse_timestamp(now)
    if current is None:
        return False
    age = current - latest.created_at
    if (latest.reason or "").strip() in NOT_RELEVANT_REASONS:
        return age < _window(not_relevant_window)
    return age < timedelta(days=cooldown_days)


def suppress(
    matches: Sequence[Match],
    index: FeedbackIndex | None,
    now: datetime | float | str,
    *,
    cooldown_days: float = DEFAULT_COOLDOWN_DAYS,
    not_relevant_window: timedelta | float = DEFAULT_NOT_RELEVANT_WINDOW,
) -> List[Match]:
    """Drop matches still inside a negative-feedback window, preserving order.

    ``not_relevant_window`` accepts a timedelta or milliseconds. A missing
    index (feedback could not be fetched) suppresses nothing.
    """

    if index is None or not len(index):
        return list(matches)
    kept: List[Match] = []
    suppressed: List[str] = []
    for match in matches:
        if is_suppressed(
            match.rule_id,
            index,
            now,
            cooldown_days=cooldown_days,
            not_relevant_window=not_relevant_window,
        ):
            suppressed.append(match.rule_id)
            continue
        kept.append(match)
    if suppressed:
        logger.debug("Suppressed %d matches by feedback: %s", len(suppressed), ", ".join(suppressed))
    return kept


def coerce_index(feedback: FeedbackIndex | Mapping[str, Any] | Iterable[Any] | None) -> Optional[FeedbackIndex]:
    """Accept an index, a latest-by-id mapping or raw rows."""

    if feedback is None or isinstance(feedback, FeedbackIndex):
        return feedback
    if isinstance(feedback, Mapping):
        return FeedbackIndex.from_latest_by_id(feedback)
    return FeedbackIndex.from_rows(feedback)
