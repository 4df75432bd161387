"""Context snapshot construction from payloads and raw tracking rows."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import ContextSnapshot, MedsContext, MoodContext, SleepContext
from .utils import as_number, average, parse_tags, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

STRESS_TAGS = frozenset({"stressed", "overwhelmed", "anxious", "stress"})
SOCIAL_TAGS = frozenset({"social", "connected"})
TAKEN_STATUSES = frozenset({"taken"})
MISSED_STATUSES = frozenset({"missed", "skipped"})

_MINUTES_PER_DAY = 24 * 60


def _expand_dotted(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn ``{"mood.latest": 2}`` into ``{"mood": {"latest": 2}}``."""

    expanded: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, Mapping):
            value = _expand_dotted(value)
        if isinstance(key, str) and "." in key:
            head, _, tail = key.partition(".")
            _merge(expanded, {head: _expand_dotted({tail: value})})
        else:
            _merge(expanded, {key: value})
    return expanded


def _merge(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge(current, value)
        elif key not in target:
            target[key] = dict(value) if isinstance(value, Mapping) else value


def _group(payload: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = payload.get(name)
    return value if isinstance(value, Mapping) else {}


def _nested_number(group: Mapping[str, Any], *paths: str) -> Optional[float]:
    for path in paths:
        node: Any = group
        for part in path.split("."):
            node = node.get(part) if isinstance(node, Mapping) else None
        number = as_number(node)
        if number is not None:
            return number
    return None


def _flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _int_or_none(value: Optional[float]) -> Optional[int]:
    return int(value) if value is not None else None


def snapshot_from_dict(payload: Mapping[str, Any]) -> ContextSnapshot:
    """Build a snapshot from a nested camelCase payload.

    Unknown keys are ignored and mistyped values are treated as absent, so a
    provider adding fields never breaks evaluation.
    """

    data = _expand_dotted(payload or {})
    mood_raw = _group(data, "mood")
    sleep_raw = _group(data, "sleep")
    meds_raw = _group(data, "meds") or _group(data, "medication")

    tags = tuple(parse_tags(mood_raw.get("tags") if "tags" in mood_raw else data.get("tags")))
    mood = MoodContext(
        latest=_nested_number(mood_raw, "latest", "last"),
        trend3d_pct=_nested_number(mood_raw, "trend3dPct", "trendPct"),
        delta_vs_baseline=_nested_number(mood_raw, "deltaVsBaseline"),
        tags=tags,
    )
    sleep = SleepContext(
        last_night_hours=_nested_number(sleep_raw, "lastNightHours", "lastNight.hours"),
        avg7d_hours=_nested_number(sleep_raw, "avg7dHours", "avg7d.hours"),
        sparse_data=_flag(sleep_raw.get("sparseData")),
        midpoint_delta_min=_nested_number(sleep_raw, "midpointDeltaMin", "midpoint.deltaMin"),
    )
    meds = MedsContext(
        adherence_pct7d=_nested_number(meds_raw, "adherencePct7d"),
        missed_doses3d=_int_or_none(_nested_number(meds_raw, "missedDoses3d")),
        has_unknown_status=_flag(meds_raw.get("hasUnknownStatus")),
    )
    flags = {
        str(name): value
        for name, value in _group(data, "flags").items()
        if isinstance(value, bool)
    }
    return ContextSnapshot(
        ts=parse_timestamp(data.get("ts")),
        mood=mood if mood != MoodContext() else None,
        sleep=sleep if sleep != SleepContext() else None,
        meds=meds if meds != MedsContext() else None,
        steps_last_day=_int_or_none(_nested_number(_group(data, "steps"), "lastDay")),
        days_since_social=_int_or_none(_nested_number(_group(data, "behavior"), "daysSinceSocial")),
        flags=flags,
    )


@dataclass(slots=True)
class _MoodEntry:
    rating: Optional[float]
    ts: Optional[datetime]
    tags: List[str]


def _mood_entries(moods: Iterable[Mapping[str, Any]]) -> List[_MoodEntry]:
    entries = []
    for row in moods:
        rating = as_number(row.get("rating", row.get("mood")))
        ts = parse_timestamp(row.get("ts") or row.get("created_at"))
        entries.append(_MoodEntry(rating=rating, ts=ts, tags=parse_tags(row.get("tags"))))
    floor = datetime.min.replace(tzinfo=timezone.utc)
    entries.sort(key=lambda entry: entry.ts or floor, reverse=True)
    return entries


def mood_context(moods: Iterable[Mapping[str, Any]], now: datetime) -> tuple[MoodContext | None, Dict[str, bool], Optional[int]]:
    entries = _mood_entries(moods)
    if not entries:
        return None, {}, None
    ratings = [entry.rating for entry in entries]
    latest = ratings[0]
    baseline = average(r for r in ratings[1:15] if r is not None)
    delta = latest - baseline if latest is not None and baseline is not None else None

    recent = average(r for r in ratings[:3] if r is not None)
    past = average(r for r in ratings[3:10] if r is not None)
    if past is None:
        past = baseline if baseline is not None else average(r for r in ratings if r is not None)
    trend = (recent - past) / past * 100 if recent is not None and past else None

    tags = tuple(dict.fromkeys(entries[0].tags))
    stress = any(tag.lower() in STRESS_TAGS for tag in tags)

    days_since_social = None
    for entry in entries:
        if entry.ts is not None and any(tag.lower() in SOCIAL_TAGS for tag in entry.tags):
            elapsed = now - entry.ts
            if elapsed >= timedelta(0):
                days_since_social = elapsed.days
            break

    mood = MoodContext(latest=latest, trend3d_pct=trend, delta_vs_baseline=delta, tags=tags)
    return mood, {"stress": stress}, days_since_social


def _session_bounds(row: Mapping[str, Any]) -> tuple[datetime, datetime] | None:
    start = parse_timestamp(row.get("start_time"))
    end = parse_timestamp(row.get("end_time"))
    if start is None or end is None or end <= start:
        return None
    return start, end


def _midpoint_minutes(start: datetime, end: datetime) -> float:
    midpoint = start + (end - start) / 2
    return midpoint.hour * 60 + midpoint.minute


def _circular_delta(a: float, b: float) -> float:
    diff = abs(a - b) % _MINUTES_PER_DAY
    return min(diff, _MINUTES_PER_DAY - diff)


def _circular_mean(minutes: Sequence[float]) -> Optional[float]:
    """Mean clock time of ``minutes``, so 23:45 and 00:05 average near midnight."""

    if not minutes:
        return None
    angles = [m / _MINUTES_PER_DAY * 2 * math.pi for m in minutes]
    sin_sum = sum(math.sin(a) for a in angles)
    cos_sum = sum(math.cos(a) for a in angles)
    # Evenly spread times have no meaningful mean.
    if math.hypot(sin_sum, cos_sum) < 1e-9:
        return None
    return math.atan2(sin_sum, cos_sum) / (2 * math.pi) * _MINUTES_PER_DAY % _MINUTES_PER_DAY


def sleep_context(sessions: Iterable[Mapping[str, Any]], now: datetime) -> SleepContext | None:
    bounds = [b for b in (_session_bounds(row) for row in sessions) if b is not None]
    if not bounds:
        return None
    bounds.sort(key=lambda pair: pair[1], reverse=True)
    durations = [(end - start).total_seconds() / 3600 for start, end in bounds]
    avg7d = average(durations[:7])

    week_start = now - timedelta(days=7)
    nights = {end.date() for _, end in bounds if end >= week_start}

    midpoints = [_midpoint_minutes(start, end) for start, end in bounds]
    baseline_mid = _circular_mean(midpoints[1:8])
    drift = _circular_delta(midpoints[0], baseline_mid) if baseline_mid is not None else None

    return SleepContext(
        last_night_hours=round(durations[0], 2),
        avg7d_hours=round(avg7d, 2) if avg7d is not None else None,
        sparse_data=len(nights) < 3,
        midpoint_delta_min=round(drift, 1) if drift is not None else None,
    )


def meds_context(logs: Iterable[Mapping[str, Any]], now: datetime) -> MedsContext | None:
    week_start = now - timedelta(days=7)
    recent_start = now - timedelta(days=3)
    taken = missed = missed_recent = 0
    unknown = False
    seen = False
    for row in logs:
        ts = parse_timestamp(row.get("scheduled_for") or row.get("taken_at") or row.get("created_at"))
        if ts is None or ts < week_start or ts > now:
            continue
        seen = True
        status = str(row.get("status") or "").strip().lower()
        if status in TAKEN_STATUSES:
            taken += 1
        elif status in MISSED_STATUSES:
            missed += 1
            if ts >= recent_start:
                missed_recent += 1
        else:
            unknown = True
    if not seen:
        return None
    known = taken + missed
    return MedsContext(
        adherence_pct7d=round(taken / known * 100) if known else None,
        missed_doses3d=missed_recent,
        has_unknown_status=unknown,
    )


def latest_steps(activity: Iterable[Mapping[str, Any]]) -> Optional[int]:
    best: tuple[datetime, int] | None = None
    for row in activity:
        day = parse_timestamp(row.get("activity_date"))
        steps = as_number(row.get("steps"))
        if day is None or steps is None:
            continue
        if best is None or day > best[0]:
            best = (day, int(steps))
    return best[1] if best else None


def build_snapshot(
    *,
    moods: Sequence[Mapping[str, Any]] = (),
    sleep_sessions: Sequence[Mapping[str, Any]] = (),
    med_logs: Sequence[Mapping[str, Any]] = (),
    activity: Sequence[Mapping[str, Any]] = (),
    now: datetime | None = None,
) -> ContextSnapshot:
    """Aggregate raw mood, sleep, medication and activity rows into a snapshot."""

    current = parse_timestamp(now) or utcnow()
    mood, flags, days_since_social = mood_context(moods, current)
    snapshot = ContextSnapshot(
        ts=current,
        mood=mood,
        sleep=sleep_context(sleep_sessions, current),
        meds=meds_context(med_logs, current),
        steps_last_day=latest_steps(activity),
        days_since_social=days_since_social,
        flags=flags,
    )
    logger.debug(
        "Built snapshot from %d moods, %d sleep sessions, %d med logs",
        len(moods),
        len(sleep_sessions),
        len(med_logs),
    )
    return snapshot
