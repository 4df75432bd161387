"""Data models for context snapshots, rules, matches and feedback."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Tuple

# Operators understood by the matcher. ``all`` marks an all-of group.
NUMERIC_OPERATORS = frozenset({"lt", "lte", "gt", "gte"})
OPERATORS = NUMERIC_OPERATORS | {"eq", "ne", "contains", "in", "present", "absent", "all"}

SCOPES = ("sleep", "mood", "meds", "dashboard", "global")


@dataclass(frozen=True, slots=True)
class MoodContext:
    latest: Optional[float] = None
    trend3d_pct: Optional[float] = None
    delta_vs_baseline: Optional[float] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SleepContext:
    last_night_hours: Optional[float] = None
    avg7d_hours: Optional[float] = None
    sparse_data: Optional[bool] = None
    midpoint_delta_min: Optional[float] = None


@dataclass(frozen=True, slots=True)
class MedsContext:
    adherence_pct7d: Optional[float] = None
    missed_doses3d: Optional[int] = None
    has_unknown_status: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class ContextSnapshot:
    """Point-in-time view of a user's recent health and behaviour signals.

    Every group is optional; rules must treat any field as possibly absent.
    """

    ts: Optional[datetime] = None
    mood: Optional[MoodContext] = None
    sleep: Optional[SleepContext] = None
    meds: Optional[MedsContext] = None
    steps_last_day: Optional[int] = None
    days_since_social: Optional[int] = None
    flags: Mapping[str, bool] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return all(resolve_field(self, path) is None for path in FIELD_PATHS) and not any(
            value is not None for value in self.flags.values()
        )


def _mood(attr: str) -> Callable[[ContextSnapshot], Any]:
    return lambda ctx: getattr(ctx.mood, attr) if ctx.mood else None


def _sleep(attr: str) -> Callable[[ContextSnapshot], Any]:
    return lambda ctx: getattr(ctx.sleep, attr) if ctx.sleep else None


def _meds(attr: str) -> Callable[[ContextSnapshot], Any]:
    return lambda ctx: getattr(ctx.meds, attr) if ctx.meds else None


FIELD_PATHS: Dict[str, Callable[[ContextSnapshot], Any]] = {
    "mood.latest": _mood("latest"),
    "mood.trend3dPct": _mood("trend3d_pct"),
    "mood.deltaVsBaseline": _mood("delta_vs_baseline"),
    "mood.tags": lambda ctx: ctx.mood.tags if ctx.mood and ctx.mood.tags else None,
    "sleep.lastNightHours": _sleep("last_night_hours"),
    "sleep.avg7dHours": _sleep("avg7d_hours"),
    "sleep.sparseData": _sleep("sparse_data"),
    "sleep.midpointDeltaMin": _sleep("midpoint_delta_min"),
    "meds.adherencePct7d": _meds("adherence_pct7d"),
    "meds.missedDoses3d": _meds("missed_doses3d"),
    "meds.hasUnknownStatus": _meds("has_unknown_status"),
    "steps.lastDay": lambda ctx: ctx.steps_last_day,
    "behavior.daysSinceSocial": lambda ctx: ctx.days_since_social,
}

_FLAG_PREFIX = "flags."


def is_known_field(path: str) -> bool:
    if path.startswith(_FLAG_PREFIX):
        return len(path) > len(_FLAG_PREFIX)
    return path in FIELD_PATHS


def resolve_field(snapshot: ContextSnapshot, path: str) -> Any:
    """Return the value at ``path`` or ``None`` when it is absent or unknown."""

    if path.startswith(_FLAG_PREFIX):
        return snapshot.flags.get(path[len(_FLAG_PREFIX):])
    resolver = FIELD_PATHS.get(path)
    if resolver is None:
        return None
    return resolver(snapshot)


@dataclass(frozen=True, slots=True)
class Condition:
    """A field/operator/value test, or an all-of group when ``op == "all"``."""

    field: str
    op: str
    value: Any = None
    reason: str = ""
    weak: bool = False
    members: Tuple["Condition", ...] = ()

    @property
    def is_group(self) -> bool:
        return self.op == "all"

    def describe(self, actual: Any = None) -> "MatchedCondition":
        return MatchedCondition(field=self.field, op=self.op, value=self.value, actual=actual)


@dataclass(frozen=True, slots=True)
class QualityCheck:
    """A data-quality predicate that lowers confidence when it holds."""

    condition: Condition
    penalty: float
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConfidencePolicy:
    base: float = 0.8
    weak_only_penalty: float = 0.2
    numeric_missing_penalty: float = 0.25
    sparse_reason: Optional[str] = None
    checks: Tuple[QualityCheck, ...] = ()


@dataclass(frozen=True, slots=True)
class Rule:
    """Declarative insight rule loaded from the catalog."""

    rule_id: str
    conditions: Tuple[Condition, ...]
    message: str
    priority: int
    scopes: Tuple[str, ...] = ()
    title: Optional[str] = None
    action: Optional[str] = None
    why: Optional[str] = None
    source_tag: Optional[str] = None
    confidence: ConfidencePolicy = field(default_factory=ConfidencePolicy)

    def numeric_fields(self) -> Tuple[str, ...]:
        """Fields tested by strong numeric conditions, in catalog order."""

        seen: Dict[str, None] = {}
        for condition in iter_leaves(self.conditions):
            if condition.op in NUMERIC_OPERATORS and not condition.weak:
                seen.setdefault(condition.field, None)
        return tuple(seen)


def iter_leaves(conditions: Iterable[Condition]) -> Iterator[Condition]:
    for condition in conditions:
        if condition.is_group:
            yield from iter_leaves(condition.members)
        else:
            yield condition


@dataclass(frozen=True, slots=True)
class MatchedCondition:
    field: str
    op: str
    value: Any
    actual: Any = None


@dataclass(frozen=True, slots=True)
class Match:
    """Result of a rule firing against a context snapshot."""

    rule_id: str
    message: str
    confidence: float
    priority: int
    scopes: Tuple[str, ...] = ()
    reasons: Tuple[str, ...] = ()
    matched_conditions: Tuple[MatchedCondition, ...] = ()
    title: Optional[str] = None
    action: Optional[str] = None
    why: Optional[str] = None
    source_tag: Optional[str] = None
    fallback: bool = False


@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    """Latest helpfulness signal recorded for one rule."""

    rule_id: str
    helpful: bool
    created_at: datetime
    reason: Optional[str] = None
