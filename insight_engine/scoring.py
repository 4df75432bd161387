"""Confidence scoring for fired rules."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from .conditions import condition_holds
from .models import Condition, ContextSnapshot, Rule, resolve_field

CONFIDENCE_FLOOR = 0.2
CONFIDENCE_CEILING = 0.9


def clamp_confidence(value: float, *, floor: float = CONFIDENCE_FLOOR, ceiling: float = CONFIDENCE_CEILING) -> float:
    return max(floor, min(ceiling, round(value, 4)))


def score(
    rule: Rule,
    snapshot: ContextSnapshot,
    fired: Sequence[Condition],
    *,
    floor: float = CONFIDENCE_FLOOR,
    ceiling: float = CONFIDENCE_CEILING,
) -> Tuple[float, List[str]]:
    """Return the clamped confidence for a fired rule plus any data-quality reasons.

    Penalties only ever subtract from the policy base, and each one is tied to
    missing or flagged data, so adding a corroborating numeric signal can
    remove a penalty but never add one.
    """

    policy = rule.confidence
    confidence = policy.base
    reasons: List[str] = []

    if fired and all(condition.weak for condition in fired):
        confidence -= policy.weak_only_penalty
        numeric_fields = rule.numeric_fields()
        if numeric_fields and all(resolve_field(snapshot, path) is None for path in numeric_fields):
            confidence -= policy.numeric_missing_penalty
            if policy.sparse_reason:
                reasons.append(policy.sparse_reason)

    for check in policy.checks:
        if condition_holds(check.condition, snapshot):
            confidence -= check.penalty
            if check.reason and check.reason not in reasons:
                reasons.append(check.reason)

    return clamp_confidence(confidence, floor=floor, ceiling=ceiling), reasons


def confidence_label(confidence: float) -> str:
    if confidence < 0.45:
        return "Low"
    if confidence < 0.75:
        return "Medium"
    return "High"
