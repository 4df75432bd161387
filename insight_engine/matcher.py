"""Rule matcher: evaluates catalog rules against a context snapshot."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Sequence

from .catalog import RuleCatalog
from .conditions import condition_holds
from .models import Condition, ContextSnapshot, Match, MatchedCondition, Rule, resolve_field
from .scoring import CONFIDENCE_CEILING, CONFIDENCE_FLOOR, score
from .utils import as_number

logger = logging.getLogger(__name__)

DEFAULT_MAX_MATCHES = 3

_PLACEHOLDER = re.compile(r"\{([A-Za-z][\w.]*)\}")


def render_message(template: str, snapshot: ContextSnapshot) -> str:
    """Fill ``{field.path}`` placeholders from the snapshot; unknown ones stay as written."""

    def _substitute(match: re.Match[str]) -> str:
        value = resolve_field(snapshot, match.group(1))
        if value is None:
            return match.group(0)
        number = as_number(value)
        if number is not None:
            return f"{number:g}" if number == int(number) else f"{number:.1f}"
        if isinstance(value, (list, tuple)):
            return ", ".join(str(item) for item in value)
        return str(value)

    return _PLACEHOLDER.sub(_substitute, template)


def _describe(conditions: Iterable[Condition], snapshot: ContextSnapshot) -> List[MatchedCondition]:
    described: List[MatchedCondition] = []
    for condition in conditions:
        if condition.is_group:
            described.extend(_describe(condition.members, snapshot))
        else:
            described.append(condition.describe(resolve_field(snapshot, condition.field)))
    return described


class RuleMatcher:
    """Evaluates context snapshots against a rule set.

    A rule fires when any of its trigger conditions holds; every condition
    that holds adds its reason code to the match.
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        *,
        confidence_floor: float = CONFIDENCE_FLOOR,
        confidence_ceiling: float = CONFIDENCE_CEILING,
    ) -> None:
        self.rules = list(rules)
        self.confidence_floor = confidence_floor
        self.confidence_ceiling = confidence_ceiling

    def match_rule(self, rule: Rule, snapshot: ContextSnapshot) -> Match | None:
        fired = [condition for condition in rule.conditions if condition_holds(condition, snapshot)]
        if not fired:
            return None
        reasons: List[str] = []
        for condition in fired:
            if condition.reason not in reasons:
                reasons.append(condition.reason)
        confidence, quality_reasons = score(
            rule,
            snapshot,
            fired,
            floor=self.confidence_floor,
            ceiling=self.confidence_ceiling,
        )
        for reason in quality_reasons:
            if reason not in reasons:
                reasons.append(reason)
        return Match(
            rule_id=rule.rule_id,
            message=render_message(rule.message, snapshot),
            confidence=confidence,
            priority=rule.priority,
            scopes=rule.scopes,
            reasons=tuple(reasons),
            matched_conditions=tuple(_describe(fired, snapshot)),
            title=rule.title,
            action=rule.action,
            why=rule.why,
            source_tag=rule.source_tag,
        )

    def match_all(self, snapshot: ContextSnapshot) -> List[Match]:
        """Every firing rule, ranked but not capped."""

        matches = []
        for rule in self.rules:
            match = self.match_rule(rule, snapshot)
            if match is not None:
                matches.append(match)
        ranked = rank(matches)
        logger.debug("Evaluated %d rules, %d matched", len(self.rules), len(ranked))
        return ranked

    def evaluate(self, snapshot: ContextSnapshot, *, limit: int = DEFAULT_MAX_MATCHES) -> List[Match]:
        return self.match_all(snapshot)[: max(0, limit)]


def rank(matches: Sequence[Match]) -> List[Match]:
    """Order by priority then confidence, keeping catalog order for ties."""

    indexed = list(enumerate(matches))
    indexed.sort(key=lambda pair: (-pair[1].priority, -pair[1].confidence, pair[0]))
    return [match for _, match in indexed]


def evaluate(
    context: ContextSnapshot,
    catalog: RuleCatalog | Iterable[Rule],
    *,
    limit: int = DEFAULT_MAX_MATCHES,
) -> List[Match]:
    """Return at most ``limit`` matches for ``context`` in ranked order."""

    return RuleMatcher(catalog).evaluate(context, limit=limit)
