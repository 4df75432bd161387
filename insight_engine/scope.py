"""Scope selection: choose exactly one match for a screen."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import SCOPES, Match

logger = logging.getLogger(__name__)

# Keyword buckets checked in order; the first bucket with a hit wins.
SCOPE_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("sleep", ("sleep", "circadian", "bedtime")),
    ("meds", ("med", "adherence", "pill")),
    ("mood", ("mood", "anxiety", "stress")),
    ("dashboard", ("dashboard", "today")),
)

SCREEN_SCOPES: Dict[str, List[str]] = {
    "sleep": ["sleep", "meds", "mood", "dashboard", "global"],
    "mood": ["mood", "sleep", "meds", "dashboard", "global"],
    "meds": ["meds", "mood", "sleep", "dashboard", "global"],
    "dashboard": ["dashboard", "mood", "sleep", "meds", "global"],
    "global": ["global"],
}

FALLBACK_MESSAGES: Dict[str, str] = {
    "mood": "Log your mood to unlock personalized trends.",
    "sleep": "Sync or log sleep to unlock better sleep nudges.",
    "meds": "Keep logging meds to get adherence tips.",
    "dashboard": "Keep logging to unlock personalized insights.",
    "global": "Keep logging to unlock personalized insights.",
}
UNIVERSAL_FALLBACK_MESSAGE = "No insights yet, keep logging for better guidance."


def normalize_scope(value: object) -> str:
    """Map a screen name or route (``/Sleep``, ``home``) onto a scope tag."""

    text = str(value or "").strip().lower().lstrip("/").replace(" ", "_")
    if "dashboard" in text or text == "home":
        return "dashboard"
    if "sleep" in text:
        return "sleep"
    if "mood" in text:
        return "mood"
    if "med" in text:
        return "meds"
    return "global"


def infer_scopes(source_tag: Optional[str]) -> Tuple[str, ...]:
    """Classify a free-text source tag into one scope by keyword."""

    key = str(source_tag or "").lower()
    for scope, keywords in SCOPE_KEYWORDS:
        if any(keyword in key for keyword in keywords):
            return (scope,)
    return ("global",)


def effective_scopes(match: Match) -> Tuple[str, ...]:
    if match.scopes:
        return match.scopes
    return infer_scopes(match.source_tag or match.rule_id)


def contextual_fallback(scope: str) -> Match:
    return Match(
        rule_id=f"fallback-{scope}",
        message=FALLBACK_MESSAGES.get(scope, FALLBACK_MESSAGES["global"]),
        confidence=0.0,
        priority=-999,
        scopes=(scope,),
        fallback=True,
    )


def universal_fallback() -> Match:
    return Match(
        rule_id="fallback-universal",
        message=UNIVERSAL_FALLBACK_MESSAGE,
        confidence=0.0,
        priority=-1000,
        scopes=("global",),
        fallback=True,
    )


def _first_with_scope(matches: Iterable[Match], scope: str) -> Match | None:
    for match in matches:
        if scope in effective_scopes(match):
            return match
    return None


def _select(
    matches: Sequence[Match],
    preferred: Sequence[str],
    allow_global_fallback: bool,
    dashboard_first: bool,
) -> Match | None:
    if dashboard_first:
        chosen = _first_with_scope(matches, "dashboard")
        if chosen is None and allow_global_fallback:
            chosen = _first_with_scope(matches, "global")
        if chosen is not None:
            return chosen
    for scope in preferred:
        chosen = _first_with_scope(matches, scope)
        if chosen is not None:
            return chosen
    if allow_global_fallback:
        return _first_with_scope(matches, "global")
    return None


def pick(
    matches: Sequence[Match] | None,
    preferred_scopes: Sequence[str] | None = None,
    allow_global_fallback: bool = True,
    dashboard_first: bool = False,
) -> Match:
    """Return exactly one match for a screen, synthesizing a fallback when needed.

    Preferred scopes are tried in order and the first match carrying the
    scope wins, so a lower-preference scope that has a match beats a
    higher-preference one that has none.
    """

    candidates = [m for m in (matches or ()) if isinstance(m, Match)]
    preferred = [str(s).strip().lower() for s in (preferred_scopes or ()) if str(s).strip()] or ["global"]
    chosen: Match | None
    try:
        chosen = _select(candidates, preferred, allow_global_fallback, dashboard_first)
    except Exception:  # pragma: no cover - the selector must always answer
        logger.exception("Scope selection failed; using fallback")
        chosen = None

    if chosen is None:
        if allow_global_fallback:
            chosen = universal_fallback()
        else:
            known = next((scope for scope in preferred if scope in SCOPES), None)
            chosen = contextual_fallback(known) if known else universal_fallback()

    logger.debug(
        "Picked %s from %d matches (preferred=%s, global=%s, dashboard_first=%s)",
        chosen.rule_id,
        len(candidates),
        preferred,
        allow_global_fallback,
        dashboard_first,
    )
    return chosen


def pick_for_screen(matches: Sequence[Match] | None, screen: str, *, allow_global_fallback: bool = True) -> Match:
    scope = normalize_scope(screen)
    return pick(
        matches,
        SCREEN_SCOPES.get(scope, SCREEN_SCOPES["global"]),
        allow_global_fallback=allow_global_fallback,
        dashboard_first=scope == "dashboard",
    )
