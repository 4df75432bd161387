"""Presentation helpers for insight cards."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .models import Match
from .scope import effective_scopes
from .scoring import confidence_label


@dataclass(slots=True)
class InsightCard:
    match: Match
    screen: str = ""

    def render_text(self) -> str:
        match = self.match
        header = f"[{match.rule_id}] {match.title}" if match.title else f"[{match.rule_id}]"
        lines = [header, f"  {match.message}"]
        if match.action:
            lines.append(f"  try: {match.action}")
        if match.fallback:
            lines.append("  confidence: n/a (fallback)")
        else:
            lines.append(f"  confidence: {match.confidence:.2f} ({confidence_label(match.confidence)})")
        if match.reasons:
            lines.append(f"  reasons: {', '.join(match.reasons)}")
        lines.append(f"  scopes: {', '.join(effective_scopes(match))}")
        if self.screen:
            lines.append(f"  screen: {self.screen}")
        if match.why:
            lines.append(f"  why: {match.why}")
        return "\n".join(lines)


def build_cards(matches: Iterable[Match], *, screen: str = "") -> List[InsightCard]:
    return [InsightCard(match=match, screen=screen) for match in matches]
