"""End-to-end orchestration: match, suppress, cap and select."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Sequence

from .catalog import RuleCatalog, load_catalog
from .config import EngineConfig
from .feedback import FeedbackIndex, coerce_index, suppress
from .matcher import RuleMatcher
from .models import ContextSnapshot, Match
from .scope import pick, pick_for_screen
from .utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class InsightEngine:
    """Coordinates the matcher, feedback suppressor and scope selector.

    Evaluation is synchronous and free of I/O; callers fetch the context and
    the feedback index beforehand.
    """

    def __init__(
        self,
        catalog: RuleCatalog | None = None,
        *,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        if catalog is None:
            catalog = load_catalog(self.config.catalog_path)
        self.catalog = catalog
        self.matcher = RuleMatcher(
            catalog,
            confidence_floor=self.config.confidence_floor,
            confidence_ceiling=self.config.confidence_ceiling,
        )

    def evaluate(
        self,
        context: ContextSnapshot,
        *,
        feedback: FeedbackIndex | Any = None,
        now: datetime | None = None,
    ) -> List[Match]:
        """Ranked matches for ``context`` after feedback suppression, capped.

        Suppression runs before the cap so a suppressed rule frees its slot
        for the next candidate. ``now`` defaults to the snapshot's own
        timestamp, then to the wall clock.
        """

        current = parse_timestamp(now) or context.ts or utcnow()
        ranked = self.matcher.match_all(context)
        index = coerce_index(feedback)
        kept = suppress(
            ranked,
            index,
            current,
            cooldown_days=self.config.cooldown_days,
            not_relevant_window=self.config.not_relevant_window,
        )
        result = kept[: self.config.max_matches]
        logger.debug(
            "evaluate: evaluated=%d matched=%d suppressed=%d returned=%d",
            len(self.catalog),
            len(ranked),
            len(ranked) - len(kept),
            len(result),
        )
        return result

    def pick(
        self,
        matches: Sequence[Match],
        preferred_scopes: Sequence[str],
        *,
        allow_global_fallback: bool = True,
        dashboard_first: bool = False,
    ) -> Match:
        return pick(
            matches,
            preferred_scopes,
            allow_global_fallback=allow_global_fallback,
            dashboard_first=dashboard_first,
        )

    def insight_for_screen(
        self,
        context: ContextSnapshot,
        screen: str,
        *,
        feedback: FeedbackIndex | Any = None,
        now: datetime | None = None,
    ) -> Match:
        """Evaluate and pick the single match to show on ``screen``."""

        return pick_for_screen(self.evaluate(context, feedback=feedback, now=now), screen)
