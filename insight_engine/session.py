"""Per-session refresh coordination around the asynchronous fetch boundary."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from .config import EngineConfig
from .feedback import FeedbackIndex, coerce_index
from .models import ContextSnapshot, Match
from .pipeline import InsightEngine
from .scope import normalize_scope, pick_for_screen
from .store import InsightStore
from .utils import utcnow

logger = logging.getLogger(__name__)

ContextProvider = Callable[[], Awaitable[ContextSnapshot]]
FeedbackProvider = Callable[[], Awaitable[Any]]

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_READY = "ready"
STATUS_ERROR = "error"


@dataclass(slots=True)
class SessionState:
    """What a screen can render for the current session."""

    status: str = STATUS_IDLE
    matches: List[Match] = field(default_factory=list)
    context: Optional[ContextSnapshot] = None
    feedback: Optional[FeedbackIndex] = None
    error: Optional[str] = None
    last_updated_at: Optional[datetime] = None
    reason: Optional[str] = None


class InsightSession:
    """Runs at most one evaluation at a time for a user session.

    Concurrent refreshes share the in-flight run. A superseding refresh starts
    a new run; whichever run started last is the one that gets published.
    Automatic refreshes are debounced by ``config.min_refresh_interval``.
    """

    def __init__(
        self,
        engine: InsightEngine,
        fetch_context: ContextProvider,
        fetch_feedback: FeedbackProvider | None = None,
        *,
        store: InsightStore | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.config = config or engine.config
        self.store = store
        self.enabled = True
        self.state = SessionState()
        self._fetch_context = fetch_context
        self._fetch_feedback = fetch_feedback
        self._clock = clock
        self._inflight: asyncio.Task[List[Match]] | None = None
        self._generation = 0
        self._last_refresh_at: datetime | None = None

    @property
    def status(self) -> str:
        return self.state.status

    async def refresh(self, reason: str = "manual", *, supersede: bool = False) -> List[Match]:
        """Fetch and evaluate now.

        Skips the debounce. An in-flight run is awaited instead of starting a
        new one unless ``supersede`` is set.
        """

        if not self.enabled:
            self._publish_disabled()
            return []
        if self._inflight is not None and not self._inflight.done() and not supersede:
            return await asyncio.shield(self._inflight)

        self._generation += 1
        generation = self._generation
        self.state = replace(self.state, status=STATUS_LOADING, error=None, reason=reason)
        task = asyncio.ensure_future(self._run(generation, reason))
        self._inflight = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None

    async def refresh_if_stale(self, reason: str) -> List[Match]:
        """Lifecycle-triggered refresh, skipped inside the minimum interval."""

        if not self.enabled:
            self._publish_disabled()
            return []
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)
        now = self._clock()
        if self._last_refresh_at is not None and now - self._last_refresh_at < self.config.min_refresh_interval:
            logger.debug("Skipping %s refresh; last refresh at %s", reason, self._last_refresh_at.isoformat())
            return list(self.state.matches)
        return await self.refresh(reason)

    async def on_session_start(self) -> List[Match]:
        return await self.refresh_if_stale("session-ready")

    async def set_enabled(self, enabled: bool) -> List[Match]:
        self.enabled = enabled
        if not enabled:
            self._publish_disabled()
            return []
        return await self.refresh_if_stale("insight-enabled")

    async def _run(self, generation: int, reason: str) -> List[Match]:
        try:
            context = await self._fetch_context()
        except Exception as exc:
            logger.warning("Insight context fetch failed (%s): %s", reason, exc)
            if generation == self._generation:
                self.state = replace(
                    self.state,
                    status=STATUS_ERROR,
                    matches=[],
                    error=str(exc) or exc.__class__.__name__,
                )
            return await self._follow_latest(generation, [])

        feedback: FeedbackIndex | None = None
        if self._fetch_feedback is not None:
            try:
                feedback = coerce_index(await self._fetch_feedback())
            except Exception as exc:
                logger.warning("Feedback fetch failed; evaluating without suppression: %s", exc)

        now = self._clock()
        matches = self.engine.evaluate(context, feedback=feedback, now=now)
        if generation != self._generation:
            logger.debug("Discarding superseded refresh (%s)", reason)
            return await self._follow_latest(generation, matches)

        self._last_refresh_at = now
        self.state = SessionState(
            status=STATUS_READY,
            matches=matches,
            context=context,
            feedback=feedback,
            last_updated_at=now,
            reason=reason,
        )
        logger.debug("Insight refreshed (%s): %s", reason, [m.rule_id for m in matches])
        return matches

    async def _follow_latest(self, generation: int, fallback: List[Match]) -> List[Match]:
        latest = self._inflight
        if (
            generation != self._generation
            and latest is not None
            and latest is not asyncio.current_task()
            and not latest.done()
        ):
            return await asyncio.shield(latest)
        if generation != self._generation:
            return list(self.state.matches)
        return fallback

    def _publish_disabled(self) -> None:
        self._generation += 1
        self.state = SessionState(status=STATUS_READY)

    def insight_for_screen(self, screen: str) -> Match:
        """Pick one match for ``screen``, rotating past ones seen recently."""

        matches = list(self.state.matches) if self.enabled and self.state.status == STATUS_READY else []
        scope = normalize_scope(screen)
        now = self._clock()
        candidates = matches
        if self.store is not None and matches:
            unseen = self.store.filter_unseen(matches, scope, now, self.config.seen_ttl)
            candidates = unseen or matches
        chosen = pick_for_screen(candidates, screen)
        if self.store is not None and not chosen.fallback:
            self.store.mark_seen(scope, chosen.rule_id, now)
        return chosen
