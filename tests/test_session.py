"""Tests for refresh coordination in InsightSession."""

import asyncio
from datetime import timedelta

import pytest

from insight_engine.models import ContextSnapshot, MoodContext, SleepContext
from insight_engine.session import STATUS_ERROR, STATUS_IDLE, STATUS_READY, InsightSession
from insight_engine.store import InsightStore

SHORT_SLEEP = ContextSnapshot(sleep=SleepContext(last_night_hours=5, avg7d_hours=6, midpoint_delta_min=120))
LOW_MOOD = ContextSnapshot(mood=MoodContext(latest=2))


class Clock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, delta):
        self.current += delta


class ContextSource:
    def __init__(self, *contexts, delay=0.0):
        self.contexts = list(contexts)
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.contexts[min(self.calls, len(self.contexts)) - 1]


@pytest.fixture
def clock(now):
    return Clock(now)


@pytest.mark.asyncio
class TestRefresh:
    async def test_manual_refresh_publishes_matches(self, engine, clock):
        session = InsightSession(engine, ContextSource(SHORT_SLEEP), clock=clock)
        assert session.status == STATUS_IDLE
        matches = await session.refresh()
        assert [m.rule_id for m in matches] == ["sleep", "circadian_shift"]
        assert session.status == STATUS_READY
        assert session.state.last_updated_at == clock.current
        assert session.state.reason == "manual"

    async def test_concurrent_refreshes_share_one_fetch(self, engine, clock):
        source = ContextSource(SHORT_SLEEP, delay=0.01)
        session = InsightSession(engine, source, clock=clock)
        first, second = await asyncio.gather(
            session.refresh_if_stale("session-ready"),
            session.refresh_if_stale("foreground"),
        )
        assert source.calls == 1
        assert first == second

    async def test_overlapping_manual_refreshes_share_one_fetch(self, engine, clock):
        source = ContextSource(SHORT_SLEEP, delay=0.01)
        session = InsightSession(engine, source, clock=clock)
        first, second = await asyncio.gather(session.refresh(), session.refresh())
        assert source.calls == 1
        assert first == second
        assert [m.rule_id for m in first] == ["sleep", "circadian_shift"]

    async def test_superseding_refresh_wins_over_slow_run(self, engine, clock):
        calls = []

        async def fetch():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(0.05)
                return LOW_MOOD
            return SHORT_SLEEP

        session = InsightSession(engine, fetch, clock=clock)
        slow = asyncio.create_task(session.refresh("first"))
        await asyncio.sleep(0)
        fast = await session.refresh("second", supersede=True)
        stale = await slow

        assert [m.rule_id for m in fast] == ["sleep", "circadian_shift"]
        assert stale == fast
        assert session.state.reason == "second"
        assert [m.rule_id for m in session.state.matches] == ["sleep", "circadian_shift"]

    async def test_automatic_refresh_is_debounced(self, engine, clock):
        source = ContextSource(SHORT_SLEEP, LOW_MOOD)
        session = InsightSession(engine, source, clock=clock)
        await session.on_session_start()
        cached = await session.refresh_if_stale("foreground")
        assert source.calls == 1
        assert [m.rule_id for m in cached] == ["sleep", "circadian_shift"]

        clock.advance(timedelta(minutes=5))
        refreshed = await session.refresh_if_stale("foreground")
        assert source.calls == 2
        assert [m.rule_id for m in refreshed] == ["stress_mood"]

    async def test_manual_refresh_ignores_debounce(self, engine, clock):
        source = ContextSource(SHORT_SLEEP, LOW_MOOD)
        session = InsightSession(engine, source, clock=clock)
        await session.refresh()
        await session.refresh()
        assert source.calls == 2


@pytest.mark.asyncio
class TestFailures:
    async def test_context_failure_sets_error(self, engine, clock):
        async def broken():
            raise RuntimeError("offline")

        session = InsightSession(engine, broken, clock=clock)
        assert await session.refresh() == []
        assert session.status == STATUS_ERROR
        assert session.state.error == "offline"
        assert session.insight_for_screen("sleep").fallback

    async def test_feedback_failure_degrades_to_no_suppression(self, engine, clock):
        async def broken_feedback():
            raise ConnectionError("feedback service down")

        session = InsightSession(engine, ContextSource(SHORT_SLEEP), broken_feedback, clock=clock)
        matches = await session.refresh()
        assert [m.rule_id for m in matches] == ["sleep", "circadian_shift"]
        assert session.status == STATUS_READY
        assert session.state.feedback is None

    async def test_feedback_rows_suppress(self, engine, clock, now):
        async def feedback():
            return [{"ruleId": "sleep", "helpful": False, "createdAt": now.isoformat()}]

        session = InsightSession(engine, ContextSource(SHORT_SLEEP), feedback, clock=clock)
        matches = await session.refresh()
        assert [m.rule_id for m in matches] == ["circadian_shift"]


@pytest.mark.asyncio
class TestEnabledToggle:
    async def test_disabled_session_does_not_fetch(self, engine, clock):
        source = ContextSource(SHORT_SLEEP)
        session = InsightSession(engine, source, clock=clock)
        assert await session.set_enabled(False) == []
        assert await session.refresh() == []
        assert source.calls == 0
        assert session.status == STATUS_READY
        assert session.insight_for_screen("sleep").fallback

    async def test_reenabling_refreshes(self, engine, clock):
        source = ContextSource(SHORT_SLEEP)
        session = InsightSession(engine, source, clock=clock)
        await session.set_enabled(False)
        matches = await session.set_enabled(True)
        assert source.calls == 1
        assert [m.rule_id for m in matches] == ["sleep", "circadian_shift"]


@pytest.mark.asyncio
class TestRotation:
    async def test_screen_rotates_through_unseen_matches(self, engine, clock):
        store = InsightStore()
        session = InsightSession(engine, ContextSource(SHORT_SLEEP), store=store, clock=clock)
        await session.refresh()

        picks = [session.insight_for_screen("sleep").rule_id for _ in range(3)]
        assert picks == ["sleep", "circadian_shift", "sleep"]
        store.close()

    async def test_seen_marks_expire(self, engine, clock):
        store = InsightStore()
        session = InsightSession(engine, ContextSource(SHORT_SLEEP), store=store, clock=clock)
        await session.refresh()
        assert session.insight_for_screen("sleep").rule_id == "sleep"
        clock.advance(timedelta(hours=24))
        assert session.insight_for_screen("sleep").rule_id == "sleep"
        store.close()

    async def test_before_first_refresh_returns_fallback(self, engine, clock):
        session = InsightSession(engine, ContextSource(SHORT_SLEEP), store=InsightStore(), clock=clock)
        assert session.insight_for_screen("dashboard").rule_id == "fallback-universal"
