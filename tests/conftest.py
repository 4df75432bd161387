from datetime import datetime, timezone

import pytest

from insight_engine.catalog import load_default_catalog
from insight_engine.models import ContextSnapshot, Match, MedsContext, MoodContext, SleepContext
from insight_engine.pipeline import InsightEngine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def catalog():
    return load_default_catalog()


@pytest.fixture
def engine(catalog):
    return InsightEngine(catalog)


@pytest.fixture
def healthy_context():
    """Every signal present and comfortably inside normal ranges."""
    return ContextSnapshot(
        ts=NOW,
        mood=MoodContext(latest=4, trend3d_pct=5, delta_vs_baseline=0.2, tags=("calm",)),
        sleep=SleepContext(last_night_hours=7.5, avg7d_hours=7.4, sparse_data=False, midpoint_delta_min=20),
        meds=MedsContext(adherence_pct7d=95, missed_doses3d=0, has_unknown_status=False),
        steps_last_day=8000,
        days_since_social=1,
        flags={"stress": False},
    )


@pytest.fixture
def rough_context():
    """Every default rule fires."""
    return ContextSnapshot(
        ts=NOW,
        mood=MoodContext(latest=1, trend3d_pct=-30, tags=("stress",)),
        sleep=SleepContext(last_night_hours=4, avg7d_hours=5, midpoint_delta_min=120),
        meds=MedsContext(adherence_pct7d=50, missed_doses3d=2),
        steps_last_day=500,
        days_since_social=9,
        flags={"stress": True},
    )


@pytest.fixture
def make_match():
    def _make(rule_id, *, priority=10, scopes=(), confidence=0.8, source_tag=None):
        return Match(
            rule_id=rule_id,
            message=f"{rule_id} message",
            confidence=confidence,
            priority=priority,
            scopes=tuple(scopes),
            source_tag=source_tag,
        )

    return _make
