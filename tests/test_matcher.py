"""Tests for rule matching, ranking and the match cap."""

import pytest

from insight_engine.catalog import RuleCatalog
from insight_engine.matcher import RuleMatcher, evaluate, rank, render_message
from insight_engine.models import ContextSnapshot, MoodContext, SleepContext


def ids(matches):
    return [m.rule_id for m in matches]


class TestScenarios:
    def test_low_mood_alone_fires_stress_rule_with_full_confidence(self, catalog):
        context = ContextSnapshot(mood=MoodContext(latest=2))
        matches = evaluate(context, catalog)
        assert ids(matches) == ["stress_mood"]
        assert matches[0].confidence == pytest.approx(0.8)
        assert matches[0].reasons == ("mood_latest_low",)

    def test_stress_tag_without_numbers_is_low_confidence(self, catalog):
        context = ContextSnapshot(mood=MoodContext(tags=("stress",)))
        matches = evaluate(context, catalog)
        assert ids(matches) == ["stress_mood"]
        assert matches[0].confidence == pytest.approx(0.35)
        assert matches[0].reasons == ("stress_tag_present", "mood_sparse_data")

    def test_short_sleep_reports_both_reasons(self, catalog):
        context = ContextSnapshot(sleep=SleepContext(last_night_hours=5, avg7d_hours=6))
        matches = evaluate(context, catalog)
        assert ids(matches) == ["sleep"]
        assert matches[0].reasons == ("sleep_lastNight_low", "sleep_avg7d_low")
        assert matches[0].confidence == pytest.approx(0.8)

    def test_healthy_context_matches_nothing(self, catalog, healthy_context):
        assert evaluate(healthy_context, catalog) == []

    def test_empty_context_matches_nothing(self, catalog):
        assert evaluate(ContextSnapshot(), catalog) == []


class TestRanking:
    def test_cap_keeps_highest_priority(self, catalog, rough_context):
        matches = evaluate(rough_context, catalog)
        assert ids(matches) == ["stress_mood", "low_mood_sleep_debt", "sleep"]

    def test_uncapped_match_all_returns_every_rule(self, catalog, rough_context):
        matches = RuleMatcher(catalog).match_all(rough_context)
        assert len(matches) == len(catalog)
        priorities = [m.priority for m in matches]
        assert priorities == sorted(priorities, reverse=True)

    def test_limit_zero_returns_empty(self, catalog, rough_context):
        assert evaluate(rough_context, catalog, limit=0) == []

    def test_evaluation_is_deterministic(self, catalog, rough_context):
        assert evaluate(rough_context, catalog) == evaluate(rough_context, catalog)

    def test_confidence_is_bounded(self, catalog, rough_context):
        for match in RuleMatcher(catalog).match_all(rough_context):
            assert 0.2 <= match.confidence <= 0.9

    def test_ties_break_on_confidence_then_catalog_order(self):
        catalog = RuleCatalog.from_document(
            [
                {"id": "tagged", "priority": 5, "message": "a",
                 "conditions": [{"field": "mood.tags", "op": "contains", "value": "tired"}]},
                {"id": "first", "priority": 5, "message": "b",
                 "conditions": [{"field": "mood.latest", "op": "lt", "value": 3}]},
                {"id": "second", "priority": 5, "message": "c",
                 "conditions": [{"field": "mood.latest", "op": "lt", "value": 4}]},
            ]
        )
        context = ContextSnapshot(mood=MoodContext(latest=2, tags=("tired",)))
        matches = RuleMatcher(catalog).match_all(context)
        assert ids(matches) == ["first", "second", "tagged"]
        assert matches[2].confidence == pytest.approx(0.6)

    def test_rank_is_stable_for_identical_keys(self, make_match):
        matches = [make_match("b"), make_match("a"), make_match("c", priority=11)]
        assert ids(rank(matches)) == ["c", "b", "a"]


class TestConfidenceEvidence:
    def test_adding_numeric_evidence_never_lowers_confidence(self, catalog):
        tags_only = ContextSnapshot(mood=MoodContext(tags=("stress",)))
        with_value = ContextSnapshot(mood=MoodContext(latest=3, tags=("stress",)))
        with_firing_value = ContextSnapshot(mood=MoodContext(latest=2, tags=("stress",)))

        scores = [evaluate(ctx, catalog)[0].confidence for ctx in (tags_only, with_value, with_firing_value)]
        assert scores == sorted(scores)
        assert scores[1] == pytest.approx(0.6)
        assert scores[2] == pytest.approx(0.8)

    def test_sparse_reason_only_when_numbers_missing(self, catalog):
        context = ContextSnapshot(mood=MoodContext(latest=3, tags=("stress",)))
        match = evaluate(context, catalog)[0]
        assert "mood_sparse_data" not in match.reasons


class TestConditions:
    def test_all_of_group_needs_every_member(self, catalog):
        only_mood = ContextSnapshot(mood=MoodContext(latest=2))
        both = ContextSnapshot(mood=MoodContext(latest=2), sleep=SleepContext(last_night_hours=5))
        assert "low_mood_sleep_debt" not in ids(RuleMatcher(catalog).match_all(only_mood))
        assert "low_mood_sleep_debt" in ids(RuleMatcher(catalog).match_all(both))

    def test_legacy_operators_are_understood(self):
        catalog = RuleCatalog.from_document(
            [
                {"id": "trend", "priority": 1, "message": "m",
                 "conditions": [{"field": "mood.trend3dPct", "op": "pctLt", "value": -10}]},
                {"id": "delta", "priority": 1, "message": "m",
                 "conditions": [{"field": "mood.deltaVsBaseline", "operator": "deltaLt", "value": -1}]},
            ]
        )
        context = ContextSnapshot(mood=MoodContext(trend3d_pct=-20, delta_vs_baseline=-1.5))
        assert sorted(ids(RuleMatcher(catalog).match_all(context))) == ["delta", "trend"]

    def test_tag_matching_ignores_case_and_separators(self):
        catalog = RuleCatalog.from_document(
            [{"id": "burnout", "priority": 1, "message": "m",
              "conditions": [{"field": "mood.tags", "op": "contains", "value": ["stressed out"]}]}]
        )
        context = ContextSnapshot(mood=MoodContext(tags=("Stressed-Out",)))
        assert ids(RuleMatcher(catalog).match_all(context)) == ["burnout"]

    def test_missing_field_never_satisfies_comparison(self):
        catalog = RuleCatalog.from_document(
            [{"id": "steps", "priority": 1, "message": "m",
              "conditions": [{"field": "steps.lastDay", "op": "ne", "value": 0}]}]
        )
        assert RuleMatcher(catalog).match_all(ContextSnapshot()) == []

    def test_matched_conditions_flatten_groups(self, catalog):
        context = ContextSnapshot(mood=MoodContext(latest=2), sleep=SleepContext(last_night_hours=5))
        match = next(m for m in RuleMatcher(catalog).match_all(context) if m.rule_id == "low_mood_sleep_debt")
        assert [(c.field, c.op, c.value, c.actual) for c in match.matched_conditions] == [
            ("mood.latest", "lt", 3, 2),
            ("sleep.lastNightHours", "lt", 6, 5),
        ]


class TestRenderMessage:
    def test_placeholders_filled_from_context(self, catalog):
        context = ContextSnapshot(sleep=SleepContext(midpoint_delta_min=120))
        match = evaluate(context, catalog)[0]
        assert match.rule_id == "circadian_shift"
        assert "about 120 minutes" in match.message

    def test_missing_values_leave_placeholder(self):
        assert render_message("{steps.lastDay} steps", ContextSnapshot()) == "{steps.lastDay} steps"

    def test_fractional_values_are_rounded(self):
        context = ContextSnapshot(sleep=SleepContext(last_night_hours=5.26))
        assert render_message("{sleep.lastNightHours}h", context) == "5.3h"
