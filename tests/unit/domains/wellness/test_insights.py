"""Tests for insight derivation and the capped insight log."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from companion.domains.wellness.domain_logic.insights import InsightGenerator
from companion.domains.wellness.domain_logic.models import (
    Correlation,
    Goal,
    Insight,
    TrendResult,
)

NOW = datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)


def _trend(metric_type="mood", change=25.0, confidence=80.0, direction="improving") -> TrendResult:
    return TrendResult(metric_type=metric_type, period="7d", direction=direction,
                       percent_change=change, confidence=confidence, sample_count=7)


def _insight(title: str, priority="low", at=NOW, key=None) -> Insight:
    return Insight(title=title, description="", kind="neutral", priority=priority,
                   category="trend", timestamp=at, data={"key": key} if key else {})


class TestFromTrend:
    def test_only_large_confident_trend_produces_insight(self, store):
        generator = InsightGenerator(store)
        first = generator.from_trend(_trend("mood", 25, 80), now=NOW)
        second = generator.from_trend(_trend("sleep", 10, 90), now=NOW)
        assert first is not None
        assert second is None
        assert [i.title for i in store.insights()] == ["Mood improving"]

    def test_thresholds_are_exclusive(self, store):
        generator = InsightGenerator(store)
        assert generator.from_trend(_trend(change=20.0, confidence=90), now=NOW) is None
        assert generator.from_trend(_trend(change=40.0, confidence=70.0), now=NOW) is None

    def test_large_decline_is_high_priority_concern(self, store):
        insight = InsightGenerator(store).from_trend(
            _trend("heart_rate", -35.0, 85.0, "declining"), now=NOW
        )
        assert insight.kind == "concern"
        assert insight.priority == "high"
        assert insight.actionable is True
        assert insight.description == "Your heart rate is declining, a 35.0% change over the past week."

    def test_moderate_improvement_is_medium_positive(self, store):
        insight = InsightGenerator(store).from_trend(_trend(change=25.0), now=NOW)
        assert insight.kind == "positive"
        assert insight.priority == "medium"
        assert insight.actionable is False

    def test_same_trend_not_repeated_within_a_day(self, store):
        generator = InsightGenerator(store)
        assert generator.from_trend(_trend(), now=NOW) is not None
        assert generator.from_trend(_trend(), now=NOW + timedelta(hours=6)) is None
        assert generator.from_trend(_trend(), now=NOW + timedelta(hours=25)) is not None
        assert len(store.insights()) == 2


class TestFromCorrelationAndGoal:
    def test_correlation_thresholds(self, store):
        generator = InsightGenerator(store)
        strong = Correlation("mood", "sleep", 0.82, 82.0, "strong")
        moderate = Correlation("energy", "sleep", -0.6, 60.0, "moderate")
        weak = Correlation("mood", "steps", 0.45, 45.0, "weak")
        assert generator.from_correlation(strong, now=NOW).priority == "medium"
        assert generator.from_correlation(moderate, now=NOW).priority == "low"
        assert generator.from_correlation(weak, now=NOW) is None

    def test_goal_achievement(self, store):
        goal = Goal(id="g1", metric_type="steps", target_value=8000, initial_value=0,
                    current_value=8000, timeframe="daily", progress=100.0)
        insight = InsightGenerator(store).from_goal(goal, now=NOW)
        assert insight.kind == "achievement"
        assert "8000" in insight.description

    def test_unfinished_goal_is_ignored(self, store):
        goal = Goal(id="g1", metric_type="steps", target_value=8000, initial_value=0,
                    current_value=4000, timeframe="daily", progress=50.0)
        assert InsightGenerator(store).from_goal(goal, now=NOW) is None


class TestLog:
    def test_retention_cap_evicts_oldest(self, store):
        generator = InsightGenerator(store, retention=50)
        for i in range(55):
            generator.record(_insight(f"insight {i}", at=NOW + timedelta(minutes=i)))
        titles = [i.title for i in store.insights()]
        assert len(titles) == 50
        assert titles[0] == "insight 5"
        assert titles[-1] == "insight 54"

    def test_listing_orders_by_priority_then_newest(self, store):
        generator = InsightGenerator(store)
        generator.record(_insight("old high", "high", NOW - timedelta(hours=3)))
        generator.record(_insight("low", "low", NOW - timedelta(hours=1)))
        generator.record(_insight("new high", "high", NOW - timedelta(hours=1)))
        generator.record(_insight("medium", "medium", NOW - timedelta(hours=2)))
        titles = [i.title for i in generator.insights(days=7, now=NOW)]
        assert titles == ["new high", "old high", "medium", "low"]

    def test_listing_window(self, store):
        generator = InsightGenerator(store)
        generator.record(_insight("stale", at=NOW - timedelta(days=8)))
        generator.record(_insight("fresh", at=NOW - timedelta(days=1)))
        assert [i.title for i in generator.insights(days=7, now=NOW)] == ["fresh"]

    def test_dismiss_is_idempotent(self, store):
        generator = InsightGenerator(store)
        insight = generator.record(_insight("x"))
        assert generator.dismiss(insight.id) is True
        assert generator.dismiss(insight.id) is True
        assert generator.insights(now=NOW) == []
        assert len(store.insights()) == 1

    def test_dismiss_unknown_id(self, store):
        assert InsightGenerator(store).dismiss("nope") is False

    def test_unavailable_store_records_nothing(self, unavailable_store):
        generator = InsightGenerator(unavailable_store)
        assert generator.record(_insight("x")) is None
        assert generator.insights(now=NOW) == []
