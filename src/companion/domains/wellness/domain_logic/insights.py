"""Insight generation and the capped insight log.

Insights are derived from trends, correlations and goal milestones. The log
keeps the newest ``retention`` entries; dismissal only flips a flag.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from companion.core.storage.backend import StoreUnavailable
from companion.domains.wellness.domain_logic.models import (
    Correlation,
    Goal,
    Insight,
    TrendResult,
    utcnow,
)
from companion.domains.wellness.domain_logic.tables import STRONG_R
from companion.domains.wellness.store import INSIGHTS_KEY, MetricStore

logger = logging.getLogger(__name__)

TREND_MIN_CHANGE = 20.0
TREND_MIN_CONFIDENCE = 70.0
TREND_HIGH_PRIORITY_CHANGE = 30.0
CORRELATION_MIN_R = 0.5

# Same-key insights inside this window are not repeated
DEDUP_WINDOW = timedelta(hours=24)

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
_PERIOD_PHRASES = {
    "24h": "the past day",
    "7d": "the past week",
    "30d": "the past month",
    "90d": "the past three months",
}
_TREND_KINDS = {"improving": "positive", "declining": "concern"}


class InsightGenerator:
    """Derives insights and maintains the capped log.

    Usage::

        generator = InsightGenerator(store, retention=50)
        generator.from_trend(analyzer.analyze_trend("mood", "7d"))
        for insight in generator.insights(days=7):
            ...
    """

    def __init__(self, store: MetricStore, retention: int = 50) -> None:
        self._store = store
        self._retention = retention

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def from_trend(self, trend: TrendResult, now: datetime | None = None) -> Insight | None:
        """Emit an insight for a large, confident trend."""
        change = abs(trend.percent_change)
        if change <= TREND_MIN_CHANGE or trend.confidence <= TREND_MIN_CONFIDENCE:
            return None

        metric = trend.metric_type.replace("_", " ")
        phrase = _PERIOD_PHRASES.get(trend.period, f"the past {trend.period}")
        insight = Insight(
            title=f"{metric.capitalize()} {trend.direction}",
            description=f"Your {metric} is {trend.direction}, a {change}% change over {phrase}.",
            kind=_TREND_KINDS.get(trend.direction, "neutral"),
            priority="high" if change > TREND_HIGH_PRIORITY_CHANGE else "medium",
            category="trend",
            actionable=trend.direction == "declining",
            timestamp=now or utcnow(),
            data={"key": f"trend:{trend.metric_type}:{trend.direction}", "trend": trend.to_record()},
        )
        return self.record(insight)

    def from_correlation(
        self, correlation: Correlation, now: datetime | None = None
    ) -> Insight | None:
        """Emit an insight for a moderate or strong correlation."""
        r = correlation.coefficient
        if abs(r) <= CORRELATION_MIN_R:
            return None

        insight = Insight(
            title=f"{correlation.metric_a.capitalize()} and {correlation.metric_b} are linked",
            description=correlation.description,
            kind="neutral",
            priority="medium" if abs(r) > STRONG_R else "low",
            category="correlation",
            timestamp=now or utcnow(),
            data={
                "key": f"correlation:{correlation.metric_a}:{correlation.metric_b}",
                "correlation": correlation.to_record(),
            },
        )
        return self.record(insight)

    def from_goal(self, goal: Goal, now: datetime | None = None) -> Insight | None:
        """Emit an achievement insight once a goal reaches 100%."""
        if goal.progress < 100:
            return None

        metric = goal.metric_type.replace("_", " ")
        insight = Insight(
            title="Goal achieved",
            description=f"You reached your {goal.timeframe} {metric} goal of {goal.target_value:g}.",
            kind="achievement",
            priority="medium",
            category="goal",
            timestamp=now or utcnow(),
            data={"key": f"goal:{goal.id}:achieved", "goal_id": goal.id},
        )
        return self.record(insight)

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def record(self, insight: Insight) -> Insight | None:
        """Append ``insight`` to the log, evicting the oldest past retention.

        Returns ``None`` when an insight with the same key was logged within
        the last day, or when the store is unavailable.
        """
        key = insight.data.get("key")
        appended = False

        def append(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            nonlocal appended
            if key and _recent_duplicate(records, key, insight.timestamp):
                appended = False
                return records
            appended = True
            return [*records, insight.to_record()][-self._retention:]

        try:
            self._store.update(INSIGHTS_KEY, append, default=[])
        except StoreUnavailable:
            logger.warning("Store unavailable; insight %r not recorded", insight.title)
            return None

        if not appended:
            return None
        logger.info("Insight recorded: %s (%s/%s)", insight.title, insight.kind, insight.priority)
        return insight

    def insights(self, days: int = 7, now: datetime | None = None) -> list[Insight]:
        """Undismissed insights from the last ``days``, by priority then newest."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        active = [i for i in self._store.insights() if not i.dismissed and i.timestamp > cutoff]
        active.sort(key=lambda i: (_PRIORITY_ORDER.get(i.priority, 0), i.timestamp), reverse=True)
        return active

    def dismiss(self, insight_id: str) -> bool:
        """Mark an insight dismissed. Unknown ids and repeats are no-ops."""
        found = False

        def mark(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            nonlocal found
            found = False
            updated = []
            for record in records:
                if record.get("id") == insight_id:
                    found = True
                    record = {**record, "dismissed": True}
                updated.append(record)
            return updated

        self._store.update(INSIGHTS_KEY, mark, default=[])
        return found


def _recent_duplicate(records: list[dict[str, Any]], key: str, at: datetime) -> bool:
    for record in reversed(records):
        if record.get("data", {}).get("key") != key:
            continue
        return at - Insight.from_record(record).timestamp < DEDUP_WINDOW
    return False
