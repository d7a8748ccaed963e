"""Trend analysis over irregularly-sampled metric history.

Fits an ordinary least-squares line of value against elapsed days, turns the
slope into a direction using the metric's polarity, and attaches canned
recommendations. Fewer than three points is a result, not an error.
"""

from __future__ import annotations

import logging
import statistics
from datetime import datetime, timedelta

from companion.domains.wellness.domain_logic.models import (
    INSUFFICIENT_DATA,
    TimeSeries,
    TrendResult,
    utcnow,
)
from companion.domains.wellness.domain_logic.stats import linear_regression
from companion.domains.wellness.domain_logic.tables import (
    MAX_CONFIDENCE,
    MIN_TREND_POINTS,
    STABLE_SLOPE_THRESHOLD,
    TRACKED_METRICS,
    is_improvement,
    period_days,
    trend_recommendations,
)
from companion.domains.wellness.store import MetricStore

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0


def analyze_series(series: TimeSeries, period: str = "30d") -> TrendResult:
    """Compute a :class:`TrendResult` for an ascending snapshot.

    Args:
        series: Samples of one metric, oldest first.
        period: Label copied onto the result ('24h', '7d', '30d', '90d').

    Returns:
        ``insufficient_data`` with zero confidence when fewer than three
        points are available; otherwise the fitted direction.
    """
    metric_type = series.metric_type
    values = series.values

    if len(values) < MIN_TREND_POINTS:
        return TrendResult(
            metric_type=metric_type,
            period=period,
            direction=INSUFFICIENT_DATA,
            sample_count=len(values),
            last_value=values[-1] if values else 0.0,
            recommendations=trend_recommendations(metric_type, INSUFFICIENT_DATA),
        )

    origin = series.samples[0].timestamp
    days = [(s.timestamp - origin).total_seconds() / _SECONDS_PER_DAY for s in series.samples]
    slope, r = linear_regression(days, values)

    mean_val = statistics.fmean(values)
    last = values[-1]

    # Slope as a fraction of the mean per day, so units do not matter
    normalized = slope / abs(mean_val) if mean_val else slope
    if abs(normalized) < STABLE_SLOPE_THRESHOLD:
        direction = "stable"
    elif is_improvement(metric_type, increasing=normalized > 0):
        direction = "improving"
    else:
        direction = "declining"

    percent_change = (last - mean_val) / mean_val * 100 if mean_val else 0.0
    confidence = min(abs(r) * 100, MAX_CONFIDENCE)

    return TrendResult(
        metric_type=metric_type,
        period=period,
        direction=direction,
        percent_change=round(percent_change, 1),
        confidence=round(confidence, 1),
        sample_count=len(values),
        last_value=last,
        mean_value=round(mean_val, 2),
        min_value=min(values),
        max_value=max(values),
        recommendations=trend_recommendations(metric_type, direction),
    )


class TrendAnalyzer:
    """Computes metric trends from stored sample history.

    Usage::

        analyzer = TrendAnalyzer(store)
        trend = analyzer.analyze_trend("mood", period="7d")
        ranked = analyzer.all_trends("30d")
    """

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    def analyze_trend(
        self,
        metric_type: str,
        period: str = "30d",
        now: datetime | None = None,
    ) -> TrendResult:
        """Trend of ``metric_type`` over the lookback window of ``period``."""
        now = now or utcnow()
        since = now - timedelta(days=period_days(period))
        series = self._store.query(metric_type, since=since, until=now)
        return analyze_series(series, period)

    def all_trends(self, period: str = "30d", now: datetime | None = None) -> list[TrendResult]:
        """Trends for every tracked metric with enough data, most confident first."""
        trends = []
        for metric_type in TRACKED_METRICS:
            trend = self.analyze_trend(metric_type, period, now=now)
            if trend.direction != INSUFFICIENT_DATA:
                trends.append(trend)
        trends.sort(key=lambda t: t.confidence, reverse=True)
        return trends
