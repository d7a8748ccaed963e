"""Cross-metric correlation over nearest-in-time sample pairs."""

from __future__ import annotations

import bisect
import logging
from datetime import datetime, timedelta

from companion.domains.wellness.domain_logic.models import (
    Correlation,
    MetricSample,
    TimeSeries,
    utcnow,
)
from companion.domains.wellness.domain_logic.stats import pearson
from companion.domains.wellness.domain_logic.tables import (
    CORRELATION_PAIRS,
    MATCH_WINDOW_HOURS,
    MAX_CONFIDENCE,
    MIN_MATCHED_PAIRS,
    MIN_MEANINGFUL_R,
    MODERATE_R,
    STRONG_R,
)
from companion.domains.wellness.store import MetricStore

logger = logging.getLogger(__name__)


def match_pairs(
    series_a: TimeSeries,
    series_b: TimeSeries,
    *,
    window: timedelta = timedelta(hours=MATCH_WINDOW_HOURS),
) -> list[tuple[float, float]]:
    """Pair each A sample with the B sample nearest in time.

    A pair is kept only when the two timestamps are strictly less than
    ``window`` apart. B samples may be reused across A samples.
    """
    b_samples = series_b.samples
    if not b_samples:
        return []
    b_times = [s.timestamp for s in b_samples]

    pairs = []
    for a in series_a.samples:
        nearest = _nearest(a, b_samples, b_times)
        if abs(nearest.timestamp - a.timestamp) < window:
            pairs.append((a.scalar, nearest.scalar))
    return pairs


def _nearest(
    sample: MetricSample, candidates: tuple[MetricSample, ...], times: list[datetime]
) -> MetricSample:
    i = bisect.bisect_left(times, sample.timestamp)
    if i == 0:
        return candidates[0]
    if i == len(candidates):
        return candidates[-1]
    before, after = candidates[i - 1], candidates[i]
    if sample.timestamp - before.timestamp <= after.timestamp - sample.timestamp:
        return before
    return after


def describe(metric_a: str, metric_b: str, coefficient: float) -> str:
    strength = abs(coefficient)
    if strength > STRONG_R:
        label = "strong"
    elif strength > MODERATE_R:
        label = "moderate"
    else:
        label = "weak"
    direction = "positive" if coefficient > 0 else "negative"
    return f"There is a {label} {direction} correlation between {metric_a} and {metric_b}."


class CorrelationEngine:
    """Finds and stores associations between curated metric pairs.

    Usage::

        engine = CorrelationEngine(store)
        corr = engine.correlate("mood", "sleep", window_days=30)
        batch = engine.recompute_all()
    """

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    def correlate(
        self,
        metric_a: str,
        metric_b: str,
        window_days: int = 30,
        now: datetime | None = None,
    ) -> Correlation | None:
        """Pearson correlation of matched pairs, or ``None`` if not meaningful."""
        now = now or utcnow()
        since = now - timedelta(days=window_days)
        series_a = self._store.query(metric_a, since=since, until=now)
        series_b = self._store.query(metric_b, since=since, until=now)

        if len(series_a) < MIN_MATCHED_PAIRS or len(series_b) < MIN_MATCHED_PAIRS:
            return None

        pairs = match_pairs(series_a, series_b)
        if len(pairs) < MIN_MATCHED_PAIRS:
            return None

        r = pearson([a for a, _ in pairs], [b for _, b in pairs])
        if abs(r) < MIN_MEANINGFUL_R:
            return None

        return Correlation(
            metric_a=metric_a,
            metric_b=metric_b,
            coefficient=round(r, 3),
            confidence=round(min(abs(r) * 100, MAX_CONFIDENCE), 1),
            description=describe(metric_a, metric_b, r),
            window=f"{window_days} days",
        )

    def recompute_all(self, now: datetime | None = None) -> list[Correlation]:
        """Recompute every curated pair and replace the stored batch.

        A pair that fails is logged and left out; the others still land.
        """
        batch: list[Correlation] = []
        for metric_a, metric_b in CORRELATION_PAIRS:
            try:
                corr = self.correlate(metric_a, metric_b, now=now)
            except Exception:
                logger.exception("Correlation %s/%s failed", metric_a, metric_b)
                continue
            if corr is not None:
                batch.append(corr)

        self._store.replace_correlations(batch)
        logger.info("Recomputed correlations: %d meaningful of %d pairs",
                    len(batch), len(CORRELATION_PAIRS))
        return batch

    def stored(self) -> list[Correlation]:
        """The most recently stored batch."""
        return self._store.correlations()

