"""Emotional stability from classifier output."""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from companion.domains.wellness.domain_logic.models import EmotionSample, utcnow
from companion.domains.wellness.domain_logic.tables import (
    DEFAULT_MOOD_VALUE,
    LOW_STABILITY_CONCERN,
    MAX_MEANINGFUL_STDDEV,
    MOOD_VALUES,
    NEGATIVE_EMOTIONS,
    NEGATIVE_SHARE_CONCERN,
    emotional_recommendations,
)
from companion.domains.wellness.store import MetricStore

logger = logging.getLogger(__name__)


def stability_score(samples: Sequence[EmotionSample]) -> float:
    """1.0 for a perfectly steady mood, falling toward 0.0 as it swings.

    Labels map onto a 1-5 ordinal; the population standard deviation is
    scaled against 2.0, the largest spread that still means anything on
    that scale.
    """
    if len(samples) < 2:
        return 1.0
    scores = [MOOD_VALUES.get(s.emotion, DEFAULT_MOOD_VALUE) for s in samples]
    score = 1.0 - min(1.0, statistics.pstdev(scores) / MAX_MEANINGFUL_STDDEV)
    return max(0.0, min(1.0, score))


def distribution(samples: Sequence[EmotionSample]) -> list[dict[str, Any]]:
    counts = Counter(s.emotion for s in samples)
    total = len(samples)
    return [
        {"emotion": emotion, "count": count, "percentage": round(count / total * 100, 1)}
        for emotion, count in counts.most_common()
    ]


class StabilityScorer:
    """Scores and summarizes recent emotion samples.

    Usage::

        scorer = StabilityScorer(store)
        score = scorer.mood_stability(window_days=7)
        concerns = scorer.emotional_concerns()
    """

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    def _window(self, window_days: int, now: datetime | None) -> tuple[EmotionSample, ...]:
        now = now or utcnow()
        return tuple(
            s for s in self._store.emotions(since=now - timedelta(days=window_days))
            if s.timestamp <= now
        )

    def mood_stability(self, window_days: int = 7, now: datetime | None = None) -> float:
        return stability_score(self._window(window_days, now))

    def emotion_distribution(
        self, window_days: int = 7, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Per-emotion count and share of the window, most frequent first."""
        return distribution(self._window(window_days, now))

    def emotional_concerns(
        self, window_days: int = 7, now: datetime | None = None
    ) -> dict[str, Any]:
        """Flag a mostly-negative or highly volatile emotional window.

        Returns:
            Dict with: consistent_negative, low_stability, negative_share,
            stability, recommendations.
        """
        samples = self._window(window_days, now)
        negatives = sum(1 for s in samples if s.emotion in NEGATIVE_EMOTIONS)
        negative_share = negatives / len(samples) * 100 if samples else 0.0
        stability = stability_score(samples)

        consistent_negative = negative_share > NEGATIVE_SHARE_CONCERN
        low_stability = stability < LOW_STABILITY_CONCERN

        recommendations: list[str] = []
        if consistent_negative:
            recommendations.extend(emotional_recommendations("consistent_negative"))
        if low_stability:
            recommendations.extend(emotional_recommendations("low_stability"))
        if recommendations:
            logger.info("Emotional concern detected (negative=%.1f%%, stability=%.2f)",
                        negative_share, stability)

        return {
            "consistent_negative": consistent_negative,
            "low_stability": low_stability,
            "negative_share": round(negative_share, 1),
            "stability": round(stability, 3),
            "recommendations": recommendations,
        }
