"""WellnessCompanion: ingestion and summary facade over the analytics core.

Producers (manual entry, devices, the emotion classifier, check-in forms)
call the ``record_*`` methods. Each accepted reading is appended first; the
derived work that follows (goal refresh, trend insight) is best-effort and
never undoes the append.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from companion.core.audit.logger import AuditLogger
from companion.core.storage.backend import StoreUnavailable, as_utc
from companion.domains.wellness.domain_logic.advice import (
    Advice,
    AdvicePreferences,
    AdviceSelector,
)
from companion.domains.wellness.domain_logic.correlation_engine import CorrelationEngine
from companion.domains.wellness.domain_logic.escalation import EscalationPolicy
from companion.domains.wellness.domain_logic.goals import GoalTracker
from companion.domains.wellness.domain_logic.insights import InsightGenerator
from companion.domains.wellness.domain_logic.models import (
    METRIC_TYPES,
    Alert,
    CheckIn,
    CheckInResponse,
    EmotionSample,
    Goal,
    InvalidSample,
    MetricSample,
    TrendResult,
    VitalSigns,
    utcnow,
)
from companion.domains.wellness.domain_logic.stability import StabilityScorer
from companion.domains.wellness.domain_logic.tables import CHECKIN_METRICS
from companion.domains.wellness.domain_logic.trend_analyzer import TrendAnalyzer
from companion.domains.wellness.notifications import LoggingTransport, NotificationTransport
from companion.domains.wellness.store import MetricStore

logger = logging.getLogger(__name__)

SUMMARY_TREND_PERIOD = "7d"
SUMMARY_INSIGHT_DAYS = 3
RECENT_METRICS_LIMIT = 10

# VitalSigns field -> (metric type, value extractor, unit extractor)
_VITAL_METRICS: dict[str, tuple[str, Callable[[dict], Any], Callable[[dict], str]]] = {
    "blood_pressure": (
        "blood_pressure",
        lambda r: {"systolic": r["systolic"], "diastolic": r["diastolic"]},
        lambda r: "mmHg",
    ),
    "heart_rate": ("heart_rate", lambda r: r["bpm"], lambda r: "bpm"),
    "temperature": ("temperature", lambda r: r["value"], lambda r: r.get("unit", "F")),
    "weight": ("weight", lambda r: r["value"], lambda r: r.get("unit", "lbs")),
    "glucose": ("glucose", lambda r: r["value"], lambda r: r.get("unit", "mg/dL")),
}


def overall_health_score(trends: Sequence[TrendResult], goals: Sequence[Goal]) -> int:
    """Blend of trend confidence and average goal progress, 0-100."""
    score = 50.0
    for trend in trends:
        if trend.direction == "improving":
            score += trend.confidence * 0.3
        elif trend.direction == "declining":
            score -= trend.confidence * 0.2

    active = [g for g in goals if g.is_active]
    if active:
        avg_progress = sum(g.progress for g in active) / len(active)
        score += (avg_progress - 50) * 0.3

    return max(0, min(100, int(score + 0.5)))


class WellnessCompanion:
    """Wires the analytics components over one store.

    Usage::

        companion = WellnessCompanion(MetricStore(MemoryStoreBackend()))
        companion.record_metric("mood", 4, "score")
        summary = companion.health_summary()
    """

    def __init__(
        self,
        store: MetricStore,
        transport: NotificationTransport | None = None,
        *,
        audit_logger: AuditLogger | None = None,
        insight_retention: int = 50,
    ) -> None:
        self.store = store
        self.transport = transport or LoggingTransport()
        self.trends = TrendAnalyzer(store)
        self.correlations = CorrelationEngine(store)
        self.stability = StabilityScorer(store)
        self.insights = InsightGenerator(store, retention=insight_retention)
        self.goals = GoalTracker(store, insights=self.insights)
        self.escalation = EscalationPolicy(store, self.transport, audit_logger=audit_logger)
        self.advice = AdviceSelector(store)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record_metric(
        self,
        metric_type: str,
        value: Any,
        unit: str = "",
        *,
        source: str = "manual",
        tags: Sequence[str] = (),
        notes: str = "",
        timestamp: datetime | None = None,
    ) -> MetricSample:
        """Validate and append a reading, then refresh goals and trend insight.

        Raises:
            InvalidSample: The reading is malformed.
            StoreUnavailable: The append failed.
        """
        sample = MetricSample(
            metric_type=metric_type,
            value=value,
            unit=unit,
            timestamp=timestamp or utcnow(),
            source=source,
            tags=tuple(tags),
            notes=notes,
        ).validate()
        self.store.append(sample)
        logger.debug("Recorded %s sample %s from %s", metric_type, sample.id, source)

        try:
            self.goals.refresh_all(now=sample.timestamp, metric_type=metric_type)
            trend = self.trends.analyze_trend(metric_type, SUMMARY_TREND_PERIOD, now=sample.timestamp)
            self.insights.from_trend(trend, now=sample.timestamp)
        except StoreUnavailable:
            logger.warning("Store unavailable; derived updates for %s deferred to next tick",
                           metric_type)
        return sample

    def record_emotion(
        self,
        emotion: str,
        confidence: float = 1.0,
        timestamp: datetime | None = None,
    ) -> EmotionSample:
        if not emotion:
            raise InvalidSample("emotion label is required")
        if not 0.0 <= confidence <= 1.0:
            raise InvalidSample(f"confidence must be within [0, 1], got {confidence!r}")
        sample = EmotionSample(emotion=emotion, confidence=float(confidence),
                               timestamp=as_utc(timestamp) if timestamp else utcnow())
        self.store.append_emotion(sample)
        return sample

    def submit_check_in(
        self,
        checkin_type: str,
        responses: Sequence[CheckInResponse] | Mapping[str, Any],
        *,
        vitals: VitalSigns | None = None,
        notes: str = "",
        timestamp: datetime | None = None,
    ) -> CheckIn:
        """Score and store a check-in, escalating it when flagged.

        Scale answers with a matching metric (pain, mood, energy, sleep) are
        also recorded as samples, and attached vitals go through
        :meth:`record_vitals`.
        """
        now = as_utc(timestamp) if timestamp else utcnow()
        if isinstance(responses, Mapping):
            responses = [CheckInResponse(qid, value, now) for qid, value in responses.items()]

        check_in = self.escalation.submit_check_in(
            checkin_type, list(responses), vitals=vitals, notes=notes, now=now
        )

        for response in check_in.responses:
            metric_type = CHECKIN_METRICS.get(response.question_id)
            if metric_type is None or isinstance(response.value, (bool, str)):
                continue
            self.record_metric(metric_type, response.value, "scale",
                               source="checkin", timestamp=check_in.timestamp)

        if vitals is not None:
            self.record_vitals(vitals)
        return check_in

    def record_vitals(self, vitals: VitalSigns) -> list[Alert]:
        """Escalate critical readings and record each vital as a sample."""
        alerts = self.escalation.record_vitals(vitals)
        for field_name, (metric_type, value_of, unit_of) in _VITAL_METRICS.items():
            reading = getattr(vitals, field_name)
            if not reading:
                continue
            try:
                self.record_metric(metric_type, value_of(reading), unit_of(reading),
                                   source="device", timestamp=vitals.timestamp)
            except (KeyError, InvalidSample):
                logger.warning("Skipping malformed %s vital", field_name)
        return alerts

    def advice_for(self, emotion: str, preferences: AdvicePreferences | None = None) -> Advice:
        return self.advice.select(emotion, preferences)

    # ------------------------------------------------------------------
    # Summary and periodic work
    # ------------------------------------------------------------------

    def recent_metrics(self, now: datetime | None = None, limit: int = RECENT_METRICS_LIMIT) -> list[MetricSample]:
        """Newest samples of any metric from the past day."""
        now = now or utcnow()
        since = now - timedelta(days=1)
        samples: list[MetricSample] = []
        for metric_type in sorted(METRIC_TYPES):
            samples.extend(self.store.query(metric_type, since=since, until=now).samples)
        samples.sort(key=lambda s: s.timestamp, reverse=True)
        return samples[:limit]

    def health_summary(self, now: datetime | None = None) -> dict[str, Any]:
        """Overall score with the trends, goals and insights behind it."""
        now = now or utcnow()
        trends = self.trends.all_trends(SUMMARY_TREND_PERIOD, now=now)
        goals = self.goals.goals(active_only=True)
        return {
            "overall_score": overall_health_score(trends, goals),
            "trends": [t.to_record() for t in trends],
            "goals": [g.to_record() for g in goals],
            "insights": [i.to_record() for i in self.insights.insights(days=SUMMARY_INSIGHT_DAYS, now=now)],
            "recent_metrics": [s.to_record() for s in self.recent_metrics(now)],
            "mood_stability": round(self.stability.mood_stability(now=now), 3),
        }

    def reevaluation_steps(self) -> list[tuple[str, Callable[[datetime], Any]]]:
        """Ordered steps of one periodic re-evaluation pass."""
        return [
            ("correlations", self._refresh_correlations),
            ("goals", lambda now: self.goals.refresh_all(now=now)),
            ("trend_insights", self._refresh_trend_insights),
            ("pending_alerts", lambda now: self.escalation.retry_pending()),
            ("held_notifications", lambda now: self._flush_transport()),
        ]

    def _refresh_correlations(self, now: datetime) -> None:
        for correlation in self.correlations.recompute_all(now=now):
            self.insights.from_correlation(correlation, now=now)

    def _refresh_trend_insights(self, now: datetime) -> None:
        for trend in self.trends.all_trends(SUMMARY_TREND_PERIOD, now=now):
            self.insights.from_trend(trend, now=now)

    def _flush_transport(self) -> int:
        flush = getattr(self.transport, "flush", None)
        return flush() if callable(flush) else 0
