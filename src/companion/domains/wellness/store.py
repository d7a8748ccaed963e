"""MetricStore: typed reads and appends over the store collaborator.

Sample streams are append-only; every query materializes a fresh tuple of
frozen samples, so a concurrent append never shows up mid-computation.
Entity records (goals, check-ins) carry the backend's version and are
written back with compare-and-set. Reads degrade to empty/default values
when the backend is unavailable; writes raise :class:`StoreUnavailable`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from companion.core.storage.backend import StoreBackend, StoreUnavailable
from companion.domains.wellness.domain_logic.models import (
    Alert,
    Caregiver,
    CheckIn,
    Correlation,
    EmotionSample,
    Goal,
    Insight,
    MetricSample,
    TimeSeries,
    VitalSigns,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stream names that are not metric types
EMOTION_STREAM = "emotion"
VITALS_STREAM = "vitals"
CHECKIN_INDEX_STREAM = "checkin_index"

GOAL_INDEX_KEY = "goals"
INSIGHTS_KEY = "insights"
CORRELATIONS_KEY = "correlations"
CAREGIVERS_KEY = "caregivers"
PENDING_ALERTS_KEY = "pending_alerts"
ADVICE_USAGE_KEY = "advice_usage"

_CAS_ATTEMPTS = 5


def _goal_key(goal_id: str) -> str:
    return f"goal:{goal_id}"


def _checkin_key(checkin_id: str) -> str:
    return f"checkin:{checkin_id}"


class MetricStore:
    """Typed adapter over a :class:`StoreBackend`.

    Usage::

        store = MetricStore(MemoryStoreBackend())
        store.append(MetricSample("mood", 4, "score", now))
        series = store.query("mood", since=now - timedelta(days=7))
    """

    def __init__(self, backend: StoreBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> StoreBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Metric samples
    # ------------------------------------------------------------------

    def append(self, sample: MetricSample) -> str:
        """Validate and append one sample; returns the sample id."""
        sample = sample.validate()
        self._backend.append(sample.metric_type, sample.timestamp, sample.to_record())
        return sample.id

    def query(
        self,
        metric_type: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> TimeSeries:
        """Ascending snapshot of ``metric_type`` within the bounds."""
        records = self._read_stream(metric_type, since, until)
        samples = []
        for record in records:
            try:
                samples.append(MetricSample.from_record(record))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed %s sample: %r", metric_type, record.get("id"))
        samples.sort(key=lambda s: s.timestamp)
        return TimeSeries(metric_type=metric_type, samples=tuple(samples))

    def latest(self, metric_type: str, since: datetime | None = None) -> MetricSample | None:
        series = self.query(metric_type, since=since)
        return series.samples[-1] if series.samples else None

    def purge_before(self, before: datetime) -> int:
        try:
            return self._backend.purge_before(before)
        except StoreUnavailable:
            logger.warning("Store unavailable; retention purge skipped")
            return 0

    # ------------------------------------------------------------------
    # Emotion samples and vitals
    # ------------------------------------------------------------------

    def append_emotion(self, sample: EmotionSample) -> None:
        self._backend.append(EMOTION_STREAM, sample.timestamp, sample.to_record())

    def emotions(self, since: datetime | None = None) -> tuple[EmotionSample, ...]:
        samples = []
        for record in self._read_stream(EMOTION_STREAM, since, None):
            try:
                samples.append(EmotionSample.from_record(record))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed emotion sample")
        return tuple(sorted(samples, key=lambda s: s.timestamp))

    def append_vitals(self, vitals: VitalSigns) -> None:
        self._backend.append(VITALS_STREAM, vitals.timestamp, vitals.to_record())

    def vitals_history(self, since: datetime | None = None) -> list[VitalSigns]:
        return [VitalSigns.from_record(r) for r in self._read_stream(VITALS_STREAM, since, None)]

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def add_goal(self, goal: Goal) -> None:
        if not self._backend.compare_and_set(_goal_key(goal.id), goal.to_record(), 0):
            raise StoreUnavailable(f"goal {goal.id} already exists")
        self.update(GOAL_INDEX_KEY, lambda ids: [*ids, goal.id], default=[])

    def load_goal(self, goal_id: str) -> tuple[Goal | None, int]:
        record, version = self._backend.get_versioned(_goal_key(goal_id))
        return (Goal.from_record(record) if record else None), version

    def save_goal(self, goal: Goal, expected_version: int) -> bool:
        return self._backend.compare_and_set(_goal_key(goal.id), goal.to_record(), expected_version)

    def goals(self, *, active_only: bool = True) -> list[Goal]:
        goals: list[Goal] = []
        try:
            for goal_id in self._backend.get(GOAL_INDEX_KEY) or []:
                goal, _ = self.load_goal(goal_id)
                if goal is not None and (goal.is_active or not active_only):
                    goals.append(goal)
        except StoreUnavailable:
            logger.warning("Store unavailable; returning no goals")
            return []
        return goals

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def insights(self) -> list[Insight]:
        return [Insight.from_record(r) for r in self._read_key(INSIGHTS_KEY, [])]

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def add_check_in(self, check_in: CheckIn) -> None:
        if not self._backend.compare_and_set(_checkin_key(check_in.id), check_in.to_record(), 0):
            raise StoreUnavailable(f"check-in {check_in.id} already exists")
        self._backend.append(CHECKIN_INDEX_STREAM, check_in.timestamp, {"id": check_in.id})

    def load_check_in(self, checkin_id: str) -> tuple[CheckIn | None, int]:
        record, version = self._backend.get_versioned(_checkin_key(checkin_id))
        return (CheckIn.from_record(record) if record else None), version

    def save_check_in(self, check_in: CheckIn, expected_version: int) -> bool:
        return self._backend.compare_and_set(
            _checkin_key(check_in.id), check_in.to_record(), expected_version
        )

    def check_in_history(self, since: datetime | None = None) -> list[CheckIn]:
        """Check-ins since ``since``, newest first."""
        history: list[CheckIn] = []
        try:
            for entry in self._read_stream(CHECKIN_INDEX_STREAM, since, None):
                check_in, _ = self.load_check_in(entry["id"])
                if check_in is not None:
                    history.append(check_in)
        except StoreUnavailable:
            logger.warning("Store unavailable; returning partial check-in history")
        return sorted(history, key=lambda c: c.timestamp, reverse=True)

    # ------------------------------------------------------------------
    # Correlations, caregivers, pending alerts, advice usage
    # ------------------------------------------------------------------

    def replace_correlations(self, correlations: list[Correlation]) -> None:
        """Swap the stored batch in a single write."""
        self._backend.set(CORRELATIONS_KEY, [c.to_record() for c in correlations])

    def correlations(self) -> list[Correlation]:
        return [Correlation.from_record(r) for r in self._read_key(CORRELATIONS_KEY, [])]

    def caregivers(self, *, strict: bool = False) -> list[Caregiver]:
        """Registered caregivers. ``strict`` raises StoreUnavailable instead of returning []."""
        if strict:
            records = self._backend.get(CAREGIVERS_KEY) or []
        else:
            records = self._read_key(CAREGIVERS_KEY, [])
        return [Caregiver.from_record(r) for r in records]

    def pending_alerts(self) -> list[tuple[Alert, list[str]]]:
        return [
            (Alert.from_record(entry["alert"]), list(entry["caregiver_ids"]))
            for entry in self._read_key(PENDING_ALERTS_KEY, [])
        ]

    def advice_usage(self) -> dict[str, dict[str, float]]:
        return self._read_key(ADVICE_USAGE_KEY, {})

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def update(self, key: str, fn: Callable[[T], T], *, default: T) -> T:
        """Read-modify-write ``key`` with compare-and-set, retrying on races."""
        for _ in range(_CAS_ATTEMPTS):
            current, version = self._backend.get_versioned(key)
            updated = fn(default if current is None else current)
            if self._backend.compare_and_set(key, updated, version):
                return updated
        raise StoreUnavailable(f"update of {key!r} lost {_CAS_ATTEMPTS} races")

    def _read_key(self, key: str, default: Any) -> Any:
        try:
            value = self._backend.get(key)
        except StoreUnavailable:
            logger.warning("Store unavailable; %s read returns default", key)
            return default
        return default if value is None else value

    def _read_stream(
        self, stream: str, since: datetime | None, until: datetime | None
    ) -> list[dict[str, Any]]:
        try:
            return self._backend.query(stream, since=since, until=until)
        except StoreUnavailable:
            logger.warning("Store unavailable; %s query returns empty", stream)
            return []
