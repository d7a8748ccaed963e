"""Goal progress and streak tracking.

Progress is the share of the distance from the baseline to the target that
has been covered. Streaks count consecutive timeframe periods (days, ISO
weeks or months) in which the goal was met. Goal records are written back
with compare-and-set so a concurrent update is never silently overwritten.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime, timedelta

from companion.core.storage.backend import StoreUnavailable
from companion.domains.wellness.domain_logic.insights import InsightGenerator
from companion.domains.wellness.domain_logic.models import (
    METRIC_TYPES,
    TIMEFRAMES,
    Goal,
    new_id,
    utcnow,
)
from companion.domains.wellness.store import MetricStore

logger = logging.getLogger(__name__)

BASELINE_LOOKBACK = timedelta(days=7)

# How far back refresh_all looks for the reading that counts for a period
_REFRESH_LOOKBACK = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=31),
}


def compute_progress(initial: float, target: float, current: float) -> float:
    """Percent of the baseline→target distance covered, clamped to 0-100."""
    distance = abs(target - initial)
    if distance == 0:
        return 100.0
    progress = (distance - abs(target - current)) / distance * 100
    return round(max(0.0, min(100.0, progress)), 1)


def period_key(timeframe: str, when: datetime) -> str:
    """Label of the calendar period containing ``when``."""
    day = when.date()
    if timeframe == "weekly":
        year, week, _ = day.isocalendar()
        return f"{year}-W{week:02d}"
    if timeframe == "monthly":
        return f"{day.year}-{day.month:02d}"
    return day.isoformat()


def _previous_period(timeframe: str, when: datetime) -> str:
    day = when.date()
    if timeframe == "weekly":
        prev = day - timedelta(days=7)
    elif timeframe == "monthly":
        prev = date(day.year, day.month, 1) - timedelta(days=1)
    else:
        prev = day - timedelta(days=1)
    return period_key(timeframe, datetime.combine(prev, datetime.min.time()))


def apply_progress(goal: Goal, current_value: float, now: datetime) -> Goal:
    """Return a copy of ``goal`` updated for a new reading. Pure.

    Calling it again with the same value in the same period yields the
    same goal.
    """
    progress = compute_progress(goal.initial_value, goal.target_value, current_value)
    met = progress >= 100
    period = period_key(goal.timeframe, now)

    streak = goal.streak_days
    last_period = goal.last_streak_period
    if not met:
        streak, last_period = 0, None
    elif last_period == period:
        pass
    elif last_period == _previous_period(goal.timeframe, now):
        streak, last_period = streak + 1, period
    else:
        streak, last_period = 1, period

    last_achieved = goal.last_achieved
    if met and last_achieved is None:
        last_achieved = now

    return dataclasses.replace(
        goal,
        current_value=float(current_value),
        progress=progress,
        streak_days=streak,
        last_streak_period=last_period,
        last_achieved=last_achieved,
    )


class GoalTracker:
    """Creates goals and keeps their progress current.

    Usage::

        tracker = GoalTracker(store, insights=generator)
        goal_id = tracker.create_goal("steps", 8000, "daily")
        tracker.refresh_all()
    """

    def __init__(self, store: MetricStore, insights: InsightGenerator | None = None) -> None:
        self._store = store
        self._insights = insights

    def create_goal(
        self,
        metric_type: str,
        target: float,
        timeframe: str,
        deadline: datetime | None = None,
        now: datetime | None = None,
    ) -> str:
        """Create an active goal; the baseline is the latest reading from the past week."""
        if metric_type not in METRIC_TYPES:
            raise ValueError(f"unknown metric type: {metric_type!r}")
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"unknown timeframe: {timeframe!r}")

        now = now or utcnow()
        latest = self._store.latest(metric_type, since=now - BASELINE_LOOKBACK)
        baseline = latest.scalar if latest else 0.0

        goal = Goal(
            id=new_id(),
            metric_type=metric_type,
            target_value=float(target),
            initial_value=baseline,
            current_value=baseline,
            timeframe=timeframe,
            deadline=deadline,
            progress=compute_progress(baseline, float(target), baseline),
            created_at=now,
        )
        self._store.add_goal(goal)
        logger.info("Created %s goal %s for %s (baseline=%s, target=%s)",
                    timeframe, goal.id, metric_type, baseline, target)
        return goal.id

    def record_progress(
        self,
        goal: Goal | str,
        current_value: float,
        now: datetime | None = None,
    ) -> Goal:
        """Apply a reading to a goal and persist it.

        A lost compare-and-set race re-reads the goal and re-applies the
        reading once. If that also loses, the stored goal is left to the
        winner and the computed goal is returned.
        """
        now = now or utcnow()
        goal_id = goal if isinstance(goal, str) else goal.id

        for attempt in range(2):
            stored, version = self._store.load_goal(goal_id)
            if stored is None:
                if isinstance(goal, str):
                    raise KeyError(goal_id)
                # Never persisted: compute only
                return apply_progress(goal, current_value, now)

            updated = apply_progress(stored, current_value, now)
            if updated == stored:
                return stored
            if self._store.save_goal(updated, version):
                break
            logger.info("Goal %s changed concurrently (attempt %d)", goal_id, attempt + 1)
        else:
            logger.warning("Goal %s progress not saved after retry", goal_id)
            return updated

        if stored.last_achieved is None and updated.last_achieved is not None:
            logger.info("Goal %s achieved", goal_id)
            if self._insights is not None:
                self._insights.from_goal(updated, now=now)
        return updated

    def retire_goal(self, goal_id: str) -> bool:
        """Deactivate a goal. Returns False for an unknown id."""
        for _ in range(2):
            stored, version = self._store.load_goal(goal_id)
            if stored is None:
                return False
            if not stored.is_active:
                return True
            if self._store.save_goal(dataclasses.replace(stored, is_active=False), version):
                logger.info("Retired goal %s", goal_id)
                return True
        return False

    def goals(self, active_only: bool = True) -> list[Goal]:
        return self._store.goals(active_only=active_only)

    def refresh_all(
        self,
        now: datetime | None = None,
        *,
        metric_type: str | None = None,
    ) -> list[Goal]:
        """Re-apply the latest reading to every active goal.

        Goals with no reading inside their timeframe are left untouched.
        A failure on one goal is logged and does not stop the others.
        """
        now = now or utcnow()
        refreshed = []
        for goal in self.goals(active_only=True):
            if metric_type is not None and goal.metric_type != metric_type:
                continue
            lookback = _REFRESH_LOOKBACK.get(goal.timeframe, timedelta(days=1))
            series = self._store.query(goal.metric_type, since=now - lookback, until=now)
            if not series.samples:
                continue
            latest = series.samples[-1]
            try:
                refreshed.append(self.record_progress(goal, latest.scalar, now=latest.timestamp))
            except StoreUnavailable:
                raise
            except Exception:
                logger.exception("Refreshing goal %s failed", goal.id)
        return refreshed
