"""Static lookup tables for the analytics core.

Polarity, mood ordinals, curated correlation pairs, check-in flag rules,
vital-sign thresholds and the alert → permission map live here so they can
be audited and tested on their own. Recommendation text is data and ships
as YAML next to this package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

_TABLES_DIR = Path(__file__).resolve().parent.parent / "tables"

# ---------------------------------------------------------------------------
# Trend analysis
# ---------------------------------------------------------------------------

PERIOD_DAYS: dict[str, int] = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD_DAYS = 30

# |normalized slope| below this (fractional change of the mean per day) is stable
STABLE_SLOPE_THRESHOLD = 0.05
MIN_TREND_POINTS = 3
MAX_CONFIDENCE = 95.0

HIGHER_IS_BETTER: frozenset[str] = frozenset({"mood", "energy", "sleep", "steps"})
LOWER_IS_BETTER: frozenset[str] = frozenset({"pain"})

# Metrics covered by all_trends() and the periodic insight pass
TRACKED_METRICS: tuple[str, ...] = (
    "mood", "pain", "energy", "sleep", "heart_rate", "blood_pressure", "weight",
)

INSUFFICIENT_DATA_RECOMMENDATION = "Need more data points to analyze trends"
FALLBACK_RECOMMENDATION = "Monitor closely and consult a healthcare professional"


def is_improvement(metric_type: str, increasing: bool) -> bool:
    """Whether a rising (or falling) series counts as improving for the metric."""
    if metric_type in LOWER_IS_BETTER:
        return not increasing
    return increasing


def period_days(period: str) -> int:
    return PERIOD_DAYS.get(period, DEFAULT_PERIOD_DAYS)


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

CORRELATION_PAIRS: tuple[tuple[str, str], ...] = (
    ("mood", "sleep"),
    ("pain", "mood"),
    ("energy", "sleep"),
    ("mood", "steps"),
    ("sleep", "heart_rate"),
)
MATCH_WINDOW_HOURS = 24
MIN_MATCHED_PAIRS = 5
MIN_MEANINGFUL_R = 0.3
STRONG_R = 0.7
MODERATE_R = 0.5

# ---------------------------------------------------------------------------
# Emotional stability
# ---------------------------------------------------------------------------

MOOD_VALUES: dict[str, int] = {
    "happy": 5,
    "surprised": 4,
    "neutral": 3,
    "fearful": 2,
    "disgusted": 2,
    "sad": 1,
    "angry": 1,
}
DEFAULT_MOOD_VALUE = 3
MAX_MEANINGFUL_STDDEV = 2.0
NEGATIVE_EMOTIONS: frozenset[str] = frozenset({"sad", "angry", "fearful", "disgusted"})
NEGATIVE_SHARE_CONCERN = 60.0   # percent of window samples
LOW_STABILITY_CONCERN = 0.3

# ---------------------------------------------------------------------------
# Check-in flag rules: (question_id, comparison, threshold, reason)
# ---------------------------------------------------------------------------

LOW_OVERALL_SCORE = 3

CHECKIN_FLAG_RULES: tuple[tuple[str, str, float, str], ...] = (
    ("pain_level", ">=", 8, "high_pain"),
    ("mood_rating", "<=", 2, "low_mood"),
    ("emergency_severity", ">=", 7, "emergency_severity"),
)

# Scale answers that double as metric samples (source "checkin")
CHECKIN_METRICS: dict[str, str] = {
    "pain_level": "pain",
    "mood_rating": "mood",
    "energy_level": "energy",
    "sleep_quality": "sleep",
}

# ---------------------------------------------------------------------------
# Vital-sign thresholds. Fixed: the core never adjusts them at runtime.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VitalRule:
    """One distinct vital-sign concern."""

    concern: str
    reading: str                       # VitalSigns attribute the rule reads
    predicate: Callable[[dict[str, Any]], bool]
    message: str
    priority: str


def _fahrenheit(temperature: dict[str, Any]) -> float:
    value = float(temperature["value"])
    return value * 9 / 5 + 32 if temperature.get("unit") == "C" else value


VITAL_RULES: tuple[VitalRule, ...] = (
    VitalRule(
        "blood_pressure_critical_high", "blood_pressure",
        lambda bp: bp["systolic"] > 180 or bp["diastolic"] > 120,
        "Critically high blood pressure detected", "critical",
    ),
    VitalRule(
        "blood_pressure_low", "blood_pressure",
        lambda bp: not (bp["systolic"] > 180 or bp["diastolic"] > 120)
        and (bp["systolic"] < 90 or bp["diastolic"] < 60),
        "Low blood pressure detected", "high",
    ),
    VitalRule(
        "heart_rate_high", "heart_rate",
        lambda hr: hr["bpm"] > 120,
        "Elevated heart rate detected", "critical",
    ),
    VitalRule(
        "heart_rate_low", "heart_rate",
        lambda hr: hr["bpm"] < 50,
        "Low heart rate detected", "critical",
    ),
    VitalRule(
        "temperature_high", "temperature",
        lambda t: _fahrenheit(t) > 102,
        "High fever detected", "critical",
    ),
    VitalRule(
        "temperature_low", "temperature",
        lambda t: _fahrenheit(t) < 95,
        "Low body temperature detected", "critical",
    ),
    VitalRule(
        "oxygen_saturation_low", "oxygen_saturation",
        lambda o2: o2["percentage"] < 90,
        "Low oxygen saturation detected", "critical",
    ),
)

# ---------------------------------------------------------------------------
# Caregiver permissions
# ---------------------------------------------------------------------------

ALERT_PERMISSIONS: dict[str, str] = {
    "emergency": "emergency_alerts",
    "health_concern": "health_data",
    "medication_missed": "medication",
    "daily_report": "daily_reports",
    "vital_signs_critical": "vital_signs",
}

# ---------------------------------------------------------------------------
# YAML-backed text tables
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def load_table(name: str) -> dict[str, Any]:
    """Load ``tables/<name>.yaml``; a missing or broken file yields ``{}``."""
    path = _TABLES_DIR / f"{name}.yaml"
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        logger.exception("Failed to load table %s", path)
        return {}
    return data


def trend_recommendations(metric_type: str, direction: str) -> list[str]:
    """Recommendations for ``(metric_type, direction)`` with a generic fallback."""
    if direction == "insufficient_data":
        return [INSUFFICIENT_DATA_RECOMMENDATION]
    table = load_table("recommendations")
    advice = table.get(metric_type, {}).get(direction)
    return list(advice) if advice else [FALLBACK_RECOMMENDATION]


def emotional_recommendations(concern: str) -> list[str]:
    """Recommendations for 'consistent_negative' or 'low_stability'."""
    table = load_table("recommendations")
    return list(table.get("emotional", {}).get(concern) or [])
