"""Wellness data model: samples, analytic results, goals, insights, check-ins.

Samples are frozen; everything else is a plain dataclass owned by the
component that mutates it. ``to_record``/``from_record`` convert to the
JSON-safe dicts the store persists.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

from companion.core.storage.backend import as_utc, from_iso, to_iso

MetricType = Literal[
    "mood", "pain", "energy", "sleep", "heart_rate", "blood_pressure",
    "weight", "steps", "temperature", "glucose",
]
Source = Literal["manual", "device", "estimation", "checkin"]
Period = Literal["24h", "7d", "30d", "90d"]
Direction = Literal["improving", "stable", "declining", "insufficient_data"]
Timeframe = Literal["daily", "weekly", "monthly"]
InsightKind = Literal["positive", "neutral", "concern", "achievement"]
InsightPriority = Literal["low", "medium", "high"]
InsightCategory = Literal["trend", "goal", "correlation", "recommendation"]
CheckInType = Literal["daily", "weekly", "monthly", "emergency", "custom"]
AlertType = Literal[
    "emergency", "health_concern", "medication_missed", "daily_report", "vital_signs_critical",
]
AlertPriority = Literal["low", "medium", "high", "critical"]
PermissionType = Literal[
    "health_data", "medication", "emergency_alerts", "daily_reports", "vital_signs", "mood_tracking",
]

METRIC_TYPES: frozenset[str] = frozenset({
    "mood", "pain", "energy", "sleep", "heart_rate", "blood_pressure",
    "weight", "steps", "temperature", "glucose",
})
SOURCES: frozenset[str] = frozenset({"manual", "device", "estimation", "checkin"})
TIMEFRAMES: frozenset[str] = frozenset({"daily", "weekly", "monthly"})
CHECKIN_TYPES: frozenset[str] = frozenset({"daily", "weekly", "monthly", "emergency", "custom"})

# Direction value used as the "too few points" result variant
INSUFFICIENT_DATA: Direction = "insufficient_data"


class InvalidSample(ValueError):
    """Raised when a reading cannot be stored as a sample."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _opt_iso(ts: datetime | None) -> str | None:
    return to_iso(ts) if ts is not None else None


def _opt_dt(value: str | None) -> datetime | None:
    return from_iso(value) if value else None


# ---------------------------------------------------------------------------
# Value projection
# ---------------------------------------------------------------------------

def normalize_value(value: Any) -> float:
    """Project a stored value onto a single scalar.

    Numbers pass through, a blood-pressure pair projects to its systolic
    reading, strings are parsed. Anything unparseable is 0.0.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, dict) and "systolic" in value and "diastolic" in value:
        try:
            result = float(value["systolic"])
        except (TypeError, ValueError):
            return 0.0
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return result if math.isfinite(result) else 0.0


def _check_value(value: Any) -> None:
    if isinstance(value, bool):
        raise InvalidSample("boolean is not a metric value")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidSample(f"non-finite value: {value!r}")
        return
    if isinstance(value, str):
        return
    if isinstance(value, dict):
        for part in ("systolic", "diastolic"):
            reading = value.get(part)
            if isinstance(reading, bool) or not isinstance(reading, (int, float)):
                raise InvalidSample(f"blood pressure needs numeric {part!r}")
        return
    raise InvalidSample(f"unsupported value type: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricSample:
    """One reading of one metric. Immutable once stored."""

    metric_type: MetricType
    value: float | int | str | dict[str, float]
    unit: str
    timestamp: datetime
    source: Source = "manual"
    tags: tuple[str, ...] = ()
    notes: str = ""
    id: str = field(default_factory=new_id)

    @property
    def scalar(self) -> float:
        return normalize_value(self.value)

    def validate(self) -> MetricSample:
        """Return the sample with a UTC timestamp, or raise :class:`InvalidSample`.

        Naive timestamps are taken as UTC.
        """
        if self.metric_type not in METRIC_TYPES:
            raise InvalidSample(f"unknown metric type: {self.metric_type!r}")
        if self.source not in SOURCES:
            raise InvalidSample(f"unknown source: {self.source!r}")
        if not isinstance(self.timestamp, datetime):
            raise InvalidSample("timestamp must be a datetime")
        _check_value(self.value)
        if self.timestamp.tzinfo is not timezone.utc:
            return replace(self, timestamp=as_utc(self.timestamp))
        return self

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric_type": self.metric_type,
            "value": self.value,
            "unit": self.unit,
            "timestamp": to_iso(self.timestamp),
            "source": self.source,
            "tags": list(self.tags),
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> MetricSample:
        return cls(
            id=record["id"],
            metric_type=record["metric_type"],
            value=record["value"],
            unit=record.get("unit", ""),
            timestamp=from_iso(record["timestamp"]),
            source=record.get("source", "manual"),
            tags=tuple(record.get("tags") or ()),
            notes=record.get("notes", ""),
        )


@dataclass(frozen=True)
class EmotionSample:
    """Classifier output for one frame or check-in."""

    emotion: str
    confidence: float
    timestamp: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "emotion": self.emotion,
            "confidence": self.confidence,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> EmotionSample:
        return cls(
            emotion=record["emotion"],
            confidence=float(record.get("confidence", 0.0)),
            timestamp=from_iso(record["timestamp"]),
        )


@dataclass(frozen=True)
class TimeSeries:
    """Ascending snapshot of one metric's samples within a window."""

    metric_type: MetricType
    samples: tuple[MetricSample, ...] = ()

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def values(self) -> list[float]:
        return [s.scalar for s in self.samples]


# ---------------------------------------------------------------------------
# Analytic results
# ---------------------------------------------------------------------------

@dataclass
class TrendResult:
    """Direction/confidence summary of a metric over a period."""

    metric_type: MetricType
    period: Period
    direction: Direction
    percent_change: float = 0.0
    confidence: float = 0.0
    sample_count: int = 0
    last_value: float = 0.0
    mean_value: float = 0.0
    min_value: float = 0.0
    max_value: float = 0.0
    recommendations: list[str] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {
            "metric_type": self.metric_type,
            "period": self.period,
            "direction": self.direction,
            "percent_change": self.percent_change,
            "confidence": self.confidence,
            "sample_count": self.sample_count,
            "last_value": self.last_value,
            "mean_value": self.mean_value,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "recommendations": list(self.recommendations),
        }


@dataclass
class Correlation:
    """Association between two metrics over a window."""

    metric_a: MetricType
    metric_b: MetricType
    coefficient: float
    confidence: float
    description: str
    window: str = "30 days"

    def to_record(self) -> dict[str, Any]:
        return {
            "metric_a": self.metric_a,
            "metric_b": self.metric_b,
            "coefficient": self.coefficient,
            "confidence": self.confidence,
            "description": self.description,
            "window": self.window,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Correlation:
        return cls(**record)


# ---------------------------------------------------------------------------
# Goals and insights
# ---------------------------------------------------------------------------

@dataclass
class Goal:
    """A user-defined target for one metric."""

    id: str
    metric_type: MetricType
    target_value: float
    initial_value: float
    current_value: float
    timeframe: Timeframe
    deadline: datetime | None = None
    is_active: bool = True
    progress: float = 0.0
    streak_days: int = 0
    last_achieved: datetime | None = None
    last_streak_period: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric_type": self.metric_type,
            "target_value": self.target_value,
            "initial_value": self.initial_value,
            "current_value": self.current_value,
            "timeframe": self.timeframe,
            "deadline": _opt_iso(self.deadline),
            "is_active": self.is_active,
            "progress": self.progress,
            "streak_days": self.streak_days,
            "last_achieved": _opt_iso(self.last_achieved),
            "last_streak_period": self.last_streak_period,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Goal:
        return cls(
            id=record["id"],
            metric_type=record["metric_type"],
            target_value=float(record["target_value"]),
            initial_value=float(record["initial_value"]),
            current_value=float(record["current_value"]),
            timeframe=record["timeframe"],
            deadline=_opt_dt(record.get("deadline")),
            is_active=bool(record.get("is_active", True)),
            progress=float(record.get("progress", 0.0)),
            streak_days=int(record.get("streak_days", 0)),
            last_achieved=_opt_dt(record.get("last_achieved")),
            last_streak_period=record.get("last_streak_period"),
            created_at=from_iso(record["created_at"]),
        )


@dataclass
class Insight:
    """A generated, human-readable observation."""

    title: str
    description: str
    kind: InsightKind
    priority: InsightPriority
    category: InsightCategory
    actionable: bool = False
    dismissed: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "kind": self.kind,
            "priority": self.priority,
            "category": self.category,
            "actionable": self.actionable,
            "dismissed": self.dismissed,
            "timestamp": to_iso(self.timestamp),
            "data": self.data,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Insight:
        return cls(
            id=record["id"],
            title=record["title"],
            description=record["description"],
            kind=record["kind"],
            priority=record["priority"],
            category=record["category"],
            actionable=bool(record.get("actionable", False)),
            dismissed=bool(record.get("dismissed", False)),
            timestamp=from_iso(record["timestamp"]),
            data=record.get("data") or {},
        )


# ---------------------------------------------------------------------------
# Check-ins and vitals
# ---------------------------------------------------------------------------

@dataclass
class VitalSigns:
    """One set of vital-sign readings. Every field is optional."""

    blood_pressure: dict[str, float] | None = None   # {"systolic", "diastolic"}
    heart_rate: dict[str, float] | None = None       # {"bpm"}
    temperature: dict[str, Any] | None = None        # {"value", "unit": "F" | "C"}
    oxygen_saturation: dict[str, float] | None = None  # {"percentage"}
    weight: dict[str, Any] | None = None             # {"value", "unit": "lbs" | "kg"}
    glucose: dict[str, Any] | None = None            # {"value", "unit", "meal_relation"}
    timestamp: datetime = field(default_factory=utcnow)

    def to_record(self) -> dict[str, Any]:
        return {
            "blood_pressure": self.blood_pressure,
            "heart_rate": self.heart_rate,
            "temperature": self.temperature,
            "oxygen_saturation": self.oxygen_saturation,
            "weight": self.weight,
            "glucose": self.glucose,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> VitalSigns:
        return cls(
            blood_pressure=record.get("blood_pressure"),
            heart_rate=record.get("heart_rate"),
            temperature=record.get("temperature"),
            oxygen_saturation=record.get("oxygen_saturation"),
            weight=record.get("weight"),
            glucose=record.get("glucose"),
            timestamp=from_iso(record["timestamp"]),
        )


@dataclass(frozen=True)
class CheckInResponse:
    question_id: str
    value: str | int | float | bool
    timestamp: datetime = field(default_factory=utcnow)

    def to_record(self) -> dict[str, Any]:
        return {"question_id": self.question_id, "value": self.value, "timestamp": to_iso(self.timestamp)}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CheckInResponse:
        return cls(
            question_id=record["question_id"],
            value=record["value"],
            timestamp=from_iso(record["timestamp"]),
        )


@dataclass
class CheckIn:
    """A submitted questionnaire, optionally with vitals."""

    type: CheckInType
    responses: list[CheckInResponse]
    overall_score: int
    vitals: VitalSigns | None = None
    notes: str = ""
    flagged: bool = False
    caregiver_notified: bool = False
    flag_reasons: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def response_value(self, question_id: str) -> Any:
        for response in self.responses:
            if response.question_id == question_id:
                return response.value
        return None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "responses": [r.to_record() for r in self.responses],
            "overall_score": self.overall_score,
            "vitals": self.vitals.to_record() if self.vitals else None,
            "notes": self.notes,
            "flagged": self.flagged,
            "caregiver_notified": self.caregiver_notified,
            "flag_reasons": list(self.flag_reasons),
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CheckIn:
        vitals = record.get("vitals")
        return cls(
            id=record["id"],
            type=record["type"],
            responses=[CheckInResponse.from_record(r) for r in record.get("responses", [])],
            overall_score=int(record["overall_score"]),
            vitals=VitalSigns.from_record(vitals) if vitals else None,
            notes=record.get("notes", ""),
            flagged=bool(record.get("flagged", False)),
            caregiver_notified=bool(record.get("caregiver_notified", False)),
            flag_reasons=list(record.get("flag_reasons", [])),
            timestamp=from_iso(record["timestamp"]),
        )


# ---------------------------------------------------------------------------
# Caregivers and alerts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CaregiverPermission:
    caregiver_id: str
    alert_type: PermissionType
    granted: bool = True


@dataclass
class Caregiver:
    """Someone who may receive alerts, scoped by permissions."""

    id: str
    name: str
    relationship: str = "family"   # family | friend | professional | healthcare_provider
    is_emergency_contact: bool = False
    is_primary: bool = False
    permissions: list[CaregiverPermission] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "relationship": self.relationship,
            "is_emergency_contact": self.is_emergency_contact,
            "is_primary": self.is_primary,
            "permissions": [
                {"alert_type": p.alert_type, "granted": p.granted} for p in self.permissions
            ],
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Caregiver:
        cid = record["id"]
        return cls(
            id=cid,
            name=record["name"],
            relationship=record.get("relationship", "family"),
            is_emergency_contact=bool(record.get("is_emergency_contact", False)),
            is_primary=bool(record.get("is_primary", False)),
            permissions=[
                CaregiverPermission(cid, p["alert_type"], bool(p.get("granted", True)))
                for p in record.get("permissions", [])
            ],
        )


@dataclass(frozen=True)
class Alert:
    """An escalation decision, ready for fan-out."""

    type: AlertType
    title: str
    message: str
    priority: AlertPriority
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "payload": self.payload,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Alert:
        return cls(
            id=record["id"],
            type=record["type"],
            title=record["title"],
            message=record["message"],
            priority=record["priority"],
            payload=record.get("payload") or {},
            timestamp=from_iso(record["timestamp"]),
        )

