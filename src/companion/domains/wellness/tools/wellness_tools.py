"""MCP tools for recording readings and reading back the analytics.

Every tool returns a JSON string. Malformed input comes back as
``{"status": "error"}``; a storage outage as ``{"status": "unavailable"}``.
Tool inputs are hashed into the audit trail, never stored.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from companion.core.storage.backend import StoreUnavailable, from_iso
from companion.domains.wellness.domain_logic.advice import AdvicePreferences
from companion.domains.wellness.domain_logic.models import (
    Caregiver,
    CaregiverPermission,
    InvalidSample,
    VitalSigns,
    new_id,
    utcnow,
)

if TYPE_CHECKING:
    from companion.core.audit.logger import AuditLogger
    from companion.domains.wellness.scheduler import ReevaluationScheduler
    from companion.domains.wellness.service import WellnessCompanion

logger = logging.getLogger(__name__)


def _error(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def _unavailable() -> str:
    return json.dumps({
        "status": "unavailable",
        "message": "Storage is temporarily unavailable. Please try again shortly.",
    })


def register_wellness_tools(
    mcp: FastMCP,
    companion: WellnessCompanion,
    audit_logger: AuditLogger | None = None,
    scheduler: ReevaluationScheduler | None = None,
) -> None:
    """Register wellness ingestion and analytics tools on the MCP server."""

    def _audit(tool_name: str, tool_input: dict[str, Any], start: float,
               status: str = "success", error_type: str | None = None) -> None:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name=tool_name,
                tool_input=tool_input,
                duration_ms=(time.monotonic() - start) * 1000,
                status=status,
                error_type=error_type,
            )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @mcp.tool
    async def record_metric(
        ctx: Context,
        metric_type: str,
        value: float,
        unit: str = "",
        diastolic: float | None = None,
        source: str = "manual",
        notes: str = "",
        tags: list[str] | None = None,
    ) -> str:
        """Record one health reading (mood, pain, energy, sleep, steps, ...).

        Args:
            metric_type: One of mood, pain, energy, sleep, heart_rate,
                blood_pressure, weight, steps, temperature, glucose.
            value: The reading. For blood_pressure this is the systolic value.
            unit: Unit of measurement (e.g., 'score', 'hours', 'bpm').
            diastolic: Diastolic value, only for blood_pressure.
            source: manual, device, estimation or checkin.
            notes: Optional free-text note.
            tags: Optional labels.
        """
        start = time.monotonic()
        tool_input = {"metric_type": metric_type, "value": value, "diastolic": diastolic}
        reading: Any = value
        if metric_type == "blood_pressure" and diastolic is not None:
            reading = {"systolic": value, "diastolic": diastolic}
        try:
            sample = companion.record_metric(
                metric_type, reading, unit, source=source, tags=tags or (), notes=notes
            )
        except InvalidSample as exc:
            _audit("record_metric", tool_input, start, "failure", "InvalidSample")
            return _error(str(exc))
        except StoreUnavailable:
            _audit("record_metric", tool_input, start, "failure", "StoreUnavailable")
            return _unavailable()

        _audit("record_metric", tool_input, start)
        return json.dumps({"status": "saved", "sample_id": sample.id, "metric_type": metric_type})

    @mcp.tool
    async def record_emotion(
        ctx: Context,
        emotion: str,
        confidence: float = 1.0,
    ) -> str:
        """Record a detected emotion and get a piece of wellness advice for it.

        Args:
            emotion: happy, sad, angry, fearful, neutral, surprised or disgusted.
            confidence: Classifier confidence between 0 and 1.
        """
        start = time.monotonic()
        try:
            sample = companion.record_emotion(emotion, confidence)
        except InvalidSample as exc:
            return _error(str(exc))
        except StoreUnavailable:
            return _unavailable()

        advice = companion.advice_for(emotion)
        _audit("record_emotion", {"emotion": emotion}, start)
        return json.dumps({
            "status": "saved",
            "emotion": sample.emotion,
            "advice": advice.to_record(),
        })

    @mcp.tool
    async def submit_check_in(
        ctx: Context,
        responses: dict[str, float | int | str | bool],
        checkin_type: str = "daily",
        notes: str = "",
    ) -> str:
        """Submit a health check-in questionnaire.

        Flagged check-ins (low overall score, pain_level >= 8, mood_rating <= 2,
        emergency_severity >= 7) notify permitted caregivers once.

        Args:
            responses: Answers keyed by question id (e.g., {"pain_level": 4}).
            checkin_type: daily, weekly, monthly, emergency or custom.
            notes: Optional free-text note.
        """
        start = time.monotonic()
        try:
            check_in = companion.submit_check_in(checkin_type, responses, notes=notes)
        except (InvalidSample, ValueError) as exc:
            return _error(str(exc))
        except StoreUnavailable:
            _audit("submit_check_in", responses, start, "failure", "StoreUnavailable")
            return _unavailable()

        _audit("submit_check_in", responses, start)
        return json.dumps({
            "status": "submitted",
            "check_in_id": check_in.id,
            "overall_score": check_in.overall_score,
            "flagged": check_in.flagged,
            "flag_reasons": check_in.flag_reasons,
            "caregiver_notified": check_in.caregiver_notified,
        })

    @mcp.tool
    async def record_vitals(
        ctx: Context,
        systolic_bp: float | None = None,
        diastolic_bp: float | None = None,
        heart_rate_bpm: float | None = None,
        temperature: float | None = None,
        temperature_unit: str = "F",
        oxygen_saturation_pct: float | None = None,
        weight: float | None = None,
        weight_unit: str = "lbs",
        glucose: float | None = None,
        glucose_unit: str = "mg/dL",
    ) -> str:
        """Record a set of vital signs. Critical readings alert caregivers.

        Args:
            systolic_bp: Systolic blood pressure (top number).
            diastolic_bp: Diastolic blood pressure (bottom number).
            heart_rate_bpm: Heart rate in BPM.
            temperature: Body temperature.
            temperature_unit: 'F' or 'C'.
            oxygen_saturation_pct: Blood oxygen saturation percentage.
            weight: Body weight.
            weight_unit: 'lbs' or 'kg'.
            glucose: Blood glucose.
            glucose_unit: Unit for glucose (default mg/dL).
        """
        start = time.monotonic()
        vitals = VitalSigns()
        if systolic_bp is not None and diastolic_bp is not None:
            vitals.blood_pressure = {"systolic": systolic_bp, "diastolic": diastolic_bp}
        elif systolic_bp is not None or diastolic_bp is not None:
            return _error("Blood pressure needs both systolic_bp and diastolic_bp")
        if heart_rate_bpm is not None:
            vitals.heart_rate = {"bpm": heart_rate_bpm}
        if temperature is not None:
            vitals.temperature = {"value": temperature, "unit": temperature_unit.upper()}
        if oxygen_saturation_pct is not None:
            vitals.oxygen_saturation = {"percentage": oxygen_saturation_pct}
        if weight is not None:
            vitals.weight = {"value": weight, "unit": weight_unit}
        if glucose is not None:
            vitals.glucose = {"value": glucose, "unit": glucose_unit}

        recorded = [k for k, v in vitals.to_record().items() if v and k != "timestamp"]
        if not recorded:
            return _error("No vitals provided")

        try:
            alerts = companion.record_vitals(vitals)
        except StoreUnavailable:
            _audit("record_vitals", {"recorded": recorded}, start, "failure", "StoreUnavailable")
            return _unavailable()

        _audit("record_vitals", {"recorded": recorded}, start)
        return json.dumps({
            "status": "saved",
            "recorded_vitals": recorded,
            "alerts": [
                {"concern": a.payload.get("concern"), "priority": a.priority, "message": a.message}
                for a in alerts
            ],
        })

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    @mcp.tool
    async def health_trend(
        ctx: Context,
        metric_type: str,
        period: str = "30d",
    ) -> str:
        """Trend direction and confidence for one metric.

        Args:
            metric_type: Metric to analyze (e.g., 'mood', 'pain').
            period: 24h, 7d, 30d or 90d.
        """
        trend = companion.trends.analyze_trend(metric_type, period)
        return json.dumps({"status": "ok", "trend": trend.to_record()}, indent=2)

    @mcp.tool
    async def metric_correlations(
        ctx: Context,
        recompute: bool = False,
    ) -> str:
        """Associations between mood, sleep, pain, energy, steps and heart rate.

        Args:
            recompute: Recompute now instead of returning the last stored batch.
        """
        try:
            batch = companion.correlations.recompute_all() if recompute else companion.correlations.stored()
        except StoreUnavailable:
            return _unavailable()
        return json.dumps({
            "status": "ok",
            "correlations": [c.to_record() for c in batch],
        }, indent=2)

    @mcp.tool
    async def mood_stability(
        ctx: Context,
        days: int = 7,
    ) -> str:
        """Emotional stability score (0-1), emotion mix and any concerns.

        Args:
            days: Number of days to look back (default: 7).
        """
        return json.dumps({
            "status": "ok",
            "stability": round(companion.stability.mood_stability(days), 3),
            "distribution": companion.stability.emotion_distribution(days),
            "concerns": companion.stability.emotional_concerns(days),
        }, indent=2)

    @mcp.tool
    async def health_summary(ctx: Context) -> str:
        """Overall wellness score with recent trends, goals and insights."""
        start = time.monotonic()
        summary = companion.health_summary()
        _audit("health_summary", {}, start)
        return json.dumps({"status": "ok", **summary}, indent=2)

    @mcp.tool
    async def wellness_advice(
        ctx: Context,
        emotion: str,
        disable_breathing: bool = False,
        disable_professional: bool = False,
        max_duration_minutes: int | None = None,
    ) -> str:
        """Suggest an activity for the current emotion, avoiding repeats.

        Args:
            emotion: The emotion to respond to.
            disable_breathing: Skip breathing exercises.
            disable_professional: Skip suggestions to seek professional help.
            max_duration_minutes: Skip activities longer than this.
        """
        preferences = AdvicePreferences(
            disable_breathing=disable_breathing,
            disable_professional=disable_professional,
            max_duration=max_duration_minutes,
        )
        advice = companion.advice_for(emotion, preferences)
        return json.dumps({"status": "ok", "advice": advice.to_record()})

    # ------------------------------------------------------------------
    # Goals and insights
    # ------------------------------------------------------------------

    @mcp.tool
    async def create_goal(
        ctx: Context,
        metric_type: str,
        target_value: float,
        timeframe: str = "daily",
        deadline: str = "",
    ) -> str:
        """Set a goal for a metric. Progress starts from your latest reading.

        Args:
            metric_type: Metric the goal tracks (e.g., 'steps', 'sleep').
            target_value: Value to reach.
            timeframe: daily, weekly or monthly.
            deadline: Optional ISO 8601 deadline.
        """
        try:
            deadline_dt: datetime | None = from_iso(deadline) if deadline else None
            goal_id = companion.goals.create_goal(metric_type, target_value, timeframe, deadline_dt)
        except ValueError as exc:
            return _error(str(exc))
        except StoreUnavailable:
            return _unavailable()
        return json.dumps({"status": "created", "goal_id": goal_id})

    @mcp.tool
    async def list_goals(ctx: Context, active_only: bool = True) -> str:
        """List goals with progress and streaks.

        Args:
            active_only: Hide retired goals (default: true).
        """
        goals = companion.goals.goals(active_only=active_only)
        return json.dumps({"status": "ok", "goals": [g.to_record() for g in goals]}, indent=2)

    @mcp.tool
    async def retire_goal(ctx: Context, goal_id: str) -> str:
        """Stop tracking a goal.

        Args:
            goal_id: The goal's id.
        """
        try:
            retired = companion.goals.retire_goal(goal_id)
        except StoreUnavailable:
            return _unavailable()
        if not retired:
            return json.dumps({"status": "not_found", "goal_id": goal_id})
        return json.dumps({"status": "retired", "goal_id": goal_id})

    @mcp.tool
    async def list_insights(ctx: Context, days: int = 7) -> str:
        """Recent, undismissed insights, most important first.

        Args:
            days: Number of days to look back (default: 7).
        """
        insights = companion.insights.insights(days=days)
        return json.dumps({"status": "ok", "insights": [i.to_record() for i in insights]}, indent=2)

    @mcp.tool
    async def dismiss_insight(ctx: Context, insight_id: str) -> str:
        """Hide an insight from future listings.

        Args:
            insight_id: The insight's id.
        """
        try:
            found = companion.insights.dismiss(insight_id)
        except StoreUnavailable:
            return _unavailable()
        return json.dumps({"status": "dismissed" if found else "not_found", "insight_id": insight_id})

    # ------------------------------------------------------------------
    # Caregivers and history
    # ------------------------------------------------------------------

    @mcp.tool
    async def add_caregiver(
        ctx: Context,
        name: str,
        permissions: list[str],
        relationship: str = "family",
        is_emergency_contact: bool = False,
        is_primary: bool = False,
    ) -> str:
        """Register a caregiver who may receive alerts.

        Args:
            name: Caregiver's name.
            permissions: Granted permissions: health_data, medication,
                emergency_alerts, daily_reports, vital_signs, mood_tracking.
            relationship: family, friend, professional or healthcare_provider.
            is_emergency_contact: Whether this is an emergency contact.
            is_primary: Whether this is the primary caregiver.
        """
        caregiver_id = new_id()
        caregiver = Caregiver(
            id=caregiver_id,
            name=name,
            relationship=relationship,
            is_emergency_contact=is_emergency_contact,
            is_primary=is_primary,
            permissions=[CaregiverPermission(caregiver_id, p) for p in permissions],
        )
        try:
            companion.escalation.add_caregiver(caregiver)
        except StoreUnavailable:
            return _unavailable()
        return json.dumps({"status": "added", "caregiver_id": caregiver_id})

    @mcp.tool
    async def list_caregivers(ctx: Context) -> str:
        """List registered caregivers and their permissions."""
        caregivers = companion.escalation.caregivers()
        return json.dumps({"status": "ok", "caregivers": [c.to_record() for c in caregivers]}, indent=2)

    @mcp.tool
    async def check_in_history(ctx: Context, days: int = 30) -> str:
        """Past check-ins, newest first.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = utcnow() - timedelta(days=days)
        history = companion.escalation.check_in_history(since)
        return json.dumps({"status": "ok", "check_ins": [c.to_record() for c in history]}, indent=2)

    @mcp.tool
    async def reevaluate_now(ctx: Context) -> str:
        """Recompute correlations, goals and insights, and retry pending alerts."""
        if scheduler is None:
            return _error("Re-evaluation is not configured")
        completed = await scheduler.trigger()
        return json.dumps({"status": "ok" if completed else "incomplete"})
