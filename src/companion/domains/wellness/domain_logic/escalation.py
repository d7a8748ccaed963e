"""Caregiver escalation: check-in flagging, vital-sign alerts and fan-out.

Decisions are pure functions of the check-in or vitals. Delivery goes to
every caregiver holding the permission the alert type requires. A critical
alert that cannot be delivered is queued and retried on the next tick.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from companion.core.audit.logger import AuditLogger
from companion.core.storage.backend import StoreUnavailable, to_iso
from companion.domains.wellness.domain_logic.models import (
    CHECKIN_TYPES,
    Alert,
    Caregiver,
    CheckIn,
    CheckInResponse,
    VitalSigns,
    utcnow,
)
from companion.domains.wellness.domain_logic.tables import (
    ALERT_PERMISSIONS,
    CHECKIN_FLAG_RULES,
    LOW_OVERALL_SCORE,
    VITAL_RULES,
)
from companion.domains.wellness.notifications import NotificationTransport
from companion.domains.wellness.store import CAREGIVERS_KEY, PENDING_ALERTS_KEY, MetricStore

logger = logging.getLogger(__name__)

DEFAULT_OVERALL_SCORE = 5


class PermissionDenied(Exception):
    """A caregiver lacks the permission an alert type requires."""

    def __init__(self, caregiver_id: str, alert_type: str) -> None:
        super().__init__(f"caregiver {caregiver_id} may not receive {alert_type} alerts")
        self.caregiver_id = caregiver_id
        self.alert_type = alert_type


@dataclass(frozen=True)
class EscalationDecision:
    flagged: bool
    reasons: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Pure decisions
# ---------------------------------------------------------------------------

def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def overall_score(responses: list[CheckInResponse]) -> int:
    """Rounded mean of the numeric responses, 5 when there are none."""
    values = [v for v in (_numeric(r.value) for r in responses) if v is not None]
    if not values:
        return DEFAULT_OVERALL_SCORE
    score = math.floor(sum(values) / len(values) + 0.5)
    return max(1, min(10, score))


def evaluate_check_in(check_in: CheckIn) -> EscalationDecision:
    """Flag a check-in with a low overall score or an alarming answer."""
    reasons = []
    if check_in.overall_score <= LOW_OVERALL_SCORE:
        reasons.append("low_overall_score")
    for question_id, op, threshold, reason in CHECKIN_FLAG_RULES:
        value = _numeric(check_in.response_value(question_id))
        if value is None:
            continue
        if (op == ">=" and value >= threshold) or (op == "<=" and value <= threshold):
            reasons.append(reason)
    return EscalationDecision(flagged=bool(reasons), reasons=tuple(reasons))


def evaluate_vitals(vitals: VitalSigns) -> list[Alert]:
    """One ``vital_signs_critical`` alert per distinct concern."""
    alerts = []
    for rule in VITAL_RULES:
        reading = getattr(vitals, rule.reading)
        if not reading:
            continue
        try:
            triggered = rule.predicate(reading)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed %s reading", rule.reading)
            continue
        if triggered:
            alerts.append(Alert(
                type="vital_signs_critical",
                title="Critical Vital Signs",
                message=rule.message,
                priority=rule.priority,
                payload={
                    "concern": rule.concern,
                    "reading": dict(reading),
                    "measured_at": to_iso(vitals.timestamp),
                },
            ))
    return alerts


def is_permitted(caregiver: Caregiver, alert_type: str) -> bool:
    """Whether ``caregiver`` holds the granted permission ``alert_type`` needs."""
    required = ALERT_PERMISSIONS.get(alert_type)
    if required is None:
        return False
    return any(p.alert_type == required and p.granted for p in caregiver.permissions)


def check_permission(caregiver: Caregiver, alert_type: str) -> None:
    if not is_permitted(caregiver, alert_type):
        raise PermissionDenied(caregiver.id, alert_type)


def check_in_alert(check_in: CheckIn, reasons: tuple[str, ...]) -> Alert:
    """The single alert sent for a flagged check-in."""
    emergency = check_in.type == "emergency"
    return Alert(
        type="emergency" if emergency else "health_concern",
        title="Emergency Check-In" if emergency else "Health Alert",
        message=f"Health check-in flagged for review. Overall score: {check_in.overall_score}/10",
        priority="critical" if emergency else "high",
        payload={
            "check_in_id": check_in.id,
            "timestamp": to_iso(check_in.timestamp),
            "type": check_in.type,
            "reasons": list(reasons),
        },
    )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class EscalationPolicy:
    """Decides, delivers and records caregiver escalations.

    Usage::

        policy = EscalationPolicy(store, LoggingTransport(), audit_logger=audit)
        policy.add_caregiver(caregiver)
        check_in = policy.submit_check_in("daily", responses)
    """

    def __init__(
        self,
        store: MetricStore,
        transport: NotificationTransport,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._audit = audit_logger

    evaluate_check_in = staticmethod(evaluate_check_in)
    evaluate_vitals = staticmethod(evaluate_vitals)

    # ------------------------------------------------------------------
    # Caregiver registry
    # ------------------------------------------------------------------

    def add_caregiver(self, caregiver: Caregiver) -> None:
        """Add or replace a caregiver by id."""
        record = caregiver.to_record()
        self._store.update(
            CAREGIVERS_KEY,
            lambda records: [r for r in records if r["id"] != caregiver.id] + [record],
            default=[],
        )
        logger.info("Registered caregiver %s (%d permission(s))",
                    caregiver.id, len(caregiver.permissions))

    def remove_caregiver(self, caregiver_id: str) -> None:
        self._store.update(
            CAREGIVERS_KEY,
            lambda records: [r for r in records if r["id"] != caregiver_id],
            default=[],
        )

    def caregivers(self) -> list[Caregiver]:
        return self._store.caregivers()

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def notify_caregivers(self, alert: Alert) -> list[str]:
        """Deliver ``alert`` to every permitted caregiver.

        Returns:
            Ids of the caregivers the alert was delivered to.
        """
        delivered: list[str] = []
        failed: list[str] = []
        skipped = 0

        for caregiver in self._store.caregivers():
            try:
                check_permission(caregiver, alert.type)
            except PermissionDenied:
                skipped += 1
                continue
            if self._deliver(caregiver.id, alert):
                delivered.append(caregiver.id)
            else:
                failed.append(caregiver.id)

        if failed and alert.priority == "critical":
            self._queue_pending(alert, failed)
        elif failed:
            logger.error("Alert %s (%s) undelivered to %d caregiver(s)",
                         alert.id, alert.type, len(failed))
        if not delivered and not failed:
            logger.warning("No caregiver permitted to receive %s alert %s", alert.type, alert.id)

        self._audit_escalation(alert, delivered, failed, skipped)
        return delivered

    def _deliver(self, caregiver_id: str, alert: Alert) -> bool:
        try:
            self._transport.deliver(
                caregiver_id, alert.title, alert.message, alert.priority,
                {**alert.payload, "alert_id": alert.id, "alert_type": alert.type},
            )
        except Exception:
            logger.warning("Delivery of %s alert %s to %s failed",
                           alert.priority, alert.id, caregiver_id, exc_info=True)
            return False
        return True

    def _queue_pending(self, alert: Alert, caregiver_ids: list[str]) -> None:
        entry = {"alert": alert.to_record(), "caregiver_ids": list(caregiver_ids)}
        try:
            self._store.update(
                PENDING_ALERTS_KEY,
                lambda entries: [e for e in entries if e["alert"]["id"] != alert.id] + [entry],
                default=[],
            )
        except StoreUnavailable:
            logger.error("Critical alert %s could not be queued for retry", alert.id)
            raise
        logger.warning("Queued critical alert %s for %d caregiver(s)", alert.id, len(caregiver_ids))

    def retry_pending(self) -> int:
        """Retry queued critical deliveries. Returns how many succeeded."""
        pending = self._store.pending_alerts()
        if not pending:
            return 0

        # A degraded read would look like every caregiver lost permission
        permitted = {c.id: c for c in self._store.caregivers(strict=True)}
        succeeded = 0
        done: set[str] = set()
        still_failed: dict[str, list[str]] = {}

        for alert, caregiver_ids in pending:
            remaining = []
            for caregiver_id in caregiver_ids:
                caregiver = permitted.get(caregiver_id)
                if caregiver is None or not is_permitted(caregiver, alert.type):
                    logger.info("Dropping retry of %s for %s: no longer permitted",
                                alert.id, caregiver_id)
                    continue
                if self._deliver(caregiver_id, alert):
                    succeeded += 1
                else:
                    remaining.append(caregiver_id)
            done.add(alert.id)
            if remaining:
                still_failed[alert.id] = remaining

        def reconcile(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = []
            for entry in entries:
                alert_id = entry["alert"]["id"]
                if alert_id not in done:
                    kept.append(entry)
                elif alert_id in still_failed:
                    kept.append({**entry, "caregiver_ids": still_failed[alert_id]})
            return kept

        self._store.update(PENDING_ALERTS_KEY, reconcile, default=[])
        if succeeded:
            logger.info("Retried critical alerts: %d delivered, %d still pending",
                        succeeded, sum(len(ids) for ids in still_failed.values()))
        return succeeded

    # ------------------------------------------------------------------
    # Check-ins and vitals
    # ------------------------------------------------------------------

    def submit_check_in(
        self,
        checkin_type: str,
        responses: list[CheckInResponse],
        *,
        vitals: VitalSigns | None = None,
        notes: str = "",
        now: datetime | None = None,
    ) -> CheckIn:
        """Score, store and, when flagged, escalate a check-in."""
        if checkin_type not in CHECKIN_TYPES:
            raise ValueError(f"unknown check-in type: {checkin_type!r}")

        check_in = CheckIn(
            type=checkin_type,
            responses=list(responses),
            overall_score=overall_score(responses),
            vitals=vitals,
            notes=notes,
            timestamp=now or utcnow(),
        )
        decision = evaluate_check_in(check_in)
        check_in.flagged = decision.flagged
        check_in.flag_reasons = list(decision.reasons)
        self._store.add_check_in(check_in)

        if decision.flagged:
            logger.info("Check-in %s flagged: %s", check_in.id, ", ".join(decision.reasons))
            notified = self.escalate_check_in(check_in.id)
            if notified is not None:
                check_in = notified
        return check_in

    def escalate_check_in(self, checkin_id: str) -> CheckIn | None:
        """Notify caregivers about a flagged check-in at most once.

        ``caregiver_notified`` is claimed with compare-and-set before any
        delivery, so racing callers cannot both send.
        """
        for _ in range(2):
            check_in, version = self._store.load_check_in(checkin_id)
            if check_in is None or not check_in.flagged:
                return check_in
            if check_in.caregiver_notified:
                return check_in
            claimed = dataclasses.replace(check_in, caregiver_notified=True)
            if self._store.save_check_in(claimed, version):
                self.notify_caregivers(check_in_alert(claimed, tuple(claimed.flag_reasons)))
                return claimed
        logger.info("Check-in %s escalation claimed elsewhere", checkin_id)
        check_in, _ = self._store.load_check_in(checkin_id)
        return check_in

    def record_vitals(self, vitals: VitalSigns) -> list[Alert]:
        """Store a vitals reading and escalate every critical concern."""
        self._store.append_vitals(vitals)
        alerts = evaluate_vitals(vitals)
        for alert in alerts:
            logger.warning("Vital-sign concern: %s", alert.payload["concern"])
            self.notify_caregivers(alert)
        return alerts

    def check_in_history(self, since: datetime | None = None, limit: int = 500) -> list[CheckIn]:
        return self._store.check_in_history(since)[:limit]

    # ------------------------------------------------------------------

    def _audit_escalation(
        self, alert: Alert, delivered: list[str], failed: list[str], skipped: int
    ) -> None:
        if self._audit is None:
            return
        if failed:
            status = "failure"
        elif delivered:
            status = "success"
        else:
            status = "skipped"
        self._audit.log_escalation(
            alert_type=alert.type,
            priority=alert.priority,
            recipients=len(delivered),
            subject_id=alert.payload.get("check_in_id", alert.id),
            status=status,
            error_type="DeliveryFailed" if failed else None,
            metadata={"failed": len(failed), "skipped": skipped},
        )
