"""Tests for check-in flagging, vital-sign alerts and caregiver fan-out."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from companion.core.storage.backend import StoreUnavailable
from companion.domains.wellness.domain_logic.escalation import (
    EscalationPolicy,
    PermissionDenied,
    check_permission,
    evaluate_check_in,
    evaluate_vitals,
    is_permitted,
    overall_score,
)
from companion.domains.wellness.domain_logic.models import (
    Caregiver,
    CaregiverPermission,
    CheckIn,
    CheckInResponse,
    VitalSigns,
)

NOW = datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)


def _responses(**answers) -> list[CheckInResponse]:
    return [CheckInResponse(qid, value, NOW) for qid, value in answers.items()]


def _check_in(score: int, **answers) -> CheckIn:
    return CheckIn(type="daily", responses=_responses(**answers), overall_score=score, timestamp=NOW)


def _caregiver(cid: str, *permissions: str, granted: bool = True) -> Caregiver:
    return Caregiver(id=cid, name=cid.title(),
                     permissions=[CaregiverPermission(cid, p, granted) for p in permissions])


@pytest.fixture
def policy(store, transport, audit_logger) -> EscalationPolicy:
    return EscalationPolicy(store, transport, audit_logger=audit_logger)


class TestOverallScore:
    def test_rounded_mean(self):
        assert overall_score(_responses(a=7, b=8)) == 8
        assert overall_score(_responses(a=4, b=5, c=5)) == 5

    def test_non_numeric_answers_ignored(self):
        assert overall_score(_responses(a=6, b="fine", c=True)) == 6

    def test_no_numeric_answers(self):
        assert overall_score(_responses(notes="tired")) == 5

    def test_clamped(self):
        assert overall_score(_responses(a=15)) == 10
        assert overall_score(_responses(a=0)) == 1


class TestEvaluateCheckIn:
    def test_low_overall_score_flags(self):
        decision = evaluate_check_in(_check_in(2, pain_level=5))
        assert decision.flagged is True
        assert decision.reasons == ("low_overall_score",)

    def test_high_pain_flags_despite_good_score(self):
        decision = evaluate_check_in(_check_in(7, pain_level=9))
        assert decision.flagged is True
        assert decision.reasons == ("high_pain",)

    def test_low_mood_and_emergency_severity(self):
        decision = evaluate_check_in(_check_in(6, mood_rating=2, emergency_severity=7))
        assert decision.reasons == ("low_mood", "emergency_severity")

    def test_boundaries(self):
        assert not evaluate_check_in(_check_in(4, pain_level=7, mood_rating=3)).flagged
        assert evaluate_check_in(_check_in(3)).flagged

    def test_text_answer_is_not_numeric(self):
        assert not evaluate_check_in(_check_in(6, pain_level="9")).flagged


class TestEvaluateVitals:
    def test_high_heart_rate_is_one_alert(self):
        alerts = evaluate_vitals(VitalSigns(heart_rate={"bpm": 130}, timestamp=NOW))
        assert len(alerts) == 1
        assert alerts[0].type == "vital_signs_critical"
        assert alerts[0].priority == "critical"
        assert alerts[0].payload["concern"] == "heart_rate_high"

    def test_normal_vitals(self):
        vitals = VitalSigns(
            blood_pressure={"systolic": 120, "diastolic": 80},
            heart_rate={"bpm": 72},
            temperature={"value": 98.6, "unit": "F"},
            oxygen_saturation={"percentage": 97},
        )
        assert evaluate_vitals(vitals) == []

    def test_celsius_converted(self):
        assert len(evaluate_vitals(VitalSigns(temperature={"value": 39.5, "unit": "C"}))) == 1
        assert evaluate_vitals(VitalSigns(temperature={"value": 38.0, "unit": "C"})) == []
        low = evaluate_vitals(VitalSigns(temperature={"value": 34.0, "unit": "C"}))
        assert low[0].payload["concern"] == "temperature_low"

    def test_high_blood_pressure_is_not_also_low(self):
        alerts = evaluate_vitals(VitalSigns(blood_pressure={"systolic": 190, "diastolic": 50}))
        assert [a.payload["concern"] for a in alerts] == ["blood_pressure_critical_high"]

    def test_low_blood_pressure_is_high_priority(self):
        alerts = evaluate_vitals(VitalSigns(blood_pressure={"systolic": 85, "diastolic": 55}))
        assert alerts[0].priority == "high"

    def test_one_alert_per_concern(self):
        vitals = VitalSigns(
            blood_pressure={"systolic": 185, "diastolic": 125},
            heart_rate={"bpm": 45},
            oxygen_saturation={"percentage": 85},
        )
        concerns = [a.payload["concern"] for a in evaluate_vitals(vitals)]
        assert concerns == ["blood_pressure_critical_high", "heart_rate_low", "oxygen_saturation_low"]

    def test_malformed_reading_ignored(self):
        assert evaluate_vitals(VitalSigns(heart_rate={"bpm": "fast"})) == []


class TestPermissions:
    def test_alert_type_maps_to_permission(self):
        caregiver = _caregiver("dana", "health_data")
        assert is_permitted(caregiver, "health_concern")
        assert not is_permitted(caregiver, "vital_signs_critical")

    def test_revoked_permission(self):
        assert not is_permitted(_caregiver("dana", "health_data", granted=False), "health_concern")

    def test_unknown_alert_type(self):
        assert not is_permitted(_caregiver("dana", "health_data"), "gossip")

    def test_check_permission_raises(self):
        with pytest.raises(PermissionDenied) as exc_info:
            check_permission(_caregiver("dana"), "emergency")
        assert exc_info.value.caregiver_id == "dana"


class TestFanOut:
    def test_only_permitted_caregivers_notified(self, policy, transport):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        policy.add_caregiver(_caregiver("bob", "vital_signs"))
        policy.add_caregiver(_caregiver("cat", "health_data", granted=False))

        check_in = policy.submit_check_in("daily", _responses(pain_level=9), now=NOW)
        assert check_in.flagged
        assert check_in.caregiver_notified
        assert [d["caregiver_id"] for d in transport.delivered] == ["ann"]
        assert transport.delivered[0]["payload"]["check_in_id"] == check_in.id

    def test_add_caregiver_replaces_by_id(self, policy):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        policy.add_caregiver(_caregiver("ann", "vital_signs"))
        caregivers = policy.caregivers()
        assert len(caregivers) == 1
        assert caregivers[0].permissions[0].alert_type == "vital_signs"
        policy.remove_caregiver("ann")
        assert policy.caregivers() == []

    def test_emergency_check_in_needs_emergency_permission(self, policy, transport):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        policy.add_caregiver(_caregiver("bob", "emergency_alerts"))
        policy.submit_check_in("emergency", _responses(emergency_severity=9), now=NOW)
        assert [d["caregiver_id"] for d in transport.delivered] == ["bob"]
        assert transport.delivered[0]["priority"] == "critical"

    def test_unflagged_check_in_is_not_escalated(self, policy, transport):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        check_in = policy.submit_check_in("daily", _responses(mood_rating=8, pain_level=2), now=NOW)
        assert not check_in.flagged
        assert not check_in.caregiver_notified
        assert transport.delivered == []

    def test_flagged_check_in_notified_once(self, policy, transport, store):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        check_in = policy.submit_check_in("daily", _responses(pain_level=9), now=NOW)
        again = policy.escalate_check_in(check_in.id)
        assert again.caregiver_notified
        assert len(transport.delivered) == 1
        stored, _ = store.load_check_in(check_in.id)
        assert stored.caregiver_notified

    def test_unknown_check_in_type(self, policy):
        with pytest.raises(ValueError):
            policy.submit_check_in("hourly", [])

    def test_escalation_audited(self, policy, audit_logger):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        policy.submit_check_in("daily", _responses(pain_level=9), now=NOW)
        event = audit_logger.get_events(action="escalation")[0]
        assert event["alert_type"] == "health_concern"
        assert event["recipients"] == 1
        assert event["status"] == "success"

    def test_nobody_permitted_is_audited_as_skipped(self, policy, audit_logger):
        policy.submit_check_in("daily", _responses(pain_level=9), now=NOW)
        assert audit_logger.get_events(action="escalation")[0]["status"] == "skipped"


class TestDeliveryFailures:
    def test_failed_critical_alert_is_queued_and_retried(self, policy, transport, store):
        policy.add_caregiver(_caregiver("ann", "vital_signs"))
        transport.failing.add("ann")

        alerts = policy.record_vitals(VitalSigns(heart_rate={"bpm": 140}, timestamp=NOW))
        assert len(alerts) == 1
        pending = store.pending_alerts()
        assert [(a.id, ids) for a, ids in pending] == [(alerts[0].id, ["ann"])]

        # Still down: stays queued
        assert policy.retry_pending() == 0
        assert len(store.pending_alerts()) == 1

        transport.failing.clear()
        assert policy.retry_pending() == 1
        assert store.pending_alerts() == []
        assert transport.delivered[0]["payload"]["alert_id"] == alerts[0].id

    def test_failed_non_critical_alert_is_not_queued(self, policy, transport, store, audit_logger):
        policy.add_caregiver(_caregiver("ann", "health_data"))
        transport.failing.add("ann")
        policy.submit_check_in("daily", _responses(pain_level=9), now=NOW)
        assert store.pending_alerts() == []
        event = audit_logger.get_events(action="escalation")[0]
        assert event["status"] == "failure"
        assert event["recipients"] == 0

    def test_retry_dropped_when_permission_revoked(self, policy, transport, store):
        policy.add_caregiver(_caregiver("ann", "vital_signs"))
        transport.failing.add("ann")
        policy.record_vitals(VitalSigns(oxygen_saturation={"percentage": 80}, timestamp=NOW))
        policy.add_caregiver(_caregiver("ann", "health_data"))
        transport.failing.clear()

        assert policy.retry_pending() == 0
        assert store.pending_alerts() == []
        assert transport.delivered == []

    def test_caregiver_read_outage_keeps_queue(self, policy, transport, store, monkeypatch):
        policy.add_caregiver(_caregiver("c1", "vital_signs"))
        transport.failing.add("c1")
        alerts = policy.record_vitals(VitalSigns(heart_rate={"bpm": 140}, timestamp=NOW))
        transport.failing.clear()

        backend = store.backend
        real_get = backend.get
        outages = ["caregivers"]

        def flaky_get(key):
            if key in outages:
                outages.remove(key)
                raise StoreUnavailable("backend blip")
            return real_get(key)

        monkeypatch.setattr(backend, "get", flaky_get)

        with pytest.raises(StoreUnavailable):
            policy.retry_pending()
        assert [a.id for a, _ in store.pending_alerts()] == [alerts[0].id]
        assert transport.delivered == []

        assert policy.retry_pending() == 1
        assert store.pending_alerts() == []
        assert transport.delivered[0]["payload"]["alert_id"] == alerts[0].id

    def test_vitals_stored(self, policy, store):
        policy.record_vitals(VitalSigns(heart_rate={"bpm": 70}, timestamp=NOW))
        assert store.vitals_history()[0].heart_rate == {"bpm": 70}


class TestHistory:
    def test_history_newest_first_with_limit(self, policy):
        for hours in (3, 2, 1):
            policy.submit_check_in("daily", _responses(mood_rating=7),
                                   now=NOW - timedelta(hours=hours))
        history = policy.check_in_history(limit=2)
        assert [NOW - c.timestamp for c in history] == [timedelta(hours=1), timedelta(hours=2)]
