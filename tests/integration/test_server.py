"""Integration tests for the Wellness Companion MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from companion.core.server.app import create_app
from companion.core.storage.backend import MemoryStoreBackend
from companion.domains.wellness.service import WellnessCompanion
from companion.domains.wellness.store import MetricStore


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON string a tool returned."""
    return json.loads(result.content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "record_metric",
    "record_emotion",
    "submit_check_in",
    "record_vitals",
    "health_trend",
    "metric_correlations",
    "mood_stability",
    "health_summary",
    "wellness_advice",
    "create_goal",
    "list_goals",
    "retire_goal",
    "list_insights",
    "dismiss_insight",
    "add_caregiver",
    "list_caregivers",
    "check_in_history",
    "reevaluate_now",
    "escalation_log",
]


@pytest.fixture
def client():
    """Create an MCP client connected to a fresh in-memory server."""
    return Client(create_app())


@pytest.fixture
def observed(transport):
    """Server whose caregiver alerts land in a recording transport."""
    companion = WellnessCompanion(MetricStore(MemoryStoreBackend()), transport)
    return Client(create_app(companion_override=companion))


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    """health_check should report in-memory storage when no key is set."""
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            result_text = str(result)
            assert "ok" in result_text
            assert "memory" in result_text
    _run(_check())


def test_record_metric_then_summary(client):
    async def _check():
        async with client:
            for value in (4, 5, 6):
                saved = _payload(await client.call_tool(
                    "record_metric", {"metric_type": "mood", "value": value, "unit": "score"},
                ))
                assert saved["status"] == "saved"
            summary = _payload(await client.call_tool("health_summary", {}))
            assert summary["status"] == "ok"
            assert len(summary["recent_metrics"]) == 3
            assert 0 <= summary["overall_score"] <= 100
    _run(_check())


def test_invalid_metric_is_an_error(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool(
                "record_metric", {"metric_type": "happiness", "value": 3},
            ))
            assert result["status"] == "error"
            assert "unknown metric type" in result["message"]
    _run(_check())


def test_blood_pressure_pair(client):
    async def _check():
        async with client:
            await client.call_tool("record_metric", {
                "metric_type": "blood_pressure", "value": 128, "diastolic": 82, "unit": "mmHg",
            })
            trend = _payload(await client.call_tool(
                "health_trend", {"metric_type": "blood_pressure", "period": "7d"},
            ))
            assert trend["trend"]["direction"] == "insufficient_data"
            assert trend["trend"]["last_value"] == 128.0
    _run(_check())


def test_flagged_check_in_notifies_caregiver(observed, transport):
    async def _check():
        async with observed:
            added = _payload(await observed.call_tool(
                "add_caregiver", {"name": "Dana", "permissions": ["health_data"]},
            ))
            assert added["status"] == "added"

            result = _payload(await observed.call_tool(
                "submit_check_in", {"responses": {"pain_level": 9, "mood_rating": 6}},
            ))
            assert result["flagged"] is True
            assert result["flag_reasons"] == ["high_pain"]
            assert result["caregiver_notified"] is True

            history = _payload(await observed.call_tool("check_in_history", {"days": 1}))
            assert len(history["check_ins"]) == 1
    _run(_check())
    assert len(transport.delivered) == 1
    assert transport.delivered[0]["title"] == "Health Alert"


def test_critical_vitals_alert(observed, transport):
    async def _check():
        async with observed:
            await observed.call_tool(
                "add_caregiver", {"name": "Sam", "permissions": ["vital_signs"]},
            )
            result = _payload(await observed.call_tool("record_vitals", {"heart_rate_bpm": 130}))
            assert result["recorded_vitals"] == ["heart_rate"]
            assert [a["concern"] for a in result["alerts"]] == ["heart_rate_high"]
    _run(_check())
    assert [d["priority"] for d in transport.delivered] == ["critical"]


def test_record_vitals_requires_a_reading(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("record_vitals", {}))
            assert result["status"] == "error"
            half = _payload(await client.call_tool("record_vitals", {"systolic_bp": 120}))
            assert half["status"] == "error"
    _run(_check())


def test_goal_lifecycle(client):
    async def _check():
        async with client:
            created = _payload(await client.call_tool(
                "create_goal", {"metric_type": "steps", "target_value": 8000},
            ))
            goal_id = created["goal_id"]
            await client.call_tool("record_metric", {"metric_type": "steps", "value": 8000})

            goals = _payload(await client.call_tool("list_goals", {}))["goals"]
            assert goals[0]["progress"] == 100.0

            retired = _payload(await client.call_tool("retire_goal", {"goal_id": goal_id}))
            assert retired["status"] == "retired"
            assert _payload(await client.call_tool("list_goals", {}))["goals"] == []

            insights = _payload(await client.call_tool("list_insights", {}))["insights"]
            achievement = next(i for i in insights if i["kind"] == "achievement")
            dismissed = _payload(await client.call_tool(
                "dismiss_insight", {"insight_id": achievement["id"]},
            ))
            assert dismissed["status"] == "dismissed"
    _run(_check())


def test_bad_goal_is_an_error(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool(
                "create_goal", {"metric_type": "steps", "target_value": 1, "timeframe": "hourly"},
            ))
            assert result["status"] == "error"
            missing = _payload(await client.call_tool("retire_goal", {"goal_id": "nope"}))
            assert missing["status"] == "not_found"
    _run(_check())


def test_emotion_returns_advice(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool(
                "record_emotion", {"emotion": "sad", "confidence": 0.9},
            ))
            assert result["advice"]["title"] == "Calming Breath"
            stability = _payload(await client.call_tool("mood_stability", {}))
            assert stability["stability"] == 1.0
            bad = _payload(await client.call_tool(
                "record_emotion", {"emotion": "sad", "confidence": 3},
            ))
            assert bad["status"] == "error"
    _run(_check())


def test_reevaluate_now_and_escalation_log(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("reevaluate_now", {}))
            assert result["status"] == "ok"
            correlations = _payload(await client.call_tool("metric_correlations", {}))
            assert correlations["correlations"] == []
            log = _payload(await client.call_tool("escalation_log", {"days": 1}))
            assert log["status"] == "ok"
            assert log["escalation_count"] == 0
    _run(_check())
