"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from companion.core.config.settings import get_settings


class TestDefaults:
    def test_hermetic_defaults(self):
        settings = get_settings()
        assert settings.companion_host == "127.0.0.1"
        assert settings.encryption_key == ""
        assert settings.reevaluation_interval_seconds == 0
        assert settings.insight_retention == 50
        assert settings.sample_retention_days == 365


class TestOverrides:
    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("COMPANION_PORT", "9100")
        monkeypatch.setenv("INSIGHT_RETENTION", "20")
        monkeypatch.setenv("QUIET_HOURS_START", "21")
        settings = get_settings()
        assert settings.companion_port == 9100
        assert settings.insight_retention == 20
        assert settings.quiet_hours_start == 21
