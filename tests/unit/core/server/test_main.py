"""Tests for the server entry point's bind guard."""

from __future__ import annotations

import pytest

from companion.core.config.settings import get_settings
from companion.core.server import main


class TestLoopbackGuard:
    @pytest.mark.parametrize("host", ["127.0.0.1", "localhost", "::1"])
    def test_loopback_hosts(self, host):
        assert main._is_loopback_host(host)

    @pytest.mark.parametrize("host", ["0.0.0.0", "192.168.1.10", "example.com"])
    def test_non_loopback_hosts(self, host):
        assert not main._is_loopback_host(host)

    def test_refuses_public_bind(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("COMPANION_HOST", "0.0.0.0")
        with pytest.raises(RuntimeError, match="non-loopback"):
            main.run()

    def test_insecure_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("COMPANION_HOST", "0.0.0.0")
        monkeypatch.setenv("COMPANION_ALLOW_INSECURE_BIND", "true")
        started = {}

        class _Server:
            def run(self, **kwargs):
                started.update(kwargs)

        monkeypatch.setattr(main, "create_app", lambda: _Server())
        main.run()
        assert started["host"] == "0.0.0.0"
        assert started["transport"] == "streamable-http"

    @pytest.mark.parametrize("host", ["[::1]", "LOCALHOST", " 127.0.0.1 "])
    def test_loopback_spellings(self, host):
        assert main._is_loopback_host(host)


class TestStartupSummary:
    def test_hermetic_defaults(self):
        summary = main.startup_summary(get_settings())
        assert summary == {
            "storage": "memory",
            "reevaluation": "disabled",
            "quiet_hours": "off",
            "insight_retention": 50,
        }

    def test_persistent_configuration(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ENCRYPTION_KEY", "configured")
        monkeypatch.setenv("DB_PATH", "/var/lib/companion/wellness.db")
        monkeypatch.setenv("REEVALUATION_INTERVAL_SECONDS", "600")
        monkeypatch.setenv("QUIET_HOURS_START", "22")
        monkeypatch.setenv("QUIET_HOURS_END", "7")
        summary = main.startup_summary(get_settings())
        assert summary["storage"] == "sqlite (/var/lib/companion/wellness.db)"
        assert summary["reevaluation"] == "every 600s"
        assert summary["quiet_hours"] == "22:00-07:00"
