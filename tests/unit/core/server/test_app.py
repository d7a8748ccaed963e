"""Tests for the application factory's storage wiring."""

from __future__ import annotations

import asyncio

import pytest
from fastmcp import Client

from companion.core.server.app import create_app
from companion.core.storage.encryption import PayloadCipher


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _health(mcp) -> str:
    async def _call():
        async with Client(mcp) as client:
            return str(await client.call_tool("health_check", {}))
    return _run(_call())


class TestStorageSelection:
    def test_memory_without_key(self):
        assert "memory" in _health(create_app())

    def test_sqlite_with_key(self, monkeypatch: pytest.MonkeyPatch, tmp_path):
        monkeypatch.setenv("ENCRYPTION_KEY", PayloadCipher.generate_key())
        monkeypatch.setenv("DB_PATH", str(tmp_path / "wellness.db"))
        assert "sqlite" in _health(create_app())
        assert (tmp_path / "wellness.db").exists()

    def test_bad_key_falls_back_to_memory(self, monkeypatch: pytest.MonkeyPatch, tmp_path):
        monkeypatch.setenv("ENCRYPTION_KEY", "not-a-key")
        monkeypatch.setenv("DB_PATH", str(tmp_path / "wellness.db"))
        assert "memory" in _health(create_app())
