"""Shared test fixtures for Wellness Companion tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("REEVALUATION_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("QUIET_HOURS_START", "0")
    monkeypatch.setenv("QUIET_HOURS_END", "0")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from companion.core.storage.backend import MemoryStoreBackend, StoreUnavailable  # noqa: E402
from companion.domains.wellness.store import MetricStore  # noqa: E402

# ---------------------------------------------------------------------------
# Notification transport doubles
# ---------------------------------------------------------------------------

@dataclass
class RecordingTransport:
    """Records deliveries; fails for caregiver ids listed in ``failing``."""

    delivered: list[dict[str, Any]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    def deliver(
        self,
        caregiver_id: str,
        title: str,
        message: str,
        priority: str,
        payload: dict[str, Any],
    ) -> None:
        if caregiver_id in self.failing:
            from companion.domains.wellness.notifications import DeliveryFailed

            raise DeliveryFailed(f"transport down for {caregiver_id}")
        self.delivered.append({
            "caregiver_id": caregiver_id,
            "title": title,
            "message": message,
            "priority": priority,
            "payload": payload,
        })

@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()

# ---------------------------------------------------------------------------
# Failing backend
# ---------------------------------------------------------------------------

class UnavailableBackend:
    """Backend whose every call raises StoreUnavailable."""

    def append(self, stream, timestamp, payload):
        raise StoreUnavailable("backend down")

    def query(self, stream, *, since=None, until=None, limit=10_000):
        raise StoreUnavailable("backend down")

    def get(self, key):
        raise StoreUnavailable("backend down")

    def set(self, key, value):
        raise StoreUnavailable("backend down")

    def get_versioned(self, key):
        raise StoreUnavailable("backend down")

    def compare_and_set(self, key, value, expected_version):
        raise StoreUnavailable("backend down")

    def purge_before(self, before):
        raise StoreUnavailable("backend down")

# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def wellness_db():
    """Create an in-memory WellnessDatabase for testing."""
    from companion.core.storage.database import WellnessDatabase

    db = WellnessDatabase(":memory:")
    db.initialize()
    yield db
    db.close()

@pytest.fixture
def payload_cipher():
    """Create a PayloadCipher with a test key."""
    from cryptography.fernet import Fernet

    from companion.core.storage.encryption import PayloadCipher

    return PayloadCipher(Fernet.generate_key().decode())

@pytest.fixture
def memory_backend() -> MemoryStoreBackend:
    return MemoryStoreBackend()

@pytest.fixture
def sqlite_backend(wellness_db, payload_cipher):
    """Create a SQLiteStoreBackend backed by in-memory SQLite."""
    from companion.core.storage.sqlite_backend import SQLiteStoreBackend

    return SQLiteStoreBackend(wellness_db, payload_cipher)

@pytest.fixture
def store(memory_backend) -> MetricStore:
    return MetricStore(memory_backend)

@pytest.fixture
def unavailable_store() -> MetricStore:
    return MetricStore(UnavailableBackend())

@pytest.fixture
def audit_logger(wellness_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from companion.core.audit.logger import AuditLogger

    return AuditLogger(wellness_db)

@pytest.fixture
def companion(store, transport, audit_logger):
    """A WellnessCompanion over the in-memory store and a recording transport."""
    from companion.domains.wellness.service import WellnessCompanion

    return WellnessCompanion(store, transport, audit_logger=audit_logger)
