"""Store collaborator contract and the in-memory backend.

The analytics core talks to persistence only through :class:`StoreBackend`:
append-only timestamped streams plus a versioned key-value space. Every
operation may fail with :class:`StoreUnavailable`; callers degrade to
defaults instead of seeing backend-specific error types.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from bisect import insort
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Upper bound on rows returned by one stream query
DEFAULT_QUERY_LIMIT = 10_000


class StoreUnavailable(Exception):
    """Raised when the store cannot serve a read or write right now."""


def as_utc(ts: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_iso(ts: datetime) -> str:
    """Fixed-width UTC ISO 8601 so stored strings sort chronologically."""
    return as_utc(ts).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


@runtime_checkable
class StoreBackend(Protocol):
    """Abstract persistence collaborator."""

    def append(self, stream: str, timestamp: datetime, payload: dict[str, Any]) -> str:
        """Append one payload to ``stream``; returns the row id."""
        ...

    def query(
        self,
        stream: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[dict[str, Any]]:
        """Payloads in ``stream`` within the bounds, oldest first."""
        ...

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def get_versioned(self, key: str) -> tuple[Any | None, int]:
        """Value and version for ``key``; ``(None, 0)`` when absent."""
        ...

    def compare_and_set(self, key: str, value: Any, expected_version: int) -> bool:
        """Write ``value`` only if the stored version still matches."""
        ...

    def purge_before(self, before: datetime) -> int:
        """Drop stream rows older than ``before``; returns rows removed."""
        ...


class MemoryStoreBackend:
    """Thread-safe in-process backend.

    Used for tests and as the fallback when no encryption key is configured.
    Values are deep-copied on the way in and out so readers always hold a
    private snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[str, list[tuple[datetime, int, str, dict[str, Any]]]] = {}
        self._kv: dict[str, tuple[Any, int]] = {}
        self._seq = 0

    def append(self, stream: str, timestamp: datetime, payload: dict[str, Any]) -> str:
        row_id = str(uuid.uuid4())
        with self._lock:
            self._seq += 1
            rows = self._streams.setdefault(stream, [])
            insort(rows, (from_iso(to_iso(timestamp)), self._seq, row_id, copy.deepcopy(payload)),
                   key=lambda r: (r[0], r[1]))
        return row_id

    def query(
        self,
        stream: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[dict[str, Any]]:
        since = as_utc(since) if since is not None else None
        until = as_utc(until) if until is not None else None
        with self._lock:
            rows = list(self._streams.get(stream, ()))
        selected = [
            payload
            for ts, _, _, payload in rows
            if (since is None or ts >= since) and (until is None or ts <= until)
        ]
        # Keep the newest rows when the bound is hit
        return copy.deepcopy(selected[-limit:]) if limit else []

    def get(self, key: str) -> Any | None:
        value, _ = self.get_versioned(key)
        return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            _, version = self._kv.get(key, (None, 0))
            self._kv[key] = (copy.deepcopy(value), version + 1)

    def get_versioned(self, key: str) -> tuple[Any | None, int]:
        with self._lock:
            value, version = self._kv.get(key, (None, 0))
        return copy.deepcopy(value), version

    def compare_and_set(self, key: str, value: Any, expected_version: int) -> bool:
        with self._lock:
            _, version = self._kv.get(key, (None, 0))
            if version != expected_version:
                return False
            self._kv[key] = (copy.deepcopy(value), version + 1)
            return True

    def purge_before(self, before: datetime) -> int:
        removed = 0
        with self._lock:
            for stream, rows in self._streams.items():
                kept = [r for r in rows if r[0] >= before]
                removed += len(rows) - len(kept)
                self._streams[stream] = kept
        if removed:
            logger.info("Purged %d samples older than %s", removed, to_iso(before))
        return removed
