"""SQLite-backed store collaborator with encrypted payloads.

The backend mediates between the analytics core and :class:`WellnessDatabase`,
using :class:`PayloadCipher` to seal every sample payload and key-value record.
Backend failures are re-raised as :class:`StoreUnavailable`.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any

from companion.core.storage.backend import DEFAULT_QUERY_LIMIT, StoreUnavailable, to_iso
from companion.core.storage.database import DatabaseError, WellnessDatabase
from companion.core.storage.encryption import EncryptionError, PayloadCipher

logger = logging.getLogger(__name__)


class SQLiteStoreBackend:
    """Encrypted stream + key-value store on top of SQLite.

    Usage::

        db = WellnessDatabase(":memory:")
        db.initialize()
        backend = SQLiteStoreBackend(db, PayloadCipher(key))
        backend.append("mood", ts, {"value": 4})
        backend.query("mood", since=ts)
    """

    def __init__(self, database: WellnessDatabase, cipher: PayloadCipher) -> None:
        self._db = database
        self._cipher = cipher

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def append(self, stream: str, timestamp: datetime, payload: dict[str, Any]) -> str:
        row_id = str(uuid.uuid4())
        try:
            sealed = self._cipher.seal(payload)
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    "INSERT INTO samples (id, stream, timestamp, payload_enc) VALUES (?, ?, ?, ?)",
                    (row_id, stream, to_iso(timestamp), sealed),
                )
                conn.commit()
        except (sqlite3.Error, DatabaseError, EncryptionError) as exc:
            raise StoreUnavailable(f"append to {stream!r} failed: {exc}") from exc
        return row_id

    def query(
        self,
        stream: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[dict[str, Any]]:
        conditions = ["stream = ?"]
        params: list[Any] = [stream]
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(to_iso(since))
        if until is not None:
            conditions.append("timestamp <= ?")
            params.append(to_iso(until))

        where = " AND ".join(conditions)
        # Newest rows win when the bound is hit; re-sorted ascending below
        query = (
            f"SELECT id, payload_enc FROM samples WHERE {where} "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        )
        params.append(limit)

        try:
            with self._db.lock:
                rows = self._db.connection.execute(query, params).fetchall()
        except (sqlite3.Error, DatabaseError) as exc:
            raise StoreUnavailable(f"query of {stream!r} failed: {exc}") from exc

        payloads: list[dict[str, Any]] = []
        for row in reversed(rows):
            try:
                payloads.append(self._cipher.open(row["payload_enc"]))
            except EncryptionError:
                logger.warning("Skipping unreadable sample %s in stream %s", row["id"], stream)
        return payloads

    def purge_before(self, before: datetime) -> int:
        try:
            with self._db.lock:
                conn = self._db.connection
                cursor = conn.execute("DELETE FROM samples WHERE timestamp < ?", (to_iso(before),))
                conn.commit()
        except (sqlite3.Error, DatabaseError) as exc:
            raise StoreUnavailable(f"purge failed: {exc}") from exc
        if cursor.rowcount:
            logger.info("Purged %d samples older than %s", cursor.rowcount, to_iso(before))
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Key-value
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        value, _ = self.get_versioned(key)
        return value

    def get_versioned(self, key: str) -> tuple[Any | None, int]:
        try:
            with self._db.lock:
                row = self._db.connection.execute(
                    "SELECT value_enc, version FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except (sqlite3.Error, DatabaseError) as exc:
            raise StoreUnavailable(f"get {key!r} failed: {exc}") from exc
        if row is None:
            return None, 0
        try:
            return self._cipher.open(row["value_enc"]), row["version"]
        except EncryptionError as exc:
            raise StoreUnavailable(f"record {key!r} is unreadable: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            sealed = self._cipher.seal(value)
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO kv_store (key, value_enc, version, updated_at)
                       VALUES (?, ?, 1, datetime('now'))
                       ON CONFLICT(key) DO UPDATE SET
                           value_enc = excluded.value_enc,
                           version = kv_store.version + 1,
                           updated_at = excluded.updated_at""",
                    (key, sealed),
                )
                conn.commit()
        except (sqlite3.Error, DatabaseError, EncryptionError) as exc:
            raise StoreUnavailable(f"set {key!r} failed: {exc}") from exc

    def compare_and_set(self, key: str, value: Any, expected_version: int) -> bool:
        try:
            sealed = self._cipher.seal(value)
            with self._db.lock:
                conn = self._db.connection
                if expected_version == 0:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO kv_store (key, value_enc, version) VALUES (?, ?, 1)",
                        (key, sealed),
                    )
                else:
                    cursor = conn.execute(
                        """UPDATE kv_store
                           SET value_enc = ?, version = version + 1, updated_at = datetime('now')
                           WHERE key = ? AND version = ?""",
                        (sealed, key, expected_version),
                    )
                conn.commit()
        except (sqlite3.Error, DatabaseError, EncryptionError) as exc:
            raise StoreUnavailable(f"compare_and_set {key!r} failed: {exc}") from exc
        return cursor.rowcount == 1
