"""
Local key-value snapshot store.

The durability guarantee for the current session: writes are synchronous and a
failure raises LocalPersistenceError to the caller. Values are JSON documents.

Two implementations share the KeyValueStore protocol:
  - SqliteKeyValueStore: one `kv_snapshots` table in the local database file
  - MemoryKeyValueStore: process-local dict, used by tests and ephemeral sessions
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from clarity.config import LOCAL_DB_PATH
from clarity.errors import LocalPersistenceError
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_snapshots (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""


def scoped_key(key: str, user_id: str | None) -> str:
    """Namespace a storage key by user so a user switch never reads stale state."""
    return f"{key}:{user_id}" if user_id else key


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Dict-backed store. Values are JSON round-tripped so callers never share references."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise LocalPersistenceError(f"Value for {key} is not serializable: {e}") from e

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteKeyValueStore:
    """
    SQLite-backed snapshot store.

    A single connection is shared behind a lock; WAL mode keeps readers from
    blocking the writer.
    """

    def __init__(self, db_path: Path | str = LOCAL_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._lock = Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            counter("local_store.open_failed")
            raise LocalPersistenceError(f"Cannot open local store {self.db_path}: {e}") from e

    @contextmanager
    def _transaction(self, operation: str) -> Generator[sqlite3.Connection, None, None]:
        """
        Run one statement group atomically.

        Side Effects:
            - Commits on success, rolls back on error
            - Increments local_store.<operation>_failed on sqlite errors
        """
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                counter(f"local_store.{operation}_failed")
                logger.error("Local store %s failed: %s", operation, e)
                raise LocalPersistenceError(f"Local store {operation} failed: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._transaction("read") as conn:
            row = conn.execute("SELECT value FROM kv_snapshots WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            counter("local_store.corrupt_value")
            logger.warning("Discarding unreadable local snapshot for %s", key)
            return default

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise LocalPersistenceError(f"Value for {key} is not serializable: {e}") from e
        with self._transaction("write") as conn:
            conn.execute(
                """
                INSERT INTO kv_snapshots (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
                """,
                (key, payload),
            )

    def delete(self, key: str) -> None:
        with self._transaction("delete") as conn:
            conn.execute("DELETE FROM kv_snapshots WHERE key = ?", (key,))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
