from __future__ import annotations

import contextlib
import copy
import json
import os
import sqlite3
from typing import Any, Protocol

from .logging_bridge import error as log_error
from .utils import now_iso

# Well-known keys
LEDGER_KEY = "sent_responses"
LOG_KEY = "activity_log"
STATS_KEY = "stats"
SETTINGS_KEY = "settings"
FILTER_URL_KEY = "filter_url"


class Store(Protocol):
    """
    Persistent key-value capability. Reads return the last written value;
    missing keys yield `default`.
    """

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store for tests and dry runs. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteStore:
    """
    JSON values in a single SQLite key/value table.
    Safe to construct repeatedly; the schema is created on first use.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        _ensure_dir(sqlite_path)
        with contextlib.closing(_connect(sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)

    def get(self, key: str, default: Any = None) -> Any:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            log_error({
                "component": "auto_responder.store",
                "op": "get",
                "key": key,
                "error": "corrupt JSON value; returning default",
            })
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        try:
            with contextlib.closing(_connect(self.sqlite_path)) as conn:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_utc) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_utc = excluded.updated_utc
                    """,
                    (key, payload, now_iso()),
                )
                conn.execute("COMMIT")
        except Exception as e:
            log_error({
                "component": "auto_responder.store",
                "op": "set",
                "sqlite_path": self.sqlite_path,
                "key": key,
                "error": repr(e),
            })
            raise

    def delete(self, key: str) -> None:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            return [r[0] for r in conn.execute("SELECT key FROM kv ORDER BY key")]


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # Autocommit; transactions are explicit where needed.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL,
          updated_utc TEXT NOT NULL
        );
        """
    )
