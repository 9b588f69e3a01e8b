from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class LocalStateDB:
    """Device-local key/JSON store.

    Every persisted collection (records, sessions, profile, credentials) lives
    under one key as a single JSON document and is overwritten whole.
    """

    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS local_state (
                  key TEXT PRIMARY KEY,
                  value_json TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );
                """
            )

    def read_json(self, key: str, default: Any) -> Any:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT value_json FROM local_state WHERE key = ? LIMIT 1",
                (key,),
            ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Discarding corrupt local state for key %s", key)
            return default

    def write_json(self, key: str, value: Any) -> None:
        blob = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        now = to_iso(utc_now())
        with self._lock, self.connection() as conn:
            conn.execute(
                """
                INSERT INTO local_state (key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value_json = excluded.value_json,
                  updated_at = excluded.updated_at
                """,
                (key, blob, now),
            )

    def delete(self, key: str) -> None:
        with self._lock, self.connection() as conn:
            conn.execute("DELETE FROM local_state WHERE key = ?", (key,))

    def purge(self) -> int:
        with self._lock, self.connection() as conn:
            return conn.execute("DELETE FROM local_state").rowcount
