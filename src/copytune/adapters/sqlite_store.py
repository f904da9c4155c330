"""SQLite key-value adapter.

Implements the core KeyValueStorePort using a simple SQLite database.
Values are stored as JSON text under a string key.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional


class SQLiteKeyValueStore:
    """Thin SQLite wrapper that satisfies the KeyValueStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the documents table if it does not exist.

        Fields:
        - key: logical document name (PRIMARY KEY)
        - value: JSON-encoded document
        - updated_at: timestamp of the last write
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded document stored under ``key``, if any."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM documents WHERE key = ?",
                (key,),
            ).fetchone()
        return json.loads(row["value"]) if row else None

    async def set(self, key: str, value: Any) -> None:
        """Upsert the whole document under ``key``."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(value, ensure_ascii=False), now.isoformat()),
            )

    def list_keys(self) -> set[str]:
        """Return all keys currently stored."""

        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM documents").fetchall()
        return {row["key"] for row in rows}
