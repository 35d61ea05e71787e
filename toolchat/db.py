"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                tools_used_json TEXT NOT NULL,
                messages_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_user
                ON conversations(user_id, updated_at);

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS credentials (
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, name)
            );

            CREATE TABLE IF NOT EXISTS tool_preferences (
                user_id TEXT NOT NULL,
                tool_id TEXT NOT NULL,
                enabled INTEGER NOT NULL,
                PRIMARY KEY (user_id, tool_id)
            );
            """
        )

    def save_conversation(self, user_id: str, snapshot: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations(id, user_id, title, tools_used_json, messages_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    tools_used_json=excluded.tools_used_json,
                    messages_json=excluded.messages_json,
                    updated_at=excluded.updated_at
                """,
                (
                    snapshot["id"],
                    user_id,
                    snapshot["title"],
                    json.dumps(snapshot["tools_used"]),
                    json.dumps(snapshot["messages"], default=str),
                    snapshot["created_at"],
                    snapshot["updated_at"],
                ),
            )

    def load_conversations(self, user_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, title, tools_used_json, messages_json, created_at, updated_at
                FROM conversations
                WHERE user_id = ?
                ORDER BY updated_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "tools_used": json.loads(row["tools_used_json"]),
                "messages": json.loads(row["messages_json"]),
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]

    def delete_conversation(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    def log_tool_execution(
        self,
        user_id: str | None,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(user_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    tool_name,
                    json.dumps(tool_input, default=str),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT tool_name, input_json, succeeded, created_at FROM tool_executions ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def set_credential(self, user_id: str, name: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO credentials(user_id, name, value, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, name) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (user_id, name, value, _utc_now_iso()),
            )

    def get_credential(self, user_id: str, name: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM credentials WHERE user_id = ? AND name = ?",
                (user_id, name),
            ).fetchone()
        return row["value"] if row else None

    def delete_credential(self, user_id: str, name: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM credentials WHERE user_id = ? AND name = ?", (user_id, name))

    def set_tool_enabled(self, user_id: str, tool_id: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_preferences(user_id, tool_id, enabled) VALUES (?, ?, ?)
                ON CONFLICT(user_id, tool_id) DO UPDATE SET enabled=excluded.enabled
                """,
                (user_id, tool_id, int(enabled)),
            )

    def get_tool_preferences(self, user_id: str) -> dict[str, bool]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT tool_id, enabled FROM tool_preferences WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        return {row["tool_id"]: bool(row["enabled"]) for row in rows}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
