"""SQLite persistence for the agent audit log."""

from __future__ import annotations

import json
import sqlite3
import uuid
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
            CREATE TABLE IF NOT EXISTS agent_audit_logs (
                id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                family_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT,
                success INTEGER NOT NULL,
                error_message TEXT,
                execution_ms INTEGER,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS agent_audit_logs_user_id_created_at_idx
                ON agent_audit_logs(user_id, created_at);
            CREATE INDEX IF NOT EXISTS agent_audit_logs_family_id_created_at_idx
                ON agent_audit_logs(family_id, created_at);
            CREATE INDEX IF NOT EXISTS agent_audit_logs_tool_name_created_at_idx
                ON agent_audit_logs(tool_name, created_at);
            CREATE INDEX IF NOT EXISTS agent_audit_logs_request_id_idx
                ON agent_audit_logs(request_id);
            """
        )

    def log_tool_execution(
        self,
        request_id: str,
        user_id: str,
        family_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
        error_message: str | None = None,
        execution_ms: int | None = None,
    ) -> str:
        entry_id = str(uuid.uuid4())
        output_json = None if tool_output is None else json.dumps(tool_output, default=str)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO agent_audit_logs(
                    id, request_id, user_id, family_id, tool_name, input_json,
                    output_json, success, error_message, execution_ms, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    request_id,
                    user_id,
                    family_id,
                    tool_name,
                    json.dumps(tool_input, default=str),
                    output_json,
                    int(succeeded),
                    error_message,
                    execution_ms,
                    _utc_now_iso(),
                ),
            )
        return entry_id

    def list_audit_logs(self, family_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, request_id, user_id, tool_name, input_json, output_json,
                       success, error_message, execution_ms, created_at
                FROM agent_audit_logs
                WHERE family_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (family_id, limit),
            ).fetchall()
        return [
            {
                **dict(row),
                "input": json.loads(row["input_json"]),
                "output": json.loads(row["output_json"]) if row["output_json"] else None,
                "success": bool(row["success"]),
            }
            for row in rows
        ]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
