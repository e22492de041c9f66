"""SQLite-backed key-value store plus a tool execution log.

Scheduled commands and the conversation history each live under one key as
a JSON document, mirroring the flat settings store of the host platform.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

SCHEMA_VERSION = 1

SCHEDULED_COMMANDS_KEY = "scheduled_commands"
CONVERSATION_HISTORY_KEY = "conversation_history"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tool_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tool_name TEXT NOT NULL,
    arguments_json TEXT NOT NULL,
    result_json TEXT NOT NULL,
    succeeded INTEGER NOT NULL,
    executed_at TEXT NOT NULL
);
"""


class Database:
    """Persistent settings map; every write is committed before returning."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

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
        """Create tables on first start; refuse a database from another schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            current = conn.execute("SELECT version FROM schema_version").fetchone()
            if current is None:
                conn.executescript(_SCHEMA)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
                return
            if current["version"] != SCHEMA_VERSION:
                raise RuntimeError(f"Database {self._path} has schema {current['version']}, expected {SCHEMA_VERSION}")

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            found = conn.execute("SELECT value_json FROM settings WHERE key = ?", (key,)).fetchone()
        return default if found is None else json.loads(found["value_json"])

    def set_setting(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value_json, updated_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), _now()),
            )

    def delete_setting(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    def log_tool_execution(self, tool_name: str, arguments: dict[str, Any], result: Any, succeeded: bool) -> None:
        """Append one audit row; values that are not JSON-native are stringified."""

        with self._connect() as conn:
            conn.execute(
                "INSERT INTO tool_executions (tool_name, arguments_json, result_json, succeeded, executed_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (tool_name, json.dumps(arguments, default=str), json.dumps(result, default=str), int(succeeded), _now()),
            )

    def list_tool_executions(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent executions first."""

        with self._connect() as conn:
            found = conn.execute(
                "SELECT tool_name, arguments_json, result_json, succeeded, executed_at "
                "FROM tool_executions ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(item) for item in found]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
