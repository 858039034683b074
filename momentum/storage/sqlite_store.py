"""
SQLite Storage Adapter

Local implementation of the StoragePort. One database file holds every
collection; each call opens its own connection and closes it before
returning, so concurrent engine calls never share a cursor.

Column handling:
    - JSON columns (steps, user_edits, payload, ...) are stored as text
    - Boolean columns come back as bool, not 0/1
    - Timestamps are stored as ISO-8601 text and come back as datetime
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from momentum.errors import StorageError
from momentum.logging_config import get_logger

from .base import Condition, StoragePort, Where


logger = get_logger(__name__)

SCHEMA = {
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT DEFAULT 'work' CHECK(category IN ('learning', 'work', 'health', 'personal', 'info', 'creative')),
            priority TEXT DEFAULT 'medium' CHECK(priority IN ('high', 'medium', 'low')),
            status TEXT DEFAULT 'pending' CHECK(status IN ('pending', 'completed', 'missed')),
            due_at TEXT,
            estimated_minutes INTEGER,
            actual_minutes INTEGER,
            reschedule_count INTEGER DEFAULT 0,
            parent_task_id TEXT,
            is_subtask INTEGER DEFAULT 0,
            subtask_order INTEGER,
            is_blocking INTEGER DEFAULT 0,
            decomposition_source TEXT,
            completed_at TEXT,
            created_at TEXT,
            FOREIGN KEY(parent_task_id) REFERENCES tasks(id)
        )
    """,
    "mental_notes": """
        CREATE TABLE IF NOT EXISTS mental_notes (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            content TEXT,
            category TEXT,
            tags TEXT DEFAULT '[]',
            created_at TEXT
        )
    """,
    "nudges": """
        CREATE TABLE IF NOT EXISTS nudges (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL CHECK(type IN ('pattern', 'momentum', 'content_capture')),
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            impact_score REAL DEFAULT 0,
            status TEXT DEFAULT 'active' CHECK(status IN ('pending', 'active', 'acted', 'dismissed')),
            triggered_at TEXT,
            created_at TEXT
        )
    """,
    "decomposition_templates": """
        CREATE TABLE IF NOT EXISTS decomposition_templates (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            category TEXT NOT NULL,
            sub_type TEXT,
            steps TEXT DEFAULT '[]',
            is_system INTEGER DEFAULT 0,
            usage_count INTEGER DEFAULT 0,
            created_at TEXT,
            updated_at TEXT
        )
    """,
    "decomposition_logs": """
        CREATE TABLE IF NOT EXISTS decomposition_logs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            parent_task_id TEXT NOT NULL,
            template_id TEXT,
            original_estimated_minutes INTEGER,
            subtasks_generated INTEGER DEFAULT 0,
            user_edits TEXT DEFAULT '[]',
            clarifying_answers TEXT DEFAULT '{}',
            created_at TEXT
        )
    """,
    "task_activity_logs": """
        CREATE TABLE IF NOT EXISTS task_activity_logs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            task_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            payload TEXT DEFAULT '{}',
            created_at TEXT
        )
    """,
    "user_decomposition_preferences": """
        CREATE TABLE IF NOT EXISTS user_decomposition_preferences (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE,
            granularity_preference TEXT DEFAULT 'balanced',
            preferred_chunk_minutes INTEGER,
            created_at TEXT,
            updated_at TEXT
        )
    """,
}

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_task_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(user_id, due_at)",
    "CREATE INDEX IF NOT EXISTS idx_notes_user ON mental_notes(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_nudges_user ON nudges(user_id, triggered_at)",
    "CREATE INDEX IF NOT EXISTS idx_templates_owner ON decomposition_templates(user_id, category)",
    "CREATE INDEX IF NOT EXISTS idx_logs_user ON decomposition_logs(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_activity_user ON task_activity_logs(user_id, event_type)",
)

JSON_COLUMNS = {
    "mental_notes": {"tags"},
    "decomposition_templates": {"steps"},
    "decomposition_logs": {"user_edits", "clarifying_answers"},
    "task_activity_logs": {"payload"},
}

BOOL_COLUMNS = {
    "tasks": {"is_subtask", "is_blocking"},
    "decomposition_templates": {"is_system"},
}

DATETIME_COLUMNS = {
    "tasks": {"due_at", "completed_at", "created_at"},
    "mental_notes": {"created_at"},
    "nudges": {"triggered_at", "created_at"},
    "decomposition_templates": {"created_at", "updated_at"},
    "decomposition_logs": {"created_at"},
    "task_activity_logs": {"created_at"},
    "user_decomposition_preferences": {"created_at", "updated_at"},
}

SQL_OPERATORS = {"neq": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


def generate_id() -> str:
    """Generate a short unique ID."""
    return uuid.uuid4().hex[:12]


def _format_datetime(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SqliteStore(StoragePort):
    """StoragePort over a single SQLite file."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._columns: dict[str, set[str]] = {}
        self._initialized = False

    # =========================================================================
    # Connection
    # =========================================================================

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        if not self._initialized:
            cursor = conn.cursor()
            for ddl in SCHEMA.values():
                cursor.execute(ddl)
            for ddl in INDEXES:
                cursor.execute(ddl)
            conn.commit()
            for table in SCHEMA:
                cursor.execute(f"PRAGMA table_info({table})")
                self._columns[table] = {row["name"] for row in cursor.fetchall()}
            self._initialized = True

        return conn

    # =========================================================================
    # Value conversion
    # =========================================================================

    def _check_column(self, table: str, column: str) -> None:
        if column not in self._columns[table]:
            raise StorageError(f"Unknown column {table}.{column}", table=table)

    def _to_db(self, table: str, column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in JSON_COLUMNS.get(table, ()):
            return json.dumps(value, default=str)
        if isinstance(value, datetime):
            return _format_datetime(value)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, StrEnum):
            return value.value
        return value

    def _from_db(self, table: str, row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        for column in JSON_COLUMNS.get(table, ()):
            if data.get(column) is not None:
                data[column] = json.loads(data[column])
        for column in BOOL_COLUMNS.get(table, ()):
            if data.get(column) is not None:
                data[column] = bool(data[column])
        for column in DATETIME_COLUMNS.get(table, ()):
            if data.get(column):
                data[column] = datetime.fromisoformat(data[column])
        return data

    def _where_clause(self, table: str, where: Where | None) -> tuple[str, list[Any]]:
        if not where:
            return "", []

        clauses = []
        params: list[Any] = []
        for column, value in where.items():
            self._check_column(table, column)
            if isinstance(value, Condition):
                if value.op == "not_null":
                    clauses.append(f"{column} IS NOT NULL")
                elif value.op == "between":
                    start, end = value.value
                    clauses.append(f"{column} >= ? AND {column} <= ?")
                    params.extend([self._to_db(table, column, start), self._to_db(table, column, end)])
                elif value.op == "in":
                    if not value.value:
                        clauses.append("0")
                        continue
                    placeholders = ", ".join("?" for _ in value.value)
                    clauses.append(f"{column} IN ({placeholders})")
                    params.extend(self._to_db(table, column, v) for v in value.value)
                else:
                    clauses.append(f"{column} {SQL_OPERATORS[value.op]} ?")
                    params.append(self._to_db(table, column, value.value))
            elif value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._to_db(table, column, value))

        return " WHERE " + " AND ".join(clauses), params

    # =========================================================================
    # Synchronous operations
    # =========================================================================

    def _select(
        self,
        conn: sqlite3.Connection,
        table: str,
        where: Where | None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        clause, params = self._where_clause(table, where)
        sql = f"SELECT * FROM {table}{clause}"
        direction = "DESC" if descending else "ASC"
        if order_by:
            self._check_column(table, order_by)
            sql += f" ORDER BY {order_by} {direction}, rowid {direction}"
        else:
            sql += " ORDER BY rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        cursor = conn.execute(sql, params)
        return [self._from_db(table, row) for row in cursor.fetchall()]

    def _insert(self, conn: sqlite3.Connection, table: str, rows: list[dict[str, Any]]) -> list[str]:
        ids = []
        now = datetime.now()
        for row in rows:
            record = dict(row)
            record.setdefault("id", generate_id())
            if "created_at" in self._columns[table]:
                record.setdefault("created_at", now)
            for column in record:
                self._check_column(table, column)

            columns = list(record)
            placeholders = ", ".join("?" for _ in columns)
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                [self._to_db(table, c, record[c]) for c in columns],
            )
            ids.append(record["id"])
        return ids

    def _run(self, table: str, operation: str, fn):
        self.check_table(table)
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open {self.db_path}: {e}", table=table) from e

        try:
            result = fn(conn)
            conn.commit()
            return result
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("storage_failed", table=table, operation=operation, error=str(e))
            raise StorageError(f"{operation} on {table} failed: {e}", table=table) from e
        finally:
            conn.close()

    # =========================================================================
    # StoragePort
    # =========================================================================

    async def select(
        self,
        table: str,
        where: Where | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return self._run(
            table,
            "select",
            lambda conn: self._select(conn, table, where, order_by, descending, limit),
        )

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []

        def op(conn):
            ids = self._insert(conn, table, rows)
            stored = {r["id"]: r for r in self._select(conn, table, {"id": Condition("in", ids)})}
            return [stored[i] for i in ids]

        return self._run(table, "insert", op)

    async def update(self, table: str, where: Where, values: dict[str, Any]) -> list[dict[str, Any]]:
        if not values:
            raise StorageError("update needs at least one value", table=table)

        def op(conn):
            ids = [r["id"] for r in self._select(conn, table, where)]
            if not ids:
                return []
            for column in values:
                self._check_column(table, column)
            assignments = ", ".join(f"{c} = ?" for c in values)
            placeholders = ", ".join("?" for _ in ids)
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id IN ({placeholders})",
                [self._to_db(table, c, v) for c, v in values.items()] + ids,
            )
            return self._select(conn, table, {"id": Condition("in", ids)})

        return self._run(table, "update", op)

    async def delete(self, table: str, where: Where) -> int:
        def op(conn):
            clause, params = self._where_clause(table, where)
            if not clause:
                raise StorageError("delete without a filter is not allowed", table=table)
            return conn.execute(f"DELETE FROM {table}{clause}", params).rowcount

        return self._run(table, "delete", op)

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        if on_conflict not in row:
            raise StorageError(f"upsert row is missing conflict column {on_conflict}", table=table)

        def op(conn):
            key = {on_conflict: row[on_conflict]}
            existing = self._select(conn, table, key, limit=1)
            if existing:
                values = {c: v for c, v in row.items() if c not in ("id", on_conflict)}
                if values:
                    assignments = ", ".join(f"{c} = ?" for c in values)
                    for column in values:
                        self._check_column(table, column)
                    conn.execute(
                        f"UPDATE {table} SET {assignments} WHERE id = ?",
                        [self._to_db(table, c, v) for c, v in values.items()] + [existing[0]["id"]],
                    )
                return self._select(conn, table, {"id": existing[0]["id"]})[0]
            new_id = self._insert(conn, table, [row])[0]
            return self._select(conn, table, {"id": new_id})[0]

        return self._run(table, "upsert", op)


__all__ = ["SqliteStore", "generate_id"]
