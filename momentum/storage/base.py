"""
Storage Port

The engines never talk to a database directly. They take a StoragePort and
call five operations over named collections. Production uses SqliteStore;
any other backend only has to implement this class.

Filters:
    where={"user_id": "alice", "status": "completed"}        equality
    where={"completed_at": is_not_null()}                      IS NOT NULL
    where={"due_at": between(start, end)}                      range
    where={"event_type": in_(["task_missed", "task_rescheduled"])}

A None value means IS NULL.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from momentum.errors import StorageError


TABLES = (
    "tasks",
    "mental_notes",
    "nudges",
    "decomposition_templates",
    "decomposition_logs",
    "task_activity_logs",
    "user_decomposition_preferences",
)

OPERATORS = ("neq", "gt", "gte", "lt", "lte", "between", "in", "not_null")


@dataclass(frozen=True)
class Condition:
    """A non-equality filter on one column."""

    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unknown operator: {self.op}")


def neq(value: Any) -> Condition:
    return Condition("neq", value)


def gt(value: Any) -> Condition:
    return Condition("gt", value)


def gte(value: Any) -> Condition:
    return Condition("gte", value)


def lt(value: Any) -> Condition:
    return Condition("lt", value)


def lte(value: Any) -> Condition:
    return Condition("lte", value)


def between(start: Any, end: Any) -> Condition:
    """Inclusive on both ends."""
    return Condition("between", (start, end))


def in_(values: Any) -> Condition:
    return Condition("in", list(values))


def is_not_null() -> Condition:
    return Condition("not_null")


Where = dict[str, Any]


class StoragePort(ABC):
    """
    Async persistence interface used by every engine.

    Rows are plain dicts keyed by column name. Implementations raise
    StorageError (never a driver exception) on any failure, including an
    unknown table or column.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        where: Where | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching every filter in `where`."""

    @abstractmethod
    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert rows, assigning id/created_at when absent; returns stored rows."""

    @abstractmethod
    async def update(self, table: str, where: Where, values: dict[str, Any]) -> list[dict[str, Any]]:
        """Update matching rows; returns them as stored after the update."""

    @abstractmethod
    async def delete(self, table: str, where: Where) -> int:
        """Delete matching rows; returns how many were deleted."""

    @abstractmethod
    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        """Update the row whose `on_conflict` column matches, else insert it."""

    async def select_one(self, table: str, where: Where) -> dict[str, Any] | None:
        rows = await self.select(table, where=where, limit=1)
        return rows[0] if rows else None

    @staticmethod
    def check_table(table: str) -> None:
        if table not in TABLES:
            raise StorageError(f"Unknown table: {table}", table=table)


__all__ = [
    "Condition",
    "OPERATORS",
    "StoragePort",
    "TABLES",
    "Where",
    "between",
    "gt",
    "gte",
    "in_",
    "is_not_null",
    "lt",
    "lte",
    "neq",
]
