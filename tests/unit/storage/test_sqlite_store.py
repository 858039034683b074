"""Tests for momentum/storage/sqlite_store.py

SqliteStore is the production StoragePort. Key functionality:
- Filters (equality, IS NULL, conditions)
- JSON, boolean and timestamp columns round-trip as Python values
- Every failure surfaces as StorageError
"""

from datetime import datetime

import pytest

from momentum.errors import StorageError
from momentum.storage import between, gte, in_, is_not_null, lt, neq


# ─────────────────────────────────────────────────────────────────────────────
# Insert / Select
# ─────────────────────────────────────────────────────────────────────────────


class TestInsertSelect:
    """Tests for insert and select."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_created_at(self, store, mock_user_id):
        """Should fill in id and created_at when absent."""
        rows = await store.insert("tasks", [{"user_id": mock_user_id, "title": "Read RFC"}])

        assert len(rows) == 1
        assert len(rows[0]["id"]) == 12
        assert isinstance(rows[0]["created_at"], datetime)

    @pytest.mark.asyncio
    async def test_insert_returns_rows_in_given_order(self, store, mock_user_id):
        """Returned rows should match the input order."""
        rows = await store.insert(
            "tasks",
            [{"user_id": mock_user_id, "title": t} for t in ("one", "two", "three")],
        )

        assert [r["title"] for r in rows] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_schema_defaults_applied(self, store, mock_user_id):
        """Status and reschedule_count should default."""
        row = (await store.insert("tasks", [{"user_id": mock_user_id, "title": "x"}]))[0]

        assert row["status"] == "pending"
        assert row["reschedule_count"] == 0
        assert row["is_subtask"] is False

    @pytest.mark.asyncio
    async def test_json_columns_round_trip(self, store, mock_user_id):
        """JSON columns should come back as Python structures."""
        await store.insert(
            "task_activity_logs",
            [
                {
                    "user_id": mock_user_id,
                    "task_id": "t1",
                    "event_type": "task_completed",
                    "payload": {"actual_minutes": 30, "estimated_minutes": 25},
                }
            ],
        )

        rows = await store.select("task_activity_logs", where={"task_id": "t1"})
        assert rows[0]["payload"] == {"actual_minutes": 30, "estimated_minutes": 25}

    @pytest.mark.asyncio
    async def test_datetime_round_trip(self, store, mock_user_id, fixed_now):
        """Timestamps should come back as equal datetimes."""
        await store.insert("tasks", [{"user_id": mock_user_id, "title": "x", "due_at": fixed_now}])

        rows = await store.select("tasks")
        assert rows[0]["due_at"] == fixed_now

    @pytest.mark.asyncio
    async def test_none_means_is_null(self, store, mock_user_id):
        """A None filter value should match NULL columns."""
        await store.insert(
            "tasks",
            [
                {"user_id": mock_user_id, "title": "top"},
                {"user_id": mock_user_id, "title": "child", "parent_task_id": "p1"},
            ],
        )

        rows = await store.select("tasks", where={"parent_task_id": None})
        assert [r["title"] for r in rows] == ["top"]

    @pytest.mark.asyncio
    async def test_conditions(self, store, mock_user_id):
        """Condition helpers should translate to SQL comparisons."""
        await store.insert(
            "tasks",
            [
                {"user_id": mock_user_id, "title": f"t{m}", "estimated_minutes": m}
                for m in (10, 20, 30, 40)
            ],
        )

        async def titles(where):
            return [r["title"] for r in await store.select("tasks", where=where)]

        assert await titles({"estimated_minutes": gte(30)}) == ["t30", "t40"]
        assert await titles({"estimated_minutes": lt(20)}) == ["t10"]
        assert await titles({"estimated_minutes": between(20, 30)}) == ["t20", "t30"]
        assert await titles({"estimated_minutes": in_([10, 40])}) == ["t10", "t40"]
        assert await titles({"estimated_minutes": neq(10)}) == ["t20", "t30", "t40"]
        assert await titles({"estimated_minutes": in_([])}) == []

    @pytest.mark.asyncio
    async def test_is_not_null(self, store, mock_user_id, fixed_now):
        """is_not_null should skip NULL columns."""
        await store.insert(
            "tasks",
            [
                {"user_id": mock_user_id, "title": "done", "completed_at": fixed_now},
                {"user_id": mock_user_id, "title": "open"},
            ],
        )

        rows = await store.select("tasks", where={"completed_at": is_not_null()})
        assert [r["title"] for r in rows] == ["done"]

    @pytest.mark.asyncio
    async def test_order_and_limit(self, store, mock_user_id):
        """Should order by the column and honour the limit."""
        await store.insert(
            "tasks",
            [
                {"user_id": mock_user_id, "title": f"t{m}", "estimated_minutes": m}
                for m in (20, 40, 10, 30)
            ],
        )

        rows = await store.select("tasks", order_by="estimated_minutes", descending=True, limit=2)
        assert [r["estimated_minutes"] for r in rows] == [40, 30]


# ─────────────────────────────────────────────────────────────────────────────
# Update / Delete / Upsert
# ─────────────────────────────────────────────────────────────────────────────


class TestMutations:
    """Tests for update, delete and upsert."""

    @pytest.mark.asyncio
    async def test_update_returns_updated_rows(self, store, make_task):
        """Should return the rows as stored after the update."""
        task = await make_task()

        rows = await store.update("tasks", {"id": task.id}, {"status": "completed"})

        assert len(rows) == 1
        assert rows[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_update_without_match_returns_empty(self, store):
        """No matching rows means an empty list, not an error."""
        assert await store.update("tasks", {"id": "missing"}, {"status": "completed"}) == []

    @pytest.mark.asyncio
    async def test_delete_counts_rows(self, store, make_task):
        """Should return how many rows were removed."""
        task = await make_task()
        await make_task(title="keep")

        assert await store.delete("tasks", {"id": task.id}) == 1
        assert len(await store.select("tasks")) == 1

    @pytest.mark.asyncio
    async def test_delete_requires_filter(self, store):
        """Deleting a whole table should be refused."""
        with pytest.raises(StorageError):
            await store.delete("tasks", {})

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, store, mock_user_id):
        """Second upsert on the same key should update in place."""
        first = await store.upsert(
            "user_decomposition_preferences",
            {"user_id": mock_user_id, "granularity_preference": "balanced"},
            on_conflict="user_id",
        )
        second = await store.upsert(
            "user_decomposition_preferences",
            {"user_id": mock_user_id, "granularity_preference": "fewer_steps"},
            on_conflict="user_id",
        )

        assert first["id"] == second["id"]
        assert second["granularity_preference"] == "fewer_steps"
        assert len(await store.select("user_decomposition_preferences")) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────


class TestErrors:
    """Tests for typed failures."""

    @pytest.mark.asyncio
    async def test_unknown_table(self, store):
        """Should raise StorageError naming the table."""
        with pytest.raises(StorageError) as exc:
            await store.select("users")

        assert exc.value.table == "users"

    @pytest.mark.asyncio
    async def test_unknown_column(self, store):
        """Filtering on a column that does not exist should raise."""
        with pytest.raises(StorageError):
            await store.select("tasks", where={"colour": "red"})

    @pytest.mark.asyncio
    async def test_constraint_violation_wrapped(self, store, mock_user_id):
        """sqlite3 errors should surface as StorageError."""
        with pytest.raises(StorageError):
            await store.insert("tasks", [{"user_id": mock_user_id, "title": "x", "category": "chores"}])

    def test_unknown_operator_rejected(self):
        """Condition should only accept known operators."""
        from momentum.storage import Condition

        with pytest.raises(ValueError):
            Condition("like", "%x%")
