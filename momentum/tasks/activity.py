"""
Tool: Task Activity
Purpose: Append-only activity log and the task status transitions that feed it

The activity log is what the learning side reads: completions with both
actual and estimated minutes calibrate future estimates, and misses and
reschedules drive the pattern suggestions.

Transitions:
    pending  -> completed   (mark_complete)
    pending  -> missed      (mark_missed, reschedule_count + 1)
    missed   -> pending     (reschedule_task, reschedule_count + 1)
    completed -> anything   not allowed

Every transition reads the stored row first. Passing user_id restricts the
lookup to that owner's tasks.

Usage:
    from momentum.tasks.activity import mark_complete, reschedule_task

    task = await mark_complete(store, task_id, actual_minutes=35)
    task = await reschedule_task(store, task, suggestion.suggested_at)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from momentum.errors import InvalidTransitionError, NotFoundError
from momentum.logging_config import get_logger
from momentum.models import ActivityLogEntry, EventType, Task, TaskStatus
from momentum.storage.base import StoragePort


logger = get_logger(__name__)

ACTIVITY_TABLE = "task_activity_logs"

# Reschedule count at which the UI should suggest splitting the task
SPLIT_WARNING_THRESHOLD = 3


async def log_activity(
    store: StoragePort,
    user_id: str,
    task_id: str,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> ActivityLogEntry:
    """Append one entry to the activity log."""
    rows = await store.insert(
        ACTIVITY_TABLE,
        [
            {
                "user_id": user_id,
                "task_id": task_id,
                "event_type": event_type,
                "payload": payload or {},
            }
        ],
    )
    logger.debug("activity_logged", task_id=task_id, event_type=str(event_type))
    return ActivityLogEntry.from_dict(rows[0])


async def fetch_task(store: StoragePort, task_id: str, user_id: str | None = None) -> Task:
    """
    The stored task, optionally restricted to one owner.

    Raises:
        NotFoundError: no such task, or it belongs to someone else
    """
    where: dict[str, Any] = {"id": task_id}
    if user_id is not None:
        where["user_id"] = user_id
    row = await store.select_one("tasks", where)
    if row is None:
        raise NotFoundError(f"Task {task_id} not found", table="tasks")
    return Task.from_dict(row)


async def _update_task(store: StoragePort, task_id: str, values: dict[str, Any]) -> Task:
    rows = await store.update("tasks", {"id": task_id}, values)
    if not rows:
        raise NotFoundError(f"Task {task_id} not found", table="tasks")
    return Task.from_dict(rows[0])


async def mark_complete(
    store: StoragePort,
    task_id: str,
    actual_minutes: int | None = None,
    now: datetime | None = None,
    user_id: str | None = None,
) -> Task:
    """
    Complete a task and log how long it actually took.

    Args:
        store: Storage port
        task_id: Task to complete
        actual_minutes: Time the user reports it took, if known
        now: Completion time (defaults to the current local time)
        user_id: Owner the task must belong to, when given

    Returns:
        The updated task

    Raises:
        NotFoundError: no such task (for this owner)
    """
    now = now or datetime.now()
    current = await fetch_task(store, task_id, user_id)

    task = await _update_task(
        store,
        task_id,
        {
            "status": TaskStatus.COMPLETED,
            "completed_at": now,
            "actual_minutes": actual_minutes,
        },
    )
    await log_activity(
        store,
        task.user_id,
        task_id,
        EventType.TASK_COMPLETED,
        {"actual_minutes": actual_minutes, "estimated_minutes": current.estimated_minutes},
    )
    logger.info("task_completed", task_id=task_id, actual_minutes=actual_minutes)
    return task


async def mark_missed(store: StoragePort, task_id: str, user_id: str | None = None) -> Task:
    """
    Mark a task missed and bump its reschedule count.

    Raises:
        NotFoundError: no such task (for this owner)
        InvalidTransitionError: the task is already completed
    """
    current = await fetch_task(store, task_id, user_id)
    if current.status == TaskStatus.COMPLETED:
        raise InvalidTransitionError(f"Task {task_id} is completed and cannot be missed")

    count = current.reschedule_count + 1
    task = await _update_task(
        store,
        task_id,
        {"status": TaskStatus.MISSED, "reschedule_count": count},
    )
    await log_activity(
        store, task.user_id, task_id, EventType.TASK_MISSED, {"reschedule_count": count}
    )
    logger.info("task_missed", task_id=task_id, reschedule_count=count)
    return task


async def reschedule_task(
    store: StoragePort,
    task: Task,
    new_due_at: datetime,
    user_id: str | None = None,
) -> Task:
    """
    Move a task to a new due time and put it back to pending.

    Status, due time and reschedule count come from the stored row; `task`
    only identifies which row.

    Raises:
        NotFoundError: no such task (for this owner)
        InvalidTransitionError: the task is already completed
    """
    current = await fetch_task(store, task.id, user_id)
    if current.status == TaskStatus.COMPLETED:
        raise InvalidTransitionError(f"Task {task.id} is completed and cannot be rescheduled")

    count = current.reschedule_count + 1
    updated = await _update_task(
        store,
        current.id,
        {"status": TaskStatus.PENDING, "due_at": new_due_at, "reschedule_count": count},
    )
    await log_activity(
        store,
        current.user_id,
        current.id,
        EventType.TASK_RESCHEDULED,
        {
            "from": current.due_at.isoformat() if current.due_at else None,
            "to": new_due_at.isoformat(),
            "reschedule_count": count,
        },
    )
    logger.info("task_rescheduled", task_id=current.id, reschedule_count=count)
    return updated


def needs_split_warning(task: Task) -> bool:
    return task.reschedule_count >= SPLIT_WARNING_THRESHOLD


__all__ = [
    "SPLIT_WARNING_THRESHOLD",
    "fetch_task",
    "log_activity",
    "mark_complete",
    "mark_missed",
    "needs_split_warning",
    "reschedule_task",
]
