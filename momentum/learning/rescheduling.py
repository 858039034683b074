"""
Tool: Reschedule Suggester
Purpose: Recommend a new due time for a missed or deferred task

Looks at when the user completed their last tasks in the same category,
buckets completion hours into morning/afternoon/evening and proposes
tomorrow at the busiest bucket's representative hour.

Cold start (fewer than min_samples completions):
    high   -> tomorrow 9:00
    medium -> tomorrow 14:00
    low    -> in 6 days, 9:00
    confidence 0.30

Warm path:
    confidence = min(0.5 + best/total * 0.5, 0.95), two decimals

Usage:
    from momentum.learning.rescheduling import suggest_reschedule

    suggestion = await suggest_reschedule(store, task, now=datetime.now())
    print(suggestion.rationale, suggestion.suggested_at)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from momentum.config_models import ReschedulingConfig, get_engine_config
from momentum.errors import StorageError
from momentum.logging_config import get_logger
from momentum.models import SoftFailure, Task, TaskStatus, parse_datetime
from momentum.storage.base import StoragePort, is_not_null

from . import PRIORITY_DEFAULTS, TIME_BUCKETS


logger = get_logger(__name__)


@dataclass
class RescheduleSuggestion:
    suggested_at: datetime
    rationale: str
    confidence: float
    bucket: str
    sample_size: int = 0
    soft_failures: list[SoftFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggested_at": self.suggested_at.isoformat(),
            "rationale": self.rationale,
            "confidence": self.confidence,
            "bucket": self.bucket,
            "sample_size": self.sample_size,
        }


def bucket_for_hour(hour: int) -> str | None:
    """Bucket name for an hour of day, or None outside 6:00-22:00."""
    for name, (start, end, _) in TIME_BUCKETS.items():
        if start <= hour < end:
            return name
    return None


def format_bucket_time(bucket: str) -> str:
    """'9:00 AM', '2:00 PM'."""
    hour = TIME_BUCKETS[bucket][2]
    suffix = "PM" if hour >= 12 else "AM"
    display = hour - 12 if hour > 12 else hour
    return f"{display}:00 {suffix}"


def slot_datetime(bucket: str, offset_days: int, now: datetime) -> datetime:
    day = now + timedelta(days=offset_days)
    return day.replace(hour=TIME_BUCKETS[bucket][2], minute=0, second=0, microsecond=0)


def bucket_counts(completions: list[datetime]) -> dict[str, int]:
    """Completions per bucket; hours outside every bucket are dropped."""
    counts = {name: 0 for name in TIME_BUCKETS}
    for completed_at in completions:
        bucket = bucket_for_hour(completed_at.hour)
        if bucket:
            counts[bucket] += 1
    return counts


async def suggest_reschedule(
    store: StoragePort,
    task: Task,
    now: datetime | None = None,
    config: ReschedulingConfig | None = None,
) -> RescheduleSuggestion:
    """
    Suggest when to move a task to.

    A failed history read is logged and treated as no history, so the
    result is the cold-start default.

    Args:
        store: Storage port
        task: The task being rescheduled (user_id, category, priority)
        now: Reference time (defaults to the current local time)
        config: Thresholds; defaults to args/engine.yaml

    Returns:
        RescheduleSuggestion
    """
    cfg = config or get_engine_config().rescheduling
    now = now or datetime.now()
    category = str(task.category)
    priority = str(task.priority)
    soft_failures: list[SoftFailure] = []

    try:
        history = await store.select(
            "tasks",
            where={
                "user_id": task.user_id,
                "category": category,
                "status": TaskStatus.COMPLETED,
                "completed_at": is_not_null(),
            },
            order_by="completed_at",
            descending=True,
            limit=cfg.history_limit,
        )
    except StorageError as e:
        logger.warning("reschedule_history_failed", task_id=task.id, error=str(e))
        soft_failures.append(SoftFailure("reschedule_history", str(e), {"task_id": task.id}))
        history = []

    completions = [parse_datetime(row["completed_at"]) for row in history if row.get("completed_at")]

    if len(completions) < cfg.min_samples:
        bucket, offset_days = PRIORITY_DEFAULTS.get(priority, PRIORITY_DEFAULTS["medium"])
        day_label = "tomorrow" if offset_days == 1 else f"in {offset_days} days"
        return RescheduleSuggestion(
            suggested_at=slot_datetime(bucket, offset_days, now),
            rationale=(
                f"Not enough history for {category} tasks yet. Based on your {priority} "
                f"priority, we suggest the {bucket} slot ({format_bucket_time(bucket)}) {day_label}."
            ),
            confidence=cfg.cold_start_confidence,
            bucket=bucket,
            sample_size=len(completions),
            soft_failures=soft_failures,
        )

    counts = bucket_counts(completions)
    # Strict > keeps the earlier bucket on ties
    best = "morning"
    for name, count in counts.items():
        if count > counts[best]:
            best = name

    best_count = counts[best]
    confidence = round(min(0.5 + (best_count / len(completions)) * 0.5, cfg.max_confidence), 2)

    logger.debug(
        "reschedule_suggested",
        task_id=task.id,
        bucket=best,
        best_count=best_count,
        samples=len(completions),
    )
    return RescheduleSuggestion(
        suggested_at=slot_datetime(best, 1, now),
        rationale=(
            f"You complete {category} tasks most often in the {best}: {best_count} of your "
            f"last {len(completions)} completions happened then. "
            f"We've picked {format_bucket_time(best)} tomorrow."
        ),
        confidence=confidence,
        bucket=best,
        sample_size=len(completions),
        soft_failures=soft_failures,
    )


__all__ = [
    "RescheduleSuggestion",
    "bucket_counts",
    "bucket_for_hour",
    "format_bucket_time",
    "slot_datetime",
    "suggest_reschedule",
]
