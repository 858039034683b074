"""
Tool: Coaching Insights
Purpose: Turn a period's task and note history into up to three short insights

Metrics (tasks are bucketed by due_at, notes by created_at):
    completion_rate:          % of tasks due in range that are completed
    missed_by_category:       missed tasks per category
    time_accuracy:            sum(actual) / sum(estimated) * 100, or None
    notes_created_by_category

Insights are emitted in a fixed order (completion, missed category, time
accuracy, notes) and truncated to max_insights.

Usage:
    from momentum.analytics.insights import build_report

    report = await build_report(store, "alice", "this_week")
    for insight in report.insights:
        print(insight.text)
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from momentum.config_models import InsightConfig, get_engine_config
from momentum.logging_config import get_logger
from momentum.models import TaskStatus
from momentum.storage.base import StoragePort, between, is_not_null
from momentum.tasks import round_half_up

from . import PERIOD_LABELS, PERIODS


logger = get_logger(__name__)


@dataclass
class CompletionRate:
    rate: int
    total: int
    completed: int


@dataclass
class Insight:
    id: str
    text: str
    route: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "route": self.route}


@dataclass
class CoachingReport:
    period: str
    start: datetime
    end: datetime
    completion: CompletionRate
    missed_by_category: dict[str, int]
    time_accuracy: int | None
    notes_by_category: dict[str, int]
    insights: list[Insight] = field(default_factory=list)


def _end_of_day(day: datetime) -> datetime:
    return day.replace(hour=23, minute=59, second=59, microsecond=999000)


def get_date_range(period: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Local start/end of a reporting period.

    this_week:  Monday 00:00 through the end of today
    last_week:  the previous Monday 00:00 through Sunday 23:59:59.999
    this_month: the 1st 00:00 through the end of today

    Raises:
        ValueError: unknown period
    """
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")

    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "this_week":
        return midnight - timedelta(days=now.weekday()), _end_of_day(now)

    if period == "last_week":
        start = midnight - timedelta(days=now.weekday() + 7)
        return start, _end_of_day(start + timedelta(days=6))

    return midnight.replace(day=1), _end_of_day(now)


async def completion_rate(
    store: StoragePort, user_id: str, period: str = "this_week", now: datetime | None = None
) -> CompletionRate:
    start, end = get_date_range(period, now)
    rows = await store.select("tasks", where={"user_id": user_id, "due_at": between(start, end)})
    if not rows:
        return CompletionRate(rate=0, total=0, completed=0)
    completed = sum(1 for r in rows if r.get("status") == TaskStatus.COMPLETED)
    return CompletionRate(
        rate=round_half_up(completed / len(rows) * 100),
        total=len(rows),
        completed=completed,
    )


async def missed_by_category(
    store: StoragePort, user_id: str, period: str = "this_week", now: datetime | None = None
) -> dict[str, int]:
    start, end = get_date_range(period, now)
    rows = await store.select(
        "tasks",
        where={"user_id": user_id, "status": TaskStatus.MISSED, "due_at": between(start, end)},
    )
    return dict(Counter(r["category"] for r in rows))


async def time_accuracy(
    store: StoragePort, user_id: str, period: str = "this_week", now: datetime | None = None
) -> int | None:
    """Actual time as a percentage of estimated, over completed tasks with both set."""
    start, end = get_date_range(period, now)
    rows = await store.select(
        "tasks",
        where={
            "user_id": user_id,
            "status": TaskStatus.COMPLETED,
            "estimated_minutes": is_not_null(),
            "actual_minutes": is_not_null(),
            "due_at": between(start, end),
        },
    )
    if not rows:
        return None
    total_estimated = sum(r["estimated_minutes"] for r in rows)
    total_actual = sum(r["actual_minutes"] for r in rows)
    if total_estimated == 0:
        return None
    return round_half_up(total_actual / total_estimated * 100)


async def notes_created_by_category(
    store: StoragePort, user_id: str, period: str = "this_week", now: datetime | None = None
) -> dict[str, int]:
    start, end = get_date_range(period, now)
    rows = await store.select(
        "mental_notes",
        where={"user_id": user_id, "created_at": between(start, end)},
    )
    return dict(Counter(r.get("category") or "uncategorized" for r in rows))


def render_insights(
    completion: CompletionRate,
    missed: dict[str, int],
    accuracy: int | None,
    notes: dict[str, int],
    period: str = "this_week",
    config: InsightConfig | None = None,
) -> list[Insight]:
    """Metric values -> ordered insight list, truncated to max_insights."""
    cfg = config or get_engine_config().insights
    label = PERIOD_LABELS.get(period, period)
    insights: list[Insight] = []

    if completion.total > 0:
        if completion.rate >= cfg.praise_completion_rate:
            insights.append(
                Insight(
                    "comp_high",
                    f"{completion.rate}% completion rate {label}. Outstanding! Keep the streak alive.",
                    "/tasks",
                )
            )
        elif completion.rate < cfg.low_completion_rate and completion.total >= cfg.low_completion_min_tasks:
            insights.append(
                Insight(
                    "comp_low",
                    f"{completion.rate}% tasks done {label}. "
                    "Try breaking them into 15-min chunks to build momentum.",
                    "/tasks",
                )
            )

    if missed:
        category, count = Counter(missed).most_common(1)[0]
        plural = "s" if count > 1 else ""
        insights.append(
            Insight(
                "missed_cat",
                f"You missed {count} {category} task{plural} {label}. Try scheduling them before noon.",
                "/tasks",
            )
        )

    if accuracy is not None:
        if accuracy > cfg.over_estimate_accuracy:
            insights.append(
                Insight(
                    "time_over",
                    f"Tasks are taking {accuracy}% of estimated time. "
                    "Add a 30% buffer when planning next week.",
                    "/tasks",
                )
            )
        elif accuracy < cfg.under_estimate_accuracy:
            insights.append(
                Insight(
                    "time_under",
                    f"You finish tasks in just {accuracy}% of your estimates. You're faster than you think!",
                    "/tasks",
                )
            )

    total_notes = sum(notes.values())
    if total_notes >= cfg.notes_habit_threshold:
        top_category = Counter(notes).most_common(1)[0][0]
        insights.append(
            Insight(
                "notes_habit",
                f"You captured {total_notes} notes {label}, mostly {top_category}. "
                "Review them to spot recurring themes.",
                "/notes",
            )
        )

    return insights[: cfg.max_insights]


async def build_report(
    store: StoragePort,
    user_id: str,
    period: str = "this_week",
    now: datetime | None = None,
    config: InsightConfig | None = None,
) -> CoachingReport:
    """
    Read the four metrics concurrently and render the insights.

    Raises:
        StorageError: any metric read failed
        ValueError: unknown period
    """
    now = now or datetime.now()
    start, end = get_date_range(period, now)

    completion, missed, accuracy, notes = await asyncio.gather(
        completion_rate(store, user_id, period, now),
        missed_by_category(store, user_id, period, now),
        time_accuracy(store, user_id, period, now),
        notes_created_by_category(store, user_id, period, now),
    )

    report = CoachingReport(
        period=period,
        start=start,
        end=end,
        completion=completion,
        missed_by_category=missed,
        time_accuracy=accuracy,
        notes_by_category=notes,
        insights=render_insights(completion, missed, accuracy, notes, period, config),
    )
    logger.debug(
        "coaching_report_built",
        user_id=user_id,
        period=period,
        completion_rate=completion.rate,
        insights=len(report.insights),
    )
    return report


async def generate_insights(
    store: StoragePort,
    user_id: str,
    period: str = "this_week",
    now: datetime | None = None,
    config: InsightConfig | None = None,
) -> list[Insight]:
    report = await build_report(store, user_id, period, now, config)
    return report.insights


__all__ = [
    "CoachingReport",
    "CompletionRate",
    "Insight",
    "build_report",
    "completion_rate",
    "generate_insights",
    "get_date_range",
    "missed_by_category",
    "notes_created_by_category",
    "render_insights",
    "time_accuracy",
]
