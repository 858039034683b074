"""
Tool: Pattern Suggestions
Purpose: Spot the kind of step a user keeps putting off, and show step dependencies

A user who misses or reschedules "Read chapter 3", "Read the RFC" and
"Read release notes" does not have three unrelated problems. Grouping
deferred subtasks by their leading word surfaces the step type they
avoid, and the fix is the same each time: split it into a tiny
collection step and the real work.

Usage:
    from momentum.tasks.suggestions import get_pattern_suggestion, get_dependency_chain

    suggestion = await get_pattern_suggestion(store, user_id, "learning")
    if suggestion.has_suggestion:
        print(suggestion.suggestion_text)

    for link in await get_dependency_chain(store, parent_id):
        print(link.title, link.can_start, link.blocked_by)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from momentum.config_models import SuggestionConfig, get_engine_config
from momentum.errors import StorageError
from momentum.logging_config import get_logger
from momentum.models import SoftFailure, SubtaskDraft, TaskStatus
from momentum.storage.base import StoragePort, in_

from . import DEFERRAL_EVENTS, round_half_up


logger = get_logger(__name__)

COLLECT_STEP_TITLE = "Collect materials"
EXECUTE_STEP_TITLE = "Execute the core work"


@dataclass
class PatternSuggestion:
    has_suggestion: bool = False
    suggestion_text: str = ""
    suggested_split: list[SubtaskDraft] = field(default_factory=list)
    soft_failures: list[SoftFailure] = field(default_factory=list)


@dataclass
class DependencyLink:
    """One subtask in a parent's chain, with what it is waiting on."""

    id: str
    title: str
    subtask_order: int | None
    is_blocking: bool
    status: TaskStatus
    estimated_minutes: int | None
    blocked_by: list[str] = field(default_factory=list)

    @property
    def can_start(self) -> bool:
        return not self.blocked_by

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "subtask_order": self.subtask_order,
            "is_blocking": self.is_blocking,
            "status": str(self.status),
            "estimated_minutes": self.estimated_minutes,
            "blocked_by": list(self.blocked_by),
            "can_start": self.can_start,
        }


async def _deferred_subtasks(
    store: StoragePort, user_id: str, category: Any, window: int
) -> tuple[Counter, list[dict[str, Any]]]:
    events = await store.select(
        "task_activity_logs",
        where={"user_id": user_id, "event_type": in_(DEFERRAL_EVENTS)},
        order_by="created_at",
        descending=True,
        limit=window,
    )
    if not events:
        return Counter(), []

    deferrals = Counter(e["task_id"] for e in events)
    # First appearance in the log decides group order
    task_ids = list(dict.fromkeys(e["task_id"] for e in events))

    rows = await store.select(
        "tasks",
        where={
            "id": in_(task_ids),
            "user_id": user_id,
            "is_subtask": True,
            "category": category,
        },
    )
    by_id = {row["id"]: row for row in rows}
    return deferrals, [by_id[i] for i in task_ids if i in by_id]


async def get_pattern_suggestion(
    store: StoragePort,
    user_id: str,
    category: Any,
    config: SuggestionConfig | None = None,
) -> PatternSuggestion:
    """
    Suggest splitting the step type the user defers most in this category.

    Groups the subtasks behind the user's recent task_missed and
    task_rescheduled events by the first word of their title and picks the
    group with the most deferrals (at least min_deferrals). Groups with no
    estimate are skipped, and neither proposed step is shorter than
    min_step_minutes. Storage errors yield an empty suggestion carrying a
    SoftFailure.

    Args:
        store: Storage port
        user_id: Owner
        category: Category of the task being decomposed
        config: Thresholds; defaults to args/engine.yaml

    Returns:
        PatternSuggestion; has_suggestion is False when no group qualifies
    """
    cfg = config or get_engine_config().suggestions
    result = PatternSuggestion()

    try:
        deferrals, subtasks = await _deferred_subtasks(store, user_id, category, cfg.deferral_window)
    except StorageError as e:
        logger.warning("pattern_suggestion_failed", user_id=user_id, category=str(category), error=str(e))
        result.soft_failures.append(
            SoftFailure("pattern_suggestion", str(e), {"category": str(category)})
        )
        return result

    groups: dict[str, dict[str, Any]] = {}
    for subtask in subtasks:
        words = subtask["title"].split()
        if not words:
            continue
        keyword = words[0].lower()
        group = groups.setdefault(
            keyword,
            {"count": 0, "title": subtask["title"], "estimated_minutes": subtask.get("estimated_minutes") or 0},
        )
        group["count"] += deferrals[subtask["id"]]
        group["estimated_minutes"] = max(group["estimated_minutes"], subtask.get("estimated_minutes") or 0)

    top = None
    for group in groups.values():
        if group["estimated_minutes"] <= 0 or group["count"] < cfg.min_deferrals:
            continue
        if top is None or group["count"] > top["count"]:
            top = group

    if top is None:
        return result

    minutes = top["estimated_minutes"]
    collect = max(
        cfg.min_step_minutes,
        min(cfg.collect_max_minutes, round_half_up(minutes * cfg.collect_fraction)),
    )
    execute = max(cfg.min_step_minutes, minutes - collect)

    result.has_suggestion = True
    result.suggestion_text = (
        f'You tend to delay "{top["title"]}" tasks. '
        f'Want me to split it into "{COLLECT_STEP_TITLE.lower()}" ({collect} min) '
        f'and "{EXECUTE_STEP_TITLE.lower()}" ({execute} min)?'
    )
    result.suggested_split = [
        SubtaskDraft(COLLECT_STEP_TITLE, collect, order=1, is_blocking=True, category=category),
        SubtaskDraft(EXECUTE_STEP_TITLE, execute, order=2, is_blocking=False, category=category),
    ]
    logger.debug("pattern_suggestion_found", user_id=user_id, title=top["title"], deferrals=top["count"])
    return result


async def get_dependency_chain(store: StoragePort, parent_task_id: str) -> list[DependencyLink]:
    """
    Subtasks of a parent in order, each with the blockers it waits on.

    A subtask is blocked by every earlier sibling that is blocking and not
    completed. Storage errors propagate.
    """
    rows = await store.select(
        "tasks",
        where={"parent_task_id": parent_task_id, "is_subtask": True},
        order_by="subtask_order",
    )

    chain: list[DependencyLink] = []
    for row in rows:
        blocked_by = [
            earlier.id
            for earlier in chain
            if earlier.is_blocking and earlier.status != TaskStatus.COMPLETED
        ]
        chain.append(
            DependencyLink(
                id=row["id"],
                title=row["title"],
                subtask_order=row.get("subtask_order"),
                is_blocking=bool(row.get("is_blocking")),
                status=TaskStatus(row.get("status") or TaskStatus.PENDING),
                estimated_minutes=row.get("estimated_minutes"),
                blocked_by=blocked_by,
            )
        )
    return chain


__all__ = [
    "COLLECT_STEP_TITLE",
    "EXECUTE_STEP_TITLE",
    "DependencyLink",
    "PatternSuggestion",
    "get_dependency_chain",
    "get_pattern_suggestion",
]
