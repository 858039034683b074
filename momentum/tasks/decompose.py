"""
Tool: Task Decomposer
Purpose: Break a task the user keeps avoiding into timed, ordered steps

This is the core of the task engine. Everything is rule-based: a category
template is reshaped by priority, the task's own estimate, the user's
preferred chunk size and granularity, and finally by what the user's
history says about their pace and the steps they always delete.

Pipeline (generate_subtasks):
    1. Template for the category (sub-type from the clarifying answer,
       user's customised template if they have one)
    2. Priority adjustment (compress / clamp / checkpoint)
    3. Rescale so durations sum to the task's estimate
    4. Split steps much longer than the preferred chunk
    5. Granularity: merge small neighbours or split long steps
    6. Number the steps, round durations, tag with the category

Learning:
    adjust_for_user_patterns: calibrate durations to the user's pace
    learn_from_edits: turn repeated edits into a customised template

Usage:
    drafts = await generate_subtasks(task, "a blog post", prefs, store=store)
    drafts = await adjust_for_user_patterns(store, task.user_id, drafts)
    saved = await save_subtasks(store, task.id, drafts, template_id, qa)
    learned = await learn_from_edits(store, saved.log_id, edits)
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from momentum.config_models import DecompositionConfig, get_engine_config
from momentum.errors import NotFoundError, StorageError
from momentum.logging_config import get_logger
from momentum.models import (
    DecompositionLog,
    DecompositionPreferences,
    DecompositionSource,
    EditAction,
    EventType,
    Granularity,
    Priority,
    SoftFailure,
    SubtaskDraft,
    Task,
    TaskStatus,
    TemplateStep,
    UserEdit,
)
from momentum.storage.base import StoragePort, neq

from . import round_half_up
from .templates import (
    TEMPLATE_TABLE,
    find_user_template,
    get_template_by_id,
    resolve_category,
    select_template,
)


logger = get_logger(__name__)

LOG_TABLE = "decomposition_logs"
ACTIVITY_TABLE = "task_activity_logs"
PREFERENCES_TABLE = "user_decomposition_preferences"

CHECKPOINT_TITLE = "Checkpoint: review progress"
CHECKPOINT_MINUTES = 10


@dataclass
class SaveResult:
    """Rows written by save_subtasks."""

    subtasks: list[Task]
    log_id: str
    soft_failures: list[SoftFailure] = field(default_factory=list)


@dataclass
class EditLearning:
    """What learn_from_edits concluded from the user's edits."""

    has_strong_pattern: bool
    customized_template_id: str | None = None
    preference_updated: bool = False
    pattern_counts: dict[str, int] = field(default_factory=dict)


def _config(config: DecompositionConfig | None) -> DecompositionConfig:
    return config or get_engine_config().decomposition


# =============================================================================
# Pipeline stages (pure)
# =============================================================================


def apply_priority_adjustment(steps: list[TemplateStep], priority: Any) -> list[TemplateStep]:
    """
    Reshape step durations for the task's priority.

    high:   70% of each step, clamped to 15-30 min; first half forced blocking
    medium: clamped to 20-45 min; a 10 min checkpoint at the midpoint
    low:    60% of each step, clamped to 15-25 min
    """
    if priority == Priority.HIGH:
        forced = math.ceil(len(steps) / 2)
        return [
            replace(
                step,
                estimated_minutes=min(30, max(15, round_half_up(step.estimated_minutes * 0.7))),
                is_blocking=True if i < forced else step.is_blocking,
            )
            for i, step in enumerate(steps)
        ]

    if priority == Priority.MEDIUM:
        clamped = [
            replace(step, estimated_minutes=min(45, max(20, step.estimated_minutes)))
            for step in steps
        ]
        clamped.insert(
            len(clamped) // 2,
            TemplateStep(CHECKPOINT_TITLE, CHECKPOINT_MINUTES, is_blocking=False),
        )
        return clamped

    if priority == Priority.LOW:
        return [
            replace(
                step,
                estimated_minutes=min(25, max(15, round_half_up(step.estimated_minutes * 0.6))),
            )
            for step in steps
        ]

    return [replace(step) for step in steps]


def scale_to_target_minutes(
    steps: list[TemplateStep], target_minutes: int, min_minutes: int = 5
) -> list[TemplateStep]:
    """Rescale durations proportionally so they sum to target_minutes."""
    total = sum(step.estimated_minutes for step in steps)
    if total == 0:
        return steps
    scale = target_minutes / total
    return [
        replace(step, estimated_minutes=max(min_minutes, round_half_up(step.estimated_minutes * scale)))
        for step in steps
    ]


def apply_chunk_size(
    steps: list[TemplateStep], chunk_minutes: int, split_factor: float = 1.5
) -> list[TemplateStep]:
    """Split any step longer than split_factor x chunk into "(i/n)" parts."""
    result = []
    for step in steps:
        if step.estimated_minutes > chunk_minutes * split_factor:
            parts = math.ceil(step.estimated_minutes / chunk_minutes)
            part_minutes = round_half_up(step.estimated_minutes / parts)
            for i in range(parts):
                result.append(
                    TemplateStep(
                        title=f"{step.title} ({i + 1}/{parts})",
                        estimated_minutes=part_minutes,
                        is_blocking=step.is_blocking if i == 0 else False,
                    )
                )
        else:
            result.append(step)
    return result


def merge_adjacent_steps(steps: list[TemplateStep], max_minutes: int = 45) -> list[TemplateStep]:
    """Merge consecutive non-blocking pairs whose combined time fits max_minutes."""
    if len(steps) <= 2:
        return steps

    result = []
    i = 0
    while i < len(steps):
        current = steps[i]
        following = steps[i + 1] if i + 1 < len(steps) else None
        if (
            following is not None
            and not current.is_blocking
            and not following.is_blocking
            and current.estimated_minutes + following.estimated_minutes <= max_minutes
        ):
            result.append(
                TemplateStep(
                    title=f"{current.title} + {following.title}",
                    estimated_minutes=current.estimated_minutes + following.estimated_minutes,
                    is_blocking=False,
                )
            )
            i += 2
        else:
            result.append(current)
            i += 1
    return result


def split_large_steps(steps: list[TemplateStep], threshold_minutes: int = 45) -> list[TemplateStep]:
    """Split every step over threshold into two halves; the second never blocks."""
    result = []
    for step in steps:
        if step.estimated_minutes > threshold_minutes:
            half = round_half_up(step.estimated_minutes / 2)
            result.append(replace(step, title=f"{step.title} (part 1)", estimated_minutes=half))
            result.append(
                TemplateStep(
                    title=f"{step.title} (part 2)",
                    estimated_minutes=step.estimated_minutes - half,
                    is_blocking=False,
                )
            )
        else:
            result.append(step)
    return result


def finalize_steps(
    steps: list[TemplateStep], category: Any, min_minutes: int = 5
) -> list[SubtaskDraft]:
    return [
        SubtaskDraft(
            title=step.title,
            estimated_minutes=max(min_minutes, round_half_up(step.estimated_minutes)),
            order=i + 1,
            is_blocking=bool(step.is_blocking),
            category=category,
        )
        for i, step in enumerate(steps)
    ]


def replay_edits(steps: list[TemplateStep], edits: list[UserEdit]) -> list[TemplateStep]:
    """
    Apply a batch of user edits, in order, to a copy of a template's steps.

    Edits that reference a title not in the list are ignored.
    """
    custom = [replace(step) for step in steps]

    for edit in edits:
        if edit.action == EditAction.DELETED:
            custom = [s for s in custom if s.title != edit.step_title]

        elif edit.action == EditAction.RENAMED:
            custom = [
                replace(s, title=edit.to_title) if s.title == edit.from_title and edit.to_title else s
                for s in custom
            ]

        elif edit.action == EditAction.MERGED:
            titles = [s.title for s in custom]
            if len(edit.steps) > 1 and edit.steps[0] in titles:
                position = titles.index(edit.steps[0])
                merged = [s for s in custom if s.title in edit.steps]
                custom = [s for s in custom if s.title not in edit.steps]
                custom.insert(
                    position,
                    TemplateStep(
                        title=edit.into or " + ".join(edit.steps),
                        estimated_minutes=sum(s.estimated_minutes for s in merged),
                        is_blocking=False,
                    ),
                )

        elif edit.action == EditAction.REORDERED:
            titles = [s.title for s in custom]
            if edit.step_title in titles:
                moved = custom.pop(titles.index(edit.step_title))
                custom.insert(max(0, (edit.to_order or 1) - 1), moved)

    return custom


# =============================================================================
# Generation
# =============================================================================


async def load_preferences(store: StoragePort, user_id: str) -> DecompositionPreferences:
    """The user's stored decomposition preferences, or defaults."""
    try:
        row = await store.select_one(PREFERENCES_TABLE, {"user_id": user_id})
    except StorageError as e:
        logger.warning("preferences_lookup_failed", user_id=user_id, error=str(e))
        return DecompositionPreferences()
    return DecompositionPreferences.from_dict(row)


async def generate_subtasks(
    task: Task,
    clarifying_answer: str | None = None,
    preferences: DecompositionPreferences | None = None,
    *,
    store: StoragePort | None = None,
    template_id: str | None = None,
    config: DecompositionConfig | None = None,
) -> list[SubtaskDraft]:
    """
    Turn a task into an ordered list of subtask drafts.

    Args:
        task: The parent task (category, priority, estimated_minutes, user_id)
        clarifying_answer: Answer to the category's clarifying question
        preferences: Chunk size and granularity; defaults to balanced
        store: Used to look up the owner's customised template
        template_id: Explicit template to start from (read errors propagate)
        config: Thresholds; defaults to args/engine.yaml

    Returns:
        Drafts numbered 1..N, every duration >= the minimum step length
    """
    cfg = _config(config)
    preferences = preferences or DecompositionPreferences()

    choice = await select_template(task, clarifying_answer, store=store, template_id=template_id)
    steps = apply_priority_adjustment(choice.steps, task.priority)

    if task.estimated_minutes:
        steps = scale_to_target_minutes(steps, task.estimated_minutes, cfg.min_step_minutes)

    if preferences.preferred_chunk_minutes:
        steps = apply_chunk_size(steps, preferences.preferred_chunk_minutes, cfg.chunk_split_factor)

    if preferences.granularity == Granularity.FEWER_STEPS:
        steps = merge_adjacent_steps(steps, cfg.merge_max_minutes)
    elif preferences.granularity == Granularity.MORE_DETAIL:
        steps = split_large_steps(steps, cfg.split_threshold_minutes)

    category = resolve_category(task.category)
    drafts = finalize_steps(steps, category, cfg.min_step_minutes)

    logger.debug(
        "subtasks_generated",
        task_id=task.id,
        template_source=choice.source,
        sub_type=choice.sub_type,
        count=len(drafts),
    )
    return drafts


# =============================================================================
# History-based adjustment
# =============================================================================


async def _recent_deletions(store: StoragePort, user_id: str, window: int) -> Counter:
    try:
        logs = await store.select(
            LOG_TABLE,
            where={"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=window,
        )
    except StorageError as e:
        logger.warning("decomposition_logs_unavailable", user_id=user_id, error=str(e))
        return Counter()

    deletions: Counter = Counter()
    for log in logs:
        for raw in log.get("user_edits") or []:
            if raw.get("action") == EditAction.DELETED and raw.get("step_title"):
                deletions[raw["step_title"].lower()] += 1
    return deletions


async def estimate_ratio(
    store: StoragePort, user_id: str, config: DecompositionConfig | None = None
) -> float:
    """
    Mean actual/estimated minutes over recent completions, clamped.

    Returns 1.0 when fewer than calibration_min_samples completions carry
    both numbers.
    """
    cfg = _config(config)
    try:
        events = await store.select(
            ACTIVITY_TABLE,
            where={"user_id": user_id, "event_type": EventType.TASK_COMPLETED},
            order_by="created_at",
            descending=True,
            limit=cfg.calibration_window,
        )
    except StorageError as e:
        logger.warning("activity_logs_unavailable", user_id=user_id, error=str(e))
        return 1.0

    ratios = []
    for event in events:
        payload = event.get("payload") or {}
        actual = payload.get("actual_minutes")
        estimated = payload.get("estimated_minutes")
        if actual and estimated and estimated > 0:
            ratios.append(actual / estimated)

    if len(ratios) < cfg.calibration_min_samples:
        return 1.0

    average = sum(ratios) / len(ratios)
    return min(cfg.ratio_max, max(cfg.ratio_min, average))


async def adjust_for_user_patterns(
    store: StoragePort,
    user_id: str,
    subtasks: list[SubtaskDraft],
    config: DecompositionConfig | None = None,
) -> list[SubtaskDraft]:
    """
    Post-process drafts with the user's history.

    Steps that look like ones the user has deleted at least
    deletion_split_threshold times (same leading word) and run longer than
    split_min_minutes are halved and flagged split_suggestion. Every other
    step is scaled by the user's estimate ratio.
    """
    cfg = _config(config)
    deletions = await _recent_deletions(store, user_id, cfg.recent_log_window)
    ratio = await estimate_ratio(store, user_id, cfg)

    avoided_words = {
        title.split()[0]
        for title, count in deletions.items()
        if count >= cfg.deletion_split_threshold and title.split()
    }

    adjusted = []
    for subtask in subtasks:
        title_key = subtask.title.lower()
        avoided = any(title_key.startswith(word) for word in avoided_words)

        if avoided and subtask.estimated_minutes > cfg.split_min_minutes:
            adjusted.append(
                replace(
                    subtask,
                    estimated_minutes=max(cfg.min_step_minutes, round_half_up(subtask.estimated_minutes * 0.5)),
                    split_suggestion=True,
                )
            )
        elif ratio != 1.0:
            adjusted.append(
                replace(
                    subtask,
                    estimated_minutes=max(cfg.min_step_minutes, round_half_up(subtask.estimated_minutes * ratio)),
                )
            )
        else:
            adjusted.append(replace(subtask))

    return adjusted


# =============================================================================
# Persistence
# =============================================================================


async def _increment_usage(store: StoragePort, template_id: str) -> None:
    row = await store.select_one(TEMPLATE_TABLE, {"id": template_id})
    if row:
        await store.update(
            TEMPLATE_TABLE,
            {"id": template_id},
            {"usage_count": (row.get("usage_count") or 0) + 1},
        )


async def save_subtasks(
    store: StoragePort,
    parent_task_id: str,
    subtasks: list[SubtaskDraft],
    template_id: str | None = None,
    clarifying_answers: dict[str, Any] | None = None,
) -> SaveResult:
    """
    Persist drafts as subtask rows and log the decomposition.

    Args:
        store: Storage port
        parent_task_id: Task being decomposed
        subtasks: Drafts, usually from generate_subtasks/adjust_for_user_patterns
        template_id: Template the drafts came from, if any
        clarifying_answers: {"question": ..., "answer": ...}

    Returns:
        SaveResult with the created rows and the new decomposition log id

    Raises:
        NotFoundError: parent task does not exist
        StorageError: parent fetch, subtask insert or log insert failed
    """
    row = await store.select_one("tasks", {"id": parent_task_id})
    if row is None:
        raise NotFoundError(f"Task {parent_task_id} not found", table="tasks")
    parent = Task.from_dict(row)

    source = DecompositionSource.TEMPLATE if template_id else DecompositionSource.USER_CUSTOM
    ordered = sorted(subtasks, key=lambda s: s.order)

    created_rows = await store.insert(
        "tasks",
        [
            {
                "user_id": parent.user_id,
                "title": sub.title,
                "category": parent.category,
                "priority": parent.priority,
                "status": TaskStatus.PENDING,
                "estimated_minutes": sub.estimated_minutes,
                "parent_task_id": parent_task_id,
                "is_subtask": True,
                "subtask_order": i + 1,
                "is_blocking": sub.is_blocking,
                "decomposition_source": source,
            }
            for i, sub in enumerate(ordered)
        ],
    )

    result = SaveResult(subtasks=[Task.from_dict(r) for r in created_rows], log_id="")

    try:
        await store.insert(
            ACTIVITY_TABLE,
            [
                {
                    "user_id": parent.user_id,
                    "task_id": parent_task_id,
                    "event_type": EventType.TASK_DECOMPOSED,
                    "payload": {
                        "subtasks_generated": len(ordered),
                        "template_id": template_id,
                    },
                }
            ],
        )
    except StorageError as e:
        logger.warning("decomposition_activity_log_failed", task_id=parent_task_id, error=str(e))
        result.soft_failures.append(
            SoftFailure("activity_log", str(e), {"task_id": parent_task_id})
        )

    log_rows = await store.insert(
        LOG_TABLE,
        [
            {
                "user_id": parent.user_id,
                "parent_task_id": parent_task_id,
                "template_id": template_id,
                "original_estimated_minutes": parent.estimated_minutes,
                "subtasks_generated": len(ordered),
                "user_edits": [],
                "clarifying_answers": clarifying_answers or {},
            }
        ],
    )
    result.log_id = log_rows[0]["id"]

    if template_id:
        try:
            await _increment_usage(store, template_id)
        except StorageError as e:
            logger.warning("template_usage_increment_failed", template_id=template_id, error=str(e))
            result.soft_failures.append(
                SoftFailure("template_usage_increment", str(e), {"template_id": template_id})
            )

    logger.info(
        "subtasks_saved",
        task_id=parent_task_id,
        count=len(result.subtasks),
        log_id=result.log_id,
        source=str(source),
    )
    return result


# =============================================================================
# Edit learning
# =============================================================================


async def _upsert_user_template(
    store: StoragePort, user_id: str, category: Any, sub_type: str | None, steps: list[TemplateStep]
) -> str:
    payload = [step.to_dict() for step in steps]
    existing = await find_user_template(store, user_id, category, sub_type)
    if existing:
        await store.update(
            TEMPLATE_TABLE,
            {"id": existing.id},
            {"steps": payload, "updated_at": datetime.now()},
        )
        return existing.id

    rows = await store.insert(
        TEMPLATE_TABLE,
        [
            {
                "user_id": user_id,
                "category": category,
                "sub_type": sub_type,
                "steps": payload,
                "is_system": False,
                "usage_count": 0,
            }
        ],
    )
    return rows[0]["id"]


async def learn_from_edits(
    store: StoragePort,
    decomposition_log_id: str,
    user_edits: list[UserEdit],
    config: DecompositionConfig | None = None,
) -> EditLearning:
    """
    Record the user's edits and learn from ones they keep repeating.

    An action::subject pair seen strong_pattern_threshold times across the
    user's recent edited decompositions is a strong pattern. With a strong
    pattern and a known template, this batch of edits is replayed onto the
    template and saved as the user's own variant. Any merge in the batch
    switches the user's granularity preference to fewer_steps.

    Raises:
        NotFoundError: the log does not exist
    """
    cfg = _config(config)

    updated = await store.update(
        LOG_TABLE,
        {"id": decomposition_log_id},
        {"user_edits": [edit.to_dict() for edit in user_edits]},
    )
    if not updated:
        raise NotFoundError(f"Decomposition log {decomposition_log_id} not found", table=LOG_TABLE)
    log = DecompositionLog.from_dict(updated[0])

    recent = await store.select(
        LOG_TABLE,
        where={"user_id": log.user_id, "user_edits": neq([])},
        order_by="created_at",
        descending=True,
        limit=cfg.recent_log_window,
    )

    counts: Counter = Counter()
    for entry in recent:
        for raw in entry.get("user_edits") or []:
            counts[UserEdit.from_dict(raw).pattern_key()] += 1

    learning = EditLearning(
        has_strong_pattern=any(c >= cfg.strong_pattern_threshold for c in counts.values()),
        pattern_counts=dict(counts),
    )

    if learning.has_strong_pattern and log.template_id:
        base = await get_template_by_id(store, log.template_id)
        if base:
            custom_steps = replay_edits(base.steps, user_edits)
            learning.customized_template_id = await _upsert_user_template(
                store, log.user_id, base.category, base.sub_type, custom_steps
            )
            logger.info(
                "user_template_customized",
                user_id=log.user_id,
                template_id=learning.customized_template_id,
                steps=len(custom_steps),
            )

    if any(edit.action == EditAction.MERGED for edit in user_edits):
        now = datetime.now()
        await store.upsert(
            PREFERENCES_TABLE,
            {
                "user_id": log.user_id,
                "granularity_preference": Granularity.FEWER_STEPS,
                "updated_at": now,
            },
            on_conflict="user_id",
        )
        learning.preference_updated = True

    return learning


__all__ = [
    "CHECKPOINT_TITLE",
    "EditLearning",
    "SaveResult",
    "adjust_for_user_patterns",
    "apply_chunk_size",
    "apply_priority_adjustment",
    "estimate_ratio",
    "finalize_steps",
    "generate_subtasks",
    "learn_from_edits",
    "load_preferences",
    "merge_adjacent_steps",
    "replay_edits",
    "save_subtasks",
    "scale_to_target_minutes",
    "split_large_steps",
]
