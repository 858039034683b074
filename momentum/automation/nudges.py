"""
Tool: Nudge Generator
Purpose: Produce at most a few advisory cards a day from behavioral rules

Features:
- Daily cap on non-dismissed nudges (read-then-insert, best effort)
- Three fixed rules checked in order until the free slots run out
- Insert failures never fail the caller; existing nudges are returned
- act / dismiss / snooze lifecycle, visibility by status and time

Lifecycle:
    active -> acted | dismissed   (terminal)
    active -> active              (snooze: triggered_at = now + 1h)

Usage:
    from momentum.automation.nudges import generate_nudges, list_visible_nudges

    batch = await generate_nudges(store, "alice")
    cards = await list_visible_nudges(store, "alice")
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from momentum.config_models import NudgeConfig, get_engine_config
from momentum.errors import InvalidTransitionError, NotFoundError, StorageError
from momentum.logging_config import get_logger
from momentum.models import Category, Nudge, NudgeStatus, NudgeType, SoftFailure, TaskStatus
from momentum.storage.base import StoragePort, between, in_, lte, neq

from . import IMPACT_SCORES, TERMINAL_STATUSES


logger = get_logger(__name__)

NUDGE_TABLE = "nudges"


@dataclass
class NudgeBatch:
    """Today's nudges after a generate_nudges call."""

    nudges: list[Nudge]
    created: list[Nudge] = field(default_factory=list)
    soft_failures: list[SoftFailure] = field(default_factory=list)


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Local start and end (23:59:59.999) of now's calendar day."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


# =============================================================================
# Rules
# =============================================================================


def pattern_rule(user_id: str, week_tasks: list[dict[str, Any]], threshold: int) -> dict[str, Any] | None:
    missed = Counter(t["category"] for t in week_tasks if t.get("status") == TaskStatus.MISSED)
    if not missed:
        return None
    category, count = missed.most_common(1)[0]
    if count < threshold:
        return None
    return {
        "user_id": user_id,
        "type": NudgeType.PATTERN,
        "title": "Schedule Earlier",
        "message": (
            f"You've missed {count} {category} tasks this week. "
            "Try scheduling them earlier in the day."
        ),
        "impact_score": IMPACT_SCORES["pattern"],
    }


def momentum_rule(user_id: str, today_tasks: list[dict[str, Any]], threshold: int) -> dict[str, Any] | None:
    completed = sum(1 for t in today_tasks if t.get("status") == TaskStatus.COMPLETED)
    if completed < threshold:
        return None
    return {
        "user_id": user_id,
        "type": NudgeType.MOMENTUM,
        "title": "You're on Fire!",
        "message": f"Amazing! {completed} tasks done today. Keep the streak going with one more!",
        "impact_score": IMPACT_SCORES["momentum"],
    }


def content_capture_rule(user_id: str, today_tasks: list[dict[str, Any]]) -> dict[str, Any] | None:
    has_learning = any(
        t.get("category") == Category.LEARNING and t.get("status") == TaskStatus.PENDING
        for t in today_tasks
    )
    if not has_learning:
        return None
    return {
        "user_id": user_id,
        "type": NudgeType.CONTENT_CAPTURE,
        "title": "Capture Your Insights",
        "message": "You have a learning task today. Open Mental Notes to capture what you discover!",
        "impact_score": IMPACT_SCORES["content_capture"],
    }


# =============================================================================
# Generation
# =============================================================================


async def generate_nudges(
    store: StoragePort,
    user_id: str,
    now: datetime | None = None,
    config: NudgeConfig | None = None,
) -> NudgeBatch:
    """
    Evaluate the nudge rules and store any that fire.

    The cap check and the insert are separate calls; two concurrent calls
    for the same user can push the day past the cap.

    Args:
        store: Storage port
        user_id: Owner
        now: Reference time (defaults to the current local time)
        config: Cap and thresholds; defaults to args/engine.yaml

    Returns:
        NudgeBatch with every non-dismissed nudge for today

    Raises:
        StorageError: reading today's nudges or the task history failed
    """
    cfg = config or get_engine_config().nudges
    now = now or datetime.now()
    start, end = day_bounds(now)

    existing_rows = await store.select(
        NUDGE_TABLE,
        where={
            "user_id": user_id,
            "triggered_at": between(start, end),
            "status": neq(NudgeStatus.DISMISSED),
        },
        order_by="triggered_at",
    )
    existing = [Nudge.from_dict(r) for r in existing_rows]
    if len(existing) >= cfg.daily_cap:
        return NudgeBatch(nudges=existing)

    slots_left = cfg.daily_cap - len(existing)

    week_tasks = await store.select(
        "tasks",
        where={"user_id": user_id, "due_at": between(now - timedelta(days=7), now)},
    )
    today_tasks = await store.select(
        "tasks",
        where={"user_id": user_id, "due_at": between(start, end)},
    )

    rules = (
        lambda: pattern_rule(user_id, week_tasks, cfg.pattern_missed_threshold),
        lambda: momentum_rule(user_id, today_tasks, cfg.momentum_completed_threshold),
        lambda: content_capture_rule(user_id, today_tasks),
    )
    candidates = []
    for rule in rules:
        if len(candidates) >= slots_left:
            break
        nudge = rule()
        if nudge:
            candidates.append({**nudge, "status": NudgeStatus.ACTIVE, "triggered_at": now})

    if not candidates:
        return NudgeBatch(nudges=existing)

    try:
        saved = await store.insert(NUDGE_TABLE, candidates)
    except StorageError as e:
        logger.warning("nudge_insert_failed", user_id=user_id, count=len(candidates), error=str(e))
        return NudgeBatch(
            nudges=existing,
            soft_failures=[SoftFailure("nudge_insert", str(e), {"count": len(candidates)})],
        )

    created = [Nudge.from_dict(r) for r in saved]
    logger.info("nudges_generated", user_id=user_id, created=len(created), existing=len(existing))
    return NudgeBatch(nudges=existing + created, created=created)


# =============================================================================
# Lifecycle
# =============================================================================


async def _fetch_open_nudge(store: StoragePort, nudge_id: str) -> Nudge:
    row = await store.select_one(NUDGE_TABLE, {"id": nudge_id})
    if row is None:
        raise NotFoundError(f"Nudge {nudge_id} not found", table=NUDGE_TABLE)
    nudge = Nudge.from_dict(row)
    if nudge.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Nudge {nudge_id} is already {nudge.status}")
    return nudge


async def _set_nudge(store: StoragePort, nudge_id: str, values: dict[str, Any]) -> Nudge:
    rows = await store.update(NUDGE_TABLE, {"id": nudge_id}, values)
    return Nudge.from_dict(rows[0])


async def act_on_nudge(store: StoragePort, nudge_id: str) -> Nudge:
    await _fetch_open_nudge(store, nudge_id)
    return await _set_nudge(store, nudge_id, {"status": NudgeStatus.ACTED})


async def dismiss_nudge(store: StoragePort, nudge_id: str) -> Nudge:
    await _fetch_open_nudge(store, nudge_id)
    return await _set_nudge(store, nudge_id, {"status": NudgeStatus.DISMISSED})


async def snooze_nudge(
    store: StoragePort,
    nudge_id: str,
    now: datetime | None = None,
    minutes: int | None = None,
) -> Nudge:
    """Hide a nudge until `minutes` (default snooze_minutes) from now."""
    minutes = minutes or get_engine_config().nudges.snooze_minutes
    now = now or datetime.now()
    await _fetch_open_nudge(store, nudge_id)
    return await _set_nudge(store, nudge_id, {"triggered_at": now + timedelta(minutes=minutes)})


def is_visible(nudge: Nudge, now: datetime | None = None) -> bool:
    if nudge.status in TERMINAL_STATUSES:
        return False
    if nudge.triggered_at is None:
        return True
    return nudge.triggered_at <= (now or datetime.now())


async def list_visible_nudges(
    store: StoragePort, user_id: str, now: datetime | None = None
) -> list[Nudge]:
    """Open nudges already due, highest impact first."""
    now = now or datetime.now()
    rows = await store.select(
        NUDGE_TABLE,
        where={
            "user_id": user_id,
            "status": in_([NudgeStatus.PENDING, NudgeStatus.ACTIVE]),
            "triggered_at": lte(now),
        },
    )
    nudges = [n for n in (Nudge.from_dict(r) for r in rows) if is_visible(n, now)]
    return sorted(nudges, key=lambda n: n.impact_score, reverse=True)


__all__ = [
    "NudgeBatch",
    "act_on_nudge",
    "content_capture_rule",
    "day_bounds",
    "dismiss_nudge",
    "generate_nudges",
    "is_visible",
    "list_visible_nudges",
    "momentum_rule",
    "pattern_rule",
    "snooze_nudge",
]
