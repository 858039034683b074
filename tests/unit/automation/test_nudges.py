"""Tests for momentum/automation/nudges.py

Nudges are generated from three fixed rules under a daily cap, and move
through a small act / dismiss / snooze lifecycle.
"""

from datetime import timedelta

import pytest

from momentum.errors import InvalidTransitionError, NotFoundError, StorageError
from momentum.models import Nudge, NudgeStatus, NudgeType
from momentum.automation.nudges import (
    act_on_nudge,
    dismiss_nudge,
    generate_nudges,
    is_visible,
    list_visible_nudges,
    snooze_nudge,
)


async def _existing_nudges(store, user_id, when, count, status="active"):
    return await store.insert(
        "nudges",
        [
            {
                "user_id": user_id,
                "type": "momentum",
                "title": f"Earlier {i}",
                "message": "...",
                "impact_score": 0.5,
                "status": status,
                "triggered_at": when,
            }
            for i in range(count)
        ],
    )


async def _all_rules_firing(make_task, now):
    """Two missed work tasks this week, three completed today, one pending learning task."""
    for _ in range(2):
        await make_task(category="work", status="missed", due_at=now - timedelta(days=2))
    for _ in range(3):
        await make_task(category="health", status="completed", due_at=now.replace(hour=8))
    await make_task(category="learning", status="pending", due_at=now.replace(hour=16))


# ─────────────────────────────────────────────────────────────────────────────
# Rules
# ─────────────────────────────────────────────────────────────────────────────


class TestRules:
    """Tests for each rule's threshold."""

    @pytest.mark.asyncio
    async def test_no_data_no_nudges(self, store, mock_user_id, fixed_now):
        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert batch.nudges == []
        assert batch.created == []

    @pytest.mark.asyncio
    async def test_pattern_rule(self, store, make_task, mock_user_id, fixed_now):
        for _ in range(2):
            await make_task(category="work", status="missed", due_at=fixed_now - timedelta(days=3))

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert [n.type for n in batch.created] == [NudgeType.PATTERN]
        nudge = batch.created[0]
        assert nudge.title == "Schedule Earlier"
        assert nudge.message.startswith("You've missed 2 work tasks this week.")
        assert nudge.impact_score == 0.8
        assert nudge.status == NudgeStatus.ACTIVE
        assert nudge.triggered_at == fixed_now

    @pytest.mark.asyncio
    async def test_pattern_rule_needs_two(self, store, make_task, mock_user_id, fixed_now):
        await make_task(category="work", status="missed", due_at=fixed_now - timedelta(days=3))

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert batch.created == []

    @pytest.mark.asyncio
    async def test_pattern_rule_ignores_older_misses(self, store, make_task, mock_user_id, fixed_now):
        for _ in range(2):
            await make_task(category="work", status="missed", due_at=fixed_now - timedelta(days=9))

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert batch.created == []

    @pytest.mark.asyncio
    async def test_momentum_needs_three(self, store, make_task, mock_user_id, fixed_now):
        for _ in range(2):
            await make_task(status="completed", due_at=fixed_now.replace(hour=8))

        assert (await generate_nudges(store, mock_user_id, now=fixed_now)).created == []

        await make_task(status="completed", due_at=fixed_now.replace(hour=9))
        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert [n.type for n in batch.created] == [NudgeType.MOMENTUM]
        assert "3 tasks done today" in batch.created[0].message
        assert batch.created[0].impact_score == 0.9

    @pytest.mark.asyncio
    async def test_content_capture(self, store, make_task, mock_user_id, fixed_now):
        await make_task(category="learning", status="pending", due_at=fixed_now.replace(hour=18))

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert [n.type for n in batch.created] == [NudgeType.CONTENT_CAPTURE]
        assert batch.created[0].impact_score == 0.6

    @pytest.mark.asyncio
    async def test_rules_in_order(self, store, make_task, mock_user_id, fixed_now):
        await _all_rules_firing(make_task, fixed_now)

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert [n.type for n in batch.created] == [
            NudgeType.PATTERN,
            NudgeType.MOMENTUM,
            NudgeType.CONTENT_CAPTURE,
        ]


# ─────────────────────────────────────────────────────────────────────────────
# Daily Cap
# ─────────────────────────────────────────────────────────────────────────────


class TestDailyCap:
    """Tests for the five-per-day cap."""

    @pytest.mark.asyncio
    async def test_at_cap_returns_existing(self, store, make_task, mock_user_id, fixed_now):
        await _existing_nudges(store, mock_user_id, fixed_now.replace(hour=7), 5)
        await _all_rules_firing(make_task, fixed_now)

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert len(batch.nudges) == 5
        assert batch.created == []

    @pytest.mark.asyncio
    async def test_fills_remaining_slots_only(self, store, make_task, mock_user_id, fixed_now):
        await _existing_nudges(store, mock_user_id, fixed_now.replace(hour=7), 4)
        await _all_rules_firing(make_task, fixed_now)

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert [n.type for n in batch.created] == [NudgeType.PATTERN]
        assert len(batch.nudges) == 5

    @pytest.mark.asyncio
    async def test_dismissed_and_yesterday_not_counted(self, store, make_task, mock_user_id, fixed_now):
        await _existing_nudges(store, mock_user_id, fixed_now.replace(hour=7), 5, status="dismissed")
        await _existing_nudges(store, mock_user_id, fixed_now - timedelta(days=1), 5)
        await _all_rules_firing(make_task, fixed_now)

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert len(batch.created) == 3

    @pytest.mark.asyncio
    async def test_repeated_calls_stay_under_cap(self, store, make_task, mock_user_id, fixed_now):
        await _all_rules_firing(make_task, fixed_now)

        for _ in range(3):
            batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert len(batch.nudges) == 5

    @pytest.mark.asyncio
    async def test_insert_failure_is_soft(self, store, make_task, mock_user_id, fixed_now):
        await _existing_nudges(store, mock_user_id, fixed_now.replace(hour=7), 1)
        await _all_rules_firing(make_task, fixed_now)

        async def broken_insert(table, rows):
            raise StorageError("insert refused", table=table)

        store.insert = broken_insert

        batch = await generate_nudges(store, mock_user_id, now=fixed_now)

        assert len(batch.nudges) == 1
        assert batch.created == []
        assert [f.operation for f in batch.soft_failures] == ["nudge_insert"]


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


class TestLifecycle:
    """Tests for act / dismiss / snooze and visibility."""

    @pytest.mark.asyncio
    async def test_act_and_dismiss_are_terminal(self, store, mock_user_id, fixed_now):
        acted, dismissed = await _existing_nudges(store, mock_user_id, fixed_now, 2)

        assert (await act_on_nudge(store, acted["id"])).status == NudgeStatus.ACTED
        assert (await dismiss_nudge(store, dismissed["id"])).status == NudgeStatus.DISMISSED

        with pytest.raises(InvalidTransitionError):
            await dismiss_nudge(store, acted["id"])
        with pytest.raises(InvalidTransitionError):
            await snooze_nudge(store, dismissed["id"], now=fixed_now)

    @pytest.mark.asyncio
    async def test_snooze_pushes_an_hour(self, store, mock_user_id, fixed_now):
        (row,) = await _existing_nudges(store, mock_user_id, fixed_now, 1)

        snoozed = await snooze_nudge(store, row["id"], now=fixed_now)
        snoozed_again = await snooze_nudge(store, row["id"], now=fixed_now + timedelta(minutes=90))

        assert snoozed.triggered_at == fixed_now + timedelta(hours=1)
        assert snoozed_again.triggered_at == fixed_now + timedelta(minutes=150)
        assert snoozed_again.status == NudgeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_nudge(self, store):
        with pytest.raises(NotFoundError):
            await act_on_nudge(store, "nope")

    def test_is_visible(self, mock_user_id, fixed_now):
        nudge = Nudge(
            id="n1",
            user_id=mock_user_id,
            type=NudgeType.MOMENTUM,
            title="t",
            message="m",
            impact_score=0.9,
            triggered_at=fixed_now,
        )

        assert is_visible(nudge, fixed_now) is True
        assert is_visible(nudge, fixed_now - timedelta(minutes=1)) is False
        nudge.status = NudgeStatus.DISMISSED
        assert is_visible(nudge, fixed_now) is False

    @pytest.mark.asyncio
    async def test_list_visible(self, store, make_task, mock_user_id, fixed_now):
        await _all_rules_firing(make_task, fixed_now)
        batch = await generate_nudges(store, mock_user_id, now=fixed_now)
        pattern, momentum, capture = batch.created
        await snooze_nudge(store, momentum.id, now=fixed_now)
        await dismiss_nudge(store, capture.id)

        visible = await list_visible_nudges(store, mock_user_id, now=fixed_now + timedelta(minutes=5))

        assert [n.id for n in visible] == [pattern.id]

        later = await list_visible_nudges(store, mock_user_id, now=fixed_now + timedelta(hours=2))

        assert [n.id for n in later] == [momentum.id, pattern.id]

    @pytest.mark.asyncio
    async def test_pending_nudges_visible(self, store, mock_user_id, fixed_now):
        await _existing_nudges(store, mock_user_id, fixed_now, 1, status="pending")

        assert len(await list_visible_nudges(store, mock_user_id, now=fixed_now)) == 1
