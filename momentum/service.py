"""
Tool: Planner Service
Purpose: The user-facing flows, wired to the engines and the app state

Each method is one thing the user does: break a task down, confirm the
steps, fix them, reschedule, look at nudges, read the weekly coaching.
Soft failures reported by any engine are recorded on the AppState;
hard failures propagate unchanged.

Decomposition flow:
    start = await planner.start_decomposition(task)       # question + hint
    preview = await planner.preview_decomposition(task, answer)
    saved = await planner.confirm_decomposition(task, preview)
    await planner.learn_from_edits(saved.log_id, edits)

Usage:
    planner = PlannerService(open_default_store(), state)
    report = await planner.weekly_insights()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from momentum.analytics.insights import CoachingReport, build_report
from momentum.automation.nudges import generate_nudges, list_visible_nudges
from momentum.config_models import EngineConfig, get_engine_config
from momentum.errors import NotFoundError, StorageError
from momentum.learning.rescheduling import RescheduleSuggestion, suggest_reschedule
from momentum.logging_config import get_logger
from momentum.models import Nudge, SoftFailure, SubtaskDraft, Task, UserEdit
from momentum.state import AppState
from momentum.storage.base import StoragePort
from momentum.tasks import activity
from momentum.tasks.decompose import (
    LOG_TABLE,
    EditLearning,
    SaveResult,
    adjust_for_user_patterns,
    generate_subtasks,
    learn_from_edits,
    load_preferences,
    save_subtasks,
)
from momentum.tasks.suggestions import (
    DependencyLink,
    PatternSuggestion,
    get_dependency_chain,
    get_pattern_suggestion,
)
from momentum.tasks.templates import get_clarifying_question, seed_system_templates, select_template


logger = get_logger(__name__)


@dataclass
class DecompositionStart:
    question: str
    suggestion: PatternSuggestion


@dataclass
class DecompositionPreview:
    drafts: list[SubtaskDraft]
    clarifying_question: str
    clarifying_answer: str | None = None
    template_id: str | None = None
    sub_type: str | None = None
    template_source: str | None = None
    split_suggested: list[str] = field(default_factory=list)


class PlannerService:
    """Orchestrates the engines for the signed-in user in `state`."""

    def __init__(self, store: StoragePort, state: AppState, config: EngineConfig | None = None):
        self.store = store
        self.state = state
        self.config = config or get_engine_config()
        self._templates_seeded = False

    # =========================================================================
    # Ownership
    # =========================================================================

    def _require_owner(self, task: Task) -> str:
        """Signed-in user id, if `task` belongs to them."""
        user_id = self.state.require_user()
        if task.user_id != user_id:
            raise NotFoundError(f"Task {task.id} not found", table="tasks")
        return user_id

    async def _owned_task(self, task_id: str) -> Task:
        return await activity.fetch_task(self.store, task_id, self.state.require_user())

    async def _ensure_templates(self) -> None:
        """Write the system templates once per service, so saves get template ids."""
        if self._templates_seeded:
            return
        try:
            await seed_system_templates(self.store)
        except StorageError as e:
            logger.warning("template_seed_failed", error=str(e))
            self.state.record([SoftFailure("template_seed", str(e))])
            return
        self._templates_seeded = True

    # =========================================================================
    # Decomposition
    # =========================================================================

    async def start_decomposition(self, task: Task) -> DecompositionStart:
        """Clarifying question plus a pattern hint, if the user has one."""
        user_id = self._require_owner(task)
        suggestion = await get_pattern_suggestion(
            self.store, user_id, task.category, self.config.suggestions
        )
        self.state.record(suggestion.soft_failures)
        return DecompositionStart(
            question=get_clarifying_question(task.category),
            suggestion=suggestion,
        )

    async def preview_decomposition(
        self, task: Task, clarifying_answer: str | None = None
    ) -> DecompositionPreview:
        """Generate drafts with the user's preferences and history applied."""
        user_id = self._require_owner(task)
        await self._ensure_templates()
        preferences = await load_preferences(self.store, user_id)

        choice = await select_template(task, clarifying_answer, store=self.store)
        self.state.record(choice.soft_failures)

        drafts = await generate_subtasks(
            task,
            clarifying_answer,
            preferences,
            store=self.store,
            template_id=choice.template_id,
            config=self.config.decomposition,
        )
        drafts = await adjust_for_user_patterns(
            self.store, user_id, drafts, self.config.decomposition
        )

        return DecompositionPreview(
            drafts=drafts,
            clarifying_question=get_clarifying_question(task.category),
            clarifying_answer=clarifying_answer,
            template_id=choice.template_id,
            sub_type=choice.sub_type,
            template_source=choice.source,
            split_suggested=[d.title for d in drafts if d.split_suggestion],
        )

    async def confirm_decomposition(
        self,
        task: Task,
        preview: DecompositionPreview,
        drafts: list[SubtaskDraft] | None = None,
    ) -> SaveResult:
        """Save the (possibly hand-edited) drafts and open the decomposition log."""
        await self._owned_task(task.id)
        answers = {}
        if preview.clarifying_answer:
            answers = {
                "question": preview.clarifying_question,
                "answer": preview.clarifying_answer,
            }

        result = await save_subtasks(
            self.store,
            task.id,
            drafts if drafts is not None else preview.drafts,
            template_id=preview.template_id,
            clarifying_answers=answers,
        )
        self.state.record(result.soft_failures)
        self.state.cache_tasks(result.subtasks)
        return result

    async def learn_from_edits(self, log_id: str, edits: list[UserEdit]) -> EditLearning:
        user_id = self.state.require_user()
        if await self.store.select_one(LOG_TABLE, {"id": log_id, "user_id": user_id}) is None:
            raise NotFoundError(f"Decomposition log {log_id} not found", table=LOG_TABLE)
        learning = await learn_from_edits(self.store, log_id, edits, self.config.decomposition)
        if learning.has_strong_pattern:
            logger.info(
                "edit_pattern_learned",
                log_id=log_id,
                template_id=learning.customized_template_id,
            )
        return learning

    async def dependency_chain(self, parent_task_id: str) -> list[DependencyLink]:
        await self._owned_task(parent_task_id)
        return await get_dependency_chain(self.store, parent_task_id)

    # =========================================================================
    # Task lifecycle and rescheduling
    # =========================================================================

    async def complete_task(
        self, task_id: str, actual_minutes: int | None = None, now: datetime | None = None
    ) -> Task:
        user_id = self.state.require_user()
        task = await activity.mark_complete(self.store, task_id, actual_minutes, now, user_id=user_id)
        self.state.cache_tasks([task])
        return task

    async def miss_task(self, task_id: str) -> Task:
        user_id = self.state.require_user()
        task = await activity.mark_missed(self.store, task_id, user_id=user_id)
        self.state.cache_tasks([task])
        return task

    async def suggest_reschedule(self, task: Task, now: datetime | None = None) -> RescheduleSuggestion:
        self._require_owner(task)
        suggestion = await suggest_reschedule(self.store, task, now, self.config.rescheduling)
        self.state.record(suggestion.soft_failures)
        return suggestion

    async def accept_reschedule(self, task: Task, suggestion: RescheduleSuggestion) -> Task:
        user_id = self.state.require_user()
        updated = await activity.reschedule_task(
            self.store, task, suggestion.suggested_at, user_id=user_id
        )
        self.state.cache_tasks([updated])
        if activity.needs_split_warning(updated):
            logger.info(
                "split_recommended",
                task_id=updated.id,
                reschedule_count=updated.reschedule_count,
            )
        return updated

    # =========================================================================
    # Nudges and insights
    # =========================================================================

    async def refresh_nudges(self, now: datetime | None = None) -> list[Nudge]:
        """Generate today's nudges and return the ones visible now."""
        user_id = self.state.require_user()
        now = now or datetime.now()
        batch = await generate_nudges(self.store, user_id, now, self.config.nudges)
        self.state.record(batch.soft_failures)
        self.state.nudges = await list_visible_nudges(self.store, user_id, now)
        return self.state.nudges

    async def weekly_insights(
        self, period: str = "this_week", now: datetime | None = None
    ) -> CoachingReport:
        user_id = self.state.require_user()
        return await build_report(self.store, user_id, period, now, self.config.insights)


__all__ = ["DecompositionPreview", "DecompositionStart", "PlannerService"]
