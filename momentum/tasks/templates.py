"""
Tool: Decomposition Templates
Purpose: Step templates per task category, plus user-customised variants

Every category has a clarifying question, a base pattern and a default
list of timed steps. Some categories also have finer-grained sub-types
picked from the user's answer to the clarifying question (a learning task
that is really "write an article" gets the 7-step long-form template).

Templates live in two places:
    - TEMPLATES below (always available, never fails)
    - the decomposition_templates table: the same templates seeded as
      system rows, plus one customised variant per (user, category,
      sub_type) written by learn_from_edits

Usage:
    from momentum.tasks.templates import select_template, infer_sub_type

    infer_sub_type("learning", "I want to write a blog post")  # "long_form_article"
    choice = await select_template(task, answer, store=store)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from momentum.errors import StorageError
from momentum.logging_config import get_logger
from momentum.models import (
    Category,
    DecompositionTemplate,
    SoftFailure,
    Task,
    TemplateStep,
)
from momentum.storage.base import StoragePort


logger = get_logger(__name__)

TEMPLATE_TABLE = "decomposition_templates"

# Sources a TemplateChoice can come from
SOURCE_STATIC = "static"
SOURCE_SYSTEM = "system"
SOURCE_USER = "user"
SOURCE_EXPLICIT = "explicit"


def _steps(*rows: tuple[str, int, bool]) -> list[TemplateStep]:
    return [TemplateStep(title=t, estimated_minutes=m, is_blocking=b) for t, m, b in rows]


TEMPLATES: dict[Category, dict[str, Any]] = {
    Category.LEARNING: {
        "clarifying_question": (
            "What does completing this mean in concrete terms? "
            "(e.g., finish reading, write summary, pass quiz)"
        ),
        "base_pattern": ["Discover", "Consume", "Capture", "Recall", "Apply"],
        "default_steps": _steps(
            ("Skim overview", 15, True),
            ("Deep read/watch", 30, True),
            ("Take structured notes", 20, False),
            ("Create flashcards/summary", 15, False),
            ("Do 3 practice problems", 20, False),
        ),
        "sub_types": {
            "long_form_article": _steps(
                ("Clarify outcome", 20, True),
                ("Discover & select references", 60, True),
                ("Capture structured notes", 45, True),
                ("Draft outline & skeleton", 45, True),
                ("Write first draft", 90, True),
                ("Edit for clarity & format", 60, False),
                ("Final polish & schedule", 30, False),
            ),
        },
    },
    Category.WORK: {
        "clarifying_question": (
            "What is the final deliverable? (e.g., doc, email, presentation, deployed code)"
        ),
        "base_pattern": ["Clarify", "Plan", "Produce", "Review", "Ship"],
        "default_steps": _steps(
            ("Clarify requirements", 20, True),
            ("Draft outline", 25, True),
            ("Create v1", 45, True),
            ("Review with stakeholder", 20, False),
            ("Finalize and send", 15, False),
        ),
        "sub_types": {},
    },
    Category.HEALTH: {
        "clarifying_question": (
            "What does the session involve? (e.g., gym workout, meal prep, meditation, outdoor run)"
        ),
        "base_pattern": ["Prep", "Execute", "Reflect"],
        "default_steps": _steps(
            ("Plan workout/meal", 10, True),
            ("Do session", 30, True),
            ("Log results/energy level", 5, False),
        ),
        "sub_types": {},
    },
    Category.PERSONAL: {
        "clarifying_question": (
            "What needs to happen for this to be done? "
            "(e.g., make a call, buy something, visit somewhere)"
        ),
        "base_pattern": ["Decide", "Prepare", "Do", "Follow-up"],
        "default_steps": _steps(
            ("Decide", 10, True),
            ("Prepare", 15, True),
            ("Do", 30, True),
            ("Follow-up", 10, False),
        ),
        "sub_types": {},
    },
    Category.INFO: {
        "clarifying_question": (
            "What will 'done' look like? (e.g., summary doc, decision made, sources collected)"
        ),
        "base_pattern": ["Collect sources", "Skim & filter", "Deep read", "Synthesize"],
        "default_steps": _steps(
            ("Collect sources", 15, True),
            ("Skim & filter", 20, True),
            ("Deep read 2-3 best", 30, True),
            ("Synthesize into notes", 20, False),
        ),
        "sub_types": {},
    },
    Category.CREATIVE: {
        "clarifying_question": (
            "What are you creating? (e.g., blog post, design, video, illustration)"
        ),
        "base_pattern": ["Warm-up", "Idea generation", "Selection", "Execution", "Polish"],
        "default_steps": _steps(
            ("Warm-up", 10, False),
            ("Idea generation", 20, True),
            ("Selection", 10, True),
            ("Execution", 40, True),
            ("Polish", 20, False),
        ),
        "sub_types": {},
    },
}

# Checked in order; first match wins
SUB_TYPE_RULES: dict[Category, list[tuple[str, re.Pattern[str]]]] = {
    Category.LEARNING: [
        ("long_form_article", re.compile(r"article|blog|essay|write|paper|guide")),
    ],
}


@dataclass
class TemplateChoice:
    """The steps generate_subtasks starts from, and where they came from."""

    steps: list[TemplateStep]
    sub_type: str | None = None
    template_id: str | None = None
    source: str = SOURCE_STATIC
    soft_failures: list[SoftFailure] = field(default_factory=list)


def resolve_category(category: Any) -> Category:
    """Known category, or work for anything unrecognised."""
    try:
        return Category(category)
    except ValueError:
        return Category.WORK


def get_template(category: Any) -> dict[str, Any]:
    return TEMPLATES[resolve_category(category)]


def get_clarifying_question(category: Any) -> str:
    return get_template(category)["clarifying_question"]


def infer_sub_type(category: Any, clarifying_answer: str | None) -> str | None:
    """
    Classify the user's answer into a finer template, or None.

    Args:
        category: Task category
        clarifying_answer: Free text answer to the clarifying question

    Returns:
        Sub-type name known to TEMPLATES, or None for the default steps
    """
    if not clarifying_answer:
        return None
    answer = clarifying_answer.lower()
    for sub_type, pattern in SUB_TYPE_RULES.get(resolve_category(category), []):
        if pattern.search(answer):
            return sub_type
    return None


def get_base_steps(category: Any, sub_type: str | None = None) -> list[TemplateStep]:
    """Fresh copies of the static steps; callers may mutate them."""
    template = get_template(category)
    steps = template["sub_types"].get(sub_type) if sub_type else None
    if steps is None:
        steps = template["default_steps"]
    return [TemplateStep(s.title, s.estimated_minutes, s.is_blocking) for s in steps]


# =============================================================================
# Persisted templates
# =============================================================================


async def get_template_by_id(store: StoragePort, template_id: str) -> DecompositionTemplate | None:
    row = await store.select_one(TEMPLATE_TABLE, {"id": template_id})
    return DecompositionTemplate.from_dict(row) if row else None


async def find_system_template(
    store: StoragePort, category: Any, sub_type: str | None = None
) -> DecompositionTemplate | None:
    row = await store.select_one(
        TEMPLATE_TABLE,
        {
            "user_id": None,
            "category": resolve_category(category),
            "sub_type": sub_type,
            "is_system": True,
        },
    )
    return DecompositionTemplate.from_dict(row) if row else None


async def find_user_template(
    store: StoragePort, user_id: str, category: Any, sub_type: str | None = None
) -> DecompositionTemplate | None:
    """The user's own variant for (category, sub_type); highest usage wins."""
    rows = await store.select(
        TEMPLATE_TABLE,
        where={
            "user_id": user_id,
            "category": resolve_category(category),
            "sub_type": sub_type,
            "is_system": False,
        },
        order_by="usage_count",
        descending=True,
        limit=1,
    )
    return DecompositionTemplate.from_dict(rows[0]) if rows else None


async def seed_system_templates(store: StoragePort) -> dict[tuple[Category, str | None], str]:
    """
    Write TEMPLATES as system rows, skipping any that already exist.

    Returns:
        {(category, sub_type): template_id} for every static template
    """
    seeded: dict[tuple[Category, str | None], str] = {}
    created = 0

    for category, template in TEMPLATES.items():
        variants: list[tuple[str | None, list[TemplateStep]]] = [(None, template["default_steps"])]
        variants.extend(template["sub_types"].items())

        for sub_type, steps in variants:
            existing = await find_system_template(store, category, sub_type)
            if existing:
                seeded[(category, sub_type)] = existing.id
                continue
            rows = await store.insert(
                TEMPLATE_TABLE,
                [
                    {
                        "user_id": None,
                        "category": category,
                        "sub_type": sub_type,
                        "steps": [s.to_dict() for s in steps],
                        "is_system": True,
                        "usage_count": 0,
                    }
                ],
            )
            seeded[(category, sub_type)] = rows[0]["id"]
            created += 1

    if created:
        logger.info("system_templates_seeded", created=created)
    return seeded


async def select_template(
    task: Task,
    clarifying_answer: str | None = None,
    store: StoragePort | None = None,
    template_id: str | None = None,
) -> TemplateChoice:
    """
    Pick the steps a decomposition starts from.

    Order of preference:
        1. template_id, when the caller explicitly asks for one
        2. the owner's customised template for (category, sub_type)
        3. the static template (with the seeded system row's id, if any)

    Reading an explicitly requested template is a primary read and raises
    StorageError. Every other lookup falls back to the static steps.
    """
    category = resolve_category(task.category)
    sub_type = infer_sub_type(category, clarifying_answer)
    choice = TemplateChoice(steps=get_base_steps(category, sub_type), sub_type=sub_type)

    if store is None:
        return choice

    if template_id:
        explicit = await get_template_by_id(store, template_id)
        if explicit and explicit.steps:
            choice.steps = explicit.steps
            choice.template_id = explicit.id
            choice.source = SOURCE_EXPLICIT
            return choice
        logger.warning("explicit_template_missing", template_id=template_id)

    if task.user_id:
        try:
            user_template = await find_user_template(store, task.user_id, category, sub_type)
        except StorageError as e:
            logger.warning(
                "user_template_lookup_failed",
                user_id=task.user_id,
                category=str(category),
                error=str(e),
            )
            choice.soft_failures.append(
                SoftFailure("user_template_lookup", str(e), {"category": str(category)})
            )
            user_template = None

        if user_template and user_template.steps:
            choice.steps = user_template.steps
            choice.template_id = user_template.id
            choice.source = SOURCE_USER
            return choice

    try:
        system_template = await find_system_template(store, category, sub_type)
    except StorageError as e:
        logger.warning("system_template_lookup_failed", category=str(category), error=str(e))
        choice.soft_failures.append(
            SoftFailure("system_template_lookup", str(e), {"category": str(category)})
        )
        system_template = None

    if system_template:
        choice.template_id = system_template.id
        choice.source = SOURCE_SYSTEM

    return choice


__all__ = [
    "SOURCE_EXPLICIT",
    "SOURCE_STATIC",
    "SOURCE_SYSTEM",
    "SOURCE_USER",
    "SUB_TYPE_RULES",
    "TEMPLATES",
    "TemplateChoice",
    "find_system_template",
    "find_user_template",
    "get_base_steps",
    "get_clarifying_question",
    "get_template",
    "get_template_by_id",
    "infer_sub_type",
    "resolve_category",
    "seed_system_templates",
    "select_template",
]
