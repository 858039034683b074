"""Tests for momentum/tasks/templates.py

The template store supplies the steps every decomposition starts from.
Key functionality:
- Sub-type inference from the clarifying answer
- Copies of static steps, never shared references
- System seeding and user template override
"""

import pytest

from momentum.errors import StorageError
from momentum.models import Category, Task
from momentum.tasks.templates import (
    SOURCE_STATIC,
    SOURCE_SYSTEM,
    SOURCE_USER,
    TEMPLATES,
    find_user_template,
    get_base_steps,
    get_clarifying_question,
    infer_sub_type,
    resolve_category,
    seed_system_templates,
    select_template,
)


# ─────────────────────────────────────────────────────────────────────────────
# Static Templates
# ─────────────────────────────────────────────────────────────────────────────


class TestStaticTemplates:
    """Tests for the in-memory template set."""

    def test_every_category_has_a_template(self):
        """All six categories should be covered."""
        assert set(TEMPLATES) == set(Category)

    def test_unknown_category_falls_back_to_work(self):
        """Unrecognised categories should use the work template."""
        assert resolve_category("gardening") == Category.WORK
        assert get_clarifying_question("gardening") == get_clarifying_question("work")

    def test_base_steps_are_copies(self):
        """Mutating returned steps must not touch the template."""
        steps = get_base_steps("work")
        steps[0].estimated_minutes = 999

        assert get_base_steps("work")[0].estimated_minutes == 20

    def test_work_default_steps(self):
        """Work template should have the five deliverable steps."""
        steps = get_base_steps(Category.WORK)

        assert [s.title for s in steps][:2] == ["Clarify requirements", "Draft outline"]
        assert [s.estimated_minutes for s in steps] == [20, 25, 45, 20, 15]
        assert [s.is_blocking for s in steps] == [True, True, True, False, False]

    def test_long_form_article_has_seven_steps(self):
        """The learning article sub-type should have seven steps."""
        assert len(get_base_steps("learning", "long_form_article")) == 7


# ─────────────────────────────────────────────────────────────────────────────
# Sub-type Inference
# ─────────────────────────────────────────────────────────────────────────────


class TestInferSubType:
    """Tests for the clarifying-answer classifier."""

    @pytest.mark.parametrize(
        "answer",
        ["Write a blog post", "an ESSAY on caching", "publish a guide", "research paper"],
    )
    def test_learning_writing_answers(self, answer):
        """Writing-style answers should select the article template."""
        assert infer_sub_type("learning", answer) == "long_form_article"

    def test_learning_other_answer(self):
        """Other answers keep the default steps."""
        assert infer_sub_type("learning", "finish the video course") is None

    def test_no_rules_for_other_categories(self):
        """Only learning has sub-types."""
        assert infer_sub_type("work", "write a blog post") is None

    def test_empty_answer(self):
        assert infer_sub_type("learning", None) is None
        assert infer_sub_type("learning", "") is None


# ─────────────────────────────────────────────────────────────────────────────
# Persisted Templates
# ─────────────────────────────────────────────────────────────────────────────


class TestSeedSystemTemplates:
    """Tests for seeding system template rows."""

    @pytest.mark.asyncio
    async def test_seeds_every_variant(self, store):
        """One row per category plus one per sub-type."""
        seeded = await seed_system_templates(store)

        assert len(seeded) == len(TEMPLATES) + 1
        assert (Category.LEARNING, "long_form_article") in seeded

    @pytest.mark.asyncio
    async def test_idempotent(self, store):
        """Seeding twice should not duplicate rows."""
        first = await seed_system_templates(store)
        second = await seed_system_templates(store)

        assert first == second
        rows = await store.select("decomposition_templates")
        assert len(rows) == len(first)
        assert all(r["is_system"] and r["user_id"] is None for r in rows)


class TestSelectTemplate:
    """Tests for picking the starting steps."""

    @pytest.mark.asyncio
    async def test_without_store_uses_static(self, sample_task):
        """No store means static steps and no template id."""
        choice = await select_template(sample_task)

        assert choice.source == SOURCE_STATIC
        assert choice.template_id is None
        assert len(choice.steps) == 5

    @pytest.mark.asyncio
    async def test_seeded_store_reports_system_id(self, seeded_store, sample_task):
        """With seeded rows the system template id should be returned."""
        choice = await select_template(sample_task, store=seeded_store)

        assert choice.source == SOURCE_SYSTEM
        assert choice.template_id is not None

    @pytest.mark.asyncio
    async def test_user_template_overrides(self, seeded_store, sample_task, mock_user_id):
        """The owner's template with highest usage should win."""
        await seeded_store.insert(
            "decomposition_templates",
            [
                {
                    "user_id": mock_user_id,
                    "category": "work",
                    "steps": [{"title": "Rarely used", "estimated_minutes": 30, "is_blocking": True}],
                    "usage_count": 1,
                },
                {
                    "user_id": mock_user_id,
                    "category": "work",
                    "steps": [{"title": "Favourite", "estimated_minutes": 40, "is_blocking": True}],
                    "usage_count": 7,
                },
            ],
        )

        choice = await select_template(sample_task, store=seeded_store)

        assert choice.source == SOURCE_USER
        assert [s.title for s in choice.steps] == ["Favourite"]
        found = await find_user_template(seeded_store, mock_user_id, "work")
        assert found.usage_count == 7

    @pytest.mark.asyncio
    async def test_other_users_template_ignored(self, seeded_store, sample_task, other_user_id):
        """Templates owned by someone else must not be used."""
        await seeded_store.insert(
            "decomposition_templates",
            [
                {
                    "user_id": other_user_id,
                    "category": "work",
                    "steps": [{"title": "Theirs", "estimated_minutes": 30}],
                }
            ],
        )

        choice = await select_template(sample_task, store=seeded_store)

        assert choice.source == SOURCE_SYSTEM

    @pytest.mark.asyncio
    async def test_failed_user_lookup_is_soft(self, store, sample_task):
        """A failing template lookup should fall back to static steps."""

        async def broken_select(*args, **kwargs):
            raise StorageError("backend down", table="decomposition_templates")

        store.select = broken_select

        choice = await select_template(sample_task, store=store)

        assert choice.source == SOURCE_STATIC
        assert len(choice.steps) == 5
        assert {f.operation for f in choice.soft_failures} == {
            "user_template_lookup",
            "system_template_lookup",
        }

    @pytest.mark.asyncio
    async def test_explicit_template_read_failure_propagates(self, store, sample_task):
        """Reading an explicitly requested template is a hard read."""

        async def broken_select(*args, **kwargs):
            raise StorageError("backend down", table="decomposition_templates")

        store.select = broken_select

        with pytest.raises(StorageError):
            await select_template(sample_task, store=store, template_id="tmpl_1")

    @pytest.mark.asyncio
    async def test_sub_type_from_answer(self, seeded_store, mock_user_id):
        """The article answer should select the seven-step template."""
        task = Task(id="t1", user_id=mock_user_id, title="Learn Rust", category=Category.LEARNING)

        choice = await select_template(task, "I want to write an article", store=seeded_store)

        assert choice.sub_type == "long_form_article"
        assert len(choice.steps) == 7
