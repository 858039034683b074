"""Task Engine - rule-based decomposition and tracking

Philosophy:
    "Write the quarterly report" is not a task, it is a project that the
    user wrote down as one line, felt overwhelmed by, and pushed. This
    engine turns it into a short chain of timed steps, marks which steps
    gate the rest, and learns from how the user edits the result.

Components:
    templates.py: Per-category step templates and user-customised variants
    decompose.py: Template -> ordered subtask drafts, persistence, edit learning
    suggestions.py: Deferral-pattern split suggestions, dependency chains
    activity.py: Activity log writes and task status transitions

Usage:
    from momentum.tasks.decompose import generate_subtasks, save_subtasks

    drafts = await generate_subtasks(task, "write a blog post", store=store)
    result = await save_subtasks(store, task.id, drafts, template_id=None)
"""

import math

# Activity events that count as the user putting a task off
DEFERRAL_EVENTS = ("task_missed", "task_rescheduled", "rescheduled")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive minutes (round() would go to even)."""
    return int(math.floor(value + 0.5))


__all__ = [
    "DEFERRAL_EVENTS",
    "round_half_up",
]
