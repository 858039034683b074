"""Momentum - rule-based task decomposition and adaptive scheduling

Philosophy:
    A task that keeps getting pushed is not a motivation problem, it is a
    shape problem. Break it into steps small enough to start, learn from
    how the user edits those steps, and suggest times that match when the
    user actually gets things done.

Areas:
    storage/: Storage port and the SQLite adapter
    tasks/: Templates, decomposition, pattern suggestions, activity log
    learning/: Reschedule suggestions from completion history
    automation/: Daily nudges and their lifecycle
    analytics/: Weekly coaching insights

Usage:
    from momentum.storage import SqliteStore
    from momentum.tasks.decompose import generate_subtasks

    store = SqliteStore("data/momentum.db")
    steps = await generate_subtasks(task, "write a blog post", store=store)
"""

from pathlib import Path

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"
CONFIG_PATH = ARGS_DIR / "engine.yaml"

__version__ = "0.1.0"

__all__ = [
    "PROJECT_ROOT",
    "ARGS_DIR",
    "CONFIG_PATH",
    "__version__",
]
