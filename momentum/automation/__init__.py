"""
Automation - rule-based daily nudges

Nudges are short advisory cards generated from the user's own recent
task history. They are advice, never alarms: a handful per day at most,
each one can be acted on, dismissed, or snoozed for an hour.

Components:
    nudges.py: Nudge rules, the daily cap, and the nudge lifecycle

Rules (evaluated in this order):
    pattern:         2+ missed tasks in one category over the past week
    momentum:        3+ tasks completed today
    content_capture: a learning task due today is still pending

Usage:
    from momentum.automation.nudges import generate_nudges, snooze_nudge

    batch = await generate_nudges(store, "alice")
    await snooze_nudge(store, batch.nudges[0].id)
"""

# Nudge statuses that end the lifecycle
TERMINAL_STATUSES = ("acted", "dismissed")

# Fixed impact per rule
IMPACT_SCORES = {
    "pattern": 0.8,
    "momentum": 0.9,
    "content_capture": 0.6,
}

__all__ = ["IMPACT_SCORES", "TERMINAL_STATUSES"]
