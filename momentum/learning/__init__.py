"""Learning - reschedule suggestions from completion history

Philosophy:
    When a task slips, "pick a new time" is one more decision the user
    does not want to make. Suggest one slot, based on when they actually
    finish this kind of task, and say why.

Core Principle:
    Learn from behavior, not preference forms. With too little history,
    fall back to a sensible default and say so (low confidence).

Components:
    rescheduling.py: Time-of-day histogram over recent completions
        - Morning / afternoon / evening buckets
        - Priority-keyed defaults for cold start
        - Confidence grows with how dominant the best bucket is
"""

# name -> (start hour inclusive, end hour exclusive, representative hour)
TIME_BUCKETS = {
    "morning": (6, 12, 9),
    "afternoon": (12, 17, 14),
    "evening": (17, 22, 18),
}

# priority -> (bucket, days from today)
PRIORITY_DEFAULTS = {
    "high": ("morning", 1),
    "medium": ("afternoon", 1),
    "low": ("morning", 6),
}

__all__ = ["PRIORITY_DEFAULTS", "TIME_BUCKETS"]
