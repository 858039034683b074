"""Analytics - weekly coaching insights

Philosophy:
    Numbers alone do not help someone who is already behind. Each metric
    is turned into at most one short, specific sentence: praise when it is
    earned, one concrete adjustment when it is not.

Components:
    insights.py: Date ranges, the four metrics, and insight text
        - completion rate (due in range, completed)
        - missed tasks by category
        - time accuracy (actual vs estimated minutes)
        - notes captured by category
"""

PERIODS = ("this_week", "last_week", "this_month")

PERIOD_LABELS = {
    "this_week": "this week",
    "last_week": "last week",
    "this_month": "this month",
}

__all__ = ["PERIODS", "PERIOD_LABELS"]
