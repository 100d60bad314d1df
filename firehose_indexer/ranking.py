"""
Ranking Scores

Pure functions of engagement and age. Both are recomputed whenever one of
their inputs changes and in the periodic batch pass.
"""

from datetime import datetime, timezone
from typing import Optional

HOT_VOTE_EXPONENT = 0.8
HOT_GRAVITY = 1.8
TRENDING_GRAVITY = 1.5
TRENDING_COMMENT_WEIGHT = 2


def age_in_hours(created_at: datetime, now: Optional[datetime] = None) -> float:
    """Hours since created_at. Clamped at 0 so future timestamps (clock skew) rank as brand new."""
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max((now - created_at).total_seconds() / 3600.0, 0.0)


def hot_score(vote_count: int, age_hours: float) -> float:
    """
    max(v - 1, 0) ** 0.8 / (a + 2) ** 1.8

    The -1 discounts the author's implicit self-vote.
    """
    points = max(vote_count - 1, 0)
    return points ** HOT_VOTE_EXPONENT / (max(age_hours, 0.0) + 2) ** HOT_GRAVITY


def trending_score(vote_count: int, comment_count: int, age_hours: float) -> float:
    """(v + c * 2) / (a + 2) ** 1.5"""
    engagement = vote_count + comment_count * TRENDING_COMMENT_WEIGHT
    return engagement / (max(age_hours, 0.0) + 2) ** TRENDING_GRAVITY
