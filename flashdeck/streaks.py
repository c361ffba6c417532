"""
Daily study streaks.

A streak counts consecutive study days with at least one review. The
decision is pure; card_store persists the resulting day row and profile.
Reaching one of the MILESTONES lengths earns a one-off reward.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class StreakUpdate:
    streak_day_number: int
    current_streak: int
    longest_streak: int
    is_new_day: bool


def advance_streak(
    current_streak: int,
    longest_streak: int,
    studied_today: bool,
    studied_yesterday: bool
) -> StreakUpdate:
    """
    Compute streak counters after a review.

    Args:
        current_streak: Profile's streak before this review
        longest_streak: Profile's best streak so far
        studied_today: A streak row already exists for today
        studied_yesterday: Yesterday's row exists with cards_reviewed > 0

    Returns:
        StreakUpdate with the day number to record and new profile counters
    """
    if studied_today:
        streak = max(current_streak, 1)
        return StreakUpdate(streak, streak, max(longest_streak, streak), is_new_day=False)

    streak = current_streak + 1 if studied_yesterday else 1
    return StreakUpdate(streak, streak, max(longest_streak, streak), is_new_day=True)


# ---- Milestones ----

@dataclass(frozen=True)
class Milestone:
    days: int
    reward_type: str  # badge, extra_cards, theme, recognition
    title: str
    description: str
    reward_value: Optional[int] = None


MILESTONES = (
    Milestone(3, "badge", "3-Day Streak!", "Studied three days in a row"),
    Milestone(7, "badge", "Week Warrior", "A full week of daily study"),
    Milestone(14, "extra_cards", "Two-Week Champion", "Two weeks straight, 10 bonus cards", 10),
    Milestone(30, "badge", "Monthly Master", "Thirty consecutive study days"),
    Milestone(50, "theme", "Dedication Hero", "Fifty days without a break"),
    Milestone(100, "recognition", "Century Club", "One hundred consecutive study days"),
    Milestone(365, "recognition", "Year-Long Legend", "A whole year of daily study"),
)

_BY_DAYS = {m.days: m for m in MILESTONES}


def milestone_reached(current_streak: int, achieved: Iterable[int] = ()) -> Optional[Milestone]:
    """
    Milestone earned by a streak of exactly ``current_streak`` days.

    Returns None when the length is not a milestone or the user already
    holds it (streaks that break and rebuild do not earn it twice).
    """
    milestone = _BY_DAYS.get(current_streak)
    if milestone is None or milestone.days in set(achieved):
        return None
    return milestone
