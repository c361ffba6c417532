"""
Memory State - FSRS Card State and Retrievability

Defines the per-user card memory state and the derived time quantities.

Key concepts:
- Stability (S): How long (in days) the card can go before recall drops
- Difficulty (D): How hard the card is for this user (1-10 scale)
- Retrievability (R): Probability of successful recall at time t
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flashdeck.fsrs.constants import (
    CardStatus,
    DECAY,
    FACTOR,
    INITIAL_DIFFICULTY,
    INITIAL_STABILITY,
    SECONDS_PER_DAY,
)


@dataclass
class CardMemoryState:
    """
    Memory state for one user x card pair.

    Mutated only by the scheduler's review step.
    """
    state: CardStatus = CardStatus.NEW

    # Long-term memory parameters
    stability: float = INITIAL_STABILITY
    difficulty: float = INITIAL_DIFFICULTY

    # Scheduling
    due_at: Optional[datetime] = None  # None only while NEW
    last_reviewed_at: Optional[datetime] = None
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0

    # Counters
    reps: int = 0
    lapses: int = 0
    last_rating: Optional[int] = None
    total_reviews: int = 0
    correct_reviews: int = 0
    incorrect_reviews: int = 0
    average_response_time_ms: Optional[float] = None

    def __post_init__(self):
        """Accept raw strings for state (as stored in the database)."""
        if not isinstance(self.state, CardStatus):
            self.state = CardStatus(self.state)

    @property
    def is_new(self) -> bool:
        return self.state == CardStatus.NEW


def initialize_new_card() -> CardMemoryState:
    """
    Initialize state for a card the user has never reviewed.

    Returns:
        CardMemoryState with new-card defaults (S=1.0, D=5.0)
    """
    return CardMemoryState()


def days_between(later: Optional[datetime], earlier: Optional[datetime]) -> float:
    """
    Fractional days from ``earlier`` to ``later``.

    Returns 0 when either timestamp is missing.
    """
    if later is None or earlier is None:
        return 0.0
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def get_elapsed_days(card: CardMemoryState, now: datetime) -> float:
    """
    Days since the previous review (0 if never reviewed).
    """
    return max(0.0, days_between(now, card.last_reviewed_at))


def get_scheduled_days(card: CardMemoryState) -> float:
    """
    Interval that had been promised at the previous review: due_at - last_reviewed_at.
    """
    return days_between(card.due_at, card.last_reviewed_at)


def calculate_retrievability(
    stability: float,
    elapsed_days: float
) -> float:
    """
    Calculate retrievability using the FSRS power forgetting curve.

    Formula: R = (1 + F * t / S) ^ C, with F = 19/81 and C = -0.5

    Interpretation:
    - Immediately after review: R = 1.0
    - At t = S: R = 0.9 (the curve is calibrated so S is the 90% interval)

    Args:
        stability: Current stability in days
        elapsed_days: Time since last review in days

    Returns:
        Retrievability between 0 and 1
    """
    if stability <= 0:
        return 0.0
    if elapsed_days <= 0:
        return 1.0
    return (1.0 + FACTOR * elapsed_days / stability) ** DECAY
