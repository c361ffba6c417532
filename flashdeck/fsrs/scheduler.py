"""
Scheduler - FSRS Algorithm Logic

Pure FSRS scheduling and state updates (no database calls).

Main workflow:
1. Load card state and config (caller's responsibility)
2. Validate rating and response time
3. Compute elapsed / scheduled days
4. Apply the rating's stability/difficulty/state transition
5. Return a new card state + event data dict

The input state is never mutated: the caller keeps it as the "before"
snapshot for the review event.
"""

from __future__ import annotations
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from flashdeck.errors import (
    CardNotSchedulableError,
    InvalidRatingError,
    InvalidResponseTimeError,
)
from flashdeck.fsrs import memory_state
from flashdeck.fsrs.constants import (
    AGAIN_STABILITY_FLOOR,
    CORRECT_THRESHOLD,
    D_MAX,
    D_MIN,
    DIFFICULTY_DELTA,
    S_MIN,
    SCHEDULABLE_STATES,
    STABILITY_MULTIPLIER,
    CardStatus,
    Rating,
)
from flashdeck.fsrs.parameters import FsrsConfig, default_config


def validate_rating(rating) -> Rating:
    """
    Coerce a raw rating to Rating.

    Raises:
        InvalidRatingError: rating is not an integer in 0..3
    """
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRatingError(f"Rating must be an integer 0-3, got {rating!r}")
    try:
        return Rating(rating)
    except ValueError:
        raise InvalidRatingError(f"Invalid rating: {rating}") from None


def validate_response_time(response_time_ms) -> int:
    """
    Raises:
        InvalidResponseTimeError: response time is not a positive integer
    """
    if isinstance(response_time_ms, bool) or not isinstance(response_time_ms, int) or response_time_ms <= 0:
        raise InvalidResponseTimeError(
            f"Response time must be a positive integer of milliseconds, got {response_time_ms!r}"
        )
    return response_time_ms


def process_review(
    card: memory_state.CardMemoryState,
    rating: int,
    config: Optional[FsrsConfig] = None,
    timestamp: Optional[datetime] = None,
    response_time_ms: int = 1
) -> Tuple[memory_state.CardMemoryState, dict]:
    """
    Process a review and return the updated card state + event data.

    This is the core FSRS algorithm. No database calls.

    Args:
        card: Current memory state (new cards use initialize_new_card())
        rating: User rating 0-3 (AGAIN, HARD, GOOD, EASY)
        config: User's FSRS config (defaults if None)
        timestamp: Review time (defaults to now, read once)
        response_time_ms: Positive response time in milliseconds

    Returns:
        Tuple of (new_card, event_data_dict). event_data_dict holds the
        before/after snapshot expected by card_store.insert_review_event().
    """
    grade = validate_rating(rating)
    response_time_ms = validate_response_time(response_time_ms)
    if card.state not in SCHEDULABLE_STATES:
        raise CardNotSchedulableError(f"Card in state '{card.state.value}' cannot be reviewed")

    if config is None:
        config = default_config()
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)

    elapsed_days = memory_state.get_elapsed_days(card, timestamp)
    scheduled_days = memory_state.get_scheduled_days(card)

    if card.is_new:
        retrievability_before = None
    else:
        retrievability_before = memory_state.calculate_retrievability(card.stability, elapsed_days)

    new_stability, new_difficulty = _next_stability_difficulty(card, grade)
    new_state = _next_state(card.state, grade)
    new_due_at = _next_due(new_state, new_stability, grade, config, timestamp)

    old_total = card.total_reviews
    if old_total == 0 or card.average_response_time_ms is None:
        new_average = float(response_time_ms)
    else:
        new_average = (card.average_response_time_ms * old_total + response_time_ms) / (old_total + 1)

    is_correct = grade >= CORRECT_THRESHOLD

    new_card = dataclasses.replace(
        card,
        state=new_state,
        stability=new_stability,
        difficulty=new_difficulty,
        due_at=new_due_at,
        last_reviewed_at=timestamp,
        elapsed_days=elapsed_days,
        scheduled_days=scheduled_days,
        reps=card.reps + 1,
        lapses=card.lapses + (1 if grade == Rating.AGAIN else 0),
        last_rating=int(grade),
        total_reviews=old_total + 1,
        correct_reviews=card.correct_reviews + (1 if is_correct else 0),
        incorrect_reviews=card.incorrect_reviews + (0 if is_correct else 1),
        average_response_time_ms=new_average,
    )

    event_data = {
        'rating': int(grade),
        'response_time_ms': response_time_ms,
        'reviewed_at': timestamp,
        'state_before': card.state.value,
        'stability_before': card.stability,
        'difficulty_before': card.difficulty,
        'due_at_before': card.due_at,
        'retrievability_before': retrievability_before,
        'state_after': new_card.state.value,
        'stability_after': new_card.stability,
        'difficulty_after': new_card.difficulty,
        'due_at_after': new_card.due_at,
        'elapsed_days': elapsed_days,
        'scheduled_days': scheduled_days,
        'reps_before': card.reps,
        'lapses_before': card.lapses,
        'session_id': None,  # Set by caller when reviewing inside a session
    }

    return new_card, event_data


def _next_stability_difficulty(
    card: memory_state.CardMemoryState,
    grade: Rating
) -> Tuple[float, float]:
    """
    Multiplicative stability update and additive difficulty update.

    AGAIN floors stability at AGAIN_STABILITY_FLOOR; difficulty is always
    clipped to [D_MIN, D_MAX].
    """
    stability = card.stability * STABILITY_MULTIPLIER[grade]
    if grade == Rating.AGAIN:
        stability = max(stability, AGAIN_STABILITY_FLOOR)
    stability = max(S_MIN, stability)

    difficulty = card.difficulty + DIFFICULTY_DELTA[grade]
    difficulty = max(D_MIN, min(D_MAX, difficulty))

    return stability, difficulty


def _next_state(current: CardStatus, grade: Rating) -> CardStatus:
    if grade == Rating.AGAIN:
        return CardStatus.LEARNING if current == CardStatus.NEW else CardStatus.RELEARNING
    return CardStatus.REVIEW


def _next_due(
    new_state: CardStatus,
    stability: float,
    grade: Rating,
    config: FsrsConfig,
    timestamp: datetime
) -> datetime:
    """
    Due date for the new state, capped at maximum_interval_days.
    """
    if grade == Rating.AGAIN:
        if new_state == CardStatus.LEARNING:
            step_minutes = config.first_learning_step_minutes
        else:
            step_minutes = config.first_relearning_step_minutes
        due_at = timestamp + timedelta(minutes=step_minutes)
    else:
        interval_days = max(stability, float(config.minimum_interval_days))
        # Clip before building the timedelta so huge stabilities cannot overflow
        interval_days = min(interval_days, float(config.maximum_interval_days))
        due_at = timestamp + timedelta(days=interval_days)

    latest = timestamp + timedelta(days=config.maximum_interval_days)
    return min(due_at, latest)
