"""
FSRS - Free Spaced Repetition Scheduler

Scheduling core for the flashcard study service.

This package implements:
- A pure review state transition (New -> Learning/Review/Relearning)
- Rating-driven stability/difficulty updates with [1, 10] difficulty bounds
- Due dates capped by the user's maximum interval
- The FSRS power forgetting curve: R = (1 + 19/81 * t/S)^-0.5

Quick start:
    from flashdeck import fsrs

    # Process a review (algorithm only, no DB calls)
    card, event_data = fsrs.process_review(card, fsrs.Rating.GOOD, config)
"""

# Core scheduler API (algorithm logic)
from flashdeck.fsrs.scheduler import (
    process_review,
    validate_rating,
    validate_response_time,
)

# Constants and parameters
from flashdeck.fsrs.constants import (
    CardStatus,
    Rating,
    DUE_STATES,
    SCHEDULABLE_STATES,
    INITIAL_STABILITY,
    INITIAL_DIFFICULTY,
    D_MIN,
    D_MAX,
    DEFAULT_WEIGHTS,
)
from flashdeck.fsrs.parameters import (
    FsrsConfig,
    config_from_mapping,
    default_config,
)

# Memory state (for advanced usage)
from flashdeck.fsrs.memory_state import (
    CardMemoryState,
    calculate_retrievability,
    initialize_new_card,
)


__all__ = [
    # Core algorithm
    "process_review",
    "validate_rating",
    "validate_response_time",

    # Enums
    "CardStatus",
    "Rating",

    # Config
    "FsrsConfig",
    "config_from_mapping",
    "default_config",

    # Memory state
    "CardMemoryState",
    "calculate_retrievability",
    "initialize_new_card",

    # Parameters
    "DUE_STATES",
    "SCHEDULABLE_STATES",
    "INITIAL_STABILITY",
    "INITIAL_DIFFICULTY",
    "D_MIN",
    "D_MAX",
    "DEFAULT_WEIGHTS",
]
