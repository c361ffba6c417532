"""
FSRS Constants and Parameters

All fixed values used by the scheduler in one place. Per-user tunables
(learning steps, interval bounds, weights) live in parameters.FsrsConfig.
"""

from enum import Enum, IntEnum


# ---- Ratings ----

class Rating(IntEnum):
    """User rating of a retrieval attempt."""
    AGAIN = 0   # Retrieval failed
    HARD = 1    # Retrieved with high effort
    GOOD = 2    # Retrieved normally
    EASY = 3    # Retrieved fluently


# ---- Card States ----

class CardStatus(str, Enum):
    """Scheduling state of a user's card."""
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"
    BURIED = "buried"
    SUSPENDED = "suspended"


# States a card can be scheduled from
SCHEDULABLE_STATES = frozenset({
    CardStatus.NEW,
    CardStatus.LEARNING,
    CardStatus.REVIEW,
    CardStatus.RELEARNING,
})

# States that make a card eligible for the due pool
DUE_STATES = frozenset({
    CardStatus.LEARNING,
    CardStatus.REVIEW,
    CardStatus.RELEARNING,
})


# ---- New Card Defaults ----

INITIAL_STABILITY = 1.0
INITIAL_DIFFICULTY = 5.0


# ---- Bounds ----

S_MIN = 0.0      # Stability can never go negative
D_MIN = 1.0      # Minimum difficulty
D_MAX = 10.0     # Maximum difficulty
AGAIN_STABILITY_FLOOR = 1.0  # Stability floor after a lapse


# ---- Stability Multiplier by Rating ----

STABILITY_MULTIPLIER = {
    Rating.AGAIN: 0.8,
    Rating.HARD: 1.1,
    Rating.GOOD: 1.3,
    Rating.EASY: 1.6,
}


# ---- Difficulty Change by Rating ----

DIFFICULTY_DELTA = {
    Rating.AGAIN: +1.0,
    Rating.HARD: -0.1,
    Rating.GOOD: 0.0,
    Rating.EASY: -0.2,
}


# Ratings counted as a correct answer
CORRECT_THRESHOLD = Rating.GOOD


# ---- Forgetting Curve ----
# R(t) = (1 + FACTOR * t / S) ^ DECAY

FACTOR = 19 / 81
DECAY = -0.5


# ---- Default FSRS Weights ----

DEFAULT_WEIGHTS = {
    "w0": 0.4197, "w1": 1.1829, "w2": 3.1262, "w3": 15.4722,
    "w4": 7.2102, "w5": 0.5316, "w6": 1.0651, "w7": 0.0234,
    "w8": 1.616, "w9": 0.0721, "w10": 0.1284, "w11": 1.0824,
    "w12": 0.0, "w13": 100.0, "w14": 1.0, "w15": 10.0,
    "w16": 2.9013, "w17": 0.0, "w18": 0.0,
}

SECONDS_PER_DAY = 86400.0
