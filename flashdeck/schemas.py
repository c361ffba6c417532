"""
Pydantic result models for the study service.

Every operation returns one of these; ``model_dump()`` gives the plain
``{"success": ...}`` dict shape expected by API callers.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Stable identifiers for non-successful results."""
    SESSION_NOT_FOUND = "session_not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_SESSION_STATUS = "invalid_session_status"
    CARD_NOT_IN_SESSION = "card_not_in_session"
    REVIEW_ALREADY_EXISTS = "review_already_exists"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    INVALID_RATING = "invalid_rating"
    INVALID_RESPONSE_TIME = "invalid_response_time"
    INVALID_PERMUTATION = "invalid_permutation"
    CARD_NOT_SCHEDULABLE = "card_not_schedulable"
    USER_NOT_FOUND = "user_not_found"
    NO_CARDS = "no_cards"
    INVALID_FLAG = "invalid_flag"
    CARD_NOT_FOUND = "card_not_found"
    ALREADY_FLAGGED = "already_flagged"


class SessionType(str, Enum):
    DAILY_FREE = "daily_free"
    GENERAL_UNLIMITED = "general_unlimited"
    SUBJECT_SPECIFIC = "subject_specific"


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"


# ---- Session payloads ----

class SessionCard(BaseModel):
    """One card of a session batch, as captured at assembly time."""
    card_id: str
    question: str
    answer: str
    subject_path: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    state: str = "new"
    stability: float = 1.0
    difficulty: float = 5.0
    due_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None
    reps: int = 0
    lapses: int = 0
    total_reviews: int = 0
    is_new: bool = True


class SessionResult(BaseModel):
    success: bool = True
    session_id: str
    cards: list[SessionCard]
    max_cards: int
    current_index: int = 0
    submitted_count: int = 0
    status: SessionStatus
    session_type: SessionType
    subject_path: Optional[str] = None
    seed: str
    is_new_session: bool


class LimitReachedResult(BaseModel):
    """Daily quota exhausted; not an error, the user is simply done for today."""
    success: bool = False
    limit_reached: bool = True
    tier: str
    reviews_today: int
    limit: int
    sessions_today: int = 0
    message: str


class FinalizeResult(BaseModel):
    success: bool = True
    session_id: str
    status: SessionStatus
    card_ids: list[str]


class SessionProgress(BaseModel):
    submitted_count: int
    max_cards: int
    current_index: int
    completed: bool


class SubmitResult(BaseModel):
    success: bool = True
    review_id: str
    session_id: str
    new_state: str
    new_due_at: datetime
    session_progress: SessionProgress
    current_streak: int = 0
    milestone_reached: Optional[int] = None  # streak length just reached, if any
    message: str = "Review recorded successfully"


class CardContent(BaseModel):
    card_id: str
    question: str
    answer: str
    tags: list[str] = Field(default_factory=list)
    subject_path: Optional[str] = None


class CardContentResult(BaseModel):
    success: bool = True
    cards: list[CardContent]


class ErrorResult(BaseModel):
    success: bool = False
    error: ErrorCode
    message: str
    limit_info: Optional[dict[str, Any]] = None


class FlagReason(str, Enum):
    INCORRECT = "incorrect"
    SPELLING = "spelling"
    CONFUSING = "confusing"
    OTHER = "other"


class FlagResult(BaseModel):
    success: bool = True
    flag_id: str
    card_id: str
    reason: FlagReason
    flag_count: int
    message: str = "Card flagged for review"
