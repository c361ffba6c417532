"""
Exception taxonomy.

Domain errors carry a stable ``code`` that the study service turns into a
structured, non-successful result. ``StorageError`` is the only fatal class:
it wraps failures of the backing store and is allowed to propagate.
"""

from __future__ import annotations


class StudyError(Exception):
    """Base class for recoverable domain errors."""

    code = "study_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---- Validation ----

class InvalidRatingError(StudyError, ValueError):
    code = "invalid_rating"


class InvalidResponseTimeError(StudyError, ValueError):
    code = "invalid_response_time"


class InvalidPermutationError(StudyError, ValueError):
    code = "invalid_permutation"


class InvalidFlagError(StudyError, ValueError):
    """Unknown flag reason or an over-long comment."""

    code = "invalid_flag"


class CardNotSchedulableError(StudyError):
    """Buried and suspended cards never enter scheduling."""

    code = "card_not_schedulable"


# ---- Lookup / ownership ----

class UserNotFoundError(StudyError):
    code = "user_not_found"


class SessionNotFoundError(StudyError):
    code = "session_not_found"


class UnauthorizedError(StudyError):
    code = "unauthorized"


class InvalidSessionStatusError(StudyError):
    code = "invalid_session_status"


class CardNotInSessionError(StudyError):
    code = "card_not_in_session"


class CardNotFoundError(StudyError):
    code = "card_not_found"


# ---- Idempotency ----

class ReviewAlreadyExistsError(StudyError):
    code = "review_already_exists"


class AlreadyFlaggedError(StudyError):
    code = "already_flagged"


# ---- Infrastructure ----

class StorageError(RuntimeError):
    """The backing store failed; distinct from every domain error."""
