"""
Study Service - Session Lifecycle and Review Submission

The external operations. Each runs in exactly one transaction
(database.session_scope) and returns a pydantic result model:

- get_or_create_session: resume today's open session or assemble a new batch
- finalize_session_order: accept a client-side reordering, created -> active
- submit_answer: idempotent review submission through the FSRS scheduler
- fetch_session_card_content: question/answer payloads for display
- flag_card: a user reports a wrong or unclear card, removing it from pools

Domain errors become ErrorResult; StorageError propagates.
"""

from __future__ import annotations
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from sqlalchemy.exc import IntegrityError

from flashdeck import card_store, session_builder, tiers
from flashdeck.errors import (
    AlreadyFlaggedError,
    CardNotFoundError,
    InvalidFlagError,
    ReviewAlreadyExistsError,
    SessionNotFoundError,
    StudyError,
    UnauthorizedError,
    UserNotFoundError,
)
from flashdeck.fsrs import scheduler
from flashdeck.fsrs.database import session_scope
from flashdeck.fsrs.models import StudySession
from flashdeck.schemas import (
    CardContent,
    CardContentResult,
    ErrorCode,
    ErrorResult,
    FinalizeResult,
    FlagReason,
    FlagResult,
    LimitReachedResult,
    SessionCard,
    SessionProgress,
    SessionResult,
    SessionStatus,
    SubmitResult,
)

logger = logging.getLogger(__name__)

# Upper bound on new-card candidates loaded per session request
NEW_CANDIDATE_LIMIT = 1000

FLAG_COMMENT_MAX_LENGTH = 500

_MARKUP = re.compile(r"<[^>]*>")
_SCRIPT_SCHEMES = re.compile(r"(?:javascript|vbscript|data)\s*:", re.IGNORECASE)


def _resolve_now(now: Optional[datetime]) -> datetime:
    """Read the clock once per operation; naive datetimes are taken as UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _error(exc: StudyError, limit_info: Optional[dict] = None) -> ErrorResult:
    return ErrorResult(error=ErrorCode(exc.code), message=exc.message, limit_info=limit_info)


def _session_result(study_session: StudySession, is_new_session: bool) -> SessionResult:
    return SessionResult(
        session_id=study_session.id,
        cards=[SessionCard(**card) for card in study_session.cards_data],
        max_cards=study_session.max_cards,
        current_index=study_session.current_index,
        submitted_count=study_session.submitted_count,
        status=study_session.status,
        session_type=study_session.session_type,
        subject_path=study_session.subject_path,
        seed=study_session.seed,
        is_new_session=is_new_session,
    )


# ---- Session creation ----

def get_or_create_session(
    user_id: str,
    subject_path: Optional[str] = None,
    now: Optional[datetime] = None
) -> Union[SessionResult, LimitReachedResult, ErrorResult]:
    """
    Return the user's open session for today, or assemble a new batch.

    Args:
        user_id: Requesting user
        subject_path: Optional subject filter (includes descendant subjects)
        now: Reference time (defaults to the current UTC time)

    Returns:
        SessionResult (is_new_session tells resume from create),
        LimitReachedResult when the free tier is done for the day,
        ErrorResult for an unknown user or an empty card pool
    """
    now = _resolve_now(now)
    try:
        with session_scope() as db:
            # Serializes concurrent creations for the same user
            profile = card_store.get_profile(db, user_id, lock=True)
            if profile is None:
                raise UserNotFoundError(f"No profile for user {user_id}")

            study_day = tiers.local_study_day(now, profile.timezone, profile.day_start_hour)

            existing = card_store.find_open_session(db, user_id, study_day, subject_path)
            if existing is not None:
                logger.debug("Resuming session %s for user %s", existing.id, user_id)
                return _session_result(existing, is_new_session=False)

            policy = tiers.policy_for(profile.tier)
            config = card_store.load_fsrs_config(db, user_id)
            usage = card_store.get_daily_usage(db, user_id, study_day)
            reviews_today = usage.reviews if usage else 0
            new_cards_today = usage.new_cards if usage else 0
            sessions_today = card_store.count_sessions_on(db, user_id, study_day)

            if (tiers.session_quota_exhausted(policy, sessions_today)
                    or tiers.review_quota_exhausted(policy, config, reviews_today)):
                limit = tiers.review_limit(policy, config)
                logger.info(
                    "Daily limit reached for user %s (sessions=%d, reviews=%d/%d)",
                    user_id, sessions_today, reviews_today, limit
                )
                return LimitReachedResult(
                    tier=policy.tier.value,
                    reviews_today=reviews_today,
                    limit=limit,
                    sessions_today=sessions_today,
                    message="Daily study limit reached. Come back tomorrow!",
                )

            size = policy.session_size
            due_cards = card_store.fetch_due_cards(db, user_id, now, size, subject_path)
            new_cards = card_store.fetch_new_cards(db, user_id, subject_path, limit=NEW_CANDIDATE_LIMIT)
            pools = session_builder.build_pool_state(due_cards, new_cards)

            seed = session_builder.new_seed()
            allowance = tiers.new_card_allowance(config, new_cards_today, size)
            batch = session_builder.assemble_batch(pools, seed, now, size, allowance)

            if not batch:
                if subject_path:
                    message = f'No cards available for subject "{subject_path}"'
                else:
                    message = "No cards available for session"
                return ErrorResult(error=ErrorCode.NO_CARDS, message=message)

            study_session = card_store.add_study_session(
                db,
                user_id=user_id,
                session_date=study_day,
                session_type=session_builder.session_type_for(policy, subject_path).value,
                subject_path=subject_path,
                seed=seed,
                status=SessionStatus.CREATED.value,
                timezone=profile.timezone,
                cards_data=[card.to_snapshot() for card in batch],
                max_cards=len(batch),
                current_index=0,
                submitted_count=0,
                created_at=now,
                updated_at=now,
            )
            usage = card_store.get_or_create_daily_usage(db, user_id, study_day)
            usage.sessions_created += 1

            logger.info(
                "Created session %s for user %s: %d due, %d new",
                study_session.id, user_id,
                sum(1 for c in batch if not c.is_new), sum(1 for c in batch if c.is_new)
            )
            return _session_result(study_session, is_new_session=True)
    except StudyError as exc:
        return _error(exc)


# ---- Finalization ----

def finalize_session_order(
    user_id: str,
    session_id: str,
    ordered_card_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None
) -> Union[FinalizeResult, ErrorResult]:
    """
    Lock in the card order and activate the session.

    ``ordered_card_ids`` must be an exact permutation of the batch; None keeps
    the assembled order. On any error the session stays 'created'.
    """
    now = _resolve_now(now)
    try:
        with session_scope() as db:
            study_session = card_store.get_study_session(db, session_id, lock=True)
            if study_session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            session_builder.ensure_owner(study_session.user_id, user_id)
            session_builder.ensure_status(study_session.status, SessionStatus.CREATED)

            if ordered_card_ids is not None:
                current_ids = session_builder.card_ids_of(study_session.cards_data)
                ordered = session_builder.validate_permutation(current_ids, ordered_card_ids)
                # Reassign rather than mutate so the JSON column is marked dirty
                study_session.cards_data = session_builder.reorder_snapshots(
                    study_session.cards_data, ordered
                )

            study_session.status = SessionStatus.ACTIVE.value
            study_session.updated_at = now
            logger.info("Finalized session %s for user %s", session_id, user_id)

            return FinalizeResult(
                session_id=study_session.id,
                status=SessionStatus.ACTIVE,
                card_ids=session_builder.card_ids_of(study_session.cards_data),
            )
    except StudyError as exc:
        return _error(exc)


# ---- Submission ----

def submit_answer(
    user_id: str,
    session_id: str,
    card_id: str,
    rating: int,
    response_time_ms: int,
    now: Optional[datetime] = None
) -> Union[SubmitResult, ErrorResult]:
    """
    Record one rating for a card of an active session.

    Check order: input validation, session exists, ownership, session is
    active, card belongs to the batch, not already reviewed in this
    session, daily review cap. A completed session is judged on the card
    first: a repeat of a reviewed card is ``review_already_exists`` and a
    session closed by the daily cap answers ``daily_limit_reached``; only
    then is the status rejected. The scheduler update, review event,
    session progress, daily usage and streak are written in one
    transaction.

    Args:
        user_id: Submitting user
        session_id: Active session the card belongs to
        card_id: Card being rated
        rating: 0=AGAIN, 1=HARD, 2=GOOD, 3=EASY
        response_time_ms: Positive response time in milliseconds
        now: Review time (defaults to the current UTC time)

    Returns:
        SubmitResult with the new card state and session progress, or ErrorResult
    """
    now = _resolve_now(now)
    try:
        grade = scheduler.validate_rating(rating)
        scheduler.validate_response_time(response_time_ms)

        with session_scope() as db:
            study_session = card_store.get_study_session(db, session_id, lock=True)
            if study_session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            session_builder.ensure_owner(study_session.user_id, user_id)
            if study_session.status != SessionStatus.COMPLETED.value:
                session_builder.ensure_status(study_session.status, SessionStatus.ACTIVE)
            session_builder.find_card(study_session.cards_data, card_id)

            if card_store.review_exists(db, session_id, card_id):
                raise ReviewAlreadyExistsError(f"Card {card_id} already reviewed in this session")

            profile = card_store.get_profile(db, user_id, lock=True)
            if profile is None:
                raise UserNotFoundError(f"No profile for user {user_id}")
            policy = tiers.policy_for(profile.tier)
            config = card_store.load_fsrs_config(db, user_id)

            # Counted per study day across all sessions
            study_day = tiers.local_study_day(now, profile.timezone, profile.day_start_hour)
            usage = card_store.get_daily_usage(db, user_id, study_day)
            reviews_today = usage.reviews if usage else 0
            if tiers.review_quota_exhausted(policy, config, reviews_today):
                limit = tiers.review_limit(policy, config)
                logger.info("Review rejected for user %s: daily cap %d reached", user_id, limit)
                return ErrorResult(
                    error=ErrorCode.DAILY_LIMIT_REACHED,
                    message=f"Daily review limit of {limit} reached",
                    limit_info={
                        "tier": policy.tier.value,
                        "reviews_today": reviews_today,
                        "limit": limit,
                    },
                )

            session_builder.ensure_status(study_session.status, SessionStatus.ACTIVE)

            row = card_store.fetch_card_state(db, user_id, card_id, lock=True)
            before = card_store.to_memory_state(row)
            after, event_data = scheduler.process_review(
                before, grade, config, timestamp=now, response_time_ms=response_time_ms
            )
            event_data['session_id'] = study_session.id

            try:
                review = card_store.insert_review_event(db, user_id, card_id, event_data)
            except IntegrityError as exc:
                # Any other constraint failure surfaces as StorageError
                db.rollback()
                if card_store.review_exists(db, session_id, card_id):
                    raise ReviewAlreadyExistsError(
                        f"Card {card_id} already reviewed in this session"
                    ) from exc
                raise

            card_store.save_card_state(db, user_id, card_id, after, row)

            usage = card_store.get_or_create_daily_usage(db, user_id, study_day)
            usage.reviews += 1
            if before.is_new:
                usage.new_cards += 1

            cap_reached = (
                tiers.is_review_limited(policy, config)
                and usage.reviews >= tiers.review_limit(policy, config)
            )
            progress = session_builder.advance_progress(
                study_session.submitted_count,
                study_session.current_index,
                study_session.max_cards,
                daily_cap_reached=cap_reached,
            )
            study_session.submitted_count = progress.submitted_count
            study_session.current_index = progress.current_index
            if progress.completed:
                study_session.status = SessionStatus.COMPLETED.value
            study_session.updated_at = now

            _, milestone = card_store.record_streak_day(db, profile, study_day)

            logger.info(
                "Review %s: user=%s card=%s rating=%d %s -> %s",
                review.id, user_id, card_id, int(grade),
                before.state.value, after.state.value
            )

            return SubmitResult(
                review_id=review.id,
                session_id=study_session.id,
                new_state=after.state.value,
                new_due_at=after.due_at,
                session_progress=SessionProgress(
                    submitted_count=progress.submitted_count,
                    max_cards=study_session.max_cards,
                    current_index=progress.current_index,
                    completed=progress.completed,
                ),
                current_streak=profile.current_streak,
                milestone_reached=milestone.milestone_days if milestone else None,
            )
    except StudyError as exc:
        return _error(exc)


# ---- Card flags ----

def _flag_reason(reason: Optional[str]) -> FlagReason:
    try:
        return FlagReason((reason or "").strip().lower())
    except ValueError:
        allowed = ", ".join(r.value for r in FlagReason)
        raise InvalidFlagError(f"Invalid flag reason {reason!r}; expected one of: {allowed}") from None


def _clean_comment(comment: Optional[str]) -> Optional[str]:
    """Strip markup and script URLs; a blank comment becomes None."""
    if comment is None:
        return None
    if len(comment) > FLAG_COMMENT_MAX_LENGTH:
        raise InvalidFlagError(f"Comment exceeds {FLAG_COMMENT_MAX_LENGTH} characters")
    cleaned = _SCRIPT_SCHEMES.sub("", _MARKUP.sub("", comment)).strip()
    return cleaned or None


def flag_card(
    user_id: str,
    card_id: str,
    reason: str,
    comment: Optional[str] = None,
    now: Optional[datetime] = None
) -> Union[FlagResult, ErrorResult]:
    """
    Report a card as incorrect, misspelled or confusing.

    Each user flags a card at most once. A flagged card leaves the new and
    due pools of every user until it is cleared. Admins are turned away:
    they edit cards directly.

    Args:
        user_id: Reporting user
        card_id: Card being flagged
        reason: incorrect, spelling, confusing or other (case-insensitive)
        comment: Optional free text, at most 500 characters
        now: Flag time (defaults to the current UTC time)

    Returns:
        FlagResult with the card's new flag count, or ErrorResult
    """
    now = _resolve_now(now)
    try:
        if not card_id:
            raise InvalidFlagError("A card id is required")
        flag_reason = _flag_reason(reason)
        cleaned = _clean_comment(comment)

        with session_scope() as db:
            profile = card_store.get_profile(db, user_id)
            if profile is None:
                raise UserNotFoundError(f"No profile for user {user_id}")
            if tiers.parse_tier(profile.tier) == tiers.UserTier.ADMIN:
                raise UnauthorizedError("Admin users should use the admin interface")

            template = card_store.get_card_template(db, card_id, lock=True)
            if template is None:
                raise CardNotFoundError(f"Card {card_id} not found")
            if card_store.get_card_flag(db, user_id, card_id) is not None:
                raise AlreadyFlaggedError(f"Card {card_id} already flagged by this user")

            try:
                flag = card_store.flag_card(
                    db, user_id, template, flag_reason.value, cleaned, flagged_at=now
                )
            except IntegrityError as exc:
                db.rollback()
                if card_store.get_card_flag(db, user_id, card_id) is not None:
                    raise AlreadyFlaggedError(f"Card {card_id} already flagged by this user") from exc
                raise

            logger.info(
                "Card %s flagged by user %s (%s), %d flag(s)",
                card_id, user_id, flag_reason.value, template.flag_count
            )
            return FlagResult(
                flag_id=flag.id,
                card_id=card_id,
                reason=flag_reason,
                flag_count=template.flag_count,
            )
    except StudyError as exc:
        return _error(exc)


# ---- Content ----

def fetch_session_card_content(card_ids: Sequence[str]) -> CardContentResult:
    """
    Display payloads in the requested order; unknown ids are skipped.
    """
    with session_scope() as db:
        templates = card_store.fetch_card_templates(db, card_ids)
        cards = [
            CardContent(
                card_id=template.id,
                question=template.question,
                answer=template.answer,
                tags=list(template.tags or []),
                subject_path=template.subject_path,
            )
            for template in (templates.get(card_id) for card_id in card_ids)
            if template is not None
        ]
    return CardContentResult(cards=cards)
