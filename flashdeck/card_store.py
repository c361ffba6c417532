"""
Card Store - CRUD over the relational store.

Every function takes an open SQLAlchemy session and never commits: the
caller (study_service, scripts) owns the transaction via
database.session_scope(). Rows that later writes depend on can be read
with ``lock=True`` (SELECT ... FOR UPDATE).
"""

from __future__ import annotations
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from flashdeck import settings, streaks
from flashdeck.fsrs.constants import DUE_STATES, CardStatus
from flashdeck.fsrs.memory_state import CardMemoryState
from flashdeck.fsrs.models import (
    CardFlag,
    CardTemplate,
    DailyUsage,
    FsrsParams,
    ReviewEvent,
    StreakDay,
    StreakMilestone,
    StudySession,
    UserCard,
    UserProfile,
)
from flashdeck.fsrs.parameters import FsrsConfig, config_from_mapping, default_config
from flashdeck.session_builders.pool_types import PoolCard

logger = logging.getLogger(__name__)

OPEN_SESSION_STATUSES = ("created", "active")

_CONFIG_COLUMNS = (
    "weights",
    "learning_steps_minutes",
    "graduating_interval_days",
    "easy_interval_days",
    "minimum_interval_days",
    "maximum_interval_days",
    "relearning_steps_minutes",
    "lapse_multiplier",
    "desired_retention",
    "new_cards_per_day",
    "reviews_per_day",
)

_STATE_COLUMNS = (
    "stability",
    "difficulty",
    "due_at",
    "last_reviewed_at",
    "elapsed_days",
    "scheduled_days",
    "reps",
    "lapses",
    "last_rating",
    "total_reviews",
    "correct_reviews",
    "incorrect_reviews",
    "average_response_time_ms",
)


def _subject_filter(query, subject_path: Optional[str]):
    """Restrict to a subject and all of its descendants ("math" matches "math.algebra")."""
    if not subject_path:
        return query
    return query.filter(or_(
        CardTemplate.subject_path == subject_path,
        CardTemplate.subject_path.like(subject_path + ".%"),
    ))


def _offerable(query):
    return query.filter(
        CardTemplate.is_public.is_(True),
        CardTemplate.flagged_for_review.is_(False),
    )


# ---- Profiles and config ----

def get_profile(db: Session, user_id: str, lock: bool = False) -> Optional[UserProfile]:
    query = db.query(UserProfile).filter(UserProfile.user_id == user_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def provision_user(
    db: Session,
    user_id: str,
    tier: str = "free",
    timezone: Optional[str] = None,
    day_start_hour: Optional[int] = None,
    config: Optional[FsrsConfig] = None
) -> UserProfile:
    """
    Create (or update) a user profile and make sure an FSRS config row exists.

    Args:
        user_id: User identifier from the auth layer
        tier: 'free', 'paid' or 'admin'
        timezone: IANA timezone name (defaults from settings)
        day_start_hour: Hour the user's study day starts (defaults from settings)
        config: Initial FSRS config; documented defaults when omitted

    Returns:
        The profile row (flushed, not committed)
    """
    profile = get_profile(db, user_id)
    if profile is None:
        profile = UserProfile(
            user_id=user_id,
            tier=tier,
            timezone=timezone or settings.get_default_timezone(),
            day_start_hour=(
                day_start_hour if day_start_hour is not None
                else settings.get_default_day_start_hour()
            ),
            current_streak=0,
            longest_streak=0,
        )
        db.add(profile)
        logger.info("Provisioned user %s (tier=%s)", user_id, tier)
    else:
        profile.tier = tier
        if timezone is not None:
            profile.timezone = timezone
        if day_start_hour is not None:
            profile.day_start_hour = day_start_hour
    db.flush()

    if config is not None or db.get(FsrsParams, user_id) is None:
        save_fsrs_config(db, user_id, config or default_config())
    return profile


def load_fsrs_config(db: Session, user_id: str) -> FsrsConfig:
    """
    Load the user's FSRS config; documented defaults if the row is missing.
    """
    row = db.get(FsrsParams, user_id)
    if row is None:
        return default_config()
    return config_from_mapping({name: getattr(row, name) for name in _CONFIG_COLUMNS})


def save_fsrs_config(db: Session, user_id: str, config: FsrsConfig) -> FsrsParams:
    data = config.model_dump()
    row = db.get(FsrsParams, user_id)
    if row is None:
        row = FsrsParams(user_id=user_id)
        db.add(row)
    for name in _CONFIG_COLUMNS:
        setattr(row, name, data[name])
    db.flush()
    return row


# ---- Candidate cards ----

def _pool_card(template: CardTemplate, user_card: Optional[UserCard]) -> PoolCard:
    if user_card is None:
        return PoolCard(
            card_id=template.id,
            question=template.question,
            answer=template.answer,
            subject_path=template.subject_path,
            tags=tuple(template.tags or ()),
        )
    return PoolCard(
        card_id=template.id,
        question=template.question,
        answer=template.answer,
        subject_path=template.subject_path,
        tags=tuple(template.tags or ()),
        state=user_card.state,
        stability=user_card.stability,
        difficulty=user_card.difficulty,
        due_at=user_card.due_at,
        last_reviewed_at=user_card.last_reviewed_at,
        reps=user_card.reps,
        lapses=user_card.lapses,
        total_reviews=user_card.total_reviews,
    )


def fetch_due_cards(
    db: Session,
    user_id: str,
    now: datetime,
    limit: int,
    subject_path: Optional[str] = None
) -> list[PoolCard]:
    """
    Cards in learning/review/relearning with due_at <= now, most overdue first.

    Args:
        db: Open session
        user_id: Owner of the card states
        now: Cut-off for due_at
        limit: Maximum number of cards returned
        subject_path: Optional subject filter (includes descendants)

    Returns:
        PoolCard snapshots ordered by due_at, then card id
    """
    query = db.query(CardTemplate, UserCard).join(
        UserCard, UserCard.card_id == CardTemplate.id
    ).filter(
        UserCard.user_id == user_id,
        UserCard.state.in_([s.value for s in DUE_STATES]),
        UserCard.due_at.isnot(None),
        UserCard.due_at <= now,
    )
    query = _subject_filter(_offerable(query), subject_path)
    rows = query.order_by(UserCard.due_at.asc(), CardTemplate.id.asc()).limit(limit).all()
    return [_pool_card(template, user_card) for template, user_card in rows]


def fetch_new_cards(
    db: Session,
    user_id: str,
    subject_path: Optional[str] = None,
    limit: Optional[int] = None
) -> list[PoolCard]:
    """
    Cards the user has never reviewed: no state row yet, or a pre-seeded
    row still in state 'new'. Returned in a stable order (created_at, id).
    """
    query = db.query(CardTemplate, UserCard).outerjoin(
        UserCard,
        (UserCard.card_id == CardTemplate.id) & (UserCard.user_id == user_id)
    ).filter(or_(
        UserCard.card_id.is_(None),
        UserCard.state == CardStatus.NEW.value,
    ))
    query = _subject_filter(_offerable(query), subject_path)
    query = query.order_by(CardTemplate.created_at.asc(), CardTemplate.id.asc())
    if limit is not None:
        query = query.limit(limit)
    return [_pool_card(template, user_card) for template, user_card in query.all()]


# ---- Card state ----

def fetch_card_state(
    db: Session,
    user_id: str,
    card_id: str,
    lock: bool = False
) -> Optional[UserCard]:
    query = db.query(UserCard).filter(
        UserCard.user_id == user_id,
        UserCard.card_id == card_id
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def to_memory_state(row: Optional[UserCard]) -> CardMemoryState:
    """Convert a stored row to a CardMemoryState (new-card defaults if None)."""
    if row is None:
        return CardMemoryState()
    return CardMemoryState(
        state=row.state,
        **{name: getattr(row, name) for name in _STATE_COLUMNS}
    )


def save_card_state(
    db: Session,
    user_id: str,
    card_id: str,
    card: CardMemoryState,
    row: Optional[UserCard] = None
) -> UserCard:
    """
    Insert or update the user's card state row.
    """
    if row is None:
        row = UserCard(user_id=user_id, card_id=card_id)
        db.add(row)
    row.state = card.state.value
    for name in _STATE_COLUMNS:
        setattr(row, name, getattr(card, name))
    return row


# ---- Review events ----

def insert_review_event(
    db: Session,
    user_id: str,
    card_id: str,
    event_data: dict
) -> ReviewEvent:
    """
    Append an immutable review event.

    Flushes immediately so a duplicate (session_id, card_id) surfaces as an
    IntegrityError at this call site.
    """
    event = ReviewEvent(
        id=str(uuid.uuid4()),
        user_id=user_id,
        card_id=card_id,
        **event_data
    )
    db.add(event)
    db.flush()
    return event


def review_exists(db: Session, session_id: str, card_id: str) -> bool:
    return db.query(ReviewEvent.id).filter(
        ReviewEvent.session_id == session_id,
        ReviewEvent.card_id == card_id
    ).first() is not None


# ---- Sessions ----

def get_study_session(db: Session, session_id: str, lock: bool = False) -> Optional[StudySession]:
    query = db.query(StudySession).filter(StudySession.id == session_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def find_open_session(
    db: Session,
    user_id: str,
    session_date: date,
    subject_path: Optional[str] = None
) -> Optional[StudySession]:
    """
    Most recent incomplete session for this study day and subject filter.
    """
    query = db.query(StudySession).filter(
        StudySession.user_id == user_id,
        StudySession.session_date == session_date,
        StudySession.status.in_(OPEN_SESSION_STATUSES),
    )
    if subject_path is None:
        query = query.filter(StudySession.subject_path.is_(None))
    else:
        query = query.filter(StudySession.subject_path == subject_path)
    return query.order_by(StudySession.created_at.desc()).first()


def count_sessions_on(db: Session, user_id: str, session_date: date) -> int:
    return db.query(func.count(StudySession.id)).filter(
        StudySession.user_id == user_id,
        StudySession.session_date == session_date
    ).scalar() or 0


def add_study_session(db: Session, **fields) -> StudySession:
    study_session = StudySession(id=str(uuid.uuid4()), **fields)
    db.add(study_session)
    db.flush()
    return study_session


# ---- Daily usage ----

def get_daily_usage(db: Session, user_id: str, usage_date: date) -> Optional[DailyUsage]:
    return db.get(DailyUsage, (user_id, usage_date))


def get_or_create_daily_usage(db: Session, user_id: str, usage_date: date) -> DailyUsage:
    """
    Usage row for the study day; a new day starts from zero.
    """
    usage = get_daily_usage(db, user_id, usage_date)
    if usage is None:
        usage = DailyUsage(
            user_id=user_id,
            usage_date=usage_date,
            reviews=0,
            new_cards=0,
            sessions_created=0,
        )
        db.add(usage)
        db.flush()
    return usage


# ---- Streaks ----

def get_streak_day(db: Session, user_id: str, streak_date: date) -> Optional[StreakDay]:
    return db.get(StreakDay, (user_id, streak_date))


def fetch_milestones(db: Session, user_id: str) -> list[StreakMilestone]:
    return db.query(StreakMilestone).filter(
        StreakMilestone.user_id == user_id
    ).order_by(StreakMilestone.milestone_days.asc()).all()


def record_streak_day(
    db: Session,
    profile: UserProfile,
    streak_date: date,
    cards_reviewed: int = 1
) -> Tuple[StreakDay, Optional[StreakMilestone]]:
    """
    Count reviews toward today's streak row and update the profile counters.

    On the first review of a study day the new streak length is checked
    against streaks.MILESTONES; a milestone not yet held is recorded.

    Returns:
        Tuple of (today's StreakDay, newly recorded StreakMilestone or None)
    """
    today = get_streak_day(db, profile.user_id, streak_date)
    yesterday = get_streak_day(db, profile.user_id, streak_date - timedelta(days=1))

    update = streaks.advance_streak(
        current_streak=profile.current_streak or 0,
        longest_streak=profile.longest_streak or 0,
        studied_today=today is not None,
        studied_yesterday=yesterday is not None and yesterday.cards_reviewed > 0,
    )

    if today is None:
        today = StreakDay(
            user_id=profile.user_id,
            streak_date=streak_date,
            cards_reviewed=cards_reviewed,
            streak_day_number=update.streak_day_number,
        )
        db.add(today)
    else:
        today.cards_reviewed += cards_reviewed

    profile.current_streak = update.current_streak
    profile.longest_streak = update.longest_streak
    profile.last_study_date = streak_date

    milestone = None
    if update.is_new_day:
        achieved = [m.milestone_days for m in fetch_milestones(db, profile.user_id)]
        reached = streaks.milestone_reached(update.current_streak, achieved)
        if reached is not None:
            milestone = StreakMilestone(
                id=str(uuid.uuid4()),
                user_id=profile.user_id,
                milestone_days=reached.days,
                reward_type=reached.reward_type,
                reward_description=f"{reached.title} ({reached.description})",
            )
            db.add(milestone)
            logger.info("User %s reached the %d-day streak milestone", profile.user_id, reached.days)
    return today, milestone


# ---- Card content ----

def fetch_card_templates(db: Session, card_ids: Sequence[str]) -> dict[str, CardTemplate]:
    if not card_ids:
        return {}
    rows = db.query(CardTemplate).filter(CardTemplate.id.in_(list(card_ids))).all()
    return {row.id: row for row in rows}


def add_card_template(
    db: Session,
    card_id: str,
    question: str,
    answer: str,
    subject_path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    is_public: bool = True,
    flagged_for_review: bool = False,
    created_at: Optional[datetime] = None
) -> CardTemplate:
    template = CardTemplate(
        id=card_id,
        question=question,
        answer=answer,
        subject_path=subject_path,
        tags=list(tags or []),
        is_public=is_public,
        flagged_for_review=flagged_for_review,
    )
    if created_at is not None:
        template.created_at = created_at
    db.add(template)
    return template


# ---- Card flags ----

def get_card_template(db: Session, card_id: str, lock: bool = False) -> Optional[CardTemplate]:
    query = db.query(CardTemplate).filter(CardTemplate.id == card_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def get_card_flag(db: Session, user_id: str, card_id: str) -> Optional[CardFlag]:
    return db.query(CardFlag).filter(
        CardFlag.user_id == user_id,
        CardFlag.card_id == card_id,
    ).first()


def flag_card(
    db: Session,
    user_id: str,
    template: CardTemplate,
    reason: str,
    comment: Optional[str] = None,
    flagged_at: Optional[datetime] = None
) -> CardFlag:
    """
    Record a user's flag and pull the card out of every user's pools.

    The card stays flagged (and out of new/due candidates) until cleared
    outside this module. The caller checks for an existing flag first.
    """
    flag = CardFlag(
        id=str(uuid.uuid4()),
        user_id=user_id,
        card_id=template.id,
        reason=reason,
        comment=comment,
    )
    if flagged_at is not None:
        flag.flagged_at = flagged_at
    db.add(flag)

    template.flag_count = (template.flag_count or 0) + 1
    template.flagged_for_review = True
    db.flush()
    return flag
