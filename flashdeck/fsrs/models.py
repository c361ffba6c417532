"""
SQLAlchemy ORM Models for the Card Store

Defines card content, per-user card state, immutable review events, study
sessions, per-user profile/config and daily usage aggregates.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime on every backend.

    SQLite drops tzinfo on the way back; values are re-tagged as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetimes are not accepted; pass an aware UTC datetime")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class CardTemplate(Base):
    """
    Card content shared by all users.
    """
    __tablename__ = 'card_templates'

    id = Column(String(64), primary_key=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    subject_path = Column(String(255), nullable=True)  # dotted hierarchy, e.g. "math.algebra"

    is_public = Column(Boolean, nullable=False, default=True)
    flagged_for_review = Column(Boolean, nullable=False, default=False)
    flag_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<CardTemplate({self.id}, subject={self.subject_path})>"


class UserProfile(Base):
    """
    Per-user tier, local-day settings and streak counters.
    """
    __tablename__ = 'user_profiles'

    user_id = Column(String(64), primary_key=True)
    tier = Column(String(16), nullable=False, default='free')
    timezone = Column(String(64), nullable=False, default='UTC')
    day_start_hour = Column(Integer, nullable=False, default=4)

    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_study_date = Column(Date, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("tier IN ('free', 'paid', 'admin')", name='user_profiles_tier_check'),
        CheckConstraint("day_start_hour >= 0 AND day_start_hour < 24", name='user_profiles_day_start_check'),
    )

    def __repr__(self):
        return f"<UserProfile({self.user_id}, tier={self.tier})>"


class FsrsParams(Base):
    """
    Per-user FSRS configuration. Weights are a JSON name->float bag.
    """
    __tablename__ = 'fsrs_params'

    user_id = Column(String(64), ForeignKey('user_profiles.user_id', ondelete='CASCADE'), primary_key=True)

    weights = Column(JSON, nullable=False)

    learning_steps_minutes = Column(JSON, nullable=False)
    graduating_interval_days = Column(Integer, nullable=False, default=1)
    easy_interval_days = Column(Integer, nullable=False, default=4)

    minimum_interval_days = Column(Integer, nullable=False, default=1)
    maximum_interval_days = Column(Integer, nullable=False, default=36500)

    relearning_steps_minutes = Column(JSON, nullable=False)
    lapse_multiplier = Column(Float, nullable=False, default=0.5)
    desired_retention = Column(Float, nullable=False, default=0.9)

    new_cards_per_day = Column(Integer, nullable=True)  # NULL = tier default
    reviews_per_day = Column(Integer, nullable=True)    # NULL = tier default

    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class UserCard(Base):
    """
    Persistent memory state for a single user x card pair.
    """
    __tablename__ = 'user_cards'

    user_id = Column(String(64), primary_key=True)
    card_id = Column(String(64), ForeignKey('card_templates.id', ondelete='CASCADE'), primary_key=True)

    state = Column(String(16), nullable=False, default='new')

    # Long-term memory parameters
    stability = Column(Float, nullable=False, default=1.0)
    difficulty = Column(Float, nullable=False, default=5.0)

    # Scheduling
    due_at = Column(UTCDateTime, nullable=True)
    last_reviewed_at = Column(UTCDateTime, nullable=True)
    elapsed_days = Column(Float, nullable=False, default=0.0)
    scheduled_days = Column(Float, nullable=False, default=0.0)

    # Counters
    reps = Column(Integer, nullable=False, default=0)
    lapses = Column(Integer, nullable=False, default=0)
    last_rating = Column(Integer, nullable=True)
    total_reviews = Column(Integer, nullable=False, default=0)
    correct_reviews = Column(Integer, nullable=False, default=0)
    incorrect_reviews = Column(Integer, nullable=False, default=0)
    average_response_time_ms = Column(Float, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint('stability >= 0', name='user_cards_stability_check'),
        CheckConstraint('difficulty >= 1 AND difficulty <= 10', name='user_cards_difficulty_check'),
        CheckConstraint('reps >= 0 AND lapses >= 0', name='user_cards_counters_check'),
        CheckConstraint('correct_reviews + incorrect_reviews <= total_reviews', name='user_cards_totals_check'),
        Index('idx_user_cards_due', 'user_id', 'state', 'due_at'),
    )

    def __repr__(self):
        return f"<UserCard({self.user_id}, {self.card_id}, {self.state})>"


class ReviewEvent(Base):
    """
    Immutable log entry for a single submitted rating.

    Captures the full before/after snapshot of the card's memory state.
    """
    __tablename__ = 'review_events'

    id = Column(String(36), primary_key=True)

    session_id = Column(String(36), ForeignKey('study_sessions.id', ondelete='SET NULL'), nullable=True)
    user_id = Column(String(64), nullable=False)
    card_id = Column(String(64), nullable=False)

    # Timing and rating
    reviewed_at = Column(UTCDateTime, nullable=False)
    rating = Column(Integer, nullable=False)  # 0=AGAIN, 1=HARD, 2=GOOD, 3=EASY
    response_time_ms = Column(Integer, nullable=False)

    # State before review
    state_before = Column(String(16), nullable=False)
    stability_before = Column(Float, nullable=False)
    difficulty_before = Column(Float, nullable=False)
    due_at_before = Column(UTCDateTime, nullable=True)
    retrievability_before = Column(Float, nullable=True)

    # State after review
    state_after = Column(String(16), nullable=False)
    stability_after = Column(Float, nullable=False)
    difficulty_after = Column(Float, nullable=False)
    due_at_after = Column(UTCDateTime, nullable=False)

    elapsed_days = Column(Float, nullable=False)
    scheduled_days = Column(Float, nullable=False)
    reps_before = Column(Integer, nullable=False)
    lapses_before = Column(Integer, nullable=False)

    __table_args__ = (
        # NULL session ids (legacy reviews) never collide
        UniqueConstraint('session_id', 'card_id', name='uq_review_events_session_card'),
        CheckConstraint('rating >= 0 AND rating <= 3', name='review_events_rating_check'),
        CheckConstraint('response_time_ms > 0', name='review_events_response_time_check'),
        Index('idx_review_events_user_time', 'user_id', 'reviewed_at'),
        Index('idx_review_events_card', 'user_id', 'card_id'),
    )

    def __repr__(self):
        return f"<ReviewEvent(id={self.id}, {self.card_id}, rating={self.rating})>"


class StudySession(Base):
    """
    One study sitting: a fixed ordered batch captured at creation time.
    """
    __tablename__ = 'study_sessions'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey('user_profiles.user_id', ondelete='CASCADE'), nullable=False)

    session_date = Column(Date, nullable=False)  # user's local study day
    session_type = Column(String(32), nullable=False)
    subject_path = Column(String(255), nullable=True)
    seed = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default='created')
    timezone = Column(String(64), nullable=False, default='UTC')

    cards_data = Column(JSON, nullable=False)
    max_cards = Column(Integer, nullable=False)
    current_index = Column(Integer, nullable=False, default=0)
    submitted_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('created', 'active', 'completed')", name='study_sessions_status_check'),
        CheckConstraint('max_cards >= 1 AND max_cards <= 10', name='study_sessions_max_cards_check'),
        CheckConstraint('submitted_count >= 0 AND submitted_count <= max_cards', name='study_sessions_submitted_check'),
        Index('idx_study_sessions_lookup', 'user_id', 'session_date', 'status'),
    )

    def __repr__(self):
        return f"<StudySession({self.id}, user={self.user_id}, {self.status})>"


class DailyUsage(Base):
    """
    Per-user, per-study-day counters. A new day is a new row.
    """
    __tablename__ = 'daily_usage'

    user_id = Column(String(64), primary_key=True)
    usage_date = Column(Date, primary_key=True)

    reviews = Column(Integer, nullable=False, default=0)
    new_cards = Column(Integer, nullable=False, default=0)
    sessions_created = Column(Integer, nullable=False, default=0)


class StreakDay(Base):
    """
    One row per day the user studied.
    """
    __tablename__ = 'streak_history'

    user_id = Column(String(64), primary_key=True)
    streak_date = Column(Date, primary_key=True)

    cards_reviewed = Column(Integer, nullable=False, default=0)
    streak_day_number = Column(Integer, nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class StreakMilestone(Base):
    """
    A streak length the user has reached, with its reward.
    """
    __tablename__ = 'streak_milestones'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey('user_profiles.user_id', ondelete='CASCADE'), nullable=False)
    milestone_days = Column(Integer, nullable=False)

    achieved_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    reward_claimed = Column(Boolean, nullable=False, default=False)
    reward_type = Column(String(32), nullable=True)
    reward_description = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'milestone_days', name='uq_streak_milestones_user_days'),
        CheckConstraint('milestone_days > 0', name='streak_milestones_days_check'),
    )

    def __repr__(self):
        return f"<StreakMilestone({self.user_id}, {self.milestone_days} days)>"


class CardFlag(Base):
    """
    A user's report that a card is wrong or unclear. One per user and card.
    """
    __tablename__ = 'user_card_flags'

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False)
    card_id = Column(String(64), ForeignKey('card_templates.id', ondelete='CASCADE'), nullable=False)

    reason = Column(String(16), nullable=False)
    comment = Column(Text, nullable=True)
    flagged_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'card_id', name='uq_user_card_flags_user_card'),
        CheckConstraint(
            "reason IN ('incorrect', 'spelling', 'confusing', 'other')",
            name='user_card_flags_reason_check'
        ),
    )

    def __repr__(self):
        return f"<CardFlag({self.user_id}, {self.card_id}, {self.reason})>"
