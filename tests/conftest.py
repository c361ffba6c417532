from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from flashdeck import card_store, study_service
from flashdeck.fsrs import database
from flashdeck.fsrs.memory_state import CardMemoryState
from flashdeck.fsrs.parameters import FsrsConfig

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

_LIMIT_VARS = (
    "SESSION_SIZE",
    "FREE_SESSIONS_PER_DAY",
    "FREE_DAILY_REVIEW_LIMIT",
    "DEFAULT_TIMEZONE",
    "DEFAULT_DAY_START_HOUR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Ignore limits from a developer's local .env."""
    for name in _LIMIT_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    database.set_engine(engine)
    database.init_db()
    yield engine
    database.set_engine(None)
    engine.dispose()


@pytest.fixture
def make_user(engine):
    def _make(user_id="user-1", tier="free", timezone="UTC", day_start_hour=0, **config_overrides):
        config = FsrsConfig(**config_overrides) if config_overrides else None
        with database.session_scope() as db:
            card_store.provision_user(
                db,
                user_id,
                tier=tier,
                timezone=timezone,
                day_start_hour=day_start_hour,
                config=config,
            )
        return user_id
    return _make


@pytest.fixture
def add_cards(engine):
    def _add(count, prefix="card", subject_path=None, start=0):
        ids = []
        with database.session_scope() as db:
            for i in range(start, start + count):
                card_id = f"{prefix}-{i:03d}"
                card_store.add_card_template(
                    db,
                    card_id,
                    question=f"Question {i}",
                    answer=f"Answer {i}",
                    subject_path=subject_path,
                    tags=["demo"],
                    created_at=NOW - timedelta(days=30) + timedelta(seconds=i),
                )
                ids.append(card_id)
        return ids
    return _add


@pytest.fixture
def set_card_state(engine):
    def _set(user_id, card_id, state="review", due_at=None, stability=5.0,
             difficulty=5.0, last_reviewed_at=None):
        card = CardMemoryState(
            state=state,
            stability=stability,
            difficulty=difficulty,
            due_at=due_at,
            last_reviewed_at=last_reviewed_at,
            reps=1,
            total_reviews=1,
            correct_reviews=1,
        )
        with database.session_scope() as db:
            row = card_store.fetch_card_state(db, user_id, card_id)
            card_store.save_card_state(db, user_id, card_id, card, row)
    return _set


@pytest.fixture
def start_session(engine):
    """Create and finalize a session, returning the SessionResult."""
    def _start(user_id, now=NOW, subject_path=None):
        result = study_service.get_or_create_session(user_id, subject_path=subject_path, now=now)
        assert result.success, result
        finalized = study_service.finalize_session_order(user_id, result.session_id, now=now)
        assert finalized.success, finalized
        return result
    return _start
