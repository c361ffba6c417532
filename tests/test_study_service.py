from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from flashdeck import card_store, study_service
from flashdeck.errors import StorageError
from flashdeck.fsrs import database
from flashdeck.fsrs.models import ReviewEvent, StudySession
from flashdeck.schemas import (
    ErrorCode,
    ErrorResult,
    FlagReason,
    FlagResult,
    LimitReachedResult,
    SessionResult,
    SessionStatus,
    SessionType,
)


def submit(user_id, session, card_id, now, rating=2, response_time_ms=1200):
    return study_service.submit_answer(user_id, session.session_id, card_id, rating, response_time_ms, now=now)


def review_count():
    with database.session_scope() as db:
        return db.query(ReviewEvent).count()


def load_session(session_id):
    with database.session_scope() as db:
        return card_store.get_study_session(db, session_id)


# ---- Session creation ----

def test_unknown_user(engine, now):
    result = study_service.get_or_create_session("ghost", now=now)

    assert isinstance(result, ErrorResult)
    assert result.error == ErrorCode.USER_NOT_FOUND


def test_no_cards_available(make_user, now):
    user = make_user()
    result = study_service.get_or_create_session(user, now=now)

    assert isinstance(result, ErrorResult)
    assert result.error == ErrorCode.NO_CARDS


def test_new_session_holds_at_most_ten_cards(make_user, add_cards, now):
    user = make_user()
    add_cards(15)

    result = study_service.get_or_create_session(user, now=now)

    assert isinstance(result, SessionResult)
    assert result.is_new_session
    assert result.status == SessionStatus.CREATED
    assert result.session_type == SessionType.DAILY_FREE
    assert result.max_cards == 10
    assert len(result.cards) == 10
    assert len({c.card_id for c in result.cards}) == 10
    assert len(result.seed) == 8


def test_repeat_request_resumes_same_session(make_user, add_cards, now):
    user = make_user()
    add_cards(12)

    first = study_service.get_or_create_session(user, now=now)
    second = study_service.get_or_create_session(user, now=now + timedelta(hours=1))

    assert second.session_id == first.session_id
    assert not second.is_new_session
    assert [c.card_id for c in second.cards] == [c.card_id for c in first.cards]


def test_due_cards_precede_new_cards(make_user, add_cards, set_card_state, now):
    user = make_user(tier="paid")
    ids = add_cards(12)
    set_card_state(user, ids[5], due_at=now - timedelta(hours=2))
    set_card_state(user, ids[7], due_at=now - timedelta(days=3))
    set_card_state(user, ids[9], state="relearning", due_at=now - timedelta(minutes=5))
    set_card_state(user, ids[11], due_at=now + timedelta(days=1))

    result = study_service.get_or_create_session(user, now=now)
    card_ids = [c.card_id for c in result.cards]

    assert card_ids[:3] == [ids[7], ids[5], ids[9]]
    assert all(c.is_new for c in result.cards[3:])
    assert ids[11] not in card_ids
    assert len(card_ids) == 10


def test_subject_filter_includes_descendants(make_user, add_cards, now):
    user = make_user(tier="paid")
    add_cards(2, prefix="alg", subject_path="math.algebra")
    add_cards(2, prefix="math", subject_path="math")
    add_cards(3, prefix="hist", subject_path="history")
    add_cards(1, prefix="mathematics", subject_path="mathematics")

    result = study_service.get_or_create_session(user, subject_path="math", now=now)

    assert result.session_type == SessionType.SUBJECT_SPECIFIC
    assert result.subject_path == "math"
    assert sorted(c.subject_path for c in result.cards) == ["math", "math", "math.algebra", "math.algebra"]


def test_flagged_and_private_cards_not_offered(make_user, add_cards, now):
    user = make_user()
    ids = add_cards(3)
    with database.session_scope() as db:
        templates = card_store.fetch_card_templates(db, ids)
        templates[ids[0]].flagged_for_review = True
        templates[ids[1]].is_public = False

    result = study_service.get_or_create_session(user, now=now)

    assert [c.card_id for c in result.cards] == [ids[2]]


def test_new_cards_per_day_override(make_user, add_cards, now):
    user = make_user(tier="paid", new_cards_per_day=2)
    add_cards(6)

    result = study_service.get_or_create_session(user, now=now)

    assert len(result.cards) == 2


def test_session_date_follows_day_start_hour(make_user, add_cards, now):
    user = make_user(day_start_hour=4)
    add_cards(3)
    early = now.replace(hour=2)

    result = study_service.get_or_create_session(user, now=early)

    assert load_session(result.session_id).session_date == date(2026, 3, 9)


# ---- Quotas ----

def test_free_user_gets_one_session_per_day(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(13)
    session = start_session(user)
    for card in session.cards[:3]:
        submit(user, session, card.card_id, now)

    # Mark the first session done so it is no longer resumable
    with database.session_scope() as db:
        card_store.get_study_session(db, session.session_id).status = "completed"

    result = study_service.get_or_create_session(user, now=now + timedelta(hours=1))

    assert isinstance(result, LimitReachedResult)
    assert result.limit_reached
    assert result.tier == "free"
    assert result.reviews_today == 3
    assert result.limit == 10
    assert result.sessions_today == 1


def test_free_user_can_study_again_next_day(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(3)
    session = start_session(user)
    for card in session.cards:
        submit(user, session, card.card_id, now, rating=0)

    tomorrow = study_service.get_or_create_session(user, now=now + timedelta(days=1, hours=1))

    assert isinstance(tomorrow, SessionResult)
    assert tomorrow.is_new_session
    assert all(c.state == "learning" for c in tomorrow.cards)


def test_paid_user_can_start_another_session(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(15)
    session = start_session(user)
    for card in session.cards:
        submit(user, session, card.card_id, now)

    again = study_service.get_or_create_session(user, now=now + timedelta(minutes=30))

    assert isinstance(again, SessionResult)
    assert again.session_id != session.session_id
    assert again.session_type == SessionType.GENERAL_UNLIMITED


def test_daily_cap_spans_sessions(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(15)
    yesterday = now - timedelta(days=1)
    old_session = start_session(user, now=yesterday)

    today = start_session(user, now=now)
    assert today.session_id != old_session.session_id
    results = [submit(user, today, card.card_id, now) for card in today.cards]
    assert all(r.success for r in results)
    assert results[-1].session_progress.completed

    blocked = submit(user, old_session, old_session.cards[0].card_id, now)

    assert isinstance(blocked, ErrorResult)
    assert blocked.error == ErrorCode.DAILY_LIMIT_REACHED
    assert blocked.limit_info == {"tier": "free", "reviews_today": 10, "limit": 10}
    assert review_count() == 10


def test_reviews_per_day_override_completes_session(make_user, add_cards, start_session, now):
    user = make_user(tier="paid", reviews_per_day=2)
    add_cards(5)
    session = start_session(user)

    submit(user, session, session.cards[0].card_id, now)
    second = submit(user, session, session.cards[1].card_id, now)

    assert second.session_progress.completed
    assert load_session(session.session_id).status == "completed"
    follow_up = study_service.get_or_create_session(user, now=now)
    assert isinstance(follow_up, LimitReachedResult)
    assert follow_up.limit == 2


# ---- Finalization ----

def test_finalize_reorders_and_activates(make_user, add_cards, now):
    user = make_user()
    add_cards(4)
    created = study_service.get_or_create_session(user, now=now)
    reversed_ids = [c.card_id for c in reversed(created.cards)]

    result = study_service.finalize_session_order(user, created.session_id, reversed_ids, now=now)

    assert result.success
    assert result.status == SessionStatus.ACTIVE
    assert result.card_ids == reversed_ids
    resumed = study_service.get_or_create_session(user, now=now)
    assert resumed.status == SessionStatus.ACTIVE
    assert [c.card_id for c in resumed.cards] == reversed_ids


def test_invalid_permutation_keeps_session_created(make_user, add_cards, now):
    user = make_user()
    add_cards(4)
    created = study_service.get_or_create_session(user, now=now)
    ids = [c.card_id for c in created.cards]

    result = study_service.finalize_session_order(user, created.session_id, [ids[0]] * 4, now=now)

    assert result.error == ErrorCode.INVALID_PERMUTATION
    stored = load_session(created.session_id)
    assert stored.status == "created"
    assert [c["card_id"] for c in stored.cards_data] == ids


def test_finalize_twice_rejected(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(2)
    session = start_session(user)

    result = study_service.finalize_session_order(user, session.session_id)

    assert result.error == ErrorCode.INVALID_SESSION_STATUS


def test_finalize_unknown_or_foreign_session(make_user, add_cards, now):
    owner = make_user("owner")
    intruder = make_user("intruder")
    add_cards(2)
    created = study_service.get_or_create_session(owner, now=now)

    assert study_service.finalize_session_order(owner, "missing").error == ErrorCode.SESSION_NOT_FOUND
    assert study_service.finalize_session_order(intruder, created.session_id).error == ErrorCode.UNAUTHORIZED


# ---- Submission ----

def test_submit_new_card_again(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(3)
    session = start_session(user)
    card_id = session.cards[0].card_id

    result = submit(user, session, card_id, now, rating=0, response_time_ms=900)

    assert result.success
    assert result.new_state == "learning"
    assert result.new_due_at == now + timedelta(minutes=1)
    assert result.session_progress.submitted_count == 1
    assert not result.session_progress.completed

    with database.session_scope() as db:
        state = card_store.fetch_card_state(db, user, card_id)
        event = db.get(ReviewEvent, result.review_id)
        usage = card_store.get_daily_usage(db, user, now.date())
        profile = card_store.get_profile(db, user)
        assert state.reps == 1
        assert state.lapses == 1
        assert state.average_response_time_ms == pytest.approx(900.0)
        assert event.state_before == "new"
        assert event.state_after == "learning"
        assert event.session_id == session.session_id
        assert usage.reviews == 1
        assert usage.new_cards == 1
        assert profile.current_streak == 1
        assert profile.last_study_date == now.date()


def test_duplicate_submission_rejected(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(3)
    session = start_session(user)
    card_id = session.cards[0].card_id

    submit(user, session, card_id, now)
    duplicate = submit(user, session, card_id, now, rating=3)

    assert duplicate.error == ErrorCode.REVIEW_ALREADY_EXISTS
    assert review_count() == 1
    assert load_session(session.session_id).submitted_count == 1


def test_unique_constraint_is_final_idempotency_guard(make_user, add_cards, start_session, now, monkeypatch):
    user = make_user()
    add_cards(3)
    session = start_session(user)
    card_id = session.cards[0].card_id
    submit(user, session, card_id, now)

    real_review_exists = card_store.review_exists
    calls = []

    def misses_first_check(db, session_id, card_id):
        # Simulates a concurrent submission landing between check and insert
        calls.append(card_id)
        return len(calls) > 1 and real_review_exists(db, session_id, card_id)

    monkeypatch.setattr(card_store, "review_exists", misses_first_check)
    duplicate = submit(user, session, card_id, now)

    assert duplicate.error == ErrorCode.REVIEW_ALREADY_EXISTS
    assert review_count() == 1
    assert load_session(session.session_id).submitted_count == 1


def test_submit_requires_active_session(make_user, add_cards, now):
    user = make_user()
    add_cards(2)
    created = study_service.get_or_create_session(user, now=now)

    result = submit(user, created, created.cards[0].card_id, now)

    assert result.error == ErrorCode.INVALID_SESSION_STATUS


def test_submit_card_outside_batch(make_user, add_cards, start_session, now):
    user = make_user()
    add_cards(2)
    session = start_session(user)

    result = submit(user, session, "not-in-batch", now)

    assert result.error == ErrorCode.CARD_NOT_IN_SESSION


def test_submit_foreign_session(make_user, add_cards, start_session, now):
    owner = make_user("owner")
    intruder = make_user("intruder")
    add_cards(2)
    session = start_session(owner)

    result = submit(intruder, session, session.cards[0].card_id, now)

    assert result.error == ErrorCode.UNAUTHORIZED


@pytest.mark.parametrize("rating, response_time_ms, code", [
    (7, 1000, ErrorCode.INVALID_RATING),
    (-1, 1000, ErrorCode.INVALID_RATING),
    (2, 0, ErrorCode.INVALID_RESPONSE_TIME),
])
def test_invalid_input_changes_nothing(make_user, add_cards, start_session, now, rating, response_time_ms, code):
    user = make_user()
    add_cards(2)
    session = start_session(user)

    result = submit(user, session, session.cards[0].card_id, now, rating, response_time_ms)

    assert result.error == code
    assert review_count() == 0
    assert load_session(session.session_id).submitted_count == 0


def test_suspended_card_not_schedulable(make_user, add_cards, start_session, set_card_state, now):
    user = make_user()
    ids = add_cards(2)
    session = start_session(user)
    set_card_state(user, ids[0], state="suspended", due_at=now)

    result = submit(user, session, ids[0], now)

    assert result.error == ErrorCode.CARD_NOT_SCHEDULABLE
    assert review_count() == 0


def test_session_completes_when_batch_exhausted(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(3)
    session = start_session(user)

    results = [submit(user, session, c.card_id, now) for c in session.cards]

    assert [r.session_progress.submitted_count for r in results] == [1, 2, 3]
    assert [r.session_progress.completed for r in results] == [False, False, True]
    assert load_session(session.session_id).status == "completed"
    late = submit(user, session, session.cards[0].card_id, now)
    assert late.error == ErrorCode.REVIEW_ALREADY_EXISTS


def test_repeat_of_card_that_completed_session(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(1)
    session = start_session(user)
    card_id = session.cards[0].card_id

    first = submit(user, session, card_id, now)
    repeat = submit(user, session, card_id, now)

    assert first.session_progress.completed
    assert repeat.error == ErrorCode.REVIEW_ALREADY_EXISTS
    assert review_count() == 1


def test_session_closed_by_cap_keeps_reporting_limit(make_user, add_cards, start_session, now):
    user = make_user(tier="paid", reviews_per_day=2)
    add_cards(5)
    session = start_session(user)
    submit(user, session, session.cards[0].card_id, now)
    submit(user, session, session.cards[1].card_id, now)
    assert load_session(session.session_id).status == "completed"

    over = submit(user, session, session.cards[2].card_id, now)

    assert over.error == ErrorCode.DAILY_LIMIT_REACHED
    assert over.limit_info == {"tier": "paid", "reviews_today": 2, "limit": 2}
    assert review_count() == 2


def test_completed_session_rejects_new_card_after_cap_resets(make_user, add_cards, start_session, now):
    user = make_user(tier="paid", reviews_per_day=2)
    add_cards(5)
    session = start_session(user)
    submit(user, session, session.cards[0].card_id, now)
    submit(user, session, session.cards[1].card_id, now)

    tomorrow = now + timedelta(days=1)
    result = submit(user, session, session.cards[2].card_id, tomorrow)

    assert result.error == ErrorCode.INVALID_SESSION_STATUS
    assert review_count() == 2


def test_last_card_keeps_index_inside_batch(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(3)
    session = start_session(user)

    results = [submit(user, session, c.card_id, now) for c in session.cards]

    assert [r.session_progress.current_index for r in results] == [1, 2, 2]
    assert load_session(session.session_id).current_index == 2


def test_streak_continues_on_consecutive_days(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(4)
    first = start_session(user)
    submit(user, first, first.cards[0].card_id, now)

    tomorrow = now + timedelta(days=1)
    second = start_session(user, now=tomorrow)
    submit(user, second, second.cards[0].card_id, tomorrow)
    submit(user, second, second.cards[1].card_id, tomorrow)

    with database.session_scope() as db:
        profile = card_store.get_profile(db, user)
        day = card_store.get_streak_day(db, user, tomorrow.date())
        assert profile.current_streak == 2
        assert profile.longest_streak == 2
        assert day.cards_reviewed == 2
        assert day.streak_day_number == 2


def test_third_consecutive_day_reaches_milestone(make_user, add_cards, start_session, now):
    user = make_user(tier="paid")
    add_cards(6)

    results = []
    for offset in range(3):
        day = now + timedelta(days=offset)
        session = start_session(user, now=day)
        results.append(submit(user, session, session.cards[0].card_id, day))
    same_day = submit(user, session, session.cards[1].card_id, day)

    assert [r.current_streak for r in results] == [1, 2, 3]
    assert [r.milestone_reached for r in results] == [None, None, 3]
    assert same_day.milestone_reached is None
    with database.session_scope() as db:
        milestones = card_store.fetch_milestones(db, user)
        assert [m.milestone_days for m in milestones] == [3]
        assert milestones[0].reward_type == "badge"
        assert not milestones[0].reward_claimed


# ---- Failure handling ----

def test_failed_transaction_rolls_back_everything(make_user, add_cards, start_session, now, monkeypatch):
    user = make_user()
    add_cards(2)
    session = start_session(user)
    card_id = session.cards[0].card_id

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE streak_history", {}, Exception("disk I/O error"))

    monkeypatch.setattr(card_store, "record_streak_day", broken)

    with pytest.raises(StorageError):
        submit(user, session, card_id, now)

    assert review_count() == 0
    stored = load_session(session.session_id)
    assert stored.submitted_count == 0
    with database.session_scope() as db:
        assert card_store.fetch_card_state(db, user, card_id) is None
        assert card_store.get_daily_usage(db, user, now.date()) is None


def test_other_constraint_failures_are_storage_errors(make_user, add_cards, start_session, now, monkeypatch):
    user = make_user()
    add_cards(2)
    session = start_session(user)

    def broken(*args, **kwargs):
        raise IntegrityError(
            "INSERT INTO review_events", {}, Exception("CHECK constraint failed: review_events_rating_check")
        )

    monkeypatch.setattr(card_store, "insert_review_event", broken)

    with pytest.raises(StorageError):
        submit(user, session, session.cards[0].card_id, now)

    assert review_count() == 0
    assert load_session(session.session_id).submitted_count == 0


def test_storage_error_is_not_a_domain_result(make_user, now, monkeypatch):
    user = make_user()

    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(card_store, "get_profile", broken)

    with pytest.raises(StorageError):
        study_service.get_or_create_session(user, now=now)


# ---- Content ----

def test_fetch_card_content_in_requested_order(add_cards):
    ids = add_cards(3, subject_path="geo")

    result = study_service.fetch_session_card_content([ids[2], "unknown", ids[0]])

    assert [c.card_id for c in result.cards] == [ids[2], ids[0]]
    assert result.cards[0].question == "Question 2"
    assert result.cards[0].answer == "Answer 2"
    assert result.cards[0].tags == ["demo"]
    assert result.cards[0].subject_path == "geo"


def test_sessions_persist_card_snapshots(make_user, add_cards, now):
    user = make_user()
    add_cards(2)
    created = study_service.get_or_create_session(user, now=now)

    with database.session_scope() as db:
        stored = db.get(StudySession, created.session_id)
        assert stored.max_cards == 2
        assert {c["card_id"] for c in stored.cards_data} == {c.card_id for c in created.cards}
        assert card_store.get_daily_usage(db, user, now.date()).sessions_created == 1


# ---- Card flags ----

def test_flagged_card_leaves_future_sessions(make_user, add_cards, now):
    reporter = make_user("reporter")
    other = make_user("other")
    ids = add_cards(3)

    result = study_service.flag_card(reporter, ids[0], " Incorrect ", comment="Wrong answer", now=now)

    assert isinstance(result, FlagResult)
    assert result.reason == FlagReason.INCORRECT
    assert result.flag_count == 1
    session = study_service.get_or_create_session(other, now=now)
    assert ids[0] not in {c.card_id for c in session.cards}
    with database.session_scope() as db:
        flag = card_store.get_card_flag(db, reporter, ids[0])
        assert flag.comment == "Wrong answer"
        assert flag.flagged_at == now


def test_flag_comment_is_sanitized(make_user, add_cards, now):
    user = make_user()
    ids = add_cards(2)

    study_service.flag_card(user, ids[0], "other", comment="<b>see</b> javascript:alert(1)", now=now)
    study_service.flag_card(user, ids[1], "spelling", comment="  <i></i> ", now=now)

    with database.session_scope() as db:
        assert card_store.get_card_flag(db, user, ids[0]).comment == "see alert(1)"
        assert card_store.get_card_flag(db, user, ids[1]).comment is None


def test_second_flag_by_same_user_rejected(make_user, add_cards, now):
    first_user = make_user("first")
    second_user = make_user("second")
    card_id = add_cards(1)[0]

    study_service.flag_card(first_user, card_id, "confusing", now=now)
    repeat = study_service.flag_card(first_user, card_id, "incorrect", now=now)
    another = study_service.flag_card(second_user, card_id, "incorrect", now=now)

    assert repeat.error == ErrorCode.ALREADY_FLAGGED
    assert another.flag_count == 2


@pytest.mark.parametrize("card_id, reason, comment, code", [
    ("card-000", "offensive", None, ErrorCode.INVALID_FLAG),
    ("card-000", "other", "x" * 501, ErrorCode.INVALID_FLAG),
    ("", "other", None, ErrorCode.INVALID_FLAG),
    ("missing", "other", None, ErrorCode.CARD_NOT_FOUND),
])
def test_invalid_flag_changes_nothing(make_user, add_cards, now, card_id, reason, comment, code):
    user = make_user()
    add_cards(1)

    result = study_service.flag_card(user, card_id, reason, comment=comment, now=now)

    assert result.error == code
    with database.session_scope() as db:
        assert card_store.get_card_template(db, "card-000").flag_count == 0
        assert not card_store.get_card_template(db, "card-000").flagged_for_review


def test_flag_requires_known_non_admin_user(make_user, add_cards, now):
    admin = make_user("admin", tier="admin")
    card_id = add_cards(1)[0]

    assert study_service.flag_card(admin, card_id, "other", now=now).error == ErrorCode.UNAUTHORIZED
    assert study_service.flag_card("ghost", card_id, "other", now=now).error == ErrorCode.USER_NOT_FOUND
