"""
flashdeck - FSRS flashcard scheduling and study-session queue.

Quick start:
    from flashdeck import study_service
    from flashdeck.fsrs import database

    database.init_db()

    result = study_service.get_or_create_session(user_id)
    study_service.finalize_session_order(user_id, result.session_id)
    study_service.submit_answer(user_id, result.session_id, card_id, rating=2, response_time_ms=3200)
"""

__version__ = "0.4.0"
