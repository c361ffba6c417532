"""
Session Builder - Due-First Batch Assembly

Creates study batches from two pools:
1. Due pool: learning/review/relearning cards with due_at <= now
2. New pool: cards never reviewed

Session Logic:
- Take due cards, most overdue first (ties by card id)
- Top up with new cards sampled by the session's seed
- Never exceed the session size (10)

Everything here is pure; study_service does the I/O.
"""

from __future__ import annotations
import random
import secrets
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from flashdeck.errors import (
    CardNotInSessionError,
    InvalidPermutationError,
    InvalidSessionStatusError,
    UnauthorizedError,
)
from flashdeck.schemas import SessionStatus, SessionType
from flashdeck.session_builders.pool_types import PoolCard, PoolState
from flashdeck.session_builders.pool_utils import (
    fill_in_order,
    sample_new_cards,
    sort_most_overdue,
)
from flashdeck.tiers import TierPolicy

# ---- Session Configuration ----
MAX_SESSION_SIZE = 10       # Hard ceiling on cards per session
POOL_ORDER = ["due", "new"]  # Due cards always precede new cards
SEED_BYTES = 4              # 8 hex characters


def new_seed() -> str:
    return secrets.token_hex(SEED_BYTES)


def session_type_for(policy: TierPolicy, subject_path: Optional[str]) -> SessionType:
    if subject_path:
        return SessionType.SUBJECT_SPECIFIC
    if policy.is_limited:
        return SessionType.DAILY_FREE
    return SessionType.GENERAL_UNLIMITED


def build_pool_state(due_cards: Sequence[PoolCard], new_cards: Sequence[PoolCard]) -> PoolState:
    """
    Build launch-scoped pool state. A card that shows up as due is never
    offered again as new.
    """
    pools = PoolState()
    for card in due_cards:
        pools.add(card, "due")
    for card in new_cards:
        pools.add(card, "new")
    return pools


def assemble_batch(
    pools: PoolState,
    seed: str,
    now: datetime,
    size: int = MAX_SESSION_SIZE,
    new_allowance: Optional[int] = None
) -> list[PoolCard]:
    """
    Build the ordered batch for a session.

    Args:
        pools: Due and new candidates
        seed: Session seed; drives the new-card sample
        now: Reference time for the overdue ordering
        size: Requested batch size (clipped to 1..10)
        new_allowance: Cap on new cards (None = fill remaining slots)

    Returns:
        Ordered list of at most ``size`` cards, due before new
    """
    size = max(1, min(MAX_SESSION_SIZE, size))

    due = sort_most_overdue(pools.cards("due"), now)[:size]
    slots = size - len(due)
    if new_allowance is not None:
        slots = min(slots, max(0, new_allowance))

    new = sample_new_cards(pools.cards("new"), slots, random.Random(seed))
    return fill_in_order({"due": due, "new": new}, POOL_ORDER, size)


# ---- Snapshots ----

def card_ids_of(cards_data: Sequence[dict]) -> list[str]:
    return [card["card_id"] for card in cards_data]


def find_card(cards_data: Sequence[dict], card_id: str) -> dict:
    for card in cards_data:
        if card["card_id"] == card_id:
            return card
    raise CardNotInSessionError(f"Card {card_id} is not part of this session")


def validate_permutation(current_ids: Sequence[str], proposed_ids: Sequence[str]) -> list[str]:
    """
    Check that ``proposed_ids`` is exactly a reordering of ``current_ids``.

    Raises:
        InvalidPermutationError: lengths or multisets differ
    """
    proposed = list(proposed_ids)
    if len(proposed) != len(current_ids):
        raise InvalidPermutationError(
            f"Expected {len(current_ids)} card ids, got {len(proposed)}"
        )
    if Counter(proposed) != Counter(current_ids):
        raise InvalidPermutationError("Card ids must be a permutation of the session batch")
    return proposed


def reorder_snapshots(cards_data: Sequence[dict], ordered_ids: Sequence[str]) -> list[dict]:
    """Return a new cards_data list in ``ordered_ids`` order."""
    by_id = {card["card_id"]: card for card in cards_data}
    return [dict(by_id[card_id]) for card_id in ordered_ids]


# ---- Guards ----

def ensure_owner(session_user_id: str, user_id: str) -> None:
    if session_user_id != user_id:
        raise UnauthorizedError("Session does not belong to this user")


def ensure_status(status: str, expected: SessionStatus) -> None:
    if status != expected.value:
        raise InvalidSessionStatusError(
            f"Session is '{status}', expected '{expected.value}'"
        )


# ---- Progress ----

@dataclass(frozen=True)
class Progress:
    submitted_count: int
    current_index: int
    completed: bool


def advance_progress(
    submitted_count: int,
    current_index: int,
    max_cards: int,
    daily_cap_reached: bool = False
) -> Progress:
    """
    Progress after one accepted submission. Counters only move forward;
    current_index stays a valid batch position (at most max_cards - 1).
    """
    submitted = min(submitted_count + 1, max_cards)
    index = min(max(current_index, submitted), max_cards - 1)
    completed = submitted >= max_cards or daily_cap_reached
    return Progress(submitted_count=submitted, current_index=index, completed=completed)
