"""
Pool utilities for session builders.

These helpers provide shared, minimal primitives for building and reasoning
about session pools. They never touch the database.
"""

from __future__ import annotations
import random
from datetime import datetime
from typing import TypeVar

from flashdeck.session_builders.pool_types import PoolCard


T = TypeVar("T")


def fill_in_order(
    pools: dict[str, list[T]],
    order: list[str],
    target_size: int
) -> list[T]:
    """
    Fill a session by walking pools in order until target_size is reached.
    """
    session: list[T] = []
    for name in order:
        for item in pools.get(name, []):
            if len(session) >= target_size:
                return session
            session.append(item)
    return session


def sort_most_overdue(cards: list[PoolCard], now: datetime) -> list[PoolCard]:
    """
    Due cards with the greatest overdue amount first; ties broken by card id.
    """
    due = [c for c in cards if c.due_at is not None and c.due_at <= now]
    return sorted(due, key=lambda c: (c.due_at, c.card_id))


def sample_new_cards(
    candidates: list[PoolCard],
    count: int,
    rng: random.Random
) -> list[PoolCard]:
    """
    Sample up to ``count`` new cards with a seeded RNG.

    Candidates are put into a stable order first so the same seed always
    yields the same sample.
    """
    if count <= 0 or not candidates:
        return []
    ordered = sorted(candidates, key=lambda c: c.card_id)
    sample_size = min(count, len(ordered))
    return rng.sample(ordered, sample_size)
