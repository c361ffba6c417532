"""
Typed pool models shared across session builders.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional


PoolStatus = Literal["due", "new"]


@dataclass(frozen=True)
class PoolCard:
    """
    Snapshot of one candidate card taken when the batch is assembled.
    """
    card_id: str
    question: str
    answer: str
    subject_path: Optional[str] = None
    tags: tuple[str, ...] = ()
    state: str = "new"
    stability: float = 1.0
    difficulty: float = 5.0
    due_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None
    reps: int = 0
    lapses: int = 0
    total_reviews: int = 0

    @property
    def is_new(self) -> bool:
        return self.state == "new"

    def to_snapshot(self) -> dict:
        """JSON-safe dict stored in the session's cards_data."""
        return {
            "card_id": self.card_id,
            "question": self.question,
            "answer": self.answer,
            "subject_path": self.subject_path,
            "tags": list(self.tags),
            "state": self.state,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "reps": self.reps,
            "lapses": self.lapses,
            "total_reviews": self.total_reviews,
            "is_new": self.is_new,
        }


@dataclass
class PoolState:
    """
    Launch-scoped pool state for one session request.
    """
    card_map: dict[str, PoolCard] = field(default_factory=dict)
    due: list[str] = field(default_factory=list)
    new: list[str] = field(default_factory=list)

    def add(self, card: PoolCard, target: PoolStatus) -> None:
        """
        Register a card in the target pool. A card lives in one pool only;
        the first registration wins.
        """
        if card.card_id in self.card_map:
            return
        self.card_map[card.card_id] = card
        if target == "due":
            self.due.append(card.card_id)
        else:
            self.new.append(card.card_id)

    def cards(self, target: PoolStatus) -> list[PoolCard]:
        ids = self.due if target == "due" else self.new
        return [self.card_map[card_id] for card_id in ids]
