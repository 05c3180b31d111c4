"""Typed domain representations derived from persisted contest state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(slots=True)
class LeaderboardEntry:
    """One participant's standing; recomputed from submissions, never edited."""

    participant_id: str
    display_name: str | None
    joined_at: datetime
    total_score: int = 0
    correct_count: int = 0
    resolved_count: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    oracle_beats: int = 0
    rank: int = 0
    potential_payout: Decimal | None = None

    @property
    def accuracy(self) -> float | None:
        if self.resolved_count == 0:
            return None
        return self.correct_count / self.resolved_count

    def to_snapshot(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["joined_at"] = self.joined_at.isoformat()
        payload["accuracy"] = self.accuracy
        payload["potential_payout"] = (
            str(self.potential_payout) if self.potential_payout is not None else None
        )
        return payload


@dataclass(slots=True)
class PayoutLine:
    participant_id: str
    rank: int
    amount: Decimal


@dataclass(slots=True)
class ContestStats:
    total_participants: int
    scored_questions: int
    void_questions: int
    total_prize_pool: Decimal
    currency: str
    top_accuracy: list[str] = field(default_factory=list)
    top_streak: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_participants": self.total_participants,
            "scored_questions": self.scored_questions,
            "void_questions": self.void_questions,
            "total_prize_pool": str(self.total_prize_pool),
            "currency": self.currency,
            "top_accuracy": list(self.top_accuracy),
            "top_streak": list(self.top_streak),
        }


@dataclass(slots=True)
class ContestResult:
    """Finalized leaderboard snapshot and the exact prize distribution."""

    contest_id: str
    finalized_at: datetime
    currency: str
    total_amount: Decimal
    leaderboard: list[dict[str, Any]]
    payouts: list[PayoutLine]
    stats: dict[str, Any] | None = None


__all__ = ["ContestResult", "ContestStats", "LeaderboardEntry", "PayoutLine"]
