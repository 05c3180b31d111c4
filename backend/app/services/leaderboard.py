"""Ranked standings derived from scored submissions."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from app.domain import LeaderboardEntry
from app.domain.errors import ContestNotFound
from app.domain.rules import prize_pool_from_json
from app.models import as_utc
from app.repositories import ContestRepository, SubmissionRepository

from .payouts import preview_payouts


def _sort_key(entry: LeaderboardEntry) -> tuple[int, float, datetime, str]:
    accuracy = entry.accuracy
    # participants without resolved picks sort after everyone with the same total
    accuracy_key = -accuracy if accuracy is not None else 1.0
    return (-entry.total_score, accuracy_key, entry.joined_at, entry.participant_id)


def _tie_key(entry: LeaderboardEntry) -> tuple[int, float | None, datetime]:
    return (entry.total_score, entry.accuracy, entry.joined_at)


def rank_entries(entries: Iterable[LeaderboardEntry]) -> list[LeaderboardEntry]:
    """Order entries and assign standard competition ranks (1, 1, 3, ...)."""

    ordered = sorted(entries, key=_sort_key)
    previous_key: tuple[int, float | None, datetime] | None = None
    previous_rank = 0
    for position, entry in enumerate(ordered, start=1):
        key = _tie_key(entry)
        entry.rank = previous_rank if key == previous_key else position
        previous_key = key
        previous_rank = entry.rank
    return ordered


class LeaderboardAggregator:
    """Full recomputation of a contest leaderboard; read-only."""

    def __init__(self, session: Session) -> None:
        self._contests = ContestRepository(session)
        self._submissions = SubmissionRepository(session)

    def recompute(self, contest_id: str, *, with_payouts: bool = True) -> list[LeaderboardEntry]:
        contest = self._contests.get_contest(contest_id)
        if contest is None:
            raise ContestNotFound(f"contest {contest_id} does not exist")

        entries: dict[str, LeaderboardEntry] = {
            participant.participant_id: LeaderboardEntry(
                participant_id=participant.participant_id,
                display_name=participant.display_name,
                joined_at=as_utc(participant.joined_at),
            )
            for participant in self._contests.list_participants(contest_id)
        }

        for submission in self._submissions.list_scored_for_contest(contest_id):
            entry = entries.get(submission.participant_id)
            if entry is None:
                continue
            entry.total_score += submission.score
            entry.resolved_count += 1
            if submission.is_correct:
                entry.correct_count += 1
            if submission.oracle_beat:
                entry.oracle_beats += 1

        for participant_id, state in self._submissions.list_streaks(contest_id).items():
            entry = entries.get(participant_id)
            if entry is None:
                continue
            entry.current_streak = state.current_streak
            entry.longest_streak = state.longest_streak

        ranked = rank_entries(entries.values())
        if with_payouts and ranked:
            amounts = preview_payouts(ranked, prize_pool_from_json(contest.prize_pool))
            for entry in ranked:
                entry.potential_payout = amounts.get(entry.participant_id)
        return ranked


__all__ = ["LeaderboardAggregator", "rank_entries"]
