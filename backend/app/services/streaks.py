"""Per-participant streak counters, advanced strictly in question order."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.domain.errors import StreakOrderViolation
from app.models import utcnow
from app.repositories import SubmissionRepository


@dataclass(slots=True)
class StreakUpdate:
    participant_id: str
    before: int
    after: int


class StreakTracker:
    """Read and advance streaks; only the scoring engine calls ``record``."""

    def __init__(self, repository: SubmissionRepository) -> None:
        self._repository = repository

    def get(self, contest_id: str, participant_id: str) -> int:
        state = self._repository.get_streak(contest_id, participant_id)
        if state is None:
            return 0
        return state.current_streak

    def longest(self, contest_id: str, participant_id: str) -> int:
        state = self._repository.get_streak(contest_id, participant_id)
        if state is None:
            return 0
        return state.longest_streak

    def record(
        self,
        contest_id: str,
        participant_id: str,
        *,
        ordinal: int,
        is_correct: bool,
        at: datetime | None = None,
    ) -> StreakUpdate:
        state = self._repository.get_or_create_streak(contest_id, participant_id)
        last = state.last_question_ordinal
        if last is not None and ordinal <= last:
            raise StreakOrderViolation(
                f"streak for {participant_id} in {contest_id} already reflects question "
                f"#{last}; refusing to apply #{ordinal}"
            )

        before = state.current_streak
        state.current_streak = before + 1 if is_correct else 0
        state.longest_streak = max(state.longest_streak, state.current_streak)
        state.last_question_ordinal = ordinal
        state.updated_at = at or utcnow()
        return StreakUpdate(participant_id=participant_id, before=before, after=state.current_streak)


__all__ = ["StreakTracker", "StreakUpdate"]
