"""Submission and streak state persistence."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import Question, StreakState, Submission


class SubmissionRepository:
    """Storage for the prediction ledger and the per-participant streak counters."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Submissions

    def get_submission(self, participant_id: str, question_id: str) -> Submission | None:
        query = select(Submission).where(
            Submission.participant_id == participant_id,
            Submission.question_id == question_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def add_submission(self, submission: Submission) -> Submission:
        self._session.add(submission)
        self._session.flush()
        return submission

    def list_for_question(self, question_id: str) -> list[Submission]:
        query = (
            select(Submission)
            .where(Submission.question_id == question_id)
            .order_by(Submission.submitted_at.asc(), Submission.participant_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_for_contest(self, contest_id: str) -> list[Submission]:
        query = select(Submission).where(Submission.contest_id == contest_id)
        return list(self._session.execute(query).scalars().all())

    def list_scored_for_contest(self, contest_id: str) -> list[Submission]:
        query = select(Submission).where(
            Submission.contest_id == contest_id,
            Submission.score.is_not(None),
        )
        return list(self._session.execute(query).scalars().all())

    def list_for_participant(self, contest_id: str, participant_id: str) -> list[Submission]:
        query = (
            select(Submission)
            .join(Question, Submission.question)
            .options(selectinload(Submission.question))
            .where(
                Submission.contest_id == contest_id,
                Submission.participant_id == participant_id,
            )
            .order_by(Question.ordinal.asc())
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Streaks

    def get_streak(self, contest_id: str, participant_id: str) -> StreakState | None:
        return self._session.get(StreakState, (contest_id, participant_id))

    def get_or_create_streak(self, contest_id: str, participant_id: str) -> StreakState:
        state = self.get_streak(contest_id, participant_id)
        if state is None:
            state = StreakState(
                contest_id=contest_id,
                participant_id=participant_id,
                current_streak=0,
                longest_streak=0,
                last_question_ordinal=None,
            )
            self._session.add(state)
            self._session.flush()
        return state

    def list_streaks(self, contest_id: str) -> dict[str, StreakState]:
        query = select(StreakState).where(StreakState.contest_id == contest_id)
        return {
            state.participant_id: state
            for state in self._session.execute(query).scalars().all()
        }


__all__ = ["SubmissionRepository"]
