"""Contest state machine: PENDING → ACTIVE → EVALUATING → FINALIZED (or CANCELLED)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from app.domain.errors import InvalidTransition, UnresolvedQuestionAtWindowClose
from app.models import Contest, ContestStatus, QuestionStatus, as_utc
from app.repositories import ContestRepository

ALLOWED_TRANSITIONS: dict[ContestStatus, frozenset[ContestStatus]] = {
    ContestStatus.PENDING: frozenset({ContestStatus.ACTIVE, ContestStatus.CANCELLED}),
    ContestStatus.ACTIVE: frozenset({ContestStatus.EVALUATING, ContestStatus.CANCELLED}),
    ContestStatus.EVALUATING: frozenset({ContestStatus.FINALIZED}),
    ContestStatus.FINALIZED: frozenset(),
    ContestStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({ContestStatus.FINALIZED, ContestStatus.CANCELLED})


@dataclass(slots=True)
class AdvanceReport:
    contest_id: str
    transitions: list[tuple[str, str]] = field(default_factory=list)
    voided_questions: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.transitions or self.voided_questions)


def contest_status(contest: Contest) -> ContestStatus:
    return ContestStatus(contest.status)


class ContestLifecycle:
    """Apply lifecycle transitions; callers hold the contest's evaluation lock."""

    def __init__(self, session: Session) -> None:
        self._contests = ContestRepository(session)

    def transition(self, contest: Contest, target: ContestStatus, *, at: datetime) -> None:
        current = contest_status(contest)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"contest {contest.contest_id} cannot move from {current.value} to {target.value}"
            )
        contest.status = target.value
        if target is ContestStatus.ACTIVE:
            contest.activated_at = at
        elif target is ContestStatus.EVALUATING:
            contest.evaluating_at = at
        elif target is ContestStatus.FINALIZED:
            contest.finalized_at = at
        elif target is ContestStatus.CANCELLED:
            contest.cancelled_at = at
        logger.info(
            "Contest {} moved {} -> {}", contest.contest_id, current.value, target.value
        )

    def in_window(self, contest: Contest, at: datetime) -> bool:
        return as_utc(contest.starts_at) <= at < as_utc(contest.ends_at)

    def advance(self, contest: Contest, now: datetime) -> AdvanceReport:
        """Apply every time-driven transition due at ``now``."""

        report = AdvanceReport(contest_id=contest.contest_id)
        status = contest_status(contest)
        if status in TERMINAL_STATUSES:
            return report

        if status is ContestStatus.PENDING and now >= as_utc(contest.starts_at):
            self.transition(contest, ContestStatus.ACTIVE, at=now)
            report.transitions.append((status.value, ContestStatus.ACTIVE.value))
            status = ContestStatus.ACTIVE

        if now >= as_utc(contest.ends_at):
            if status is ContestStatus.ACTIVE:
                self.transition(contest, ContestStatus.EVALUATING, at=now)
                report.transitions.append((status.value, ContestStatus.EVALUATING.value))
                status = ContestStatus.EVALUATING
            if status is ContestStatus.EVALUATING:
                report.voided_questions.extend(self.void_open_questions(contest, at=now))
        return report

    def begin_evaluation(self, contest: Contest, at: datetime) -> bool:
        """React to a game result: ACTIVE contests inside their window start evaluating."""

        if contest_status(contest) is ContestStatus.ACTIVE and self.in_window(contest, at):
            self.transition(contest, ContestStatus.EVALUATING, at=at)
            return True
        return False

    def void_open_questions(self, contest: Contest, *, at: datetime) -> list[str]:
        voided: list[str] = []
        for question in self._contests.list_questions(contest.contest_id):
            if question.status != QuestionStatus.OPEN.value:
                continue
            question.status = QuestionStatus.VOID.value
            question.voided_at = at
            voided.append(question.question_id)
            notice = UnresolvedQuestionAtWindowClose(
                f"question {question.question_id} (#{question.ordinal}) had no result when "
                f"contest {contest.contest_id} closed; voided"
            )
            logger.warning("{}: {}", notice.code, notice)
        return voided

    def cancel(self, contest: Contest, *, at: datetime) -> None:
        self.transition(contest, ContestStatus.CANCELLED, at=at)

    def ready_to_finalize(self, contest: Contest) -> bool:
        if contest_status(contest) is not ContestStatus.EVALUATING:
            return False
        if contest.finalized_at is not None:
            return False
        for question in self._contests.list_questions(contest.contest_id):
            if question.status == QuestionStatus.VOID.value:
                continue
            if question.status != QuestionStatus.RESOLVED.value or question.scored_at is None:
                return False
        return True


__all__ = [
    "ALLOWED_TRANSITIONS",
    "AdvanceReport",
    "ContestLifecycle",
    "TERMINAL_STATUSES",
    "contest_status",
]
