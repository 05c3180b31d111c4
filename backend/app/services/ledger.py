"""System of record for prediction submissions and contest registrations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import Session

from app.domain import ScoringRules
from app.domain.errors import (
    AlreadyRegistered,
    ContestFull,
    ContestNotFound,
    ContestNotOpen,
    DeadlinePassed,
    InvalidChoice,
    InvalidConfidence,
    ParticipantNotRegistered,
    QuestionNotFound,
    SubmissionLocked,
)
from app.domain.rules import rules_from_json
from app.models import (
    Contest,
    ContestStatus,
    Participant,
    Question,
    QuestionStatus,
    Submission,
    as_utc,
)
from app.repositories import ContestRepository, SubmissionRepository

MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100

_ACCEPTING_LATE = frozenset({ContestStatus.ACTIVE.value, ContestStatus.EVALUATING.value})
_REGISTRATION_OPEN = frozenset({ContestStatus.PENDING.value, ContestStatus.ACTIVE.value})


@dataclass(slots=True)
class SubmissionReceipt:
    submission_id: str
    created: bool
    is_late: bool


def question_deadline(contest: Contest, question: Question, rules: ScoringRules) -> datetime:
    """Moment submissions for ``question`` lock; never later than the contest end."""

    contest_end = as_utc(contest.ends_at)
    starts_at = as_utc(question.starts_at)
    if starts_at is None:
        return contest_end
    offset = timedelta(minutes=rules.prediction_deadline_minutes or 0)
    return min(contest_end, starts_at - offset)


class PredictionLedger:
    """Validate and persist submissions; scoring never happens here."""

    def __init__(self, session: Session) -> None:
        self._contests = ContestRepository(session)
        self._submissions = SubmissionRepository(session)

    def register(
        self,
        contest_id: str,
        participant_id: str,
        *,
        display_name: str | None,
        joined_at: datetime,
    ) -> Participant:
        contest = self._contests.get_contest(contest_id)
        if contest is None:
            raise ContestNotFound(f"contest {contest_id} does not exist")
        if contest.status not in _REGISTRATION_OPEN:
            raise ContestNotOpen(f"contest {contest_id} is {contest.status}; registration is closed")
        if self._contests.get_participant(contest_id, participant_id) is not None:
            raise AlreadyRegistered(f"{participant_id} is already registered for contest {contest_id}")
        if (
            contest.max_participants is not None
            and self._contests.count_participants(contest_id) >= contest.max_participants
        ):
            raise ContestFull(f"contest {contest_id} is full ({contest.max_participants} participants)")

        participant = self._contests.add_participant(
            contest,
            participant_id=participant_id,
            display_name=display_name,
            joined_at=joined_at,
        )
        logger.info("Registered {} for contest {}", participant_id, contest_id)
        return participant

    def submit(
        self,
        participant_id: str,
        question_id: str,
        choice: str,
        confidence: int,
        *,
        now: datetime,
        reasoning: str | None = None,
    ) -> SubmissionReceipt:
        if not isinstance(confidence, int) or isinstance(confidence, bool):
            raise InvalidConfidence(f"confidence must be an integer, got {confidence!r}")
        if not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
            raise InvalidConfidence(
                f"confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}, got {confidence}"
            )

        question = self._contests.get_question(question_id)
        if question is None:
            raise QuestionNotFound(f"question {question_id} does not exist")
        contest = question.contest
        if self._contests.get_participant(contest.contest_id, participant_id) is None:
            raise ParticipantNotRegistered(
                f"{participant_id} is not registered for contest {contest.contest_id}"
            )
        if choice not in question.options:
            raise InvalidChoice(f"'{choice}' is not an option of question {question_id}")

        existing = self._submissions.get_submission(participant_id, question_id)
        rules = rules_from_json(contest.scoring_rules)
        is_late = self._check_window(contest, question, rules, now=now, updating=existing is not None)

        if existing is not None:
            existing.choice = choice
            existing.confidence = confidence
            existing.reasoning = reasoning
            existing.updated_at = now
            logger.debug("Updated submission {} for {}", existing.submission_id, question_id)
            return SubmissionReceipt(submission_id=existing.submission_id, created=False, is_late=False)

        submission = self._submissions.add_submission(
            Submission(
                submission_id=uuid.uuid4().hex,
                contest_id=contest.contest_id,
                question_id=question_id,
                participant_id=participant_id,
                choice=choice,
                confidence=confidence,
                reasoning=reasoning,
                is_late=is_late,
                submitted_at=now,
                updated_at=now,
            )
        )
        if is_late:
            logger.info(
                "Accepted late submission {} from {} on question {}",
                submission.submission_id,
                participant_id,
                question_id,
            )
        return SubmissionReceipt(submission_id=submission.submission_id, created=True, is_late=is_late)

    def _check_window(
        self,
        contest: Contest,
        question: Question,
        rules: ScoringRules,
        *,
        now: datetime,
        updating: bool,
    ) -> bool:
        """Return whether the entry is late, or raise if it cannot be accepted."""

        if contest.status == ContestStatus.PENDING.value:
            raise ContestNotOpen(f"contest {contest.contest_id} has not started")
        if question.status != QuestionStatus.OPEN.value:
            if updating:
                raise SubmissionLocked(f"question {question.question_id} is {question.status}")
            raise DeadlinePassed(f"question {question.question_id} is {question.status}")

        past_deadline = (
            contest.status != ContestStatus.ACTIVE.value
            or now >= question_deadline(contest, question, rules)
        )
        if not past_deadline:
            return False
        if updating:
            raise SubmissionLocked(
                f"submission for question {question.question_id} is locked after its deadline"
            )
        if rules.allow_late_entries and contest.status in _ACCEPTING_LATE:
            return True
        raise DeadlinePassed(f"the deadline for question {question.question_id} has passed")

    def history(self, contest_id: str, participant_id: str) -> list[Submission]:
        if self._contests.get_contest(contest_id) is None:
            raise ContestNotFound(f"contest {contest_id} does not exist")
        if self._contests.get_participant(contest_id, participant_id) is None:
            raise ParticipantNotRegistered(
                f"{participant_id} is not registered for contest {contest_id}"
            )
        return self._submissions.list_for_participant(contest_id, participant_id)


__all__ = ["PredictionLedger", "SubmissionReceipt", "question_deadline"]
