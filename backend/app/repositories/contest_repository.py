"""Contest, question and registration persistence."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.domain import ContestDefinition, ContestResult
from app.domain.rules import prize_pool_to_json, rules_to_json
from app.models import (
    Contest,
    ContestResultRecord,
    ContestStatus,
    Participant,
    PayoutRecord,
    Question,
    QuestionStatus,
)


class ContestRepository:
    """Encapsulate contest configuration, lifecycle and result storage."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_contest(self, definition: ContestDefinition) -> Contest:
        contest = Contest(
            contest_id=definition.contest_id,
            name=definition.name,
            description=definition.description,
            starts_at=definition.starts_at,
            ends_at=definition.ends_at,
            status=ContestStatus.PENDING.value,
            scoring_rules=rules_to_json(definition.scoring_rules),
            prize_pool=prize_pool_to_json(definition.prize_pool),
            max_participants=definition.max_participants,
            entry_fee=definition.entry_fee,
        )
        for question in definition.ordered_questions():
            contest.questions.append(
                Question(
                    question_id=question.question_id,
                    ordinal=question.ordinal,
                    prompt=question.prompt,
                    category=question.category,
                    difficulty=question.difficulty,
                    options=list(question.options),
                    oracle_choice=question.oracle_choice,
                    starts_at=question.starts_at,
                    status=QuestionStatus.OPEN.value,
                )
            )
        self._session.add(contest)
        self._session.flush()
        return contest

    def add_participant(
        self,
        contest: Contest,
        *,
        participant_id: str,
        display_name: str | None,
        joined_at: datetime,
    ) -> Participant:
        participant = Participant(
            contest_id=contest.contest_id,
            participant_id=participant_id,
            display_name=display_name,
            joined_at=joined_at,
        )
        self._session.add(participant)
        self._session.flush()
        return participant

    def save_result(self, result: ContestResult) -> ContestResultRecord:
        record = ContestResultRecord(
            contest_id=result.contest_id,
            finalized_at=result.finalized_at,
            total_amount=result.total_amount,
            currency=result.currency,
            leaderboard_snapshot=result.leaderboard,
            stats=result.stats,
        )
        for line in result.payouts:
            record.payouts.append(
                PayoutRecord(
                    contest_id=result.contest_id,
                    participant_id=line.participant_id,
                    rank=line.rank,
                    amount=line.amount,
                )
            )
        self._session.add(record)
        self._session.flush()
        return record

    # ------------------------------------------------------------------
    # Queries

    def get_contest(self, contest_id: str) -> Contest | None:
        return self._session.get(Contest, contest_id)

    def exists(self, contest_id: str) -> bool:
        query = select(func.count(Contest.contest_id)).where(Contest.contest_id == contest_id)
        return bool(self._session.execute(query).scalar_one())

    def get_question(self, question_id: str) -> Question | None:
        return self._session.get(Question, question_id)

    def contest_id_for_question(self, question_id: str) -> str | None:
        query = select(Question.contest_id).where(Question.question_id == question_id)
        return self._session.execute(query).scalar_one_or_none()

    def list_questions(self, contest_id: str) -> list[Question]:
        query = (
            select(Question)
            .where(Question.contest_id == contest_id)
            .order_by(Question.ordinal.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def get_participant(self, contest_id: str, participant_id: str) -> Participant | None:
        query = select(Participant).where(
            Participant.contest_id == contest_id,
            Participant.participant_id == participant_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def list_participants(self, contest_id: str) -> list[Participant]:
        query = (
            select(Participant)
            .where(Participant.contest_id == contest_id)
            .order_by(Participant.joined_at.asc(), Participant.participant_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def count_participants(self, contest_id: str) -> int:
        query = select(func.count(Participant.registration_id)).where(
            Participant.contest_id == contest_id
        )
        return int(self._session.execute(query).scalar_one())

    def list_contests(
        self,
        *,
        statuses: Iterable[ContestStatus] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Contest]:
        query = select(Contest)
        if statuses is not None:
            query = query.where(Contest.status.in_([status.value for status in statuses]))
        query = query.order_by(Contest.starts_at.asc(), Contest.contest_id.asc()).offset(offset)
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())

    def count_by_status(self) -> dict[str, int]:
        rows = self._session.execute(
            select(Contest.status, func.count(Contest.contest_id)).group_by(Contest.status)
        ).all()
        counts = Counter({status.value: 0 for status in ContestStatus})
        for status, count in rows:
            counts[status] = int(count)
        return dict(counts)

    def get_result(self, contest_id: str) -> ContestResultRecord | None:
        query = (
            select(ContestResultRecord)
            .options(selectinload(ContestResultRecord.payouts))
            .where(ContestResultRecord.contest_id == contest_id)
        )
        return self._session.execute(query).scalar_one_or_none()


__all__ = ["ContestRepository"]
