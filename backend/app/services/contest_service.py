"""Facade that coordinates the ledger, scoring, lifecycle and payouts for one request."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.domain import (
    ContestDefinition,
    ContestResult as ContestResultData,
    ContestStats,
    LeaderboardEntry as LeaderboardEntryData,
)
from app.domain.errors import (
    ContestNotFound,
    DuplicateResolution,
    InvalidChoice,
    InvalidContestDefinition,
    PayoutSumMismatch,
    QuestionNotFound,
)
from app.domain.rules import prize_pool_from_json
from app.models import Contest, ContestStatus, Question, QuestionStatus, as_utc, utcnow
from app.repositories import ContestRepository, SubmissionRepository
from app.schemas import (
    AdvanceReport,
    ContestResult,
    ContestSummary,
    Leaderboard,
    LeaderboardEntry,
    ParticipantHistory,
    Payout,
    Registration,
    ResolutionOutcome,
    ServiceStatus,
    Submission,
    SubmissionReceipt,
)

from .cache import TTLCache
from .leaderboard import LeaderboardAggregator
from .ledger import PredictionLedger
from .lifecycle import ContestLifecycle, contest_status
from .locks import ContestLockRegistry
from .payouts import calculate_payouts
from .scoring import ScoringEngine

Clock = Callable[[], datetime]

_IGNORED_RESULT_STATUSES = frozenset(
    {ContestStatus.PENDING, ContestStatus.CANCELLED, ContestStatus.FINALIZED}
)


def _entry_schema(entry: LeaderboardEntryData) -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=entry.rank,
        participant_id=entry.participant_id,
        display_name=entry.display_name,
        total_score=entry.total_score,
        correct_count=entry.correct_count,
        resolved_count=entry.resolved_count,
        accuracy=entry.accuracy,
        current_streak=entry.current_streak,
        longest_streak=entry.longest_streak,
        oracle_beats=entry.oracle_beats,
        joined_at=entry.joined_at,
        potential_payout=entry.potential_payout,
    )


def _leaders_by(
    entries: Sequence[LeaderboardEntryData],
    value: Callable[[LeaderboardEntryData], float | None],
) -> list[str]:
    """Participant ids sharing the best non-zero ``value``."""

    scored = [(entry.participant_id, value(entry)) for entry in entries]
    scored = [(participant_id, metric) for participant_id, metric in scored if metric]
    if not scored:
        return []
    best = max(metric for _, metric in scored)
    return sorted(participant_id for participant_id, metric in scored if metric == best)


class ContestService:
    """Entry point used by the API, pipelines and scripts.

    Every write for a contest runs while holding that contest's lock from
    ``locks`` and commits (or rolls back) before the lock is released. The
    cached leaderboard for the contest is dropped after each write.
    """

    def __init__(
        self,
        session: Session,
        *,
        locks: ContestLockRegistry,
        cache: TTLCache[Leaderboard] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._locks = locks
        self._cache = cache
        self._clock = clock
        self._contests = ContestRepository(session)
        self._submissions = SubmissionRepository(session)
        self._ledger = PredictionLedger(session)
        self._engine = ScoringEngine(session)
        self._lifecycle = ContestLifecycle(session)
        self._aggregator = LeaderboardAggregator(session)

    # ------------------------------------------------------------------
    # Helpers

    @contextmanager
    def _write(self, contest_id: str) -> Iterator[None]:
        with self._locks.hold(contest_id):
            # rows loaded before the lock may predate another session's commit
            self._session.expire_all()
            try:
                yield
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            finally:
                if self._cache is not None:
                    self._cache.invalidate(contest_id)

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _require_contest(self, contest_id: str) -> Contest:
        contest = self._contests.get_contest(contest_id)
        if contest is None:
            raise ContestNotFound(f"contest {contest_id} does not exist")
        return contest

    def _require_question(self, question_id: str) -> Question:
        question = self._contests.get_question(question_id)
        if question is None:
            raise QuestionNotFound(f"question {question_id} does not exist")
        return question

    def _contest_of(self, question_id: str) -> str:
        contest_id = self._contests.contest_id_for_question(question_id)
        if contest_id is None:
            raise QuestionNotFound(f"question {question_id} does not exist")
        return contest_id

    def _summary(self, contest: Contest) -> ContestSummary:
        return ContestSummary(
            contest_id=contest.contest_id,
            name=contest.name,
            description=contest.description,
            status=contest.status,
            starts_at=as_utc(contest.starts_at),
            ends_at=as_utc(contest.ends_at),
            question_count=len(contest.questions),
            participant_count=self._contests.count_participants(contest.contest_id),
        )

    # ------------------------------------------------------------------
    # Configuration and registration

    def create_contest(self, definition: ContestDefinition) -> ContestSummary:
        with self._write(definition.contest_id):
            if self._contests.exists(definition.contest_id):
                raise InvalidContestDefinition(f"contest {definition.contest_id} already exists")
            for question in definition.questions:
                if self._contests.get_question(question.question_id) is not None:
                    raise InvalidContestDefinition(
                        f"question {question.question_id} already belongs to another contest"
                    )
            contest = self._contests.create_contest(definition)
            logger.info(
                "Created contest {} with {} questions", contest.contest_id, len(definition.questions)
            )
            summary = self._summary(contest)
        return summary

    def get_contest(self, contest_id: str) -> ContestSummary:
        return self._summary(self._require_contest(contest_id))

    def list_contests(
        self,
        *,
        statuses: Sequence[ContestStatus] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ContestSummary]:
        contests = self._contests.list_contests(statuses=statuses, limit=limit, offset=offset)
        return [self._summary(contest) for contest in contests]

    def register_participant(
        self,
        contest_id: str,
        participant_id: str,
        *,
        display_name: str | None = None,
        joined_at: datetime | None = None,
    ) -> Registration:
        with self._write(contest_id):
            participant = self._ledger.register(
                contest_id,
                participant_id,
                display_name=display_name,
                joined_at=as_utc(joined_at) if joined_at is not None else self._now(),
            )
            registration = Registration(
                contest_id=participant.contest_id,
                participant_id=participant.participant_id,
                display_name=participant.display_name,
                joined_at=as_utc(participant.joined_at),
            )
        return registration

    # ------------------------------------------------------------------
    # Submissions

    def submit_prediction(
        self,
        participant_id: str,
        question_id: str,
        choice: str,
        confidence: int,
        *,
        reasoning: str | None = None,
        contest_id: str | None = None,
    ) -> SubmissionReceipt:
        owner = self._contest_of(question_id)
        if contest_id is not None and owner != contest_id:
            raise QuestionNotFound(f"question {question_id} does not belong to contest {contest_id}")
        with self._write(owner):
            now = self._now()
            self._lifecycle.advance(self._require_contest(owner), now)
            receipt = self._ledger.submit(
                participant_id,
                question_id,
                choice,
                confidence,
                now=now,
                reasoning=reasoning,
            )
        return SubmissionReceipt(
            submission_id=receipt.submission_id,
            created=receipt.created,
            is_late=receipt.is_late,
        )

    def get_participant_history(self, contest_id: str, participant_id: str) -> ParticipantHistory:
        submissions = self._ledger.history(contest_id, participant_id)
        streak = self._submissions.get_streak(contest_id, participant_id)
        return ParticipantHistory(
            contest_id=contest_id,
            participant_id=participant_id,
            total_score=sum(submission.score or 0 for submission in submissions),
            current_streak=streak.current_streak if streak else 0,
            longest_streak=streak.longest_streak if streak else 0,
            submissions=[
                Submission(
                    submission_id=submission.submission_id,
                    question_id=submission.question_id,
                    ordinal=submission.question.ordinal,
                    choice=submission.choice,
                    confidence=submission.confidence,
                    reasoning=submission.reasoning,
                    is_late=submission.is_late,
                    submitted_at=as_utc(submission.submitted_at),
                    updated_at=as_utc(submission.updated_at),
                    question_status=submission.question.status,
                    resolved_outcome=submission.question.resolved_outcome,
                    score=submission.score,
                    is_correct=submission.is_correct,
                    streak_bonus=submission.streak_bonus,
                    oracle_beat=submission.oracle_beat,
                )
                for submission in submissions
            ],
        )

    # ------------------------------------------------------------------
    # Results and lifecycle

    def resolve(
        self,
        question_id: str,
        outcome: str,
        *,
        resolved_at: datetime | None = None,
        partial_credit_options: Sequence[str] = (),
    ) -> ResolutionOutcome:
        """Record a game result and run every scoring pass it unblocks."""

        contest_id = self._contest_of(question_id)
        with self._write(contest_id):
            question = self._require_question(question_id)
            contest = question.contest
            now = self._now()
            self._lifecycle.advance(contest, now)

            skipped = self._skip_reason(contest, question, outcome)
            if skipped is None:
                unknown = [
                    option
                    for option in (outcome, *partial_credit_options)
                    if option not in question.options
                ]
                if unknown:
                    raise InvalidChoice(f"{unknown} are not options of question {question_id}")

                self._lifecycle.begin_evaluation(contest, now)
                question.status = QuestionStatus.RESOLVED.value
                question.resolved_outcome = outcome
                question.partial_credit_options = list(partial_credit_options) or None
                question.resolved_at = as_utc(resolved_at) if resolved_at is not None else now
                logger.info("Question {} resolved to '{}'", question_id, outcome)

            scored: list[str] = []
            if contest_status(contest) is ContestStatus.EVALUATING:
                scored = [evaluation.question_id for evaluation in self._engine.evaluate_ready(contest, at=now)]
        finalized = self._finalize_if_ready(contest_id, at=now)

        if skipped is None:
            skipped = "scored" if question_id in scored else "deferred"
        return ResolutionOutcome(
            question_id=question_id,
            contest_id=contest_id,
            status=skipped,
            scored_questions=scored,
            finalized=finalized,
        )

    def _skip_reason(self, contest: Contest, question: Question, outcome: str) -> str | None:
        """Why a result for ``question`` cannot be applied, or ``None`` when it can."""

        status = contest_status(contest)
        if status in _IGNORED_RESULT_STATUSES:
            logger.warning(
                "Ignoring result for question {}: contest {} is {}",
                question.question_id,
                contest.contest_id,
                status.value,
            )
            return "ignored"
        if question.status == QuestionStatus.VOID.value:
            logger.warning("Ignoring result for void question {}", question.question_id)
            return "ignored"
        if question.status == QuestionStatus.RESOLVED.value:
            notice = DuplicateResolution(
                f"question {question.question_id} already resolved to "
                f"'{question.resolved_outcome}'; ignoring '{outcome}'"
            )
            logger.warning("{}: {}", notice.code, notice)
            return "duplicate"
        return None

    def advance_contest(self, contest_id: str, now: datetime | None = None) -> AdvanceReport:
        """Apply time-driven transitions and any scoring they unblock."""

        at = as_utc(now) if now is not None else self._now()
        with self._write(contest_id):
            contest = self._require_contest(contest_id)
            report = self._lifecycle.advance(contest, at)
            scored: list[str] = []
            if contest_status(contest) is ContestStatus.EVALUATING:
                scored = [evaluation.question_id for evaluation in self._engine.evaluate_ready(contest, at=at)]
        finalized = self._finalize_if_ready(contest_id, at=at)
        return AdvanceReport(
            contest_id=contest_id,
            status=contest.status,
            transitions=report.transitions,
            voided_questions=report.voided_questions,
            scored_questions=scored,
            finalized=finalized,
        )

    def cancel_contest(self, contest_id: str) -> ContestSummary:
        with self._write(contest_id):
            contest = self._require_contest(contest_id)
            self._lifecycle.cancel(contest, at=self._now())
            summary = self._summary(contest)
        return summary

    def finalize_contest(self, contest_id: str) -> bool:
        """Finalize now if every question is settled; raises on payout mismatch."""

        with self._write(contest_id):
            contest = self._require_contest(contest_id)
            if not self._lifecycle.ready_to_finalize(contest):
                return False
            self._finalize(contest, at=self._now())
        return True

    def _finalize_if_ready(self, contest_id: str, *, at: datetime | None = None) -> bool:
        try:
            with self._write(contest_id):
                contest = self._require_contest(contest_id)
                if not self._lifecycle.ready_to_finalize(contest):
                    return False
                self._finalize(contest, at=at or self._now())
        except PayoutSumMismatch:
            logger.error("Finalization of contest {} halted; awaiting manual reconciliation", contest_id)
            return False
        return True

    def _finalize(self, contest: Contest, *, at: datetime) -> None:
        if contest.finalized_at is not None:
            return

        contest_id = contest.contest_id
        pool = prize_pool_from_json(contest.prize_pool)
        leaderboard = self._aggregator.recompute(contest_id, with_payouts=False)
        payouts = calculate_payouts(leaderboard, pool, contest_id=contest_id)
        amounts = {line.participant_id: line.amount for line in payouts}
        for entry in leaderboard:
            entry.potential_payout = amounts.get(entry.participant_id)

        questions = self._contests.list_questions(contest_id)
        stats = ContestStats(
            total_participants=len(leaderboard),
            scored_questions=sum(1 for question in questions if question.scored_at is not None),
            void_questions=sum(1 for question in questions if question.status == QuestionStatus.VOID.value),
            total_prize_pool=pool.total,
            currency=pool.currency,
            top_accuracy=_leaders_by(leaderboard, lambda entry: entry.accuracy),
            top_streak=_leaders_by(leaderboard, lambda entry: entry.longest_streak),
        )
        self._contests.save_result(
            ContestResultData(
                contest_id=contest_id,
                finalized_at=at,
                currency=pool.currency,
                total_amount=pool.total,
                leaderboard=[entry.to_snapshot() for entry in leaderboard],
                payouts=payouts,
                stats=stats.to_dict(),
            )
        )
        self._lifecycle.transition(contest, ContestStatus.FINALIZED, at=at)
        logger.info(
            "Finalized contest {}: {} {} paid to {} participants",
            contest_id,
            pool.total,
            pool.currency,
            len(payouts),
        )

    # ------------------------------------------------------------------
    # Reads

    def get_leaderboard(self, contest_id: str) -> Leaderboard:
        if self._cache is None:
            return self._build_leaderboard(contest_id)
        return self._cache.get_or_set(contest_id, lambda: self._build_leaderboard(contest_id))

    def _build_leaderboard(self, contest_id: str) -> Leaderboard:
        self._session.expire_all()
        contest = self._require_contest(contest_id)
        with_payouts = contest_status(contest) is not ContestStatus.CANCELLED
        entries = self._aggregator.recompute(contest_id, with_payouts=with_payouts)
        return Leaderboard(
            contest_id=contest_id,
            status=contest.status,
            generated_at=self._now(),
            entries=[_entry_schema(entry) for entry in entries],
        )

    def get_contest_result(self, contest_id: str) -> ContestResult | None:
        """The persisted result, or ``None`` while the contest has not finalized."""

        self._require_contest(contest_id)
        record = self._contests.get_result(contest_id)
        if record is None:
            return None
        return ContestResult(
            contest_id=record.contest_id,
            finalized_at=as_utc(record.finalized_at),
            currency=record.currency,
            total_amount=record.total_amount,
            leaderboard=[LeaderboardEntry.model_validate(row) for row in record.leaderboard_snapshot],
            payouts=[
                Payout.model_validate(line)
                for line in sorted(record.payouts, key=lambda line: (line.rank, line.participant_id))
            ],
            stats=record.stats,
        )

    def get_contest_status(self, contest_id: str) -> str:
        return self._require_contest(contest_id).status

    def service_status(self) -> ServiceStatus:
        return ServiceStatus(
            environment=get_settings().environment,
            contests=self._contests.count_by_status(),
            cached_leaderboards=len(self._cache) if self._cache is not None else 0,
            generated_at=self._now(),
        )


__all__ = ["Clock", "ContestService"]
