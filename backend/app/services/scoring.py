"""Turn resolved questions into per-submission scores.

Every resolved question gets exactly one scoring pass. Questions are scored in
ordinal order so streaks reflect the order questions were posed, not the order
game results arrived in. A resolution that arrives ahead of an earlier, still
open question is recorded but waits until the gap is resolved or voided.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from app.domain import ScoringRules
from app.domain.errors import EvaluationError, ScoringError
from app.domain.rules import rules_from_json
from app.models import Contest, Question, QuestionStatus, Submission, utcnow
from app.repositories import ContestRepository, SubmissionRepository

from .streaks import StreakTracker

_HUNDRED = Decimal("100")
_ONE = Decimal("1")


def _to_decimal(value: Any) -> Decimal:
    # str() keeps 1.2 as Decimal("1.2") instead of its binary float expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(slots=True)
class ScoreBreakdown:
    is_correct: bool
    is_partial: bool
    base: int
    confidence_factor: Decimal
    category_weight: Decimal
    difficulty_factor: Decimal
    streak_bonus: int
    oracle_beat_bonus: int
    raw_score: Decimal
    final_score: int

    @property
    def oracle_beat(self) -> bool:
        return self.is_correct and self.oracle_beat_bonus > 0


def streak_bonus_for(rules: ScoringRules, streak_before: int) -> int:
    """Bonus for a correct pick made while ``streak_before`` picks were already correct."""

    streak_rules = rules.streak_bonus
    if not streak_rules.enabled:
        return 0
    streak_after = streak_before + 1
    if streak_after < streak_rules.min_streak:
        return 0
    steps = streak_after - streak_rules.min_streak + 1
    return min(streak_rules.max_bonus, steps * streak_rules.bonus_per_correct)


def score_submission(
    rules: ScoringRules,
    question: Question,
    submission: Submission,
    *,
    streak_before: int,
) -> ScoreBreakdown:
    is_correct = submission.choice == question.resolved_outcome
    partial_options = question.partial_credit_options or ()
    is_partial = not is_correct and submission.choice in partial_options

    if is_correct:
        base = rules.correct_prediction
    elif is_partial:
        base = rules.partial_credit
    else:
        base = 0

    if rules.confidence_multiplier:
        confidence_factor = _to_decimal(submission.confidence) / _HUNDRED
    else:
        confidence_factor = _ONE
    category_weight = _to_decimal(rules.category_weight(question.category))
    difficulty_factor = _to_decimal(rules.difficulty_factor(question.difficulty))

    streak_bonus = 0
    if is_correct and not submission.is_late:
        streak_bonus = streak_bonus_for(rules, streak_before)

    oracle_beat_bonus = 0
    if is_correct and question.oracle_choice is not None and question.oracle_choice != submission.choice:
        oracle_beat_bonus = rules.oracle_beat_bonus

    try:
        raw_score = (
            _to_decimal(base) * confidence_factor * category_weight * difficulty_factor
            + streak_bonus
            + oracle_beat_bonus
        )
    except InvalidOperation as exc:
        raise ScoringError(
            f"submission {submission.submission_id} on question {question.question_id} "
            "could not be scored; check the contest scoring rules"
        ) from exc
    if not raw_score.is_finite() or raw_score < 0:
        raise ScoringError(
            f"submission {submission.submission_id} on question {question.question_id} "
            f"produced an invalid score {raw_score}; check the contest scoring rules"
        )

    return ScoreBreakdown(
        is_correct=is_correct,
        is_partial=is_partial,
        base=base,
        confidence_factor=confidence_factor,
        category_weight=category_weight,
        difficulty_factor=difficulty_factor,
        streak_bonus=streak_bonus,
        oracle_beat_bonus=oracle_beat_bonus,
        raw_score=raw_score,
        final_score=round_half_up(raw_score),
    )


@dataclass(slots=True)
class QuestionEvaluation:
    question_id: str
    ordinal: int
    scored: int = 0
    skipped: int = 0
    already_evaluated: bool = False
    scores: dict[str, int] = field(default_factory=dict)


class ScoringEngine:
    """Run scoring passes for a contest; callers hold the contest's evaluation lock."""

    def __init__(self, session: Session) -> None:
        self._contests = ContestRepository(session)
        self._submissions = SubmissionRepository(session)
        self._streaks = StreakTracker(self._submissions)

    @property
    def streaks(self) -> StreakTracker:
        return self._streaks

    def evaluate_question(
        self,
        question: Question,
        rules: ScoringRules,
        *,
        at: datetime | None = None,
    ) -> QuestionEvaluation:
        evaluation = QuestionEvaluation(question_id=question.question_id, ordinal=question.ordinal)
        if question.scored_at is not None:
            evaluation.already_evaluated = True
            return evaluation
        if question.status != QuestionStatus.RESOLVED.value:
            raise EvaluationError(
                f"question {question.question_id} is {question.status}; only resolved questions can be scored"
            )

        scored_at = at or utcnow()
        for submission in self._submissions.list_for_question(question.question_id):
            if submission.score is not None:
                evaluation.skipped += 1
                continue

            streak_before = self._streaks.get(question.contest_id, submission.participant_id)
            breakdown = score_submission(
                rules, question, submission, streak_before=streak_before
            )
            submission.score = breakdown.final_score
            submission.is_correct = breakdown.is_correct
            submission.streak_bonus = breakdown.streak_bonus
            submission.oracle_beat = breakdown.oracle_beat
            submission.scored_at = scored_at
            self._streaks.record(
                question.contest_id,
                submission.participant_id,
                ordinal=question.ordinal,
                is_correct=breakdown.is_correct,
                at=scored_at,
            )
            evaluation.scored += 1
            evaluation.scores[submission.participant_id] = breakdown.final_score

        question.scored_at = scored_at
        logger.debug(
            "Scored question {} (#{}): {} submissions scored, {} skipped",
            question.question_id,
            question.ordinal,
            evaluation.scored,
            evaluation.skipped,
        )
        return evaluation

    def evaluate_ready(
        self,
        contest: Contest,
        *,
        rules: ScoringRules | None = None,
        at: datetime | None = None,
    ) -> list[QuestionEvaluation]:
        """Score every resolved question not blocked by an earlier open one."""

        if rules is None:
            rules = rules_from_json(contest.scoring_rules)
        evaluations: list[QuestionEvaluation] = []
        for question in self._contests.list_questions(contest.contest_id):
            if question.status == QuestionStatus.VOID.value:
                continue
            if question.status == QuestionStatus.OPEN.value:
                break
            if question.scored_at is not None:
                continue
            evaluations.append(self.evaluate_question(question, rules, at=at))
        return evaluations

    def pending_questions(self, contest: Contest) -> list[Question]:
        """Resolved questions still waiting on an earlier open question."""

        return [
            question
            for question in self._contests.list_questions(contest.contest_id)
            if question.status == QuestionStatus.RESOLVED.value and question.scored_at is None
        ]


__all__ = [
    "QuestionEvaluation",
    "ScoreBreakdown",
    "ScoringEngine",
    "round_half_up",
    "score_submission",
    "streak_bonus_for",
]
