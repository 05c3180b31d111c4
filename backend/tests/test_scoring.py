from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.domain import ScoringRules, StreakBonusRules
from app.domain.errors import EvaluationError, ScoringError
from app.models import QuestionStatus
from app.repositories import ContestRepository, SubmissionRepository
from app.services.scoring import (
    ScoringEngine,
    round_half_up,
    score_submission,
    streak_bonus_for,
)


def _question(**overrides):
    values = {
        "question_id": "q1",
        "category": "football",
        "difficulty": "medium",
        "oracle_choice": "home",
        "resolved_outcome": "away",
        "partial_credit_options": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _submission(choice: str = "away", confidence: int = 100, is_late: bool = False):
    return SimpleNamespace(submission_id="s1", choice=choice, confidence=confidence, is_late=is_late)


def test_round_half_up_rounds_halves_away_from_zero():
    """Verify halves round up instead of to the nearest even integer."""
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(Decimal("3.5")) == 4
    assert round_half_up(Decimal("2.49")) == 2


def test_streak_bonus_example_sequence():
    """Verify bonuses of 2, 4 and 6 on streak positions three to five."""
    rules = ScoringRules(
        correct_prediction=10,
        streak_bonus=StreakBonusRules(min_streak=3, bonus_per_correct=2, max_bonus=10),
    )
    assert [streak_bonus_for(rules, before) for before in (0, 1, 2, 3, 4)] == [0, 0, 2, 4, 6]
    assert streak_bonus_for(rules, 10) == 10


def test_streak_bonus_disabled():
    """Verify no bonus is awarded when streak bonuses are switched off."""
    rules = ScoringRules(
        streak_bonus=StreakBonusRules(enabled=False, min_streak=1, bonus_per_correct=5, max_bonus=50)
    )
    assert streak_bonus_for(rules, 4) == 0


def test_score_combines_all_factors():
    """Verify the multiplicative factors and additive bonuses are combined once."""
    rules = ScoringRules(
        correct_prediction=10,
        confidence_multiplier=True,
        category_weights={"football": 1.5},
        difficulty_multipliers={"medium": 1.2},
        oracle_beat_bonus=3,
        streak_bonus=StreakBonusRules(min_streak=2, bonus_per_correct=1, max_bonus=5),
    )

    breakdown = score_submission(rules, _question(), _submission(confidence=75), streak_before=1)

    # 10 * 0.75 * 1.5 * 1.2 = 13.5, + streak 1 + oracle 3 = 17.5
    assert breakdown.raw_score == Decimal("17.5")
    assert breakdown.final_score == 18
    assert breakdown.is_correct is True
    assert breakdown.streak_bonus == 1
    assert breakdown.oracle_beat is True


def test_score_with_zero_confidence_keeps_bonuses():
    """Verify zero confidence zeroes the base but still pays additive bonuses."""
    rules = ScoringRules(confidence_multiplier=True, oracle_beat_bonus=4)

    breakdown = score_submission(rules, _question(), _submission(confidence=0), streak_before=0)

    assert breakdown.final_score == 4


def test_incorrect_pick_scores_zero():
    """Verify an incorrect pick earns nothing, even when the oracle was also wrong."""
    rules = ScoringRules(oracle_beat_bonus=5)

    breakdown = score_submission(rules, _question(), _submission(choice="draw"), streak_before=7)

    assert breakdown.final_score == 0
    assert breakdown.is_correct is False
    assert breakdown.oracle_beat is False


def test_matching_the_oracle_earns_no_oracle_bonus():
    """Verify the oracle bonus requires disagreeing with the oracle's choice."""
    rules = ScoringRules(oracle_beat_bonus=5)
    question = _question(resolved_outcome="home")

    breakdown = score_submission(rules, question, _submission(choice="home"), streak_before=0)

    assert breakdown.final_score == 10
    assert breakdown.oracle_beat is False


def test_partial_credit_is_not_correct():
    """Verify a partial-credit option earns partial points but counts as incorrect."""
    rules = ScoringRules(partial_credit=4, oracle_beat_bonus=5)
    question = _question(partial_credit_options=["draw"])

    breakdown = score_submission(rules, question, _submission(choice="draw"), streak_before=3)

    assert breakdown.final_score == 4
    assert breakdown.is_partial is True
    assert breakdown.is_correct is False
    assert breakdown.streak_bonus == 0


def test_late_entries_never_earn_streak_bonus():
    """Verify late submissions are scored without a streak bonus."""
    rules = ScoringRules(
        streak_bonus=StreakBonusRules(min_streak=1, bonus_per_correct=2, max_bonus=10)
    )

    on_time = score_submission(rules, _question(), _submission(), streak_before=2)
    late = score_submission(rules, _question(), _submission(is_late=True), streak_before=2)

    assert on_time.streak_bonus == 6
    assert late.streak_bonus == 0
    assert late.final_score == 10


def test_negative_multiplier_raises_scoring_error():
    """Verify malformed rules that yield a negative score abort scoring."""
    rules = ScoringRules.model_construct(
        **{**ScoringRules().__dict__, "category_weights": {"football": -2.0}}
    )

    with pytest.raises(ScoringError):
        score_submission(rules, _question(), _submission(), streak_before=0)


def test_infinite_multiplier_raises_scoring_error():
    """Verify a non-finite weight cannot produce a score."""
    rules = ScoringRules.model_construct(
        **{**ScoringRules().__dict__, "difficulty_multipliers": {"medium": float("inf")}}
    )

    with pytest.raises(ScoringError):
        score_submission(rules, _question(), _submission(), streak_before=0)


def test_rules_reject_negative_weights():
    """Verify validated rules refuse negative multipliers up front."""
    with pytest.raises(ValueError):
        ScoringRules(category_weights={"football": -1.0})


# ----------------------------------------------------------------------
# Engine passes against the database


def _resolve(question, outcome: str) -> None:
    question.status = QuestionStatus.RESOLVED.value
    question.resolved_outcome = outcome


def _prepare(service, open_contest, *, participants, picks, **definition_kwargs):
    definition = open_contest(participants, **definition_kwargs)
    for participant_id, choices in picks.items():
        for ordinal, choice in enumerate(choices, start=1):
            service.submit_prediction(participant_id, f"{definition.contest_id}-q{ordinal}", choice, 100)
    return definition


def test_evaluate_question_is_idempotent(session, service, open_contest, clock):
    """Verify a second pass over a scored question changes nothing."""
    definition = _prepare(
        service,
        open_contest,
        participants=["alice", "bob"],
        picks={"alice": ["away"], "bob": ["home"]},
    )
    contests = ContestRepository(session)
    question = contests.get_question(f"{definition.contest_id}-q1")
    _resolve(question, "away")
    rules = definition.scoring_rules
    engine = ScoringEngine(session)

    first = engine.evaluate_question(question, rules, at=clock())
    scores = {s.participant_id: s.score for s in SubmissionRepository(session).list_for_question(question.question_id)}
    streak = engine.streaks.get(definition.contest_id, "alice")
    second = engine.evaluate_question(question, rules, at=clock())

    assert first.scored == 2
    assert second.already_evaluated is True
    assert second.scored == 0
    assert scores == {"alice": 10, "bob": 0}
    assert {
        s.participant_id: s.score for s in SubmissionRepository(session).list_for_question(question.question_id)
    } == scores
    assert engine.streaks.get(definition.contest_id, "alice") == streak == 1


def test_evaluate_question_requires_resolution(session, service, open_contest, clock):
    """Verify open questions cannot be scored."""
    definition = _prepare(service, open_contest, participants=["alice"], picks={"alice": ["away"]})
    question = ContestRepository(session).get_question(f"{definition.contest_id}-q1")

    with pytest.raises(EvaluationError):
        ScoringEngine(session).evaluate_question(question, definition.scoring_rules, at=clock())


def test_evaluate_ready_stops_at_first_open_question(session, service, open_contest, clock):
    """Verify later resolutions wait until every earlier question is settled."""
    definition = _prepare(
        service,
        open_contest,
        participants=["alice"],
        picks={"alice": ["away", "away", "away"]},
        question_count=3,
    )
    contests = ContestRepository(session)
    contest = contests.get_contest(definition.contest_id)
    _resolve(contests.get_question(f"{definition.contest_id}-q2"), "away")
    engine = ScoringEngine(session)

    assert engine.evaluate_ready(contest, at=clock()) == []
    assert [q.question_id for q in engine.pending_questions(contest)] == [f"{definition.contest_id}-q2"]

    _resolve(contests.get_question(f"{definition.contest_id}-q1"), "away")
    evaluations = engine.evaluate_ready(contest, at=clock())

    assert [evaluation.ordinal for evaluation in evaluations] == [1, 2]
    assert engine.streaks.get(definition.contest_id, "alice") == 2
    assert engine.pending_questions(contest) == []
