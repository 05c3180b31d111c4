from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from app.domain.errors import (
    ContestNotFound,
    InvalidChoice,
    InvalidContestDefinition,
    ScoringError,
    SubmissionLocked,
)
from app.models import ContestStatus, QuestionStatus
from app.repositories import ContestRepository, SubmissionRepository
from app.services.contest_service import ContestService
from conftest import CONTEST_END


def _play_out(service, definition, picks, outcomes):
    contest_id = definition.contest_id
    for participant_id, choices in picks.items():
        for ordinal, choice in enumerate(choices, start=1):
            service.submit_prediction(participant_id, f"{contest_id}-q{ordinal}", choice, 100)
    return [
        service.resolve(f"{contest_id}-q{ordinal}", outcome)
        for ordinal, outcome in enumerate(outcomes, start=1)
    ]


def test_create_contest_rejects_duplicates(service, make_definition):
    """Verify a contest id can only be created once."""
    definition = make_definition()
    summary = service.create_contest(definition)

    assert summary.status == ContestStatus.PENDING.value
    assert summary.question_count == 4
    with pytest.raises(InvalidContestDefinition):
        service.create_contest(definition)


def test_unknown_contest_lookups_raise(service):
    """Verify reads against unknown contests raise ContestNotFound."""
    with pytest.raises(ContestNotFound):
        service.get_leaderboard("missing")
    with pytest.raises(ContestNotFound):
        service.get_contest_result("missing")


def test_full_contest_finalizes_once_with_exact_payouts(session, service, open_contest):
    """Verify the last result finalizes the contest and pays the pool exactly."""
    definition = open_contest(
        ["alice", "bob", "carol"],
        rules={"streak_bonus": {"min_streak": 3, "bonus_per_correct": 2, "max_bonus": 10}},
        total="1000.00",
    )
    outcomes = _play_out(
        service,
        definition,
        picks={
            "alice": ["home", "home", "home", "home"],
            "bob": ["home", "away", "home", "away"],
            "carol": ["draw", "draw", "draw", "draw"],
        },
        outcomes=["home", "home", "home", "home"],
    )

    assert [outcome.status for outcome in outcomes] == ["scored"] * 4
    assert outcomes[-1].finalized is True
    assert not any(outcome.finalized for outcome in outcomes[:-1])

    result = service.get_contest_result(definition.contest_id)
    assert [entry.participant_id for entry in result.leaderboard] == ["alice", "bob", "carol"]
    # alice: 4 x 10 plus streak bonuses 2 and 4 on the third and fourth picks
    assert result.leaderboard[0].total_score == 46
    assert [(line.participant_id, line.amount) for line in result.payouts] == [
        ("alice", Decimal("500.00")),
        ("bob", Decimal("300.00")),
        ("carol", Decimal("200.00")),
    ]
    assert sum(line.amount for line in result.payouts) == result.total_amount
    assert result.stats["top_streak"] == ["alice"]

    # a replayed result after finalization changes nothing
    replay = service.resolve(f"{definition.contest_id}-q4", "away")
    assert replay.status == "ignored"
    assert service.finalize_contest(definition.contest_id) is False
    assert service.get_contest_result(definition.contest_id) == result
    assert len(ContestRepository(session).get_result(definition.contest_id).payouts) == 3


def test_duplicate_resolution_is_a_no_op(service, open_contest):
    """Verify a second result for a question is acknowledged without rescoring."""
    definition = open_contest(["alice"])
    outcomes = _play_out(service, definition, {"alice": ["home", "home"]}, ["home"])
    before = service.get_participant_history(definition.contest_id, "alice")

    duplicate = service.resolve(f"{definition.contest_id}-q1", "away")
    after = service.get_participant_history(definition.contest_id, "alice")

    assert outcomes[0].status == "scored"
    assert duplicate.status == "duplicate"
    assert after == before


def test_out_of_order_result_is_deferred(service, open_contest):
    """Verify a later question waits for the earlier one before it is scored."""
    definition = open_contest(["alice"])
    contest_id = definition.contest_id
    service.submit_prediction("alice", f"{contest_id}-q1", "home", 100)
    service.submit_prediction("alice", f"{contest_id}-q2", "home", 100)

    deferred = service.resolve(f"{contest_id}-q2", "home")
    scored = service.resolve(f"{contest_id}-q1", "home")

    assert deferred.status == "deferred"
    assert deferred.scored_questions == []
    assert scored.status == "scored"
    assert scored.scored_questions == [f"{contest_id}-q1", f"{contest_id}-q2"]


def test_result_for_pending_contest_is_ignored(service, make_definition):
    """Verify results are ignored before the contest opens."""
    definition = make_definition()
    service.create_contest(definition)

    outcome = service.resolve(f"{definition.contest_id}-q1", "home")

    assert outcome.status == "ignored"


def test_unknown_outcome_is_rejected(session, service, open_contest):
    """Verify an outcome that is not an option leaves the question open."""
    definition = open_contest(["alice"])
    question_id = f"{definition.contest_id}-q1"

    with pytest.raises(InvalidChoice):
        service.resolve(question_id, "abandoned")

    question = ContestRepository(session).get_question(question_id)
    assert question.status == QuestionStatus.OPEN.value


def test_partial_credit_from_resolution(service, open_contest):
    """Verify partial-credit options named by the result earn partial points."""
    definition = open_contest(["alice", "bob"], rules={"partial_credit": 4})
    _play_out(service, definition, {"alice": ["draw"], "bob": ["away"]}, [])

    service.resolve(f"{definition.contest_id}-q1", "home", partial_credit_options=["draw"])
    leaderboard = service.get_leaderboard(definition.contest_id)

    totals = {entry.participant_id: entry.total_score for entry in leaderboard.entries}
    assert totals == {"alice": 4, "bob": 0}


def test_scoring_error_rolls_back_the_resolution(session, service, open_contest):
    """Verify a failing scoring pass leaves the question unresolved."""
    definition = open_contest(["alice"])
    service.submit_prediction("alice", f"{definition.contest_id}-q1", "home", 100)
    contest = ContestRepository(session).get_contest(definition.contest_id)
    contest.scoring_rules = {**contest.scoring_rules, "category_weights": {"football": -1.0}}
    session.commit()

    with pytest.raises((ScoringError, ValueError)):
        service.resolve(f"{definition.contest_id}-q1", "home")

    question = ContestRepository(session).get_question(f"{definition.contest_id}-q1")
    assert question.status == QuestionStatus.OPEN.value
    assert question.scored_at is None


def test_contest_without_participants_halts_finalization(service, make_definition, clock):
    """Verify an unpayable contest stays in evaluation instead of finalizing."""
    definition = make_definition()
    service.create_contest(definition)
    clock.set(CONTEST_END + timedelta(minutes=5))

    report = service.advance_contest(definition.contest_id)

    assert report.finalized is False
    assert report.status == ContestStatus.EVALUATING.value
    assert service.get_contest_result(definition.contest_id) is None


def test_leaderboard_is_cached_until_the_next_write(service, open_contest, leaderboard_cache):
    """Verify reads hit the cache and writes invalidate it."""
    definition = open_contest(["alice"])
    contest_id = definition.contest_id

    first = service.get_leaderboard(contest_id)
    assert service.get_leaderboard(contest_id) is first
    assert contest_id in leaderboard_cache

    service.register_participant(contest_id, "bob")
    refreshed = service.get_leaderboard(contest_id)

    assert refreshed is not first
    assert [entry.participant_id for entry in refreshed.entries] == ["alice", "bob"]


def test_services_share_contest_locks(session, locks, open_contest, service):
    """Verify every service built from one registry uses the same per-contest lock."""
    definition = open_contest(["alice"])
    other = ContestService(session, locks=locks)

    assert locks.lock_for(definition.contest_id) is locks.lock_for(definition.contest_id)
    assert other.get_contest(definition.contest_id).participant_count == 1
    assert len(locks) >= 1


def test_second_result_from_another_session_is_a_duplicate(
    session_factory, other_session, other_service, service, open_contest
):
    """Verify a session holding an open copy of the question cannot resolve it again."""
    definition = open_contest(["alice"])
    question_id = f"{definition.contest_id}-q1"
    held = ContestRepository(other_session).get_question(question_id)
    assert held.status == QuestionStatus.OPEN.value

    service.resolve(question_id, "home")
    second = other_service.resolve(question_id, "away")

    assert second.status == "duplicate"
    with session_factory() as fresh:
        assert ContestRepository(fresh).get_question(question_id).resolved_outcome == "home"


def test_resubmission_from_another_session_after_resolution_is_locked(
    session_factory, other_session, other_service, service, open_contest
):
    """Verify a resolved question rejects an update from a session loaded before the result."""
    definition = open_contest(["alice"])
    question_id = f"{definition.contest_id}-q1"
    service.submit_prediction("alice", question_id, "home", 60)
    assert ContestRepository(other_session).get_question(question_id).status == QuestionStatus.OPEN.value

    service.resolve(question_id, "home")
    with pytest.raises(SubmissionLocked):
        other_service.submit_prediction("alice", question_id, "away", 90)

    with session_factory() as fresh:
        stored = SubmissionRepository(fresh).get_submission("alice", question_id)
        assert (stored.choice, stored.confidence) == ("home", 60)


def test_leaderboard_built_across_a_write_is_not_cached(
    service, other_service, open_contest, leaderboard_cache
):
    """Verify standings read before a concurrent resolution are not kept in the cache."""
    definition = open_contest(["alice"])
    contest_id = definition.contest_id
    question_id = f"{contest_id}-q1"
    service.submit_prediction("alice", question_id, "home", 100)
    build = service._build_leaderboard
    raced: list[str] = []

    def build_while_resolving(target: str):
        board = build(target)
        if not raced:
            raced.append(target)
            other_service.resolve(question_id, "home")
        return board

    service._build_leaderboard = build_while_resolving
    stale = service.get_leaderboard(contest_id)

    assert stale.entries[0].total_score == 0
    assert contest_id not in leaderboard_cache
    fresh = service.get_leaderboard(contest_id)
    assert fresh.status == ContestStatus.EVALUATING.value
    assert fresh.entries[0].total_score > 0
    assert service.get_leaderboard(contest_id) is fresh


def test_service_status_counts_contests(service, make_definition, open_contest):
    """Verify the status report groups contests by lifecycle status."""
    open_contest(["alice"])
    service.create_contest(make_definition("contest-2"))

    status = service.service_status()

    assert status.contests[ContestStatus.ACTIVE.value] == 1
    assert status.contests[ContestStatus.PENDING.value] == 1
    assert status.contests[ContestStatus.FINALIZED.value] == 0
