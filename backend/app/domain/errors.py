"""Errors raised by the contest engine."""

from __future__ import annotations


class ContestEngineError(Exception):
    """Base class for every error the engine raises on purpose."""

    code = "contest_engine_error"


# ----------------------------------------------------------------------
# Lookups


class ContestNotFound(ContestEngineError, LookupError):
    code = "contest_not_found"


class QuestionNotFound(ContestEngineError, LookupError):
    code = "question_not_found"


# ----------------------------------------------------------------------
# Submission time


class SubmissionError(ContestEngineError):
    """Raised synchronously to the submitter; never retried."""

    code = "submission_error"


class DeadlinePassed(SubmissionError):
    code = "deadline_passed"


class InvalidConfidence(SubmissionError):
    code = "invalid_confidence"


class SubmissionLocked(SubmissionError):
    code = "submission_locked"


class InvalidChoice(SubmissionError):
    code = "invalid_choice"


class ContestNotOpen(SubmissionError):
    code = "contest_not_open"


class ParticipantNotRegistered(SubmissionError):
    code = "participant_not_registered"


class AlreadyRegistered(SubmissionError):
    code = "already_registered"


class ContestFull(SubmissionError):
    code = "contest_full"


# ----------------------------------------------------------------------
# Resolution and evaluation


class DuplicateResolution(ContestEngineError):
    """A question received a second outcome; the first one stands."""

    code = "duplicate_resolution"


class UnresolvedQuestionAtWindowClose(ContestEngineError):
    """A question was still open when its contest window closed and was voided."""

    code = "unresolved_question_at_window_close"


class EvaluationError(ContestEngineError):
    """Fatal to the running evaluation pass of a single contest."""

    code = "evaluation_error"


class ScoringError(EvaluationError):
    code = "scoring_error"


class StreakOrderViolation(EvaluationError):
    code = "streak_order_violation"


class PayoutSumMismatch(EvaluationError):
    """Payouts do not add up to the pool; finalization halts for manual reconciliation."""

    code = "payout_sum_mismatch"


# ----------------------------------------------------------------------
# Configuration and lifecycle


class InvalidContestDefinition(ContestEngineError, ValueError):
    code = "invalid_contest_definition"


class InvalidTransition(ContestEngineError):
    code = "invalid_transition"


__all__ = [
    "AlreadyRegistered",
    "ContestEngineError",
    "ContestFull",
    "ContestNotFound",
    "ContestNotOpen",
    "DeadlinePassed",
    "DuplicateResolution",
    "EvaluationError",
    "InvalidChoice",
    "InvalidConfidence",
    "InvalidContestDefinition",
    "InvalidTransition",
    "ParticipantNotRegistered",
    "PayoutSumMismatch",
    "QuestionNotFound",
    "ScoringError",
    "StreakOrderViolation",
    "SubmissionError",
    "SubmissionLocked",
    "UnresolvedQuestionAtWindowClose",
]
