from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field


class RegistrationRequest(BaseModel):
    participant_id: str = Field(..., min_length=1)
    display_name: str | None = None
    joined_at: datetime | None = None


class Registration(BaseModel):
    contest_id: str
    participant_id: str
    display_name: str | None = None
    joined_at: datetime

    model_config = {"from_attributes": True}


class SubmissionRequest(BaseModel):
    participant_id: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)
    choice: str
    # range is enforced by the ledger so the caller receives InvalidConfidence
    confidence: int
    reasoning: str | None = None


class SubmissionReceipt(BaseModel):
    submission_id: str
    created: bool
    is_late: bool = False


class Submission(BaseModel):
    submission_id: str
    question_id: str
    ordinal: int
    choice: str
    confidence: int
    reasoning: str | None = None
    is_late: bool
    submitted_at: datetime
    updated_at: datetime
    question_status: str
    resolved_outcome: str | None = None
    score: int | None = None
    is_correct: bool | None = None
    streak_bonus: int | None = None
    oracle_beat: bool | None = None


class ParticipantHistory(BaseModel):
    contest_id: str
    participant_id: str
    total_score: int
    current_streak: int
    longest_streak: int
    submissions: list[Submission] = Field(default_factory=list)


class ResolutionRequest(BaseModel):
    outcome: str
    resolved_at: datetime | None = None
    partial_credit_options: list[str] = Field(default_factory=list)


class ResolutionOutcome(BaseModel):
    question_id: str
    contest_id: str
    status: Literal["scored", "deferred", "duplicate", "ignored"]
    scored_questions: list[str] = Field(default_factory=list)
    finalized: bool = False


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: str
    display_name: str | None = None
    total_score: int
    correct_count: int
    resolved_count: int
    accuracy: float | None = None
    current_streak: int
    longest_streak: int
    oracle_beats: int
    joined_at: datetime
    potential_payout: Decimal | None = None


class Leaderboard(BaseModel):
    contest_id: str
    status: str
    generated_at: datetime
    entries: list[LeaderboardEntry] = Field(default_factory=list)


class Payout(BaseModel):
    participant_id: str
    rank: int
    amount: Decimal

    model_config = {"from_attributes": True}


class ContestResult(BaseModel):
    contest_id: str
    status: Literal["finalized"] = "finalized"
    finalized_at: datetime
    currency: str
    total_amount: Decimal
    leaderboard: list[LeaderboardEntry]
    payouts: list[Payout]
    stats: dict[str, Any] | None = None


class PendingResult(BaseModel):
    contest_id: str
    status: Literal["pending"] = "pending"
    contest_status: str


class ContestSummary(BaseModel):
    contest_id: str
    name: str
    description: str | None = None
    status: str
    starts_at: datetime
    ends_at: datetime
    question_count: int
    participant_count: int


class AdvanceReport(BaseModel):
    contest_id: str
    status: str
    transitions: list[tuple[str, str]] = Field(default_factory=list)
    voided_questions: list[str] = Field(default_factory=list)
    scored_questions: list[str] = Field(default_factory=list)
    finalized: bool = False


class ServiceStatus(BaseModel):
    environment: str
    contests: dict[str, int]
    cached_leaderboards: int
    generated_at: datetime


class ErrorResponse(BaseModel):
    code: str
    detail: str
