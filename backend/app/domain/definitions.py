"""Contest configuration supplied by the contest management workflow."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .rules import PrizePool, ScoringRules


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class QuestionDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    question_id: str = Field(..., min_length=1)
    ordinal: int = Field(..., ge=1)
    prompt: str
    category: str | None = None
    difficulty: str | None = None
    options: tuple[str, ...] = Field(..., min_length=2)
    oracle_choice: str | None = None
    starts_at: datetime | None = None

    @field_validator("starts_at")
    @classmethod
    def _normalize_starts_at(cls, value: datetime | None) -> datetime | None:
        return _coerce_utc(value)

    @model_validator(mode="after")
    def _validate_options(self) -> "QuestionDefinition":
        if len(set(self.options)) != len(self.options):
            raise ValueError(f"question {self.question_id} lists duplicate options")
        if self.oracle_choice is not None and self.oracle_choice not in self.options:
            raise ValueError(
                f"oracle choice '{self.oracle_choice}' is not an option of question {self.question_id}"
            )
        return self


class ContestDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    contest_id: str = Field(..., min_length=1)
    name: str
    description: str | None = None
    starts_at: datetime
    ends_at: datetime
    scoring_rules: ScoringRules = Field(default_factory=ScoringRules)
    prize_pool: PrizePool
    questions: tuple[QuestionDefinition, ...] = Field(..., min_length=1)
    max_participants: int | None = Field(default=None, ge=1)
    entry_fee: Decimal | None = Field(default=None, ge=0)

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _normalize_window(cls, value: datetime) -> datetime:
        return _coerce_utc(value)

    @model_validator(mode="after")
    def _validate_contest(self) -> "ContestDefinition":
        if self.ends_at <= self.starts_at:
            raise ValueError("contest must end after it starts")
        question_ids = [question.question_id for question in self.questions]
        if len(set(question_ids)) != len(question_ids):
            raise ValueError("question ids must be unique within a contest")
        ordinals = [question.ordinal for question in self.questions]
        if len(set(ordinals)) != len(ordinals):
            raise ValueError("question ordinals must be unique within a contest")
        return self

    def ordered_questions(self) -> list[QuestionDefinition]:
        return sorted(self.questions, key=lambda question: question.ordinal)


__all__ = ["ContestDefinition", "QuestionDefinition"]
