from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class ContestStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EVALUATING = "evaluating"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


class QuestionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    VOID = "void"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; treat naive timestamps as UTC."""

    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Contest(Base):
    __tablename__ = "contests"

    contest_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ContestStatus.PENDING.value, index=True
    )
    scoring_rules: Mapped[dict] = mapped_column(JSON, nullable=False)
    prize_pool: Mapped[dict] = mapped_column(JSON, nullable=False)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    entry_fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    evaluating_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="contest",
        cascade="all, delete-orphan",
        order_by="Question.ordinal",
    )
    participants: Mapped[list["Participant"]] = relationship(
        "Participant", back_populates="contest", cascade="all, delete-orphan"
    )
    result: Mapped["ContestResultRecord | None"] = relationship(
        "ContestResultRecord", back_populates="contest", cascade="all, delete-orphan", uselist=False
    )


class Question(Base):
    __tablename__ = "questions"

    question_id: Mapped[str] = mapped_column(String, primary_key=True)
    contest_id: Mapped[str] = mapped_column(String, ForeignKey("contests.contest_id"), nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String, nullable=True)
    options: Mapped[list] = mapped_column(JSON, nullable=False)
    oracle_choice: Mapped[str | None] = mapped_column(String, nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=QuestionStatus.OPEN.value)
    resolved_outcome: Mapped[str | None] = mapped_column(String, nullable=True)
    partial_credit_options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    contest: Mapped[Contest] = relationship("Contest", back_populates="questions")
    submissions: Mapped[list["Submission"]] = relationship(
        "Submission", back_populates="question", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("contest_id", "ordinal", name="uq_question_ordinal"),
    )


class Participant(Base):
    __tablename__ = "participants"

    registration_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[str] = mapped_column(String, ForeignKey("contests.contest_id"), nullable=False)
    participant_id: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    contest: Mapped[Contest] = relationship("Contest", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("contest_id", "participant_id", name="uq_participant_registration"),
    )


class Submission(Base):
    __tablename__ = "submissions"

    submission_id: Mapped[str] = mapped_column(String, primary_key=True)
    contest_id: Mapped[str] = mapped_column(String, ForeignKey("contests.contest_id"), nullable=False)
    question_id: Mapped[str] = mapped_column(String, ForeignKey("questions.question_id"), nullable=False)
    participant_id: Mapped[str] = mapped_column(String, nullable=False)
    choice: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    streak_bonus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oracle_beat: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    question: Mapped[Question] = relationship("Question", back_populates="submissions")

    __table_args__ = (
        UniqueConstraint("participant_id", "question_id", name="uq_submission_scope"),
    )


class StreakState(Base):
    __tablename__ = "streak_states"

    contest_id: Mapped[str] = mapped_column(
        String, ForeignKey("contests.contest_id"), primary_key=True
    )
    participant_id: Mapped[str] = mapped_column(String, primary_key=True)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_question_ordinal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ContestResultRecord(Base):
    __tablename__ = "contest_results"

    contest_id: Mapped[str] = mapped_column(
        String, ForeignKey("contests.contest_id"), primary_key=True
    )
    finalized_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    leaderboard_snapshot: Mapped[list] = mapped_column(JSON, nullable=False)
    stats: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    contest: Mapped[Contest] = relationship("Contest", back_populates="result")
    payouts: Mapped[list["PayoutRecord"]] = relationship(
        "PayoutRecord",
        back_populates="result",
        cascade="all, delete-orphan",
        order_by="PayoutRecord.rank",
    )


class PayoutRecord(Base):
    __tablename__ = "contest_payouts"

    payout_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[str] = mapped_column(
        String, ForeignKey("contest_results.contest_id"), nullable=False
    )
    participant_id: Mapped[str] = mapped_column(String, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    result: Mapped[ContestResultRecord] = relationship("ContestResultRecord", back_populates="payouts")

    __table_args__ = (
        UniqueConstraint("contest_id", "participant_id", name="uq_payout_scope"),
    )
