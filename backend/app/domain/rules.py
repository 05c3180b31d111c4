"""Immutable per-contest configuration value objects."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")


class StreakBonusRules(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    min_streak: int = Field(3, ge=1, description="Streak length at which bonuses start")
    bonus_per_correct: int = Field(0, ge=0, description="Bonus points per streak step past the minimum")
    max_bonus: int = Field(0, ge=0, description="Upper bound on the bonus awarded for one submission")


class ScoringRules(BaseModel):
    """Point values and multipliers applied when a question resolves."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    correct_prediction: int = Field(10, ge=0)
    partial_credit: int = Field(0, ge=0)
    confidence_multiplier: bool = False
    streak_bonus: StreakBonusRules = Field(default_factory=StreakBonusRules)
    category_weights: dict[str, float] = Field(default_factory=dict)
    difficulty_multipliers: dict[str, float] = Field(default_factory=dict)
    oracle_beat_bonus: int = Field(0, ge=0)
    allow_late_entries: bool = False
    prediction_deadline_minutes: int | None = Field(
        default=None,
        ge=0,
        description="Minutes before a question's start time at which its submissions lock",
    )

    @field_validator("category_weights", "difficulty_multipliers")
    @classmethod
    def _require_non_negative_factors(cls, value: dict[str, float]) -> dict[str, float]:
        for key, factor in value.items():
            if factor != factor or factor in (float("inf"), float("-inf")):
                raise ValueError(f"multiplier for '{key}' must be finite")
            if factor < 0:
                raise ValueError(f"multiplier for '{key}' must not be negative")
        return value

    def category_weight(self, category: str | None) -> float:
        if category is None:
            return 1.0
        return self.category_weights.get(category, 1.0)

    def difficulty_factor(self, difficulty: str | None) -> float:
        if difficulty is None:
            return 1.0
        return self.difficulty_multipliers.get(difficulty, 1.0)


class PrizeTier(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    rank: int = Field(..., ge=1)
    percentage: Decimal = Field(..., gt=0, le=100)
    description: str | None = None


class PrizePool(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    total: Decimal = Field(..., ge=0)
    currency: str = "USD"
    tiers: tuple[PrizeTier, ...]

    @field_validator("total")
    @classmethod
    def _require_whole_cents(cls, value: Decimal) -> Decimal:
        if value != value.quantize(CENT):
            raise ValueError("prize pool total must not have fractions of a cent")
        return value.quantize(CENT)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("currency must be a three letter ISO code")
        return code

    @field_validator("tiers")
    @classmethod
    def _order_tiers(cls, value: tuple[PrizeTier, ...]) -> tuple[PrizeTier, ...]:
        return tuple(sorted(value, key=lambda tier: tier.rank))

    @model_validator(mode="after")
    def _validate_tiers(self) -> "PrizePool":
        if not self.tiers:
            raise ValueError("prize pool needs at least one tier")
        ranks = [tier.rank for tier in self.tiers]
        if len(set(ranks)) != len(ranks):
            raise ValueError("prize tier ranks must be unique")
        total_percentage = sum((tier.percentage for tier in self.tiers), Decimal("0"))
        if total_percentage != Decimal("100"):
            raise ValueError(
                f"prize tier percentages must sum to exactly 100 (got {total_percentage})"
            )
        return self


def rules_to_json(rules: ScoringRules) -> dict[str, Any]:
    return rules.model_dump(mode="json")


def rules_from_json(payload: dict[str, Any]) -> ScoringRules:
    return ScoringRules.model_validate(payload)


def prize_pool_to_json(pool: PrizePool) -> dict[str, Any]:
    return pool.model_dump(mode="json")


def prize_pool_from_json(payload: dict[str, Any]) -> PrizePool:
    return PrizePool.model_validate(payload)


__all__ = [
    "CENT",
    "PrizePool",
    "PrizeTier",
    "ScoringRules",
    "StreakBonusRules",
    "prize_pool_from_json",
    "prize_pool_to_json",
    "rules_from_json",
    "rules_to_json",
]
