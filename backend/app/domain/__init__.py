"""Domain value objects, configuration and errors for the contest engine."""

from .definitions import ContestDefinition, QuestionDefinition
from .models import ContestResult, ContestStats, LeaderboardEntry, PayoutLine
from .rules import PrizePool, PrizeTier, ScoringRules, StreakBonusRules

__all__ = [
    "ContestDefinition",
    "ContestResult",
    "ContestStats",
    "LeaderboardEntry",
    "PayoutLine",
    "PrizePool",
    "PrizeTier",
    "QuestionDefinition",
    "ScoringRules",
    "StreakBonusRules",
]
