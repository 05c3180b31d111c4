"""Exact-sum prize distribution over a final leaderboard."""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR
from typing import Sequence

from loguru import logger

from app.domain import LeaderboardEntry, PayoutLine, PrizePool
from app.domain.errors import PayoutSumMismatch
from app.domain.rules import CENT

_HUNDRED = Decimal("100")


def floor_to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_FLOOR)


def tier_amounts(pool: PrizePool) -> dict[int, Decimal]:
    """Amount each tier earns before the remainder is folded into first place."""

    return {
        tier.rank: floor_to_cents(pool.total * tier.percentage / _HUNDRED)
        for tier in pool.tiers
    }


def calculate_payouts(
    leaderboard: Sequence[LeaderboardEntry],
    pool: PrizePool,
    *,
    contest_id: str | None = None,
    log_unclaimed: bool = True,
) -> list[PayoutLine]:
    """Distribute ``pool.total`` across ``leaderboard`` exactly.

    Tier ``n`` pays the entry at 1-based position ``n`` of the ordered
    leaderboard. Cents lost to flooring, and the amounts of tiers with no entry
    at their position, go to the first entry. Raises :class:`PayoutSumMismatch`
    when the lines do not add up to the pool total.
    """

    if not leaderboard:
        raise PayoutSumMismatch(
            f"contest {contest_id or '?'} has no participants to receive {pool.total} {pool.currency}"
        )

    amounts = tier_amounts(pool)
    lines: dict[str, PayoutLine] = {}
    unclaimed = Decimal("0")
    for rank, amount in amounts.items():
        if rank > len(leaderboard):
            unclaimed += amount
            continue
        entry = leaderboard[rank - 1]
        line = lines.get(entry.participant_id)
        if line is None:
            lines[entry.participant_id] = PayoutLine(
                participant_id=entry.participant_id, rank=entry.rank, amount=amount
            )
        else:
            line.amount += amount

    if unclaimed and log_unclaimed:
        logger.warning(
            "Contest {} has {} unclaimed prize {} across tiers beyond {} participants; awarding to first place",
            contest_id,
            unclaimed,
            pool.currency,
            len(leaderboard),
        )

    remainder = pool.total - sum(amounts.values(), Decimal("0"))
    leader = leaderboard[0]
    first = lines.get(leader.participant_id)
    if first is None:
        first = PayoutLine(participant_id=leader.participant_id, rank=leader.rank, amount=Decimal("0"))
        lines[leader.participant_id] = first
    first.amount += remainder + unclaimed

    payouts = sorted(lines.values(), key=lambda line: (line.rank, line.participant_id))
    verify_payouts(payouts, pool, contest_id=contest_id)
    return payouts


def verify_payouts(
    payouts: Sequence[PayoutLine],
    pool: PrizePool,
    *,
    contest_id: str | None = None,
) -> None:
    paid = sum((line.amount for line in payouts), Decimal("0"))
    negative = [line.participant_id for line in payouts if line.amount < 0]
    if paid != pool.total or negative:
        logger.error(
            "Payout mismatch for contest {}: paid {} of {} {} (negative lines: {})",
            contest_id,
            paid,
            pool.total,
            pool.currency,
            negative,
        )
        raise PayoutSumMismatch(
            f"contest {contest_id or '?'} payouts sum to {paid}, expected {pool.total}"
        )


def preview_payouts(
    leaderboard: Sequence[LeaderboardEntry], pool: PrizePool
) -> dict[str, Decimal]:
    """Amount each participant would take home if the contest finalized now."""

    if not leaderboard:
        return {}
    return {
        line.participant_id: line.amount
        for line in calculate_payouts(leaderboard, pool, log_unclaimed=False)
    }


__all__ = [
    "calculate_payouts",
    "floor_to_cents",
    "preview_payouts",
    "tier_amounts",
    "verify_payouts",
]
