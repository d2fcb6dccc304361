"""Prize pool fee split and tier allocation.

All amounts are integers in the currency's base unit. Percentages are
applied with half-up rounding and every remainder is assigned
explicitly, so the per-slot prizes always sum to the winner payout.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from fairwin_raffle.engine.models import PrizeTier

logger = logging.getLogger(__name__)

BPS_PER_PERCENT = 100
BPS_DENOMINATOR = 10_000


def percent_to_bps(percent: Decimal | int | str) -> int:
    """Convert a fee percentage to whole basis points.

    Raises:
        ValueError: If the percentage has more than two decimal places.
    """
    value = Decimal(str(percent)) * BPS_PER_PERCENT
    if value != value.to_integral_value():
        raise ValueError(f"Fee percentage {percent} is finer than one basis point")
    return int(value)


def round_half_up(numerator: int, denominator: int) -> int:
    """Round ``numerator / denominator`` half-up for non-negative integers."""
    return (2 * numerator + denominator) // (2 * denominator)


@dataclass(frozen=True)
class FeeSplit:
    prize_pool: int
    protocol_fee: int
    winner_payout: int


@dataclass(frozen=True)
class TierAllocation:
    """Amounts for one tier.

    Attributes:
        tier: The configured tier.
        tier_index: Position of the tier in the raffle's configuration.
        tier_amount: Amount assigned to the tier after rounding.
        amount_per_winner: Equal share for each winner slot of the tier.
    """

    tier: PrizeTier
    tier_index: int
    tier_amount: int
    amount_per_winner: int


@dataclass(frozen=True)
class PrizeAllocation:
    """Full allocation of a winner payout across tiers.

    ``tiers`` is in draw order (top tier first). ``remainder`` is the
    rounding dust added to the first winner of the top tier.
    """

    winner_payout: int
    tiers: tuple[TierAllocation, ...]
    remainder: int

    def slot_prizes(self) -> list[int]:
        """Prize of every winner slot in draw order."""
        prizes: list[int] = []
        for allocation in self.tiers:
            prizes.extend([allocation.amount_per_winner] * allocation.tier.winner_count)
        if prizes:
            prizes[0] += self.remainder
        return prizes

    @property
    def total(self) -> int:
        return sum(self.slot_prizes())


def order_tiers(tiers: Sequence[PrizeTier]) -> list[tuple[int, PrizeTier]]:
    """Tiers in draw order: highest percentage first, ties by configured position."""
    return sorted(enumerate(tiers), key=lambda item: (-item[1].percentage, item[0]))


class PrizePoolCalculator:
    """Computes fee splits and tier allocations.

    Example:
        ```python
        calc = PrizePoolCalculator()
        split = calc.split_fee(75_000_000, fee_bps=1000)
        allocation = calc.allocate(split.winner_payout, raffle.prize_tiers)
        prizes = allocation.slot_prizes()
        ```
    """

    def protocol_fee(self, prize_pool: int, fee_bps: int) -> int:
        if prize_pool < 0:
            raise ValueError("prize_pool must be non-negative")
        if not 0 <= fee_bps <= BPS_DENOMINATOR:
            raise ValueError("fee_bps must be within [0, 10000]")
        return round_half_up(prize_pool * fee_bps, BPS_DENOMINATOR)

    def split_fee(self, prize_pool: int, fee_bps: int) -> FeeSplit:
        fee = self.protocol_fee(prize_pool, fee_bps)
        return FeeSplit(prize_pool=prize_pool, protocol_fee=fee, winner_payout=prize_pool - fee)

    def allocate(self, winner_payout: int, tiers: Sequence[PrizeTier]) -> PrizeAllocation:
        """Split ``winner_payout`` across tiers.

        Each tier receives ``round_half_up(winner_payout * percentage / 100)``;
        if rounding overshoots the payout, the overshoot is taken from the
        lowest tiers in draw order. Each winner of a tier gets
        ``tier_amount // winner_count``, and the leftover goes to the first
        winner of the top tier.
        """
        if winner_payout < 0:
            raise ValueError("winner_payout must be non-negative")
        if not tiers:
            raise ValueError("at least one prize tier is required")

        ordered = order_tiers(tiers)
        amounts: list[int] = []
        for _, tier in ordered:
            scaled = Decimal(winner_payout) * tier.percentage / Decimal(100)
            amounts.append(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)))

        overshoot = sum(amounts) - winner_payout
        for position in range(len(amounts) - 1, -1, -1):
            if overshoot <= 0:
                break
            taken = min(overshoot, amounts[position])
            amounts[position] -= taken
            overshoot -= taken

        allocations = tuple(
            TierAllocation(
                tier=tier,
                tier_index=index,
                tier_amount=amount,
                amount_per_winner=amount // tier.winner_count,
            )
            for (index, tier), amount in zip(ordered, amounts, strict=True)
        )
        distributed = sum(a.amount_per_winner * a.tier.winner_count for a in allocations)
        remainder = winner_payout - distributed
        logger.debug(
            "Allocated payout %d across %d tiers (remainder=%d)",
            winner_payout,
            len(allocations),
            remainder,
        )
        return PrizeAllocation(winner_payout=winner_payout, tiers=allocations, remainder=remainder)

    def slot_prizes(self, winner_payout: int, tiers: Sequence[PrizeTier]) -> list[int]:
        return self.allocate(winner_payout, tiers).slot_prizes()
