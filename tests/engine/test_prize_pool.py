"""Tests for the prize pool calculator."""

from decimal import Decimal

import pytest

from fairwin_raffle.engine.models import PrizeTier, validate_prize_tiers
from fairwin_raffle.engine.prize_pool import (
    PrizePoolCalculator,
    order_tiers,
    percent_to_bps,
    round_half_up,
)
from fairwin_raffle.errors import ValidationError


def tier(name: str, percentage: str, winner_count: int = 1) -> PrizeTier:
    return PrizeTier(name=name, percentage=Decimal(percentage), winner_count=winner_count)


@pytest.fixture
def calculator() -> PrizePoolCalculator:
    return PrizePoolCalculator()


# ============================================================================
# Fee split
# ============================================================================


class TestFeeSplit:
    def test_half_unit_fee_rounds_up(self, calculator: PrizePoolCalculator) -> None:
        split = calculator.split_fee(75, 1000)

        assert split.protocol_fee == 8
        assert split.winner_payout == 67
        assert split.protocol_fee + split.winner_payout == split.prize_pool

    def test_zero_fee(self, calculator: PrizePoolCalculator) -> None:
        split = calculator.split_fee(1_000_000, 0)

        assert split.protocol_fee == 0
        assert split.winner_payout == 1_000_000

    def test_fee_below_half_rounds_down(self, calculator: PrizePoolCalculator) -> None:
        # 10% of 74 = 7.4
        assert calculator.protocol_fee(74, 1000) == 7

    @pytest.mark.parametrize("pool", [0, 1, 5, 99, 12_345_678, 10**15])
    def test_split_always_sums_to_pool(self, calculator: PrizePoolCalculator, pool: int) -> None:
        split = calculator.split_fee(pool, 750)
        assert split.protocol_fee + split.winner_payout == pool
        assert split.protocol_fee >= 0

    def test_rejects_negative_pool(self, calculator: PrizePoolCalculator) -> None:
        with pytest.raises(ValueError):
            calculator.protocol_fee(-1, 1000)

    def test_rejects_bps_out_of_range(self, calculator: PrizePoolCalculator) -> None:
        with pytest.raises(ValueError):
            calculator.protocol_fee(100, 10_001)


class TestBasisPoints:
    def test_percent_to_bps(self) -> None:
        assert percent_to_bps(Decimal("10")) == 1000
        assert percent_to_bps("2.5") == 250
        assert percent_to_bps(0) == 0

    def test_rejects_sub_basis_point_precision(self) -> None:
        with pytest.raises(ValueError):
            percent_to_bps("0.125")

    def test_round_half_up(self) -> None:
        assert round_half_up(15, 2) == 8
        assert round_half_up(14, 4) == 4
        assert round_half_up(13, 4) == 3


# ============================================================================
# Tier allocation
# ============================================================================


class TestAllocation:
    def test_three_tiers(self, calculator: PrizePoolCalculator) -> None:
        allocation = calculator.allocate(67, [tier("First", "50"), tier("Second", "30"), tier("Third", "20")])

        assert [a.tier_amount for a in allocation.tiers] == [34, 20, 13]
        assert allocation.slot_prizes() == [34, 20, 13]
        assert allocation.remainder == 0
        assert allocation.total == 67

    def test_remainder_goes_to_first_winner(self, calculator: PrizePoolCalculator) -> None:
        allocation = calculator.allocate(100, [tier("Grand", "60"), tier("Runner up", "40", 3)])

        assert allocation.remainder == 1
        assert allocation.slot_prizes() == [61, 13, 13, 13]
        assert allocation.total == 100

    def test_overshoot_taken_from_lowest_tier(self, calculator: PrizePoolCalculator) -> None:
        allocation = calculator.allocate(1, [tier("A", "50"), tier("B", "50")])

        assert allocation.slot_prizes() == [1, 0]
        assert allocation.total == 1

    def test_tiers_ordered_by_percentage(self, calculator: PrizePoolCalculator) -> None:
        configured = [tier("Runner up", "20", 2), tier("Grand", "80")]

        allocation = calculator.allocate(1_000, configured)

        assert [a.tier.name for a in allocation.tiers] == ["Grand", "Runner up"]
        assert [a.tier_index for a in allocation.tiers] == [1, 0]
        assert allocation.slot_prizes() == [800, 100, 100]

    def test_equal_percentages_keep_configured_order(self) -> None:
        ordered = order_tiers([tier("B", "50"), tier("A", "50")])
        assert [t.name for _, t in ordered] == ["B", "A"]

    @pytest.mark.parametrize("payout", [0, 1, 7, 67, 999_999, 123_456_789])
    def test_slots_sum_to_payout(self, calculator: PrizePoolCalculator, payout: int) -> None:
        tiers = [tier("Grand", "50"), tier("Second", "33.33", 3), tier("Third", "16.67", 7)]

        prizes = calculator.slot_prizes(payout, tiers)

        assert len(prizes) == 11
        assert sum(prizes) == payout
        assert all(p >= 0 for p in prizes)

    def test_requires_tiers(self, calculator: PrizePoolCalculator) -> None:
        with pytest.raises(ValueError):
            calculator.allocate(100, [])


# ============================================================================
# Tier validation
# ============================================================================


class TestTierValidation:
    def test_thirds_must_add_up_exactly(self) -> None:
        thirds = [tier("First", "33.33"), tier("Second", "33.33"), tier("Third", "33.33")]

        with pytest.raises(ValidationError) as exc:
            validate_prize_tiers(thirds, 3)
        assert exc.value.details["total_percent"] == "99.99"

    def test_exact_hundred_accepted(self) -> None:
        validate_prize_tiers([tier("First", "33.34"), tier("Second", "33.33"), tier("Third", "33.33")], 3)

    def test_over_hundred_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate_prize_tiers([tier("First", "50.01"), tier("Second", "50")], 2)
