"""Tests for deterministic winner selection."""

from decimal import Decimal

import pytest

from fairwin_raffle.engine import winner_selector
from fairwin_raffle.engine.models import PrizeTier
from fairwin_raffle.engine.winner_selector import (
    HASH_SPACE,
    EntrySnapshot,
    WinnerSelector,
    build_ticket_ranges,
    draw_value,
    find_ticket,
)
from fairwin_raffle.errors import NoEntriesForDraw

WALLET_W = "0x" + "a" * 40
WALLET_X = "0x" + "b" * 40

GRAND = (PrizeTier(name="Grand Prize", percentage=Decimal("100"), winner_count=1),)


def snapshot(*holdings: tuple[str, int]) -> list[EntrySnapshot]:
    return [
        EntrySnapshot(entry_id=f"entry-{i}", wallet_address=wallet, num_entries=count, sequence=i)
        for i, (wallet, count) in enumerate(holdings, start=1)
    ]


@pytest.fixture
def selector() -> WinnerSelector:
    return WinnerSelector()


@pytest.fixture
def two_wallets() -> list[EntrySnapshot]:
    """W holds tickets 1-10, X holds tickets 11-15."""
    return snapshot((WALLET_W, 10), (WALLET_X, 5))


# ============================================================================
# Ticket layout
# ============================================================================


class TestTicketRanges:
    def test_ranges_follow_arrival_order(self) -> None:
        entries = [
            EntrySnapshot(entry_id="late", wallet_address=WALLET_X, num_entries=5, sequence=9),
            EntrySnapshot(entry_id="early", wallet_address=WALLET_W, num_entries=10, sequence=3),
        ]

        ranges = build_ticket_ranges(entries)

        assert [(r.entry_id, r.first, r.last) for r in ranges] == [("early", 1, 10), ("late", 11, 15)]

    def test_find_ticket(self, two_wallets: list[EntrySnapshot]) -> None:
        ranges = build_ticket_ranges(two_wallets)

        assert find_ticket(ranges, 1).wallet_address == WALLET_W
        assert find_ticket(ranges, 10).wallet_address == WALLET_W
        assert find_ticket(ranges, 11).wallet_address == WALLET_X
        assert find_ticket(ranges, 15).wallet_address == WALLET_X
        assert find_ticket(ranges, 16) is None
        assert find_ticket(ranges, 0) is None

    def test_empty_entries_are_skipped(self) -> None:
        ranges = build_ticket_ranges(snapshot((WALLET_W, 0), (WALLET_X, 2)))
        assert [(r.first, r.last) for r in ranges] == [(1, 2)]


# ============================================================================
# Selection
# ============================================================================


class TestSelect:
    def test_seed_selecting_ticket_seven_picks_first_wallet(
        self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]
    ) -> None:
        # int(sha256("scenario-b-21:0")) % 15 == 6
        result = selector.select(two_wallets, "scenario-b-21", GRAND, 67)

        assert len(result.winners) == 1
        winner = result.winners[0]
        assert winner.ticket_number == 7
        assert winner.wallet_address == WALLET_W
        assert winner.entry_id == "entry-1"
        assert winner.total_tickets == 15
        assert winner.prize == 67
        assert result.unawarded == 0

    def test_seed_selecting_ticket_twelve_picks_second_wallet(
        self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]
    ) -> None:
        # int(sha256("scenario-b-3:0")) % 15 == 11
        result = selector.select(two_wallets, "scenario-b-3", GRAND, 67)

        assert result.winners[0].ticket_number == 12
        assert result.winners[0].wallet_address == WALLET_X

    def test_winning_wallet_leaves_play(self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]) -> None:
        tiers = (
            PrizeTier(name="Grand Prize", percentage=Decimal("70"), winner_count=1),
            PrizeTier(name="Runner Up", percentage=Decimal("30"), winner_count=1),
        )

        result = selector.select(two_wallets, "scenario-b-21", tiers, 100)

        assert [(w.position, w.tier, w.ticket_number, w.wallet_address, w.prize) for w in result.winners] == [
            (1, "Grand Prize", 7, WALLET_W, 70),
            # int(sha256("scenario-b-21:1")) % 5 == 2 over X's tickets 11-15
            (2, "Runner Up", 13, WALLET_X, 30),
        ]
        assert [w.draw_counter for w in result.winners] == [0, 1]

    def test_seed_is_case_and_whitespace_insensitive(
        self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]
    ) -> None:
        a = selector.select(two_wallets, "Scenario-B-21", GRAND, 67)
        b = selector.select(two_wallets, "  scenario-b-21\n", GRAND, 67)

        assert a.winners == b.winners
        assert a.proof == b.proof

    def test_same_inputs_same_result(self, selector: WinnerSelector) -> None:
        entries = snapshot(*[(f"0x{i:040x}", i % 7 + 1) for i in range(1, 40)])
        tiers = (
            PrizeTier(name="Grand Prize", percentage=Decimal("50"), winner_count=1),
            PrizeTier(name="Second", percentage=Decimal("30"), winner_count=2),
            PrizeTier(name="Third", percentage=Decimal("20"), winner_count=5),
        )

        first = selector.select(entries, "0xfeedface", tiers, 1_000_000)
        second = WinnerSelector().select(entries, "0xfeedface", tiers, 1_000_000)

        assert first == second
        assert len({w.wallet_address for w in first.winners}) == 8
        assert sum(w.prize for w in first.winners) == 1_000_000

    def test_single_participant_wins_once(self, selector: WinnerSelector) -> None:
        entries = snapshot((WALLET_W, 4), (WALLET_W, 6))
        tiers = (
            PrizeTier(name="Gold", percentage=Decimal("50"), winner_count=1),
            PrizeTier(name="Silver", percentage=Decimal("30"), winner_count=1),
            PrizeTier(name="Bronze", percentage=Decimal("20"), winner_count=1),
        )

        result = selector.select(entries, "only-one", tiers, 100)

        assert len(result.winners) == 1
        assert result.winners[0].wallet_address == WALLET_W
        assert result.winners[0].tier == "Gold"
        assert result.winners[0].prize == 50
        assert result.unawarded == 50

    def test_no_entries(self, selector: WinnerSelector) -> None:
        with pytest.raises(NoEntriesForDraw):
            selector.select([], "seed", GRAND, 100)

    def test_empty_seed(self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]) -> None:
        with pytest.raises(ValueError):
            selector.select(two_wallets, "   ", GRAND, 100)

    def test_rejected_values_advance_counter(
        self, selector: WinnerSelector, two_wallets: list[EntrySnapshot], monkeypatch
    ) -> None:
        # For 15 tickets only the top value 2**256 - 1 falls in the partial block
        values = iter([HASH_SPACE - 1, 6])
        monkeypatch.setattr(winner_selector, "draw_value", lambda seed, counter: next(values))

        result = selector.select(two_wallets, "seed", GRAND, 67)

        assert result.winners[0].ticket_number == 7
        assert result.winners[0].draw_counter == 1

    def test_draws_spread_across_wallets(self, selector: WinnerSelector) -> None:
        entries = snapshot((WALLET_W, 1), (WALLET_X, 1))
        wins = {WALLET_W: 0, WALLET_X: 0}

        for i in range(300):
            result = selector.select(entries, f"seed-{i}", GRAND, 10)
            wins[result.winners[0].wallet_address] += 1

        assert 100 < wins[WALLET_W] < 200
        assert wins[WALLET_W] + wins[WALLET_X] == 300


class TestDrawValue:
    def test_known_digest(self) -> None:
        # sha256("scenario-b-21:0")
        expected = int("df1ef50b966837b51b6323ccc74e533c594d4ccebcaa0bcf7262be4205b982af", 16)
        assert draw_value("scenario-b-21", 0) == expected


# ============================================================================
# Verification
# ============================================================================


class TestVerifySelection:
    def test_matching_rows(self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]) -> None:
        result = selector.select(two_wallets, "scenario-b-21", GRAND, 67)
        stored = [(w.position, w.wallet_address, w.ticket_number, w.prize) for w in result.winners]

        assert selector.verify_selection(two_wallets, "scenario-b-21", GRAND, 67, stored) == []

    def test_tampered_winner(self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]) -> None:
        stored = [(1, WALLET_X, 12, 67)]

        mismatches = selector.verify_selection(two_wallets, "scenario-b-21", GRAND, 67, stored)

        assert len(mismatches) == 1
        assert mismatches[0].startswith("position 1:")

    def test_missing_and_extra_rows(self, selector: WinnerSelector, two_wallets: list[EntrySnapshot]) -> None:
        stored = [(2, WALLET_X, 12, 0)]

        mismatches = selector.verify_selection(two_wallets, "scenario-b-21", GRAND, 67, stored)

        assert len(mismatches) == 2
