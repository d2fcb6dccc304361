"""Tests for the entry ledger."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from fairwin_raffle.engine.entry_ledger import EntryLedger
from fairwin_raffle.engine.models import DEFAULT_PRIZE_TIERS, Raffle, RaffleStatus, RaffleType
from fairwin_raffle.engine.stats import StatsAggregator
from fairwin_raffle.errors import InvalidEntry, MaxEntriesExceeded, RaffleNotActive, RaffleNotFound
from fairwin_raffle.storage.repos import RaffleRepository

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)
WALLET_W = "0x" + "a" * 40
WALLET_X = "0x" + "b" * 40


def make_raffle(**overrides) -> Raffle:
    values = {
        "raffle_id": str(uuid.uuid4()),
        "type": RaffleType.FLASH,
        "title": "Flash",
        "description": "",
        "status": RaffleStatus.ACTIVE,
        "entry_price": 5,
        "total_entries": 0,
        "total_participants": 0,
        "prize_pool": 0,
        "protocol_fee": 0,
        "winner_payout": 0,
        "winner_count": 1,
        "platform_fee_bps": 1000,
        "prize_tiers": DEFAULT_PRIZE_TIERS,
        "max_entries_per_user": 100,
        "start_time": NOW - timedelta(minutes=30),
        "end_time": NOW + timedelta(minutes=30),
    }
    values.update(overrides)
    return Raffle(**values)


@pytest.fixture
def ledger(async_session) -> EntryLedger:
    return EntryLedger(async_session, max_entries_per_submission=50)


@pytest.fixture
async def raffle(async_session) -> Raffle:
    return await RaffleRepository(async_session).insert(make_raffle())


async def buy(ledger: EntryLedger, raffle: Raffle, wallet: str, num: int, ref: str | None = None, **kwargs):
    return await ledger.submit_entry(
        raffle.raffle_id,
        wallet_address=wallet,
        num_entries=num,
        total_paid=kwargs.pop("total_paid", num * raffle.entry_price),
        payment_reference=ref or f"0x{uuid.uuid4().hex}",
        now=kwargs.pop("now", NOW),
    )


# ============================================================================
# Accepted submissions
# ============================================================================


class TestSubmitEntry:
    async def test_pool_and_fee_split(self, ledger: EntryLedger, raffle: Raffle) -> None:
        await buy(ledger, raffle, WALLET_W, 10)
        receipt = await buy(ledger, raffle, WALLET_X, 5)

        updated = receipt.raffle
        assert receipt.created
        assert updated.total_entries == 15
        assert updated.total_participants == 2
        assert updated.prize_pool == 75
        assert updated.protocol_fee == 8
        assert updated.winner_payout == 67

    async def test_entries_keep_arrival_order(self, ledger: EntryLedger, raffle: Raffle) -> None:
        first = await buy(ledger, raffle, WALLET_W, 10)
        second = await buy(ledger, raffle, WALLET_X, 5)

        entries = await ledger.list_entries(raffle.raffle_id)

        assert [e.entry_id for e in entries] == [first.entry.entry_id, second.entry.entry_id]
        assert first.entry.sequence < second.entry.sequence

    async def test_repeat_wallet_counts_once(self, ledger: EntryLedger, raffle: Raffle) -> None:
        await buy(ledger, raffle, WALLET_W, 3)
        receipt = await buy(ledger, raffle, WALLET_W.upper().replace("0X", "0x"), 4)

        assert receipt.raffle.total_participants == 1
        assert receipt.raffle.total_entries == 7
        assert await ledger.wallet_entry_count(raffle.raffle_id, WALLET_W) == 7

    async def test_wallet_is_normalized(self, ledger: EntryLedger, raffle: Raffle) -> None:
        receipt = await buy(ledger, raffle, "0x" + "A" * 40, 1)
        assert receipt.entry.wallet_address == "0x" + "a" * 40

    async def test_entries_accepted_while_ending(self, async_session, ledger: EntryLedger) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(status=RaffleStatus.ENDING))

        receipt = await buy(ledger, raffle, WALLET_W, 2)

        assert receipt.raffle.total_entries == 2

    async def test_stats_updated(self, async_session, ledger: EntryLedger, raffle: Raffle) -> None:
        await buy(ledger, raffle, WALLET_W, 10)
        await buy(ledger, raffle, WALLET_X, 5)

        stats = await StatsAggregator(async_session).snapshot()

        assert stats.total_entries == 15
        assert stats.total_revenue == 8

    async def test_counters_stay_consistent(self, async_session, ledger: EntryLedger, raffle: Raffle) -> None:
        wallets = [f"0x{i:040x}" for i in range(1, 8)]
        for i in range(21):
            await buy(ledger, raffle, wallets[i % len(wallets)], i % 4 + 1)

        updated = await RaffleRepository(async_session).get(raffle.raffle_id)
        stats = await StatsAggregator(async_session).snapshot()

        assert updated.prize_pool == updated.total_entries * updated.entry_price
        assert updated.protocol_fee + updated.winner_payout == updated.prize_pool
        assert updated.total_participants == len(wallets)
        assert stats.total_revenue == updated.protocol_fee


class TestIdempotency:
    async def test_replay_returns_original(self, ledger: EntryLedger, raffle: Raffle) -> None:
        first = await buy(ledger, raffle, WALLET_W, 10, ref="0xdeadbeef")
        replay = await buy(ledger, raffle, WALLET_W, 10, ref="0xdeadbeef")

        assert not replay.created
        assert replay.entry == first.entry
        assert replay.raffle.total_entries == 10
        assert replay.raffle.prize_pool == 50

    async def test_reference_from_other_raffle(self, async_session, ledger: EntryLedger, raffle: Raffle) -> None:
        other = await RaffleRepository(async_session).insert(make_raffle())
        await buy(ledger, raffle, WALLET_W, 1, ref="0xfeed")

        with pytest.raises(InvalidEntry):
            await buy(ledger, other, WALLET_W, 1, ref="0xfeed")


# ============================================================================
# Rejections
# ============================================================================


class TestRejections:
    async def test_unknown_raffle(self, ledger: EntryLedger) -> None:
        with pytest.raises(RaffleNotFound):
            await ledger.submit_entry(
                "missing",
                wallet_address=WALLET_W,
                num_entries=1,
                total_paid=5,
                payment_reference="0x1",
                now=NOW,
            )

    async def test_price_mismatch(self, ledger: EntryLedger, raffle: Raffle) -> None:
        with pytest.raises(InvalidEntry) as exc_info:
            await buy(ledger, raffle, WALLET_W, 2, total_paid=9)
        assert exc_info.value.details["expected"] == 10

    @pytest.mark.parametrize("num_entries", [0, -3, 51])
    async def test_bad_entry_count(self, ledger: EntryLedger, raffle: Raffle, num_entries: int) -> None:
        with pytest.raises(InvalidEntry):
            await buy(ledger, raffle, WALLET_W, num_entries, total_paid=5)

    @pytest.mark.parametrize("wallet", ["", "0x123", "a" * 42, "0x" + "g" * 40])
    async def test_bad_wallet(self, ledger: EntryLedger, raffle: Raffle, wallet: str) -> None:
        with pytest.raises(InvalidEntry):
            await buy(ledger, raffle, wallet, 1)

    async def test_blank_reference(self, ledger: EntryLedger, raffle: Raffle) -> None:
        with pytest.raises(InvalidEntry):
            await buy(ledger, raffle, WALLET_W, 1, ref="   ")

    @pytest.mark.parametrize(
        "status", [RaffleStatus.SCHEDULED, RaffleStatus.DRAWING, RaffleStatus.COMPLETED, RaffleStatus.CANCELLED]
    )
    async def test_closed_status(self, async_session, ledger: EntryLedger, status: RaffleStatus) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(status=status))

        with pytest.raises(RaffleNotActive):
            await buy(ledger, raffle, WALLET_W, 1)

    async def test_after_end_time(self, ledger: EntryLedger, raffle: Raffle) -> None:
        with pytest.raises(RaffleNotActive):
            await buy(ledger, raffle, WALLET_W, 1, now=raffle.end_time)

    async def test_single_submission_over_cap(self, async_session, ledger: EntryLedger) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(max_entries_per_user=5))

        with pytest.raises(MaxEntriesExceeded):
            await buy(ledger, raffle, WALLET_W, 6)

    async def test_cumulative_cap(self, async_session, ledger: EntryLedger) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(max_entries_per_user=10))
        await buy(ledger, raffle, WALLET_W, 8)

        with pytest.raises(MaxEntriesExceeded) as exc_info:
            await buy(ledger, raffle, WALLET_W, 3)

        assert exc_info.value.details["current_entries"] == 8
        updated = await RaffleRepository(async_session).get(raffle.raffle_id)
        assert updated.total_entries == 8
        assert updated.prize_pool == 40
        assert await ledger.wallet_entry_count(raffle.raffle_id, WALLET_W) == 8

    async def test_cap_is_per_wallet(self, async_session, ledger: EntryLedger) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(max_entries_per_user=10))
        await buy(ledger, raffle, WALLET_W, 10)

        receipt = await buy(ledger, raffle, WALLET_X, 10)

        assert receipt.raffle.total_entries == 20


class TestEligibility:
    async def test_eligible(self, ledger: EntryLedger, raffle: Raffle) -> None:
        result = await ledger.check_eligibility(raffle, wallet_address=WALLET_W, num_entries=5, now=NOW)
        assert result.raffle_id == raffle.raffle_id

    async def test_counts_existing_holdings(self, async_session, ledger: EntryLedger) -> None:
        raffle = await RaffleRepository(async_session).insert(make_raffle(max_entries_per_user=10))
        await buy(ledger, raffle, WALLET_W, 8)

        with pytest.raises(MaxEntriesExceeded):
            await ledger.check_eligibility(raffle, wallet_address=WALLET_W, num_entries=3, now=NOW)

    async def test_list_wallet_entries(self, ledger: EntryLedger, raffle: Raffle) -> None:
        await buy(ledger, raffle, WALLET_W, 1)
        await buy(ledger, raffle, WALLET_X, 1)

        entries = await ledger.list_wallet_entries(WALLET_W.upper().replace("0X", "0x"))

        assert [e.wallet_address for e in entries] == [WALLET_W]
