"""Repository pattern implementations for data access.

This module provides data access for raffles, entries, participants,
winners, payouts and platform statistics. Counter changes are issued as
in-place SQL increments guarded by WHERE clauses so concurrent writers
never read-modify-write a shared row.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from fairwin_raffle.engine.models import (
    Entry,
    EntryStatus,
    Payout,
    PayoutStatus,
    PayoutSummary,
    PlatformStats,
    PrizeTier,
    Raffle,
    RaffleStatus,
    RaffleType,
    Winner,
)
from fairwin_raffle.storage.models import (
    EntryModel,
    PayoutModel,
    PlatformStatsModel,
    RaffleModel,
    RaffleParticipantModel,
    WinnerModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

GLOBAL_STAT_ID = "global"

# Half-up rounding of prize_pool * bps / 10000 in integer arithmetic.
FEE_ROUNDING_OFFSET = 5_000
BPS_DENOMINATOR = 10_000


def _utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def dump_prize_tiers(tiers: Iterable[PrizeTier]) -> str:
    return json.dumps([t.to_dict() for t in tiers])


def load_prize_tiers(payload: str) -> tuple[PrizeTier, ...]:
    return tuple(PrizeTier.from_dict(item) for item in json.loads(payload))


def raffle_from_model(model: RaffleModel) -> Raffle:
    return Raffle(
        raffle_id=model.raffle_id,
        type=RaffleType(model.type),
        title=model.title,
        description=model.description,
        status=RaffleStatus(model.status),
        entry_price=model.entry_price,
        total_entries=model.total_entries,
        total_participants=model.total_participants,
        prize_pool=model.prize_pool,
        protocol_fee=model.protocol_fee,
        winner_payout=model.winner_payout,
        winner_count=model.winner_count,
        platform_fee_bps=model.platform_fee_bps,
        prize_tiers=load_prize_tiers(model.prize_tiers_json),
        max_entries_per_user=model.max_entries_per_user,
        start_time=_utc(model.start_time),  # type: ignore[arg-type]
        end_time=_utc(model.end_time),  # type: ignore[arg-type]
        draw_time=_utc(model.draw_time),
        random_seed=model.random_seed,
        seed_source=model.seed_source,
        seed_block_number=model.seed_block_number,
        created_at=_utc(model.created_at),
        updated_at=_utc(model.updated_at),
    )


def entry_from_model(model: EntryModel) -> Entry:
    return Entry(
        entry_id=model.entry_id,
        raffle_id=model.raffle_id,
        wallet_address=model.wallet_address,
        num_entries=model.num_entries,
        total_paid=model.total_paid,
        payment_reference=model.payment_reference,
        sequence=model.id,
        status=EntryStatus(model.status),
        created_at=_utc(model.created_at),
    )


def winner_from_model(model: WinnerModel) -> Winner:
    return Winner(
        winner_id=model.winner_id,
        raffle_id=model.raffle_id,
        position=model.position,
        wallet_address=model.wallet_address,
        ticket_number=model.ticket_number,
        total_tickets=model.total_tickets,
        prize=model.prize,
        tier=model.tier,
        tier_index=model.tier_index,
        entry_id=model.entry_id,
        created_at=_utc(model.created_at),
    )


def payout_from_model(model: PayoutModel) -> Payout:
    return Payout(
        payout_id=model.payout_id,
        winner_id=model.winner_id,
        raffle_id=model.raffle_id,
        wallet_address=model.wallet_address,
        amount=model.amount,
        status=PayoutStatus(model.status),
        attempts=model.attempts,
        payment_reference=model.payment_reference,
        error=model.error,
        created_at=_utc(model.created_at),
        processed_at=_utc(model.processed_at),
        updated_at=_utc(model.updated_at),
    )


class RaffleRepository:
    """Repository for raffles and their pool counters."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, raffle_id: str) -> Raffle | None:
        result = await self.session.execute(
            select(RaffleModel).where(RaffleModel.raffle_id == raffle_id).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return raffle_from_model(model) if model else None

    async def insert(self, raffle: Raffle) -> Raffle:
        now = datetime.now(UTC)
        model = RaffleModel(
            raffle_id=raffle.raffle_id,
            type=raffle.type.value,
            title=raffle.title,
            description=raffle.description,
            status=raffle.status.value,
            entry_price=raffle.entry_price,
            total_entries=0,
            total_participants=0,
            prize_pool=0,
            protocol_fee=0,
            winner_payout=0,
            winner_count=raffle.winner_count,
            platform_fee_bps=raffle.platform_fee_bps,
            prize_tiers_json=dump_prize_tiers(raffle.prize_tiers),
            max_entries_per_user=raffle.max_entries_per_user,
            start_time=raffle.start_time,
            end_time=raffle.end_time,
            created_at=raffle.created_at or now,
            updated_at=raffle.updated_at or now,
        )
        self.session.add(model)
        await self.session.flush()
        return raffle_from_model(model)

    async def list_by_status(
        self,
        statuses: Iterable[RaffleStatus] | None = None,
        *,
        limit: int = 100,
    ) -> list[Raffle]:
        stmt = select(RaffleModel)
        if statuses is not None:
            stmt = stmt.where(RaffleModel.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(RaffleModel.end_time.asc(), RaffleModel.raffle_id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return [raffle_from_model(m) for m in result.scalars().all()]

    async def list_due_to_start(self, now: datetime, *, limit: int = 100) -> list[Raffle]:
        result = await self.session.execute(
            select(RaffleModel)
            .where(
                RaffleModel.status == RaffleStatus.SCHEDULED.value,
                RaffleModel.start_time <= now,
            )
            .order_by(RaffleModel.start_time.asc())
            .limit(limit)
        )
        return [raffle_from_model(m) for m in result.scalars().all()]

    async def list_ending_before(
        self,
        statuses: Iterable[RaffleStatus],
        before: datetime,
        *,
        limit: int = 100,
    ) -> list[Raffle]:
        """Raffles in ``statuses`` whose end_time is at or before ``before``."""
        result = await self.session.execute(
            select(RaffleModel)
            .where(
                RaffleModel.status.in_([s.value for s in statuses]),
                RaffleModel.end_time <= before,
            )
            .order_by(RaffleModel.end_time.asc())
            .limit(limit)
        )
        return [raffle_from_model(m) for m in result.scalars().all()]

    async def compare_and_set_status(
        self,
        raffle_id: str,
        expected: Iterable[RaffleStatus],
        new_status: RaffleStatus,
        *,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Move the raffle to ``new_status`` only if it is currently in ``expected``.

        Returns:
            True if this call performed the transition.
        """
        result = await self.session.execute(
            update(RaffleModel)
            .where(
                RaffleModel.raffle_id == raffle_id,
                RaffleModel.status.in_([s.value for s in expected]),
            )
            .values(status=new_status.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def add_entries(
        self,
        raffle_id: str,
        *,
        num_entries: int,
        total_paid: int,
        new_participant: bool,
        now: datetime,
    ) -> tuple[int, int, int] | None:
        """Atomically add an entry purchase to the raffle counters.

        The fee split is recomputed from the new pool inside the same
        statement. The update only applies while the raffle accepts entries.

        Returns:
            ``(prize_pool, protocol_fee, platform_fee_bps)`` after the update,
            or None if the raffle was not accepting entries.
        """
        new_pool = RaffleModel.prize_pool + total_paid
        new_fee = (new_pool * RaffleModel.platform_fee_bps + FEE_ROUNDING_OFFSET) // BPS_DENOMINATOR
        result = await self.session.execute(
            update(RaffleModel)
            .where(
                RaffleModel.raffle_id == raffle_id,
                RaffleModel.status.in_([RaffleStatus.ACTIVE.value, RaffleStatus.ENDING.value]),
                RaffleModel.start_time <= now,
                RaffleModel.end_time > now,
            )
            .values(
                total_entries=RaffleModel.total_entries + num_entries,
                total_participants=RaffleModel.total_participants + (1 if new_participant else 0),
                prize_pool=new_pool,
                protocol_fee=new_fee,
                winner_payout=new_pool - new_fee,
                updated_at=now,
            )
            .returning(RaffleModel.prize_pool, RaffleModel.protocol_fee, RaffleModel.platform_fee_bps)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is None:
            return None
        return int(row[0]), int(row[1]), int(row[2])


class ParticipantRepository:
    """Repository for per-wallet entry aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_entries(
        self,
        raffle_id: str,
        wallet_address: str,
        *,
        num_entries: int,
        total_paid: int,
        max_entries: int,
        now: datetime,
    ) -> bool | None:
        """Add entries to a wallet's aggregate without exceeding ``max_entries``.

        Callers must reject ``num_entries > max_entries`` beforehand; the
        first insert for a wallet is not capped here.

        Returns:
            True if this created the wallet's first participation, False if an
            existing aggregate was incremented, None if the cap would be exceeded.
        """
        stmt = _insert_for(self.session, RaffleParticipantModel).values(
            raffle_id=raffle_id,
            wallet_address=wallet_address,
            total_entries=num_entries,
            total_paid=total_paid,
            first_entry_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["raffle_id", "wallet_address"],
            set_={
                "total_entries": RaffleParticipantModel.total_entries + stmt.excluded.total_entries,
                "total_paid": RaffleParticipantModel.total_paid + stmt.excluded.total_paid,
                "updated_at": stmt.excluded.updated_at,
            },
            where=RaffleParticipantModel.total_entries + stmt.excluded.total_entries <= max_entries,
        ).returning(RaffleParticipantModel.total_entries)
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return int(row[0]) == num_entries

    async def get_entry_count(self, raffle_id: str, wallet_address: str) -> int:
        result = await self.session.execute(
            select(RaffleParticipantModel.total_entries).where(
                RaffleParticipantModel.raffle_id == raffle_id,
                RaffleParticipantModel.wallet_address == wallet_address,
            )
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else 0


class EntryRepository:
    """Repository for entry purchases."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_payment_reference(self, payment_reference: str) -> Entry | None:
        result = await self.session.execute(
            select(EntryModel).where(EntryModel.payment_reference == payment_reference)
        )
        model = result.scalar_one_or_none()
        return entry_from_model(model) if model else None

    async def insert_if_new(
        self,
        *,
        entry_id: str,
        raffle_id: str,
        wallet_address: str,
        num_entries: int,
        total_paid: int,
        payment_reference: str,
        now: datetime,
    ) -> Entry | None:
        """Insert an entry unless its payment reference is already recorded.

        Returns:
            The stored entry, or None when the payment reference already exists.
        """
        stmt = (
            _insert_for(self.session, EntryModel)
            .values(
                entry_id=entry_id,
                raffle_id=raffle_id,
                wallet_address=wallet_address,
                num_entries=num_entries,
                total_paid=total_paid,
                payment_reference=payment_reference,
                status=EntryStatus.CONFIRMED.value,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["payment_reference"])
            .returning(EntryModel.id)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return Entry(
            entry_id=entry_id,
            raffle_id=raffle_id,
            wallet_address=wallet_address,
            num_entries=num_entries,
            total_paid=total_paid,
            payment_reference=payment_reference,
            sequence=int(row[0]),
            status=EntryStatus.CONFIRMED,
            created_at=now,
        )

    async def list_by_raffle(self, raffle_id: str) -> list[Entry]:
        """Confirmed entries of a raffle in arrival order."""
        result = await self.session.execute(
            select(EntryModel)
            .where(
                EntryModel.raffle_id == raffle_id,
                EntryModel.status == EntryStatus.CONFIRMED.value,
            )
            .order_by(EntryModel.id.asc())
        )
        return [entry_from_model(m) for m in result.scalars().all()]

    async def list_by_wallet(self, wallet_address: str, *, raffle_id: str | None = None) -> list[Entry]:
        stmt = select(EntryModel).where(EntryModel.wallet_address == wallet_address)
        if raffle_id is not None:
            stmt = stmt.where(EntryModel.raffle_id == raffle_id)
        result = await self.session.execute(stmt.order_by(EntryModel.id.asc()))
        return [entry_from_model(m) for m in result.scalars().all()]

    async def count_by_raffle(self, raffle_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(EntryModel).where(
                EntryModel.raffle_id == raffle_id,
                EntryModel.status == EntryStatus.CONFIRMED.value,
            )
        )
        return int(result.scalar_one())


class WinnerRepository:
    """Repository for drawn winners."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, winners: Sequence[Winner]) -> None:
        for winner in winners:
            self.session.add(
                WinnerModel(
                    winner_id=winner.winner_id,
                    raffle_id=winner.raffle_id,
                    position=winner.position,
                    wallet_address=winner.wallet_address,
                    ticket_number=winner.ticket_number,
                    total_tickets=winner.total_tickets,
                    prize=winner.prize,
                    tier=winner.tier,
                    tier_index=winner.tier_index,
                    entry_id=winner.entry_id,
                    created_at=winner.created_at or datetime.now(UTC),
                )
            )
        await self.session.flush()

    async def get(self, winner_id: str) -> Winner | None:
        result = await self.session.execute(select(WinnerModel).where(WinnerModel.winner_id == winner_id))
        model = result.scalar_one_or_none()
        return winner_from_model(model) if model else None

    async def list_by_raffle(self, raffle_id: str) -> list[Winner]:
        result = await self.session.execute(
            select(WinnerModel).where(WinnerModel.raffle_id == raffle_id).order_by(WinnerModel.position.asc())
        )
        return [winner_from_model(m) for m in result.scalars().all()]

    async def list_by_wallet(self, wallet_address: str) -> list[Winner]:
        result = await self.session.execute(
            select(WinnerModel)
            .where(WinnerModel.wallet_address == wallet_address)
            .order_by(WinnerModel.created_at.desc())
        )
        return [winner_from_model(m) for m in result.scalars().all()]


class PayoutRepository:
    """Repository for winner payouts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, payouts: Sequence[Payout]) -> None:
        for payout in payouts:
            self.session.add(
                PayoutModel(
                    payout_id=payout.payout_id,
                    winner_id=payout.winner_id,
                    raffle_id=payout.raffle_id,
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    status=payout.status.value,
                    attempts=payout.attempts,
                    created_at=payout.created_at or datetime.now(UTC),
                    updated_at=payout.updated_at or datetime.now(UTC),
                )
            )
        await self.session.flush()

    async def get_by_winner(self, winner_id: str) -> Payout | None:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.winner_id == winner_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return payout_from_model(model) if model else None

    async def compare_and_set_status(
        self,
        winner_id: str,
        expected: Iterable[PayoutStatus],
        new_status: PayoutStatus,
        *,
        now: datetime,
        count_attempt: bool = False,
        **values: Any,
    ) -> bool:
        """Move a payout to ``new_status`` only if it is currently in ``expected``."""
        extra: dict[str, Any] = dict(values)
        if count_attempt:
            extra["attempts"] = PayoutModel.attempts + 1
        result = await self.session.execute(
            update(PayoutModel)
            .where(
                PayoutModel.winner_id == winner_id,
                PayoutModel.status.in_([s.value for s in expected]),
            )
            .values(status=new_status.value, updated_at=now, **extra)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_by_status(self, status: PayoutStatus, *, limit: int = 100) -> list[Payout]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.status == status.value)
            .order_by(PayoutModel.updated_at.asc(), PayoutModel.payout_id.asc())
            .limit(limit)
        )
        return [payout_from_model(m) for m in result.scalars().all()]

    async def list_by_raffle(self, raffle_id: str) -> list[Payout]:
        result = await self.session.execute(
            select(PayoutModel).where(PayoutModel.raffle_id == raffle_id).order_by(PayoutModel.created_at.asc())
        )
        return [payout_from_model(m) for m in result.scalars().all()]

    async def summary(self, raffle_id: str) -> PayoutSummary:
        result = await self.session.execute(
            select(PayoutModel.status, func.count(), func.coalesce(func.sum(PayoutModel.amount), 0))
            .where(PayoutModel.raffle_id == raffle_id)
            .group_by(PayoutModel.status)
        )
        counts: dict[PayoutStatus, int] = {}
        total = 0
        paid = 0
        for status, count, amount in result.all():
            counts[PayoutStatus(status)] = int(count)
            total += int(amount)
            if status == PayoutStatus.PAID.value:
                paid += int(amount)
        return PayoutSummary(raffle_id=raffle_id, counts=counts, total_amount=total, paid_amount=paid)


class PlatformStatsRepository:
    """Repository for the single platform statistics row."""

    COUNTERS = (
        "total_raffles",
        "total_raffles_completed",
        "total_raffles_cancelled",
        "total_entries",
        "total_revenue",
        "total_prizes_awarded",
        "total_winners",
        "total_paid_out",
        "total_payouts_paid",
        "total_payouts_failed",
    )

    def __init__(self, session: AsyncSession, *, stat_id: str = GLOBAL_STAT_ID) -> None:
        self.session = session
        self.stat_id = stat_id

    async def _ensure_row(self, now: datetime) -> None:
        stmt = (
            _insert_for(self.session, PlatformStatsModel)
            .values(stat_id=self.stat_id, updated_at=now, **{name: 0 for name in self.COUNTERS})
            .on_conflict_do_nothing(index_elements=["stat_id"])
        )
        await self.session.execute(stmt)

    async def increment(self, *, now: datetime | None = None, **deltas: int) -> None:
        """Add ``deltas`` to the named counters in place."""
        unknown = set(deltas) - set(self.COUNTERS)
        if unknown:
            raise ValueError(f"Unknown stats counters: {sorted(unknown)}")
        values: dict[str, Any] = {
            name: getattr(PlatformStatsModel, name) + delta for name, delta in deltas.items() if delta
        }
        if not values:
            return
        ts = now or datetime.now(UTC)
        await self._ensure_row(ts)
        await self.session.execute(
            update(PlatformStatsModel)
            .where(PlatformStatsModel.stat_id == self.stat_id)
            .values(updated_at=ts, **values)
            .execution_options(synchronize_session=False)
        )

    async def get(self) -> PlatformStats:
        result = await self.session.execute(
            select(PlatformStatsModel)
            .where(PlatformStatsModel.stat_id == self.stat_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return PlatformStats()
        return PlatformStats(
            **{name: int(getattr(model, name)) for name in self.COUNTERS},
            updated_at=_utc(model.updated_at),
        )
