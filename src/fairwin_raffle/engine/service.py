"""Raffle engine facade.

``RaffleEngine`` is the interface offered to collaborators (admin API,
scheduler, payment verifier, payment executor). Each operation runs in
its own database transaction and returns an ``EngineResult``; rule
violations come back as tagged errors while infrastructure failures
propagate to the caller.

The draw is split in two commits. The ``ending -> drawing`` transition
and the seed are committed first; only then is the entry snapshot read,
so the snapshot cannot change underneath the selection. Winners, payouts
and ``drawing -> completed`` are committed together afterwards.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar

from fairwin_raffle.config import RaffleSettings
from fairwin_raffle.engine.entry_ledger import EntryLedger
from fairwin_raffle.engine.models import (
    MAX_SEED_LENGTH,
    DrawResult,
    DrawVerification,
    Entry,
    EntryReceipt,
    Payout,
    PayoutOutcome,
    PayoutSummary,
    PlatformStats,
    Raffle,
    RaffleParams,
    RaffleStatus,
    SeedSourceKind,
    TransitionTrigger,
    Winner,
    normalize_wallet,
    validate_prize_tiers,
)
from fairwin_raffle.engine.payouts import PayoutTracker
from fairwin_raffle.engine.prize_pool import percent_to_bps
from fairwin_raffle.engine.randomness import SeedCommitment, SeedSource, ServerSeedSource
from fairwin_raffle.engine.state_machine import RaffleStateMachine
from fairwin_raffle.engine.stats import StatsAggregator
from fairwin_raffle.engine.winner_selector import EntrySnapshot, SelectionResult, WinnerSelector
from fairwin_raffle.errors import (
    EngineResult,
    InvalidEntry,
    InvalidStatusTransition,
    NoEntriesForDraw,
    RaffleError,
    RaffleNotFound,
    ValidationError,
)
from fairwin_raffle.storage.database import transaction
from fairwin_raffle.storage.repos import (
    EntryRepository,
    RaffleRepository,
    WinnerRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValidationError("Datetimes must be timezone-aware", value=value.isoformat())
    return value.astimezone(UTC)


def _snapshot(entries: list[Entry]) -> list[EntrySnapshot]:
    return [
        EntrySnapshot(
            entry_id=e.entry_id,
            wallet_address=e.wallet_address,
            num_entries=e.num_entries,
            sequence=e.sequence,
        )
        for e in entries
    ]


class RaffleEngine:
    """Entry point for every raffle operation.

    Example:
        ```python
        db = DatabaseManager(settings.database.url)
        engine = RaffleEngine(db.session_factory, settings=settings.raffle)

        created = await engine.create_raffle(params)
        raffle = created.unwrap()

        result = await engine.submit_entry(
            raffle.raffle_id,
            wallet_address=wallet,
            num_entries=3,
            total_paid=3 * raffle.entry_price,
            payment_reference=tx_hash,
        )
        if not result.ok:
            print(result.kind, result.error.message)
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: RaffleSettings | None = None,
        seed_source: SeedSource | None = None,
        clock: Clock = _utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            session_factory: Async session factory bound to the raffle database.
            settings: Validation limits and lifecycle thresholds.
            seed_source: Seed provider used when a draw is requested without a seed.
            clock: Returns the current time; injectable for tests.
        """
        self._session_factory = session_factory
        self._settings = settings or RaffleSettings()
        self._seed_source = seed_source or ServerSeedSource()
        self._clock = clock
        self._selector = WinnerSelector()

    @property
    def ending_threshold(self) -> timedelta:
        return timedelta(seconds=self._settings.ending_threshold_seconds)

    def _now(self, now: datetime | None) -> datetime:
        return _as_utc(now) if now is not None else _as_utc(self._clock())

    def _state_machine(self, session: AsyncSession) -> RaffleStateMachine:
        return RaffleStateMachine(session, ending_threshold=self.ending_threshold)

    def _ledger(self, session: AsyncSession) -> EntryLedger:
        return EntryLedger(session, max_entries_per_submission=self._settings.max_entries_per_submission)

    async def _run(self, operation: str, func: Callable[[], Awaitable[T]]) -> EngineResult[T]:
        try:
            value = await func()
        except RaffleError as e:
            logger.info("%s rejected (%s): %s", operation, e.kind.value, e.message)
            return EngineResult.failure(e)
        return EngineResult.success(value)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _build_raffle(self, params: RaffleParams, now: datetime) -> Raffle:
        limits = self._settings
        title = params.title.strip()
        if not title:
            raise ValidationError("Raffle title is required")
        if not limits.min_entry_price <= params.entry_price <= limits.max_entry_price:
            raise ValidationError(
                f"entry_price must be within [{limits.min_entry_price}, {limits.max_entry_price}]",
                entry_price=params.entry_price,
            )
        if not 1 <= params.winner_count <= limits.max_winner_count:
            raise ValidationError(
                f"winner_count must be within [1, {limits.max_winner_count}]",
                winner_count=params.winner_count,
            )
        validate_prize_tiers(params.prize_tiers, params.winner_count)

        fee_percent = (
            params.platform_fee_percent
            if params.platform_fee_percent is not None
            else Decimal(limits.default_platform_fee_percent)
        )
        if not Decimal(0) <= Decimal(fee_percent) <= Decimal(limits.max_platform_fee_percent):
            raise ValidationError(
                f"platform_fee_percent must be within [0, {limits.max_platform_fee_percent}]",
                platform_fee_percent=str(fee_percent),
            )
        try:
            fee_bps = percent_to_bps(fee_percent)
        except ValueError as e:
            raise ValidationError(str(e), platform_fee_percent=str(fee_percent)) from e

        max_per_user = (
            params.max_entries_per_user
            if params.max_entries_per_user is not None
            else limits.default_max_entries_per_user
        )
        if max_per_user < 1:
            raise ValidationError("max_entries_per_user must be at least 1", max_entries_per_user=max_per_user)

        start_time = _as_utc(params.start_time)
        end_time = _as_utc(params.end_time) if params.end_time else start_time + params.type.default_duration
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")
        if end_time <= now:
            raise ValidationError("end_time must be in the future", end_time=end_time.isoformat())

        return Raffle(
            raffle_id=str(uuid.uuid4()),
            type=params.type,
            title=title,
            description=params.description,
            status=RaffleStatus.SCHEDULED,
            entry_price=params.entry_price,
            total_entries=0,
            total_participants=0,
            prize_pool=0,
            protocol_fee=0,
            winner_payout=0,
            winner_count=params.winner_count,
            platform_fee_bps=fee_bps,
            prize_tiers=tuple(params.prize_tiers),
            max_entries_per_user=max_per_user,
            start_time=start_time,
            end_time=end_time,
            created_at=now,
            updated_at=now,
        )

    async def create_raffle(self, params: RaffleParams, *, now: datetime | None = None) -> EngineResult[Raffle]:
        """Validate and store a new raffle.

        The raffle starts in ``scheduled`` and is advanced immediately if its
        start time has already passed.
        """

        async def op() -> Raffle:
            ts = self._now(now)
            raffle = self._build_raffle(params, ts)
            async with transaction(self._session_factory) as session:
                await RaffleRepository(session).insert(raffle)
                await StatsAggregator(session).record_raffle_created(now=ts)
                stored = await self._state_machine(session).advance_time(raffle.raffle_id, ts)
            logger.info(
                "Created %s raffle %s (%s) %s -> %s",
                stored.type.value,
                stored.raffle_id,
                stored.title,
                stored.start_time.isoformat(),
                stored.end_time.isoformat(),
            )
            return stored

        return await self._run("create_raffle", op)

    async def cancel_raffle(self, raffle_id: str, *, now: datetime | None = None) -> EngineResult[Raffle]:
        """Cancel a raffle that has not started drawing. Refunds are handled externally."""

        async def op() -> Raffle:
            ts = self._now(now)
            async with transaction(self._session_factory) as session:
                raffle = await self._state_machine(session).try_transition(
                    raffle_id, TransitionTrigger.CANCEL, ts
                )
                await StatsAggregator(session).record_raffle_cancelled(now=ts)
            return raffle

        return await self._run("cancel_raffle", op)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def advance_time(self, raffle_id: str, *, now: datetime | None = None) -> EngineResult[Raffle]:
        async def op() -> Raffle:
            async with transaction(self._session_factory) as session:
                return await self._state_machine(session).advance_time(raffle_id, self._now(now))

        return await self._run("advance_time", op)

    async def try_transition(
        self,
        raffle_id: str,
        trigger: TransitionTrigger,
        *,
        now: datetime | None = None,
    ) -> EngineResult[RaffleStatus]:
        """Apply a single trigger.

        ``draw`` runs the full draw and ``complete`` finishes a draw left in
        ``drawing``; both report the resulting status.
        """
        if trigger is TransitionTrigger.DRAW:
            drawn = await self.request_draw(raffle_id, now=now)
            if not drawn.ok:
                return EngineResult.failure(drawn.error)  # type: ignore[arg-type]
            return EngineResult.success(drawn.unwrap().raffle.status)
        if trigger is TransitionTrigger.COMPLETE:
            completed = await self.complete_draw(raffle_id, now=now)
            if not completed.ok:
                return EngineResult.failure(completed.error)  # type: ignore[arg-type]
            return EngineResult.success(completed.unwrap().raffle.status)
        if trigger is TransitionTrigger.CANCEL:
            cancelled = await self.cancel_raffle(raffle_id, now=now)
            if not cancelled.ok:
                return EngineResult.failure(cancelled.error)  # type: ignore[arg-type]
            return EngineResult.success(cancelled.unwrap().status)

        async def op() -> RaffleStatus:
            async with transaction(self._session_factory) as session:
                raffle = await self._state_machine(session).try_transition(raffle_id, trigger, self._now(now))
            return raffle.status

        return await self._run("try_transition", op)

    async def due_raffles(self, *, now: datetime | None = None, limit: int = 100) -> list[Raffle]:
        """Raffles with a pending time transition, a due draw, or a stuck draw."""
        ts = self._now(now)
        async with transaction(self._session_factory) as session:
            repo = RaffleRepository(session)
            due = await repo.list_due_to_start(ts, limit=limit)
            due += await repo.list_ending_before([RaffleStatus.ACTIVE], ts + self.ending_threshold, limit=limit)
            due += await repo.list_ending_before([RaffleStatus.ENDING, RaffleStatus.DRAWING], ts, limit=limit)
        return due

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def submit_entry(
        self,
        raffle_id: str,
        *,
        wallet_address: str,
        num_entries: int,
        total_paid: int,
        payment_reference: str,
        now: datetime | None = None,
    ) -> EngineResult[EntryReceipt]:
        """Record a verified payment as raffle entries.

        Safe to retry with the same ``payment_reference``.
        """

        async def op() -> EntryReceipt:
            ts = self._now(now)
            async with transaction(self._session_factory) as session:
                machine = self._state_machine(session)
                if await RaffleRepository(session).get(raffle_id) is not None:
                    await machine.advance_time(raffle_id, ts)
                return await self._ledger(session).submit_entry(
                    raffle_id,
                    wallet_address=wallet_address,
                    num_entries=num_entries,
                    total_paid=total_paid,
                    payment_reference=payment_reference,
                    now=ts,
                )

        return await self._run("submit_entry", op)

    async def check_eligibility(
        self,
        raffle_id: str,
        *,
        wallet_address: str,
        num_entries: int,
        now: datetime | None = None,
    ) -> EngineResult[Raffle]:
        async def op() -> Raffle:
            ts = self._now(now)
            async with transaction(self._session_factory) as session:
                raffle = await RaffleRepository(session).get(raffle_id)
                if raffle is None:
                    raise RaffleNotFound(raffle_id)
                # The sweep may lag behind the clock
                status = self._state_machine(session).display_status(raffle, ts)
                return await self._ledger(session).check_eligibility(
                    replace(raffle, status=status),
                    wallet_address=wallet_address,
                    num_entries=num_entries,
                    now=ts,
                )

        return await self._run("check_eligibility", op)

    # ------------------------------------------------------------------
    # Draw
    # ------------------------------------------------------------------

    async def request_draw(
        self,
        raffle_id: str,
        *,
        seed: str | None = None,
        now: datetime | None = None,
    ) -> EngineResult[DrawResult]:
        """Close the raffle and select its winners.

        Args:
            raffle_id: Raffle to draw.
            seed: Explicit seed; the configured seed source is used when omitted.
            now: Override of the current time.

        Errors:
            InvalidStatusTransition: The raffle is not ``ending`` with its end
                time passed, or another draw won the race.
            NoEntriesForDraw: Nobody entered; the raffle stays ``ending``.
        """

        async def op() -> DrawResult:
            ts = self._now(now)
            # The time-based advance commits even when the draw is refused
            async with transaction(self._session_factory) as session:
                machine = self._state_machine(session)
                raffle = await machine.advance_time(raffle_id, ts)
                entry_count = await EntryRepository(session).count_by_raffle(raffle_id)
            if raffle.status is not RaffleStatus.ENDING:
                raise InvalidStatusTransition(
                    f"Cannot draw raffle {raffle_id} in status {raffle.status.value}",
                    raffle_id=raffle_id,
                    status=raffle.status.value,
                )
            machine.check_guard(raffle, TransitionTrigger.DRAW, ts)
            if entry_count == 0:
                logger.warning("Raffle %s ended without entries; draw refused", raffle_id)
                raise NoEntriesForDraw(f"Raffle {raffle_id} has no entries", raffle_id=raffle_id)

            commitment = (
                SeedCommitment(seed=seed.strip(), source=SeedSourceKind.MANUAL)
                if seed is not None
                else await self._seed_source.next_seed(raffle_id)
            )
            if not commitment.seed:
                raise ValidationError("Draw seed must not be empty", raffle_id=raffle_id)
            if len(commitment.seed) > MAX_SEED_LENGTH:
                raise ValidationError(
                    f"Draw seed is longer than {MAX_SEED_LENGTH} characters",
                    raffle_id=raffle_id,
                    seed_length=len(commitment.seed),
                )

            async with transaction(self._session_factory) as session:
                await self._state_machine(session).try_transition(
                    raffle_id,
                    TransitionTrigger.DRAW,
                    ts,
                    random_seed=commitment.seed,
                    seed_source=commitment.source.value,
                    seed_block_number=commitment.block_number,
                    draw_time=ts,
                )
            logger.info("Raffle %s drawing with %s seed", raffle_id, commitment.source.value)
            return await self._complete(raffle_id, ts)

        return await self._run("request_draw", op)

    async def complete_draw(self, raffle_id: str, *, now: datetime | None = None) -> EngineResult[DrawResult]:
        """Finish a draw left in ``drawing`` using the stored seed."""

        async def op() -> DrawResult:
            return await self._complete(raffle_id, self._now(now))

        return await self._run("complete_draw", op)

    async def _complete(self, raffle_id: str, now: datetime) -> DrawResult:
        async with transaction(self._session_factory) as session:
            raffles = RaffleRepository(session)
            raffle = await raffles.get(raffle_id)
            if raffle is None:
                raise RaffleNotFound(raffle_id)
            if raffle.status is not RaffleStatus.DRAWING or raffle.random_seed is None:
                raise InvalidStatusTransition(
                    f"Raffle {raffle_id} is not drawing",
                    raffle_id=raffle_id,
                    status=raffle.status.value,
                )

            entries = await EntryRepository(session).list_by_raffle(raffle_id)
            selection = self._selector.select(
                _snapshot(entries),
                raffle.random_seed,
                raffle.prize_tiers,
                raffle.winner_payout,
            )
            winners = self._winners_from(raffle, selection, now)
            await WinnerRepository(session).insert_many(winners)
            await PayoutTracker(session).open_payouts(winners, now=now)

            completed = await self._state_machine(session).try_transition(
                raffle_id, TransitionTrigger.COMPLETE, now
            )
            awarded = sum(w.prize for w in winners)
            await StatsAggregator(session).record_draw(len(winners), awarded, now=now)

        logger.info(
            "Raffle %s completed: %d winners from %d tickets, %d awarded, %d unawarded",
            raffle_id,
            len(winners),
            selection.total_tickets,
            awarded,
            selection.unawarded,
        )
        return DrawResult(
            raffle=completed,
            winners=tuple(winners),
            proof=selection.proof,
            unawarded=selection.unawarded,
        )

    @staticmethod
    def _winners_from(raffle: Raffle, selection: SelectionResult, now: datetime) -> list[Winner]:
        return [
            Winner(
                winner_id=str(uuid.uuid4()),
                raffle_id=raffle.raffle_id,
                position=w.position,
                wallet_address=w.wallet_address,
                ticket_number=w.ticket_number,
                total_tickets=w.total_tickets,
                prize=w.prize,
                tier=w.tier,
                tier_index=w.tier_index,
                entry_id=w.entry_id,
                created_at=now,
            )
            for w in selection.winners
        ]

    async def verify_draw(self, raffle_id: str) -> EngineResult[DrawVerification]:
        """Recompute a completed draw from the stored seed and entries."""

        async def op() -> DrawVerification:
            async with transaction(self._session_factory) as session:
                raffle = await RaffleRepository(session).get(raffle_id)
                if raffle is None:
                    raise RaffleNotFound(raffle_id)
                if raffle.status is not RaffleStatus.COMPLETED or raffle.random_seed is None:
                    raise InvalidStatusTransition(
                        f"Raffle {raffle_id} has no completed draw",
                        raffle_id=raffle_id,
                        status=raffle.status.value,
                    )
                entries = await EntryRepository(session).list_by_raffle(raffle_id)
                winners = await WinnerRepository(session).list_by_raffle(raffle_id)

            snapshot = _snapshot(entries)
            mismatches = self._selector.verify_selection(
                snapshot,
                raffle.random_seed,
                raffle.prize_tiers,
                raffle.winner_payout,
                [(w.position, w.wallet_address, w.ticket_number, w.prize) for w in winners],
            )
            proof = self._selector.select(
                snapshot, raffle.random_seed, raffle.prize_tiers, raffle.winner_payout
            ).proof
            if mismatches:
                logger.warning("Draw verification failed for raffle %s: %s", raffle_id, mismatches)
            return DrawVerification(
                raffle_id=raffle_id,
                valid=not mismatches,
                proof=proof,
                mismatches=tuple(mismatches),
            )

        return await self._run("verify_draw", op)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def start_payout(self, winner_id: str, *, now: datetime | None = None) -> EngineResult[Payout]:
        async def op() -> Payout:
            async with transaction(self._session_factory) as session:
                return await PayoutTracker(session).start_attempt(winner_id, now=self._now(now))

        return await self._run("start_payout", op)

    async def record_payout_attempt(
        self,
        winner_id: str,
        outcome: PayoutOutcome,
        *,
        now: datetime | None = None,
    ) -> EngineResult[Payout]:
        async def op() -> Payout:
            async with transaction(self._session_factory) as session:
                return await PayoutTracker(session).record_payout_attempt(
                    winner_id, outcome, now=self._now(now)
                )

        return await self._run("record_payout_attempt", op)

    async def list_retryable_payouts(self, *, limit: int = 100) -> list[Payout]:
        async with transaction(self._session_factory) as session:
            return await PayoutTracker(session).list_retryable(limit=limit)

    async def payout_summary(self, raffle_id: str) -> EngineResult[PayoutSummary]:
        async def op() -> PayoutSummary:
            async with transaction(self._session_factory) as session:
                if await RaffleRepository(session).get(raffle_id) is None:
                    raise RaffleNotFound(raffle_id)
                return await PayoutTracker(session).summary(raffle_id)

        return await self._run("payout_summary", op)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_raffle(self, raffle_id: str) -> EngineResult[Raffle]:
        async def op() -> Raffle:
            async with transaction(self._session_factory) as session:
                raffle = await RaffleRepository(session).get(raffle_id)
            if raffle is None:
                raise RaffleNotFound(raffle_id)
            return raffle

        return await self._run("get_raffle", op)

    async def list_raffles(
        self,
        statuses: list[RaffleStatus] | None = None,
        *,
        limit: int = 100,
    ) -> list[Raffle]:
        async with transaction(self._session_factory) as session:
            return await RaffleRepository(session).list_by_status(statuses, limit=limit)

    async def list_entries(self, raffle_id: str) -> list[Entry]:
        async with transaction(self._session_factory) as session:
            return await EntryRepository(session).list_by_raffle(raffle_id)

    async def list_wallet_entries(
        self,
        wallet_address: str,
        *,
        raffle_id: str | None = None,
    ) -> EngineResult[list[Entry]]:
        async def op() -> list[Entry]:
            async with transaction(self._session_factory) as session:
                return await self._ledger(session).list_wallet_entries(wallet_address, raffle_id=raffle_id)

        return await self._run("list_wallet_entries", op)

    async def list_winners(self, raffle_id: str) -> list[Winner]:
        async with transaction(self._session_factory) as session:
            return await WinnerRepository(session).list_by_raffle(raffle_id)

    async def list_wallet_wins(self, wallet_address: str) -> EngineResult[list[Winner]]:
        async def op() -> list[Winner]:
            try:
                wallet = normalize_wallet(wallet_address)
            except ValueError as e:
                raise InvalidEntry(str(e), wallet_address=wallet_address) from e
            async with transaction(self._session_factory) as session:
                return await WinnerRepository(session).list_by_wallet(wallet)

        return await self._run("list_wallet_wins", op)

    async def platform_stats(self) -> PlatformStats:
        async with transaction(self._session_factory) as session:
            return await StatsAggregator(session).snapshot()
