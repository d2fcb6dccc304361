"""Entry ledger: records ticket purchases against a raffle.

A submission is applied as one unit inside the caller's transaction:

1. The entry row is inserted unless its payment reference already exists
   (the reference is the idempotency key; a replay returns the original).
2. The wallet's participation aggregate is incremented only while it stays
   within ``max_entries_per_user``.
3. The raffle counters and fee split are incremented in place, guarded by
   status and end time.
4. Platform stats receive the ticket count and the protocol fee delta.

Any rejection raises and the caller's transaction rolls everything back.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from fairwin_raffle.engine.models import (
    ENTRY_STATUSES,
    Entry,
    EntryReceipt,
    Raffle,
    normalize_wallet,
)
from fairwin_raffle.engine.prize_pool import PrizePoolCalculator
from fairwin_raffle.engine.stats import StatsAggregator
from fairwin_raffle.errors import (
    InvalidEntry,
    MaxEntriesExceeded,
    RaffleNotActive,
    RaffleNotFound,
)
from fairwin_raffle.storage.repos import (
    EntryRepository,
    ParticipantRepository,
    RaffleRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES_PER_SUBMISSION = 10_000
MAX_PAYMENT_REFERENCE_LENGTH = 130


class EntryLedger:
    """Validates and records entry purchases.

    Example:
        ```python
        ledger = EntryLedger(session)
        receipt = await ledger.submit_entry(
            raffle_id,
            wallet_address="0xabc...",
            num_entries=5,
            total_paid=5 * raffle.entry_price,
            payment_reference=tx_hash,
            now=now,
        )
        if not receipt.created:
            print("duplicate submission, original entry returned")
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_entries_per_submission: int = DEFAULT_MAX_ENTRIES_PER_SUBMISSION,
        calculator: PrizePoolCalculator | None = None,
    ) -> None:
        self._raffles = RaffleRepository(session)
        self._entries = EntryRepository(session)
        self._participants = ParticipantRepository(session)
        self._stats = StatsAggregator(session)
        self._calculator = calculator or PrizePoolCalculator()
        self._max_per_submission = max_entries_per_submission

    def _validate_submission(
        self,
        wallet_address: str,
        num_entries: int,
        total_paid: int,
        payment_reference: str,
    ) -> str:
        if num_entries <= 0:
            raise InvalidEntry("num_entries must be positive", num_entries=num_entries)
        if num_entries > self._max_per_submission:
            raise InvalidEntry(
                f"At most {self._max_per_submission} entries per submission",
                num_entries=num_entries,
            )
        if total_paid <= 0:
            raise InvalidEntry("total_paid must be positive", total_paid=total_paid)
        reference = payment_reference.strip()
        if not reference or len(reference) > MAX_PAYMENT_REFERENCE_LENGTH:
            raise InvalidEntry("payment_reference is required", payment_reference=payment_reference)
        try:
            return normalize_wallet(wallet_address)
        except ValueError as e:
            raise InvalidEntry(str(e), wallet_address=wallet_address) from e

    def _check_raffle(self, raffle: Raffle, wallet: str, num_entries: int, total_paid: int, now: datetime) -> None:
        expected = num_entries * raffle.entry_price
        if total_paid != expected:
            raise InvalidEntry(
                f"total_paid {total_paid} does not match {num_entries} x {raffle.entry_price}",
                total_paid=total_paid,
                expected=expected,
            )
        if raffle.status not in ENTRY_STATUSES:
            raise RaffleNotActive(
                f"Raffle {raffle.raffle_id} is {raffle.status.value}",
                raffle_id=raffle.raffle_id,
                status=raffle.status.value,
            )
        if now < raffle.start_time or now >= raffle.end_time:
            raise RaffleNotActive(
                f"Raffle {raffle.raffle_id} is not accepting entries at {now.isoformat()}",
                raffle_id=raffle.raffle_id,
                status=raffle.status.value,
            )
        if num_entries > raffle.max_entries_per_user:
            raise MaxEntriesExceeded(
                f"Wallet {wallet} may hold at most {raffle.max_entries_per_user} entries",
                raffle_id=raffle.raffle_id,
                max_entries_per_user=raffle.max_entries_per_user,
            )

    async def _load_raffle(self, raffle_id: str) -> Raffle:
        raffle = await self._raffles.get(raffle_id)
        if raffle is None:
            raise RaffleNotFound(raffle_id)
        return raffle

    async def _replay(self, existing: Entry, raffle_id: str) -> EntryReceipt:
        if existing.raffle_id != raffle_id:
            raise InvalidEntry(
                "payment_reference already recorded for another raffle",
                payment_reference=existing.payment_reference,
                raffle_id=existing.raffle_id,
            )
        logger.debug(
            "Duplicate payment reference %s for raffle %s; returning entry %s",
            existing.payment_reference,
            raffle_id,
            existing.entry_id,
        )
        return EntryReceipt(entry=existing, created=False, raffle=await self._raffles.get(raffle_id))

    async def submit_entry(
        self,
        raffle_id: str,
        *,
        wallet_address: str,
        num_entries: int,
        total_paid: int,
        payment_reference: str,
        now: datetime,
    ) -> EntryReceipt:
        """Record a confirmed purchase of ``num_entries`` tickets.

        Returns:
            EntryReceipt with ``created=False`` when the payment reference
            was already recorded.

        Raises:
            RaffleNotFound: If the raffle does not exist.
            InvalidEntry: If the submission is malformed or mispriced.
            RaffleNotActive: If the raffle is not accepting entries.
            MaxEntriesExceeded: If the wallet would exceed its cap.
        """
        wallet = self._validate_submission(wallet_address, num_entries, total_paid, payment_reference)
        reference = payment_reference.strip()

        existing = await self._entries.get_by_payment_reference(reference)
        if existing is not None:
            return await self._replay(existing, raffle_id)

        raffle = await self._load_raffle(raffle_id)
        self._check_raffle(raffle, wallet, num_entries, total_paid, now)

        entry = await self._entries.insert_if_new(
            entry_id=str(uuid.uuid4()),
            raffle_id=raffle_id,
            wallet_address=wallet,
            num_entries=num_entries,
            total_paid=total_paid,
            payment_reference=reference,
            now=now,
        )
        if entry is None:
            # Lost a race with the same payment reference
            existing = await self._entries.get_by_payment_reference(reference)
            if existing is None:
                raise InvalidEntry("payment_reference conflict", payment_reference=reference)
            return await self._replay(existing, raffle_id)

        new_participant = await self._participants.add_entries(
            raffle_id,
            wallet,
            num_entries=num_entries,
            total_paid=total_paid,
            max_entries=raffle.max_entries_per_user,
            now=now,
        )
        if new_participant is None:
            held = await self._participants.get_entry_count(raffle_id, wallet)
            raise MaxEntriesExceeded(
                f"Wallet {wallet} holds {held} entries; {num_entries} more exceeds "
                f"the cap of {raffle.max_entries_per_user}",
                raffle_id=raffle_id,
                current_entries=held,
                max_entries_per_user=raffle.max_entries_per_user,
            )

        counters = await self._raffles.add_entries(
            raffle_id,
            num_entries=num_entries,
            total_paid=total_paid,
            new_participant=new_participant,
            now=now,
        )
        if counters is None:
            raise RaffleNotActive(
                f"Raffle {raffle_id} stopped accepting entries",
                raffle_id=raffle_id,
            )
        prize_pool, protocol_fee, fee_bps = counters
        fee_before = self._calculator.protocol_fee(prize_pool - total_paid, fee_bps)
        await self._stats.record_entry(num_entries, protocol_fee - fee_before, now=now)

        logger.info(
            "Entry %s: %d tickets for %s in raffle %s (pool=%d)",
            entry.entry_id,
            num_entries,
            wallet,
            raffle_id,
            prize_pool,
        )
        return EntryReceipt(entry=entry, created=True, raffle=await self._raffles.get(raffle_id))

    async def check_eligibility(
        self,
        raffle: Raffle,
        *,
        wallet_address: str,
        num_entries: int,
        now: datetime,
    ) -> Raffle:
        """Run the submission checks against ``raffle`` without writing anything.

        Returns:
            The raffle the wallet may enter.

        Raises:
            The same errors as ``submit_entry``.
        """
        raffle_id = raffle.raffle_id
        wallet = self._validate_submission(
            wallet_address, num_entries, num_entries * raffle.entry_price, "eligibility-check"
        )
        self._check_raffle(raffle, wallet, num_entries, num_entries * raffle.entry_price, now)
        held = await self._participants.get_entry_count(raffle_id, wallet)
        if held + num_entries > raffle.max_entries_per_user:
            raise MaxEntriesExceeded(
                f"Wallet {wallet} holds {held} entries; {num_entries} more exceeds "
                f"the cap of {raffle.max_entries_per_user}",
                raffle_id=raffle_id,
                current_entries=held,
                max_entries_per_user=raffle.max_entries_per_user,
            )
        return raffle

    async def list_entries(self, raffle_id: str) -> list[Entry]:
        return await self._entries.list_by_raffle(raffle_id)

    async def list_wallet_entries(self, wallet_address: str, *, raffle_id: str | None = None) -> list[Entry]:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as e:
            raise InvalidEntry(str(e), wallet_address=wallet_address) from e
        return await self._entries.list_by_wallet(wallet, raffle_id=raffle_id)

    async def wallet_entry_count(self, raffle_id: str, wallet_address: str) -> int:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as e:
            raise InvalidEntry(str(e), wallet_address=wallet_address) from e
        return await self._participants.get_entry_count(raffle_id, wallet)
