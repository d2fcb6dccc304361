"""Payout tracking for drawn winners.

Each winner owns exactly one payout row. Attempts move it through
``PAYOUT_TRANSITIONS``; a paid payout is final.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from fairwin_raffle.engine.models import (
    PAYOUT_TRANSITIONS,
    Payout,
    PayoutOutcome,
    PayoutStatus,
    PayoutSummary,
    Winner,
)
from fairwin_raffle.engine.stats import StatsAggregator
from fairwin_raffle.errors import (
    InvalidStatusTransition,
    PayoutAlreadyProcessed,
    PayoutNotFound,
    ValidationError,
    WinnerNotFound,
)
from fairwin_raffle.storage.repos import PayoutRepository, WinnerRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def sources_for(target: PayoutStatus) -> frozenset[PayoutStatus]:
    """Statuses allowed to move to ``target``."""
    return frozenset(status for status, targets in PAYOUT_TRANSITIONS.items() if target in targets)


class PayoutTracker:
    """Creates payouts for winners and records payment attempts."""

    def __init__(self, session: AsyncSession) -> None:
        self._payouts = PayoutRepository(session)
        self._winners = WinnerRepository(session)
        self._stats = StatsAggregator(session)

    async def open_payouts(self, winners: Sequence[Winner], *, now: datetime) -> list[Payout]:
        """Create one pending payout per winner, for exactly the winner's prize."""
        payouts = [
            Payout(
                payout_id=str(uuid.uuid4()),
                winner_id=winner.winner_id,
                raffle_id=winner.raffle_id,
                wallet_address=winner.wallet_address,
                amount=winner.prize,
                status=PayoutStatus.PENDING,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            for winner in winners
        ]
        await self._payouts.insert_many(payouts)
        return payouts

    async def _load(self, winner_id: str) -> Payout:
        payout = await self._payouts.get_by_winner(winner_id)
        if payout is not None:
            return payout
        if await self._winners.get(winner_id) is None:
            raise WinnerNotFound(winner_id)
        raise PayoutNotFound(winner_id)

    async def start_attempt(self, winner_id: str, *, now: datetime) -> Payout:
        """Mark a payout as in flight before calling the payment executor.

        Raises:
            PayoutAlreadyProcessed: If the payout is already paid.
            InvalidStatusTransition: If another attempt is in flight.
        """
        payout = await self._load(winner_id)
        if payout.status is PayoutStatus.PAID:
            raise PayoutAlreadyProcessed(
                f"Payout for winner {winner_id} is already paid",
                winner_id=winner_id,
                payment_reference=payout.payment_reference,
            )
        changed = await self._payouts.compare_and_set_status(
            winner_id,
            sources_for(PayoutStatus.PROCESSING),
            PayoutStatus.PROCESSING,
            now=now,
            count_attempt=True,
            error=None,
        )
        if not changed:
            current = await self._load(winner_id)
            if current.status is PayoutStatus.PAID:
                raise PayoutAlreadyProcessed(
                    f"Payout for winner {winner_id} is already paid",
                    winner_id=winner_id,
                    payment_reference=current.payment_reference,
                )
            raise InvalidStatusTransition(
                f"Payout for winner {winner_id} is {current.status.value}",
                winner_id=winner_id,
                status=current.status.value,
            )
        logger.info("Payout attempt started for winner %s", winner_id)
        return await self._load(winner_id)

    async def record_payout_attempt(self, winner_id: str, outcome: PayoutOutcome, *, now: datetime) -> Payout:
        """Record the result of a payment attempt.

        Success moves a ``processing`` payout to ``paid`` and stores the
        payment reference, so ``start_attempt`` must come first. Failure
        moves a ``pending`` or ``processing`` payout to ``failed`` so it can
        be retried. Reporting the same successful reference twice is a no-op.

        Raises:
            WinnerNotFound: If the winner does not exist.
            PayoutAlreadyProcessed: If the payout is already paid with a
                different reference, or a failure is reported after payment.
            InvalidStatusTransition: If the payout's status does not allow
                the reported outcome.
            ValidationError: If a success carries no payment reference.
        """
        payout = await self._load(winner_id)
        if payout.status is PayoutStatus.PAID:
            return self._paid_again(payout, outcome)

        reference = (outcome.payment_reference or "").strip()
        if outcome.success and not reference:
            raise ValidationError("A successful payout requires a payment reference", winner_id=winner_id)

        target = PayoutStatus.PAID if outcome.success else PayoutStatus.FAILED
        if payout.status not in sources_for(target):
            raise InvalidStatusTransition(
                f"Payout for winner {winner_id} is {payout.status.value}; cannot record it as {target.value}",
                winner_id=winner_id,
                status=payout.status.value,
                target=target.value,
            )

        if outcome.success:
            values: dict[str, object] = {"payment_reference": reference, "processed_at": now, "error": None}
        else:
            values = {"error": (outcome.error or "unknown payment error")[:2000]}
        changed = await self._payouts.compare_and_set_status(
            winner_id,
            [payout.status],
            target,
            now=now,
            # A failure reported without start_attempt still counts as one
            count_attempt=payout.status is PayoutStatus.PENDING,
            **values,
        )
        if not changed:
            return self._paid_again(await self._load(winner_id), outcome)

        if outcome.success:
            await self._stats.record_payout_paid(payout.amount, now=now)
            logger.info(
                "Payout for winner %s paid: %d to %s (ref=%s)",
                winner_id,
                payout.amount,
                payout.wallet_address,
                reference,
            )
        else:
            await self._stats.record_payout_failed(now=now)
            logger.warning("Payout for winner %s failed: %s", winner_id, values["error"])
        return await self._load(winner_id)

    def _paid_again(self, payout: Payout, outcome: PayoutOutcome) -> Payout:
        if payout.status is not PayoutStatus.PAID:
            raise InvalidStatusTransition(
                f"Payout for winner {payout.winner_id} changed concurrently to {payout.status.value}",
                winner_id=payout.winner_id,
                status=payout.status.value,
            )
        reference = (outcome.payment_reference or "").strip()
        if outcome.success and reference == payout.payment_reference:
            logger.debug("Payout for winner %s already recorded as paid", payout.winner_id)
            return payout
        raise PayoutAlreadyProcessed(
            f"Payout for winner {payout.winner_id} is already paid",
            winner_id=payout.winner_id,
            payment_reference=payout.payment_reference,
        )

    async def get(self, winner_id: str) -> Payout:
        return await self._load(winner_id)

    async def list_retryable(self, *, limit: int = 100) -> list[Payout]:
        """Failed payouts, least recently touched first."""
        return await self._payouts.list_by_status(PayoutStatus.FAILED, limit=limit)

    async def list_by_status(self, status: PayoutStatus, *, limit: int = 100) -> list[Payout]:
        return await self._payouts.list_by_status(status, limit=limit)

    async def list_by_raffle(self, raffle_id: str) -> list[Payout]:
        return await self._payouts.list_by_raffle(raffle_id)

    async def summary(self, raffle_id: str) -> PayoutSummary:
        return await self._payouts.summary(raffle_id)
