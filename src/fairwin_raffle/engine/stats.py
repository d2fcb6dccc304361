"""Platform-wide statistics."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from fairwin_raffle.engine.models import PlatformStats
from fairwin_raffle.storage.repos import PlatformStatsRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Records lifecycle events as atomic increments on the stats row.

    Every ``record_*`` call runs inside the caller's transaction, so the
    counters commit or roll back together with the event they describe.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._repo = PlatformStatsRepository(session)

    async def record_raffle_created(self, *, now: datetime | None = None) -> None:
        await self._repo.increment(now=now, total_raffles=1)

    async def record_raffle_cancelled(self, *, now: datetime | None = None) -> None:
        await self._repo.increment(now=now, total_raffles_cancelled=1)

    async def record_entry(self, num_entries: int, fee_delta: int, *, now: datetime | None = None) -> None:
        """Count purchased tickets and the protocol fee they added."""
        await self._repo.increment(now=now, total_entries=num_entries, total_revenue=fee_delta)

    async def record_draw(self, winner_count: int, prizes_awarded: int, *, now: datetime | None = None) -> None:
        await self._repo.increment(
            now=now,
            total_raffles_completed=1,
            total_winners=winner_count,
            total_prizes_awarded=prizes_awarded,
        )

    async def record_payout_paid(self, amount: int, *, now: datetime | None = None) -> None:
        await self._repo.increment(now=now, total_paid_out=amount, total_payouts_paid=1)

    async def record_payout_failed(self, *, now: datetime | None = None) -> None:
        await self._repo.increment(now=now, total_payouts_failed=1)

    async def snapshot(self) -> PlatformStats:
        return await self._repo.get()
