"""Raffle engine - lifecycle, entries, prize pool, draw and payouts.

Only the pure domain modules are re-exported here; import
``RaffleEngine`` from ``fairwin_raffle.engine.service``.
"""

from fairwin_raffle.engine.models import (
    PayoutOutcome,
    PayoutStatus,
    PrizeTier,
    RaffleParams,
    RaffleStatus,
    RaffleType,
    TransitionTrigger,
)
from fairwin_raffle.engine.prize_pool import PrizePoolCalculator
from fairwin_raffle.engine.winner_selector import EntrySnapshot, WinnerSelector

__all__ = [
    "EntrySnapshot",
    "PayoutOutcome",
    "PayoutStatus",
    "PrizePoolCalculator",
    "PrizeTier",
    "RaffleParams",
    "RaffleStatus",
    "RaffleType",
    "TransitionTrigger",
    "WinnerSelector",
]
