"""FairWin raffle engine.

Timed raffles with a consistent entry ledger, tiered prize pools,
seed-verifiable winner selection and payout tracking.
"""

__version__ = "0.1.0"
