"""Storage layer - Database schemas and repositories."""

from fairwin_raffle.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    transaction,
)
from fairwin_raffle.storage.models import (
    Base,
    EntryModel,
    PayoutModel,
    PlatformStatsModel,
    RaffleModel,
    RaffleParticipantModel,
    WinnerModel,
)
from fairwin_raffle.storage.repos import (
    EntryRepository,
    ParticipantRepository,
    PayoutRepository,
    PlatformStatsRepository,
    RaffleRepository,
    WinnerRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "EntryModel",
    "EntryRepository",
    "ParticipantRepository",
    "PayoutModel",
    "PayoutRepository",
    "PlatformStatsModel",
    "PlatformStatsRepository",
    "RaffleModel",
    "RaffleParticipantModel",
    "RaffleRepository",
    "WinnerModel",
    "WinnerRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "transaction",
]
