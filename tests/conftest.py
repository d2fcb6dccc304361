"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fairwin_raffle.config import RaffleSettings
from fairwin_raffle.engine.models import RaffleParams, RaffleType
from fairwin_raffle.engine.service import RaffleEngine
from fairwin_raffle.storage.models import Base

FIXED_NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock injected into the engine."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_params(**overrides: Any) -> RaffleParams:
    """Raffle running from one hour before FIXED_NOW to one hour after, priced at 5."""
    values: dict[str, Any] = {
        "type": RaffleType.DAILY,
        "title": "Daily Draw",
        "entry_price": 5,
        "start_time": FIXED_NOW - timedelta(hours=1),
        "end_time": FIXED_NOW + timedelta(hours=1),
        "platform_fee_percent": Decimal("10"),
    }
    values.update(overrides)
    return RaffleParams(**values)


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncSession:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(FIXED_NOW)


@pytest.fixture
def raffle_settings() -> RaffleSettings:
    """Limits loose enough for single-unit entry prices."""
    return RaffleSettings(
        _env_file=None,
        RAFFLE_MIN_ENTRY_PRICE=1,
        RAFFLE_ENDING_THRESHOLD_SECONDS=300,
        RAFFLE_DEFAULT_PLATFORM_FEE_PERCENT=10,
        RAFFLE_MAX_PLATFORM_FEE_PERCENT=10,
    )


@pytest.fixture
def engine(session_factory, raffle_settings, clock) -> RaffleEngine:
    return RaffleEngine(session_factory, settings=raffle_settings, clock=clock)


@pytest.fixture
def params_factory() -> Callable[..., RaffleParams]:
    return make_params


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
