"""Tests for configuration loading."""

import logging

import pytest
from pydantic import ValidationError

from fairwin_raffle.config import (
    RaffleSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run each test away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "DATABASE_URL",
        "LOG_LEVEL",
        "RAFFLE_MIN_ENTRY_PRICE",
        "RAFFLE_DEFAULT_PLATFORM_FEE_PERCENT",
        "RAFFLE_MAX_PLATFORM_FEE_PERCENT",
        "RANDOMNESS_SOURCE",
        "POLYGON_RPC_URL",
        "SCHEDULER_INTERVAL_SECONDS",
        "SCHEDULER_AUTO_DRAW",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestDefaults:
    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.database.url.startswith("sqlite+aiosqlite://")
        assert settings.raffle.ending_threshold_seconds == 300
        assert settings.raffle.default_platform_fee_percent == 10
        assert settings.raffle.min_entry_price == 1_000_000
        assert settings.randomness.source == "server"
        assert settings.scheduler.auto_draw is True
        assert settings.get_logging_level() == logging.INFO

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://raffle:secret@db:5432/raffle")
        monkeypatch.setenv("RANDOMNESS_SOURCE", "block_hash")
        monkeypatch.setenv("POLYGON_RPC_URL", "https://polygon.example/rpc")
        monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = get_settings()

        assert settings.database.url == "postgresql+asyncpg://raffle:secret@db:5432/raffle"
        assert settings.randomness.source == "block_hash"
        assert settings.scheduler.interval_seconds == 5
        assert settings.get_logging_level() == logging.DEBUG

    def test_reads_env_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("RAFFLE_MIN_ENTRY_PRICE=250000\n")

        settings = Settings()

        assert settings.raffle.min_entry_price == 250_000

    def test_rejects_unsupported_database(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "mysql://root@localhost/raffle")

        with pytest.raises(ValidationError):
            Settings()

    def test_rejects_fee_default_above_max(self) -> None:
        with pytest.raises(ValidationError):
            RaffleSettings(
                _env_file=None,
                RAFFLE_DEFAULT_PLATFORM_FEE_PERCENT=15,
                RAFFLE_MAX_PLATFORM_FEE_PERCENT=10,
            )

    def test_rejects_non_http_rpc(self, monkeypatch) -> None:
        monkeypatch.setenv("POLYGON_RPC_URL", "ws://polygon.example")

        with pytest.raises(ValidationError):
            Settings()


class TestRedaction:
    def test_password_is_masked(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://raffle:secret@db:5432/raffle")

        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql+asyncpg://raffle:***@db:5432/raffle"
        assert "secret" not in str(summary)

    def test_url_without_credentials_unchanged(self) -> None:
        assert Settings._redact_url("https://polygon-rpc.com") == "https://polygon-rpc.com"
