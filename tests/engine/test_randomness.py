"""Tests for draw seed sources."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import Web3Exception

from fairwin_raffle.engine.models import SeedSourceKind
from fairwin_raffle.engine.randomness import (
    BlockHashSeedSource,
    SeedSourceError,
    ServerSeedSource,
    seed_source_from_settings,
)

BLOCK_HASH = "0x" + "ab" * 32


def mock_web3(*side_effect: object) -> MagicMock:
    w3 = MagicMock()
    w3.eth.get_block = AsyncMock(side_effect=list(side_effect))
    return w3


class TestServerSeedSource:
    async def test_seed_format(self) -> None:
        commitment = await ServerSeedSource().next_seed("raffle-1")

        assert commitment.source is SeedSourceKind.SERVER
        assert commitment.seed.startswith("0x")
        assert len(commitment.seed) == 66
        assert commitment.block_number is None

    async def test_seeds_differ(self) -> None:
        source = ServerSeedSource()
        a = await source.next_seed("raffle-1")
        b = await source.next_seed("raffle-1")
        assert a.seed != b.seed


class TestBlockHashSeedSource:
    async def test_uses_latest_block(self) -> None:
        w3 = mock_web3({"number": 61_000_000, "hash": bytes.fromhex("ab" * 32)})
        source = BlockHashSeedSource("https://polygon.example", w3=w3)

        commitment = await source.next_seed("raffle-1")

        assert commitment.seed == BLOCK_HASH
        assert commitment.source is SeedSourceKind.BLOCK_HASH
        assert commitment.block_number == 61_000_000
        w3.eth.get_block.assert_awaited_once_with("latest")

    async def test_retries_then_succeeds(self) -> None:
        w3 = mock_web3(
            Web3Exception("rpc unavailable"),
            {"number": 7, "hash": BLOCK_HASH.upper().replace("0X", "0x")},
        )
        source = BlockHashSeedSource("https://polygon.example", w3=w3, retry_delay_seconds=0)

        commitment = await source.next_seed("raffle-1")

        assert commitment.seed == BLOCK_HASH
        assert w3.eth.get_block.await_count == 2

    async def test_gives_up_after_max_retries(self) -> None:
        w3 = mock_web3(OSError("down"), OSError("down"), OSError("down"))
        source = BlockHashSeedSource("https://polygon.example", w3=w3, max_retries=3, retry_delay_seconds=0)

        with pytest.raises(SeedSourceError):
            await source.next_seed("raffle-1")
        assert w3.eth.get_block.await_count == 3


class TestFactory:
    def test_server_source(self) -> None:
        assert isinstance(seed_source_from_settings("server", rpc_url="https://x"), ServerSeedSource)

    def test_block_hash_source(self) -> None:
        source = seed_source_from_settings("block_hash", rpc_url="https://polygon.example")
        assert isinstance(source, BlockHashSeedSource)
