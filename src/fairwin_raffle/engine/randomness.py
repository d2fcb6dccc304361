"""Draw seed sources.

A seed is committed to the raffle row when it enters ``drawing``, so the
draw can be replayed and verified from stored data regardless of where
the seed came from.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Protocol

from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from fairwin_raffle.engine.models import SeedSourceKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
SEED_BYTES = 32


class SeedSourceError(Exception):
    """Raised when a seed cannot be obtained."""


@dataclass(frozen=True)
class SeedCommitment:
    """A seed and where it came from."""

    seed: str
    source: SeedSourceKind
    block_number: int | None = None


class SeedSource(Protocol):
    async def next_seed(self, raffle_id: str) -> SeedCommitment: ...


class ServerSeedSource:
    """32 bytes from the operating system CSPRNG, hex encoded with 0x prefix."""

    async def next_seed(self, raffle_id: str) -> SeedCommitment:
        seed = "0x" + secrets.token_hex(SEED_BYTES)
        logger.debug("Generated server seed for raffle %s", raffle_id)
        return SeedCommitment(seed=seed, source=SeedSourceKind.SERVER)


class BlockHashSeedSource:
    """Uses the hash of the latest Polygon block as the seed.

    The block number is stored with the seed so auditors can check the
    hash against any public Polygon node.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        w3: AsyncWeb3[Any] | None = None,
    ) -> None:
        """Initialize the block hash source.

        Args:
            rpc_url: Polygon RPC endpoint URL.
            max_retries: Maximum attempts per seed request.
            retry_delay_seconds: Initial delay between attempts, doubled each retry.
            w3: Preconfigured client, mainly for tests.
        """
        self._rpc_url = rpc_url
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._w3 = w3 or self._new_web3_client(rpc_url)

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except ValueError as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    async def next_seed(self, raffle_id: str) -> SeedCommitment:
        """Fetch the latest block hash.

        Raises:
            SeedSourceError: If every attempt fails.
        """
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                block = await self._w3.eth.get_block("latest")
                block_hash = block["hash"]
                seed = block_hash if isinstance(block_hash, str) else "0x" + bytes(block_hash).hex()
                logger.info(
                    "Using block %s hash as seed for raffle %s",
                    block["number"],
                    raffle_id,
                )
                return SeedCommitment(
                    seed=seed.lower(),
                    source=SeedSourceKind.BLOCK_HASH,
                    block_number=int(block["number"]),
                )
            except (Web3Exception, OSError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    "Block hash fetch failed (attempt %d/%d, rpc=%s): %s",
                    attempt,
                    self._max_retries,
                    self._rpc_url,
                    e,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise SeedSourceError(f"Could not obtain block hash seed: {last_error}")


def seed_source_from_settings(source: str, *, rpc_url: str) -> SeedSource:
    if source == SeedSourceKind.BLOCK_HASH.value:
        return BlockHashSeedSource(rpc_url)
    return ServerSeedSource()
