"""Ticket-weighted, seed-verifiable winner selection.

Selection is a pure function of the entry snapshot, the seed and the
prize tiers, so anyone holding the same inputs can reproduce it:

1. Entries are laid out in arrival order on consecutive ticket numbers
   starting at 1.
2. Each draw hashes ``f"{seed}:{counter}"`` with SHA-256 and reads the
   digest as a big-endian integer. Values in the final partial block
   ``[2**256 - 2**256 % n, 2**256)`` are rejected and the counter advances,
   so ``value % n`` is uniform over the ``n`` remaining tickets.
3. The drawn index is mapped through the tickets still in play. Once a
   wallet wins, every ticket it holds leaves play, so no wallet wins
   twice in the same raffle.
4. Slots are filled top tier first. If fewer distinct wallets entered
   than there are slots, only that many winners are drawn.
"""

from __future__ import annotations

import hashlib
import json
import logging
from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass
from itertools import accumulate

from fairwin_raffle.engine.models import PrizeTier
from fairwin_raffle.engine.prize_pool import PrizePoolCalculator
from fairwin_raffle.errors import NoEntriesForDraw

logger = logging.getLogger(__name__)

HASH_SPACE = 2**256


def normalize_seed(seed: str) -> str:
    normalized = seed.strip().lower()
    if not normalized:
        raise ValueError("random seed must not be empty")
    return normalized


def draw_value(seed: str, counter: int) -> int:
    """SHA-256 of ``"{seed}:{counter}"`` as an unsigned big-endian integer."""
    digest = hashlib.sha256(f"{seed}:{counter}".encode()).digest()
    return int.from_bytes(digest, "big")


@dataclass(frozen=True)
class EntrySnapshot:
    """Immutable view of one entry taken when the draw starts."""

    entry_id: str
    wallet_address: str
    num_entries: int
    sequence: int


@dataclass(frozen=True)
class TicketRange:
    """Tickets ``first..last`` (inclusive, 1-based) owned by one entry."""

    first: int
    last: int
    entry_id: str
    wallet_address: str

    @property
    def size(self) -> int:
        return self.last - self.first + 1


@dataclass(frozen=True)
class SelectedWinner:
    position: int
    tier: str
    tier_index: int
    ticket_number: int
    total_tickets: int
    wallet_address: str
    entry_id: str
    prize: int
    draw_counter: int

    def to_dict(self) -> dict[str, object]:
        return {
            "position": self.position,
            "tier": self.tier,
            "tier_index": self.tier_index,
            "ticket_number": self.ticket_number,
            "wallet_address": self.wallet_address,
            "entry_id": self.entry_id,
            "prize": self.prize,
        }


@dataclass(frozen=True)
class SelectionResult:
    """Winners in draw order plus the amount left unawarded for empty slots."""

    seed: str
    total_tickets: int
    winners: tuple[SelectedWinner, ...]
    unawarded: int

    @property
    def proof(self) -> str:
        """SHA-256 over the canonical selection, for audit trails."""
        payload = json.dumps(
            {
                "seed": self.seed,
                "total_tickets": self.total_tickets,
                "winners": [w.to_dict() for w in self.winners],
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode()).hexdigest()


def build_ticket_ranges(entries: Sequence[EntrySnapshot]) -> list[TicketRange]:
    """Lay entries out on consecutive ticket numbers in arrival order."""
    ranges: list[TicketRange] = []
    next_ticket = 1
    for entry in sorted(entries, key=lambda e: e.sequence):
        if entry.num_entries <= 0:
            continue
        last = next_ticket + entry.num_entries - 1
        ranges.append(
            TicketRange(
                first=next_ticket,
                last=last,
                entry_id=entry.entry_id,
                wallet_address=entry.wallet_address,
            )
        )
        next_ticket = last + 1
    return ranges


def find_ticket(ranges: Sequence[TicketRange], ticket_number: int) -> TicketRange | None:
    """Return the range holding ``ticket_number``."""
    index = bisect_right([r.first for r in ranges], ticket_number) - 1
    if index < 0 or ranges[index].last < ticket_number:
        return None
    return ranges[index]


class WinnerSelector:
    """Selects winners from a frozen entry snapshot and a seed.

    Example:
        ```python
        selector = WinnerSelector()
        result = selector.select(snapshot, seed, raffle.prize_tiers, raffle.winner_payout)
        for winner in result.winners:
            print(winner.position, winner.ticket_number, winner.wallet_address)
        ```
    """

    def __init__(self, calculator: PrizePoolCalculator | None = None) -> None:
        self._calculator = calculator or PrizePoolCalculator()

    def select(
        self,
        entries: Sequence[EntrySnapshot],
        seed: str,
        tiers: Sequence[PrizeTier],
        winner_payout: int,
    ) -> SelectionResult:
        """Draw winners for every tier slot.

        Args:
            entries: Entry snapshot taken after the raffle left ``ending``.
            seed: Random seed; surrounding whitespace and case are ignored.
            tiers: Configured prize tiers.
            winner_payout: Amount distributed to winners.

        Returns:
            SelectionResult with winners in draw order.

        Raises:
            NoEntriesForDraw: If the snapshot holds no tickets.
        """
        normalized = normalize_seed(seed)
        ranges = build_ticket_ranges(entries)
        if not ranges:
            raise NoEntriesForDraw("Cannot draw winners without entries")
        total_tickets = ranges[-1].last

        allocation = self._calculator.allocate(winner_payout, tiers)
        prizes = allocation.slot_prizes()
        slots = [
            (tier_alloc.tier.name, tier_alloc.tier_index)
            for tier_alloc in allocation.tiers
            for _ in range(tier_alloc.tier.winner_count)
        ]

        in_play = list(ranges)
        winners: list[SelectedWinner] = []
        counter = 0
        for position, ((tier_name, tier_index), prize) in enumerate(zip(slots, prizes, strict=True), start=1):
            if not in_play:
                break
            prefix = list(accumulate(r.size for r in in_play))
            remaining = prefix[-1]
            index, counter, used = self._draw_index(normalized, counter, remaining)

            slot = bisect_right(prefix, index)
            chosen = in_play[slot]
            offset = index - (prefix[slot - 1] if slot else 0)
            ticket = chosen.first + offset

            winners.append(
                SelectedWinner(
                    position=position,
                    tier=tier_name,
                    tier_index=tier_index,
                    ticket_number=ticket,
                    total_tickets=total_tickets,
                    wallet_address=chosen.wallet_address,
                    entry_id=chosen.entry_id,
                    prize=prize,
                    draw_counter=used,
                )
            )
            in_play = [r for r in in_play if r.wallet_address != chosen.wallet_address]

        unawarded = sum(prizes[len(winners) :])
        if len(winners) < len(slots):
            logger.info(
                "Only %d of %d winner slots filled (distinct wallets exhausted), %d unawarded",
                len(winners),
                len(slots),
                unawarded,
            )
        return SelectionResult(
            seed=normalized,
            total_tickets=total_tickets,
            winners=tuple(winners),
            unawarded=unawarded,
        )

    def verify_selection(
        self,
        entries: Sequence[EntrySnapshot],
        seed: str,
        tiers: Sequence[PrizeTier],
        winner_payout: int,
        expected: Sequence[tuple[int, str, int, int]],
    ) -> list[str]:
        """Recompute the draw and compare it with stored winners.

        Args:
            expected: ``(position, wallet_address, ticket_number, prize)`` rows.

        Returns:
            Human-readable mismatch descriptions; empty when the draw matches.
        """
        result = self.select(entries, seed, tiers, winner_payout)
        recomputed = {w.position: (w.wallet_address, w.ticket_number, w.prize) for w in result.winners}
        stored = {position: (wallet, ticket, prize) for position, wallet, ticket, prize in expected}

        mismatches: list[str] = []
        for position in sorted(set(recomputed) | set(stored)):
            got = stored.get(position)
            want = recomputed.get(position)
            if got != want:
                mismatches.append(f"position {position}: stored={got} recomputed={want}")
        return mismatches

    @staticmethod
    def _draw_index(seed: str, counter: int, remaining: int) -> tuple[int, int, int]:
        """Uniform index in ``[0, remaining)``.

        Returns:
            ``(index, next_counter, counter_used)``.
        """
        limit = HASH_SPACE - (HASH_SPACE % remaining)
        while True:
            value = draw_value(seed, counter)
            used = counter
            counter += 1
            if value < limit:
                return value % remaining, counter, used
