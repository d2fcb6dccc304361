"""Domain types for the raffle engine.

Closed status enums with their transition tables, the validated
``PrizeTier`` value type and the read models returned by the engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from fairwin_raffle.errors import ValidationError

WALLET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# Width of the stored random_seed column
MAX_SEED_LENGTH = 130


class RaffleType(str, Enum):
    """Raffle cadence, which also sets the default duration."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    FLASH = "flash"
    MEGA = "mega"

    @property
    def default_duration(self) -> timedelta:
        return RAFFLE_TYPE_DURATIONS[self]


RAFFLE_TYPE_DURATIONS: dict[RaffleType, timedelta] = {
    RaffleType.DAILY: timedelta(hours=24),
    RaffleType.WEEKLY: timedelta(days=7),
    RaffleType.MONTHLY: timedelta(days=30),
    RaffleType.FLASH: timedelta(hours=1),
    RaffleType.MEGA: timedelta(days=7),
}


class RaffleStatus(str, Enum):
    """Raffle lifecycle states."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDING = "ending"
    DRAWING = "drawing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not RAFFLE_TRANSITIONS[self]

    @property
    def accepts_entries(self) -> bool:
        return self in ENTRY_STATUSES


RAFFLE_TRANSITIONS: dict[RaffleStatus, frozenset[RaffleStatus]] = {
    RaffleStatus.SCHEDULED: frozenset({RaffleStatus.ACTIVE, RaffleStatus.CANCELLED}),
    RaffleStatus.ACTIVE: frozenset({RaffleStatus.ENDING, RaffleStatus.CANCELLED}),
    RaffleStatus.ENDING: frozenset({RaffleStatus.DRAWING, RaffleStatus.CANCELLED}),
    RaffleStatus.DRAWING: frozenset({RaffleStatus.COMPLETED}),
    RaffleStatus.COMPLETED: frozenset(),
    RaffleStatus.CANCELLED: frozenset(),
}

ENTRY_STATUSES: frozenset[RaffleStatus] = frozenset({RaffleStatus.ACTIVE, RaffleStatus.ENDING})


class TransitionTrigger(str, Enum):
    """Events that move a raffle through its lifecycle."""

    START = "start"
    CLOSE_SOON = "close_soon"
    DRAW = "draw"
    COMPLETE = "complete"
    CANCEL = "cancel"


# (source statuses, target status) per trigger
TRIGGER_TRANSITIONS: dict[TransitionTrigger, tuple[frozenset[RaffleStatus], RaffleStatus]] = {
    TransitionTrigger.START: (frozenset({RaffleStatus.SCHEDULED}), RaffleStatus.ACTIVE),
    TransitionTrigger.CLOSE_SOON: (frozenset({RaffleStatus.ACTIVE}), RaffleStatus.ENDING),
    TransitionTrigger.DRAW: (frozenset({RaffleStatus.ENDING}), RaffleStatus.DRAWING),
    TransitionTrigger.COMPLETE: (frozenset({RaffleStatus.DRAWING}), RaffleStatus.COMPLETED),
    TransitionTrigger.CANCEL: (
        frozenset({RaffleStatus.SCHEDULED, RaffleStatus.ACTIVE, RaffleStatus.ENDING}),
        RaffleStatus.CANCELLED,
    ),
}


class PayoutStatus(str, Enum):
    """Payout states for a single winner."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.PROCESSING, PayoutStatus.FAILED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED}),
    PayoutStatus.FAILED: frozenset({PayoutStatus.PROCESSING}),
    PayoutStatus.PAID: frozenset(),
}


class EntryStatus(str, Enum):
    CONFIRMED = "confirmed"
    REFUNDED = "refunded"


class SeedSourceKind(str, Enum):
    SERVER = "server"
    BLOCK_HASH = "block_hash"
    MANUAL = "manual"


def normalize_wallet(address: str) -> str:
    """Validate and lower-case a 0x-prefixed 20-byte address.

    Raises:
        ValueError: If the address is not 0x followed by 40 hex characters.
    """
    candidate = address.strip()
    if not WALLET_ADDRESS_RE.match(candidate):
        raise ValueError(f"Invalid wallet address: {address!r}")
    return candidate.lower()


@dataclass(frozen=True)
class PrizeTier:
    """A share of the winner payout split across ``winner_count`` winners.

    Attributes:
        name: Display name (e.g. "Grand Prize").
        percentage: Share of the winner payout, in percent.
        winner_count: Number of winners drawn for this tier.
    """

    name: str
    percentage: Decimal
    winner_count: int

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Prize tier name must not be empty")
        if not isinstance(self.percentage, Decimal):
            object.__setattr__(self, "percentage", Decimal(str(self.percentage)))
        if self.percentage <= 0 or self.percentage > 100:
            raise ValidationError(
                f"Prize tier {self.name!r} percentage must be in (0, 100]",
                percentage=str(self.percentage),
            )
        if self.winner_count < 1:
            raise ValidationError(
                f"Prize tier {self.name!r} must have at least one winner",
                winner_count=self.winner_count,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "percentage": str(self.percentage),
            "winner_count": self.winner_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PrizeTier:
        return cls(
            name=str(data["name"]),
            percentage=Decimal(str(data["percentage"])),
            winner_count=int(data["winner_count"]),
        )


DEFAULT_PRIZE_TIERS: tuple[PrizeTier, ...] = (
    PrizeTier(name="Grand Prize", percentage=Decimal("100"), winner_count=1),
)


def validate_prize_tiers(tiers: tuple[PrizeTier, ...] | list[PrizeTier], winner_count: int) -> None:
    """Check that tiers cover 100% of the payout and exactly ``winner_count`` winners.

    Raises:
        ValidationError: If the tier set is empty or inconsistent.
    """
    if not tiers:
        raise ValidationError("At least one prize tier is required")
    total_percent = sum((t.percentage for t in tiers), Decimal("0"))
    if total_percent != Decimal("100"):
        raise ValidationError(
            f"Prize tier percentages must sum to 100 (got {total_percent})",
            total_percent=str(total_percent),
        )
    total_winners = sum(t.winner_count for t in tiers)
    if total_winners != winner_count:
        raise ValidationError(
            f"Prize tier winner counts ({total_winners}) must equal winner_count ({winner_count})",
            tier_winners=total_winners,
            winner_count=winner_count,
        )


@dataclass(frozen=True)
class RaffleParams:
    """Administrative input for creating a raffle.

    ``end_time`` defaults to ``start_time`` plus the type's default
    duration; ``platform_fee_percent`` and ``max_entries_per_user`` fall
    back to configured defaults.
    """

    type: RaffleType
    title: str
    entry_price: int
    start_time: datetime
    end_time: datetime | None = None
    description: str = ""
    winner_count: int = 1
    prize_tiers: tuple[PrizeTier, ...] = DEFAULT_PRIZE_TIERS
    platform_fee_percent: Decimal | None = None
    max_entries_per_user: int | None = None


@dataclass(frozen=True)
class Raffle:
    """Read model of a persisted raffle."""

    raffle_id: str
    type: RaffleType
    title: str
    description: str
    status: RaffleStatus
    entry_price: int
    total_entries: int
    total_participants: int
    prize_pool: int
    protocol_fee: int
    winner_payout: int
    winner_count: int
    platform_fee_bps: int
    prize_tiers: tuple[PrizeTier, ...]
    max_entries_per_user: int
    start_time: datetime
    end_time: datetime
    draw_time: datetime | None = None
    random_seed: str | None = None
    seed_source: str | None = None
    seed_block_number: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def platform_fee_percent(self) -> Decimal:
        return Decimal(self.platform_fee_bps) / Decimal(100)


@dataclass(frozen=True)
class Entry:
    entry_id: str
    raffle_id: str
    wallet_address: str
    num_entries: int
    total_paid: int
    payment_reference: str
    sequence: int
    status: EntryStatus
    created_at: datetime | None = None


@dataclass(frozen=True)
class EntryReceipt:
    """Result of an entry submission.

    ``created`` is False when the payment reference had already been
    recorded and the original entry is returned unchanged.
    """

    entry: Entry
    created: bool
    raffle: Raffle | None = None


@dataclass(frozen=True)
class Winner:
    winner_id: str
    raffle_id: str
    position: int
    wallet_address: str
    ticket_number: int
    total_tickets: int
    prize: int
    tier: str
    tier_index: int
    entry_id: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class Payout:
    payout_id: str
    winner_id: str
    raffle_id: str
    wallet_address: str
    amount: int
    status: PayoutStatus
    attempts: int
    payment_reference: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PayoutOutcome:
    """Result of a payment attempt reported by the payment executor."""

    success: bool
    payment_reference: str | None = None
    error: str | None = None

    @classmethod
    def paid(cls, payment_reference: str) -> PayoutOutcome:
        return cls(success=True, payment_reference=payment_reference)

    @classmethod
    def failed(cls, error: str) -> PayoutOutcome:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class DrawResult:
    """A completed draw: the stored raffle and its winners in draw order."""

    raffle: Raffle
    winners: tuple[Winner, ...]
    proof: str
    unawarded: int = 0


@dataclass(frozen=True)
class DrawVerification:
    raffle_id: str
    valid: bool
    proof: str
    mismatches: tuple[str, ...] = ()


@dataclass
class PlatformStats:
    """Platform-wide counters."""

    total_raffles: int = 0
    total_raffles_completed: int = 0
    total_raffles_cancelled: int = 0
    total_entries: int = 0
    total_revenue: int = 0
    total_prizes_awarded: int = 0
    total_winners: int = 0
    total_paid_out: int = 0
    total_payouts_paid: int = 0
    total_payouts_failed: int = 0
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_raffles": self.total_raffles,
            "total_raffles_completed": self.total_raffles_completed,
            "total_raffles_cancelled": self.total_raffles_cancelled,
            "total_entries": self.total_entries,
            "total_revenue": self.total_revenue,
            "total_prizes_awarded": self.total_prizes_awarded,
            "total_winners": self.total_winners,
            "total_paid_out": self.total_paid_out,
            "total_payouts_paid": self.total_payouts_paid,
            "total_payouts_failed": self.total_payouts_failed,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class PayoutSummary:
    raffle_id: str
    counts: dict[PayoutStatus, int] = field(default_factory=dict)
    total_amount: int = 0
    paid_amount: int = 0

    @property
    def outstanding_amount(self) -> int:
        return self.total_amount - self.paid_amount

    @property
    def all_paid(self) -> bool:
        total = sum(self.counts.values())
        return total > 0 and self.counts.get(PayoutStatus.PAID, 0) == total
