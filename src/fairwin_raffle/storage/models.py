"""SQLAlchemy models for persistent storage.

This module defines the database schema for raffles, entries,
per-wallet participation, winners, payouts and platform statistics.
Money columns hold integer base units (USDC has 6 decimals).
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class RaffleModel(Base):
    """SQLAlchemy model for raffles and their running pool counters."""

    __tablename__ = "raffles"

    raffle_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    entry_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_entries: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_pool: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    protocol_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    winner_payout: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    winner_count: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    # JSON list of {"name", "percentage", "winner_count"}
    prize_tiers_json: Mapped[str] = mapped_column(Text, nullable=False)
    max_entries_per_user: Mapped[int] = mapped_column(Integer, nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    draw_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    random_seed: Mapped[str | None] = mapped_column(String(130), nullable=True)
    seed_source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    seed_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_raffles_status_end", "status", "end_time"),
        Index("idx_raffles_status_start", "status", "start_time"),
    )


class RaffleParticipantModel(Base):
    """Per-wallet entry aggregate for a raffle."""

    __tablename__ = "raffle_participants"

    raffle_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    total_entries: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_paid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    first_entry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_raffle_participants_wallet", "wallet_address"),)


class EntryModel(Base):
    """SQLAlchemy model for confirmed entry purchases.

    ``id`` is an autoincrement column that records arrival order; ticket
    numbers are assigned along it at draw time.
    """

    __tablename__ = "raffle_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    raffle_id: Mapped[str] = mapped_column(String(36), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    num_entries: Mapped[int] = mapped_column(Integer, nullable=False)
    total_paid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_reference: Mapped[str] = mapped_column(String(130), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("payment_reference", name="uq_raffle_entries_payment_reference"),
        Index("idx_raffle_entries_raffle", "raffle_id", "id"),
        Index("idx_raffle_entries_wallet", "wallet_address"),
    )


class WinnerModel(Base):
    """SQLAlchemy model for drawn winners. Rows are written once per draw."""

    __tablename__ = "raffle_winners"

    winner_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    raffle_id: Mapped[str] = mapped_column(String(36), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    ticket_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_tickets: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prize: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tier: Mapped[str] = mapped_column(String(100), nullable=False)
    tier_index: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("raffle_id", "position", name="uq_raffle_winners_position"),
        UniqueConstraint("raffle_id", "wallet_address", name="uq_raffle_winners_wallet"),
        Index("idx_raffle_winners_wallet", "wallet_address"),
    )


class PayoutModel(Base):
    """SQLAlchemy model for winner payouts. One row per winner."""

    __tablename__ = "raffle_payouts"

    payout_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    winner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    raffle_id: Mapped[str] = mapped_column(String(36), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_reference: Mapped[str | None] = mapped_column(String(130), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("winner_id", name="uq_raffle_payouts_winner"),
        Index("idx_raffle_payouts_status", "status", "updated_at"),
        Index("idx_raffle_payouts_raffle", "raffle_id"),
    )


class PlatformStatsModel(Base):
    """Single-row platform counters, keyed by ``stat_id = 'global'``."""

    __tablename__ = "platform_stats"

    stat_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    total_raffles: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_raffles_completed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_raffles_cancelled: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_entries: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_revenue: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_prizes_awarded: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_winners: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_paid_out: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_payouts_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_payouts_failed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
