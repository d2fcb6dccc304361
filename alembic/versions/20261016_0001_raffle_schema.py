"""Raffle lifecycle schema.

Revision ID: 001_raffle_schema
Revises:
Create Date: 2026-10-16 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_raffle_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Raffles with running pool counters
    op.create_table(
        "raffles",
        sa.Column("raffle_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("entry_price", sa.BigInteger(), nullable=False),
        sa.Column("total_entries", sa.BigInteger(), nullable=False),
        sa.Column("total_participants", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.BigInteger(), nullable=False),
        sa.Column("protocol_fee", sa.BigInteger(), nullable=False),
        sa.Column("winner_payout", sa.BigInteger(), nullable=False),
        sa.Column("winner_count", sa.Integer(), nullable=False),
        sa.Column("platform_fee_bps", sa.Integer(), nullable=False),
        sa.Column("prize_tiers_json", sa.Text(), nullable=False),
        sa.Column("max_entries_per_user", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("draw_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("random_seed", sa.String(130), nullable=True),
        sa.Column("seed_source", sa.String(16), nullable=True),
        sa.Column("seed_block_number", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("raffle_id"),
    )
    op.create_index("idx_raffles_status_end", "raffles", ["status", "end_time"])
    op.create_index("idx_raffles_status_start", "raffles", ["status", "start_time"])

    # Per-wallet participation aggregates
    op.create_table(
        "raffle_participants",
        sa.Column("raffle_id", sa.String(36), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("total_entries", sa.BigInteger(), nullable=False),
        sa.Column("total_paid", sa.BigInteger(), nullable=False),
        sa.Column("first_entry_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("raffle_id", "wallet_address"),
    )
    op.create_index("idx_raffle_participants_wallet", "raffle_participants", ["wallet_address"])

    # Entry purchases in arrival order
    op.create_table(
        "raffle_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entry_id", sa.String(36), nullable=False),
        sa.Column("raffle_id", sa.String(36), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("num_entries", sa.Integer(), nullable=False),
        sa.Column("total_paid", sa.BigInteger(), nullable=False),
        sa.Column("payment_reference", sa.String(130), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id"),
        sa.UniqueConstraint("payment_reference", name="uq_raffle_entries_payment_reference"),
    )
    op.create_index("idx_raffle_entries_raffle", "raffle_entries", ["raffle_id", "id"])
    op.create_index("idx_raffle_entries_wallet", "raffle_entries", ["wallet_address"])

    # Winners
    op.create_table(
        "raffle_winners",
        sa.Column("winner_id", sa.String(36), nullable=False),
        sa.Column("raffle_id", sa.String(36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("ticket_number", sa.BigInteger(), nullable=False),
        sa.Column("total_tickets", sa.BigInteger(), nullable=False),
        sa.Column("prize", sa.BigInteger(), nullable=False),
        sa.Column("tier", sa.String(100), nullable=False),
        sa.Column("tier_index", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("winner_id"),
        sa.UniqueConstraint("raffle_id", "position", name="uq_raffle_winners_position"),
        sa.UniqueConstraint("raffle_id", "wallet_address", name="uq_raffle_winners_wallet"),
    )
    op.create_index("idx_raffle_winners_wallet", "raffle_winners", ["wallet_address"])

    # Payouts, one per winner
    op.create_table(
        "raffle_payouts",
        sa.Column("payout_id", sa.String(36), nullable=False),
        sa.Column("winner_id", sa.String(36), nullable=False),
        sa.Column("raffle_id", sa.String(36), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("payment_reference", sa.String(130), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("payout_id"),
        sa.UniqueConstraint("winner_id", name="uq_raffle_payouts_winner"),
    )
    op.create_index("idx_raffle_payouts_status", "raffle_payouts", ["status", "updated_at"])
    op.create_index("idx_raffle_payouts_raffle", "raffle_payouts", ["raffle_id"])

    # Platform counters
    op.create_table(
        "platform_stats",
        sa.Column("stat_id", sa.String(32), nullable=False),
        sa.Column("total_raffles", sa.BigInteger(), nullable=False),
        sa.Column("total_raffles_completed", sa.BigInteger(), nullable=False),
        sa.Column("total_raffles_cancelled", sa.BigInteger(), nullable=False),
        sa.Column("total_entries", sa.BigInteger(), nullable=False),
        sa.Column("total_revenue", sa.BigInteger(), nullable=False),
        sa.Column("total_prizes_awarded", sa.BigInteger(), nullable=False),
        sa.Column("total_winners", sa.BigInteger(), nullable=False),
        sa.Column("total_paid_out", sa.BigInteger(), nullable=False),
        sa.Column("total_payouts_paid", sa.BigInteger(), nullable=False),
        sa.Column("total_payouts_failed", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("stat_id"),
    )


def downgrade() -> None:
    op.drop_table("platform_stats")

    op.drop_index("idx_raffle_payouts_raffle", table_name="raffle_payouts")
    op.drop_index("idx_raffle_payouts_status", table_name="raffle_payouts")
    op.drop_table("raffle_payouts")

    op.drop_index("idx_raffle_winners_wallet", table_name="raffle_winners")
    op.drop_table("raffle_winners")

    op.drop_index("idx_raffle_entries_wallet", table_name="raffle_entries")
    op.drop_index("idx_raffle_entries_raffle", table_name="raffle_entries")
    op.drop_table("raffle_entries")

    op.drop_index("idx_raffle_participants_wallet", table_name="raffle_participants")
    op.drop_table("raffle_participants")

    op.drop_index("idx_raffles_status_start", table_name="raffles")
    op.drop_index("idx_raffles_status_end", table_name="raffles")
    op.drop_table("raffles")
