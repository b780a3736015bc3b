"""Create campaign_wallets, wallet_transactions and withdrawal_requests tables

Revision ID: 20261019_000002
Revises: 20261019_000001
Create Date: 2026-10-19

Per-campaign wallet plus its append-only, hash-chained transaction log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_000002"
down_revision: Union[str, None] = "20261019_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "campaign_wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Numeric(precision=14, scale=2), nullable=False, server_default="0"),
        sa.Column("total_received", sa.Numeric(precision=14, scale=2), nullable=False, server_default="0"),
        sa.Column("total_withdrawn", sa.Numeric(precision=14, scale=2), nullable=False, server_default="0"),
        sa.Column("total_refunded", sa.Numeric(precision=14, scale=2), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["campaign_id"],
            ["campaigns.id"],
            name="fk_campaign_wallets_campaign_id",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("balance >= 0", name="ck_campaign_wallets_balance_non_negative"),
    )
    op.create_index("ix_campaign_wallets_campaign_id", "campaign_wallets", ["campaign_id"], unique=True)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum("credit", "debit", "refund", name="wallet_transaction_type"), nullable=False),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("balance_after", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("donation_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("transaction_hash", sa.String(64), nullable=False),
        sa.Column("previous_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["campaign_wallets.id"],
            name="fk_wallet_transactions_wallet_id",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["donation_id"],
            ["donations.id"],
            name="fk_wallet_transactions_donation_id",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("transaction_hash", name="uq_wallet_transactions_transaction_hash"),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_donation_id", "wallet_transactions", ["donation_id"])
    op.create_index("ix_wallet_transactions_previous_hash", "wallet_transactions", ["previous_hash"])

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "rejected", "processed", name="withdrawal_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("requested_by", sa.Integer(), nullable=False),
        sa.Column("requested_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.String(500), nullable=False, server_default=""),
        sa.Column("wallet_transaction_id", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["campaign_wallets.id"],
            name="fk_withdrawal_requests_wallet_id",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["wallet_transaction_id"],
            ["wallet_transactions.id"],
            name="fk_withdrawal_requests_wallet_transaction_id",
        ),
    )
    op.create_index("ix_withdrawal_requests_wallet_id", "withdrawal_requests", ["wallet_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])


def downgrade() -> None:
    op.drop_index("ix_withdrawal_requests_status", table_name="withdrawal_requests")
    op.drop_index("ix_withdrawal_requests_wallet_id", table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")
    op.drop_index("ix_wallet_transactions_previous_hash", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_donation_id", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_wallet_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_index("ix_campaign_wallets_campaign_id", table_name="campaign_wallets")
    op.drop_table("campaign_wallets")
    op.execute("DROP TYPE IF EXISTS withdrawal_status")
    op.execute("DROP TYPE IF EXISTS wallet_transaction_type")
