"""Create campaigns, donors, donations and donation_admin_actions tables

Revision ID: 20261019_000001
Revises: None
Create Date: 2026-10-19

Donation records carry their fraud signals and settlement fields; check
constraints keep the per-status field combinations valid.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUSES = ('pending', 'processing', 'success', 'failed', 'refunded', 'cancelled')
RISK_LEVELS = ('low', 'medium', 'high', 'critical')


def upgrade() -> None:
    """Create the donation tables."""
    op.create_table(
        'campaigns',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('beneficiary_name', sa.String(255), nullable=True),
        sa.Column('goal_amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('raised_amount', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('contributors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('goal_amount > 0', name='ck_campaigns_goal_positive'),
        sa.CheckConstraint('contributors >= 0', name='ck_campaigns_contributors_non_negative'),
    )
    op.create_index('ix_campaigns_created_by', 'campaigns', ['created_by'])

    op.create_table(
        'donors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('blocked_reason', sa.String(500), nullable=False, server_default=''),
        sa.Column('total_donated', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('total_donations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_donation_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_donors_email', 'donors', ['email'], unique=True)

    op.create_table(
        'donations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('donor_id', sa.Integer(), nullable=True),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column(
            'payment_status',
            sa.Enum(*PAYMENT_STATUSES, name='payment_status'),
            nullable=False,
            server_default='pending'
        ),
        sa.Column('payment_method', sa.String(30), nullable=False, server_default='razorpay'),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.Column('payment_id', sa.String(100), nullable=True),
        sa.Column('signature', sa.String(128), nullable=True),
        sa.Column('receipt_number', sa.String(40), nullable=False),
        sa.Column('donor_name', sa.String(200), nullable=False, server_default=''),
        sa.Column('donor_email', sa.String(255), nullable=False, server_default=''),
        sa.Column('donor_phone', sa.String(30), nullable=False, server_default=''),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('message', sa.String(500), nullable=False, server_default=''),
        sa.Column('ip_address', sa.String(64), nullable=False, server_default=''),
        sa.Column('user_agent', sa.String(500), nullable=False, server_default=''),
        sa.Column('fraud_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'risk_level',
            sa.Enum(*RISK_LEVELS, name='risk_level'),
            nullable=False,
            server_default='low'
        ),
        sa.Column('is_suspicious', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspicious_reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('donation_count_from_ip', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('donation_count_from_donor', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_since_last_donation', sa.Integer(), nullable=True),
        sa.Column('amount_anomaly', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('velocity_check', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('transaction_fee', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('wallet_transaction_id', sa.Integer(), nullable=True),
        sa.Column('refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('refund_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('refund_reason', sa.String(500), nullable=False, server_default=''),
        sa.Column('refunded_by', sa.Integer(), nullable=True),
        sa.Column('admin_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_rejected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rejection_reason', sa.String(500), nullable=False, server_default=''),
        sa.Column('payment_received', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_received_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['donor_id'],
            ['donors.id'],
            name='fk_donations_donor_id',
            ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['campaign_id'],
            ['campaigns.id'],
            name='fk_donations_campaign_id',
            ondelete='RESTRICT'
        ),
        sa.UniqueConstraint('receipt_number', name='uq_donations_receipt_number'),
        sa.CheckConstraint('amount >= 1 AND amount <= 1000000', name='ck_donations_amount_bounds'),
        sa.CheckConstraint('net_amount >= 0 AND transaction_fee >= 0', name='ck_donations_net_amount'),
        sa.CheckConstraint(
            "refunded_at IS NULL OR payment_status = 'refunded'",
            name='ck_donations_refund_fields'
        ),
        sa.CheckConstraint(
            "refund_amount = 0 OR payment_status = 'refunded'",
            name='ck_donations_refund_amount'
        ),
        sa.CheckConstraint(
            "payment_status != 'success' OR payment_id IS NOT NULL OR payment_method = 'commitment'",
            name='ck_donations_success_has_payment'
        ),
    )

    # Create indexes for common queries
    op.create_index('ix_donations_donor_id', 'donations', ['donor_id'])
    op.create_index('ix_donations_campaign_id', 'donations', ['campaign_id'])
    op.create_index('ix_donations_payment_status', 'donations', ['payment_status'])
    op.create_index('ix_donations_order_id', 'donations', ['order_id'])
    op.create_index('ix_donations_donor_email', 'donations', ['donor_email'])
    op.create_index('ix_donations_ip_address', 'donations', ['ip_address'])
    op.create_index('ix_donations_wallet_transaction_id', 'donations', ['wallet_transaction_id'])
    op.create_index('ix_donations_donor_created', 'donations', ['donor_id', 'created_at'])
    op.create_index('ix_donations_campaign_created', 'donations', ['campaign_id', 'created_at'])

    op.create_table(
        'donation_admin_actions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('donation_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('message', sa.String(1000), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=True),
        sa.Column('viewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['donation_id'],
            ['donations.id'],
            name='fk_donation_admin_actions_donation_id',
            ondelete='CASCADE'
        ),
    )
    op.create_index('ix_donation_admin_actions_donation_id', 'donation_admin_actions', ['donation_id'])


def downgrade() -> None:
    """Drop the donation tables."""
    op.drop_index('ix_donation_admin_actions_donation_id', table_name='donation_admin_actions')
    op.drop_table('donation_admin_actions')

    for name in (
        'ix_donations_campaign_created',
        'ix_donations_donor_created',
        'ix_donations_wallet_transaction_id',
        'ix_donations_ip_address',
        'ix_donations_donor_email',
        'ix_donations_order_id',
        'ix_donations_payment_status',
        'ix_donations_campaign_id',
        'ix_donations_donor_id',
    ):
        op.drop_index(name, table_name='donations')
    op.drop_table('donations')

    op.drop_index('ix_donors_email', table_name='donors')
    op.drop_table('donors')
    op.drop_index('ix_campaigns_created_by', table_name='campaigns')
    op.drop_table('campaigns')

    # Drop the enum types
    op.execute("DROP TYPE IF EXISTS risk_level")
    op.execute("DROP TYPE IF EXISTS payment_status")
