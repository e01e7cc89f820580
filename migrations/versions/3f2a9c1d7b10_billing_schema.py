"""billing schema

Revision ID: 3f2a9c1d7b10
Revises: 
Create Date: 2026-10-19 10:12:44.381207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enums are stored as varchar (native_enum=False in the models)
user_role_enum = sa.Enum('user', 'admin', name='user_role', native_enum=False)
billing_cycle_enum = sa.Enum('monthly', 'quarterly', 'yearly', name='billing_cycle', native_enum=False)
subscription_status_enum = sa.Enum('active', 'cancelled', 'expired', 'suspended', name='subscription_status', native_enum=False)
payment_status_enum = sa.Enum('pending', 'completed', 'failed', 'refunded', name='payment_status', native_enum=False)
payment_method_enum = sa.Enum('card', 'paypal', 'bank_transfer', name='payment_method', native_enum=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        'tbl_users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('role', user_role_enum, nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_table(
        'tbl_mstr_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('billing_cycle', billing_cycle_enum, nullable=False, server_default='monthly'),
        sa.Column('max_users', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('features', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('trial_days', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('price >= 0', name='ck_plans_price_non_negative'),
        sa.CheckConstraint('max_users >= 1', name='ck_plans_max_users_positive'),
        sa.CheckConstraint('trial_days >= 0', name='ck_plans_trial_days_non_negative'),
    )

    op.create_table(
        'tbl_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_mstr_plans.id'), nullable=False),
        sa.Column('status', subscription_status_enum, nullable=False),
        sa.Column('start_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('next_billing_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('payment_method', payment_method_enum, nullable=False),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('suspension_reason', sa.Text(), nullable=True),
        sa.Column('trial_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('gateway_subscription_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index('ix_subscriptions_user', 'tbl_subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_gateway_id', 'tbl_subscriptions', ['gateway_subscription_id'])
    op.create_index(
        'uq_subscriptions_one_active_per_user',
        'tbl_subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'tbl_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_subscriptions.id'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', payment_status_enum, nullable=False),
        sa.Column('payment_method', payment_method_enum, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('gateway_transaction_id', sa.String(64), nullable=True),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('amount >= 0.01', name='ck_payments_amount_min'),
        sa.CheckConstraint(
            'refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= amount)',
            name='ck_payments_refund_bounded',
        ),
    )
    op.create_index('ix_payments_user', 'tbl_payments', ['user_id'])
    op.create_index('ix_payments_subscription', 'tbl_payments', ['subscription_id'])
    op.create_index('ix_payments_gateway_txn', 'tbl_payments', ['gateway_transaction_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_payments_gateway_txn', table_name='tbl_payments')
    op.drop_index('ix_payments_subscription', table_name='tbl_payments')
    op.drop_index('ix_payments_user', table_name='tbl_payments')
    op.drop_table('tbl_payments')
    op.drop_index('uq_subscriptions_one_active_per_user', table_name='tbl_subscriptions')
    op.drop_index('ix_subscriptions_gateway_id', table_name='tbl_subscriptions')
    op.drop_index('ix_subscriptions_user', table_name='tbl_subscriptions')
    op.drop_table('tbl_subscriptions')
    op.drop_table('tbl_mstr_plans')
    op.drop_table('tbl_users')
