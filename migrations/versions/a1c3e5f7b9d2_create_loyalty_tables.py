"""Create store_configs, customer_accounts and points_ledger

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = 'a1c3e5f7b9d2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'store_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('points_settings', sa.JSON(), nullable=False),
        sa.Column('tier_settings', sa.JSON(), nullable=False),
        sa.Column('redemption_settings', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('shop_domain'),
    )

    op.create_table(
        'customer_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('email_is_placeholder', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('current_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_redeemed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_expired', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', sa.String(length=20), nullable=False, server_default='bronze'),
        sa.Column('last_earned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('shop_domain', 'customer_id', name='uq_shop_customer'),
        sa.CheckConstraint('current_balance >= 0', name='ck_balance_non_negative'),
    )
    op.create_index('ix_customer_accounts_shop_email', 'customer_accounts', ['shop_domain', 'email'])
    op.create_index('ix_customer_accounts_shop_balance', 'customer_accounts', ['shop_domain', 'current_balance'])

    op.create_table(
        'points_ledger',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('order_total', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('dedupe_key', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('shop_domain', 'customer_id', 'dedupe_key', name='uq_ledger_dedupe'),
    )
    op.create_index('ix_points_ledger_customer_created', 'points_ledger', ['shop_domain', 'customer_id', 'created_at'])
    op.create_index('ix_points_ledger_shop_kind', 'points_ledger', ['shop_domain', 'kind'])


def downgrade():
    op.drop_index('ix_points_ledger_shop_kind', table_name='points_ledger')
    op.drop_index('ix_points_ledger_customer_created', table_name='points_ledger')
    op.drop_table('points_ledger')

    op.drop_index('ix_customer_accounts_shop_balance', table_name='customer_accounts')
    op.drop_index('ix_customer_accounts_shop_email', table_name='customer_accounts')
    op.drop_table('customer_accounts')

    op.drop_table('store_configs')
