"""Initial schema

This migration creates the complete database schema for the position ledger.

Tables:
    - users: User accounts (identity comes from the token issuer)
    - position_categories: Allocation groups (shared defaults + per user)
    - positions: Assets and liabilities owned by users
    - portfolio_records: Ledger events (buy / sell / update)
    - position_snapshots: Derived quantity, value and cost basis per date
    - quotes: Daily close cache for market symbols
    - domain_valuations: Domain name valuation cache
    - exchange_rates: USD-based currency conversion rates

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared by position_categories and positions; created once below
position_type = postgresql.ENUM('asset', 'liability', name='position_type', create_type=False)
record_type = postgresql.ENUM('buy', 'sell', 'update', name='record_type', create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    position_type.create(bind, checkfirst=True)
    record_type.create(bind, checkfirst=True)

    # ==========================================================================
    # USERS
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('display_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # POSITION CATEGORIES
    # ==========================================================================
    op.create_table(
        'position_categories',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('position_type', position_type, nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
    )

    # ==========================================================================
    # POSITIONS
    # ==========================================================================
    op.create_table(
        'positions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column(
            'category_id', sa.Integer(),
            sa.ForeignKey('position_categories.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('type', position_type, nullable=False, server_default='asset'),
        sa.Column('symbol', sa.String(32), nullable=True, index=True),
        sa.Column('domain', sa.String(253), nullable=True),
        sa.Column('capital_gains_tax_rate', sa.Numeric(6, 4), nullable=True),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'NOT (symbol IS NOT NULL AND domain IS NOT NULL)',
            name='ck_position_single_price_source',
        ),
    )
    op.create_index('ix_positions_user_archived', 'positions', ['user_id', 'archived_at'])

    # ==========================================================================
    # PORTFOLIO RECORDS
    # ==========================================================================
    op.create_table(
        'portfolio_records',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column(
            'position_id', sa.Integer(),
            sa.ForeignKey('positions.id', ondelete='CASCADE'), nullable=False, index=True,
        ),
        sa.Column('type', record_type, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Numeric(18, 8), nullable=False),
        sa.Column('unit_value', sa.Numeric(18, 8), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_portfolio_records_position_date', 'portfolio_records', ['position_id', 'date', 'created_at']
    )

    # ==========================================================================
    # POSITION SNAPSHOTS
    # ==========================================================================
    op.create_table(
        'position_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column(
            'position_id', sa.Integer(),
            sa.ForeignKey('positions.id', ondelete='CASCADE'), nullable=False, index=True,
        ),
        sa.Column(
            'portfolio_record_id', sa.Integer(),
            sa.ForeignKey('portfolio_records.id', ondelete='CASCADE'), nullable=True, index=True,
        ),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Numeric(18, 8), nullable=False),
        sa.Column('unit_value', sa.Numeric(18, 8), nullable=False),
        # NULL = inherit from the previous snapshot with an explicit basis
        sa.Column('cost_basis_per_unit', sa.Numeric(18, 8), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('position_id', 'portfolio_record_id', name='uq_snapshot_position_record'),
    )
    op.create_index(
        'ix_position_snapshots_position_date', 'position_snapshots', ['position_id', 'date', 'created_at']
    )

    # ==========================================================================
    # QUOTES / DOMAIN VALUATIONS
    # ==========================================================================
    op.create_table(
        'quotes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('symbol', sa.String(32), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('price', sa.Numeric(18, 8), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False, server_default='yahoo'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('symbol', 'date', name='uq_quote_symbol_date'),
    )

    op.create_table(
        'domain_valuations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('domain', sa.String(253), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('price', sa.Numeric(18, 8), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('domain', 'date', name='uq_domain_valuation_domain_date'),
    )

    # ==========================================================================
    # EXCHANGE RATES
    # ==========================================================================
    op.create_table(
        'exchange_rates',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('base_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('target_currency', sa.String(3), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('rate', sa.Numeric(18, 8), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False, server_default='yahoo'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('base_currency', 'target_currency', 'date', name='uq_exchange_rate_pair_date'),
    )
    op.create_index('ix_exchange_rate_target_date', 'exchange_rates', ['target_currency', 'date'])


def downgrade() -> None:
    op.drop_index('ix_exchange_rate_target_date', table_name='exchange_rates')
    op.drop_table('exchange_rates')
    op.drop_table('domain_valuations')
    op.drop_table('quotes')
    op.drop_index('ix_position_snapshots_position_date', table_name='position_snapshots')
    op.drop_table('position_snapshots')
    op.drop_index('ix_portfolio_records_position_date', table_name='portfolio_records')
    op.drop_table('portfolio_records')
    op.drop_index('ix_positions_user_archived', table_name='positions')
    op.drop_table('positions')
    op.drop_table('position_categories')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS record_type')
    op.execute('DROP TYPE IF EXISTS position_type')
