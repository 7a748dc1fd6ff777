"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-01-09 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Canonical products with national average price
    op.create_table(
        'price_lookup',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('canonical_key', sa.Text(), nullable=False),
        sa.Column('avg_price_ils', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('sample_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_price_lookup_canonical_key', 'price_lookup', ['canonical_key'], unique=True)
    op.create_index('ix_price_lookup_category', 'price_lookup', ['category'])

    # Per-chain prices
    op.create_table(
        'chain_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('canonical_key', sa.Text(), nullable=False),
        sa.Column('chain_name', sa.String(length=64), nullable=False),
        sa.Column('price_ils', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('canonical_key', 'chain_name', name='uq_chain_price_key_chain')
    )
    op.create_index('ix_chain_prices_canonical_key', 'chain_prices', ['canonical_key'])

    # Resolution cache (NULL canonical_key = cached negative)
    op.create_table(
        'price_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('query', sa.Text(), nullable=False),
        sa.Column('canonical_key', sa.Text(), nullable=True),
        sa.Column('avg_price_ils', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('confidence', sa.Numeric(precision=3, scale=2), nullable=False, server_default='0'),
        sa.Column('sample_count', sa.Integer(), nullable=True),
        sa.Column('cached_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('query', name='uq_price_cache_query')
    )
    op.create_index('ix_price_cache_expires_at', 'price_cache', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_price_cache_expires_at', table_name='price_cache')
    op.drop_table('price_cache')
    op.drop_index('ix_chain_prices_canonical_key', table_name='chain_prices')
    op.drop_table('chain_prices')
    op.drop_index('ix_price_lookup_category', table_name='price_lookup')
    op.drop_index('ix_price_lookup_canonical_key', table_name='price_lookup')
    op.drop_table('price_lookup')
