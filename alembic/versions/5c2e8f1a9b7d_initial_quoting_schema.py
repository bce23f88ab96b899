"""initial quoting schema

Revision ID: 5c2e8f1a9b7d
Revises:
Create Date: 2026-10-19 09:12:41.508233

Products, quote lineages, quote versions with sections and line items, and
terms snapshots. The partial unique index keeps at most one current Accepted
version per quote_number on both SQLite and PostgreSQL.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c2e8f1a9b7d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ONE_CURRENT_ACCEPTED = "status = 'Accepted' AND is_current"


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('r_value', sa.String(), nullable=True),
        sa.Column('bale_size_sqm', sa.Numeric(10, 3), nullable=False),
        sa.Column('pack_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
    )
    op.create_index('ix_products_id', 'products', ['id'])

    op.create_table(
        'quote_lineages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quote_number', sa.String(), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('quote_number'),
    )
    op.create_index('ix_quote_lineages_id', 'quote_lineages', ['id'])

    op.create_table(
        'quotes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quote_number', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('site_address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('valid_days', sa.Integer(), nullable=True),
        sa.Column('pricing_tier', sa.String(), nullable=False),
        sa.Column('custom_markup_percent', sa.Numeric(7, 2), nullable=True),
        sa.Column('waste_percent', sa.Numeric(7, 2), nullable=False),
        sa.Column('labour_rate_per_sqm', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_cost_ex_gst', sa.Numeric(12, 2), nullable=True),
        sa.Column('total_sell_ex_gst', sa.Numeric(12, 2), nullable=True),
        sa.Column('gross_profit', sa.Numeric(12, 2), nullable=True),
        sa.Column('margin_percent', sa.Numeric(7, 2), nullable=True),
        sa.Column('gst_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('total_inc_gst', sa.Numeric(12, 2), nullable=True),
        sa.Column('sent_date', sa.DateTime(), nullable=True),
        sa.Column('accepted_date', sa.DateTime(), nullable=True),
        sa.Column('accepted_by', sa.String(), nullable=True),
        sa.Column('superseded_at', sa.DateTime(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['quote_number'], ['quote_lineages.quote_number']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('quote_number', 'version', name='uq_quotes_quote_number_version'),
    )
    op.create_index('ix_quotes_id', 'quotes', ['id'])
    op.create_index('ix_quotes_quote_number', 'quotes', ['quote_number'])
    op.create_index(
        'uq_quotes_one_current_accepted', 'quotes', ['quote_number'], unique=True,
        sqlite_where=sa.text(ONE_CURRENT_ACCEPTED),
        postgresql_where=sa.text(ONE_CURRENT_ACCEPTED),
    )

    op.create_table(
        'quote_sections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quote_id', sa.Integer(), nullable=False),
        sa.Column('section_name', sa.String(), nullable=False),
        sa.Column('section_color', sa.String(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['quote_id'], ['quotes.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quote_sections_id', 'quote_sections', ['id'])

    op.create_table(
        'quote_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('section_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('parent_line_item_id', sa.Integer(), nullable=True),
        sa.Column('is_labour', sa.Boolean(), nullable=True),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('area_sqm', sa.Numeric(12, 2), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.Column('packs_required', sa.Integer(), nullable=True),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('sell_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('line_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('line_sell', sa.Numeric(12, 2), nullable=True),
        sa.Column('margin_percent', sa.Numeric(7, 2), nullable=True),
        sa.ForeignKeyConstraint(['section_id'], ['quote_sections.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['parent_line_item_id'], ['quote_line_items.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quote_line_items_id', 'quote_line_items', ['id'])

    op.create_table(
        'quote_terms_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quote_id', sa.Integer(), nullable=False),
        sa.Column('quote_number', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('pricing_tier', sa.String(), nullable=False),
        sa.Column('custom_markup_percent', sa.Numeric(7, 2), nullable=True),
        sa.Column('waste_percent', sa.Numeric(7, 2), nullable=False),
        sa.Column('labour_rate_per_sqm', sa.Numeric(10, 2), nullable=False),
        sa.Column('items_json', sa.JSON(), nullable=False),
        sa.Column('totals_json', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['quote_id'], ['quotes.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quote_terms_snapshots_id', 'quote_terms_snapshots', ['id'])
    op.create_index('ix_quote_terms_snapshots_quote_number', 'quote_terms_snapshots', ['quote_number'])


def downgrade() -> None:
    op.drop_table('quote_terms_snapshots')
    op.drop_table('quote_line_items')
    op.drop_table('quote_sections')
    op.drop_index('uq_quotes_one_current_accepted', table_name='quotes')
    op.drop_table('quotes')
    op.drop_table('quote_lineages')
    op.drop_table('products')
