"""Catalog mirror and collection membership tables

Revision ID: 001_initial_collections_schema
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_collections_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MATCH_MODES = ('all', 'any')
SORT_ORDERS = ('manual', 'title_asc', 'title_desc', 'price_asc', 'price_desc', 'created_asc', 'created_desc')
RULE_TYPES = ('category', 'vendor', 'tag', 'price', 'compare_at_price', 'title', 'sku', 'created_at', 'status')
RULE_OPERATORS = (
    'equals', 'not_equals', 'contains', 'not_contains', 'starts_with',
    'greater_than', 'less_than', 'greater_or_equal', 'less_or_equal',
)


def _in(column: str, values: Sequence[str]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # Create product_status enum
    product_status_enum = postgresql.ENUM('draft', 'active', 'archived', name='product_status', create_type=True)
    product_status_enum.create(op.get_bind(), checkfirst=True)

    # Catalog mirror (owned by the catalog subsystem, read by the engine)
    op.create_table(
        'categories',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['parent_id'], ['categories.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('name', 'parent_id', name='uq_category_name_parent'),
        sa.CheckConstraint('id != parent_id', name='chk_no_self_reference'),
    )
    op.create_index('ix_categories_parent_id', 'categories', ['parent_id'])
    op.create_index('ix_categories_is_active', 'categories', ['is_active'])

    op.create_table(
        'vendors',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_vendors_name', 'vendors', ['name'], unique=True)

    op.create_table(
        'tags',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_tags_name', 'tags', ['name'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('vendor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', postgresql.ENUM('draft', 'active', 'archived', name='product_status', create_type=False), nullable=False, server_default='draft'),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('compare_at_price', sa.Numeric(precision=10, scale=2), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ondelete='SET NULL'),
        sa.CheckConstraint('price >= 0', name='check_price_non_negative'),
        sa.CheckConstraint('compare_at_price IS NULL OR compare_at_price >= 0', name='check_compare_at_price_non_negative'),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_title', 'products', ['title'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_vendor_id', 'products', ['vendor_id'])
    op.create_index('ix_products_status', 'products', ['status'])
    op.create_index('ix_products_price', 'products', ['price'])

    op.create_table(
        'product_tags',
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tag_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('product_id', 'tag_id'),
    )
    op.create_index('ix_product_tags_tag_id', 'product_tags', ['tag_id'])

    # Collections
    op.create_table(
        'collections',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image', sa.String(length=1024), nullable=True),
        sa.Column('match_mode', sa.String(length=32), nullable=False, server_default='all'),
        sa.Column('sort_order', sa.String(length=32), nullable=False, server_default='manual'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('seo_title', sa.String(length=255), nullable=True),
        sa.Column('seo_description', sa.Text(), nullable=True),
        sa.Column('dirty', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('dirty_reason', sa.String(length=255), nullable=True),
        sa.Column('invalidation_seq', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_regenerated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('lock_token', sa.String(length=64), nullable=True),
        sa.Column('lock_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(_in('match_mode', MATCH_MODES), name='collection_match_mode'),
        sa.CheckConstraint(_in('sort_order', SORT_ORDERS), name='collection_sort_order'),
    )
    op.create_index('ix_collections_slug', 'collections', ['slug'], unique=True)
    op.create_index('ix_collections_is_active', 'collections', ['is_active'])
    op.create_index('ix_collections_dirty', 'collections', ['dirty'])

    op.create_table(
        'collection_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('collection_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('rule_type', sa.String(length=32), nullable=False),
        sa.Column('operator', sa.String(length=32), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['collection_id'], ['collections.id'], ondelete='CASCADE'),
        sa.CheckConstraint(_in('rule_type', RULE_TYPES), name='collection_rule_type'),
        sa.CheckConstraint(_in('operator', RULE_OPERATORS), name='collection_rule_operator'),
    )
    op.create_index('ix_collection_rules_collection_id', 'collection_rules', ['collection_id'])
    op.create_index('ix_collection_rules_rule_type', 'collection_rules', ['rule_type'])

    op.create_table(
        'collection_products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('collection_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('is_manual', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['collection_id'], ['collections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('collection_id', 'product_id', name='uq_collection_product'),
    )
    op.create_index('idx_collection_products_position', 'collection_products', ['collection_id', 'position'])
    op.create_index('ix_collection_products_product_id', 'collection_products', ['product_id'])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('collection_products')
    op.drop_table('collection_rules')
    op.drop_table('collections')
    op.drop_table('product_tags')
    op.drop_table('products')
    op.drop_table('tags')
    op.drop_table('vendors')
    op.drop_table('categories')

    # Drop enum
    product_status_enum = postgresql.ENUM('draft', 'active', 'archived', name='product_status')
    product_status_enum.drop(op.get_bind(), checkfirst=True)
