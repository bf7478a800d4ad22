"""Initial schema - shops, catalogue, imports and the OLX taxonomy/listings

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(updated=True):
    columns = [sa.Column('created_at', sa.DateTime(), nullable=False)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), nullable=False))
    return columns


def upgrade() -> None:
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('settings', JSONType, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(16), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint('user_id', 'shop_id', name='uq_membership_user_shop'),
    )
    op.create_index('ix_memberships_user_id', 'memberships', ['user_id'])
    op.create_index('ix_memberships_shop_id', 'memberships', ['shop_id'])

    op.create_table(
        'olx_credentials',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('password', sa.String(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('olx_user_id', sa.String(), nullable=True),
        sa.Column('olx_user_name', sa.String(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )

    # Taxonomy
    op.create_table(
        'olx_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('olx_categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('has_shipping', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_brand', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata', JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_olx_categories_external_id', 'olx_categories', ['external_id'], unique=True)
    op.create_index('ix_olx_categories_parent_id', 'olx_categories', ['parent_id'])

    op.create_table(
        'olx_category_attributes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('olx_category_id', sa.Integer(), sa.ForeignKey('olx_categories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('attribute_type', sa.String(), nullable=False),
        sa.Column('input_type', sa.String(), nullable=True),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('options', JSONType, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('olx_category_id', 'external_id', name='uq_olx_attribute_category_external'),
    )
    op.create_index('ix_olx_category_attributes_olx_category_id', 'olx_category_attributes', ['olx_category_id'])

    op.create_table(
        'olx_locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('country_id', sa.Integer(), nullable=True),
        sa.Column('state_id', sa.Integer(), nullable=True),
        sa.Column('canton_id', sa.Integer(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lon', sa.Float(), nullable=True),
        sa.Column('zip_code', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_olx_locations_external_id', 'olx_locations', ['external_id'], unique=True)

    # Taxonomy ids on templates carry no foreign keys: a taxonomy refresh may delete them
    op.create_table(
        'olx_category_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('olx_category_id', sa.Integer(), nullable=False),
        sa.Column('olx_location_id', sa.Integer(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lon', sa.Float(), nullable=True),
        sa.Column('default_listing_type', sa.String(16), nullable=False, server_default='sell'),
        sa.Column('default_state', sa.String(16), nullable=False, server_default='new'),
        sa.Column('attribute_mappings', JSONType, nullable=False),
        sa.Column('title_template', sa.Text(), nullable=True),
        sa.Column('description_filter', JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_olx_category_templates_shop_id', 'olx_category_templates', ['shop_id'])
    op.create_index('ix_olx_category_templates_olx_category_id', 'olx_category_templates', ['olx_category_id'])

    # Catalogue
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        *_timestamps(),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('source_id', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('technical_description', sa.Text(), nullable=True),
        sa.Column('models', sa.Text(), nullable=True),
        sa.Column('branch_availability', sa.Text(), nullable=True),
        sa.Column('specs', JSONType, nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='BAM'),
        sa.Column('margin', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('olx_title', sa.String(), nullable=True),
        sa.Column('olx_description', sa.Text(), nullable=True),
        sa.Column(
            'olx_category_template_id', sa.Integer(),
            sa.ForeignKey('olx_category_templates.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('image_urls', JSONType, nullable=False),
        sa.Column('discarded_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_products_shop_id', 'products', ['shop_id'])
    op.create_index('ix_products_source', 'products', ['source'])
    op.create_index('ix_products_discarded_at', 'products', ['discarded_at'])
    op.create_index(
        'uq_products_shop_source_sku', 'products', ['shop_id', 'source', 'sku'],
        unique=True,
        postgresql_where=sa.text("sku IS NOT NULL AND sku <> ''"),
        sqlite_where=sa.text("sku IS NOT NULL AND sku <> ''"),
    )

    op.create_table(
        'product_images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_url', sa.String(), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=True),
        sa.Column('byte_size', sa.Integer(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(updated=False),
    )
    op.create_index('ix_product_images_product_id', 'product_images', ['product_id'])

    # Imports
    op.create_table(
        'import_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('filename', sa.String(), nullable=True),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('current_phase', sa.String(32), nullable=True),
        sa.Column('total_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scraped_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_messages', JSONType, nullable=False),
        sa.Column('column_mapping', JSONType, nullable=True),
        sa.Column('mapping_confidence', sa.Float(), nullable=True),
        sa.Column(
            'olx_category_template_id', sa.Integer(),
            sa.ForeignKey('olx_category_templates.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_import_logs_shop_id', 'import_logs', ['shop_id'])
    op.create_index('ix_import_logs_status', 'import_logs', ['status'])
    op.create_index('ix_import_logs_updated_at', 'import_logs', ['updated_at'])

    op.create_table(
        'imported_products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('import_log_id', sa.Integer(), sa.ForeignKey('import_logs.id', ondelete='CASCADE'), nullable=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('row_number', sa.Integer(), nullable=True),
        sa.Column('raw_data', JSONType, nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('error_text', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_imported_products_shop_id', 'imported_products', ['shop_id'])
    op.create_index('ix_imported_products_import_log_id', 'imported_products', ['import_log_id'])
    op.create_index('ix_imported_products_status', 'imported_products', ['status'])

    # Listings
    op.create_table(
        'olx_listings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_id', sa.Integer(), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_listing_id', sa.String(), nullable=True, unique=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_olx_listings_shop_id', 'olx_listings', ['shop_id'])
    op.create_index('ix_olx_listings_status', 'olx_listings', ['status'])
    op.create_index('ix_olx_listings_product_id', 'olx_listings', ['product_id'])
    # one non-removed listing per product
    op.create_index(
        'uq_olx_listings_active_product', 'olx_listings', ['product_id'], unique=True,
        postgresql_where=sa.text("status <> 'removed'"),
    )


def downgrade() -> None:
    op.drop_table('olx_listings')
    op.drop_table('imported_products')
    op.drop_table('import_logs')
    op.drop_table('product_images')
    op.drop_index('uq_products_shop_source_sku', table_name='products')
    op.drop_table('products')
    op.drop_table('olx_category_templates')
    op.drop_table('olx_locations')
    op.drop_table('olx_category_attributes')
    op.drop_table('olx_categories')
    op.drop_table('olx_credentials')
    op.drop_table('memberships')
    op.drop_table('users')
    op.drop_table('shops')
