"""initial billing schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the billing core schema:
- products: catalog with mutable stock count and optimistic version
- bills / bill_lines: append-only sale and return bills
- stock_movements: applied stock adjustments, one per (bill, product)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('selling_price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('mrp_cents', sa.Integer(), nullable=True),
        sa.Column('category_name', sa.String(length=128), nullable=True),
        sa.Column('subcategories', sa.JSON(), nullable=False),
        # Stock count; written only through compare-and-set on version_id
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dealer_name', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_code'),
        sa.CheckConstraint('quantity >= 0', name='ck_products_quantity_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # bills: Immutable sale and return records
    # ============================================================================
    op.create_table(
        'bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.String(length=64), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('is_return', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('original_bill_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bills_date', 'bills', ['date'])
    op.create_index('ix_bills_original_bill_id', 'bills', ['original_bill_id'])

    op.create_table(
        'bill_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_pk', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['bill_pk'], ['bills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_pk', 'position', name='uq_bill_lines_bill_position'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_lines_bill_pk', 'bill_lines', ['bill_pk'])

    # ============================================================================
    # stock_movements: One row per applied (bill, product) adjustment
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference', 'product_code', name='uq_stock_movements_reference_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])


def downgrade():
    op.drop_index('ix_stock_movements_product_occurred', table_name='stock_movements')
    op.drop_index('ix_stock_movements_reference', table_name='stock_movements')
    op.drop_table('stock_movements')
    op.drop_index('ix_bill_lines_bill_pk', table_name='bill_lines')
    op.drop_table('bill_lines')
    op.drop_index('ix_bills_original_bill_id', table_name='bills')
    op.drop_index('ix_bills_date', table_name='bills')
    op.drop_table('bills')
    op.drop_index('ix_products_name', table_name='products')
    op.drop_table('products')
