"""initial ledger schema

Revision ID: ss001_initial_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the StockSense schema:
- companies, branches, warehouses, users: tenant structure
- products, suppliers: catalog
- stock_records: materialized quantity per (product, location key)
- inventory_movements: append-only movement log
- stock_adjustments: set-to-target corrections
- sales, sale_lines, purchases, purchase_lines: documents
- document_sequences: per-company invoice numbering
- storage_entries: key/value JSON store
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'ss001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, **kwargs):
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade():
    # ============================================================================
    # Tenant structure
    # ============================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('business_type', sa.String(length=64), nullable=True),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='SAR'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_companies_code', 'companies', ['code'], unique=True)
    op.create_index('ix_companies_is_active', 'companies', ['is_active'])

    op.create_table(
        'branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamp('deleted_at', nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_branches_company_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_branches_company_id', 'branches', ['company_id'])

    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamp('deleted_at', nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_warehouses_company_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_warehouses_company_id', 'warehouses', ['company_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='cashier'),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'email', name='uq_users_company_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_suppliers_company_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_suppliers_company_id', 'suppliers', ['company_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='piece'),
        sa.Column('buy_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sell_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('min_quantity', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('deleted_at', nullable=True),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamp('updated_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'sku', name='uq_products_company_sku'),
        sa.CheckConstraint('buy_price_cents >= 0', name='ck_products_buy_price'),
        sa.CheckConstraint('sell_price_cents >= 0', name='ck_products_sell_price'),
        sa.CheckConstraint('min_quantity >= 0', name='ck_products_min_quantity'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_company_id', 'products', ['company_id'])
    op.create_index('ix_products_supplier_id', 'products', ['supplier_id'])
    op.create_index('ix_products_barcode', 'products', ['barcode'])
    op.create_index('ix_products_company_name', 'products', ['company_id', 'name'])
    op.create_index('ix_products_company_active', 'products', ['company_id', 'is_active'])

    # ============================================================================
    # Ledger
    # ============================================================================
    op.create_table(
        'stock_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('location_key', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False, server_default='0'),
        _timestamp('last_updated', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'product_id', 'location_key', name='uq_stock_company_product_location'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_records_company_id', 'stock_records', ['company_id'])
    op.create_index('ix_stock_records_product_id', 'stock_records', ['product_id'])
    op.create_index('ix_stock_records_branch_id', 'stock_records', ['branch_id'])
    op.create_index('ix_stock_records_warehouse_id', 'stock_records', ['warehouse_id'])
    op.create_index('ix_stock_company_product', 'stock_records', ['company_id', 'product_id'])

    # Append-only: rows are never updated or deleted
    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('from_branch_id', sa.Integer(), nullable=True),
        sa.Column('from_warehouse_id', sa.Integer(), nullable=True),
        sa.Column('from_location_key', sa.String(length=64), nullable=True),
        sa.Column('to_branch_id', sa.Integer(), nullable=True),
        sa.Column('to_warehouse_id', sa.Integer(), nullable=True),
        sa.Column('to_location_key', sa.String(length=64), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_movements_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_company_id', 'inventory_movements', ['company_id'])
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'])
    op.create_index('ix_inventory_movements_type', 'inventory_movements', ['type'])
    op.create_index('ix_inventory_movements_created_at', 'inventory_movements', ['created_at'])
    op.create_index(
        'ix_movements_company_product_created',
        'inventory_movements',
        ['company_id', 'product_id', 'created_at'],
    )
    op.create_index('ix_movements_reference', 'inventory_movements', ['reference_type', 'reference_id'])

    op.create_table(
        'stock_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location_key', sa.String(length=64), nullable=False),
        sa.Column('previous_quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('target_quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('delta', sa.Numeric(14, 3), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_adjustments_company_id', 'stock_adjustments', ['company_id'])
    op.create_index('ix_stock_adjustments_product_id', 'stock_adjustments', ['product_id'])

    # ============================================================================
    # Documents
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('final_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamp('refunded_at', nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'invoice_number', name='uq_sales_company_invoice'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_company_id', 'sales', ['company_id'])
    op.create_index('ix_sales_branch_id', 'sales', ['branch_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_company_created', 'sales', ['company_id', 'created_at'])

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])
    op.create_index('ix_sale_lines_product_id', 'sale_lines', ['product_id'])

    op.create_table(
        'purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamp('received_at', nullable=True),
        _timestamp('cancelled_at', nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'invoice_number', name='uq_purchases_company_invoice'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchases_company_id', 'purchases', ['company_id'])
    op.create_index('ix_purchases_supplier_id', 'purchases', ['supplier_id'])
    op.create_index('ix_purchases_status', 'purchases', ['status'])

    op.create_table(
        'purchase_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_lines_purchase_id', 'purchase_lines', ['purchase_id'])
    op.create_index('ix_purchase_lines_product_id', 'purchase_lines', ['product_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'document_type', name='uq_doc_sequences_company_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_company_id', 'document_sequences', ['company_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ============================================================================
    # Key/value store
    # ============================================================================
    op.create_table(
        'storage_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value_json', sa.Text(), nullable=False),
        _timestamp('updated_at', nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'key', name='uq_storage_company_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_storage_entries_company_id', 'storage_entries', ['company_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('storage_entries')
    op.drop_table('document_sequences')
    op.drop_table('purchase_lines')
    op.drop_table('purchases')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('stock_adjustments')
    op.drop_table('inventory_movements')
    op.drop_table('stock_records')
    op.drop_table('products')
    op.drop_table('suppliers')
    op.drop_table('users')
    op.drop_table('warehouses')
    op.drop_table('branches')
    op.drop_table('companies')
