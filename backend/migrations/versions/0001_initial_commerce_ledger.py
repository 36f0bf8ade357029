"""initial commerce ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete posledger schema:
- tenants, document_sequences: tenant root and per-tenant numbering
- products: catalog rows whose stock_quantity is written only by the ledger
- stock_ledger: append-only stock movements with before/after snapshots
- bills / purchases (+ items): transaction documents
- sales_returns / purchase_returns (+ items): partial returns
- transaction_edit_history: append-only pre-edit snapshots
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def _document_columns():
    """Header columns shared by bills and purchases."""
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('gst_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('round_off', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('include_gst', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('payment_mode', sa.String(length=16), nullable=False),
        sa.Column('payment_details', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('locked_reason', sa.String(length=255), nullable=True),
        sa.Column('locked_by', sa.Integer(), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edit_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_edited_by', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    ]


def _line_columns():
    """Product snapshot columns shared by every line item table."""
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('gst_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        _timestamp('created_at'),
    ]


def _return_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('round_off', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('refund_mode', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        _timestamp('created_at'),
    ]


def upgrade():
    # ============================================================================
    # tenants / document_sequences
    # ============================================================================
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('tax_lock_days', sa.Integer(), nullable=True),
        sa.Column('operator_edit_window_hours', sa.Integer(), nullable=True),
        sa.Column('allow_negative_stock', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenants_code', 'tenants', ['code'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('prefix', sa.String(length=32), nullable=False),
        sa.Column('pattern', sa.String(length=128), nullable=False),
        sa.Column('next_sequence', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_type', name='uq_doc_sequences_tenant_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_tenant_id', 'document_sequences', ['tenant_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ============================================================================
    # products / stock_ledger
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='pcs'),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('gst_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('stock_quantity', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'sku', name='uq_products_tenant_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_tenant_name', 'products', ['tenant_id', 'name'])
    op.create_index('ix_products_tenant_active', 'products', ['tenant_id', 'is_active'])

    # Append-only: the application never updates or deletes these rows
    op.create_table(
        'stock_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('quantity_change', sa.Numeric(12, 3), nullable=False),
        sa.Column('quantity_before', sa.Numeric(12, 3), nullable=False),
        sa.Column('quantity_after', sa.Numeric(12, 3), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_ledger_tenant_id', 'stock_ledger', ['tenant_id'])
    op.create_index('ix_stock_ledger_product_id', 'stock_ledger', ['product_id'])
    op.create_index('ix_stock_ledger_transaction_type', 'stock_ledger', ['transaction_type'])
    op.create_index('ix_stock_ledger_tenant_product', 'stock_ledger', ['tenant_id', 'product_id', 'id'])
    op.create_index('ix_stock_ledger_reference', 'stock_ledger', ['reference_type', 'reference_id'])

    # ============================================================================
    # bills / purchases
    # ============================================================================
    op.create_table(
        'bills',
        *_document_columns(),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_address', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_number', name='uq_bills_tenant_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bills_tenant_id', 'bills', ['tenant_id'])
    op.create_index('ix_bills_status', 'bills', ['status'])
    op.create_index('ix_bills_tenant_status_created', 'bills', ['tenant_id', 'status', 'created_at'])

    op.create_table(
        'bill_items',
        *_line_columns(),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_items_bill_id', 'bill_items', ['bill_id'])
    op.create_index('ix_bill_items_product_id', 'bill_items', ['product_id'])

    op.create_table(
        'purchases',
        *_document_columns(),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('supplier_phone', sa.String(length=32), nullable=True),
        sa.Column('supplier_email', sa.String(length=255), nullable=True),
        sa.Column('supplier_address', sa.Text(), nullable=True),
        sa.Column('supplier_invoice_number', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_number', name='uq_purchases_tenant_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchases_tenant_id', 'purchases', ['tenant_id'])
    op.create_index('ix_purchases_status', 'purchases', ['status'])
    op.create_index('ix_purchases_tenant_status_created', 'purchases', ['tenant_id', 'status', 'created_at'])

    op.create_table(
        'purchase_items',
        *_line_columns(),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_items_purchase_id', 'purchase_items', ['purchase_id'])
    op.create_index('ix_purchase_items_product_id', 'purchase_items', ['product_id'])

    # ============================================================================
    # returns
    # ============================================================================
    op.create_table(
        'sales_returns',
        *_return_columns(),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_number', name='uq_sales_returns_tenant_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_returns_tenant_id', 'sales_returns', ['tenant_id'])
    op.create_index('ix_sales_returns_bill_id', 'sales_returns', ['bill_id'])
    op.create_index('ix_sales_returns_status', 'sales_returns', ['status'])

    op.create_table(
        'sales_return_items',
        *_line_columns(),
        sa.Column('sales_return_id', sa.Integer(), nullable=False),
        sa.Column('bill_item_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sales_return_id'], ['sales_returns.id']),
        sa.ForeignKeyConstraint(['bill_item_id'], ['bill_items.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_return_items_sales_return_id', 'sales_return_items', ['sales_return_id'])
    op.create_index('ix_sales_return_items_bill_item_id', 'sales_return_items', ['bill_item_id'])
    op.create_index('ix_sales_return_items_product_id', 'sales_return_items', ['product_id'])

    op.create_table(
        'purchase_returns',
        *_return_columns(),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_number', name='uq_purchase_returns_tenant_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_returns_tenant_id', 'purchase_returns', ['tenant_id'])
    op.create_index('ix_purchase_returns_purchase_id', 'purchase_returns', ['purchase_id'])
    op.create_index('ix_purchase_returns_status', 'purchase_returns', ['status'])

    op.create_table(
        'purchase_return_items',
        *_line_columns(),
        sa.Column('purchase_return_id', sa.Integer(), nullable=False),
        sa.Column('purchase_item_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['purchase_return_id'], ['purchase_returns.id']),
        sa.ForeignKeyConstraint(['purchase_item_id'], ['purchase_items.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_return_items_purchase_return_id', 'purchase_return_items', ['purchase_return_id'])
    op.create_index('ix_purchase_return_items_purchase_item_id', 'purchase_return_items', ['purchase_item_id'])
    op.create_index('ix_purchase_return_items_product_id', 'purchase_return_items', ['product_id'])

    # ============================================================================
    # transaction_edit_history (append-only)
    # ============================================================================
    op.create_table(
        'transaction_edit_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('edit_number', sa.Integer(), nullable=False),
        sa.Column('edited_by', sa.Integer(), nullable=False),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.Column('changes_summary', sa.JSON(), nullable=True),
        sa.Column('original_data', sa.JSON(), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_type', 'transaction_id', 'edit_number',
                            name='uq_edit_history_txn_edit_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_edit_history_tenant_id', 'transaction_edit_history', ['tenant_id'])
    op.create_index('ix_edit_history_tenant_txn', 'transaction_edit_history',
                    ['tenant_id', 'transaction_type', 'transaction_id'])


def downgrade():
    op.drop_table('transaction_edit_history')
    op.drop_table('purchase_return_items')
    op.drop_table('purchase_returns')
    op.drop_table('sales_return_items')
    op.drop_table('sales_returns')
    op.drop_table('purchase_items')
    op.drop_table('purchases')
    op.drop_table('bill_items')
    op.drop_table('bills')
    op.drop_table('stock_ledger')
    op.drop_table('products')
    op.drop_table('document_sequences')
    op.drop_table('tenants')
