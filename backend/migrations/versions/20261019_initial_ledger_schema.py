"""initial ledger schema

Revision ID: 20261019_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete POS ledger schema from scratch:
- products / product_recipes: catalog rows and per-unit material consumption
- orders / order_lines / order_line_addons: immutable sale snapshots
- daily_sequences: per-day order counter
- materials / stock_change_records / material_alerts: stock ledger and alerts
- shifts / settlements / inventory_counts: shift totals and settlement snapshots
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    op.create_table(
        'materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('current_stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('alert_threshold', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_materials_name', 'materials', ['name'])
    op.create_index('ix_materials_status', 'materials', ['status'])

    op.create_table(
        'product_recipes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'material_id', name='uq_product_recipes_product_material'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_recipes_product_id', 'product_recipes', ['product_id'])
    op.create_index('ix_product_recipes_material_id', 'product_recipes', ['material_id'])

    # ============================================================================
    # Settlements and shifts
    # ============================================================================
    op.create_table(
        'settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='MANUAL'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('incentive_target', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incentive_items_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incentive_achieved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_settlements_business_date', 'settlements', ['business_date'])
    op.create_index('ix_settlements_submitted_at', 'settlements', ['submitted_at'])

    op.create_table(
        'inventory_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('settlement_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('settlement_id', 'product_id', name='uq_inventory_counts_settlement_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_counts_settlement_id', 'inventory_counts', ['settlement_id'])

    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shifts_device_status', 'shifts', ['device_id', 'status'])
    op.create_index('ix_shifts_status', 'shifts', ['status'])
    # One OPEN shift per device; NULL device ids share the '' slot
    op.create_index(
        'uq_shifts_open_device',
        'shifts',
        [sa.text("coalesce(device_id, '')")],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # ============================================================================
    # Orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('daily_sequence', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('ordered_at', sa.DateTime(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='CASH'),
        sa.Column('customer_tag', sa.String(length=64), nullable=True),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_date', 'daily_sequence', name='uq_orders_day_sequence'),
        sa.UniqueConstraint('device_id', 'ordered_at', name='uq_orders_device_ordered_at'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_business_date', 'orders', ['business_date'])
    op.create_index('ix_orders_business_date_status', 'orders', ['business_date', 'status'])
    op.create_index('ix_orders_ordered_at', 'orders', ['ordered_at'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_device_id', 'orders', ['device_id'])
    op.create_index('ix_orders_shift_id', 'orders', ['shift_id'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('is_gift', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('original_price_cents', sa.Integer(), nullable=True),
        sa.Column('item_discount_label', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])
    op.create_index('ix_order_lines_product_id', 'order_lines', ['product_id'])

    op.create_table(
        'order_line_addons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_line_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_line_id'], ['order_lines.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_line_addons_order_line_id', 'order_line_addons', ['order_line_id'])

    op.create_table(
        'daily_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('last_sequence', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_date'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Stock ledger
    # ============================================================================
    op.create_table(
        'stock_change_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('stock_before', sa.Numeric(12, 3), nullable=False),
        sa.Column('stock_after', sa.Numeric(12, 3), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('operator_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_change_records_material_id', 'stock_change_records', ['material_id'])
    op.create_index('ix_stock_change_records_change_type', 'stock_change_records', ['change_type'])
    op.create_index('ix_stock_change_records_order_id', 'stock_change_records', ['order_id'])
    op.create_index('ix_stock_change_records_created_at', 'stock_change_records', ['created_at'])
    op.create_index('ix_stock_records_material_created', 'stock_change_records', ['material_id', 'created_at'])

    op.create_table(
        'material_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('stock_level', sa.Numeric(12, 3), nullable=False),
        sa.Column('alert_threshold', sa.Numeric(12, 3), nullable=False),
        sa.Column('is_notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notified_at', sa.DateTime(), nullable=True),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_material_alerts_material_id', 'material_alerts', ['material_id'])
    op.create_index('ix_material_alerts_material_resolved', 'material_alerts', ['material_id', 'is_resolved'])


def downgrade():
    op.drop_table('material_alerts')
    op.drop_table('stock_change_records')
    op.drop_table('daily_sequences')
    op.drop_table('order_line_addons')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_index('uq_shifts_open_device', table_name='shifts')
    op.drop_table('shifts')
    op.drop_table('inventory_counts')
    op.drop_table('settlements')
    op.drop_table('product_recipes')
    op.drop_table('materials')
    op.drop_table('products')
