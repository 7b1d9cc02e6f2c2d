"""
Alembic migration: initial order, invoice and logistics schema.

Creates products, logistics vehicles, orders with line items, invoices with
an optimistic version counter, and the number sequence counters.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

vehicle_status = postgresql.ENUM(
    'available', 'on_delivery', 'maintenance', name='vehicle_status', create_type=False
)
order_status = postgresql.ENUM(
    'pending',
    'pending_payment_verification',
    'processing',
    'shipped',
    'delivered',
    'cancelled',
    name='order_status',
    create_type=False,
)
order_type = postgresql.ENUM('onetime-order', 'period-order', name='order_type', create_type=False)
order_payment_method = postgresql.ENUM(
    'online', 'offline', 'periodInvoice', name='order_payment_method', create_type=False
)
invoice_type = postgresql.ENUM('one-time', 'period', name='invoice_type', create_type=False)
invoice_status = postgresql.ENUM(
    'pending', 'paid', 'overdue', 'cancelled', name='invoice_status', create_type=False
)
invoice_payment_method = postgresql.ENUM(
    'credit_card',
    'bank_transfer',
    'cash',
    'offline_payment',
    name='invoice_payment_method',
    create_type=False,
)

ENUMS = (
    vehicle_status,
    order_status,
    order_type,
    order_payment_method,
    invoice_type,
    invoice_status,
    invoice_payment_method,
)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create the enum types and every table with its indexes and constraints."""
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'products',
        *_base_columns(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column(
            'display_names',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
    )
    op.create_index('ix_products_created_at', 'products', ['created_at'])

    op.create_table(
        'logistics_vehicles',
        *_base_columns(),
        sa.Column('plate_number', sa.String(length=20), nullable=False),
        sa.Column('driver_name', sa.String(length=255), nullable=True),
        sa.Column('status', vehicle_status, nullable=False, server_default='available'),
    )
    op.create_index(
        'ix_logistics_vehicles_plate_number', 'logistics_vehicles', ['plate_number'], unique=True
    )
    op.create_index('ix_logistics_vehicles_status', 'logistics_vehicles', ['status'])
    op.create_index('ix_logistics_vehicles_created_at', 'logistics_vehicles', ['created_at'])

    op.create_table(
        'orders',
        *_base_columns(),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=False),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('delivery_method', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'delivery_cost',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default='0',
        ),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_method', order_payment_method, nullable=False),
        sa.Column('order_type', order_type, nullable=False, server_default='onetime-order'),
        sa.Column('period_invoice_number', sa.String(length=50), nullable=True),
        sa.Column('status', order_status, nullable=False, server_default='pending'),
        sa.Column('rejection_reason', sa.String(length=1000), nullable=True),
        sa.Column(
            'vehicle_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('logistics_vehicles.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('scheduled_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('payment_proof_url', sa.String(length=1000), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint('delivery_cost >= 0', name='ck_orders_delivery_cost_non_negative'),
        sa.CheckConstraint(
            "order_type <> 'period-order' OR period_invoice_number IS NOT NULL",
            name='ck_orders_period_invoice_number',
        ),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_order_type', 'orders', ['order_type'])
    op.create_index('ix_orders_period_invoice_number', 'orders', ['period_invoice_number'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_vehicle_id', 'orders', ['vehicle_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index(
        'ix_orders_type_status_created', 'orders', ['order_type', 'status', 'created_at']
    )

    op.create_table(
        'order_items',
        *_base_columns(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_index('ix_order_items_created_at', 'order_items', ['created_at'])

    op.create_table(
        'invoices',
        *_base_columns(),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=False, server_default=''),
        sa.Column('invoice_type', invoice_type, nullable=False),
        sa.Column(
            'order_ids',
            postgresql.JSONB(none_as_null=True),
            nullable=True,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            'items',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            'amount',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            server_default='0',
        ),
        sa.Column('status', invoice_status, nullable=False, server_default='pending'),
        sa.Column(
            'billing_address',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payment_method', invoice_payment_method, nullable=True),
        sa.Column('payment_proof_url', sa.String(length=1000), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('amount >= 0', name='ck_invoices_amount_non_negative'),
        sa.CheckConstraint('period_end >= period_start', name='ck_invoices_period_order'),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_invoice_type', 'invoices', ['invoice_type'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_created_at', 'invoices', ['created_at'])
    # Containment lookups on referenced order ids
    op.create_index(
        'ix_invoices_order_ids_gin',
        'invoices',
        ['order_ids'],
        postgresql_using='gin',
    )

    op.create_table(
        'number_sequences',
        *_base_columns(),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('period_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint(
            'kind', 'year', 'month', 'period_number', name='uq_number_sequences_bucket'
        ),
    )
    op.create_index('ix_number_sequences_created_at', 'number_sequences', ['created_at'])


def downgrade() -> None:
    """Drop every table and enum type created by upgrade."""
    op.drop_table('number_sequences')
    op.drop_table('invoices')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('logistics_vehicles')
    op.drop_table('products')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
