"""
Alembic migration: Initial back office schema for order modifications.

Creates staff users, the read-only catalog and quote tables, orders with
their lines and numbering counters, amendments, version snapshots and
shipments. Enumerated columns are VARCHAR with check constraints so values
stay readable to other services sharing the database.

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


ORDER_STATUSES = ('pending', 'confirmed', 'processing', 'completed', 'cancelled')
AMENDMENT_TYPES = (
    'item_added',
    'item_removed',
    'item_modified',
    'quantity_changed',
    'price_changed',
    'discount_changed',
    'fulfillment_updated',
    'order_cancelled',
    'order_reinstated',
)
AMENDMENT_STATUSES = (
    'draft',
    'pending_approval',
    'approved',
    'rejected',
    'applied',
    'cancelled',
)
CHANGE_TYPES = ('add', 'remove', 'modify')
PRICE_SOURCES = ('quote', 'catalog', 'order', 'override')
ITEM_FULFILLMENT_STATUSES = (
    'pending',
    'partially_shipped',
    'shipped',
    'backordered',
    'cancelled',
)
SHIPMENT_STATUSES = ('pending', 'shipped', 'delivered')
USER_ROLES = ('sales', 'manager', 'admin')


def _id() -> sa.Column:
    return sa.Column(
        'id',
        sa.BigInteger(),
        primary_key=True,
        autoincrement=True,
        comment='Surrogate identifier for the record',
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was last updated',
        ),
    ]


def _one_of(column: str, values: Sequence[str], name: str) -> sa.CheckConstraint:
    allowed = ', '.join(f"'{value}'" for value in values)
    return sa.CheckConstraint(f'{column} IN ({allowed})', name=name)


def upgrade() -> None:
    """
    Create the order modification schema.

    Tables are created parents first so every foreign key target exists.
    """
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(length=255), nullable=False, comment='Login email address'),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column(
            'role',
            sa.String(length=32),
            nullable=False,
            server_default='sales',
            comment='Staff role for authorization',
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_users_email'),
        _one_of('role', USER_ROLES, 'user_role'),
        comment='Back office staff accounts',
    )

    op.create_table(
        'products',
        _id(),
        sa.Column('sku', sa.String(length=64), nullable=False, comment='Stock keeping unit'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column(
            'price_cents',
            sa.BigInteger(),
            nullable=False,
            comment='Current catalog price in cents',
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('price_cents >= 0', name='ck_products_price_non_negative'),
        comment='Product catalog (read-only for order modifications)',
    )

    op.create_table(
        'quotes',
        _id(),
        sa.Column('quote_number', sa.String(length=50), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('quote_number', name='uq_quotes_quote_number'),
        comment='Customer quotes',
    )

    op.create_table(
        'quote_items',
        _id(),
        sa.Column(
            'quote_id',
            sa.BigInteger(),
            sa.ForeignKey('quotes.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            sa.BigInteger(),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column(
            'unit_price_cents',
            sa.BigInteger(),
            nullable=False,
            comment='Quoted unit price in cents',
        ),
        sa.Column(
            'discount_percent',
            sa.Numeric(precision=5, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        *_timestamps(),
        sa.UniqueConstraint('quote_id', 'product_id', name='uq_quote_items_quote_product'),
        comment='Quoted lines',
    )
    op.create_index('ix_quote_items_product_id', 'quote_items', ['product_id'])

    op.create_table(
        'orders',
        _id(),
        sa.Column(
            'order_number',
            sa.String(length=50),
            nullable=False,
            comment='Human-readable order number',
        ),
        sa.Column(
            'status',
            sa.String(length=32),
            nullable=False,
            server_default='confirmed',
            comment='Current order status',
        ),
        sa.Column(
            'tax_province',
            sa.String(length=2),
            nullable=True,
            comment='Province code used for tax calculation',
        ),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column(
            'price_locked',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('false'),
            comment='Honor quote-time prices for amendments',
        ),
        sa.Column(
            'price_lock_until',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='Price lock expiry; NULL means no expiry',
        ),
        sa.Column(
            'original_quote_id',
            sa.BigInteger(),
            sa.ForeignKey('quotes.id', ondelete='SET NULL'),
            nullable=True,
            comment='Quote this order was converted from',
        ),
        sa.Column(
            'quote_prices_honored',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('false'),
        ),
        sa.Column(
            'version_number',
            sa.Integer(),
            nullable=False,
            server_default='0',
            comment='Latest version snapshot number',
        ),
        sa.Column(
            'last_modified_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        _one_of('status', ORDER_STATUSES, 'order_status'),
        sa.CheckConstraint('subtotal_cents >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('discount_cents >= 0', name='ck_orders_discount_non_negative'),
        sa.CheckConstraint('tax_cents >= 0', name='ck_orders_tax_non_negative'),
        sa.CheckConstraint('total_cents >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint('version_number >= 0', name='ck_orders_version_non_negative'),
        comment='Customer orders open to amendment and fulfillment',
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_original_quote_id', 'orders', ['original_quote_id'])

    op.create_table(
        'order_items',
        _id(),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            sa.BigInteger(),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('line_total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column(
            'quote_price_cents',
            sa.BigInteger(),
            nullable=True,
            comment='Quote-time unit price, when the order came from a quote',
        ),
        sa.Column(
            'fulfillment_status',
            sa.String(length=32),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('quantity_fulfilled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_backordered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_cancelled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'shipped_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='First shipment of this line',
        ),
        *_timestamps(),
        _one_of('fulfillment_status', ITEM_FULFILLMENT_STATUSES, 'item_fulfillment_status'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price_cents >= 0', name='ck_order_items_price_non_negative'),
        sa.CheckConstraint(
            'quantity_fulfilled >= 0 AND quantity_backordered >= 0 '
            'AND quantity_cancelled >= 0',
            name='ck_order_items_counters_non_negative',
        ),
        sa.CheckConstraint(
            'quantity_fulfilled + quantity_backordered + quantity_cancelled <= quantity',
            name='ck_order_items_fulfillment_within_quantity',
        ),
        comment='Order lines with fulfillment counters',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_sequences',
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column(
            'name',
            sa.String(length=32),
            primary_key=True,
            comment="Counter name, e.g. 'amendment' or 'shipment'",
        ),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('last_value >= 0', name='ck_order_sequences_non_negative'),
        comment='Per-order numbering counters',
    )

    op.create_table(
        'order_versions',
        _id(),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'items_snapshot',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column('change_summary', sa.Text(), nullable=True),
        sa.Column(
            'created_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            'order_id', 'version_number', name='uq_order_versions_order_version'
        ),
        sa.CheckConstraint('version_number > 0', name='ck_order_versions_number_positive'),
        comment='Immutable order snapshots for audit and diffing',
    )

    op.create_table(
        'order_amendments',
        _id(),
        sa.Column('amendment_number', sa.String(length=80), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('amendment_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('previous_total_cents', sa.BigInteger(), nullable=False),
        sa.Column('new_total_cents', sa.BigInteger(), nullable=False),
        sa.Column('difference_cents', sa.BigInteger(), nullable=False),
        sa.Column(
            'use_quote_prices',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('false'),
        ),
        sa.Column(
            'requires_approval',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('false'),
        ),
        sa.Column('approval_threshold_cents', sa.BigInteger(), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column(
            'created_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'approved_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'applied_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'approved_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='When the amendment was approved or rejected',
        ),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'resulting_version_id',
            sa.BigInteger(),
            sa.ForeignKey('order_versions.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint('amendment_number', name='uq_order_amendments_number'),
        sa.UniqueConstraint(
            'order_id', 'sequence_number', name='uq_order_amendments_order_sequence'
        ),
        _one_of('amendment_type', AMENDMENT_TYPES, 'amendment_type'),
        _one_of('status', AMENDMENT_STATUSES, 'amendment_status'),
        sa.CheckConstraint(
            'new_total_cents = previous_total_cents + difference_cents',
            name='ck_order_amendments_totals_consistent',
        ),
        comment='Proposed and applied order amendments',
    )
    op.create_index('ix_order_amendments_order_id', 'order_amendments', ['order_id'])
    op.create_index(
        'ix_order_amendments_status_created',
        'order_amendments',
        ['status', 'created_at'],
    )

    op.create_table(
        'order_amendment_items',
        _id(),
        sa.Column(
            'amendment_id',
            sa.BigInteger(),
            sa.ForeignKey('order_amendments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'order_item_id',
            sa.BigInteger(),
            sa.ForeignKey('order_items.id', ondelete='SET NULL'),
            nullable=True,
            comment='Existing line for remove/modify; NULL for adds',
        ),
        sa.Column(
            'product_id',
            sa.BigInteger(),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=True),
        sa.Column('change_type', sa.String(length=32), nullable=False),
        sa.Column('previous_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quote_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('current_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('applied_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('price_source', sa.String(length=32), nullable=False),
        sa.Column(
            'line_difference_cents',
            sa.BigInteger(),
            nullable=False,
            server_default='0',
        ),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        _one_of('change_type', CHANGE_TYPES, 'amendment_change_type'),
        _one_of('price_source', PRICE_SOURCES, 'amendment_price_source'),
        sa.CheckConstraint(
            'previous_quantity >= 0 AND new_quantity >= 0',
            name='ck_order_amendment_items_quantities_non_negative',
        ),
        comment='Line deltas of order amendments',
    )
    op.create_index(
        'ix_order_amendment_items_amendment_id',
        'order_amendment_items',
        ['amendment_id'],
    )

    op.create_table(
        'order_shipments',
        _id(),
        sa.Column('shipment_number', sa.String(length=80), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('carrier', sa.String(length=100), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('tracking_url', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='shipped'),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery', sa.Date(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipping_cost_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column(
            'created_by',
            sa.BigInteger(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint('shipment_number', name='uq_order_shipments_number'),
        sa.UniqueConstraint(
            'order_id', 'sequence_number', name='uq_order_shipments_order_sequence'
        ),
        _one_of('status', SHIPMENT_STATUSES, 'shipment_status'),
        sa.CheckConstraint(
            'shipping_cost_cents >= 0', name='ck_order_shipments_cost_non_negative'
        ),
        comment='Order shipments',
    )
    op.create_index('ix_order_shipments_order_id', 'order_shipments', ['order_id'])

    op.create_table(
        'order_shipment_items',
        _id(),
        sa.Column(
            'shipment_id',
            sa.BigInteger(),
            sa.ForeignKey('order_shipments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'order_item_id',
            sa.BigInteger(),
            sa.ForeignKey('order_items.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('quantity_shipped', sa.Integer(), nullable=False),
        sa.Column('serial_numbers', postgresql.ARRAY(sa.String(length=100)), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'quantity_shipped > 0', name='ck_order_shipment_items_quantity_positive'
        ),
        comment='Per-line quantities of order shipments',
    )
    op.create_index(
        'ix_order_shipment_items_order_item_id',
        'order_shipment_items',
        ['order_item_id'],
    )


def downgrade() -> None:
    """Drop the order modification schema, children first."""
    op.drop_index('ix_order_shipment_items_order_item_id', table_name='order_shipment_items')
    op.drop_table('order_shipment_items')
    op.drop_index('ix_order_shipments_order_id', table_name='order_shipments')
    op.drop_table('order_shipments')
    op.drop_index('ix_order_amendment_items_amendment_id', table_name='order_amendment_items')
    op.drop_table('order_amendment_items')
    op.drop_index('ix_order_amendments_status_created', table_name='order_amendments')
    op.drop_index('ix_order_amendments_order_id', table_name='order_amendments')
    op.drop_table('order_amendments')
    op.drop_table('order_versions')
    op.drop_table('order_sequences')
    op.drop_index('ix_order_items_product_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_original_quote_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_quote_items_product_id', table_name='quote_items')
    op.drop_table('quote_items')
    op.drop_table('quotes')
    op.drop_table('products')
    op.drop_table('users')
