"""Create orders, promo, outbox and webhook_events tables.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create orders, order_lines, promo, outbox and webhook tables."""
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('token', sa.String(64), nullable=False, index=True),
        sa.Column(
            'cart_id',
            sa.Integer(),
            sa.ForeignKey('carts.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING', index=True),
        sa.Column('public_number', sa.String(40), nullable=True, unique=True),
        # Contact snapshot
        sa.Column('full_name', sa.String(160), nullable=False, server_default=''),
        sa.Column('email', sa.String(190), nullable=False, server_default=''),
        sa.Column('phone', sa.String(64), nullable=False, server_default=''),
        sa.Column('address', sa.String(255), nullable=False, server_default=''),
        sa.Column('comment', sa.Text(), nullable=False, server_default=''),
        # Totals in minor units
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False),
        # Promo snapshot
        sa.Column('promo_code', sa.String(64), nullable=True),
        sa.Column('promo_discount_type', sa.String(20), nullable=True),
        sa.Column('promo_discount_value', sa.Integer(), nullable=True),
        # Shipping and delivery scheduling
        sa.Column('shipping_status', sa.String(20), nullable=True),
        sa.Column('delivery_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_address', sa.String(255), nullable=True),
        sa.Column('delivery_recipient_name', sa.String(160), nullable=True),
        sa.Column('delivery_phone', sa.String(20), nullable=True),
        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()'), index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.Integer(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('cart_line_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('size_label', sa.String(40), nullable=False, server_default=''),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('image', sa.String(1000), nullable=True),
    )

    op.create_table(
        'promo_codes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(64), nullable=False, unique=True),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_redemptions', sa.Integer(), nullable=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('min_subtotal', sa.Integer(), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'promo_redemptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'promo_code_id',
            sa.Integer(),
            sa.ForeignKey('promo_codes.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'order_id',
            sa.Integer(),
            sa.ForeignKey('orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('promo_code_id', 'user_id', name='uq_promo_redemptions_user'),
    )

    # Transactional outbox
    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('event_id', sa.String(36), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('aggregate_type', sa.String(50), nullable=False, server_default=''),
        sa.Column('aggregate_id', sa.String(50), nullable=False, server_default=''),
        sa.Column('payload', postgresql.JSONB, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Relay claims pending rows in insertion order
    op.create_index(
        'ix_outbox_events_status_id',
        'outbox_events',
        ['status', 'id'],
    )

    # Payment webhook event log
    op.create_table(
        'webhook_events',
        sa.Column('event_id', sa.String(100), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('payload_hash', sa.String(64), nullable=False),
        sa.Column('payload', postgresql.JSONB, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='received'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop order, promo, outbox and webhook tables."""
    op.drop_table('webhook_events')
    op.drop_index('ix_outbox_events_status_id', table_name='outbox_events')
    op.drop_table('outbox_events')
    op.drop_table('promo_redemptions')
    op.drop_table('promo_codes')
    op.drop_table('order_lines')
    op.drop_table('orders')
