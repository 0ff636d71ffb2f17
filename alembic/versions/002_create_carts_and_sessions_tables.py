"""Create carts, cart_lines and device_sessions tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create carts, cart_lines and device_sessions tables."""
    # A cart belongs to one owner or carries one bearer token
    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
            unique=True,
        ),
        sa.Column('token', sa.String(64), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'cart_lines',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'cart_id',
            sa.Integer(),
            sa.ForeignKey('carts.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('size_label', sa.String(40), nullable=False, server_default=''),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('image', sa.String(1000), nullable=True),
        sa.Column('postponed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('cart_id', 'variant_id', name='uq_cart_lines_variant'),
    )

    # Lines without a variant are unique by product and size
    op.create_index(
        'uq_cart_lines_product_size',
        'cart_lines',
        ['cart_id', 'product_id', 'size_label'],
        unique=True,
        postgresql_where=sa.text('variant_id IS NULL'),
    )

    op.create_table(
        'device_sessions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('token', sa.String(128), nullable=False, unique=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ip', sa.String(64), nullable=False, server_default=''),
        sa.Column('city', sa.String(120), nullable=True),
        sa.Column('country', sa.String(120), nullable=True),
        sa.Column('device', sa.String(20), nullable=False, server_default='Desktop'),
        sa.Column('os', sa.String(20), nullable=False, server_default='Unknown'),
        sa.Column('user_agent', sa.String(500), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Live session listing per account
    op.create_index(
        'ix_device_sessions_user_live',
        'device_sessions',
        ['user_id', 'last_seen_at'],
        postgresql_where=sa.text('revoked_at IS NULL'),
    )

    # At most one primary session per account
    op.create_index(
        'uq_device_sessions_primary',
        'device_sessions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('is_primary'),
    )


def downgrade() -> None:
    """Drop carts, cart_lines and device_sessions tables."""
    op.drop_index('uq_device_sessions_primary', table_name='device_sessions')
    op.drop_index('ix_device_sessions_user_live', table_name='device_sessions')
    op.drop_table('device_sessions')
    op.drop_index('uq_cart_lines_product_size', table_name='cart_lines')
    op.drop_table('cart_lines')
    op.drop_table('carts')
