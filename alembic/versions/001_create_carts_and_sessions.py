"""Create ucp_carts and ucp_checkout_sessions tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ucp_carts and ucp_checkout_sessions tables."""
    # Carts table
    op.create_table(
        'ucp_carts',
        sa.Column('cart_id', sa.String(37), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active', index=True),
        sa.Column('items', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('checkout_session_id', sa.String(36), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # Checkout sessions table
    op.create_table(
        'ucp_checkout_sessions',
        sa.Column('session_id', sa.String(36), primary_key=True),
        sa.Column('order_ref', sa.String(100), nullable=False, index=True),
        sa.Column('source_cart_id', sa.String(37), nullable=True, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('next_action', sa.String(40), nullable=False),
        sa.Column('items', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=True),
        sa.Column('billing_address', postgresql.JSONB(), nullable=True),
        sa.Column('applied_coupon', postgresql.JSONB(), nullable=True),
        sa.Column('shipping_options', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('selected_shipping_method', sa.String(100), nullable=True),
        sa.Column('payment_method', sa.String(100), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('web_checkout_url', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('shipping', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Sweeper scans pending sessions by expiry
    op.create_index(
        'ix_ucp_checkout_sessions_status_expires_at',
        'ucp_checkout_sessions',
        ['status', 'expires_at'],
    )


def downgrade() -> None:
    """Drop ucp_checkout_sessions and ucp_carts tables."""
    op.drop_index('ix_ucp_checkout_sessions_status_expires_at', table_name='ucp_checkout_sessions')
    op.drop_table('ucp_checkout_sessions')
    op.drop_table('ucp_carts')
