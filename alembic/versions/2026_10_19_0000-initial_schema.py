"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create orders, wallets, ledger and vendor telemetry tables."""

    # ========================================================================
    # Create orders table
    # ========================================================================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_ref', sa.String(255), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_order_id', sa.String(255), nullable=True),
        sa.Column('service_code', sa.String(100), nullable=False),
        sa.Column('country_code', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('vendor_status', sa.String(100), nullable=True),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('charged_amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('refund_issued', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('placement', JSONB(), nullable=True),
        sa.Column('fulfillment', JSONB(), nullable=True),
        sa.Column('next_check_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('check_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('poll_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),

        # Constraints
        sa.CheckConstraint('charged_amount_minor > 0', name='ck_order_amount_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'expired', 'refunded')",
            name='ck_order_status',
        ),
        sa.CheckConstraint("category IN ('phone', 'esim', 'smm')", name='ck_order_category'),
        sa.UniqueConstraint('provider', 'provider_order_id', name='uq_order_provider_reference'),
    )

    op.create_index('idx_orders_owner_ref', 'orders', ['owner_ref'])
    op.create_index('idx_orders_status_category', 'orders', ['status', 'category'])
    op.create_index('idx_orders_next_check_at', 'orders', ['next_check_at'], postgresql_where=sa.text('next_check_at IS NOT NULL'))

    # ========================================================================
    # Create wallets table
    # ========================================================================
    op.create_table(
        'wallets',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_ref', sa.String(255), nullable=False, unique=True),
        sa.Column('balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('balance_minor >= 0', name='ck_wallet_balance_non_negative'),
    )

    # ========================================================================
    # Create ledger_entries table
    # ========================================================================
    op.create_table(
        'ledger_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('wallet_id', UUID(as_uuid=True), nullable=False),
        sa.Column('owner_ref', sa.String(255), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('delta_minor', sa.BigInteger(), nullable=False),
        sa.Column('balance_before', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id'], name='fk_ledger_wallet', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_ledger_order', ondelete='RESTRICT'),
        sa.CheckConstraint('delta_minor != 0', name='ck_ledger_delta_non_zero'),
        sa.CheckConstraint('balance_after = balance_before + delta_minor', name='ck_ledger_balance_arithmetic'),
        sa.CheckConstraint("kind IN ('purchase', 'refund', 'deposit', 'adjustment')", name='ck_ledger_kind'),
    )

    op.create_index('idx_ledger_owner_created', 'ledger_entries', ['owner_ref', 'created_at'])
    op.create_index('idx_ledger_order_id', 'ledger_entries', ['order_id'])
    # At most one refund per order
    op.create_index(
        'uq_ledger_refund_per_order',
        'ledger_entries',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("kind = 'refund'"),
    )

    # ========================================================================
    # Create vendor_call_logs table
    # ========================================================================
    op.create_table(
        'vendor_call_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('operation', sa.String(50), nullable=False),
        sa.Column('outcome', sa.String(30), nullable=False),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('latency_ms', sa.Integer(), nullable=False),
        sa.Column('owner_ref', sa.String(255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_index('idx_vendor_call_logs_provider_created', 'vendor_call_logs', ['provider', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('vendor_call_logs')
    op.drop_table('ledger_entries')
    op.drop_table('wallets')
    op.drop_table('orders')
