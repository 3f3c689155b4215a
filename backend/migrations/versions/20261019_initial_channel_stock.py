"""Initial schema: channels, stock request pipeline, ledger, sales, close-out

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Sales channels, staff assignments, audit log, return shipments, code sequences
2. Stock requests with allocations, shipments, receivings and receiving lines
3. Channel stock ledger (version-counted) and the stock movement journal
4. Close-out entries
5. Sales with lines and adjustments
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CHANNELS
    # ==========================================================================
    op.create_table('sales_channels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('sales_target_cents', sa.Integer(), nullable=True),
        sa.Column('responsible_person_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_sales_channels_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_channels_type', 'sales_channels', ['type'])
    op.create_index('ix_sales_channels_status', 'sales_channels', ['status'])
    op.create_index('ix_sales_channels_type_status', 'sales_channels', ['type', 'status'])

    op.create_table('channel_staff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.String(length=64), nullable=False),
        sa.Column('is_main', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_id', 'staff_id', name='uq_channel_staff_channel_staff'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_channel_staff_channel_id', 'channel_staff', ['channel_id'])

    op.create_table('channel_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('changed_by', sa.String(length=128), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_channel_logs_channel_id', 'channel_logs', ['channel_id'])
    op.create_index('ix_channel_logs_action', 'channel_logs', ['action'])
    op.create_index('ix_channel_logs_occurred_at', 'channel_logs', ['occurred_at'])
    op.create_index('ix_channel_logs_channel_occurred', 'channel_logs', ['channel_id', 'occurred_at'])

    op.create_table('return_shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=128), nullable=False),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('shipped_by', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_id', name='uq_return_shipments_channel'),
        sqlite_autoincrement=True,
    )

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(length=32), nullable=False),
        sa.Column('prefix', sa.String(length=64), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope', 'prefix', name='uq_doc_sequences_scope_prefix'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_scope', 'document_sequences', ['scope'])

    # ==========================================================================
    # 2. STOCK REQUEST PIPELINE
    # ==========================================================================
    op.create_table('stock_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('request_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('requested_total_quantity', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('approved_by', sa.String(length=128), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.CheckConstraint('requested_total_quantity > 0', name='ck_stock_requests_qty_positive'),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_requests_channel_id', 'stock_requests', ['channel_id'])
    op.create_index('ix_stock_requests_status', 'stock_requests', ['status'])
    op.create_index('ix_stock_requests_status_created', 'stock_requests', ['status', 'created_at'])
    # Exactly one INITIAL request per channel
    op.create_index(
        'uq_stock_requests_one_initial',
        'stock_requests',
        ['channel_id'],
        unique=True,
        sqlite_where=sa.text("request_type = 'INITIAL'"),
        postgresql_where=sa.text("request_type = 'INITIAL'"),
    )

    op.create_table('allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('packed_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('packed_quantity >= 0', name='ck_allocations_packed_non_negative'),
        sa.ForeignKeyConstraint(['request_id'], ['stock_requests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', 'barcode', name='uq_allocations_request_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_allocations_request_id', 'allocations', ['request_id'])

    op.create_table('shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=128), nullable=False),
        sa.Column('tracking_number', sa.String(length=128), nullable=False),
        sa.Column('packed_total_qty', sa.Integer(), nullable=False),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('shipped_by', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['stock_requests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', name='uq_shipments_request'),
        sqlite_autoincrement=True,
    )

    op.create_table('receivings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('received_total_qty', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_by', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['stock_requests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', name='uq_receivings_request'),
        sqlite_autoincrement=True,
    )

    op.create_table('receiving_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receiving_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('allocated_qty', sa.Integer(), nullable=False),
        sa.Column('received_qty', sa.Integer(), nullable=False),
        sa.Column('difference_qty', sa.Integer(), nullable=False),
        sa.Column('remarks', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['receiving_id'], ['receivings.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receiving_id', 'barcode', name='uq_receiving_lines_receiving_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_receiving_lines_receiving_id', 'receiving_lines', ['receiving_id'])

    # ==========================================================================
    # 3. LEDGER AND MOVEMENTS
    # ==========================================================================
    op.create_table('channel_stock',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('received', sa.Integer(), nullable=False),
        sa.Column('sold', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('sold >= 0', name='ck_channel_stock_sold_non_negative'),
        sa.CheckConstraint('sold <= received', name='ck_channel_stock_sold_le_received'),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_id', 'barcode', name='uq_channel_stock_channel_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_channel_stock_channel_id', 'channel_stock', ['channel_id'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('from_location', sa.String(length=255), nullable=False),
        sa.Column('to_location', sa.String(length=255), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_channel_id', 'stock_movements', ['channel_id'])
    op.create_index('ix_stock_movements_channel_barcode', 'stock_movements', ['channel_id', 'barcode'])

    # ==========================================================================
    # 4. CLOSE-OUT
    # ==========================================================================
    op.create_table('closeout_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('sold', sa.Integer(), nullable=False),
        sa.Column('remaining', sa.Integer(), nullable=False),
        sa.Column('damaged', sa.Integer(), nullable=False),
        sa.Column('missing', sa.Integer(), nullable=False),
        sa.Column('clamped', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.String(length=128), nullable=True),
        sa.CheckConstraint('damaged >= 0 AND missing >= 0', name='ck_closeout_non_negative'),
        sa.CheckConstraint('damaged + missing <= remaining', name='ck_closeout_conservation'),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_id', 'barcode', name='uq_closeout_entries_channel_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_closeout_entries_channel_id', 'closeout_entries', ['channel_id'])

    # ==========================================================================
    # 5. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_id', sa.Integer(), nullable=False),
        sa.Column('bill_code', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('bill_discount_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['channel_id'], ['sales_channels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_code', name='uq_sales_bill_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_channel_id', 'sales', ['channel_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_channel_status_sold', 'sales', ['channel_id', 'status', 'sold_at'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_lines_qty_positive'),
        sa.CheckConstraint('discount_cents >= 0', name='ck_sale_lines_discount_non_negative'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])

    op.create_table('sale_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_adjustments_sale_id', 'sale_adjustments', ['sale_id'])


def downgrade():
    op.drop_table('sale_adjustments')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('closeout_entries')
    op.drop_table('stock_movements')
    op.drop_table('channel_stock')
    op.drop_table('receiving_lines')
    op.drop_table('receivings')
    op.drop_table('shipments')
    op.drop_table('allocations')
    op.drop_table('stock_requests')
    op.drop_table('document_sequences')
    op.drop_table('return_shipments')
    op.drop_table('channel_logs')
    op.drop_table('channel_staff')
    op.drop_table('sales_channels')
