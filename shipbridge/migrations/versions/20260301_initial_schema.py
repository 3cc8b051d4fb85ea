"""Initial schema: orders, quotations, shipments, error logs

Revision ID: 20260301_initial_schema
Revises:
Create Date: 2026-03-01

- orders.external_id is unique (source identifier)
- shipments.order_id is unique: at most one shipment per order
- quotations and error logs are removed with their order
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20260301_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ('PENDING_DATA', 'READY_TO_QUOTE', 'QUOTED', 'LABEL_CREATED', 'ERROR')


def upgrade() -> None:
    # ============================================================
    # orders: local mirror of warehouse fulfillment requests
    # ============================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_id', sa.String(100), nullable=False),

        # Order details
        sa.Column('order_number', sa.String(100), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),

        # Delivery address
        sa.Column('delivery_street', sa.String(255), nullable=True),
        sa.Column('delivery_street2', sa.String(255), nullable=True),
        sa.Column('delivery_suburb', sa.String(100), nullable=True),
        sa.Column('delivery_city', sa.String(100), nullable=True),
        sa.Column('delivery_postcode', sa.String(20), nullable=True),
        sa.Column('delivery_country', sa.String(2), nullable=False),
        sa.Column('is_rural', sa.Boolean(), nullable=False),

        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('source_data', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum(*ORDER_STATUSES, name='orderstatus'), nullable=False),

        # Timestamps
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_orders_external_id', 'orders', ['external_id'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    # ============================================================
    # quotations: latest quote batch per order
    # ============================================================
    op.create_table(
        'quotations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('batch_id', sa.String(36), nullable=False),

        # Provider
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('provider_name', sa.String(100), nullable=False),
        sa.Column('service_type', sa.String(100), nullable=True),

        # Pricing
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('rural_surcharge', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('estimated_days', sa.Integer(), nullable=True),
        sa.Column('response_data', sa.JSON(), nullable=True),

        # Validity
        sa.Column('is_selected', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_quotations_order_id', 'quotations', ['order_id'])
    op.create_index('ix_quotations_expires_at', 'quotations', ['expires_at'])

    # ============================================================
    # shipments: booked courier job, one per order
    # ============================================================
    op.create_table(
        'shipments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id'), nullable=False),

        # Provider
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('provider_name', sa.String(100), nullable=False),

        # Tracking
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('tracking_url', sa.String(500), nullable=True),
        sa.Column('consignment_number', sa.String(100), nullable=True),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=False),

        # Label document
        sa.Column('label_url', sa.String(500), nullable=True),
        sa.Column('label_data', sa.LargeBinary(), nullable=True),
        sa.Column('label_file_name', sa.String(255), nullable=True),
        sa.Column('label_downloaded', sa.Boolean(), nullable=False),
        sa.Column('provider_response', sa.JSON(), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.UniqueConstraint('order_id', name='uq_shipments_order_id'),
    )
    op.create_index('ix_shipments_tracking_number', 'shipments', ['tracking_number'])
    op.create_index('ix_shipments_created_at', 'shipments', ['created_at'])

    # ============================================================
    # error_logs: append-only failure history per order
    # ============================================================
    op.create_table(
        'error_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_error_logs_order_id', 'error_logs', ['order_id'])
    op.create_index('ix_error_logs_created_at', 'error_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('error_logs')
    op.drop_table('shipments')
    op.drop_table('quotations')
    op.drop_table('orders')
    sa.Enum(name='orderstatus').drop(op.get_bind(), checkfirst=True)
