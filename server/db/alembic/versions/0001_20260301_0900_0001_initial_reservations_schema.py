"""Initial reservations schema

Revision ID: 0001
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_STATUS_SQL = "status IN ('pending_payment', 'pending', 'confirmed')"


def upgrade() -> None:
    """Upgrade database schema."""
    # Create resources table
    op.create_table('resources',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('unit_price_amount', sa.Integer(), nullable=False),
        sa.Column('unit_price_currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('unit_price_amount >= 0', name='ck_resource_price_non_negative'),
        sa.CheckConstraint('length(unit_price_currency) = 3', name='ck_resource_price_currency_length'),
        sa.CheckConstraint('length(title) > 0', name='ck_resource_title_not_empty'),
        sa.CheckConstraint('version >= 1', name='ck_resource_version_positive'),
        sa.CheckConstraint("kind IN ('experience', 'product')", name='ck_resource_kind_valid'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_resources_owner_id'), 'resources', ['owner_id'], unique=False)
    op.create_index(op.f('ix_resources_status'), 'resources', ['status'], unique=False)

    # Create inventory_units table
    op.create_table('inventory_units',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('resource_id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('slot_key', sa.String(length=64), nullable=False),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('reserved', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('is_open', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('capacity >= 0', name='ck_inventory_unit_capacity_non_negative'),
        sa.CheckConstraint('reserved >= 0', name='ck_inventory_unit_reserved_non_negative'),
        sa.CheckConstraint('reserved <= capacity', name='ck_inventory_unit_reserved_lte_capacity'),
        sa.CheckConstraint('version >= 1', name='ck_inventory_unit_version_positive'),
        sa.CheckConstraint("kind IN ('time_slot', 'stock')", name='ck_inventory_unit_kind_valid'),
        sa.CheckConstraint(
            'starts_at IS NULL OR ends_at IS NULL OR ends_at > starts_at',
            name='ck_inventory_unit_window_ordered'
        ),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_id', 'slot_key', name='uq_inventory_unit_resource_slot')
    )
    op.create_index(op.f('ix_inventory_units_resource_id'), 'inventory_units', ['resource_id'], unique=False)

    # Create ledger_entries table
    op.create_table('ledger_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('reservation_id', sa.Uuid(), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('reserved_before', sa.Integer(), nullable=False),
        sa.Column('reserved_after', sa.Integer(), nullable=False),
        sa.Column('version_before', sa.Integer(), nullable=False),
        sa.Column('version_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('delta != 0', name='ck_ledger_entry_delta_nonzero'),
        sa.CheckConstraint('length(reason) > 0', name='ck_ledger_entry_reason_not_empty'),
        sa.CheckConstraint('reserved_before >= 0', name='ck_ledger_entry_reserved_before_non_negative'),
        sa.CheckConstraint('reserved_after >= 0', name='ck_ledger_entry_reserved_after_non_negative'),
        sa.CheckConstraint('reserved_after = reserved_before + delta', name='ck_ledger_entry_delta_consistency'),
        sa.CheckConstraint('version_after = version_before + 1', name='ck_ledger_entry_version_step'),
        sa.ForeignKeyConstraint(['unit_id'], ['inventory_units.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ledger_entries_unit_id'), 'ledger_entries', ['unit_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_reservation_id'), 'ledger_entries', ['reservation_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_created_at'), 'ledger_entries', ['created_at'], unique=False)

    # Create reservations table
    op.create_table('reservations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('resource_id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('total_currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=20), nullable=True),
        sa.Column('inventory_released_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('shipped_at', sa.DateTime(), nullable=True),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('pending_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('payment_failed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_reservation_quantity_positive'),
        sa.CheckConstraint('total_amount >= 0', name='ck_reservation_total_non_negative'),
        sa.CheckConstraint('length(total_currency) = 3', name='ck_reservation_currency_length'),
        sa.CheckConstraint('length(user_id) > 0', name='ck_reservation_user_id_not_empty'),
        sa.CheckConstraint("kind IN ('booking', 'order')", name='ck_reservation_kind_valid'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['unit_id'], ['inventory_units.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_reservations_user_id'), 'reservations', ['user_id'], unique=False)
    op.create_index(op.f('ix_reservations_resource_id'), 'reservations', ['resource_id'], unique=False)
    op.create_index(op.f('ix_reservations_unit_id'), 'reservations', ['unit_id'], unique=False)
    op.create_index(op.f('ix_reservations_status'), 'reservations', ['status'], unique=False)
    op.create_index(op.f('ix_reservations_payment_reference'), 'reservations', ['payment_reference'], unique=False)
    op.create_index(op.f('ix_reservations_created_at'), 'reservations', ['created_at'], unique=False)
    op.create_index(
        'uq_reservation_active_user_unit',
        'reservations',
        ['user_id', 'unit_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_STATUS_SQL),
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
    )

    # Create webhook_events table
    op.create_table('webhook_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('length(event_id) > 0', name='ck_webhook_event_id_not_empty'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_event_provider_event')
    )
    op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('webhook_events')
    op.drop_index('uq_reservation_active_user_unit', table_name='reservations')
    op.drop_table('reservations')
    op.drop_table('ledger_entries')
    op.drop_table('inventory_units')
    op.drop_table('resources')
