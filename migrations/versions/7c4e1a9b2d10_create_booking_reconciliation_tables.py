"""Create booking reconciliation tables

Revision ID: 7c4e1a9b2d10
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c4e1a9b2d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('session_types',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('builder_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('calendly_scheduling_url', sa.String(length=512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('session_types', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_types_builder_id'), ['builder_id'], unique=False)

    op.create_table('bookings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('correlation_key', sa.String(length=64), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=False),
        sa.Column('builder_id', sa.String(length=64), nullable=False),
        sa.Column('session_type_id', sa.String(length=64), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('scheduling_reference', sa.String(length=512), nullable=True),
        sa.Column('scheduling_event_uri', sa.String(length=512), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('client_email', sa.String(length=255), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('client_timezone', sa.String(length=64), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('correlation_key')
    )

    op.create_table('processed_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('external_event_id', sa.String(length=512), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=True),
        sa.Column('outcome', sa.String(length=255), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'external_event_id', name='uq_processed_events_provider_event')
    )
    with op.batch_alter_table('processed_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_processed_events_booking_id'), ['booking_id'], unique=False)

    op.create_table('notification_commands',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('recipient', sa.String(length=255), nullable=True),
        sa.Column('context', sa.JSON(), nullable=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('external_event_id', sa.String(length=512), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'external_event_id', name='uq_notification_commands_event')
    )


def downgrade():
    op.drop_table('notification_commands')
    with op.batch_alter_table('processed_events', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_processed_events_booking_id'))
    op.drop_table('processed_events')
    op.drop_table('bookings')
    with op.batch_alter_table('session_types', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_session_types_builder_id'))
    op.drop_table('session_types')
