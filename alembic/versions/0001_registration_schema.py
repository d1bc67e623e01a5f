"""registration and payment schema

Revision ID: 0001
Revises:
Create Date: 2026-02-16 00:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    op.create_table(
        'events',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('adult_age_threshold', sa.Integer(), nullable=False),
        sa.Column('youth_age_threshold', sa.Integer(), nullable=False),
        sa.Column('infant_age_threshold', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('end_date >= start_date', name='check_event_dates_valid'),
    )

    op.create_table(
        'pricing_config',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('event_id', sa.String(length=36), sa.ForeignKey('events.id', ondelete='CASCADE'), nullable=False),
        sa.Column('adult_full_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('adult_daily_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('youth_full_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('youth_daily_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('child_full_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('child_daily_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('motel_stay_free', sa.Boolean(), nullable=False),
        sa.Column('late_surcharge_tiers', sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_pricing_config_event_id', 'pricing_config', ['event_id'], unique=True)

    op.create_table(
        'registrations',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('event_id', sa.String(length=36), sa.ForeignKey('events.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('group_id', sa.String(length=36), nullable=True),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=False),
        sa.Column('age_at_event', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('is_full_duration', sa.Boolean(), nullable=False),
        sa.Column('is_staying_in_motel', sa.Boolean(), nullable=True),
        sa.Column('num_days', sa.Integer(), nullable=True),
        sa.Column('computed_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('explanation_code', sa.String(), nullable=False),
        sa.Column('explanation_detail', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("category in ('adult', 'youth', 'child')", name='check_registration_category'),
        sa.CheckConstraint("status in ('pending', 'confirmed', 'cancelled', 'refunded')", name='check_registration_status'),
        sa.CheckConstraint('computed_amount >= 0', name='check_registration_amount_non_negative'),
    )
    op.create_index('ix_registrations_event_id', 'registrations', ['event_id'])
    op.create_index('ix_registrations_group_id', 'registrations', ['group_id'])
    op.create_index('ix_registrations_email', 'registrations', ['email'])
    op.create_index('ix_registrations_status', 'registrations', ['status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('registration_id', sa.String(length=36), sa.ForeignKey('registrations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stripe_session_id', sa.String(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True, unique=True),
        sa.Column('stripe_event_id', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('idempotency_key', sa.String(), nullable=True, unique=True),
        sa.Column('webhook_received_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status in ('pending', 'completed', 'failed', 'refunded', 'expired')", name='check_payment_status'),
        sa.CheckConstraint('amount > 0', name='check_payment_amount_positive'),
    )
    op.create_index('ix_payments_registration_id', 'payments', ['registration_id'])
    op.create_index('ix_payments_stripe_session_id', 'payments', ['stripe_session_id'], unique=True)
    op.create_index('ix_payments_stripe_event_id', 'payments', ['stripe_event_id'], unique=True)
    op.create_index('ix_payments_status', 'payments', ['status'])


def downgrade():
    op.drop_table('payments')
    op.drop_table('registrations')
    op.drop_table('pricing_config')
    op.drop_table('events')
