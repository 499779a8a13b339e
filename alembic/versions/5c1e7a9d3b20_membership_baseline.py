"""membership_baseline

Revision ID: 5c1e7a9d3b20
Revises:
Create Date: 2026-10-12 09:41:17.204518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e7a9d3b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create membership, premium data, promo code and webhook event tables."""
    from sqlalchemy import inspect

    # Tables may already exist where the schema was created by hand (idempotent migration)
    bind = op.get_bind()
    tables = set(inspect(bind).get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('full_name', sa.String(), nullable=True),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    if 'memberships' not in tables:
        op.create_table(
            'memberships',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('plan', sa.String(), nullable=False, server_default='free'),
            sa.Column('tier', sa.String(), nullable=False, server_default='free'),
            sa.Column('status', sa.String(), nullable=False, server_default='active'),
            sa.Column('stripe_subscription_id', sa.String(), nullable=True),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('payment_failed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('downgraded_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('archived_data', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(op.f('ix_memberships_id'), 'memberships', ['id'], unique=False)
        op.create_index(op.f('ix_memberships_user_id'), 'memberships', ['user_id'], unique=False)
        op.create_index(op.f('ix_memberships_stripe_subscription_id'), 'memberships', ['stripe_subscription_id'], unique=False)
        op.create_index('idx_membership_user_status_created', 'memberships', ['user_id', 'status', 'created_at'], unique=False)

    if 'saved_matches' not in tables:
        op.create_table(
            'saved_matches',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('school_id', sa.String(), nullable=False),
            sa.Column('match_score', sa.Float(), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(op.f('ix_saved_matches_id'), 'saved_matches', ['id'], unique=False)
        op.create_index(op.f('ix_saved_matches_user_id'), 'saved_matches', ['user_id'], unique=False)

    if 'profile_views' not in tables:
        op.create_table(
            'profile_views',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('viewer_id', sa.String(), nullable=True),
            sa.Column('viewer_type', sa.String(), nullable=True),
            sa.Column('viewed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(op.f('ix_profile_views_id'), 'profile_views', ['id'], unique=False)
        op.create_index(op.f('ix_profile_views_user_id'), 'profile_views', ['user_id'], unique=False)

    if 'promo_codes' not in tables:
        op.create_table(
            'promo_codes',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('code', sa.String(), nullable=False),
            sa.Column('discount_type', sa.String(), nullable=False),
            sa.Column('discount_value', sa.Float(), nullable=False),
            sa.Column('applicable_products', sa.JSON(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('max_uses', sa.Integer(), nullable=True),
            sa.Column('times_used', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('valid_from', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index(op.f('ix_promo_codes_id'), 'promo_codes', ['id'], unique=False)
        op.create_index(op.f('ix_promo_codes_code'), 'promo_codes', ['code'], unique=True)

    if 'webhook_events' not in tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('event_id', sa.String(), nullable=False),
            sa.Column('event_type', sa.String(), nullable=False),
            sa.Column('environment', sa.String(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index(op.f('ix_webhook_events_id'), 'webhook_events', ['id'], unique=False)
        op.create_index(op.f('ix_webhook_events_event_id'), 'webhook_events', ['event_id'], unique=True)
        op.create_index(op.f('ix_webhook_events_user_id'), 'webhook_events', ['user_id'], unique=False)


def downgrade() -> None:
    """Drop all membership tables."""
    op.drop_table('webhook_events')
    op.drop_table('promo_codes')
    op.drop_table('profile_views')
    op.drop_table('saved_matches')
    op.drop_table('memberships')
    op.drop_table('users')
