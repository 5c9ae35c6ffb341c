"""add AI response cache, billing events and subscriptions

Revision ID: 2026_10_17_0001
Revises: 2026_10_17_0000
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0001'
down_revision: Union[str, None] = '2026_10_17_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ai_cache_entries, billing_events and subscriptions."""

    # ========================================================================
    # Create ai_cache_entries table
    # ========================================================================
    op.create_table(
        'ai_cache_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('cache_key', sa.String(128), nullable=False),
        sa.Column('response_data', JSONB(), nullable=False),
        sa.Column('model_used', sa.String(100), nullable=False),
        sa.Column('tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_usd', sa.Numeric(12, 6), nullable=False, server_default='0'),
        sa.Column('ttl_seconds', sa.Integer(), nullable=False, server_default='3600'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),

        # Constraints
        sa.CheckConstraint('ttl_seconds > 0', name='ck_cache_ttl_positive'),
        sa.CheckConstraint('tokens_used >= 0', name='ck_cache_tokens_non_negative'),
        sa.UniqueConstraint('tenant_id', 'cache_key', name='uq_cache_tenant_key'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_cache_tenant', ondelete='CASCADE'),
    )

    op.create_index('idx_cache_expires_at', 'ai_cache_entries', ['expires_at'])

    # ========================================================================
    # Create billing_events table
    # ========================================================================
    op.create_table(
        'billing_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('external_event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),

        # Idempotency key
        sa.UniqueConstraint('external_event_id', name='uq_billing_event_external_id'),
    )

    op.create_index('idx_billing_events_type', 'billing_events', ['event_type'])
    op.create_index(
        'idx_billing_events_unprocessed', 'billing_events', ['created_at'],
        postgresql_where=sa.text('processed = false'),
    )

    # ========================================================================
    # Create subscriptions table
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('plan', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint(
            "plan IN ('free', 'pro', 'family', 'enterprise')", name='ck_subscription_plan_valid'
        ),
        sa.CheckConstraint(
            "status IN ('active', 'canceled', 'incomplete', 'incomplete_expired', "
            "'past_due', 'paused', 'trialing', 'unpaid')",
            name='ck_subscription_status_valid',
        ),
        sa.UniqueConstraint('stripe_subscription_id', name='uq_subscription_stripe_id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_subscriptions_tenant', ondelete='CASCADE'),
    )

    op.create_index('idx_subscriptions_tenant_id', 'subscriptions', ['tenant_id'])


def downgrade() -> None:
    """Drop cache, billing events and subscriptions."""
    op.drop_table('subscriptions')
    op.drop_table('billing_events')
    op.drop_table('ai_cache_entries')
