"""initial schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenants, memberships, usage logs and invites."""

    # ========================================================================
    # Create tenants table
    # ========================================================================
    op.create_table(
        'tenants',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('settings', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("plan IN ('free', 'pro', 'family', 'enterprise')", name='ck_tenant_plan_valid'),
        sa.CheckConstraint("status IN ('active', 'suspended', 'deleted')", name='ck_tenant_status_valid'),
    )

    op.create_index('idx_tenants_status', 'tenants', ['status'])
    op.create_index(
        'idx_tenants_stripe_customer', 'tenants', ['stripe_customer_id'],
        postgresql_where=sa.text('stripe_customer_id IS NOT NULL'),
    )

    # ========================================================================
    # Create tenant_memberships table
    # ========================================================================
    op.create_table(
        'tenant_memberships',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='viewer'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('invited_by', sa.String(255), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("role IN ('owner', 'editor', 'viewer', 'analyst')", name='ck_membership_role_valid'),
        sa.CheckConstraint("status IN ('active', 'pending', 'suspended')", name='ck_membership_status_valid'),
        sa.UniqueConstraint('tenant_id', 'user_id', name='uq_membership_tenant_user'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_memberships_tenant', ondelete='CASCADE'),
    )

    op.create_index('idx_memberships_user_id', 'tenant_memberships', ['user_id'])
    op.create_index('idx_memberships_tenant_role', 'tenant_memberships', ['tenant_id', 'role'])

    # ========================================================================
    # Create usage_logs table (append-only)
    # ========================================================================
    op.create_table(
        'usage_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_usd', sa.Numeric(12, 6), nullable=False, server_default='0'),
        sa.Column('model_used', sa.String(100), nullable=True),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('tokens_used >= 0', name='ck_usage_tokens_non_negative'),
        sa.CheckConstraint('cost_usd >= 0', name='ck_usage_cost_non_negative'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_usage_logs_tenant', ondelete='CASCADE'),
    )

    op.create_index(
        'idx_usage_logs_tenant_action_created', 'usage_logs', ['tenant_id', 'action', 'created_at']
    )
    op.create_index('idx_usage_logs_tenant_created', 'usage_logs', ['tenant_id', 'created_at'])

    # ========================================================================
    # Create tenant_invites table
    # ========================================================================
    op.create_table(
        'tenant_invites',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='viewer'),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('invited_by', sa.String(255), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("role IN ('editor', 'viewer', 'analyst')", name='ck_invite_role_valid'),
        sa.UniqueConstraint('token', name='uq_invite_token'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_invites_tenant', ondelete='CASCADE'),
    )

    op.create_index('idx_invites_tenant_id', 'tenant_invites', ['tenant_id'])
    op.create_index(
        'idx_invites_expires_at', 'tenant_invites', ['expires_at'],
        postgresql_where=sa.text('used_at IS NULL'),
    )


def downgrade() -> None:
    """Drop initial schema."""
    op.drop_table('tenant_invites')
    op.drop_table('usage_logs')
    op.drop_table('tenant_memberships')
    op.drop_table('tenants')
