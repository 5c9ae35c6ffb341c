"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations. JSONB columns
hold only opaque caller-owned blobs (settings, metadata, cached responses,
provider payloads).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Tenant(Base):
    """
    ORM model for tenants table.

    Tenants are never hard-deleted; status 'deleted' is terminal.
    """

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # Opaque blobs owned by the product (preferences, flags)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    # Billing provider references
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "plan IN ('free', 'pro', 'family', 'enterprise')", name="ck_tenant_plan_valid"
        ),
        CheckConstraint(
            "status IN ('active', 'suspended', 'deleted')", name="ck_tenant_status_valid"
        ),
        Index("idx_tenants_status", "status"),
        Index(
            "idx_tenants_stripe_customer",
            "stripe_customer_id",
            postgresql_where=(stripe_customer_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Tenant(id={self.id}, name={self.name}, plan={self.plan}, status={self.status})>"


class Membership(Base):
    """
    ORM model for tenant_memberships table.

    One row per (tenant, user) pair.
    """

    __tablename__ = "tenant_memberships"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="viewer")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    invited_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('owner', 'editor', 'viewer', 'analyst')", name="ck_membership_role_valid"
        ),
        CheckConstraint(
            "status IN ('active', 'pending', 'suspended')", name="ck_membership_status_valid"
        ),
        UniqueConstraint("tenant_id", "user_id", name="uq_membership_tenant_user"),
        Index("idx_memberships_user_id", "user_id"),
        Index("idx_memberships_tenant_role", "tenant_id", "role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Membership(tenant_id={self.tenant_id}, user_id={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )


class UsageLog(Base):
    """
    ORM model for usage_logs table.

    Append-only record of metered actions. Never updated or deleted.
    """

    __tablename__ = "usage_logs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=0)
    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("tokens_used >= 0", name="ck_usage_tokens_non_negative"),
        CheckConstraint("cost_usd >= 0", name="ck_usage_cost_non_negative"),
        Index("idx_usage_logs_tenant_action_created", "tenant_id", "action", "created_at"),
        Index("idx_usage_logs_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UsageLog(id={self.id}, tenant_id={self.tenant_id}, action={self.action}, "
            f"tokens={self.tokens_used})>"
        )


class CacheEntry(Base):
    """
    ORM model for ai_cache_entries table.

    Rows with now >= expires_at are logically dead and removed lazily or by sweep.
    """

    __tablename__ = "ai_cache_entries"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    cache_key: Mapped[str] = mapped_column(String(128), nullable=False)
    response_data: Mapped[Any] = mapped_column(JSONB, nullable=False)
    model_used: Mapped[str] = mapped_column(String(100), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=0)
    ttl_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=3600)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("ttl_seconds > 0", name="ck_cache_ttl_positive"),
        CheckConstraint("tokens_used >= 0", name="ck_cache_tokens_non_negative"),
        UniqueConstraint("tenant_id", "cache_key", name="uq_cache_tenant_key"),
        Index("idx_cache_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CacheEntry(tenant_id={self.tenant_id}, cache_key={self.cache_key}, "
            f"expires_at={self.expires_at})>"
        )


class BillingEvent(Base):
    """
    ORM model for billing_events table.

    external_event_id uniqueness is the idempotency mechanism for ingestion.
    """

    __tablename__ = "billing_events"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("external_event_id", name="uq_billing_event_external_id"),
        Index("idx_billing_events_type", "event_type"),
        Index(
            "idx_billing_events_unprocessed",
            "created_at",
            postgresql_where=(processed.is_(False)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<BillingEvent(external_event_id={self.external_event_id}, "
            f"event_type={self.event_type}, processed={self.processed})>"
        )


class Subscription(Base):
    """
    ORM model for subscriptions table.

    Mirrors the billing provider's subscription object for a tenant.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "plan IN ('free', 'pro', 'family', 'enterprise')", name="ck_subscription_plan_valid"
        ),
        CheckConstraint(
            "status IN ('active', 'canceled', 'incomplete', 'incomplete_expired', "
            "'past_due', 'paused', 'trialing', 'unpaid')",
            name="ck_subscription_status_valid",
        ),
        UniqueConstraint("stripe_subscription_id", name="uq_subscription_stripe_id"),
        Index("idx_subscriptions_tenant_id", "tenant_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Subscription(tenant_id={self.tenant_id}, "
            f"stripe_subscription_id={self.stripe_subscription_id}, status={self.status})>"
        )


class Invite(Base):
    """
    ORM model for tenant_invites table.

    used_at marks redemption; expiry is derived from expires_at at read time.
    """

    __tablename__ = "tenant_invites"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="viewer")
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    invited_by: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redeemed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('editor', 'viewer', 'analyst')", name="ck_invite_role_valid"),
        UniqueConstraint("token", name="uq_invite_token"),
        Index("idx_invites_tenant_id", "tenant_id"),
        Index("idx_invites_expires_at", "expires_at", postgresql_where=(used_at.is_(None))),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Invite(id={self.id}, tenant_id={self.tenant_id}, email={self.email})>"
