"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed, except the
opaque settings/metadata/payload blobs which are stored as JSONB.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class PlanTier(str, Enum):
    """Subscription plan enumeration."""

    FREE = "free"
    PRO = "pro"
    FAMILY = "family"
    ENTERPRISE = "enterprise"


class TenantStatus(str, Enum):
    """Tenant lifecycle status. DELETED is terminal."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class MembershipRole(str, Enum):
    """Membership role enumeration."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"
    ANALYST = "analyst"


class MembershipStatus(str, Enum):
    """Membership status enumeration."""

    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"


class InviteStatus(str, Enum):
    """Invite status. EXPIRED is derived from expires_at, never stored."""

    PENDING = "pending"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    """Provider subscription status values."""

    ACTIVE = "active"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    TRIALING = "trialing"
    UNPAID = "unpaid"


class IngestOutcome(str, Enum):
    """Result of ingesting a billing event. Both values mean success."""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


class ActionKind(str, Enum):
    """Known metered action kinds."""

    MEAL_GENERATION = "meal_generation"


# ============================================================================
# Tenant Models
# ============================================================================


class CreateTenantRequest(BaseModel):
    """POST /v1/tenants request body."""

    name: str = Field(..., min_length=1, max_length=255)
    plan: PlanTier = PlanTier.FREE
    settings: dict[str, Any] = Field(default_factory=dict)


class UpdateTenantSettingsRequest(BaseModel):
    """PATCH /v1/tenants/{tenant_id}/settings request body."""

    settings: dict[str, Any]


class TenantResponse(BaseModel):
    """Tenant representation."""

    tenant_id: UUID
    name: str
    plan: PlanTier
    status: TenantStatus
    settings: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class MembershipResponse(BaseModel):
    """Membership representation."""

    membership_id: UUID
    tenant_id: UUID
    user_id: str
    role: MembershipRole
    status: MembershipStatus
    joined_at: datetime


class ChangeRoleRequest(BaseModel):
    """PATCH /v1/tenants/{tenant_id}/members/{user_id} request body."""

    role: MembershipRole


class AuthorizationResponse(BaseModel):
    """GET /v1/tenants/{tenant_id}/authorize response."""

    allowed: bool
    reason: str | None = None


# ============================================================================
# Quota & Usage Models
# ============================================================================


class QuotaCheckRequest(BaseModel):
    """POST /v1/tenants/{tenant_id}/quota/check request body."""

    action: str = Field(..., min_length=1, max_length=100)


class QuotaCheckResponse(BaseModel):
    """Quota decision. reset_at is set only when denied by a period ceiling."""

    allowed: bool
    action: str
    limit: int | None = None
    used: int = 0
    remaining: int | None = None
    reset_at: datetime | None = None
    reason: str | None = None


class RecordUsageRequest(BaseModel):
    """POST /v1/tenants/{tenant_id}/usage request body."""

    action: str = Field(..., min_length=1, max_length=100)
    tokens_used: int = Field(default=0, ge=0)
    cost_usd: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=6)
    model_used: str | None = Field(None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UsageRecordResponse(BaseModel):
    """Recorded usage log row."""

    usage_id: UUID
    tenant_id: UUID
    user_id: str
    action: str
    tokens_used: int
    cost_usd: Decimal
    created_at: datetime


class UsageSummaryResponse(BaseModel):
    """GET /v1/tenants/{tenant_id}/usage/summary response."""

    tenant_id: UUID
    plan: PlanTier
    meals_today: int
    meals_month: int
    tokens_today: int
    tokens_month: int
    cost_today: Decimal
    cost_month: Decimal
    plan_quota: int | None
    remaining_quota: int | None


# ============================================================================
# Cache Models
# ============================================================================


class CachePutRequest(BaseModel):
    """PUT /v1/tenants/{tenant_id}/cache/{cache_key} request body."""

    response_data: Any
    model_used: str = Field(..., min_length=1, max_length=100)
    tokens_used: int = Field(default=0, ge=0)
    cost_usd: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=6)
    ttl_seconds: int | None = Field(None, gt=0)


class CacheEntryResponse(BaseModel):
    """Cache lookup result. A miss is a normal response with hit=False."""

    hit: bool
    cache_key: str
    response_data: Any = None
    model_used: str | None = None
    tokens_used: int | None = None
    cost_usd: Decimal | None = None
    expires_at: datetime | None = None


# ============================================================================
# Invite Models
# ============================================================================


class CreateInviteRequest(BaseModel):
    """POST /v1/tenants/{tenant_id}/invites request body."""

    email: str = Field(..., min_length=3, max_length=255)
    role: MembershipRole = MembershipRole.VIEWER

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Basic shape check, normalized to lowercase."""
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("email must look like an address")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: MembershipRole) -> MembershipRole:
        """Ownership is never granted by invite."""
        if v == MembershipRole.OWNER:
            raise ValueError("invites cannot grant the owner role")
        return v


class InviteResponse(BaseModel):
    """Created invite, including the single-use token."""

    invite_id: UUID
    tenant_id: UUID
    email: str
    role: MembershipRole
    token: str
    status: InviteStatus
    expires_at: datetime


# ============================================================================
# Billing Event Models
# ============================================================================


class BillingEventRequest(BaseModel):
    """POST /v1/billing/events request body (already verified upstream)."""

    external_event_id: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(..., min_length=1, max_length=100)
    payload: dict[str, Any] = Field(default_factory=dict)


class BillingEventResponse(BaseModel):
    """Ingestion outcome."""

    external_event_id: str
    outcome: IngestOutcome


class CacheStatsResponse(BaseModel):
    """GET /v1/tenants/{tenant_id}/cache response."""

    tenant_id: UUID
    live_entries: int
    tokens_saved: int
    cost_saved_usd: Decimal


# ============================================================================
# Health & Error Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str


class QuotaExceededDetail(BaseModel):
    """429 response body."""

    detail: str
    action: str
    reason: str
    limit: int | None
    used: int
    reset_at: datetime | None
