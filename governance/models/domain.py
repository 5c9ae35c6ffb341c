"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from governance.models.api import (
    InviteStatus,
    MembershipRole,
    MembershipStatus,
    PlanTier,
    TenantStatus,
)


@dataclass(frozen=True)
class TenantData:
    """Immutable tenant snapshot."""

    tenant_id: UUID
    name: str
    plan: PlanTier
    status: TenantStatus
    settings: dict[str, Any]
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_deleted(self) -> bool:
        return self.status == TenantStatus.DELETED


@dataclass(frozen=True)
class MembershipData:
    """Immutable membership snapshot."""

    membership_id: UUID
    tenant_id: UUID
    user_id: str
    role: MembershipRole
    status: MembershipStatus
    invited_by: str | None
    joined_at: datetime


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of an authorization check. Denials always carry a reason."""

    allowed: bool
    reason: str | None = None
    role: MembershipRole | None = None

    def __post_init__(self) -> None:
        """Validate decision consistency."""
        if not self.allowed and not self.reason:
            raise ValueError("Denied decisions must carry a reason")


@dataclass(frozen=True)
class QuotaDecision:
    """
    Outcome of a quota check.

    reset_at is present only for denials caused by a period ceiling; limit is
    None when the action is unmetered or the plan is unbounded.
    """

    allowed: bool
    action: str
    used: int = 0
    limit: int | None = None
    reset_at: datetime | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        """Validate decision consistency."""
        if self.used < 0:
            raise ValueError(f"Used count cannot be negative: {self.used}")
        if self.allowed and self.reset_at is not None:
            raise ValueError("Allowed decisions do not carry reset_at")

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


@dataclass(frozen=True)
class QuotaState:
    """Usage aggregates for a tenant, derived from usage logs at read time."""

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

    def __post_init__(self) -> None:
        """Validate aggregate constraints."""
        if self.remaining_quota is not None and self.remaining_quota < 0:
            raise ValueError(f"Remaining quota cannot be negative: {self.remaining_quota}")
        if self.meals_today > self.meals_month:
            raise ValueError("Daily count cannot exceed monthly count")


@dataclass(frozen=True)
class UsageIntent:
    """Usage record before persistence - immutable intent."""

    tenant_id: UUID
    user_id: str
    action: str
    tokens_used: int
    cost_usd: Decimal
    model_used: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate usage constraints."""
        if not self.action:
            raise ValueError("Action cannot be empty")
        if self.tokens_used < 0:
            raise ValueError(f"Tokens used cannot be negative: {self.tokens_used}")
        if self.cost_usd < 0:
            raise ValueError(f"Cost cannot be negative: {self.cost_usd}")


@dataclass(frozen=True)
class UsageRecordData:
    """Immutable usage log row after persistence."""

    usage_id: UUID
    tenant_id: UUID
    user_id: str
    action: str
    tokens_used: int
    cost_usd: Decimal
    model_used: str | None
    created_at: datetime


@dataclass(frozen=True)
class CacheEntryData:
    """Immutable cache entry snapshot."""

    tenant_id: UUID
    cache_key: str
    response_data: Any
    model_used: str
    tokens_used: int
    cost_usd: Decimal
    ttl_seconds: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ComputedResponse:
    """Result of a paid AI call, ready to be written through to the cache."""

    response_data: Any
    model_used: str
    tokens_used: int = 0
    cost_usd: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Validate response constraints."""
        if not self.model_used:
            raise ValueError("model_used cannot be empty")
        if self.tokens_used < 0:
            raise ValueError(f"Tokens used cannot be negative: {self.tokens_used}")
        if self.cost_usd < 0:
            raise ValueError(f"Cost cannot be negative: {self.cost_usd}")


@dataclass(frozen=True)
class CacheStats:
    """Live cache entries for a tenant and the cost they represent."""

    tenant_id: UUID
    live_entries: int
    tokens_saved: int
    cost_saved_usd: Decimal


@dataclass(frozen=True)
class InviteData:
    """Immutable invite snapshot."""

    invite_id: UUID
    tenant_id: UUID
    email: str
    role: MembershipRole
    token: str
    invited_by: str
    expires_at: datetime
    used_at: datetime | None
    redeemed_by: str | None
    created_at: datetime

    def status_at(self, now: datetime) -> InviteStatus:
        """Derive status; redeemed wins over expired."""
        if self.used_at is not None:
            return InviteStatus.REDEEMED
        if now > self.expires_at:
            return InviteStatus.EXPIRED
        return InviteStatus.PENDING


@dataclass(frozen=True)
class BillingEventData:
    """Immutable billing event snapshot."""

    external_event_id: str
    event_type: str
    processed: bool
    processing_error: str | None
    created_at: datetime
    processed_at: datetime | None


@dataclass(frozen=True)
class SweepResult:
    """Row counts removed by a maintenance sweep."""

    cache_entries: int
    invites: int
