"""
API Routes - FastAPI endpoints for tenant governance.

NO DICTIONARIES - All requests/responses use Pydantic models.

Governance errors raised by services (unauthorized, quota exceeded, not
found, conflicts, expired invites) are mapped to HTTP responses by the
application error handlers in governance.main.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from governance.api.dependencies import (
    TenantCaller,
    get_caller_id,
    require_tenant_role,
    verify_service_key,
)
from governance.db.session import get_read_db, get_write_db
from governance.models.api import (
    AuthorizationResponse,
    BillingEventRequest,
    BillingEventResponse,
    CacheEntryResponse,
    CachePutRequest,
    CacheStatsResponse,
    ChangeRoleRequest,
    CreateInviteRequest,
    CreateTenantRequest,
    HealthResponse,
    InviteResponse,
    MembershipResponse,
    MembershipRole,
    QuotaCheckRequest,
    QuotaCheckResponse,
    RecordUsageRequest,
    TenantResponse,
    UpdateTenantSettingsRequest,
    UsageRecordResponse,
    UsageSummaryResponse,
)
from governance.models.domain import MembershipData, TenantData
from governance.services.authorization import AuthorizationService
from governance.services.billing_events import BillingEventLedger
from governance.services.cache import MAX_CACHE_KEY_LENGTH, ResponseCache
from governance.services.invites import InviteService
from governance.services.quota import QuotaService
from governance.services.tenants import TenantService
from governance.services.usage import UsageMeter

router = APIRouter(dependencies=[Depends(verify_service_key)])
health_router = APIRouter()


def _tenant_response(tenant: TenantData) -> TenantResponse:
    return TenantResponse(
        tenant_id=tenant.tenant_id,
        name=tenant.name,
        plan=tenant.plan,
        status=tenant.status,
        settings=tenant.settings,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )


def _membership_response(membership: MembershipData) -> MembershipResponse:
    return MembershipResponse(
        membership_id=membership.membership_id,
        tenant_id=membership.tenant_id,
        user_id=membership.user_id,
        role=membership.role,
        status=membership.status,
        joined_at=membership.joined_at,
    )


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


# =============================================================================
# Tenants & Memberships
# =============================================================================


@router.post(
    "/v1/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED
)
async def create_tenant(
    request: CreateTenantRequest,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> TenantResponse:
    """Create a tenant; the caller becomes its owner."""
    try:
        tenant = await TenantService(db).create_tenant(
            owner_user_id=caller_id,
            name=request.name,
            plan=request.plan,
            settings=request.settings,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _tenant_response(tenant)


@router.get("/v1/tenants/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> TenantResponse:
    """Tenant details. Requires viewer."""
    tenant = await TenantService(db).get_tenant(caller.tenant_id)
    return _tenant_response(tenant)


@router.patch("/v1/tenants/{tenant_id}/settings", response_model=TenantResponse)
async def update_tenant_settings(
    request: UpdateTenantSettingsRequest,
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.OWNER)),
    db: AsyncSession = Depends(get_write_db),
) -> TenantResponse:
    """Merge settings into the tenant. Requires owner."""
    tenant = await TenantService(db).update_settings(caller.tenant_id, request.settings)
    return _tenant_response(tenant)


@router.get("/v1/tenants/{tenant_id}/members", response_model=list[MembershipResponse])
async def list_members(
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> list[MembershipResponse]:
    """List memberships. Requires viewer."""
    members = await TenantService(db).list_members(caller.tenant_id)
    return [_membership_response(m) for m in members]


@router.patch(
    "/v1/tenants/{tenant_id}/members/{user_id}", response_model=MembershipResponse
)
async def change_member_role(
    user_id: str,
    request: ChangeRoleRequest,
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.OWNER)),
    db: AsyncSession = Depends(get_write_db),
) -> MembershipResponse:
    """Change a member's role. Requires owner."""
    membership = await TenantService(db).change_member_role(
        caller.tenant_id, user_id, request.role
    )
    return _membership_response(membership)


@router.delete(
    "/v1/tenants/{tenant_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_member(
    user_id: str,
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.OWNER)),
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """Remove a member. Requires owner."""
    await TenantService(db).remove_member(caller.tenant_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/v1/tenants/{tenant_id}/authorize", response_model=AuthorizationResponse)
async def authorize(
    tenant_id: UUID,
    role: MembershipRole = Query(MembershipRole.VIEWER),
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> AuthorizationResponse:
    """Authorization decision for the caller. A denial is a 200 with allowed=false."""
    decision = await AuthorizationService(db).authorize(caller_id, tenant_id, role)
    return AuthorizationResponse(allowed=decision.allowed, reason=decision.reason)


# =============================================================================
# Quota & Usage
# =============================================================================


@router.post("/v1/tenants/{tenant_id}/quota/check", response_model=QuotaCheckResponse)
async def check_quota(
    tenant_id: UUID,
    request: QuotaCheckRequest,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> QuotaCheckResponse:
    """
    Check whether the caller may perform an action now.

    A denial is a 200 with allowed=false and, for period ceilings, reset_at.
    """
    decision = await QuotaService(db).check_quota(tenant_id, caller_id, request.action)
    return QuotaCheckResponse(
        allowed=decision.allowed,
        action=decision.action,
        limit=decision.limit,
        used=decision.used,
        remaining=decision.remaining,
        reset_at=decision.reset_at,
        reason=decision.reason,
    )


@router.post(
    "/v1/tenants/{tenant_id}/usage",
    response_model=UsageRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_usage(
    tenant_id: UUID,
    request: RecordUsageRequest,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> UsageRecordResponse:
    """Append a usage record for the caller."""
    try:
        record = await UsageMeter(db).record_usage(
            tenant_id=tenant_id,
            user_id=caller_id,
            action=request.action,
            tokens_used=request.tokens_used,
            cost_usd=request.cost_usd,
            metadata=request.metadata,
            model_used=request.model_used,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc

    return UsageRecordResponse(
        usage_id=record.usage_id,
        tenant_id=record.tenant_id,
        user_id=record.user_id,
        action=record.action,
        tokens_used=record.tokens_used,
        cost_usd=record.cost_usd,
        created_at=record.created_at,
    )


@router.get("/v1/tenants/{tenant_id}/usage/summary", response_model=UsageSummaryResponse)
async def usage_summary(
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> UsageSummaryResponse:
    """Today's and this month's usage. Requires viewer."""
    state = await UsageMeter(db).summarize(caller.tenant_id)
    return UsageSummaryResponse(
        tenant_id=state.tenant_id,
        plan=state.plan,
        meals_today=state.meals_today,
        meals_month=state.meals_month,
        tokens_today=state.tokens_today,
        tokens_month=state.tokens_month,
        cost_today=state.cost_today,
        cost_month=state.cost_month,
        plan_quota=state.plan_quota,
        remaining_quota=state.remaining_quota,
    )


# =============================================================================
# Response Cache
# =============================================================================


@router.get("/v1/tenants/{tenant_id}/cache", response_model=CacheStatsResponse)
async def cache_stats(
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> CacheStatsResponse:
    """Live cache entries and the cost they save. Requires viewer."""
    stats = await ResponseCache(db).stats(caller.tenant_id)
    return CacheStatsResponse(
        tenant_id=stats.tenant_id,
        live_entries=stats.live_entries,
        tokens_saved=stats.tokens_saved,
        cost_saved_usd=stats.cost_saved_usd,
    )


@router.get("/v1/tenants/{tenant_id}/cache/{cache_key}", response_model=CacheEntryResponse)
async def cache_get(
    cache_key: str = Path(..., min_length=1, max_length=MAX_CACHE_KEY_LENGTH),
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> CacheEntryResponse:
    """Cache lookup. A miss is a 200 with hit=false."""
    entry = await ResponseCache(db).get(caller.tenant_id, cache_key)
    if entry is None:
        return CacheEntryResponse(hit=False, cache_key=cache_key)
    return CacheEntryResponse(
        hit=True,
        cache_key=entry.cache_key,
        response_data=entry.response_data,
        model_used=entry.model_used,
        tokens_used=entry.tokens_used,
        cost_usd=entry.cost_usd,
        expires_at=entry.expires_at,
    )


@router.put("/v1/tenants/{tenant_id}/cache/{cache_key}", response_model=CacheEntryResponse)
async def cache_put(
    request: CachePutRequest,
    cache_key: str = Path(..., min_length=1, max_length=MAX_CACHE_KEY_LENGTH),
    caller: TenantCaller = Depends(require_tenant_role(MembershipRole.VIEWER)),
    db: AsyncSession = Depends(get_write_db),
) -> CacheEntryResponse:
    """Store a response under the key, replacing any existing entry."""
    try:
        entry = await ResponseCache(db).put(
            caller.tenant_id,
            cache_key,
            request.response_data,
            request.model_used,
            tokens_used=request.tokens_used,
            cost_usd=request.cost_usd,
            ttl_seconds=request.ttl_seconds,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc

    return CacheEntryResponse(
        hit=True,
        cache_key=entry.cache_key,
        response_data=entry.response_data,
        model_used=entry.model_used,
        tokens_used=entry.tokens_used,
        cost_usd=entry.cost_usd,
        expires_at=entry.expires_at,
    )


# =============================================================================
# Invites
# =============================================================================


@router.post(
    "/v1/tenants/{tenant_id}/invites",
    response_model=InviteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invite(
    tenant_id: UUID,
    request: CreateInviteRequest,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> InviteResponse:
    """Issue an invite. Requires owner."""
    try:
        invite = await InviteService(db).create_invite(
            tenant_id, request.email, request.role, caller_id
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc

    return InviteResponse(
        invite_id=invite.invite_id,
        tenant_id=invite.tenant_id,
        email=invite.email,
        role=invite.role,
        token=invite.token,
        status=invite.status_at(datetime.now(UTC)),
        expires_at=invite.expires_at,
    )


@router.post(
    "/v1/invites/{token}/redeem",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_invite(
    token: str,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_write_db),
) -> MembershipResponse:
    """Redeem an invite token, joining the caller to the tenant."""
    membership = await InviteService(db).redeem_invite(token, caller_id)
    return _membership_response(membership)


# =============================================================================
# Billing Events
# =============================================================================


@router.post("/v1/billing/events", response_model=BillingEventResponse)
async def ingest_billing_event(
    request: BillingEventRequest,
    db: AsyncSession = Depends(get_write_db),
) -> BillingEventResponse:
    """
    Ingest a verified billing-provider event.

    Replays return outcome=duplicate with 200 so the relay stops retrying.
    """
    outcome = await BillingEventLedger(db).ingest(
        request.external_event_id, request.event_type, request.payload
    )
    return BillingEventResponse(external_event_id=request.external_event_id, outcome=outcome)


# =============================================================================
# Health
# =============================================================================


@health_router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
