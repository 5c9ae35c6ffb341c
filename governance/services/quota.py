"""
Quota Service - Per-plan allowances checked before expensive AI calls.

NO DICTIONARIES - Decisions are strongly typed QuotaDecision values.

The check is advisory: it reads the usage count and compares it to the
plan ceiling without reserving a slot, so concurrent checks for the same
tenant can each be allowed and overshoot the ceiling by the number of
in-flight requests. Usage recorded afterwards is always counted.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.db.models import Tenant
from governance.exceptions import QuotaExceededError, TenantNotFoundError
from governance.models.api import MembershipRole, PlanTier, TenantStatus
from governance.models.domain import QuotaDecision
from governance.observability.metrics import metrics
from governance.observability.tracing import trace_operation
from governance.services.authorization import AuthorizationService
from governance.services.plans import rule_for
from governance.services.usage import UsageMeter

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class QuotaService:
    """
    Quota engine.

    Steps for a check:
    1. Authorize the caller as an active member of the tenant
    2. Resolve the action's rule; unmetered actions are always allowed
    3. Deny every metered action while the tenant is suspended
    4. Count usage in the current period and allow iff count < ceiling
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utc_now,
        authorizer: AuthorizationService | None = None,
        meter: UsageMeter | None = None,
    ) -> None:
        self.session = session
        self._clock = clock
        self.authorizer = authorizer or AuthorizationService(session)
        self.meter = meter or UsageMeter(session, clock=clock, authorizer=self.authorizer)

    async def check_quota(self, tenant_id: UUID, user_id: str, action: str) -> QuotaDecision:
        """
        Decide whether user_id may perform action for tenant_id now.

        Raises:
            UnauthorizedError: Caller is not an active member
        """
        started = time.perf_counter()
        with trace_operation("quota_check", tenant_id=tenant_id, action=action) as span:
            await self.authorizer.require(user_id, tenant_id, MembershipRole.VIEWER)
            tenant = await self._load_tenant(tenant_id)
            plan = PlanTier(tenant.plan)

            decision = await self._decide(tenant, plan, action)
            span.set_attribute("allowed", decision.allowed)

        metrics.record_quota_check(
            action, plan.value, decision.allowed, time.perf_counter() - started
        )
        if not decision.allowed:
            logger.info(
                "quota_denied",
                tenant_id=str(tenant_id),
                user_id=user_id,
                action=action,
                plan=plan.value,
                used=decision.used,
                limit=decision.limit,
                reason=decision.reason,
            )
        return decision

    async def enforce_quota(self, tenant_id: UUID, user_id: str, action: str) -> QuotaDecision:
        """
        Check quota and raise on denial.

        Raises:
            UnauthorizedError: Caller is not an active member
            QuotaExceededError: Ceiling reached or tenant suspended
        """
        decision = await self.check_quota(tenant_id, user_id, action)
        if not decision.allowed:
            raise QuotaExceededError(
                action=action,
                reset_at=decision.reset_at,
                limit=decision.limit,
                used=decision.used,
                reason=decision.reason or "quota_exceeded",
            )
        return decision

    async def _decide(self, tenant: Tenant, plan: PlanTier, action: str) -> QuotaDecision:
        rule = rule_for(action)
        if rule is None:
            return QuotaDecision(allowed=True, action=action)

        if tenant.status == TenantStatus.SUSPENDED.value:
            return QuotaDecision(allowed=False, action=action, reason="tenant_suspended")

        limit = rule.allowance(plan)
        if limit is None:
            return QuotaDecision(allowed=True, action=action)

        period_start, period_end = rule.period.window(self._clock())
        used = await self.meter.count_actions(tenant.id, action, period_start, period_end)

        if used < limit:
            return QuotaDecision(allowed=True, action=action, used=used, limit=limit)

        return QuotaDecision(
            allowed=False,
            action=action,
            used=used,
            limit=limit,
            reset_at=period_end,
            reason="quota_exceeded",
        )

    async def _load_tenant(self, tenant_id: UUID) -> Tenant:
        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant
