"""
Usage Meter - Append-only metering of AI actions per tenant.

NO DICTIONARIES - All operations use strongly typed domain models.

Usage logs are never updated or deleted. Aggregates (QuotaState) are
recomputed from the log on every read over UTC calendar windows, so they
reset exactly at the day/month boundary.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.db.models import Tenant, UsageLog
from governance.exceptions import TenantNotFoundError, WriteVerificationError
from governance.models.api import ActionKind, MembershipRole, PlanTier, TenantStatus
from governance.models.domain import QuotaState, UsageIntent, UsageRecordData
from governance.observability.metrics import metrics
from governance.services.authorization import AuthorizationService
from governance.services.periods import QuotaPeriod
from governance.services.plans import rule_for

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class UsageTotals:
    """Raw aggregates over one month window, with the day window nested inside."""

    meals_today: int
    meals_month: int
    tokens_today: int
    tokens_month: int
    cost_today: Decimal
    cost_month: Decimal


class UsageMeter:
    """
    Usage metering with write verification.

    Usage:
        meter = UsageMeter(session)
        await meter.record_usage(tenant_id, user_id, "meal_generation", 1200, Decimal("0.0042"))
        state = await meter.summarize(tenant_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utc_now,
        authorizer: AuthorizationService | None = None,
    ) -> None:
        self.session = session
        self._clock = clock
        self.authorizer = authorizer or AuthorizationService(session)

    async def record_usage(
        self,
        tenant_id: UUID,
        user_id: str,
        action: str,
        tokens_used: int = 0,
        cost_usd: Decimal = Decimal("0"),
        metadata: dict[str, Any] | None = None,
        model_used: str | None = None,
    ) -> UsageRecordData:
        """
        Append one usage log row after authorizing the caller.

        Raises:
            ValueError: Negative tokens or cost, or empty action
            UnauthorizedError: Caller is not an active member
            WriteVerificationError: Row not readable after insert
        """
        intent = UsageIntent(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            tokens_used=tokens_used,
            cost_usd=Decimal(cost_usd),
            model_used=model_used,
            metadata=dict(metadata or {}),
        )

        await self.authorizer.require(user_id, tenant_id, MembershipRole.VIEWER)

        log = UsageLog(
            id=uuid4(),
            tenant_id=intent.tenant_id,
            user_id=intent.user_id,
            action=intent.action,
            tokens_used=intent.tokens_used,
            cost_usd=intent.cost_usd,
            model_used=intent.model_used,
            metadata_=intent.metadata,
            created_at=self._clock(),
        )
        self.session.add(log)
        await self.session.flush()

        verified = await self.session.get(UsageLog, log.id)
        if verified is None:
            metrics.db_write_verifications_total.labels(success="False").inc()
            raise WriteVerificationError(f"Usage log {log.id} not found after insert")
        metrics.db_write_verifications_total.labels(success="True").inc()

        await self.session.commit()

        metrics.record_usage(intent.action, intent.tokens_used, float(intent.cost_usd))
        logger.info(
            "usage_recorded",
            tenant_id=str(tenant_id),
            user_id=user_id,
            action=intent.action,
            tokens_used=intent.tokens_used,
            cost_usd=str(intent.cost_usd),
        )

        return UsageRecordData(
            usage_id=verified.id,
            tenant_id=verified.tenant_id,
            user_id=verified.user_id,
            action=verified.action,
            tokens_used=verified.tokens_used,
            cost_usd=verified.cost_usd,
            model_used=verified.model_used,
            created_at=verified.created_at,
        )

    async def count_actions(
        self, tenant_id: UUID, action: str, start: datetime, end: datetime
    ) -> int:
        """Count usage rows for action with start <= created_at < end."""
        stmt = select(func.count(UsageLog.id)).where(
            UsageLog.tenant_id == tenant_id,
            UsageLog.action == action,
            UsageLog.created_at >= start,
            UsageLog.created_at < end,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def summarize(self, tenant_id: UUID) -> QuotaState:
        """
        Aggregate today's and this month's usage for a tenant.

        Raises:
            TenantNotFoundError: Tenant doesn't exist or is deleted
        """
        tenant = await self._load_tenant(tenant_id)
        if tenant is None or tenant.status == TenantStatus.DELETED.value:
            raise TenantNotFoundError(tenant_id)

        plan = PlanTier(tenant.plan)
        now = self._clock()
        day_start, day_end = QuotaPeriod.DAY.window(now)
        month_start, month_end = QuotaPeriod.MONTH.window(now)

        totals = await self._aggregate(tenant_id, day_start, day_end, month_start, month_end)

        rule = rule_for(ActionKind.MEAL_GENERATION.value)
        plan_quota = rule.allowance(plan) if rule else None
        remaining = None if plan_quota is None else max(0, plan_quota - totals.meals_today)

        return QuotaState(
            tenant_id=tenant_id,
            plan=plan,
            meals_today=totals.meals_today,
            meals_month=totals.meals_month,
            tokens_today=totals.tokens_today,
            tokens_month=totals.tokens_month,
            cost_today=totals.cost_today,
            cost_month=totals.cost_month,
            plan_quota=plan_quota,
            remaining_quota=remaining,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_tenant(self, tenant_id: UUID) -> Tenant | None:
        return await self.session.get(Tenant, tenant_id)

    async def _aggregate(
        self,
        tenant_id: UUID,
        day_start: datetime,
        day_end: datetime,
        month_start: datetime,
        month_end: datetime,
    ) -> UsageTotals:
        in_day = and_(UsageLog.created_at >= day_start, UsageLog.created_at < day_end)
        is_meal = UsageLog.action == ActionKind.MEAL_GENERATION.value

        stmt = select(
            func.count(UsageLog.id).filter(and_(is_meal, in_day)),
            func.count(UsageLog.id).filter(is_meal),
            func.coalesce(func.sum(UsageLog.tokens_used).filter(in_day), 0),
            func.coalesce(func.sum(UsageLog.tokens_used), 0),
            func.coalesce(func.sum(UsageLog.cost_usd).filter(in_day), 0),
            func.coalesce(func.sum(UsageLog.cost_usd), 0),
        ).where(
            UsageLog.tenant_id == tenant_id,
            UsageLog.created_at >= month_start,
            UsageLog.created_at < month_end,
        )
        result = await self.session.execute(stmt)
        row = result.one()

        return UsageTotals(
            meals_today=int(row[0]),
            meals_month=int(row[1]),
            tokens_today=int(row[2]),
            tokens_month=int(row[3]),
            cost_today=Decimal(str(row[4])),
            cost_month=Decimal(str(row[5])),
        )
