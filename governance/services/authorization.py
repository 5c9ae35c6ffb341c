"""
Authorization Service - Tenant membership and role checks.

Every tenant-scoped operation passes through here first. Decisions are pure
reads with no side effects and fail closed: anything the service cannot
positively confirm is a denial.

Role ordering is owner > editor > viewer. analyst is a parallel read-only
role satisfying viewer and analyst requirements only.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.db.models import Membership, Tenant
from governance.exceptions import UnauthorizedError
from governance.models.api import MembershipRole, MembershipStatus, TenantStatus
from governance.models.domain import AuthorizationDecision
from governance.observability.metrics import metrics

logger = get_logger(__name__)


# Roles each held role satisfies
ROLE_GRANTS: dict[MembershipRole, frozenset[MembershipRole]] = {
    MembershipRole.OWNER: frozenset(MembershipRole),
    MembershipRole.EDITOR: frozenset({MembershipRole.EDITOR, MembershipRole.VIEWER}),
    MembershipRole.VIEWER: frozenset({MembershipRole.VIEWER}),
    MembershipRole.ANALYST: frozenset({MembershipRole.ANALYST, MembershipRole.VIEWER}),
}


def role_satisfies(held: MembershipRole, required: MembershipRole) -> bool:
    """Return True if a member holding `held` may act where `required` is needed."""
    return required in ROLE_GRANTS.get(held, frozenset())


class AuthorizationService:
    """
    Membership-based authorization for tenant-scoped operations.

    Usage:
        authz = AuthorizationService(session)
        decision = await authz.authorize(caller_id, tenant_id, MembershipRole.EDITOR)
        if not decision.allowed:
            ...
        # or raise on deny
        await authz.require(caller_id, tenant_id, MembershipRole.OWNER)
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def authorize(
        self, caller_id: str, tenant_id: UUID, required_role: MembershipRole
    ) -> AuthorizationDecision:
        """Decide whether caller may perform an operation needing required_role."""
        decision = await self._decide(caller_id, tenant_id, required_role)
        metrics.record_authorization(decision.allowed, decision.reason)
        if not decision.allowed:
            logger.info(
                "authorization_denied",
                tenant_id=str(tenant_id),
                caller_id=caller_id,
                required_role=required_role.value,
                reason=decision.reason,
            )
        return decision

    async def require(
        self, caller_id: str, tenant_id: UUID, required_role: MembershipRole
    ) -> AuthorizationDecision:
        """
        Authorize or raise.

        Raises:
            UnauthorizedError: Caller lacks membership or role
        """
        decision = await self.authorize(caller_id, tenant_id, required_role)
        if not decision.allowed:
            raise UnauthorizedError(
                reason=decision.reason or "denied", tenant_id=tenant_id, caller_id=caller_id
            )
        return decision

    async def _decide(
        self, caller_id: str, tenant_id: UUID, required_role: MembershipRole
    ) -> AuthorizationDecision:
        if not caller_id or not caller_id.strip():
            return AuthorizationDecision(allowed=False, reason="missing_caller")

        tenant = await self._load_tenant(tenant_id)
        if tenant is None:
            return AuthorizationDecision(allowed=False, reason="tenant_not_found")
        if tenant.status == TenantStatus.DELETED.value:
            return AuthorizationDecision(allowed=False, reason="tenant_deleted")

        membership = await self._load_membership(tenant_id, caller_id)
        if membership is None:
            return AuthorizationDecision(allowed=False, reason="not_a_member")
        if membership.status != MembershipStatus.ACTIVE.value:
            return AuthorizationDecision(allowed=False, reason="membership_inactive")

        try:
            held = MembershipRole(membership.role)
        except ValueError:
            logger.error(
                "unknown_membership_role",
                tenant_id=str(tenant_id),
                caller_id=caller_id,
                role=membership.role,
            )
            return AuthorizationDecision(allowed=False, reason="unknown_role")

        if not role_satisfies(held, required_role):
            return AuthorizationDecision(allowed=False, reason="insufficient_role", role=held)

        return AuthorizationDecision(allowed=True, role=held)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_tenant(self, tenant_id: UUID) -> Tenant | None:
        return await self.session.get(Tenant, tenant_id)

    async def _load_membership(self, tenant_id: UUID, user_id: str) -> Membership | None:
        stmt = select(Membership).where(
            Membership.tenant_id == tenant_id,
            Membership.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
