"""
Tenant Service - Tenants and their memberships.

NO DICTIONARIES - All operations return strongly typed domain models.

Invariants:
- A tenant and its first owner membership are created in one transaction.
- Tenants are never hard-deleted; 'deleted' is a terminal status.
- An active tenant always keeps at least one active owner.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.db.models import Membership, Tenant
from governance.exceptions import (
    LastOwnerError,
    MembershipConflictError,
    ResourceNotFoundError,
    TenantNotFoundError,
    WriteVerificationError,
)
from governance.models.api import MembershipRole, MembershipStatus, PlanTier, TenantStatus
from governance.models.domain import MembershipData, TenantData

logger = get_logger(__name__)

DEFAULT_TENANT_NAME = "My Meal Plans"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def tenant_to_domain(tenant: Tenant) -> TenantData:
    """Convert ORM tenant to domain model."""
    return TenantData(
        tenant_id=tenant.id,
        name=tenant.name,
        plan=PlanTier(tenant.plan),
        status=TenantStatus(tenant.status),
        settings=dict(tenant.settings or {}),
        stripe_customer_id=tenant.stripe_customer_id,
        stripe_subscription_id=tenant.stripe_subscription_id,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )


def membership_to_domain(membership: Membership) -> MembershipData:
    """Convert ORM membership to domain model."""
    return MembershipData(
        membership_id=membership.id,
        tenant_id=membership.tenant_id,
        user_id=membership.user_id,
        role=MembershipRole(membership.role),
        status=MembershipStatus(membership.status),
        invited_by=membership.invited_by,
        joined_at=membership.joined_at,
    )


class TenantService:
    """
    Tenant and membership management.

    Writes follow the verification pattern:
    1. Execute write
    2. Flush to database
    3. Read back and verify
    4. Commit
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Tenants
    # ========================================================================

    async def create_tenant(
        self,
        owner_user_id: str,
        name: str,
        plan: PlanTier = PlanTier.FREE,
        settings: dict[str, Any] | None = None,
    ) -> TenantData:
        """Create a tenant and make owner_user_id its owner."""
        if not owner_user_id:
            raise ValueError("owner_user_id cannot be empty")
        if not name or not name.strip():
            raise ValueError("Tenant name cannot be empty")

        now = _utc_now()
        tenant = Tenant(
            id=uuid4(),
            name=name.strip(),
            plan=plan.value,
            status=TenantStatus.ACTIVE.value,
            settings=dict(settings or {}),
            metadata_={},
            created_at=now,
            updated_at=now,
        )
        self.session.add(tenant)
        await self.session.flush()

        owner = Membership(
            id=uuid4(),
            tenant_id=tenant.id,
            user_id=owner_user_id,
            role=MembershipRole.OWNER.value,
            status=MembershipStatus.ACTIVE.value,
            joined_at=now,
            updated_at=now,
        )
        self.session.add(owner)
        await self.session.flush()

        verified_tenant = await self.session.get(Tenant, tenant.id)
        if verified_tenant is None:
            raise WriteVerificationError(f"Tenant {tenant.id} not found after insert")

        await self.session.commit()

        logger.info(
            "tenant_created",
            tenant_id=str(tenant.id),
            owner_user_id=owner_user_id,
            plan=plan.value,
        )
        return tenant_to_domain(verified_tenant)

    async def provision_for_user(
        self, user_id: str, tenant_name: str = DEFAULT_TENANT_NAME
    ) -> TenantData:
        """
        Return the tenant user_id owns, creating one on first signup.

        Idempotent per user: a second call returns the same tenant.
        """
        existing = await self._find_owned_tenant(user_id)
        if existing is not None:
            return tenant_to_domain(existing)
        return await self.create_tenant(user_id, tenant_name)

    async def get_tenant(self, tenant_id: UUID) -> TenantData:
        """
        Get tenant by id.

        Raises:
            TenantNotFoundError: Tenant doesn't exist or is deleted
        """
        return tenant_to_domain(await self._get_live_tenant(tenant_id))

    async def change_plan(self, tenant_id: UUID, plan: PlanTier) -> TenantData:
        """Move a tenant to a different plan. Takes effect on the next quota check."""
        tenant = await self._get_live_tenant(tenant_id)
        previous = tenant.plan
        tenant.plan = plan.value
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "tenant_plan_changed",
            tenant_id=str(tenant_id),
            previous_plan=previous,
            plan=plan.value,
        )
        return tenant_to_domain(tenant)

    async def update_settings(self, tenant_id: UUID, settings: dict[str, Any]) -> TenantData:
        """Merge settings into the tenant's settings blob; top-level keys are replaced."""
        tenant = await self._get_live_tenant(tenant_id)
        # Assign a new dict so the JSONB column is marked dirty
        tenant.settings = {**(tenant.settings or {}), **settings}
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "tenant_settings_updated", tenant_id=str(tenant_id), keys=sorted(settings.keys())
        )
        return tenant_to_domain(tenant)

    async def set_status(self, tenant_id: UUID, status: TenantStatus) -> TenantData:
        """Change tenant status. Deleted tenants cannot be revived."""
        tenant = await self._get_live_tenant(tenant_id)
        previous = tenant.status
        tenant.status = status.value
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "tenant_status_changed",
            tenant_id=str(tenant_id),
            previous_status=previous,
            status=status.value,
        )
        return tenant_to_domain(tenant)

    async def delete_tenant(self, tenant_id: UUID) -> TenantData:
        """Soft-delete a tenant. Its rows are retained; every later access is denied."""
        return await self.set_status(tenant_id, TenantStatus.DELETED)

    # ========================================================================
    # Memberships
    # ========================================================================

    async def list_members(self, tenant_id: UUID) -> list[MembershipData]:
        """List all memberships of a live tenant, oldest first."""
        await self._get_live_tenant(tenant_id)
        stmt = (
            select(Membership)
            .where(Membership.tenant_id == tenant_id)
            .order_by(Membership.joined_at)
        )
        result = await self.session.execute(stmt)
        return [membership_to_domain(m) for m in result.scalars().all()]

    async def add_member(
        self,
        tenant_id: UUID,
        user_id: str,
        role: MembershipRole,
        invited_by: str | None = None,
    ) -> MembershipData:
        """
        Add a user to a tenant.

        Raises:
            TenantNotFoundError: Tenant doesn't exist or is deleted
            MembershipConflictError: User already belongs to the tenant
        """
        await self._get_live_tenant(tenant_id)

        now = _utc_now()
        membership = Membership(
            id=uuid4(),
            tenant_id=tenant_id,
            user_id=user_id,
            role=role.value,
            status=MembershipStatus.ACTIVE.value,
            invited_by=invited_by,
            joined_at=now,
            updated_at=now,
        )
        self.session.add(membership)

        try:
            await self.session.flush()
        except IntegrityError:
            # Unique (tenant_id, user_id) - user already a member
            await self.session.rollback()
            raise MembershipConflictError(tenant_id, user_id)

        verified = await self.session.get(Membership, membership.id)
        if verified is None:
            raise WriteVerificationError(f"Membership {membership.id} not found after insert")

        await self.session.commit()

        logger.info(
            "member_added", tenant_id=str(tenant_id), user_id=user_id, role=role.value
        )
        return membership_to_domain(verified)

    async def change_member_role(
        self, tenant_id: UUID, user_id: str, role: MembershipRole
    ) -> MembershipData:
        """
        Change a member's role.

        Raises:
            ResourceNotFoundError: User is not a member
            LastOwnerError: Demoting the only active owner
        """
        await self._get_live_tenant(tenant_id)
        membership = await self._get_membership(tenant_id, user_id)

        if role != MembershipRole.OWNER and self._is_active_owner(membership):
            await self._ensure_other_owner(tenant_id)

        previous = membership.role
        membership.role = role.value
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "member_role_changed",
            tenant_id=str(tenant_id),
            user_id=user_id,
            previous_role=previous,
            role=role.value,
        )
        return membership_to_domain(membership)

    async def remove_member(self, tenant_id: UUID, user_id: str) -> None:
        """
        Remove a member from a tenant.

        Raises:
            ResourceNotFoundError: User is not a member
            LastOwnerError: Removing the only active owner
        """
        await self._get_live_tenant(tenant_id)
        membership = await self._get_membership(tenant_id, user_id)

        if self._is_active_owner(membership):
            await self._ensure_other_owner(tenant_id)

        await self.session.delete(membership)
        await self.session.flush()
        await self.session.commit()

        logger.info("member_removed", tenant_id=str(tenant_id), user_id=user_id)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_live_tenant(self, tenant_id: UUID) -> Tenant:
        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None or tenant.status == TenantStatus.DELETED.value:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def _get_membership(self, tenant_id: UUID, user_id: str) -> Membership:
        membership = await self._find_membership(tenant_id, user_id)
        if membership is None:
            raise ResourceNotFoundError("Membership", f"{tenant_id}/{user_id}")
        return membership

    async def _find_membership(self, tenant_id: UUID, user_id: str) -> Membership | None:
        stmt = select(Membership).where(
            Membership.tenant_id == tenant_id,
            Membership.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _count_active_owners(self, tenant_id: UUID) -> int:
        # Owner rows stay locked until commit; concurrent demotions recount
        stmt = (
            select(Membership.id)
            .where(
                Membership.tenant_id == tenant_id,
                Membership.role == MembershipRole.OWNER.value,
                Membership.status == MembershipStatus.ACTIVE.value,
            )
            .order_by(Membership.id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    async def _ensure_other_owner(self, tenant_id: UUID) -> None:
        if await self._count_active_owners(tenant_id) <= 1:
            raise LastOwnerError(tenant_id)

    async def _find_owned_tenant(self, user_id: str) -> Tenant | None:
        stmt = (
            select(Tenant)
            .join(Membership, Membership.tenant_id == Tenant.id)
            .where(
                Membership.user_id == user_id,
                Membership.role == MembershipRole.OWNER.value,
                Membership.status == MembershipStatus.ACTIVE.value,
                Tenant.status != TenantStatus.DELETED.value,
            )
            .order_by(Tenant.created_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _is_active_owner(membership: Membership) -> bool:
        return (
            membership.role == MembershipRole.OWNER.value
            and membership.status == MembershipStatus.ACTIVE.value
        )
