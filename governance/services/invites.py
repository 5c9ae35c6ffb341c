"""
Invite Service - Time-bounded, single-use invitations into a tenant.

NO DICTIONARIES - All operations return strongly typed domain models.

Status is pending until redeemed (used_at set) and is derived as expired
once now > expires_at. Redemption locks the invite row, so two concurrent
redemptions of one token create at most one membership.
"""

import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.config import settings
from governance.db.models import Invite, Membership, Tenant
from governance.exceptions import (
    InviteAlreadyUsedError,
    InviteExpiredError,
    InviteNotFoundError,
    MembershipConflictError,
    TenantNotFoundError,
)
from governance.models.api import MembershipRole, MembershipStatus, TenantStatus
from governance.models.domain import InviteData, MembershipData
from governance.observability.metrics import metrics
from governance.services.authorization import AuthorizationService
from governance.services.tenants import membership_to_domain

logger = get_logger(__name__)

TOKEN_BYTES = 32


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def invite_to_domain(invite: Invite) -> InviteData:
    """Convert ORM invite to domain model."""
    return InviteData(
        invite_id=invite.id,
        tenant_id=invite.tenant_id,
        email=invite.email,
        role=MembershipRole(invite.role),
        token=invite.token,
        invited_by=invite.invited_by,
        expires_at=invite.expires_at,
        used_at=invite.used_at,
        redeemed_by=invite.redeemed_by,
        created_at=invite.created_at,
    )


class InviteService:
    """
    Invite lifecycle.

    Usage:
        invites = InviteService(session)
        invite = await invites.create_invite(tenant_id, "cook@example.com",
                                             MembershipRole.EDITOR, owner_id)
        membership = await invites.redeem_invite(invite.token, new_user_id)
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

    async def create_invite(
        self, tenant_id: UUID, email: str, role: MembershipRole, issuer_id: str
    ) -> InviteData:
        """
        Issue an invite. Only owners may invite, and never into the owner role.

        Raises:
            ValueError: Role is owner or email is empty
            UnauthorizedError: Issuer is not an active owner
        """
        if role == MembershipRole.OWNER:
            raise ValueError("Invites cannot grant the owner role")
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise ValueError("email cannot be empty")

        await self.authorizer.require(issuer_id, tenant_id, MembershipRole.OWNER)

        now = self._clock()
        invite = Invite(
            id=uuid4(),
            tenant_id=tenant_id,
            email=normalized_email,
            role=role.value,
            token=secrets.token_urlsafe(TOKEN_BYTES),
            invited_by=issuer_id,
            expires_at=now + timedelta(days=settings.invite_ttl_days),
            used_at=None,
            redeemed_by=None,
            created_at=now,
        )
        self.session.add(invite)
        await self.session.flush()
        await self.session.commit()

        metrics.record_invite("create", "created")
        logger.info(
            "invite_created",
            tenant_id=str(tenant_id),
            invite_id=str(invite.id),
            role=role.value,
            invited_by=issuer_id,
        )
        return invite_to_domain(invite)

    async def redeem_invite(self, token: str, user_id: str) -> MembershipData:
        """
        Convert a pending invite into a membership for user_id.

        Raises:
            InviteNotFoundError: Unknown token
            InviteAlreadyUsedError: Invite already redeemed
            InviteExpiredError: now > expires_at
            TenantNotFoundError: Tenant deleted since the invite was issued
            MembershipConflictError: user_id already belongs to the tenant
        """
        if not user_id:
            raise ValueError("user_id cannot be empty")

        invite = await self._lock_invite(token)
        if invite is None:
            metrics.record_invite("redeem", "not_found")
            raise InviteNotFoundError()

        try:
            now = self._clock()
            if invite.used_at is not None:
                metrics.record_invite("redeem", "already_used")
                raise InviteAlreadyUsedError(invite.id, invite.used_at)
            if now > invite.expires_at:
                metrics.record_invite("redeem", "expired")
                raise InviteExpiredError(invite.id, invite.expires_at)

            tenant = await self.session.get(Tenant, invite.tenant_id)
            if tenant is None or tenant.status == TenantStatus.DELETED.value:
                raise TenantNotFoundError(invite.tenant_id)

            if await self._find_membership(invite.tenant_id, user_id) is not None:
                metrics.record_invite("redeem", "conflict")
                raise MembershipConflictError(invite.tenant_id, user_id)

        except (
            InviteAlreadyUsedError,
            InviteExpiredError,
            TenantNotFoundError,
            MembershipConflictError,
        ):
            # Release the row lock before surfacing the error
            await self.session.rollback()
            raise

        membership = Membership(
            id=uuid4(),
            tenant_id=invite.tenant_id,
            user_id=user_id,
            role=invite.role,
            status=MembershipStatus.ACTIVE.value,
            invited_by=invite.invited_by,
            joined_at=now,
            updated_at=now,
        )
        self.session.add(membership)
        invite.used_at = now
        invite.redeemed_by = user_id

        try:
            await self.session.flush()
        except IntegrityError:
            # Membership created concurrently by another path
            await self.session.rollback()
            metrics.record_invite("redeem", "conflict")
            raise MembershipConflictError(invite.tenant_id, user_id)

        await self.session.commit()

        metrics.record_invite("redeem", "redeemed")
        logger.info(
            "invite_redeemed",
            tenant_id=str(invite.tenant_id),
            invite_id=str(invite.id),
            user_id=user_id,
            role=invite.role,
        )
        return membership_to_domain(membership)

    async def list_invites(self, tenant_id: UUID) -> list[InviteData]:
        """All invites of a tenant, newest first."""
        stmt = (
            select(Invite).where(Invite.tenant_id == tenant_id).order_by(Invite.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [invite_to_domain(i) for i in result.scalars().all()]

    async def purge_stale_invites(self) -> int:
        """Delete expired-unused and redeemed invites. Returns the number removed."""
        now = self._clock()
        result = await self.session.execute(
            delete(Invite).where(or_(Invite.used_at.isnot(None), Invite.expires_at < now))
        )
        await self.session.commit()

        removed = result.rowcount or 0
        logger.info("invites_purged", removed=removed)
        return removed

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_invite(self, token: str) -> Invite | None:
        """Lock invite row for update (SELECT FOR UPDATE)."""
        stmt = select(Invite).where(Invite.token == token).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_membership(self, tenant_id: UUID, user_id: str) -> Membership | None:
        stmt = select(Membership).where(
            Membership.tenant_id == tenant_id,
            Membership.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
