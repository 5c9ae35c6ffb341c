"""
FastAPI Dependencies - Service authentication and tenant authorization.

NO DICTIONARIES - All dependencies return typed objects.

Callers are trusted upstream services (web app, mobile BFF, billing webhook
relay). They authenticate with the shared X-API-Key and name the end user
they act for in X-Caller-ID.
"""

import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.config import settings
from governance.db.session import get_write_db
from governance.models.api import MembershipRole
from governance.services.authorization import AuthorizationService

logger = get_logger(__name__)


@dataclass(frozen=True)
class TenantCaller:
    """Caller authorized for a tenant at a given role."""

    tenant_id: UUID
    caller_id: str
    role: MembershipRole


async def verify_service_key(
    x_api_key: str | None = Header(None, description="Service API key"),
) -> None:
    """
    Validate X-API-Key against the configured service key.

    No key configured disables the check (local development).

    Raises:
        HTTPException 401 if the key is missing or wrong
    """
    if settings.api_key is None:
        return

    if x_api_key is None or not secrets.compare_digest(x_api_key, settings.api_key):
        logger.warning("service_key_rejected", key_present=x_api_key is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


async def get_caller_id(
    x_caller_id: str = Header(..., min_length=1, max_length=255, description="Acting user id"),
) -> str:
    """Return the end-user id the calling service acts for."""
    caller_id = x_caller_id.strip()
    if not caller_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Caller-ID cannot be blank",
        )
    return caller_id


def require_tenant_role(
    required_role: MembershipRole,
) -> Callable[..., Awaitable[TenantCaller]]:
    """
    FastAPI dependency factory authorizing the caller for the path's tenant.

    Usage:
        @router.patch("/v1/tenants/{tenant_id}/settings")
        async def update_settings(
            caller: TenantCaller = Depends(require_tenant_role(MembershipRole.OWNER)),
        ):
            pass

    Raises:
        UnauthorizedError: mapped to 403 by the application error handlers
    """

    async def role_checker(
        tenant_id: UUID,
        caller_id: str = Depends(get_caller_id),
        db: AsyncSession = Depends(get_write_db),
    ) -> TenantCaller:
        decision = await AuthorizationService(db).require(caller_id, tenant_id, required_role)
        return TenantCaller(
            tenant_id=tenant_id,
            caller_id=caller_id,
            role=decision.role or required_role,
        )

    return role_checker
