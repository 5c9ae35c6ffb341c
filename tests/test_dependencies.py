"""
Tests for API Dependencies.

Tests service-key authentication and tenant-role authorization dependencies.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException

from governance.api.dependencies import (
    TenantCaller,
    get_caller_id,
    require_tenant_role,
    verify_service_key,
)
from governance.exceptions import UnauthorizedError
from governance.models.api import MembershipRole
from governance.models.domain import AuthorizationDecision
from tests.factories import SERVICE_KEY


class TestVerifyServiceKey:
    """Tests for verify_service_key dependency."""

    async def test_valid_key(self):
        assert await verify_service_key(x_api_key=SERVICE_KEY) is None

    async def test_missing_key(self):
        with pytest.raises(HTTPException) as exc_info:
            await verify_service_key(x_api_key=None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "ApiKey"}

    async def test_wrong_key(self):
        with pytest.raises(HTTPException) as exc_info:
            await verify_service_key(x_api_key="not-the-key")

        assert exc_info.value.status_code == 401

    async def test_no_configured_key_disables_check(self):
        with patch("governance.api.dependencies.settings") as mock_settings:
            mock_settings.api_key = None
            assert await verify_service_key(x_api_key=None) is None


class TestGetCallerId:
    """Tests for get_caller_id dependency."""

    async def test_strips_whitespace(self):
        assert await get_caller_id(x_caller_id="  user-42 ") == "user-42"

    async def test_blank_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_caller_id(x_caller_id="   ")

        assert exc_info.value.status_code == 400


class TestRequireTenantRole:
    """Tests for require_tenant_role factory."""

    async def test_returns_caller_with_held_role(self, db_session):
        tenant_id = uuid4()
        checker = require_tenant_role(MembershipRole.VIEWER)

        with patch("governance.api.dependencies.AuthorizationService") as service_cls:
            service_cls.return_value.require = AsyncMock(
                return_value=AuthorizationDecision(allowed=True, role=MembershipRole.EDITOR)
            )
            caller = await checker(tenant_id=tenant_id, caller_id="user-1", db=db_session)

        assert caller == TenantCaller(
            tenant_id=tenant_id, caller_id="user-1", role=MembershipRole.EDITOR
        )
        service_cls.return_value.require.assert_awaited_once_with(
            "user-1", tenant_id, MembershipRole.VIEWER
        )

    async def test_denial_propagates(self, db_session):
        checker = require_tenant_role(MembershipRole.OWNER)

        with patch("governance.api.dependencies.AuthorizationService") as service_cls:
            service_cls.return_value.require = AsyncMock(
                side_effect=UnauthorizedError("insufficient_role")
            )
            with pytest.raises(UnauthorizedError):
                await checker(tenant_id=uuid4(), caller_id="user-1", db=db_session)
