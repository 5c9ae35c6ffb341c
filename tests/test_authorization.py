"""
Tests for AuthorizationService.

Covers the role table and every denial path. Denials must never raise from
authorize(); require() converts them to UnauthorizedError.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from governance.exceptions import UnauthorizedError
from governance.models.api import MembershipRole, MembershipStatus, TenantStatus
from governance.services.authorization import (
    ROLE_GRANTS,
    AuthorizationService,
    role_satisfies,
)
from tests.factories import create_mock_membership, create_mock_tenant


def _service(db_session: AsyncMock, tenant: MagicMock | None, membership: MagicMock | None):
    service = AuthorizationService(db_session)
    load_tenant = patch.object(
        service, "_load_tenant", new_callable=AsyncMock, return_value=tenant
    )
    load_membership = patch.object(
        service, "_load_membership", new_callable=AsyncMock, return_value=membership
    )
    return service, load_tenant, load_membership


class TestRoleTable:
    """Tests for role_satisfies()."""

    @pytest.mark.parametrize("required", list(MembershipRole))
    def test_owner_satisfies_everything(self, required: MembershipRole):
        assert role_satisfies(MembershipRole.OWNER, required) is True

    def test_editor_satisfies_viewer_but_not_owner(self):
        assert role_satisfies(MembershipRole.EDITOR, MembershipRole.VIEWER) is True
        assert role_satisfies(MembershipRole.EDITOR, MembershipRole.EDITOR) is True
        assert role_satisfies(MembershipRole.EDITOR, MembershipRole.OWNER) is False

    def test_viewer_satisfies_only_viewer(self):
        assert role_satisfies(MembershipRole.VIEWER, MembershipRole.VIEWER) is True
        assert role_satisfies(MembershipRole.VIEWER, MembershipRole.EDITOR) is False
        assert role_satisfies(MembershipRole.VIEWER, MembershipRole.ANALYST) is False

    def test_analyst_is_read_only(self):
        assert role_satisfies(MembershipRole.ANALYST, MembershipRole.ANALYST) is True
        assert role_satisfies(MembershipRole.ANALYST, MembershipRole.VIEWER) is True
        assert role_satisfies(MembershipRole.ANALYST, MembershipRole.EDITOR) is False

    def test_every_role_has_grants(self):
        assert set(ROLE_GRANTS) == set(MembershipRole)


class TestAuthorize:
    """Tests for authorize() decisions."""

    async def test_owner_allowed(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        membership = create_mock_membership(tenant_id=tenant.id)
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-owner", tenant.id, MembershipRole.OWNER)

        assert decision.allowed is True
        assert decision.reason is None
        assert decision.role == MembershipRole.OWNER

    async def test_viewer_denied_editor_action(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        membership = create_mock_membership(
            tenant_id=tenant.id, user_id="user-viewer", role=MembershipRole.VIEWER
        )
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-viewer", tenant.id, MembershipRole.EDITOR)

        assert decision.allowed is False
        assert decision.reason == "insufficient_role"
        assert decision.role == MembershipRole.VIEWER

    async def test_non_member_denied(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        service, load_tenant, load_membership = _service(db_session, tenant, None)

        with load_tenant, load_membership:
            decision = await service.authorize("stranger", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "not_a_member"

    async def test_unknown_tenant_denied(self, db_session: AsyncMock):
        service, load_tenant, load_membership = _service(db_session, None, None)

        with load_tenant, load_membership as mock_membership:
            decision = await service.authorize("user-owner", uuid4(), MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "tenant_not_found"
        mock_membership.assert_not_called()

    async def test_deleted_tenant_denied_even_for_owner(self, db_session: AsyncMock):
        tenant = create_mock_tenant(status=TenantStatus.DELETED)
        membership = create_mock_membership(tenant_id=tenant.id)
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-owner", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "tenant_deleted"

    async def test_suspended_tenant_still_readable(self, db_session: AsyncMock):
        """Suspension limits metered actions, not membership."""
        tenant = create_mock_tenant(status=TenantStatus.SUSPENDED)
        membership = create_mock_membership(tenant_id=tenant.id)
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-owner", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is True

    async def test_inactive_membership_denied(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        membership = create_mock_membership(
            tenant_id=tenant.id, status=MembershipStatus.SUSPENDED
        )
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-owner", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "membership_inactive"

    async def test_unrecognized_stored_role_denied(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        membership = create_mock_membership(tenant_id=tenant.id)
        membership.role = "superuser"
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.authorize("user-owner", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "unknown_role"

    @pytest.mark.parametrize("caller_id", ["", "   "])
    async def test_missing_caller_denied_without_queries(
        self, db_session: AsyncMock, caller_id: str
    ):
        service, load_tenant, load_membership = _service(db_session, None, None)

        with load_tenant as mock_tenant, load_membership:
            decision = await service.authorize(caller_id, uuid4(), MembershipRole.VIEWER)

        assert decision.allowed is False
        assert decision.reason == "missing_caller"
        mock_tenant.assert_not_called()

    async def test_authorize_has_no_side_effects(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        service, load_tenant, load_membership = _service(db_session, tenant, None)

        with load_tenant, load_membership:
            await service.authorize("stranger", tenant.id, MembershipRole.VIEWER)

        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()


class TestRequire:
    """Tests for require()."""

    async def test_require_returns_decision_when_allowed(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        membership = create_mock_membership(tenant_id=tenant.id, role=MembershipRole.EDITOR)
        service, load_tenant, load_membership = _service(db_session, tenant, membership)

        with load_tenant, load_membership:
            decision = await service.require("user-owner", tenant.id, MembershipRole.VIEWER)

        assert decision.allowed is True

    async def test_require_raises_with_reason(self, db_session: AsyncMock):
        tenant = create_mock_tenant()
        service, load_tenant, load_membership = _service(db_session, tenant, None)

        with load_tenant, load_membership:
            with pytest.raises(UnauthorizedError) as exc_info:
                await service.require("stranger", tenant.id, MembershipRole.VIEWER)

        assert exc_info.value.reason == "not_a_member"
        assert exc_info.value.tenant_id == tenant.id
        assert exc_info.value.caller_id == "stranger"

    async def test_lookups_go_through_session(self, db_session: AsyncMock):
        """Without patched helpers the service reads tenant and membership from the session."""
        tenant = create_mock_tenant()
        membership = create_mock_membership(tenant_id=tenant.id)
        db_session.get = AsyncMock(return_value=tenant)
        result = MagicMock()
        result.scalar_one_or_none = MagicMock(return_value=membership)
        db_session.execute = AsyncMock(return_value=result)

        decision = await AuthorizationService(db_session).authorize(
            "user-owner", tenant.id, MembershipRole.OWNER
        )

        assert decision.allowed is True
        db_session.get.assert_awaited_once()
        db_session.execute.assert_awaited_once()
