"""
Tests for TenantService.

Unit tests for tenant lifecycle and membership management.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from governance.db.models import Membership, Tenant
from governance.exceptions import (
    LastOwnerError,
    MembershipConflictError,
    ResourceNotFoundError,
    TenantNotFoundError,
    WriteVerificationError,
)
from governance.models.api import MembershipRole, MembershipStatus, PlanTier, TenantStatus
from governance.services.tenants import DEFAULT_TENANT_NAME, TenantService
from tests.factories import create_mock_membership, create_mock_tenant, make_result


class TestCreateTenant:
    """Tests for tenant creation."""

    async def test_creates_tenant_and_owner_membership(self, db_session: AsyncMock):
        added: list = []
        db_session.add = MagicMock(side_effect=added.append)

        async def get(model, ident):
            return next(row for row in added if row.id == ident)

        db_session.get = AsyncMock(side_effect=get)

        tenant = await TenantService(db_session).create_tenant(
            "user-owner", "  Rivera Family Meals ", settings={"diet": "vegetarian"}
        )

        assert tenant.name == "Rivera Family Meals"
        assert tenant.plan == PlanTier.FREE
        assert tenant.status == TenantStatus.ACTIVE
        assert tenant.settings == {"diet": "vegetarian"}

        tenant_row, owner_row = added
        assert isinstance(tenant_row, Tenant)
        assert isinstance(owner_row, Membership)
        assert owner_row.tenant_id == tenant_row.id
        assert owner_row.user_id == "user-owner"
        assert owner_row.role == MembershipRole.OWNER.value
        assert owner_row.status == MembershipStatus.ACTIVE.value
        db_session.commit.assert_awaited_once()

    async def test_verification_failure_does_not_commit(self, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=None)

        with pytest.raises(WriteVerificationError):
            await TenantService(db_session).create_tenant("user-owner", "Kitchen")

        db_session.commit.assert_not_called()

    @pytest.mark.parametrize("owner, name", [("", "Kitchen"), ("user-owner", "   ")])
    async def test_rejects_empty_owner_or_name(self, db_session: AsyncMock, owner, name):
        with pytest.raises(ValueError):
            await TenantService(db_session).create_tenant(owner, name)

        db_session.add.assert_not_called()


class TestProvisionForUser:
    """Tests for first-signup provisioning."""

    async def test_returns_existing_owned_tenant(self, db_session: AsyncMock):
        existing = create_mock_tenant()
        service = TenantService(db_session)

        with patch.object(
            service, "_find_owned_tenant", new_callable=AsyncMock, return_value=existing
        ):
            with patch.object(service, "create_tenant", new_callable=AsyncMock) as mock_create:
                tenant = await service.provision_for_user("user-owner")

        assert tenant.tenant_id == existing.id
        mock_create.assert_not_called()

    async def test_creates_default_tenant_on_first_signup(self, db_session: AsyncMock):
        service = TenantService(db_session)

        with patch.object(service, "_find_owned_tenant", new_callable=AsyncMock, return_value=None):
            with patch.object(service, "create_tenant", new_callable=AsyncMock) as mock_create:
                await service.provision_for_user("user-new")

        mock_create.assert_awaited_once_with("user-new", DEFAULT_TENANT_NAME)


class TestTenantUpdates:
    """Tests for plan, settings and status changes."""

    async def test_get_deleted_tenant_not_found(self, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=create_mock_tenant(status=TenantStatus.DELETED))

        with pytest.raises(TenantNotFoundError):
            await TenantService(db_session).get_tenant(uuid4())

    async def test_change_plan(self, db_session: AsyncMock, active_tenant: MagicMock):
        db_session.get = AsyncMock(return_value=active_tenant)

        tenant = await TenantService(db_session).change_plan(active_tenant.id, PlanTier.FAMILY)

        assert tenant.plan == PlanTier.FAMILY
        assert active_tenant.plan == "family"
        db_session.commit.assert_awaited_once()

    async def test_update_settings_merges_top_level_keys(self, db_session: AsyncMock):
        tenant_row = create_mock_tenant(settings={"diet": "vegan", "servings": 2})
        db_session.get = AsyncMock(return_value=tenant_row)

        tenant = await TenantService(db_session).update_settings(
            tenant_row.id, {"servings": 4, "cuisine": "thai"}
        )

        assert tenant.settings == {"diet": "vegan", "servings": 4, "cuisine": "thai"}

    async def test_delete_is_soft(self, db_session: AsyncMock, active_tenant: MagicMock):
        db_session.get = AsyncMock(return_value=active_tenant)

        tenant = await TenantService(db_session).delete_tenant(active_tenant.id)

        assert tenant.status == TenantStatus.DELETED
        db_session.delete.assert_not_called()

    async def test_deleted_tenant_cannot_be_revived(self, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=create_mock_tenant(status=TenantStatus.DELETED))

        with pytest.raises(TenantNotFoundError):
            await TenantService(db_session).set_status(uuid4(), TenantStatus.ACTIVE)


class TestMembers:
    """Tests for membership management."""

    async def test_add_member_conflict(self, db_session: AsyncMock, active_tenant: MagicMock):
        db_session.get = AsyncMock(return_value=active_tenant)
        db_session.flush = AsyncMock(side_effect=IntegrityError("insert", {}, Exception()))

        with pytest.raises(MembershipConflictError):
            await TenantService(db_session).add_member(
                active_tenant.id, "user-owner", MembershipRole.EDITOR
            )

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_called()

    async def test_add_member(self, db_session: AsyncMock, active_tenant: MagicMock):
        member = create_mock_membership(
            tenant_id=active_tenant.id, user_id="user-cook", role=MembershipRole.EDITOR
        )
        db_session.get = AsyncMock(side_effect=[active_tenant, member])

        membership = await TenantService(db_session).add_member(
            active_tenant.id, "user-cook", MembershipRole.EDITOR, invited_by="user-owner"
        )

        assert membership.user_id == "user-cook"
        assert membership.role == MembershipRole.EDITOR
        db_session.commit.assert_awaited_once()

    async def test_demoting_last_owner_rejected(
        self, db_session: AsyncMock, active_tenant: MagicMock, owner_membership: MagicMock
    ):
        db_session.get = AsyncMock(return_value=active_tenant)
        service = TenantService(db_session)

        with patch.object(
            service, "_find_membership", new_callable=AsyncMock, return_value=owner_membership
        ):
            with patch.object(service, "_count_active_owners", new_callable=AsyncMock, return_value=1):
                with pytest.raises(LastOwnerError):
                    await service.change_member_role(
                        active_tenant.id, "user-owner", MembershipRole.EDITOR
                    )

        assert owner_membership.role == MembershipRole.OWNER.value

    async def test_demoting_owner_allowed_with_second_owner(
        self, db_session: AsyncMock, active_tenant: MagicMock, owner_membership: MagicMock
    ):
        db_session.get = AsyncMock(return_value=active_tenant)
        service = TenantService(db_session)

        with patch.object(
            service, "_find_membership", new_callable=AsyncMock, return_value=owner_membership
        ):
            with patch.object(service, "_count_active_owners", new_callable=AsyncMock, return_value=2):
                membership = await service.change_member_role(
                    active_tenant.id, "user-owner", MembershipRole.VIEWER
                )

        assert membership.role == MembershipRole.VIEWER

    async def test_removing_last_owner_rejected(
        self, db_session: AsyncMock, active_tenant: MagicMock, owner_membership: MagicMock
    ):
        db_session.get = AsyncMock(return_value=active_tenant)
        service = TenantService(db_session)

        with patch.object(
            service, "_find_membership", new_callable=AsyncMock, return_value=owner_membership
        ):
            with patch.object(service, "_count_active_owners", new_callable=AsyncMock, return_value=1):
                with pytest.raises(LastOwnerError):
                    await service.remove_member(active_tenant.id, "user-owner")

        db_session.delete.assert_not_called()

    async def test_owner_count_locks_owner_rows(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=make_result(rows=[uuid4(), uuid4()]))

        count = await TenantService(db_session)._count_active_owners(uuid4())

        assert count == 2
        stmt = db_session.execute.await_args.args[0]
        assert "FOR UPDATE" in str(stmt.compile(dialect=postgresql.dialect()))

    async def test_remove_editor_skips_owner_count(
        self, db_session: AsyncMock, active_tenant: MagicMock
    ):
        editor = create_mock_membership(
            tenant_id=active_tenant.id, user_id="user-cook", role=MembershipRole.EDITOR
        )
        db_session.get = AsyncMock(return_value=active_tenant)
        service = TenantService(db_session)

        with patch.object(service, "_find_membership", new_callable=AsyncMock, return_value=editor):
            with patch.object(service, "_count_active_owners", new_callable=AsyncMock) as count:
                await service.remove_member(active_tenant.id, "user-cook")

        count.assert_not_called()
        db_session.delete.assert_awaited_once_with(editor)
        db_session.commit.assert_awaited_once()

    async def test_change_role_of_non_member(self, db_session: AsyncMock, active_tenant: MagicMock):
        db_session.get = AsyncMock(return_value=active_tenant)
        service = TenantService(db_session)

        with patch.object(service, "_find_membership", new_callable=AsyncMock, return_value=None):
            with pytest.raises(ResourceNotFoundError):
                await service.change_member_role(active_tenant.id, "ghost", MembershipRole.VIEWER)

    async def test_list_members(self, db_session: AsyncMock, active_tenant: MagicMock):
        members = [
            create_mock_membership(tenant_id=active_tenant.id),
            create_mock_membership(
                tenant_id=active_tenant.id, user_id="user-cook", role=MembershipRole.EDITOR
            ),
        ]
        db_session.get = AsyncMock(return_value=active_tenant)
        db_session.execute = AsyncMock(return_value=make_result(rows=members))

        result = await TenantService(db_session).list_members(active_tenant.id)

        assert [m.user_id for m in result] == ["user-owner", "user-cook"]
