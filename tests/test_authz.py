from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, make_user
from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.models.role import Role
from microlend.services import authz

CTX = deps.TenantContext(tenant_id="default")


def test_admin_role_has_every_permission() -> None:
    assert set(authz.SYSTEM_ROLE_DEFINITIONS["ADMIN"]["permissions"]) == set(PermissionCode.list_all())


def test_director_can_approve_but_not_disburse() -> None:
    permissions = authz.SYSTEM_ROLE_DEFINITIONS["DIRECTOR"]["permissions"]
    assert PermissionCode.LOAN_APPROVE.value in permissions
    assert PermissionCode.LOAN_DISBURSE.value not in permissions


def test_system_role_permissions_are_valid_codes() -> None:
    valid = set(PermissionCode.list_all())
    for definition in authz.SYSTEM_ROLE_DEFINITIONS.values():
        assert set(definition["permissions"]) <= valid


def test_field_and_back_office_roles_split_operations() -> None:
    roles = authz.SYSTEM_ROLE_DEFINITIONS
    assert PermissionCode.COLLECTION_MANAGE.value in roles["LOAN_OFFICER"]["permissions"]
    assert PermissionCode.EXPENSE_MANAGE.value not in roles["LOAN_OFFICER"]["permissions"]
    assert PermissionCode.EXPENSE_MANAGE.value in roles["ACCOUNTANT"]["permissions"]
    assert PermissionCode.EXPENSE_VIEW.value in roles["DIRECTOR"]["permissions"]


@pytest.mark.asyncio
async def test_superuser_passes_without_lookup() -> None:
    db = FakeAsyncSession()
    user = make_user(is_superuser=True)

    assert await authz.check_permission(user, CTX, PermissionCode.PAYROLL_MANAGE, db) is True


@pytest.mark.asyncio
async def test_permission_comes_from_roles() -> None:
    db = FakeAsyncSession().on_execute_return(
        FakeResult(rows=[(["loan.view", "loan.create"],), (["repayment.create", "not.a.code"],)])
    )
    user = make_user()

    assert await authz.check_permission(user, CTX, "repayment.create", db) is True
    assert await authz.check_permission(user, CTX, PermissionCode.LOAN_APPROVE, db) is False
    assert await authz.effective_permissions(db, user, "default") == [
        "loan.create",
        "loan.view",
        "repayment.create",
    ]


@pytest.mark.asyncio
async def test_seed_system_roles_updates_existing() -> None:
    stale = Role(
        id=uuid4(),
        tenant_id="default",
        name="DIRECTOR",
        description="old",
        is_system_role=True,
        permissions=["loan.view"],
    )
    db = FakeAsyncSession().on_execute_return(FakeResult(items=[stale]))

    roles = await authz.seed_system_roles(db, "default")

    assert roles["DIRECTOR"] is stale
    assert PermissionCode.LOAN_APPROVE.value in stale.permissions
    assert stale not in db.added
    assert {role.name for role in db.added} == set(authz.SYSTEM_ROLE_DEFINITIONS) - {"DIRECTOR"}
