from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler
from microlend.core.errors import NotFoundError, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.plan import Entitlement, Plan
from microlend.models.tenant import Tenant, TenantFeatureFlag
from microlend.services import entitlements


def test_flags_override_plan_keys() -> None:
    keys = entitlements.effective_entitlements(
        ["loans", "savings", "reports"], {"payroll": True, "savings": False}
    )
    assert keys == {"loans", "reports", "payroll"}


@pytest.mark.parametrize(
    ("limits", "count", "reached"),
    [
        ({"borrowers": 10}, 9, False),
        ({"borrowers": 10}, 10, True),
        ({"borrowers": None}, 10_000, False),
        ({}, 10_000, False),
    ],
)
def test_limit_reached(limits, count, reached) -> None:
    assert entitlements.limit_reached(limits, "borrowers", count) is reached


def test_basic_plan_excludes_payroll() -> None:
    assert "payroll" not in entitlements.PLAN_DEFINITIONS["basic"]["entitlements"]
    assert "payroll" in entitlements.PLAN_DEFINITIONS["pro"]["entitlements"]


def _tenant_db(tenant: Tenant, plan: Plan | None, keys: list[str], flags: list[tuple[str, bool]]):
    return (
        FakeAsyncSession()
        .on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))
        .on_execute(entity_handler(Plan, FakeResult(scalar=plan)))
        .on_execute(entity_handler(Entitlement, FakeResult(rows=[(key,) for key in keys])))
        .on_execute(entity_handler(TenantFeatureFlag, FakeResult(rows=flags)))
    )


@pytest.mark.asyncio
async def test_resolve_tenant_state_applies_flags() -> None:
    plan = Plan(id=uuid4(), code="basic", name="Basic", limits={"borrowers": 1000})
    tenant = Tenant(id="acme", name="Acme", status="active", plan_id=plan.id)
    db = _tenant_db(tenant, plan, ["loans", "savings"], [("payroll", True), ("savings", False)])

    state = await entitlements.resolve_tenant_state(db, "acme")

    assert state.plan_entitlements == {"loans", "savings"}
    assert state.entitlements == {"loans", "payroll"}
    assert state.limits == {"borrowers": 1000}
    assert state.suspended is False


@pytest.mark.asyncio
async def test_suspended_tenant_without_plan() -> None:
    tenant = Tenant(id="acme", name="Acme", status="suspended", plan_id=None)
    db = _tenant_db(tenant, None, [], [])

    state = await entitlements.resolve_tenant_state(db, "acme")

    assert state.suspended is True
    assert state.plan is None
    assert state.limits == {}
    assert state.entitlements == set()


@pytest.mark.asyncio
async def test_unknown_tenant() -> None:
    with pytest.raises(NotFoundError) as exc:
        await entitlements.resolve_tenant_state(FakeAsyncSession(), "ghost")
    assert exc.value.code == "tenant_not_found"


@pytest.mark.asyncio
async def test_limit_is_enforced_on_create(monkeypatch) -> None:
    plan = Plan(id=uuid4(), code="basic", name="Basic", limits={"borrowers": 2})
    tenant = Tenant(id="acme", name="Acme", status="active", plan_id=plan.id)
    db = _tenant_db(tenant, plan, ["loans"], []).on_execute_return(FakeResult(scalar=2))

    with pytest.raises(ServiceError) as exc:
        await entitlements.ensure_within_limit(db, "acme", "borrowers", Borrower)

    assert exc.value.code == "plan_limit_reached"
    assert exc.value.details == {"resource": "borrowers", "limit": 2, "current": 2}
