import re
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler
from microlend.api import deps
from microlend.core.errors import ConflictError, InvalidTransition, NotFoundError, ServiceError
from microlend.models.invoice import Invoice
from microlend.models.plan import Plan
from microlend.models.tenant import Tenant, TenantFeatureFlag
from microlend.schemas.tenants import InvoiceCreate, TenantStatus
from microlend.services import billing, tenants

CTX = deps.TenantContext(tenant_id="acme")


def _invoice(status: str = "open") -> Invoice:
    return Invoice(
        id=uuid4(),
        tenant_id="acme",
        number="INV-202602-ABC123",
        amount=Decimal("29.00"),
        currency="USD",
        period_start=date(2026, 2, 1),
        period_end=date(2026, 2, 28),
        status=status,
    )


@pytest.mark.parametrize(
    ("period", "bounds"),
    [
        ("2026-02", (date(2026, 2, 1), date(2026, 2, 28))),
        ("2028-02", (date(2028, 2, 1), date(2028, 2, 29))),
        ("2026-12", (date(2026, 12, 1), date(2026, 12, 31))),
    ],
)
def test_period_bounds(period, bounds) -> None:
    assert billing.period_bounds(period) == bounds


def test_invoice_number_format() -> None:
    assert re.fullmatch(r"INV-202603-[0-9A-F]{6}", billing.invoice_number(date(2026, 3, 1)))


@pytest.mark.asyncio
async def test_issue_invoice_bills_plan_price() -> None:
    plan = Plan(id=uuid4(), code="pro", name="Pro", currency="USD", price_monthly=Decimal("29.00"))
    tenant = Tenant(id="acme", name="Acme", status="active", plan_id=plan.id)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))
        .on_execute(entity_handler(Plan, FakeResult(scalar=plan)))
    )

    invoice = await billing.issue_invoice(db, CTX, InvoiceCreate(period="2026-03"), actor_id=uuid4())

    assert invoice.amount == Decimal("29.00")
    assert invoice.period_start == date(2026, 3, 1)
    assert invoice.period_end == date(2026, 3, 31)
    assert invoice.status == "open"
    assert invoice.number.startswith("INV-202603-")


@pytest.mark.asyncio
async def test_issue_invoice_refuses_duplicates() -> None:
    plan = Plan(id=uuid4(), code="pro", name="Pro", currency="USD", price_monthly=Decimal("29.00"))
    tenant = Tenant(id="acme", name="Acme", status="active", plan_id=plan.id)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))
        .on_execute(entity_handler(Plan, FakeResult(scalar=plan)))
        .on_execute(entity_handler(Invoice, FakeResult(scalar=uuid4())))
    )

    with pytest.raises(ConflictError) as exc:
        await billing.issue_invoice(db, CTX, InvoiceCreate(period="2026-03"), actor_id=uuid4())
    assert exc.value.code == "invoice_exists"


@pytest.mark.asyncio
async def test_issue_invoice_needs_plan() -> None:
    tenant = Tenant(id="acme", name="Acme", status="active", plan_id=None)
    db = FakeAsyncSession().on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))

    with pytest.raises(ServiceError) as exc:
        await billing.issue_invoice(db, CTX, InvoiceCreate(period="2026-03"), actor_id=uuid4())
    assert exc.value.code == "no_plan"


@pytest.mark.asyncio
async def test_paying_last_open_invoice_reactivates_tenant() -> None:
    invoice = _invoice()
    tenant = Tenant(id="acme", name="Acme", status="suspended")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Invoice, FakeResult(scalar=invoice)))
        .on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))
        .on_execute_return(FakeResult(scalar=0))
    )

    await billing.pay_invoice(db, CTX, invoice.id, actor_id=uuid4())

    assert invoice.status == "paid"
    assert invoice.paid_at is not None
    assert tenant.status == "active"
    assert [log.action for log in db.added] == ["invoice.paid", "tenant.activated"]


@pytest.mark.asyncio
async def test_tenant_stays_suspended_while_invoices_are_open() -> None:
    invoice = _invoice()
    tenant = Tenant(id="acme", name="Acme", status="suspended")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Invoice, FakeResult(scalar=invoice)))
        .on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))
        .on_execute_return(FakeResult(scalar=1))
    )

    await billing.pay_invoice(db, CTX, invoice.id, actor_id=uuid4())

    assert tenant.status == "suspended"


@pytest.mark.asyncio
async def test_void_invoice_only_when_open() -> None:
    invoice = _invoice(status="paid")
    db = FakeAsyncSession().on_execute(entity_handler(Invoice, FakeResult(scalar=invoice)))

    with pytest.raises(InvalidTransition):
        await billing.void_invoice(db, CTX, invoice.id, actor_id=uuid4())


@pytest.mark.asyncio
async def test_suspending_twice_is_rejected() -> None:
    tenant = Tenant(id="acme", name="Acme", status="suspended")
    db = FakeAsyncSession().on_execute(entity_handler(Tenant, FakeResult(scalar=tenant)))

    with pytest.raises(InvalidTransition):
        await tenants.set_status(db, CTX, TenantStatus.SUSPENDED, actor_id=uuid4())


@pytest.mark.asyncio
async def test_change_plan_to_unknown_code() -> None:
    with pytest.raises(NotFoundError) as exc:
        await tenants.change_plan(FakeAsyncSession(), CTX, "platinum", actor_id=uuid4())
    assert exc.value.code == "plan_not_found"


@pytest.mark.asyncio
async def test_feature_flag_created_then_toggled() -> None:
    db = FakeAsyncSession()
    flag = await tenants.set_feature_flag(db, CTX, "payroll", True, actor_id=uuid4())
    assert isinstance(flag, TenantFeatureFlag)
    assert flag.enabled is True

    db = FakeAsyncSession().on_execute(entity_handler(TenantFeatureFlag, FakeResult(scalar=flag)))
    await tenants.set_feature_flag(db, CTX, "payroll", False, actor_id=uuid4())
    assert flag.enabled is False
    assert db.added[0].old_value == {"key": "payroll", "enabled": True}


@pytest.mark.asyncio
async def test_unknown_feature_flag() -> None:
    with pytest.raises(ServiceError) as exc:
        await tenants.set_feature_flag(FakeAsyncSession(), CTX, "crypto", True, actor_id=uuid4())
    assert exc.value.code == "unknown_feature"
    assert "payroll" in exc.value.details["allowed"]
