from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import ConflictError, InvalidTransition, NotFoundError, ServiceError
from microlend.models.employee import Employee
from microlend.models.payroll_item import PayrollItem
from microlend.models.payrun import Payrun, Payslip
from microlend.schemas.payroll import (
    EmployeeCreate,
    EmployeeUpdate,
    PayrollItemCreate,
    PayrollItemKind,
    PayrunCreate,
    PayrunStatus,
)
from microlend.services import ledger
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# bank_account is encrypted at rest and kept out of audit snapshots
_AUDIT_EXCLUDE = ("bank_account",)

# payslip column fed by each item kind
KIND_COLUMNS = {
    PayrollItemKind.ALLOWANCE.value: "allowances",
    PayrollItemKind.OVERTIME.value: "overtime",
    PayrollItemKind.DEDUCTION.value: "deductions",
    PayrollItemKind.ADVANCE.value: "advances",
    PayrollItemKind.SAVINGS.value: "savings",
    PayrollItemKind.LOAN.value: "loans",
}


@dataclass(slots=True)
class PayslipFigures:
    base: Decimal = ZERO
    allowances: Decimal = ZERO
    overtime: Decimal = ZERO
    deductions: Decimal = ZERO
    advances: Decimal = ZERO
    savings: Decimal = ZERO
    loans: Decimal = ZERO

    @property
    def gross(self) -> Decimal:
        return self.base + self.allowances + self.overtime

    @property
    def total_deductions(self) -> Decimal:
        return self.deductions + self.advances + self.savings + self.loans

    @property
    def net(self) -> Decimal:
        return self.gross - self.total_deductions


def _d(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def compute_payslip(salary_base, items: Iterable) -> PayslipFigures:
    figures = PayslipFigures(base=_d(salary_base))
    for item in items:
        column = KIND_COLUMNS[item.kind]
        setattr(figures, column, getattr(figures, column) + _d(item.amount))
    return figures


def payroll_journal_lines(gross, net, deductions) -> list[ledger.CodedLine]:
    return [
        ledger.CodedLine(ledger.SALARIES_EXPENSE, debit=_d(gross), description="Gross salaries"),
        ledger.CodedLine(ledger.CASH, credit=_d(net), description="Net pay"),
        ledger.CodedLine(ledger.PAYROLL_PAYABLE, credit=_d(deductions), description="Payroll deductions"),
    ]


def ensure_payrun_transition(payrun: Payrun, to_status: PayrunStatus) -> None:
    allowed = {
        PayrunStatus.DRAFT.value: PayrunStatus.APPROVED,
        PayrunStatus.APPROVED.value: PayrunStatus.PAID,
    }
    if allowed.get(payrun.status) != to_status:
        raise InvalidTransition("payrun", payrun.status, to_status.value)


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------


async def get_employee(db: AsyncSession, ctx: deps.TenantContext, employee_id) -> Employee:
    stmt = select(Employee).where(Employee.tenant_id == ctx.tenant_id, Employee.id == employee_id)
    employee = (await db.execute(stmt)).scalar_one_or_none()
    if employee is None:
        raise NotFoundError("Employee not found")
    return employee


async def list_employees(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Employee], int]:
    conditions = [Employee.tenant_id == ctx.tenant_id]
    if ctx.branch_id is not None:
        conditions.append(Employee.branch_id == ctx.branch_id)
    if status:
        conditions.append(Employee.status == status)
    total = (await db.execute(select(func.count()).select_from(Employee).where(*conditions))).scalar_one()
    stmt = (
        select(Employee)
        .where(*conditions)
        .order_by(Employee.last_name, Employee.first_name)
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def create_employee(
    db: AsyncSession, ctx: deps.TenantContext, payload: EmployeeCreate, *, actor_id
) -> Employee:
    employee = Employee(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id or ctx.branch_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        phone=payload.phone,
        salary_base=payload.salary_base,
        bank_account=payload.bank_account,
        status="active",
    )
    db.add(employee)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="employee.created",
        resource_type="employee",
        resource_id=str(employee.id),
        new_value=model_snapshot(employee, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    logger.info("Employee created", extra={"employee_id": str(employee.id)})
    return employee


async def update_employee(
    db: AsyncSession, ctx: deps.TenantContext, employee_id, payload: EmployeeUpdate, *, actor_id
) -> Employee:
    employee = await get_employee(db, ctx, employee_id)
    old_snapshot = model_snapshot(employee, exclude=_AUDIT_EXCLUDE)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(employee, field, value)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="employee.updated",
        resource_type="employee",
        resource_id=str(employee.id),
        old_value=old_snapshot,
        new_value=model_snapshot(employee, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    logger.info("Employee updated", extra={"employee_id": str(employee.id)})
    return employee


async def list_items(db: AsyncSession, ctx: deps.TenantContext, employee_id) -> list[PayrollItem]:
    stmt = (
        select(PayrollItem)
        .where(PayrollItem.tenant_id == ctx.tenant_id, PayrollItem.employee_id == employee_id)
        .order_by(PayrollItem.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def add_item(
    db: AsyncSession, ctx: deps.TenantContext, employee_id, payload: PayrollItemCreate, *, actor_id
) -> PayrollItem:
    employee = await get_employee(db, ctx, employee_id)
    item = PayrollItem(
        tenant_id=ctx.tenant_id,
        employee_id=employee.id,
        kind=payload.kind,
        name=payload.name,
        amount=payload.amount,
    )
    db.add(item)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payroll_item.created",
        resource_type="employee",
        resource_id=str(employee.id),
        new_value=model_snapshot(item),
    )
    await db.commit()
    return item


# ---------------------------------------------------------------------------
# Payruns
# ---------------------------------------------------------------------------


async def get_payrun(db: AsyncSession, ctx: deps.TenantContext, payrun_id, *, for_update: bool = False) -> Payrun:
    stmt = select(Payrun).where(Payrun.tenant_id == ctx.tenant_id, Payrun.id == payrun_id)
    if for_update:
        stmt = stmt.with_for_update()
    payrun = (await db.execute(stmt)).scalar_one_or_none()
    if payrun is None:
        raise NotFoundError("Payrun not found")
    return payrun


async def list_payruns(
    db: AsyncSession, ctx: deps.TenantContext, *, offset: int = 0, limit: int = 50
) -> tuple[list[Payrun], int]:
    conditions = [Payrun.tenant_id == ctx.tenant_id]
    total = (await db.execute(select(func.count()).select_from(Payrun).where(*conditions))).scalar_one()
    stmt = select(Payrun).where(*conditions).order_by(Payrun.period.desc()).offset(offset).limit(limit)
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def create_payrun(
    db: AsyncSession, ctx: deps.TenantContext, payload: PayrunCreate, *, actor_id
) -> Payrun:
    existing = (
        await db.execute(
            select(Payrun.id).where(Payrun.tenant_id == ctx.tenant_id, Payrun.period == payload.period)
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(f"A payrun for {payload.period} already exists", code="payrun_exists")

    employees = list(
        (
            await db.execute(
                select(Employee)
                .where(Employee.tenant_id == ctx.tenant_id, Employee.status == "active")
                .order_by(Employee.last_name, Employee.first_name)
            )
        )
        .scalars()
        .all()
    )
    if not employees:
        raise ServiceError("There are no active employees to pay", code="no_active_employees")

    items_by_employee: dict = defaultdict(list)
    item_stmt = select(PayrollItem).where(
        PayrollItem.tenant_id == ctx.tenant_id,
        PayrollItem.employee_id.in_([employee.id for employee in employees]),
    )
    for item in (await db.execute(item_stmt)).scalars().all():
        items_by_employee[item.employee_id].append(item)

    payslips: list[Payslip] = []
    overdrawn: list[str] = []
    for employee in employees:
        figures = compute_payslip(employee.salary_base, items_by_employee.get(employee.id, []))
        if figures.net < ZERO:
            overdrawn.append(str(employee.id))
        payslips.append(
            Payslip(
                tenant_id=ctx.tenant_id,
                employee_id=employee.id,
                base=figures.base,
                allowances=figures.allowances,
                overtime=figures.overtime,
                deductions=figures.deductions,
                advances=figures.advances,
                savings=figures.savings,
                loans=figures.loans,
                gross=figures.gross,
                total_deductions=figures.total_deductions,
                net=figures.net,
                status="unpaid",
            )
        )
    if overdrawn:
        # a negative payslip could never be paid or journalled
        raise ServiceError(
            "Deductions exceed gross pay for some employees",
            code="negative_net_pay",
            details={"employee_ids": overdrawn},
        )

    payrun = Payrun(
        tenant_id=ctx.tenant_id,
        period=payload.period,
        status=PayrunStatus.DRAFT.value,
        total_gross=sum((slip.gross for slip in payslips), ZERO),
        total_deductions=sum((slip.total_deductions for slip in payslips), ZERO),
        total_net=sum((slip.net for slip in payslips), ZERO),
        created_by=actor_id,
        payslips=payslips,
    )
    db.add(payrun)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payrun.created",
        resource_type="payrun",
        resource_id=str(payrun.id),
        new_value=model_snapshot(payrun),
    )
    await db.commit()
    logger.info("Payrun created", extra={"payrun_id": str(payrun.id), "period": payrun.period})
    return payrun


async def approve_payrun(db: AsyncSession, ctx: deps.TenantContext, payrun_id, *, actor_id) -> Payrun:
    payrun = await get_payrun(db, ctx, payrun_id, for_update=True)
    ensure_payrun_transition(payrun, PayrunStatus.APPROVED)
    old_snapshot = model_snapshot(payrun)
    payrun.status = PayrunStatus.APPROVED.value
    payrun.approved_by = actor_id
    payrun.approved_at = datetime.now(timezone.utc)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payrun.approved",
        resource_type="payrun",
        resource_id=str(payrun.id),
        old_value=old_snapshot,
        new_value=model_snapshot(payrun),
    )
    await db.commit()
    logger.info("Payrun approved", extra={"payrun_id": str(payrun.id)})
    return payrun


async def pay_payrun(db: AsyncSession, ctx: deps.TenantContext, payrun_id, *, actor_id) -> Payrun:
    payrun = await get_payrun(db, ctx, payrun_id, for_update=True)
    ensure_payrun_transition(payrun, PayrunStatus.PAID)
    old_snapshot = model_snapshot(payrun)
    journal = await ledger.post_coded_journal(
        db,
        ctx,
        payroll_journal_lines(payrun.total_gross, payrun.total_net, payrun.total_deductions),
        entry_date=date.today(),
        memo=f"Payroll {payrun.period}",
        source_type="payrun",
        source_id=str(payrun.id),
        created_by=actor_id,
    )
    for slip in payrun.payslips:
        slip.status = "paid"
    payrun.status = PayrunStatus.PAID.value
    payrun.paid_at = datetime.now(timezone.utc)
    payrun.journal_entry_id = journal.id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payrun.paid",
        resource_type="payrun",
        resource_id=str(payrun.id),
        old_value=old_snapshot,
        new_value=model_snapshot(payrun),
    )
    await db.commit()
    logger.info("Payrun paid", extra={"payrun_id": str(payrun.id), "net": str(payrun.total_net)})
    return payrun
