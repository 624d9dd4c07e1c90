from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.payroll import (
    EmployeeCreate,
    EmployeeListResponse,
    EmployeeOut,
    EmployeeUpdate,
    PayrollItemCreate,
    PayrollItemOut,
    PayrunCreate,
    PayrunListResponse,
    PayrunOut,
)
from microlend.services import payroll

router = APIRouter(
    prefix="/payroll",
    tags=["payroll"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.PAYROLL))],
)


@router.get("/employees", response_model=EmployeeListResponse, summary="List employees")
async def list_employees(
    status: str | None = Query(default=None, pattern=r"^(active|inactive)$"),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.PAYROLL_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> EmployeeListResponse:
    items, total = await payroll.list_employees(db, ctx, status=status, offset=offset, limit=limit)
    return EmployeeListResponse(items=items, total=total)


@router.post("/employees", response_model=EmployeeOut, status_code=201, summary="Create an employee")
async def create_employee(
    payload: EmployeeCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> EmployeeOut:
    return await payroll.create_employee(db, ctx, payload, actor_id=current_user.id)


@router.get("/employees/{employee_id}", response_model=EmployeeOut, summary="Get an employee")
async def get_employee(
    employee_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.PAYROLL_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> EmployeeOut:
    return await payroll.get_employee(db, ctx, employee_id)


@router.patch("/employees/{employee_id}", response_model=EmployeeOut, summary="Update an employee")
async def update_employee(
    employee_id: UUID,
    payload: EmployeeUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> EmployeeOut:
    return await payroll.update_employee(db, ctx, employee_id, payload, actor_id=current_user.id)


@router.get("/employees/{employee_id}/items", response_model=list[PayrollItemOut], summary="Recurring pay items")
async def list_items(
    employee_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.PAYROLL_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[PayrollItemOut]:
    return await payroll.list_items(db, ctx, employee_id)


@router.post(
    "/employees/{employee_id}/items",
    response_model=PayrollItemOut,
    status_code=201,
    summary="Add a recurring pay item",
)
async def add_item(
    employee_id: UUID,
    payload: PayrollItemCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PayrollItemOut:
    return await payroll.add_item(db, ctx, employee_id, payload, actor_id=current_user.id)


@router.get("/payruns", response_model=PayrunListResponse, summary="List payruns")
async def list_payruns(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.PAYROLL_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> PayrunListResponse:
    items, total = await payroll.list_payruns(db, ctx, offset=offset, limit=limit)
    return PayrunListResponse(items=items, total=total)


@router.post("/payruns", response_model=PayrunOut, status_code=201, summary="Build a payrun for a period")
async def create_payrun(
    payload: PayrunCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PayrunOut:
    return await payroll.create_payrun(db, ctx, payload, actor_id=current_user.id)


@router.get("/payruns/{payrun_id}", response_model=PayrunOut, summary="Get a payrun with payslips")
async def get_payrun(
    payrun_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.PAYROLL_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> PayrunOut:
    return await payroll.get_payrun(db, ctx, payrun_id)


@router.post("/payruns/{payrun_id}/approve", response_model=PayrunOut, summary="Approve a draft payrun")
async def approve_payrun(
    payrun_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PayrunOut:
    return await payroll.approve_payrun(db, ctx, payrun_id, actor_id=current_user.id)


@router.post("/payruns/{payrun_id}/pay", response_model=PayrunOut, summary="Pay an approved payrun")
async def pay_payrun(
    payrun_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYROLL_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PayrunOut:
    return await payroll.pay_payrun(db, ctx, payrun_id, actor_id=current_user.id)
