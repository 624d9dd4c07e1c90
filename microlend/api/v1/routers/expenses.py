from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.expenses import (
    ExpenseCreate,
    ExpenseListResponse,
    ExpenseOut,
    ExpenseStatus,
    ExpenseUpdate,
)
from microlend.services import exports
from microlend.services import expenses as expense_service

router = APIRouter(
    prefix="/expenses",
    tags=["expenses"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.ACCOUNTING))],
)


def _filters(
    search: str | None = Query(default=None, max_length=100),
    category: str | None = Query(default=None, max_length=50),
    vendor: str | None = Query(default=None, max_length=255),
    status: ExpenseStatus | None = Query(default=None),
    branch_id: UUID | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    min_amount: Decimal | None = Query(default=None, ge=0),
    max_amount: Decimal | None = Query(default=None, ge=0),
) -> dict:
    return {
        "search": search,
        "category": category,
        "vendor": vendor,
        "status": status.value if status else None,
        "branch_id": branch_id,
        "date_from": date_from,
        "date_to": date_to,
        "min_amount": min_amount,
        "max_amount": max_amount,
    }


@router.get("", response_model=ExpenseListResponse, summary="List expenses")
async def list_expenses(
    filters: dict = Depends(_filters),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.EXPENSE_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseListResponse:
    items, total = await expense_service.list_expenses(db, ctx, offset=offset, limit=limit, **filters)
    return ExpenseListResponse(items=items, total=total)


@router.get("/export", response_class=StreamingResponse, summary="Expenses as CSV")
async def export_expenses(
    filters: dict = Depends(_filters),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.EXPENSE_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    items = await expense_service.export_expenses(db, ctx, **filters)
    return StreamingResponse(
        iter([exports.expenses_to_csv(items)]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="expenses_{date.today().isoformat()}.csv"'},
    )


@router.post("", response_model=ExpenseOut, status_code=201, summary="Record an expense")
async def create_expense(
    payload: ExpenseCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.EXPENSE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseOut:
    return await expense_service.create_expense(db, ctx, payload, actor_id=current_user.id)


@router.get("/{expense_id}", response_model=ExpenseOut, summary="Get an expense")
async def get_expense(
    expense_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.EXPENSE_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseOut:
    return await expense_service.get_expense(db, ctx, expense_id)


@router.patch("/{expense_id}", response_model=ExpenseOut, summary="Correct an expense")
async def update_expense(
    expense_id: UUID,
    payload: ExpenseUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.EXPENSE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseOut:
    return await expense_service.update_expense(db, ctx, expense_id, payload, actor_id=current_user.id)


@router.delete("/{expense_id}", response_model=ExpenseOut, summary="Void an expense and reverse its journal")
async def void_expense(
    expense_id: UUID,
    reason: str = Query(min_length=1, max_length=2000),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.EXPENSE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseOut:
    return await expense_service.void_expense(db, ctx, expense_id, reason.strip(), actor_id=current_user.id)
