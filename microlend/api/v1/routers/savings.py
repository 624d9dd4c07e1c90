from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.savings import (
    SavingsBalance,
    SavingsDecisionRequest,
    SavingsStatement,
    SavingsStatus,
    SavingsTransactionCreate,
    SavingsTransactionListResponse,
    SavingsTransactionOut,
    SavingsType,
    StaffReportResponse,
)
from microlend.services import borrowers as borrower_service
from microlend.services import savings

router = APIRouter(
    prefix="/savings",
    tags=["savings"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.SAVINGS))],
)


@router.get("/transactions", response_model=SavingsTransactionListResponse, summary="List savings transactions")
async def list_transactions(
    borrower_id: UUID | None = Query(default=None),
    type: SavingsType | None = Query(default=None),
    status: SavingsStatus | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.SAVINGS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> SavingsTransactionListResponse:
    items, total = await savings.list_transactions(
        db,
        ctx,
        borrower_id=borrower_id,
        txn_type=type.value if type else None,
        status=status.value if status else None,
        start_date=start_date,
        end_date=end_date,
        offset=offset,
        limit=limit,
    )
    return SavingsTransactionListResponse(items=items, total=total)


@router.post(
    "/transactions",
    response_model=SavingsTransactionOut,
    status_code=201,
    summary="Record a savings transaction",
)
async def create_transaction(
    payload: SavingsTransactionCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SAVINGS_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> SavingsTransactionOut:
    return await savings.create_transaction(db, ctx, payload, actor_id=current_user.id)


@router.post("/transactions/{txn_id}/approve", response_model=SavingsTransactionOut, summary="Approve a transaction")
async def approve_transaction(
    txn_id: UUID,
    payload: SavingsDecisionRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SAVINGS_APPROVE)),
    db: AsyncSession = Depends(get_db),
) -> SavingsTransactionOut:
    return await savings.approve_transaction(db, ctx, txn_id, payload.comment, actor_id=current_user.id)


@router.post("/transactions/{txn_id}/reject", response_model=SavingsTransactionOut, summary="Reject a transaction")
async def reject_transaction(
    txn_id: UUID,
    payload: SavingsDecisionRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SAVINGS_APPROVE)),
    db: AsyncSession = Depends(get_db),
) -> SavingsTransactionOut:
    return await savings.reject_transaction(db, ctx, txn_id, payload.comment, actor_id=current_user.id)


@router.post("/transactions/{txn_id}/reverse", response_model=SavingsTransactionOut, summary="Reverse a transaction")
async def reverse_transaction(
    txn_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SAVINGS_REVERSE)),
    db: AsyncSession = Depends(get_db),
) -> SavingsTransactionOut:
    return await savings.reverse_transaction(db, ctx, txn_id, actor_id=current_user.id)


@router.get("/borrowers/{borrower_id}/balance", response_model=SavingsBalance, summary="Savings balance")
async def borrower_balance(
    borrower_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.SAVINGS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> SavingsBalance:
    await borrower_service.get_borrower(db, ctx, borrower_id)
    return await savings.borrower_balance(db, ctx, borrower_id)


@router.get("/borrowers/{borrower_id}/statement", response_model=SavingsStatement, summary="Savings statement")
async def borrower_statement(
    borrower_id: UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.SAVINGS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> SavingsStatement:
    await borrower_service.get_borrower(db, ctx, borrower_id)
    return await savings.statement(db, ctx, borrower_id, start_date=start_date, end_date=end_date)


@router.get("/reports/staff", response_model=StaffReportResponse, summary="Savings activity by staff member")
async def staff_report(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StaffReportResponse:
    return await savings.staff_report(db, ctx, start_date=start_date, end_date=end_date)
