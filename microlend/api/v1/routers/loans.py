from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.loan import (
    LoanCloseRequest,
    LoanCreate,
    LoanDisburseRequest,
    LoanListResponse,
    LoanOut,
    LoanRejectRequest,
    LoanSchedulePreviewRequest,
    LoanScheduleResponse,
    LoanStatus,
    PenaltyRunRequest,
    PenaltyRunResponse,
)
from microlend.services import exports, loan_schedules, loan_workflow, penalties

router = APIRouter(
    prefix="/loans",
    tags=["loans"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)


@router.get("", response_model=LoanListResponse, summary="List loans")
async def list_loans(
    status: LoanStatus | None = Query(default=None),
    borrower_id: UUID | None = Query(default=None),
    branch_id: UUID | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    items, total = await loan_workflow.list_loans(
        db,
        ctx,
        status=status.value if status else None,
        borrower_id=borrower_id,
        branch_id=branch_id,
        offset=offset,
        limit=limit,
    )
    return LoanListResponse(items=items, total=total)


@router.post("", response_model=LoanOut, status_code=201, summary="Create a loan application")
async def create_loan(
    payload: LoanCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.create_loan(db, ctx, payload, actor_id=current_user.id)


@router.post("/schedule/preview", response_model=LoanScheduleResponse, summary="Preview an amortization schedule")
async def preview_schedule(
    payload: LoanSchedulePreviewRequest,
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_VIEW)),
) -> LoanScheduleResponse:
    return loan_schedules.preview_schedule(payload)


@router.post("/maintenance/penalties", response_model=PenaltyRunResponse, summary="Apply overdue penalties")
async def run_penalties(
    payload: PenaltyRunRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> PenaltyRunResponse:
    as_of = payload.as_of if payload else None
    return await penalties.apply_penalties(db, ctx, as_of, actor_id=current_user.id)


@router.get("/{loan_id}", response_model=LoanOut, summary="Get a loan")
async def get_loan(
    loan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.get_loan(db, ctx, loan_id)


@router.get("/{loan_id}/schedule", response_model=LoanScheduleResponse, summary="Loan installment schedule")
async def get_schedule(
    loan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanScheduleResponse:
    loan = await loan_workflow.get_loan(db, ctx, loan_id)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    return loan_schedules.response_for_loan(loan, rows)


@router.get(
    "/{loan_id}/schedule/export",
    response_class=StreamingResponse,
    summary="Export the installment schedule as CSV",
)
async def export_schedule(
    loan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    loan = await loan_workflow.get_loan(db, ctx, loan_id)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    content = exports.schedule_to_csv(loan_schedules.response_for_loan(loan, rows))
    filename = f"loan_schedule_{loan.reference}.csv"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{loan_id}/approve", response_model=LoanOut, summary="Approve a pending loan")
async def approve_loan(
    loan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_APPROVE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.approve_loan(db, ctx, loan_id, actor_id=current_user.id)


@router.post("/{loan_id}/reject", response_model=LoanOut, summary="Reject a loan")
async def reject_loan(
    loan_id: UUID,
    payload: LoanRejectRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_REJECT)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.reject_loan(db, ctx, loan_id, payload.reason, actor_id=current_user.id)


@router.post("/{loan_id}/disburse", response_model=LoanOut, summary="Disburse an approved loan")
async def disburse_loan(
    loan_id: UUID,
    payload: LoanDisburseRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_DISBURSE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.disburse_loan(
        db, ctx, loan_id, payload or LoanDisburseRequest(), actor_id=current_user.id
    )


@router.post("/{loan_id}/close", response_model=LoanOut, summary="Close a loan")
async def close_loan(
    loan_id: UUID,
    payload: LoanCloseRequest | None = None,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_CLOSE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    return await loan_workflow.close_loan(
        db, ctx, loan_id, payload or LoanCloseRequest(), actor_id=current_user.id
    )
