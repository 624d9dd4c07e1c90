import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.accounting import (
    AccountCreate,
    AccountListResponse,
    AccountOut,
    CashFlowResponse,
    JournalCreate,
    JournalListResponse,
    JournalOut,
    ProfitAndLossResponse,
    TrialBalanceResponse,
)
from microlend.services import accounting_reports, exports, ledger

router = APIRouter(
    prefix="/accounting",
    tags=["accounting"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.ACCOUNTING))],
)
logger = logging.getLogger(__name__)

_reports_entitlement = [Depends(deps.require_entitlement(EntitlementKey.REPORTS))]


def _csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/accounts", response_model=AccountListResponse, summary="Chart of accounts")
async def list_accounts(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.ACCOUNTING_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AccountListResponse:
    accounts = await ledger.list_accounts(db, ctx)
    return AccountListResponse(items=accounts, total=len(accounts))


@router.post("/accounts", response_model=AccountOut, status_code=201, summary="Create an account")
async def create_account(
    payload: AccountCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ACCOUNTING_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> AccountOut:
    return await ledger.create_account(db, ctx, payload, actor_id=current_user.id)


@router.get("/journals", response_model=JournalListResponse, summary="List journals with their lines")
async def list_journals(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    source_type: str | None = Query(default=None, max_length=50),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.ACCOUNTING_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> JournalListResponse:
    items, total = await ledger.list_journals(
        db,
        ctx,
        start_date=start_date,
        end_date=end_date,
        source_type=source_type,
        offset=offset,
        limit=limit,
    )
    return JournalListResponse(items=items, total=total)


@router.post("/journals", response_model=JournalOut, status_code=201, summary="Post a manual journal")
async def create_journal(
    payload: JournalCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ACCOUNTING_POST)),
    db: AsyncSession = Depends(get_db),
) -> JournalOut:
    journal = await ledger.create_manual_journal(db, ctx, payload, actor_id=current_user.id)
    logger.info("Manual journal posted", extra={"tenant_id": ctx.tenant_id, "journal_id": str(journal.id)})
    return journal


@router.post("/journals/{journal_id}/reverse", response_model=JournalOut, summary="Reverse a journal")
async def reverse_journal(
    journal_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ACCOUNTING_POST)),
    db: AsyncSession = Depends(get_db),
) -> JournalOut:
    return await ledger.reverse_journal(db, ctx, journal_id, actor_id=current_user.id)


@router.get(
    "/reports/trial-balance",
    response_model=TrialBalanceResponse,
    dependencies=_reports_entitlement,
    summary="Trial balance as of a date",
)
async def trial_balance(
    as_of: date | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> TrialBalanceResponse:
    return await accounting_reports.trial_balance(db, ctx, as_of)


@router.get(
    "/reports/trial-balance.csv",
    response_class=StreamingResponse,
    dependencies=_reports_entitlement,
    summary="Trial balance as CSV",
)
async def trial_balance_csv(
    as_of: date | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    report = await accounting_reports.trial_balance(db, ctx, as_of)
    return _csv_response(exports.trial_balance_to_csv(report), f"trial_balance_{report.as_of}.csv")


@router.get(
    "/reports/profit-and-loss",
    response_model=ProfitAndLossResponse,
    dependencies=_reports_entitlement,
    summary="Profit and loss for a date range",
)
async def profit_and_loss(
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> ProfitAndLossResponse:
    return await accounting_reports.profit_and_loss(db, ctx, start_date, end_date)


@router.get(
    "/reports/profit-and-loss.csv",
    response_class=StreamingResponse,
    dependencies=_reports_entitlement,
    summary="Profit and loss as CSV",
)
async def profit_and_loss_csv(
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    report = await accounting_reports.profit_and_loss(db, ctx, start_date, end_date)
    return _csv_response(
        exports.profit_and_loss_to_csv(report), f"profit_and_loss_{start_date}_{end_date}.csv"
    )


@router.get(
    "/reports/cash-flow",
    response_model=CashFlowResponse,
    dependencies=_reports_entitlement,
    summary="Monthly cash flow for the twelve months ending at a month",
)
async def cash_flow(
    month: str | None = Query(default=None, description="End month as YYYY-MM"),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> CashFlowResponse:
    return await accounting_reports.cash_flow(db, ctx, month)
