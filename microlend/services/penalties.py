from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.settings import settings
from microlend.models.loan import Loan
from microlend.models.loan_product import LoanProduct
from microlend.models.loan_schedule import LoanSchedule
from microlend.schemas.loan import InstallmentStatus, LoanStatus, PenaltyRunResponse
from microlend.services import event_stream, loan_workflow, payment_allocation
from microlend.services.audit import record_audit_log

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def penalty_for_row(row: LoanSchedule, rate_percent: Decimal) -> Decimal:
    """One day's penalty on what is still owed for the installment, excluding earlier penalties."""
    due = payment_allocation.remaining_due(row)
    base = due["principal"] + due["interest"] + due["fees"]
    if base <= 0:
        return ZERO
    return (base * Decimal(str(rate_percent)) / Decimal("100")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def penalize_rows(rows: list[LoanSchedule], rate_percent: Decimal, as_of: date) -> tuple[int, Decimal]:
    """Add today's penalty to every overdue unpaid row not yet charged for ``as_of``."""
    penalized = 0
    total = ZERO
    for row in rows:
        if payment_allocation.is_settled(row) or row.due_date >= as_of:
            continue
        if row.last_penalty_date is not None and row.last_penalty_date >= as_of:
            continue
        penalty = penalty_for_row(row, rate_percent)
        row.last_penalty_date = as_of
        if penalty <= 0:
            continue
        row.penalties = (Decimal(str(row.penalties or 0)) + penalty).quantize(TWOPLACES)
        row.total = (Decimal(str(row.total or 0)) + penalty).quantize(TWOPLACES)
        penalized += 1
        total += penalty
    for row in rows:
        row.status = payment_allocation.row_status(row, as_of)
    return penalized, total


async def apply_penalties(
    db: AsyncSession, ctx: deps.TenantContext, as_of: date | None = None, *, actor_id=None
) -> PenaltyRunResponse:
    as_of = as_of or date.today()
    loans = list(
        (
            await db.execute(
                select(Loan)
                .where(Loan.tenant_id == ctx.tenant_id, Loan.status.in_(loan_workflow.SERVICING_STATUSES))
                .with_for_update()
            )
        )
        .scalars()
        .all()
    )
    if not loans:
        return PenaltyRunResponse(
            as_of=as_of, loans_scanned=0, rows_penalized=0, penalty_total=ZERO, delinquent=0, recovered=0
        )

    loan_ids = [loan.id for loan in loans]
    rows_by_loan: dict = defaultdict(list)
    schedule_stmt = (
        select(LoanSchedule)
        .where(LoanSchedule.tenant_id == ctx.tenant_id, LoanSchedule.loan_id.in_(loan_ids))
        .order_by(LoanSchedule.loan_id, LoanSchedule.period)
    )
    for row in (await db.execute(schedule_stmt)).scalars().all():
        rows_by_loan[row.loan_id].append(row)

    product_ids = {loan.product_id for loan in loans}
    rates = {
        product_id: rate
        for product_id, rate in (
            await db.execute(
                select(LoanProduct.id, LoanProduct.penalty_rate).where(LoanProduct.id.in_(product_ids))
            )
        ).all()
    }

    rows_penalized = 0
    penalty_total = ZERO
    delinquent = recovered = 0
    changed: list[Loan] = []
    for loan in loans:
        rows = rows_by_loan.get(loan.id, [])
        rate = rates.get(loan.product_id)
        if rate is None:
            rate = settings.default_penalty_rate_daily_percent
        penalized, amount = penalize_rows(rows, Decimal(str(rate)), as_of)
        rows_penalized += penalized
        penalty_total += amount
        if rows:
            loan_workflow.refresh_outstanding(loan, rows)

        overdue = any(row.status == InstallmentStatus.OVERDUE.value for row in rows)
        if overdue and loan.status != LoanStatus.DELINQUENT.value:
            # a disbursed loan passes through active before it can be delinquent
            if loan.status == LoanStatus.DISBURSED.value:
                loan_workflow.transition(db, ctx, loan, LoanStatus.ACTIVE, actor_id=actor_id, action="loan.activated")
            loan_workflow.transition(
                db, ctx, loan, LoanStatus.DELINQUENT, actor_id=actor_id, action="loan.delinquent"
            )
            delinquent += 1
            changed.append(loan)
        elif not overdue and loan.status == LoanStatus.DELINQUENT.value:
            loan_workflow.transition(db, ctx, loan, LoanStatus.ACTIVE, actor_id=actor_id, action="loan.recovered")
            recovered += 1
            changed.append(loan)

    result = PenaltyRunResponse(
        as_of=as_of,
        loans_scanned=len(loans),
        rows_penalized=rows_penalized,
        penalty_total=penalty_total.quantize(TWOPLACES),
        delinquent=delinquent,
        recovered=recovered,
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.penalties_applied",
        resource_type="penalty_run",
        resource_id=as_of.isoformat(),
        new_value=result.model_dump(mode="json"),
    )
    await db.commit()
    logger.info("Penalty run finished", extra={"tenant_id": ctx.tenant_id, **result.model_dump(mode="json")})
    for loan in changed:
        await event_stream.publish(
            ctx.tenant_id,
            event_stream.LOAN_CHANGED,
            {"id": str(loan.id), "status": loan.status, "action": "penalties"},
        )
    return result
