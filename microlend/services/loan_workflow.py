from __future__ import annotations

import logging
import secrets
import string
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.core.settings import settings
from microlend.models.borrower import Borrower
from microlend.models.loan import Loan
from microlend.models.loan_product import LoanProduct
from microlend.models.loan_schedule import LoanSchedule
from microlend.schemas.borrowers import BorrowerStatus
from microlend.schemas.loan import (
    FeeType,
    LoanCloseRequest,
    LoanCreate,
    LoanDisburseRequest,
    LoanStatus,
    ProductStatus,
)
from microlend.services import entitlements, event_stream, ledger, loan_schedules, payment_allocation
from microlend.services.audit import model_snapshot, record_audit_log
from microlend.services.loan_products import get_product

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")

ALLOWED_TRANSITIONS: dict[LoanStatus, set[LoanStatus]] = {
    LoanStatus.PENDING: {LoanStatus.APPROVED, LoanStatus.REJECTED},
    LoanStatus.APPROVED: {LoanStatus.DISBURSED, LoanStatus.REJECTED},
    LoanStatus.DISBURSED: {LoanStatus.ACTIVE, LoanStatus.CLOSED},
    LoanStatus.ACTIVE: {LoanStatus.DELINQUENT, LoanStatus.CLOSED},
    LoanStatus.DELINQUENT: {LoanStatus.ACTIVE, LoanStatus.CLOSED},
    LoanStatus.REJECTED: set(),
    LoanStatus.CLOSED: set(),
}

# Loans that carry a live repayment schedule
SERVICING_STATUSES = (LoanStatus.DISBURSED.value, LoanStatus.ACTIVE.value, LoanStatus.DELINQUENT.value)


def can_transition(from_status: LoanStatus | str, to_status: LoanStatus | str) -> bool:
    return LoanStatus(to_status) in ALLOWED_TRANSITIONS[LoanStatus(from_status)]


def ensure_transition(loan: Loan, to_status: LoanStatus) -> None:
    if not can_transition(loan.status, to_status):
        raise InvalidTransition("loan", loan.status, to_status.value)


def _q(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value or 0))
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def compute_fee(product: LoanProduct, amount) -> Decimal:
    if FeeType(product.fee_type) == FeeType.PERCENT:
        return _q(_q(amount) * Decimal(str(product.fee_percent or 0)) / Decimal("100"))
    return _q(product.fee_amount or 0)


def generate_reference(borrower_id) -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"LN-{str(borrower_id)[:8]}-{suffix}"


def validate_terms(product: LoanProduct, amount, term_months: int) -> None:
    amount = _q(amount)
    if amount < _q(product.min_principal) or amount > _q(product.max_principal):
        raise ServiceError(
            f"Amount must be between {product.min_principal} and {product.max_principal}",
            code="amount_out_of_range",
            details={"min": str(product.min_principal), "max": str(product.max_principal)},
        )
    if term_months < product.min_term_months or term_months > product.max_term_months:
        raise ServiceError(
            f"Term must be between {product.min_term_months} and {product.max_term_months} months",
            code="term_out_of_range",
            details={"min": product.min_term_months, "max": product.max_term_months},
        )


def refresh_outstanding(loan: Loan, rows: list[LoanSchedule]) -> None:
    if rows:
        loan.outstanding = payment_allocation.outstanding(rows)
        loan.total_penalties = _q(sum((_q(row.penalties) for row in rows), Decimal("0")))
    else:
        loan.outstanding = _q(
            _q(loan.amount) + _q(loan.total_interest) + _q(loan.total_fees)
            + _q(loan.total_penalties) - _q(loan.total_paid)
        )


async def get_loan(db: AsyncSession, ctx: deps.TenantContext, loan_id, *, for_update: bool = False) -> Loan:
    stmt = select(Loan).where(Loan.tenant_id == ctx.tenant_id, Loan.id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFoundError("Loan not found")
    return loan


async def get_schedule_rows(db: AsyncSession, ctx: deps.TenantContext, loan_id) -> list[LoanSchedule]:
    stmt = (
        select(LoanSchedule)
        .where(LoanSchedule.tenant_id == ctx.tenant_id, LoanSchedule.loan_id == loan_id)
        .order_by(LoanSchedule.period)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_loans(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    status: str | None = None,
    borrower_id=None,
    branch_id=None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Loan], int]:
    conditions = [Loan.tenant_id == ctx.tenant_id]
    branch_id = ctx.branch_id or branch_id
    if branch_id is not None:
        conditions.append(Loan.branch_id == branch_id)
    if status:
        conditions.append(Loan.status == status)
    if borrower_id:
        conditions.append(Loan.borrower_id == borrower_id)
    total = (await db.execute(select(func.count()).select_from(Loan).where(*conditions))).scalar_one()
    stmt = select(Loan).where(*conditions).order_by(Loan.created_at.desc()).offset(offset).limit(limit)
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def _publish(ctx: deps.TenantContext, loan: Loan, action: str) -> None:
    await event_stream.publish(
        ctx.tenant_id,
        event_stream.LOAN_CHANGED,
        {"id": str(loan.id), "status": loan.status, "action": action},
    )


def transition(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    to_status: LoanStatus,
    *,
    actor_id,
    action: str,
    **fields,
) -> None:
    ensure_transition(loan, to_status)
    old_snapshot = model_snapshot(loan)
    loan.status = to_status.value
    for field, value in fields.items():
        setattr(loan, field, value)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=action,
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )


async def create_loan(
    db: AsyncSession, ctx: deps.TenantContext, payload: LoanCreate, *, actor_id
) -> Loan:
    borrower = (
        await db.execute(
            select(Borrower).where(Borrower.tenant_id == ctx.tenant_id, Borrower.id == payload.borrower_id)
        )
    ).scalar_one_or_none()
    if borrower is None:
        raise NotFoundError("Borrower not found")
    if borrower.status == BorrowerStatus.BLACKLISTED.value:
        raise ServiceError("Borrower is blacklisted", code="borrower_blacklisted")

    product = await get_product(db, ctx, payload.product_id)
    if product.status != ProductStatus.ACTIVE.value:
        raise ServiceError("Loan product is not active", code="product_inactive")
    validate_terms(product, payload.amount, payload.term_months)
    await entitlements.ensure_within_limit(db, ctx.tenant_id, "loans", Loan)

    amount = _q(payload.amount)
    rate = payload.interest_rate if payload.interest_rate is not None else product.interest_rate
    method = payload.interest_method or product.interest_method
    start = payload.start_date or date.today()
    fees = compute_fee(product, amount)
    preview = loan_schedules.build_schedule(
        principal=amount,
        rate_percent=rate,
        term_months=payload.term_months,
        method=method,
        start_date=start,
        fees=fees,
    )
    total_interest = _q(sum((entry.interest for entry in preview), Decimal("0")))

    loan = Loan(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id or borrower.branch_id or ctx.branch_id,
        borrower_id=borrower.id,
        product_id=product.id,
        reference=payload.reference or generate_reference(borrower.id),
        status=LoanStatus.PENDING.value,
        currency=payload.currency or settings.default_currency,
        amount=amount,
        interest_method=method,
        interest_rate=rate,
        term_months=payload.term_months,
        start_date=start,
        end_date=loan_schedules.add_months(start, payload.term_months),
        total_interest=total_interest,
        total_fees=fees,
        total_penalties=Decimal("0.00"),
        total_paid=Decimal("0.00"),
        outstanding=_q(amount + total_interest + fees),
        created_by=actor_id,
    )
    db.add(loan)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.created",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value=model_snapshot(loan),
    )
    await db.commit()
    await db.refresh(loan)
    logger.info("Loan created", extra={"loan_id": str(loan.id), "reference": loan.reference})
    await _publish(ctx, loan, "created")
    return loan


async def approve_loan(db: AsyncSession, ctx: deps.TenantContext, loan_id, *, actor_id) -> Loan:
    loan = await get_loan(db, ctx, loan_id, for_update=True)
    transition(
        db,
        ctx,
        loan,
        LoanStatus.APPROVED,
        actor_id=actor_id,
        action="loan.approved",
        approved_by=actor_id,
        approved_at=datetime.now(timezone.utc),
    )
    await db.commit()
    await db.refresh(loan)
    logger.info("Loan approved", extra={"loan_id": str(loan.id)})
    await _publish(ctx, loan, "approved")
    return loan


async def reject_loan(
    db: AsyncSession, ctx: deps.TenantContext, loan_id, reason: str, *, actor_id
) -> Loan:
    if not (reason or "").strip():
        raise ServiceError("A rejection reason is required", code="reason_required")
    loan = await get_loan(db, ctx, loan_id, for_update=True)
    transition(
        db,
        ctx,
        loan,
        LoanStatus.REJECTED,
        actor_id=actor_id,
        action="loan.rejected",
        rejected_by=actor_id,
        rejected_at=datetime.now(timezone.utc),
        rejection_reason=reason.strip(),
    )
    await db.commit()
    await db.refresh(loan)
    logger.info("Loan rejected", extra={"loan_id": str(loan.id)})
    await _publish(ctx, loan, "rejected")
    return loan


async def disburse_in_session(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    *,
    actor_id,
    method: str | None = None,
    reference: str | None = None,
    disbursed_on: date | None = None,
) -> Loan:
    """Disburse and activate ``loan`` without committing.

    Builds the schedule if it does not exist yet and posts Dr Loan Portfolio /
    Cr Cash for the principal.
    """
    ensure_transition(loan, LoanStatus.DISBURSED)
    if disbursed_on is not None and disbursed_on != loan.start_date:
        loan.start_date = disbursed_on
        loan.end_date = loan_schedules.add_months(disbursed_on, loan.term_months)

    transition(
        db,
        ctx,
        loan,
        LoanStatus.DISBURSED,
        actor_id=actor_id,
        action="loan.disbursed",
        disbursed_by=actor_id,
        disbursed_at=datetime.now(timezone.utc),
        disbursement_method=method,
        disbursement_reference=reference,
    )

    rows = await get_schedule_rows(db, ctx, loan.id)
    if not rows:
        rows = loan_schedules.rows_for_loan(loan)
        db.add_all(rows)
        await db.flush()
        loan.total_interest = _q(sum((_q(row.interest) for row in rows), Decimal("0")))
    refresh_outstanding(loan, rows)

    await ledger.post_coded_journal(
        db,
        ctx,
        [
            ledger.CodedLine(ledger.LOAN_PORTFOLIO, debit=_q(loan.amount), description="Loan principal"),
            ledger.CodedLine(ledger.CASH, credit=_q(loan.amount), description="Loan disbursement"),
        ],
        entry_date=disbursed_on or date.today(),
        memo=f"Disbursement of loan {loan.reference}",
        source_type="loan_disbursement",
        source_id=str(loan.id),
        created_by=actor_id,
    )

    transition(db, ctx, loan, LoanStatus.ACTIVE, actor_id=actor_id, action="loan.activated")
    return loan


async def disburse_loan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan_id,
    payload: LoanDisburseRequest,
    *,
    actor_id,
) -> Loan:
    loan = await get_loan(db, ctx, loan_id, for_update=True)
    await disburse_in_session(
        db,
        ctx,
        loan,
        actor_id=actor_id,
        method=payload.method,
        reference=payload.reference,
        disbursed_on=payload.disbursed_on,
    )
    await db.commit()
    await db.refresh(loan)
    logger.info("Loan disbursed", extra={"loan_id": str(loan.id), "amount": str(loan.amount)})
    await _publish(ctx, loan, "disbursed")
    return loan


async def close_loan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan_id,
    payload: LoanCloseRequest,
    *,
    actor_id,
) -> Loan:
    loan = await get_loan(db, ctx, loan_id, for_update=True)
    ensure_transition(loan, LoanStatus.CLOSED)
    rows = await get_schedule_rows(db, ctx, loan.id)
    refresh_outstanding(loan, rows)
    if _q(loan.outstanding) > TWOPLACES and not payload.override:
        raise ServiceError(
            "Loan still has an outstanding balance",
            code="outstanding_balance",
            details={"outstanding": str(loan.outstanding)},
        )
    reason = (payload.reason or "").strip() or ("override" if payload.override else None)
    transition(
        db,
        ctx,
        loan,
        LoanStatus.CLOSED,
        actor_id=actor_id,
        action="loan.closed",
        closed_by=actor_id,
        closed_at=datetime.now(timezone.utc),
        close_reason=reason,
    )
    await db.commit()
    await db.refresh(loan)
    logger.info("Loan closed", extra={"loan_id": str(loan.id), "override": payload.override})
    await _publish(ctx, loan, "closed")
    return loan
