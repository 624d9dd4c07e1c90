from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import NotFoundError, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.loan import Loan
from microlend.models.loan_payment import LoanPayment
from microlend.models.loan_schedule import LoanSchedule
from microlend.schemas.loan import LoanStatus
from microlend.schemas.payments import (
    AllocationLine,
    AllocationOut,
    AllocationTotals,
    PaymentCreate,
    PaymentPreviewRequest,
    PaymentStatus,
    ReceiptOut,
)
from microlend.services import event_stream, ledger, loan_workflow, payment_allocation
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
TWOPLACES = Decimal("0.01")


def _q(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value or 0))
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def generate_receipt_no() -> str:
    return f"RCPT-{secrets.token_hex(4).upper()}"


def _ensure_payable(loan: Loan) -> None:
    if loan.status not in loan_workflow.SERVICING_STATUSES:
        raise ServiceError(
            "Payments can only be taken on disbursed loans",
            code="loan_not_payable",
            details={"status": loan.status},
        )


def _stored_allocation(allocation: AllocationOut) -> dict:
    return allocation.model_dump(mode="json")


def _stored_lines(payment: LoanPayment) -> list[AllocationLine]:
    return [AllocationLine.model_validate(line) for line in (payment.allocation or {}).get("lines", [])]


def _stored_totals(payment: LoanPayment) -> AllocationTotals:
    return AllocationTotals.model_validate((payment.allocation or {}).get("totals") or {})


def journal_lines(amount, totals: AllocationTotals, unapplied) -> list[ledger.CodedLine]:
    """Dr Cash for the receipt, credited out by allocation category."""
    return [
        ledger.CodedLine(ledger.CASH, debit=amount, description="Loan repayment"),
        ledger.CodedLine(ledger.LOAN_PORTFOLIO, credit=totals.principal, description="Principal repaid"),
        ledger.CodedLine(ledger.INTEREST_INCOME, credit=totals.interest, description="Interest collected"),
        ledger.CodedLine(ledger.FEE_INCOME, credit=totals.fees, description="Fees collected"),
        ledger.CodedLine(ledger.PENALTY_INCOME, credit=totals.penalties, description="Penalties collected"),
        ledger.CodedLine(ledger.BORROWER_OVERPAYMENTS, credit=unapplied, description="Unapplied overpayment"),
    ]


def _sync_delinquency(db, ctx, loan: Loan, rows: list[LoanSchedule], *, actor_id, as_of: date) -> None:
    if loan.status == LoanStatus.DELINQUENT.value and not payment_allocation.has_overdue(rows, as_of):
        loan_workflow.transition(
            db, ctx, loan, LoanStatus.ACTIVE, actor_id=actor_id, action="loan.recovered"
        )


async def get_payment(db: AsyncSession, ctx: deps.TenantContext, payment_id, *, for_update: bool = False) -> LoanPayment:
    stmt = select(LoanPayment).where(LoanPayment.tenant_id == ctx.tenant_id, LoanPayment.id == payment_id)
    if for_update:
        stmt = stmt.with_for_update()
    payment = (await db.execute(stmt)).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


async def list_payments(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan_id,
    *,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[LoanPayment], int]:
    conditions = [LoanPayment.tenant_id == ctx.tenant_id, LoanPayment.loan_id == loan_id]
    if status:
        conditions.append(LoanPayment.status == status)
    total = (await db.execute(select(func.count()).select_from(LoanPayment).where(*conditions))).scalar_one()
    stmt = (
        select(LoanPayment)
        .where(*conditions)
        .order_by(LoanPayment.payment_date.desc(), LoanPayment.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def preview_payment(
    db: AsyncSession, ctx: deps.TenantContext, loan_id, payload: PaymentPreviewRequest
) -> AllocationOut:
    loan = await loan_workflow.get_loan(db, ctx, loan_id)
    _ensure_payable(loan)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    return payment_allocation.compute_allocation(
        rows, payload.amount, payload.strategy, payload.custom_order, payload.waive_penalties
    )


async def _apply(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    payment: LoanPayment,
    rows: list[LoanSchedule],
    allocation: AllocationOut,
    *,
    actor_id,
) -> None:
    """Apply ``allocation`` to the schedule and post the repayment journal."""
    # backdated payments still judge overdue rows against today
    as_of = max(payment.payment_date, date.today())
    payment_allocation.apply_allocation(rows, allocation.lines, 1, as_of)
    payment.allocation = _stored_allocation(allocation)
    payment.unapplied_amount = allocation.unapplied
    payment.status = PaymentStatus.APPROVED.value
    payment.applied = True

    applied_amount = allocation.amount - allocation.unapplied
    loan.total_paid = _q(loan.total_paid) + applied_amount
    loan_workflow.refresh_outstanding(loan, rows)

    journal = await ledger.post_coded_journal(
        db,
        ctx,
        journal_lines(allocation.amount, allocation.totals, allocation.unapplied),
        entry_date=payment.payment_date,
        memo=f"Repayment {payment.receipt_no} on loan {loan.reference}",
        source_type="loan_payment",
        source_id=str(payment.id),
        created_by=actor_id,
    )
    payment.journal_entry_id = journal.id
    _sync_delinquency(db, ctx, loan, rows, actor_id=actor_id, as_of=as_of)


async def _publish(ctx: deps.TenantContext, loan: Loan, payment: LoanPayment, *, created: bool) -> None:
    if created:
        await event_stream.publish(
            ctx.tenant_id,
            event_stream.REPAYMENT_CREATED,
            {"id": str(payment.id), "loan_id": str(loan.id), "amount": str(payment.amount), "status": payment.status},
        )
    await event_stream.publish(
        ctx.tenant_id,
        event_stream.LOAN_CHANGED,
        {"id": str(loan.id), "status": loan.status, "action": "payment"},
    )


async def create_payment(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan_id,
    payload: PaymentCreate,
    *,
    actor_id,
) -> LoanPayment:
    loan = await loan_workflow.get_loan(db, ctx, loan_id, for_update=True)
    _ensure_payable(loan)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    allocation = payment_allocation.compute_allocation(
        rows, payload.amount, payload.strategy, payload.custom_order, payload.waive_penalties
    )

    payment = LoanPayment(
        tenant_id=ctx.tenant_id,
        loan_id=loan.id,
        amount=allocation.amount,
        payment_date=payload.payment_date or date.today(),
        method=payload.method,
        reference=payload.reference,
        receipt_no=generate_receipt_no(),
        strategy=payload.strategy,
        custom_order=payload.custom_order,
        waive_penalties=payload.waive_penalties,
        allocation=_stored_allocation(allocation),
        unapplied_amount=allocation.unapplied,
        status=PaymentStatus.PENDING.value,
        applied=False,
        reversed=False,
        posted_by=actor_id,
    )
    db.add(payment)
    await db.flush()

    old_loan = model_snapshot(loan)
    if payload.auto_apply:
        payment.approved_by = actor_id
        payment.approved_at = datetime.now(timezone.utc)
        await _apply(db, ctx, loan, payment, rows, allocation, actor_id=actor_id)

    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payment.created",
        resource_type="loan_payment",
        resource_id=str(payment.id),
        new_value=model_snapshot(payment),
    )
    if payment.applied:
        record_audit_log(
            db,
            ctx,
            actor_id=actor_id,
            action="loan.payment_applied",
            resource_type="loan",
            resource_id=str(loan.id),
            old_value=old_loan,
            new_value=model_snapshot(loan),
        )
    await db.commit()
    logger.info(
        "Payment recorded",
        extra={"payment_id": str(payment.id), "loan_id": str(loan.id), "status": payment.status},
    )
    await _publish(ctx, loan, payment, created=True)
    return payment


async def approve_payment(db: AsyncSession, ctx: deps.TenantContext, payment_id, *, actor_id) -> LoanPayment:
    payment = await get_payment(db, ctx, payment_id, for_update=True)
    if payment.status != PaymentStatus.PENDING.value:
        raise ServiceError("Only pending payments can be approved", code="payment_not_pending")
    loan = await loan_workflow.get_loan(db, ctx, payment.loan_id, for_update=True)
    _ensure_payable(loan)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    allocation = payment_allocation.compute_allocation(
        rows, payment.amount, payment.strategy, payment.custom_order, payment.waive_penalties
    )

    old_payment = model_snapshot(payment)
    old_loan = model_snapshot(loan)
    payment.approved_by = actor_id
    payment.approved_at = datetime.now(timezone.utc)
    await _apply(db, ctx, loan, payment, rows, allocation, actor_id=actor_id)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payment.approved",
        resource_type="loan_payment",
        resource_id=str(payment.id),
        old_value=old_payment,
        new_value=model_snapshot(payment),
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.payment_applied",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_loan,
        new_value=model_snapshot(loan),
    )
    await db.commit()
    logger.info("Payment approved", extra={"payment_id": str(payment.id)})
    await _publish(ctx, loan, payment, created=False)
    return payment


async def reject_payment(
    db: AsyncSession, ctx: deps.TenantContext, payment_id, reason: str, *, actor_id
) -> LoanPayment:
    payment = await get_payment(db, ctx, payment_id, for_update=True)
    if payment.status != PaymentStatus.PENDING.value:
        raise ServiceError("Only pending payments can be rejected", code="payment_not_pending")
    old_payment = model_snapshot(payment)
    payment.status = PaymentStatus.REJECTED.value
    payment.rejection_reason = reason
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payment.rejected",
        resource_type="loan_payment",
        resource_id=str(payment.id),
        old_value=old_payment,
        new_value=model_snapshot(payment),
    )
    await db.commit()
    logger.info("Payment rejected", extra={"payment_id": str(payment.id)})
    return payment


async def void_payment(
    db: AsyncSession, ctx: deps.TenantContext, payment_id, reason: str, *, actor_id
) -> LoanPayment:
    payment = await get_payment(db, ctx, payment_id, for_update=True)
    if payment.reversed:
        raise ServiceError("Payment has already been reversed", code="already_reversed")
    if payment.status != PaymentStatus.APPROVED.value or not payment.applied:
        raise ServiceError("Only approved payments can be voided", code="payment_not_approved")

    loan = await loan_workflow.get_loan(db, ctx, payment.loan_id, for_update=True)
    rows = await loan_workflow.get_schedule_rows(db, ctx, loan.id)
    old_payment = model_snapshot(payment)
    old_loan = model_snapshot(loan)

    today = date.today()
    payment_allocation.apply_allocation(rows, _stored_lines(payment), -1, today)
    applied_amount = _q(payment.amount) - _q(payment.unapplied_amount)
    loan.total_paid = max(_q(loan.total_paid) - applied_amount, ZERO)
    loan_workflow.refresh_outstanding(loan, rows)

    if payment.journal_entry_id is not None:
        await ledger.post_reversal(
            db,
            ctx,
            payment.journal_entry_id,
            created_by=actor_id,
            memo=f"Void of repayment {payment.receipt_no}",
            entry_date=today,
        )

    payment.reversed = True
    payment.status = PaymentStatus.VOIDED.value
    payment.void_reason = reason
    payment.reversed_by = actor_id
    payment.reversed_at = datetime.now(timezone.utc)

    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="payment.voided",
        resource_type="loan_payment",
        resource_id=str(payment.id),
        old_value=old_payment,
        new_value=model_snapshot(payment),
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.payment_reversed",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_loan,
        new_value=model_snapshot(loan),
    )
    await db.commit()
    logger.info("Payment voided", extra={"payment_id": str(payment.id), "loan_id": str(loan.id)})
    await _publish(ctx, loan, payment, created=False)
    return payment


async def build_receipt(db: AsyncSession, ctx: deps.TenantContext, payment_id) -> ReceiptOut:
    payment = await get_payment(db, ctx, payment_id)
    loan = await loan_workflow.get_loan(db, ctx, payment.loan_id)
    borrower_name = (
        await db.execute(
            select(Borrower.name).where(Borrower.tenant_id == ctx.tenant_id, Borrower.id == loan.borrower_id)
        )
    ).scalar_one_or_none()
    return ReceiptOut(
        receipt_no=payment.receipt_no,
        payment_id=payment.id,
        loan_id=loan.id,
        loan_reference=loan.reference,
        borrower_name=borrower_name,
        amount=payment.amount,
        currency=loan.currency,
        payment_date=payment.payment_date,
        method=payment.method,
        status=payment.status,
        totals=_stored_totals(payment),
        unapplied=payment.unapplied_amount or ZERO,
        outstanding_after=loan.outstanding,
    )
