from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import NotFoundError, ServiceError
from microlend.models.savings_transaction import SavingsTransaction
from microlend.models.user import User
from microlend.schemas.savings import (
    SavingsBalance,
    SavingsStatement,
    SavingsStatementLine,
    SavingsStatus,
    SavingsTransactionCreate,
    SavingsType,
    StaffReportResponse,
    StaffReportRow,
)
from microlend.services import event_stream, ledger
from microlend.services.audit import model_snapshot, record_audit_log
from microlend.services.borrowers import get_borrower

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# sign applied to the balance for each transaction type
BALANCE_SIGN = {
    SavingsType.DEPOSIT.value: 1,
    SavingsType.INTEREST.value: 1,
    SavingsType.WITHDRAWAL.value: -1,
    SavingsType.CHARGE.value: -1,
}

JOURNAL_ACCOUNTS = {
    SavingsType.DEPOSIT.value: (ledger.CASH, ledger.SAVINGS_DEPOSITS),
    SavingsType.WITHDRAWAL.value: (ledger.SAVINGS_DEPOSITS, ledger.CASH),
    SavingsType.CHARGE.value: (ledger.SAVINGS_DEPOSITS, ledger.FEE_INCOME),
    SavingsType.INTEREST.value: (ledger.INTEREST_EXPENSE, ledger.SAVINGS_DEPOSITS),
}


def _d(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def balance_from_totals(borrower_id, totals: dict[str, Decimal]) -> SavingsBalance:
    deposits = _d(totals.get(SavingsType.DEPOSIT.value))
    withdrawals = _d(totals.get(SavingsType.WITHDRAWAL.value))
    charges = _d(totals.get(SavingsType.CHARGE.value))
    interest = _d(totals.get(SavingsType.INTEREST.value))
    return SavingsBalance(
        borrower_id=borrower_id,
        deposits=deposits,
        withdrawals=withdrawals,
        charges=charges,
        interest=interest,
        balance=deposits + interest - withdrawals - charges,
    )


def counts_toward_balance(txn) -> bool:
    return txn.status == SavingsStatus.APPROVED.value and not txn.reversed


def compute_balance(transactions: Iterable) -> Decimal:
    """Balance over approved, non-reversed transactions."""
    total = ZERO
    for txn in transactions:
        if counts_toward_balance(txn):
            total += BALANCE_SIGN[txn.type] * _d(txn.amount)
    return total


def build_statement(borrower_id, transactions: Iterable, opening_balance: Decimal = ZERO) -> SavingsStatement:
    running = _d(opening_balance)
    lines: list[SavingsStatementLine] = []
    for txn in sorted(transactions, key=lambda t: (t.date, t.created_at or datetime.min.replace(tzinfo=timezone.utc))):
        if not counts_toward_balance(txn):
            continue
        running += BALANCE_SIGN[txn.type] * _d(txn.amount)
        lines.append(
            SavingsStatementLine(
                id=txn.id,
                date=txn.date,
                type=txn.type,
                amount=_d(txn.amount),
                reference=txn.reference,
                running_balance=running,
            )
        )
    return SavingsStatement(
        borrower_id=borrower_id,
        opening_balance=_d(opening_balance),
        closing_balance=running,
        lines=lines,
    )


def journal_lines(txn_type: str, amount) -> list[ledger.CodedLine]:
    debit_code, credit_code = JOURNAL_ACCOUNTS[txn_type]
    description = f"Savings {txn_type}"
    return [
        ledger.CodedLine(debit_code, debit=_d(amount), description=description),
        ledger.CodedLine(credit_code, credit=_d(amount), description=description),
    ]


async def borrower_balance(
    db: AsyncSession, ctx: deps.TenantContext, borrower_id, *, before: date | None = None
) -> SavingsBalance:
    conditions = [
        SavingsTransaction.tenant_id == ctx.tenant_id,
        SavingsTransaction.borrower_id == borrower_id,
        SavingsTransaction.status == SavingsStatus.APPROVED.value,
        SavingsTransaction.reversed.is_(False),
    ]
    if before is not None:
        conditions.append(SavingsTransaction.date < before)
    stmt = (
        select(SavingsTransaction.type, func.coalesce(func.sum(SavingsTransaction.amount), 0))
        .where(*conditions)
        .group_by(SavingsTransaction.type)
    )
    totals = {txn_type: _d(amount) for txn_type, amount in (await db.execute(stmt)).all()}
    return balance_from_totals(borrower_id, totals)


async def _ensure_funds(db: AsyncSession, ctx: deps.TenantContext, borrower_id, amount) -> None:
    current = await borrower_balance(db, ctx, borrower_id)
    if _d(amount) > current.balance:
        raise ServiceError(
            "Insufficient savings balance",
            code="insufficient_balance",
            details={"balance": str(current.balance), "requested": str(amount)},
        )


async def get_transaction(db: AsyncSession, ctx: deps.TenantContext, txn_id, *, for_update: bool = False) -> SavingsTransaction:
    stmt = select(SavingsTransaction).where(
        SavingsTransaction.tenant_id == ctx.tenant_id, SavingsTransaction.id == txn_id
    )
    if for_update:
        stmt = stmt.with_for_update()
    txn = (await db.execute(stmt)).scalar_one_or_none()
    if txn is None:
        raise NotFoundError("Savings transaction not found")
    return txn


async def list_transactions(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    borrower_id=None,
    txn_type: str | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[SavingsTransaction], int]:
    conditions = [SavingsTransaction.tenant_id == ctx.tenant_id]
    if ctx.branch_id is not None:
        conditions.append(SavingsTransaction.branch_id == ctx.branch_id)
    if borrower_id:
        conditions.append(SavingsTransaction.borrower_id == borrower_id)
    if txn_type:
        conditions.append(SavingsTransaction.type == txn_type)
    if status:
        conditions.append(SavingsTransaction.status == status)
    if start_date:
        conditions.append(SavingsTransaction.date >= start_date)
    if end_date:
        conditions.append(SavingsTransaction.date <= end_date)
    total = (
        await db.execute(select(func.count()).select_from(SavingsTransaction).where(*conditions))
    ).scalar_one()
    stmt = (
        select(SavingsTransaction)
        .where(*conditions)
        .order_by(SavingsTransaction.date.desc(), SavingsTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def _publish(ctx: deps.TenantContext, txn: SavingsTransaction, action: str) -> None:
    await event_stream.publish(
        ctx.tenant_id,
        event_stream.SAVINGS_CHANGED,
        {"id": str(txn.id), "borrower_id": str(txn.borrower_id), "status": txn.status, "action": action},
    )


async def create_transaction(
    db: AsyncSession, ctx: deps.TenantContext, payload: SavingsTransactionCreate, *, actor_id
) -> SavingsTransaction:
    borrower = await get_borrower(db, ctx, payload.borrower_id)
    if BALANCE_SIGN[payload.type] < 0:
        await _ensure_funds(db, ctx, borrower.id, payload.amount)

    txn = SavingsTransaction(
        tenant_id=ctx.tenant_id,
        branch_id=borrower.branch_id or ctx.branch_id,
        borrower_id=borrower.id,
        type=payload.type,
        amount=payload.amount,
        date=payload.date or date.today(),
        reference=payload.reference,
        notes=payload.notes,
        status=SavingsStatus.PENDING.value,
        reversed=False,
        created_by=actor_id,
    )
    db.add(txn)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="savings.created",
        resource_type="savings_transaction",
        resource_id=str(txn.id),
        new_value=model_snapshot(txn),
    )
    await db.commit()
    logger.info("Savings transaction created", extra={"txn_id": str(txn.id), "type": txn.type})
    await _publish(ctx, txn, "created")
    return txn


async def approve_transaction(
    db: AsyncSession, ctx: deps.TenantContext, txn_id, comment: str, *, actor_id
) -> SavingsTransaction:
    txn = await get_transaction(db, ctx, txn_id, for_update=True)
    if txn.status != SavingsStatus.PENDING.value:
        raise ServiceError("Only pending transactions can be approved", code="transaction_not_pending")
    if BALANCE_SIGN[txn.type] < 0:
        await _ensure_funds(db, ctx, txn.borrower_id, txn.amount)

    old_snapshot = model_snapshot(txn)
    txn.status = SavingsStatus.APPROVED.value
    txn.approved_by = actor_id
    txn.approved_at = datetime.now(timezone.utc)
    txn.approval_comment = comment
    journal = await ledger.post_coded_journal(
        db,
        ctx,
        journal_lines(txn.type, txn.amount),
        entry_date=txn.date,
        memo=f"Savings {txn.type} {txn.reference or txn.id}",
        source_type="savings_transaction",
        source_id=str(txn.id),
        created_by=actor_id,
    )
    txn.journal_entry_id = journal.id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="savings.approved",
        resource_type="savings_transaction",
        resource_id=str(txn.id),
        old_value=old_snapshot,
        new_value=model_snapshot(txn),
    )
    await db.commit()
    logger.info("Savings transaction approved", extra={"txn_id": str(txn.id)})
    await _publish(ctx, txn, "approved")
    return txn


async def reject_transaction(
    db: AsyncSession, ctx: deps.TenantContext, txn_id, comment: str, *, actor_id
) -> SavingsTransaction:
    txn = await get_transaction(db, ctx, txn_id, for_update=True)
    if txn.status != SavingsStatus.PENDING.value:
        raise ServiceError("Only pending transactions can be rejected", code="transaction_not_pending")
    old_snapshot = model_snapshot(txn)
    txn.status = SavingsStatus.REJECTED.value
    txn.approved_by = actor_id
    txn.approved_at = datetime.now(timezone.utc)
    txn.approval_comment = comment
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="savings.rejected",
        resource_type="savings_transaction",
        resource_id=str(txn.id),
        old_value=old_snapshot,
        new_value=model_snapshot(txn),
    )
    await db.commit()
    logger.info("Savings transaction rejected", extra={"txn_id": str(txn.id)})
    await _publish(ctx, txn, "rejected")
    return txn


async def reverse_transaction(
    db: AsyncSession, ctx: deps.TenantContext, txn_id, *, actor_id
) -> SavingsTransaction:
    txn = await get_transaction(db, ctx, txn_id, for_update=True)
    if txn.reversed:
        return txn
    if txn.status != SavingsStatus.APPROVED.value:
        raise ServiceError("Only approved transactions can be reversed", code="transaction_not_approved")
    if BALANCE_SIGN[txn.type] > 0:
        current = await borrower_balance(db, ctx, txn.borrower_id)
        if current.balance - _d(txn.amount) < 0:
            raise ServiceError(
                "Reversal would make the savings balance negative",
                code="insufficient_balance",
                details={"balance": str(current.balance), "amount": str(txn.amount)},
            )

    old_snapshot = model_snapshot(txn)
    if txn.journal_entry_id is not None:
        await ledger.post_reversal(
            db,
            ctx,
            txn.journal_entry_id,
            created_by=actor_id,
            memo=f"Reversal of savings {txn.type} {txn.reference or txn.id}",
        )
    txn.reversed = True
    txn.reversed_by = actor_id
    txn.reversed_at = datetime.now(timezone.utc)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="savings.reversed",
        resource_type="savings_transaction",
        resource_id=str(txn.id),
        old_value=old_snapshot,
        new_value=model_snapshot(txn),
    )
    await db.commit()
    logger.info("Savings transaction reversed", extra={"txn_id": str(txn.id)})
    await _publish(ctx, txn, "reversed")
    return txn


async def statement(
    db: AsyncSession,
    ctx: deps.TenantContext,
    borrower_id,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> SavingsStatement:
    await get_borrower(db, ctx, borrower_id)
    opening = ZERO
    if start_date is not None:
        opening = (await borrower_balance(db, ctx, borrower_id, before=start_date)).balance
    conditions = [
        SavingsTransaction.tenant_id == ctx.tenant_id,
        SavingsTransaction.borrower_id == borrower_id,
        SavingsTransaction.status == SavingsStatus.APPROVED.value,
        SavingsTransaction.reversed.is_(False),
    ]
    if start_date:
        conditions.append(SavingsTransaction.date >= start_date)
    if end_date:
        conditions.append(SavingsTransaction.date <= end_date)
    stmt = select(SavingsTransaction).where(*conditions).order_by(
        SavingsTransaction.date, SavingsTransaction.created_at
    )
    transactions = list((await db.execute(stmt)).scalars().all())
    return build_statement(borrower_id, transactions, opening)


def fold_staff_rows(rows: Iterable[tuple]) -> list[StaffReportRow]:
    """Fold ``(staff_id, staff_name, type, count, amount)`` tuples into one row per staff member."""
    by_staff: dict = {}
    for staff_id, staff_name, txn_type, count, amount in rows:
        report = by_staff.get(staff_id)
        if report is None:
            report = by_staff[staff_id] = StaffReportRow(staff_id=staff_id, staff_name=staff_name)
        prefix = {
            SavingsType.DEPOSIT.value: "deposits",
            SavingsType.WITHDRAWAL.value: "withdrawals",
            SavingsType.CHARGE.value: "charges",
            SavingsType.INTEREST.value: "interest",
        }[txn_type]
        setattr(report, f"{prefix}_count", int(count or 0))
        setattr(report, f"{prefix}_amount", _d(amount))
    return sorted(by_staff.values(), key=lambda row: (row.staff_name or "", str(row.staff_id)))


async def staff_report(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> StaffReportResponse:
    conditions = [
        SavingsTransaction.tenant_id == ctx.tenant_id,
        SavingsTransaction.status == SavingsStatus.APPROVED.value,
        SavingsTransaction.reversed.is_(False),
    ]
    if ctx.branch_id is not None:
        conditions.append(SavingsTransaction.branch_id == ctx.branch_id)
    if start_date:
        conditions.append(SavingsTransaction.date >= start_date)
    if end_date:
        conditions.append(SavingsTransaction.date <= end_date)
    stmt = (
        select(
            SavingsTransaction.created_by,
            User.full_name,
            SavingsTransaction.type,
            func.count(SavingsTransaction.id),
            func.coalesce(func.sum(SavingsTransaction.amount), 0),
        )
        .outerjoin(User, User.id == SavingsTransaction.created_by)
        .where(*conditions)
        .group_by(SavingsTransaction.created_by, User.full_name, SavingsTransaction.type)
    )
    rows = (await db.execute(stmt)).all()
    return StaffReportResponse(start_date=start_date, end_date=end_date, rows=fold_staff_rows(rows))
