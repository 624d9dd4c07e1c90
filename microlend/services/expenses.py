from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.models.expense import Expense
from microlend.schemas.accounting import AccountType
from microlend.schemas.expenses import ExpenseCreate, ExpenseStatus, ExpenseUpdate
from microlend.services import ledger
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

# Changing any of these re-posts the journal
_POSTING_FIELDS = ("amount", "date", "account_code")


def journal_lines(account_code: str, amount, category: str) -> list[ledger.CodedLine]:
    return [
        ledger.CodedLine(account_code, debit=amount, description=f"Expense: {category}"),
        ledger.CodedLine(ledger.CASH, credit=amount, description="Paid from cash"),
    ]


def _conditions(
    ctx: deps.TenantContext,
    *,
    search: str | None = None,
    category: str | None = None,
    vendor: str | None = None,
    status: str | None = None,
    branch_id=None,
    date_from: date | None = None,
    date_to: date | None = None,
    min_amount: Decimal | None = None,
    max_amount: Decimal | None = None,
) -> list:
    conditions = [Expense.tenant_id == ctx.tenant_id]
    branch_id = ctx.branch_id or branch_id
    if branch_id is not None:
        conditions.append(Expense.branch_id == branch_id)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(
                Expense.category.ilike(pattern),
                Expense.note.ilike(pattern),
                Expense.vendor.ilike(pattern),
                Expense.reference.ilike(pattern),
            )
        )
    if category:
        conditions.append(Expense.category == category.strip().upper())
    if vendor:
        conditions.append(Expense.vendor.ilike(f"%{vendor.strip()}%"))
    if status:
        conditions.append(Expense.status == status)
    if date_from is not None:
        conditions.append(Expense.date >= date_from)
    if date_to is not None:
        conditions.append(Expense.date <= date_to)
    if min_amount is not None:
        conditions.append(Expense.amount >= min_amount)
    if max_amount is not None:
        conditions.append(Expense.amount <= max_amount)
    return conditions


async def get_expense(db: AsyncSession, ctx: deps.TenantContext, expense_id, *, for_update: bool = False) -> Expense:
    stmt = select(Expense).where(Expense.tenant_id == ctx.tenant_id, Expense.id == expense_id)
    if for_update:
        stmt = stmt.with_for_update()
    expense = (await db.execute(stmt)).scalar_one_or_none()
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


async def list_expenses(
    db: AsyncSession, ctx: deps.TenantContext, *, offset: int = 0, limit: int = 50, **filters
) -> tuple[list[Expense], int]:
    conditions = _conditions(ctx, **filters)
    total = (await db.execute(select(func.count()).select_from(Expense).where(*conditions))).scalar_one()
    stmt = (
        select(Expense)
        .where(*conditions)
        .order_by(Expense.date.desc(), Expense.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def export_expenses(db: AsyncSession, ctx: deps.TenantContext, **filters) -> list[Expense]:
    stmt = select(Expense).where(*_conditions(ctx, **filters)).order_by(Expense.date.desc(), Expense.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def _ensure_expense_account(db: AsyncSession, ctx: deps.TenantContext, code: str) -> None:
    account = await ledger.get_account_by_code(db, ctx.tenant_id, code)
    if account.type != AccountType.EXPENSE.value or not account.is_active:
        raise ServiceError(
            f"Account {code} is not an active expense account",
            code="invalid_expense_account",
            details={"code": code},
        )


async def _post(db: AsyncSession, ctx: deps.TenantContext, expense: Expense, *, actor_id) -> None:
    journal = await ledger.post_coded_journal(
        db,
        ctx,
        journal_lines(expense.account_code, expense.amount, expense.category),
        entry_date=expense.date,
        memo=f"Expense {expense.category}" + (f" to {expense.vendor}" if expense.vendor else ""),
        source_type="expense",
        source_id=str(expense.id),
        created_by=actor_id,
    )
    expense.journal_entry_id = journal.id


async def create_expense(
    db: AsyncSession, ctx: deps.TenantContext, payload: ExpenseCreate, *, actor_id
) -> Expense:
    account_code = payload.account_code or ledger.OPERATING_EXPENSES
    await _ensure_expense_account(db, ctx, account_code)
    expense = Expense(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id or ctx.branch_id,
        date=payload.date or date.today(),
        category=payload.category,
        vendor=payload.vendor,
        reference=payload.reference,
        amount=payload.amount,
        note=payload.note,
        account_code=account_code,
        status=ExpenseStatus.POSTED.value,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(expense)
    await db.flush()
    await _post(db, ctx, expense, actor_id=actor_id)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="expense.created",
        resource_type="expense",
        resource_id=str(expense.id),
        new_value=model_snapshot(expense),
    )
    await db.commit()
    await db.refresh(expense)
    logger.info("Expense recorded", extra={"expense_id": str(expense.id), "amount": str(expense.amount)})
    return expense


async def update_expense(
    db: AsyncSession, ctx: deps.TenantContext, expense_id, payload: ExpenseUpdate, *, actor_id
) -> Expense:
    expense = await get_expense(db, ctx, expense_id, for_update=True)
    if expense.status == ExpenseStatus.VOID.value:
        raise ServiceError("Voided expenses cannot be edited", code="expense_void")
    updates = {field: value for field, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    if "account_code" in updates:
        await _ensure_expense_account(db, ctx, updates["account_code"])

    old_snapshot = model_snapshot(expense)
    repost = any(field in updates and updates[field] != getattr(expense, field) for field in _POSTING_FIELDS)
    for field, value in updates.items():
        setattr(expense, field, value)
    expense.updated_by = actor_id

    if repost:
        if expense.journal_entry_id is not None:
            await ledger.post_reversal(
                db,
                ctx,
                expense.journal_entry_id,
                created_by=actor_id,
                memo=f"Correction of expense {expense.id}",
            )
        await _post(db, ctx, expense, actor_id=actor_id)

    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="expense.updated",
        resource_type="expense",
        resource_id=str(expense.id),
        old_value=old_snapshot,
        new_value=model_snapshot(expense),
    )
    await db.commit()
    await db.refresh(expense)
    logger.info("Expense updated", extra={"expense_id": str(expense.id), "reposted": repost})
    return expense


async def void_expense(
    db: AsyncSession, ctx: deps.TenantContext, expense_id, reason: str, *, actor_id
) -> Expense:
    """Void an expense and reverse its journal; the row is kept for the audit trail."""
    expense = await get_expense(db, ctx, expense_id, for_update=True)
    if expense.status == ExpenseStatus.VOID.value:
        raise InvalidTransition("expense", expense.status, ExpenseStatus.VOID.value)
    old_snapshot = model_snapshot(expense)
    if expense.journal_entry_id is not None:
        await ledger.post_reversal(
            db,
            ctx,
            expense.journal_entry_id,
            created_by=actor_id,
            memo=f"Void of expense {expense.id}",
        )
    expense.status = ExpenseStatus.VOID.value
    expense.void_reason = reason
    expense.voided_by = actor_id
    expense.voided_at = datetime.now(timezone.utc)
    expense.updated_by = actor_id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="expense.voided",
        resource_type="expense",
        resource_id=str(expense.id),
        old_value=old_snapshot,
        new_value=model_snapshot(expense),
    )
    await db.commit()
    await db.refresh(expense)
    logger.info("Expense voided", extra={"expense_id": str(expense.id)})
    return expense
