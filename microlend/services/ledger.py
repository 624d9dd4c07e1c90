from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from microlend.api import deps
from microlend.core.errors import ConflictError, NotFoundError, ServiceError
from microlend.models.account import Account
from microlend.models.journal_entry import JournalEntry
from microlend.models.ledger_entry import LedgerEntry
from microlend.schemas.accounting import AccountCreate, JournalCreate
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

CASH = "1000"
BANK = "1010"
LOAN_PORTFOLIO = "1200"
SAVINGS_DEPOSITS = "2000"
BORROWER_OVERPAYMENTS = "2100"
PAYROLL_PAYABLE = "2200"
RETAINED_EARNINGS = "3000"
INTEREST_INCOME = "4000"
FEE_INCOME = "4100"
PENALTY_INCOME = "4200"
INTEREST_EXPENSE = "5000"
SALARIES_EXPENSE = "5100"
OPERATING_EXPENSES = "5200"

DEFAULT_CHART: tuple[tuple[str, str, str], ...] = (
    (CASH, "Cash", "cash"),
    (BANK, "Bank", "cash"),
    (LOAN_PORTFOLIO, "Loan Portfolio", "asset"),
    (SAVINGS_DEPOSITS, "Savings Deposits", "liability"),
    (BORROWER_OVERPAYMENTS, "Borrower Overpayments", "liability"),
    (PAYROLL_PAYABLE, "Payroll Payable", "liability"),
    (RETAINED_EARNINGS, "Retained Earnings", "equity"),
    (INTEREST_INCOME, "Interest Income", "income"),
    (FEE_INCOME, "Fee Income", "income"),
    (PENALTY_INCOME, "Penalty Income", "income"),
    (INTEREST_EXPENSE, "Interest Expense", "expense"),
    (SALARIES_EXPENSE, "Salaries Expense", "expense"),
    (OPERATING_EXPENSES, "Operating Expenses", "expense"),
)


@dataclass(slots=True)
class JournalLine:
    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


@dataclass(slots=True)
class CodedLine:
    """A journal line addressed by chart code instead of account id."""

    code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


def _q(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value or 0))
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def validate_lines(lines: Sequence[JournalLine]) -> tuple[Decimal, Decimal]:
    """Check the double-entry rules and return ``(total_debit, total_credit)``."""
    if len(lines) < 2:
        raise ServiceError("A journal needs at least two lines", code="unbalanced_journal")
    total_debit = ZERO
    total_credit = ZERO
    for index, line in enumerate(lines, start=1):
        debit = _q(line.debit)
        credit = _q(line.credit)
        if debit < 0 or credit < 0:
            raise ServiceError(
                f"Line {index}: amounts cannot be negative",
                code="invalid_ledger_line",
                details={"line": index},
            )
        if (debit > 0) == (credit > 0):
            raise ServiceError(
                f"Line {index}: exactly one of debit or credit must be positive",
                code="invalid_ledger_line",
                details={"line": index},
            )
        total_debit += debit
        total_credit += credit
    if total_debit != total_credit:
        raise ServiceError(
            "Journal is not balanced",
            code="unbalanced_journal",
            details={"total_debit": str(total_debit), "total_credit": str(total_credit)},
        )
    return total_debit, total_credit


def swap_lines(lines: Iterable) -> list[JournalLine]:
    return [
        JournalLine(
            account_id=line.account_id,
            debit=_q(line.credit),
            credit=_q(line.debit),
            description=line.description,
        )
        for line in lines
    ]


async def seed_chart_of_accounts(db: AsyncSession, tenant_id: str) -> list[Account]:
    existing_stmt = select(Account.code).where(Account.tenant_id == tenant_id)
    existing = {row[0] for row in (await db.execute(existing_stmt)).all()}
    created: list[Account] = []
    for code, name, account_type in DEFAULT_CHART:
        if code in existing:
            continue
        account = Account(tenant_id=tenant_id, code=code, name=name, type=account_type, is_active=True)
        db.add(account)
        created.append(account)
    if created:
        await db.flush()
    return created


async def get_account_by_code(db: AsyncSession, tenant_id: str, code: str) -> Account:
    stmt = select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
    account = (await db.execute(stmt)).scalar_one_or_none()
    if account is None:
        raise ServiceError(
            f"Ledger account {code} is not configured for this tenant",
            code="account_missing",
            details={"code": code},
        )
    return account


async def _resolve_accounts(db: AsyncSession, tenant_id: str, lines: Sequence[JournalLine]) -> None:
    account_ids = {line.account_id for line in lines}
    stmt = select(Account).where(Account.tenant_id == tenant_id, Account.id.in_(account_ids))
    accounts = {account.id: account for account in (await db.execute(stmt)).scalars().all()}
    for index, line in enumerate(lines, start=1):
        account = accounts.get(line.account_id)
        if account is None or not account.is_active:
            raise ServiceError(
                f"Line {index}: account is unknown or inactive",
                code="invalid_ledger_line",
                details={"line": index, "account_id": str(line.account_id)},
            )


async def post_journal(
    db: AsyncSession,
    ctx: deps.TenantContext,
    lines: Sequence[JournalLine],
    *,
    entry_date: date | None = None,
    memo: str | None = None,
    source_type: str = "manual",
    source_id: str | None = None,
    created_by=None,
    reverses_id=None,
) -> JournalEntry:
    """Validate and stage a journal on the session; the caller commits."""
    validate_lines(lines)
    await _resolve_accounts(db, ctx.tenant_id, lines)
    entry_date = entry_date or date.today()
    journal = JournalEntry(
        tenant_id=ctx.tenant_id,
        entry_date=entry_date,
        memo=memo,
        source_type=source_type,
        source_id=str(source_id) if source_id is not None else None,
        reverses_id=reverses_id,
        created_by=created_by,
    )
    journal.lines = [
        LedgerEntry(
            tenant_id=ctx.tenant_id,
            account_id=line.account_id,
            line_no=index,
            entry_date=entry_date,
            debit=_q(line.debit),
            credit=_q(line.credit),
            description=line.description,
        )
        for index, line in enumerate(lines, start=1)
    ]
    db.add(journal)
    await db.flush()
    return journal


async def post_coded_journal(
    db: AsyncSession,
    ctx: deps.TenantContext,
    lines: Sequence[CodedLine],
    **kwargs,
) -> JournalEntry:
    """Post a system journal from chart codes, dropping zero-amount lines."""
    resolved: list[JournalLine] = []
    cache: dict[str, Account] = {}
    for line in lines:
        if _q(line.debit) == 0 and _q(line.credit) == 0:
            continue
        if line.code not in cache:
            cache[line.code] = await get_account_by_code(db, ctx.tenant_id, line.code)
        resolved.append(
            JournalLine(
                account_id=cache[line.code].id,
                debit=_q(line.debit),
                credit=_q(line.credit),
                description=line.description,
            )
        )
    return await post_journal(db, ctx, resolved, **kwargs)


async def get_journal(db: AsyncSession, ctx: deps.TenantContext, journal_id) -> JournalEntry:
    stmt = (
        select(JournalEntry)
        .options(selectinload(JournalEntry.lines))
        .where(JournalEntry.tenant_id == ctx.tenant_id, JournalEntry.id == journal_id)
    )
    journal = (await db.execute(stmt)).scalar_one_or_none()
    if journal is None:
        raise NotFoundError("Journal entry not found")
    return journal


async def post_reversal(
    db: AsyncSession,
    ctx: deps.TenantContext,
    journal_id,
    *,
    created_by=None,
    memo: str | None = None,
    entry_date: date | None = None,
) -> JournalEntry:
    """Stage the mirror image of a journal; a journal can be reversed once."""
    original = await get_journal(db, ctx, journal_id)
    existing_stmt = select(JournalEntry.id).where(
        JournalEntry.tenant_id == ctx.tenant_id, JournalEntry.reverses_id == original.id
    )
    if (await db.execute(existing_stmt)).scalar_one_or_none() is not None:
        raise ConflictError("Journal has already been reversed", code="already_reversed")
    return await post_journal(
        db,
        ctx,
        swap_lines(original.lines),
        entry_date=entry_date,
        memo=memo or f"Reversal of journal {original.id}",
        source_type=original.source_type,
        source_id=original.source_id,
        created_by=created_by,
        reverses_id=original.id,
    )


async def create_manual_journal(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: JournalCreate,
    *,
    actor_id,
) -> JournalEntry:
    lines = [
        JournalLine(
            account_id=line.account_id,
            debit=line.debit,
            credit=line.credit,
            description=line.description,
        )
        for line in payload.lines
    ]
    journal = await post_journal(
        db,
        ctx,
        lines,
        entry_date=payload.entry_date,
        memo=payload.memo,
        source_type="manual",
        created_by=actor_id,
    )
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="journal.posted",
        resource_type="journal_entry",
        resource_id=str(journal.id),
        new_value={"memo": journal.memo, "lines": len(lines), "entry_date": journal.entry_date},
    )
    await db.commit()
    logger.info("Manual journal posted", extra={"journal_id": str(journal.id), "lines": len(lines)})
    return journal


async def reverse_journal(
    db: AsyncSession,
    ctx: deps.TenantContext,
    journal_id,
    *,
    actor_id,
) -> JournalEntry:
    reversal = await post_reversal(db, ctx, journal_id, created_by=actor_id)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="journal.reversed",
        resource_type="journal_entry",
        resource_id=str(journal_id),
        new_value={"reversal_id": reversal.id},
    )
    await db.commit()
    logger.info(
        "Journal reversed",
        extra={"journal_id": str(journal_id), "reversal_id": str(reversal.id)},
    )
    return reversal


async def list_journals(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    source_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[JournalEntry], int]:
    conditions = [JournalEntry.tenant_id == ctx.tenant_id]
    if start_date:
        conditions.append(JournalEntry.entry_date >= start_date)
    if end_date:
        conditions.append(JournalEntry.entry_date <= end_date)
    if source_type:
        conditions.append(JournalEntry.source_type == source_type)
    total = (
        await db.execute(select(func.count()).select_from(JournalEntry).where(*conditions))
    ).scalar_one()
    stmt = (
        select(JournalEntry)
        .options(selectinload(JournalEntry.lines))
        .where(*conditions)
        .order_by(JournalEntry.entry_date.desc(), JournalEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def list_accounts(db: AsyncSession, ctx: deps.TenantContext) -> list[Account]:
    stmt = select(Account).where(Account.tenant_id == ctx.tenant_id).order_by(Account.code)
    return list((await db.execute(stmt)).scalars().all())


async def create_account(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: AccountCreate,
    *,
    actor_id,
) -> Account:
    duplicate_stmt = select(Account.id).where(
        Account.tenant_id == ctx.tenant_id, Account.code == payload.code
    )
    if (await db.execute(duplicate_stmt)).scalar_one_or_none() is not None:
        raise ConflictError("Account code already exists", code="account_exists")
    if payload.parent_id is not None:
        parent_stmt = select(Account.id).where(
            Account.tenant_id == ctx.tenant_id, Account.id == payload.parent_id
        )
        if (await db.execute(parent_stmt)).scalar_one_or_none() is None:
            raise NotFoundError("Parent account not found")
    account = Account(
        tenant_id=ctx.tenant_id,
        code=payload.code,
        name=payload.name,
        type=payload.type,
        parent_id=payload.parent_id,
        is_active=True,
    )
    db.add(account)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="account.created",
        resource_type="account",
        resource_id=str(account.id),
        new_value=model_snapshot(account),
    )
    await db.commit()
    return account
