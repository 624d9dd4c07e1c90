from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import ServiceError
from microlend.models.account import Account
from microlend.models.ledger_entry import LedgerEntry
from microlend.schemas.accounting import (
    AccountType,
    CashFlowMonth,
    CashFlowResponse,
    ProfitAndLossResponse,
    ProfitAndLossRow,
    TrialBalanceResponse,
    TrialBalanceRow,
)
from microlend.services.loan_schedules import add_months

ZERO = Decimal("0.00")


def _d(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def build_trial_balance(as_of: date, rows: Iterable[tuple]) -> TrialBalanceResponse:
    """``rows`` are ``(account_id, code, name, type, debit, credit)`` sums per account."""
    report_rows: list[TrialBalanceRow] = []
    total_debit = total_credit = ZERO
    for account_id, code, name, account_type, debit, credit in rows:
        debit, credit = _d(debit), _d(credit)
        total_debit += debit
        total_credit += credit
        report_rows.append(
            TrialBalanceRow(
                account_id=account_id,
                code=code,
                name=name,
                type=account_type,
                debit=debit,
                credit=credit,
                balance=debit - credit,
            )
        )
    report_rows.sort(key=lambda row: row.code)
    return TrialBalanceResponse(as_of=as_of, rows=report_rows, total_debit=total_debit, total_credit=total_credit)


def build_profit_and_loss(start_date: date, end_date: date, rows: Iterable[tuple]) -> ProfitAndLossResponse:
    income: list[ProfitAndLossRow] = []
    expenses: list[ProfitAndLossRow] = []
    for account_id, code, name, account_type, debit, credit in rows:
        if account_type == AccountType.INCOME.value:
            income.append(
                ProfitAndLossRow(
                    account_id=account_id, code=code, name=name, type=account_type, amount=_d(credit) - _d(debit)
                )
            )
        elif account_type == AccountType.EXPENSE.value:
            expenses.append(
                ProfitAndLossRow(
                    account_id=account_id, code=code, name=name, type=account_type, amount=_d(debit) - _d(credit)
                )
            )
    income.sort(key=lambda row: row.code)
    expenses.sort(key=lambda row: row.code)
    total_income = sum((row.amount for row in income), ZERO)
    total_expenses = sum((row.amount for row in expenses), ZERO)
    return ProfitAndLossResponse(
        start_date=start_date,
        end_date=end_date,
        income=income,
        expenses=expenses,
        total_income=total_income,
        total_expenses=total_expenses,
        net=total_income - total_expenses,
    )


def month_keys(end_month: date, count: int = 12) -> list[str]:
    first = add_months(end_month.replace(day=1), -(count - 1))
    return [add_months(first, offset).strftime("%Y-%m") for offset in range(count)]


def build_cash_flow(end_month: date, rows: Iterable[tuple], count: int = 12) -> CashFlowResponse:
    """``rows`` are ``(YYYY-MM, debit, credit)`` sums over cash accounts."""
    sums = {month: (_d(debit), _d(credit)) for month, debit, credit in rows}
    months: list[CashFlowMonth] = []
    for key in month_keys(end_month, count):
        inflow, outflow = sums.get(key, (ZERO, ZERO))
        months.append(CashFlowMonth(month=key, inflow=inflow, outflow=outflow, net=inflow - outflow))
    return CashFlowResponse(
        months=months,
        total_inflow=sum((month.inflow for month in months), ZERO),
        total_outflow=sum((month.outflow for month in months), ZERO),
    )


def parse_month(value: str | None) -> date:
    if not value:
        return date.today().replace(day=1)
    try:
        year, month = value.split("-")
        return date(int(year), int(month), 1)
    except ValueError as exc:
        raise ServiceError("Month must be formatted as YYYY-MM", code="invalid_month") from exc


def _account_sums_stmt(tenant_id: str, *conditions):
    return (
        select(
            Account.id,
            Account.code,
            Account.name,
            Account.type,
            func.coalesce(func.sum(LedgerEntry.debit), 0),
            func.coalesce(func.sum(LedgerEntry.credit), 0),
        )
        .join(LedgerEntry, LedgerEntry.account_id == Account.id)
        .where(Account.tenant_id == tenant_id, LedgerEntry.tenant_id == tenant_id, *conditions)
        .group_by(Account.id, Account.code, Account.name, Account.type)
    )


async def trial_balance(db: AsyncSession, ctx: deps.TenantContext, as_of: date | None = None) -> TrialBalanceResponse:
    as_of = as_of or date.today()
    stmt = _account_sums_stmt(ctx.tenant_id, LedgerEntry.entry_date <= as_of)
    return build_trial_balance(as_of, (await db.execute(stmt)).all())


async def profit_and_loss(
    db: AsyncSession, ctx: deps.TenantContext, start_date: date, end_date: date
) -> ProfitAndLossResponse:
    if start_date > end_date:
        raise ServiceError("start_date must not be after end_date", code="invalid_date_range")
    stmt = _account_sums_stmt(
        ctx.tenant_id,
        LedgerEntry.entry_date >= start_date,
        LedgerEntry.entry_date <= end_date,
        Account.type.in_([AccountType.INCOME.value, AccountType.EXPENSE.value]),
    )
    return build_profit_and_loss(start_date, end_date, (await db.execute(stmt)).all())


async def cash_flow(db: AsyncSession, ctx: deps.TenantContext, month: str | None = None) -> CashFlowResponse:
    end_month = parse_month(month)
    start = add_months(end_month, -11)
    end_exclusive = add_months(end_month, 1)
    month_col = func.to_char(LedgerEntry.entry_date, "YYYY-MM")
    stmt = (
        select(
            month_col,
            func.coalesce(func.sum(LedgerEntry.debit), 0),
            func.coalesce(func.sum(LedgerEntry.credit), 0),
        )
        .join(Account, Account.id == LedgerEntry.account_id)
        .where(
            LedgerEntry.tenant_id == ctx.tenant_id,
            Account.type == AccountType.CASH.value,
            LedgerEntry.entry_date >= start,
            LedgerEntry.entry_date < end_exclusive,
        )
        .group_by(month_col)
    )
    return build_cash_flow(end_month, (await db.execute(stmt)).all())
