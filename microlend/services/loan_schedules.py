from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from microlend.models.loan import Loan
from microlend.models.loan_schedule import LoanSchedule
from microlend.schemas.loan import (
    InstallmentStatus,
    InterestMethod,
    LoanScheduleEntry,
    LoanSchedulePreviewRequest,
    LoanScheduleResponse,
    LoanScheduleTotals,
)

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _monthly_rate(rate_percent: Decimal) -> Decimal:
    return rate_percent / Decimal("100")


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def annuity_payment(principal: Decimal, rate_percent: Decimal, term_months: int) -> Decimal:
    if term_months <= 0:
        return ZERO
    rate = _monthly_rate(rate_percent)
    if rate == 0:
        return _q(principal / Decimal(term_months))
    payment = principal * rate / (Decimal("1") - (Decimal("1") + rate) ** -term_months)
    return _q(payment)


def build_schedule(
    *,
    principal,
    rate_percent,
    term_months: int,
    method: InterestMethod | str,
    start_date: date,
    fees=ZERO,
) -> list[LoanScheduleEntry]:
    """Amortize ``principal`` over ``term_months`` monthly installments.

    Rates are percent per month. The last installment absorbs rounding so the
    principal column sums to ``principal`` and the closing balance is zero. The
    whole loan fee is due with the first installment.
    """
    if term_months <= 0:
        raise ValueError("term_months must be >= 1")
    principal = _q(_as_decimal(principal))
    rate_percent = _as_decimal(rate_percent)
    fees = _q(_as_decimal(fees))
    method = InterestMethod(method)
    rate = _monthly_rate(rate_percent)

    entries: list[LoanScheduleEntry] = []
    balance = principal

    if method == InterestMethod.FLAT:
        principal_part = _q(principal / Decimal(term_months))
        interest_part = _q(principal * rate)
        for period in range(1, term_months + 1):
            principal_payment = balance if period == term_months else min(principal_part, balance)
            balance = balance - principal_payment
            entries.append(
                _entry(period, add_months(start_date, period), principal_payment, interest_part, fees, balance)
            )
    else:
        payment = annuity_payment(principal, rate_percent, term_months)
        for period in range(1, term_months + 1):
            interest = _q(balance * rate)
            if period == term_months:
                principal_payment = balance
            else:
                principal_payment = min(max(payment - interest, ZERO), balance)
            balance = balance - principal_payment
            entries.append(
                _entry(period, add_months(start_date, period), principal_payment, interest, fees, balance)
            )
    return entries


def _entry(
    period: int,
    due_date: date,
    principal: Decimal,
    interest: Decimal,
    loan_fees: Decimal,
    balance: Decimal,
) -> LoanScheduleEntry:
    fees = loan_fees if period == 1 else ZERO
    return LoanScheduleEntry(
        period=period,
        due_date=due_date,
        principal=_q(principal),
        interest=_q(interest),
        fees=fees,
        penalties=ZERO,
        total=_q(principal + interest + fees),
        balance=_q(balance),
    )


def schedule_totals(entries: Iterable) -> LoanScheduleTotals:
    principal = interest = fees = penalties = paid = ZERO
    for entry in entries:
        principal += _as_decimal(entry.principal)
        interest += _as_decimal(entry.interest)
        fees += _as_decimal(entry.fees)
        penalties += _as_decimal(entry.penalties)
        paid += (
            _as_decimal(getattr(entry, "principal_paid", ZERO))
            + _as_decimal(getattr(entry, "interest_paid", ZERO))
            + _as_decimal(getattr(entry, "fees_paid", ZERO))
            + _as_decimal(getattr(entry, "penalties_paid", ZERO))
        )
    return LoanScheduleTotals(
        principal=_q(principal),
        interest=_q(interest),
        fees=_q(fees),
        penalties=_q(penalties),
        total=_q(principal + interest + fees + penalties),
        paid=_q(paid),
    )


def preview_schedule(payload: LoanSchedulePreviewRequest) -> LoanScheduleResponse:
    start = payload.start_date or date.today()
    entries = build_schedule(
        principal=payload.amount,
        rate_percent=payload.interest_rate,
        term_months=payload.term_months,
        method=payload.interest_method,
        start_date=start,
        fees=payload.fees,
    )
    return LoanScheduleResponse(
        interest_method=payload.interest_method,
        interest_rate=payload.interest_rate,
        term_months=payload.term_months,
        start_date=start,
        entries=entries,
        totals=schedule_totals(entries),
    )


def rows_for_loan(loan: Loan) -> list[LoanSchedule]:
    entries = build_schedule(
        principal=loan.amount,
        rate_percent=loan.interest_rate,
        term_months=loan.term_months,
        method=loan.interest_method,
        start_date=loan.start_date,
        fees=loan.total_fees,
    )
    return [
        LoanSchedule(
            tenant_id=loan.tenant_id,
            loan_id=loan.id,
            period=entry.period,
            due_date=entry.due_date,
            principal=entry.principal,
            interest=entry.interest,
            fees=entry.fees,
            penalties=ZERO,
            total=entry.total,
            balance=entry.balance,
            principal_paid=ZERO,
            interest_paid=ZERO,
            fees_paid=ZERO,
            penalties_paid=ZERO,
            status=InstallmentStatus.UPCOMING.value,
        )
        for entry in entries
    ]


def response_for_loan(loan: Loan, rows: list[LoanSchedule]) -> LoanScheduleResponse:
    if rows:
        entries = [LoanScheduleEntry.model_validate(row) for row in sorted(rows, key=lambda r: r.period)]
    else:
        entries = build_schedule(
            principal=loan.amount,
            rate_percent=loan.interest_rate,
            term_months=loan.term_months,
            method=loan.interest_method,
            start_date=loan.start_date,
            fees=loan.total_fees,
        )
    return LoanScheduleResponse(
        loan_id=loan.id,
        interest_method=loan.interest_method,
        interest_rate=loan.interest_rate,
        term_months=loan.term_months,
        start_date=loan.start_date,
        entries=entries,
        totals=schedule_totals(entries),
    )
