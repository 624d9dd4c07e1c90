from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from microlend.core.errors import ServiceError
from microlend.services import accounting_reports


def _row(code: str, name: str, account_type: str, debit: str, credit: str) -> tuple:
    return (uuid4(), code, name, account_type, Decimal(debit), Decimal(credit))


def test_trial_balance_sorts_and_totals() -> None:
    report = accounting_reports.build_trial_balance(
        date(2026, 3, 31),
        [
            _row("4000", "Interest Income", "income", "0", "60.00"),
            _row("1000", "Cash", "cash", "1060.00", "1000.00"),
            _row("1200", "Loan Portfolio", "asset", "1000.00", "1000.00"),
        ],
    )

    assert [row.code for row in report.rows] == ["1000", "1200", "4000"]
    assert report.rows[0].balance == Decimal("60.00")
    assert report.rows[1].balance == Decimal("0.00")
    assert report.rows[2].balance == Decimal("-60.00")
    assert report.total_debit == report.total_credit == Decimal("2060.00")


def test_profit_and_loss_signs() -> None:
    report = accounting_reports.build_profit_and_loss(
        date(2026, 1, 1),
        date(2026, 3, 31),
        [
            _row("4000", "Interest Income", "income", "5.00", "300.00"),
            _row("4100", "Fee Income", "income", "0", "45.00"),
            _row("5100", "Salaries Expense", "expense", "200.00", "0"),
            _row("1000", "Cash", "cash", "999.00", "0"),
        ],
    )

    assert [row.amount for row in report.income] == [Decimal("295.00"), Decimal("45.00")]
    assert report.total_expenses == Decimal("200.00")
    assert report.net == Decimal("140.00")


def test_month_keys_cross_year() -> None:
    assert accounting_reports.month_keys(date(2026, 2, 1), 4) == ["2025-11", "2025-12", "2026-01", "2026-02"]


def test_cash_flow_fills_empty_months() -> None:
    report = accounting_reports.build_cash_flow(
        date(2026, 3, 1),
        [("2026-01", Decimal("500"), Decimal("200")), ("2026-03", Decimal("0"), Decimal("50"))],
        count=3,
    )

    assert [month.month for month in report.months] == ["2026-01", "2026-02", "2026-03"]
    assert [month.net for month in report.months] == [Decimal("300"), Decimal("0.00"), Decimal("-50")]
    assert report.total_inflow == Decimal("500")
    assert report.total_outflow == Decimal("250")


def test_parse_month() -> None:
    assert accounting_reports.parse_month("2026-07") == date(2026, 7, 1)
    assert accounting_reports.parse_month(None) == date.today().replace(day=1)


@pytest.mark.parametrize("value", ["2026", "2026-13", "July"])
def test_parse_month_rejects_garbage(value) -> None:
    with pytest.raises(ServiceError) as exc:
        accounting_reports.parse_month(value)
    assert exc.value.code == "invalid_month"
