from datetime import date
from decimal import Decimal

import pytest

from microlend.schemas.loan import InterestMethod, LoanSchedulePreviewRequest
from microlend.services import loan_schedules
from conftest import make_loan


def test_add_months_clamps_to_month_end() -> None:
    assert loan_schedules.add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert loan_schedules.add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert loan_schedules.add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)
    assert loan_schedules.add_months(date(2026, 1, 15), -1) == date(2025, 12, 15)


def test_flat_schedule_spreads_principal_and_fixes_interest() -> None:
    entries = loan_schedules.build_schedule(
        principal=Decimal("1000"),
        rate_percent=Decimal("2"),
        term_months=3,
        method=InterestMethod.FLAT,
        start_date=date(2026, 1, 15),
    )

    assert [entry.period for entry in entries] == [1, 2, 3]
    assert [entry.due_date for entry in entries] == [date(2026, 2, 15), date(2026, 3, 15), date(2026, 4, 15)]
    assert [entry.principal for entry in entries] == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
    assert all(entry.interest == Decimal("20.00") for entry in entries)
    assert entries[-1].balance == Decimal("0.00")


def test_flat_schedule_last_installment_absorbs_rounding_up() -> None:
    entries = loan_schedules.build_schedule(
        principal=Decimal("200"),
        rate_percent=Decimal("0"),
        term_months=3,
        method=InterestMethod.FLAT,
        start_date=date(2026, 1, 15),
    )

    assert [entry.principal for entry in entries] == [Decimal("66.67"), Decimal("66.67"), Decimal("66.66")]
    assert [entry.balance for entry in entries] == [Decimal("133.33"), Decimal("66.66"), Decimal("0.00")]
    assert sum(entry.principal for entry in entries) == Decimal("200.00")


def test_reducing_schedule_closes_at_zero() -> None:
    entries = loan_schedules.build_schedule(
        principal="1200",
        rate_percent="1",
        term_months=12,
        method="reducing",
        start_date=date(2026, 3, 1),
    )

    assert sum(entry.principal for entry in entries) == Decimal("1200.00")
    assert entries[-1].balance == Decimal("0.00")
    # interest shrinks with the balance
    assert entries[0].interest == Decimal("12.00")
    assert entries[0].interest > entries[-1].interest
    for earlier, later in zip(entries, entries[1:]):
        assert later.balance < earlier.balance


def test_reducing_schedule_with_zero_rate_is_even() -> None:
    entries = loan_schedules.build_schedule(
        principal="1000",
        rate_percent="0",
        term_months=4,
        method="reducing",
        start_date=date(2026, 1, 1),
    )

    assert [entry.principal for entry in entries] == [Decimal("250.00")] * 4
    assert all(entry.interest == Decimal("0.00") for entry in entries)


def test_annuity_payment() -> None:
    assert loan_schedules.annuity_payment(Decimal("1000"), Decimal("0"), 4) == Decimal("250.00")
    assert loan_schedules.annuity_payment(Decimal("1000"), Decimal("1"), 12) == Decimal("88.85")
    assert loan_schedules.annuity_payment(Decimal("1000"), Decimal("1"), 0) == Decimal("0.00")


def test_fees_are_due_with_first_installment() -> None:
    entries = loan_schedules.build_schedule(
        principal="1000",
        rate_percent="2",
        term_months=3,
        method="flat",
        start_date=date(2026, 1, 15),
        fees="50",
    )

    assert entries[0].fees == Decimal("50.00")
    assert entries[0].total == Decimal("403.33")
    assert all(entry.fees == Decimal("0.00") for entry in entries[1:])


def test_zero_term_is_rejected() -> None:
    with pytest.raises(ValueError):
        loan_schedules.build_schedule(
            principal="100", rate_percent="1", term_months=0, method="flat", start_date=date(2026, 1, 1)
        )


def test_preview_totals() -> None:
    payload = LoanSchedulePreviewRequest(
        amount=Decimal("1000"),
        term_months=3,
        interest_rate=Decimal("2"),
        interest_method="flat",
        start_date=date(2026, 1, 15),
        fees=Decimal("25"),
    )

    preview = loan_schedules.preview_schedule(payload)

    assert preview.loan_id is None
    assert preview.totals.principal == Decimal("1000.00")
    assert preview.totals.interest == Decimal("60.00")
    assert preview.totals.fees == Decimal("25.00")
    assert preview.totals.total == Decimal("1085.00")
    assert preview.totals.paid == Decimal("0.00")


def test_rows_for_loan_copies_terms() -> None:
    loan = make_loan(total_fees=Decimal("10.00"))

    rows = loan_schedules.rows_for_loan(loan)

    assert len(rows) == 3
    assert all(row.loan_id == loan.id and row.tenant_id == loan.tenant_id for row in rows)
    assert rows[0].fees == Decimal("10.00")
    assert all(row.status == "upcoming" for row in rows)
    assert all(row.principal_paid == Decimal("0.00") for row in rows)
