from datetime import date
from decimal import Decimal

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_schedule_row
from microlend.api import deps
from microlend.models.loan import Loan
from microlend.models.loan_product import LoanProduct
from microlend.models.loan_schedule import LoanSchedule
from microlend.services import event_stream, penalties

CTX = deps.TenantContext(tenant_id="default")
AS_OF = date(2026, 3, 1)


def test_penalty_excludes_earlier_penalties() -> None:
    row = make_schedule_row(1, date(2026, 2, 1), penalties="5.00", interest_paid="10.00")
    assert penalties.penalty_for_row(row, Decimal("1.5")) == Decimal("1.50")


def test_settled_row_has_no_penalty() -> None:
    row = make_schedule_row(1, date(2026, 2, 1), principal_paid="100.00", interest_paid="10.00")
    assert penalties.penalty_for_row(row, Decimal("2")) == Decimal("0.00")


def test_penalize_rows_only_touches_overdue_rows() -> None:
    overdue = make_schedule_row(1, date(2026, 2, 1))
    due_today = make_schedule_row(2, AS_OF)
    paid = make_schedule_row(3, date(2026, 1, 1), principal_paid="100.00", interest_paid="10.00")

    count, total = penalties.penalize_rows([overdue, due_today, paid], Decimal("1"), AS_OF)

    assert (count, total) == (1, Decimal("1.10"))
    assert overdue.penalties == Decimal("1.10")
    assert overdue.total == Decimal("111.10")
    assert overdue.last_penalty_date == AS_OF
    assert overdue.status == "overdue"
    assert due_today.penalties == Decimal("0.00")
    assert due_today.status == "upcoming"
    assert paid.status == "paid"


def test_penalize_rows_charges_once_per_day() -> None:
    row = make_schedule_row(1, date(2026, 2, 1))

    penalties.penalize_rows([row], Decimal("1"), AS_OF)
    again = penalties.penalize_rows([row], Decimal("1"), AS_OF)
    next_day = penalties.penalize_rows([row], Decimal("1"), date(2026, 3, 2))

    assert again == (0, Decimal("0.00"))
    assert next_day == (1, Decimal("1.10"))
    assert row.penalties == Decimal("2.20")


@pytest.mark.asyncio
async def test_apply_penalties_marks_loans_delinquent(published_events) -> None:
    loan = make_loan(status="disbursed", outstanding=Decimal("330.00"))
    rows = [make_schedule_row(1, date(2026, 2, 15)), make_schedule_row(2, date(2026, 3, 15))]
    for row in rows:
        row.loan_id = loan.id
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Loan, FakeResult(items=[loan])))
        .on_execute(entity_handler(LoanSchedule, FakeResult(items=rows)))
        .on_execute(entity_handler(LoanProduct, FakeResult(rows=[(loan.product_id, Decimal("0.5"))])))
    )

    result = await penalties.apply_penalties(db, CTX, AS_OF)

    assert result.loans_scanned == 1
    assert result.rows_penalized == 1
    assert result.penalty_total == Decimal("0.55")
    assert result.delinquent == 1
    assert loan.status == "delinquent"
    assert loan.total_penalties == Decimal("0.55")
    assert loan.outstanding == Decimal("220.55")
    actions = [obj.action for obj in db.added]
    assert actions == ["loan.activated", "loan.delinquent", "loan.penalties_applied"]
    assert published_events == [
        ("default", event_stream.LOAN_CHANGED, {"id": str(loan.id), "status": "delinquent", "action": "penalties"})
    ]


@pytest.mark.asyncio
async def test_apply_penalties_with_no_loans() -> None:
    db = FakeAsyncSession().on_execute(entity_handler(Loan, FakeResult(items=[])))

    result = await penalties.apply_penalties(db, CTX, AS_OF)

    assert result.loans_scanned == 0
    assert not db.committed
