from datetime import date
from decimal import Decimal

import pytest

from conftest import make_schedule_row
from microlend.core.errors import ServiceError
from microlend.schemas.payments import AllocationStrategy
from microlend.services import payment_allocation


def _rows():
    first = make_schedule_row(1, date(2026, 1, 15), penalties="5.00")
    second = make_schedule_row(2, date(2026, 2, 15))
    # deliberately out of order; allocation walks by due date
    return [second, first]


def _applied_sum(allocation) -> Decimal:
    return sum(
        (line.principal + line.interest + line.fees + line.penalties for line in allocation.lines),
        Decimal("0"),
    )


def test_oldest_due_first_clears_charges_before_principal() -> None:
    allocation = payment_allocation.compute_allocation(_rows(), Decimal("120"))

    assert allocation.order == ["penalties", "interest", "fees", "principal"]
    assert [line.period for line in allocation.lines] == [1, 2]
    first, second = allocation.lines
    assert (first.penalties, first.interest, first.principal) == (
        Decimal("5.00"),
        Decimal("10.00"),
        Decimal("100.00"),
    )
    assert second.interest == Decimal("5.00")
    assert second.principal == Decimal("0.00")
    assert allocation.totals.interest == Decimal("15.00")
    assert allocation.unapplied == Decimal("0.00")


def test_principal_first_strategy() -> None:
    allocation = payment_allocation.compute_allocation(_rows(), "120", AllocationStrategy.PRINCIPAL_FIRST)

    assert allocation.totals.principal == Decimal("105.00")
    assert allocation.totals.interest == Decimal("10.00")
    assert allocation.totals.penalties == Decimal("5.00")


def test_overpayment_is_reported_as_unapplied() -> None:
    allocation = payment_allocation.compute_allocation(_rows(), "300")

    assert _applied_sum(allocation) == Decimal("225.00")
    assert allocation.unapplied == Decimal("75.00")
    assert _applied_sum(allocation) + allocation.unapplied == allocation.amount


def test_waived_penalties_are_left_unpaid() -> None:
    allocation = payment_allocation.compute_allocation(_rows(), "300", waive_penalties=True)

    assert "penalties" not in allocation.order
    assert allocation.totals.penalties == Decimal("0.00")
    assert allocation.unapplied == Decimal("80.00")


def test_custom_order_limits_categories() -> None:
    rows = [make_schedule_row(1, date(2026, 1, 15), fees="20.00")]

    allocation = payment_allocation.compute_allocation(
        rows, "200", AllocationStrategy.CUSTOM, custom_order="interest, principal"
    )

    assert allocation.order == ["interest", "principal"]
    assert allocation.totals.fees == Decimal("0.00")
    assert allocation.totals.interest == Decimal("10.00")
    assert allocation.totals.principal == Decimal("100.00")
    assert allocation.unapplied == Decimal("90.00")


@pytest.mark.parametrize("custom_order", ["", "interest,tips"])
def test_invalid_custom_order(custom_order) -> None:
    with pytest.raises(ServiceError) as exc:
        payment_allocation.compute_allocation(_rows(), "10", "custom", custom_order=custom_order)
    assert exc.value.code == "invalid_allocation_order"


def test_non_positive_amount_is_rejected() -> None:
    with pytest.raises(ServiceError) as exc:
        payment_allocation.compute_allocation(_rows(), "0")
    assert exc.value.code == "invalid_amount"


def test_apply_and_revert_allocation() -> None:
    rows = _rows()
    as_of = date(2026, 1, 20)
    allocation = payment_allocation.compute_allocation(rows, "115")

    payment_allocation.apply_allocation(rows, allocation.lines, 1, as_of)
    by_period = {row.period: row for row in rows}
    assert by_period[1].status == "paid"
    assert by_period[2].status == "upcoming"
    assert payment_allocation.outstanding(rows) == Decimal("110.00")

    payment_allocation.apply_allocation(rows, allocation.lines, -1, as_of)
    assert by_period[1].status == "overdue"
    assert by_period[1].principal_paid == Decimal("0.00")
    assert payment_allocation.outstanding(rows) == Decimal("225.00")


def test_apply_allocation_rejects_bad_sign() -> None:
    with pytest.raises(ValueError):
        payment_allocation.apply_allocation(_rows(), [], 2, date(2026, 1, 1))


def test_row_status_and_overdue_detection() -> None:
    row = make_schedule_row(1, date(2026, 1, 15))

    assert payment_allocation.row_status(row, date(2026, 1, 15)) == "upcoming"
    assert payment_allocation.row_status(row, date(2026, 1, 16)) == "overdue"
    assert payment_allocation.has_overdue([row], date(2026, 1, 16))

    settled = make_schedule_row(1, date(2026, 1, 15), principal_paid="100.00", interest_paid="9.99")
    assert payment_allocation.is_settled(settled)
    assert payment_allocation.row_status(settled, date(2026, 3, 1)) == "paid"
