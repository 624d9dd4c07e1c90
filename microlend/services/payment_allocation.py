from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from microlend.core.errors import ServiceError
from microlend.schemas.loan import InstallmentStatus
from microlend.schemas.payments import AllocationLine, AllocationOut, AllocationStrategy, AllocationTotals

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
SETTLED_TOLERANCE = Decimal("0.01")

CATEGORIES = ("principal", "interest", "fees", "penalties")

STRATEGY_ORDERS: dict[AllocationStrategy, tuple[str, ...]] = {
    AllocationStrategy.OLDEST_DUE_FIRST: ("penalties", "interest", "fees", "principal"),
    AllocationStrategy.PRINCIPAL_FIRST: ("principal", "interest", "fees", "penalties"),
    AllocationStrategy.INTEREST_FIRST: ("interest", "fees", "penalties", "principal"),
    AllocationStrategy.FEES_FIRST: ("fees", "interest", "penalties", "principal"),
}


def _d(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def resolve_order(
    strategy: AllocationStrategy | str,
    custom_order: str | None = None,
    waive_penalties: bool = False,
) -> list[str]:
    strategy = AllocationStrategy(strategy)
    if strategy == AllocationStrategy.CUSTOM:
        parts = [part.strip().lower() for part in (custom_order or "").split(",") if part.strip()]
        if not parts:
            raise ServiceError("custom_order must list at least one category", code="invalid_allocation_order")
        unknown = sorted({part for part in parts if part not in CATEGORIES})
        if unknown:
            raise ServiceError(
                f"Unknown allocation categories: {', '.join(unknown)}",
                code="invalid_allocation_order",
                details={"allowed": list(CATEGORIES)},
            )
        order = list(dict.fromkeys(parts))
    else:
        order = list(STRATEGY_ORDERS[strategy])
    if waive_penalties:
        order = [category for category in order if category != "penalties"]
    return order


def remaining_due(row) -> dict[str, Decimal]:
    return {
        category: max(_d(getattr(row, category)) - _d(getattr(row, f"{category}_paid")), ZERO)
        for category in CATEGORIES
    }


def row_total_due(row) -> Decimal:
    return sum((_d(getattr(row, category)) for category in CATEGORIES), ZERO)


def row_total_paid(row) -> Decimal:
    return sum((_d(getattr(row, f"{category}_paid")) for category in CATEGORIES), ZERO)


def is_settled(row) -> bool:
    return row_total_paid(row) >= row_total_due(row) - SETTLED_TOLERANCE


def row_status(row, as_of: date) -> str:
    if is_settled(row):
        return InstallmentStatus.PAID.value
    if row.due_date < as_of:
        return InstallmentStatus.OVERDUE.value
    return InstallmentStatus.UPCOMING.value


def outstanding(rows: Iterable) -> Decimal:
    total = ZERO
    for row in rows:
        total += sum(remaining_due(row).values(), ZERO)
    return _q(total)


def has_overdue(rows: Iterable, as_of: date) -> bool:
    return any(row_status(row, as_of) == InstallmentStatus.OVERDUE.value for row in rows)


def _ordered(rows: Iterable) -> list:
    return sorted(rows, key=lambda row: (row.due_date, row.period))


def compute_allocation(
    rows: Sequence,
    amount,
    strategy: AllocationStrategy | str = AllocationStrategy.OLDEST_DUE_FIRST,
    custom_order: str | None = None,
    waive_penalties: bool = False,
) -> AllocationOut:
    """Split ``amount`` across unpaid installments, oldest first.

    Within each installment the categories are filled in strategy order. Money
    left after every installment is settled is reported as ``unapplied``; the
    line amounts plus ``unapplied`` always equal ``amount``.
    """
    amount = _q(_d(amount))
    if amount <= 0:
        raise ServiceError("Payment amount must be greater than zero", code="invalid_amount")
    order = resolve_order(strategy, custom_order, waive_penalties)

    remaining = amount
    lines: list[AllocationLine] = []
    totals = {category: ZERO for category in CATEGORIES}
    for row in _ordered(rows):
        if remaining <= 0:
            break
        due = remaining_due(row)
        portion = {category: ZERO for category in CATEGORIES}
        for category in order:
            if remaining <= 0:
                break
            take = min(due[category], remaining)
            if take <= 0:
                continue
            portion[category] = take
            remaining -= take
        if any(value > 0 for value in portion.values()):
            lines.append(AllocationLine(period=row.period, **{k: _q(v) for k, v in portion.items()}))
            for category, value in portion.items():
                totals[category] += value

    return AllocationOut(
        strategy=AllocationStrategy(strategy),
        order=order,
        amount=amount,
        lines=lines,
        totals=AllocationTotals(**{k: _q(v) for k, v in totals.items()}),
        unapplied=_q(max(remaining, ZERO)),
    )


def apply_allocation(rows: Sequence, lines: Iterable[AllocationLine], sign: int, as_of: date) -> None:
    """Add (``sign=1``) or remove (``sign=-1``) allocated amounts on the rows in place."""
    if sign not in (1, -1):
        raise ValueError("sign must be 1 or -1")
    by_period = {row.period: row for row in rows}
    for line in lines:
        row = by_period.get(line.period)
        if row is None:
            continue
        for category in CATEGORIES:
            delta = _d(getattr(line, category)) * sign
            if delta == 0:
                continue
            column = f"{category}_paid"
            setattr(row, column, _q(max(_d(getattr(row, column)) + delta, ZERO)))
    for row in rows:
        row.status = row_status(row, as_of)
