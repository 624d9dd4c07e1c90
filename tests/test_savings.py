from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, chart_handler, entity_handler
from microlend.api import deps
from microlend.core.errors import ServiceError
from microlend.models.borrower import Borrower
from microlend.models.journal_entry import JournalEntry
from microlend.models.savings_transaction import SavingsTransaction
from microlend.schemas.savings import SavingsTransactionCreate
from microlend.services import event_stream, ledger, savings

CTX = deps.TenantContext(tenant_id="default")


def _txn(txn_type: str, amount: str, *, status: str = "approved", reversed: bool = False, day: int = 1):
    return SavingsTransaction(
        id=uuid4(),
        tenant_id="default",
        borrower_id=uuid4(),
        type=txn_type,
        amount=Decimal(amount),
        date=date(2026, 3, day),
        status=status,
        reversed=reversed,
        created_at=datetime(2026, 3, day, 9, tzinfo=timezone.utc),
    )


def _totals_handler(totals: list[tuple[str, Decimal]]):
    """Answer the per-type balance aggregate, not whole-row lookups."""

    def _handler(stmt):
        descriptions = getattr(stmt, "column_descriptions", None)
        if descriptions and descriptions[0].get("name") == "type":
            return FakeResult(rows=totals)
        return None

    return _handler


def test_balance_from_totals() -> None:
    borrower_id = uuid4()
    balance = savings.balance_from_totals(
        borrower_id,
        {"deposit": Decimal("500"), "withdrawal": Decimal("120"), "charge": Decimal("5"), "interest": Decimal("12")},
    )
    assert balance.balance == Decimal("387")
    assert balance.borrower_id == borrower_id


def test_compute_balance_ignores_pending_and_reversed() -> None:
    txns = [
        _txn("deposit", "200"),
        _txn("withdrawal", "50"),
        _txn("deposit", "1000", status="pending"),
        _txn("deposit", "300", reversed=True),
        _txn("withdrawal", "10", status="rejected"),
    ]
    assert savings.compute_balance(txns) == Decimal("150")


def test_statement_runs_balance_in_date_order() -> None:
    borrower_id = uuid4()
    txns = [
        _txn("withdrawal", "40", day=5),
        _txn("deposit", "100", day=2),
        _txn("interest", "1.50", day=28),
        _txn("deposit", "999", status="pending", day=3),
    ]

    statement = savings.build_statement(borrower_id, txns, opening_balance=Decimal("10"))

    assert [line.type for line in statement.lines] == ["deposit", "withdrawal", "interest"]
    assert [line.running_balance for line in statement.lines] == [Decimal("110"), Decimal("70"), Decimal("71.50")]
    assert statement.opening_balance == Decimal("10")
    assert statement.closing_balance == Decimal("71.50")


@pytest.mark.parametrize(
    ("txn_type", "debit_code", "credit_code"),
    [
        ("deposit", ledger.CASH, ledger.SAVINGS_DEPOSITS),
        ("withdrawal", ledger.SAVINGS_DEPOSITS, ledger.CASH),
        ("charge", ledger.SAVINGS_DEPOSITS, ledger.FEE_INCOME),
        ("interest", ledger.INTEREST_EXPENSE, ledger.SAVINGS_DEPOSITS),
    ],
)
def test_journal_lines_per_type(txn_type, debit_code, credit_code) -> None:
    debit, credit = savings.journal_lines(txn_type, Decimal("25"))
    assert (debit.code, debit.debit) == (debit_code, Decimal("25"))
    assert (credit.code, credit.credit) == (credit_code, Decimal("25"))


def test_fold_staff_rows_groups_by_staff() -> None:
    alice, bob = uuid4(), uuid4()
    rows = [
        (bob, "Bob", "deposit", 2, Decimal("300")),
        (alice, "Alice", "deposit", 1, Decimal("50")),
        (alice, "Alice", "withdrawal", 3, Decimal("75")),
    ]

    report = savings.fold_staff_rows(rows)

    assert [row.staff_name for row in report] == ["Alice", "Bob"]
    assert report[0].deposits_count == 1
    assert report[0].withdrawals_amount == Decimal("75")
    assert report[1].deposits_amount == Decimal("300")
    assert report[1].charges_count == 0


@pytest.mark.asyncio
async def test_withdrawal_beyond_balance_is_refused() -> None:
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Asha", status="active")
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(Borrower, FakeResult(scalar=borrower)))
        .on_execute(_totals_handler([("deposit", Decimal("100")), ("withdrawal", Decimal("30"))]))
    )
    payload = SavingsTransactionCreate(borrower_id=borrower.id, type="withdrawal", amount=Decimal("80"))

    with pytest.raises(ServiceError) as exc:
        await savings.create_transaction(db, CTX, payload, actor_id=uuid4())

    assert exc.value.code == "insufficient_balance"
    assert exc.value.details["balance"] == "70"
    assert not db.added


@pytest.mark.asyncio
async def test_deposit_is_created_pending(published_events) -> None:
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Asha", status="active")
    db = FakeAsyncSession().on_execute(entity_handler(Borrower, FakeResult(scalar=borrower)))
    payload = SavingsTransactionCreate(borrower_id=borrower.id, type="deposit", amount=Decimal("80"))

    txn = await savings.create_transaction(db, CTX, payload, actor_id=uuid4())

    assert txn.status == "pending"
    assert txn.journal_entry_id is None
    assert db.committed
    assert published_events[0][1] == event_stream.SAVINGS_CHANGED


@pytest.mark.asyncio
async def test_approval_posts_journal() -> None:
    txn = _txn("deposit", "80", status="pending")
    handler, accounts = chart_handler()
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(SavingsTransaction, FakeResult(scalar=txn)))
        .on_execute(handler)
    )

    approved = await savings.approve_transaction(db, CTX, txn.id, "Counted", actor_id=uuid4())

    journal = next(obj for obj in db.added if isinstance(obj, JournalEntry))
    assert approved.status == "approved"
    assert approved.journal_entry_id == journal.id
    assert [line.account_id for line in journal.lines] == [
        accounts[ledger.CASH].id,
        accounts[ledger.SAVINGS_DEPOSITS].id,
    ]

    with pytest.raises(ServiceError) as exc:
        await savings.approve_transaction(db, CTX, txn.id, "again", actor_id=uuid4())
    assert exc.value.code == "transaction_not_pending"


@pytest.mark.asyncio
async def test_reversing_a_reversed_transaction_is_a_no_op() -> None:
    txn = _txn("deposit", "80", reversed=True)
    db = FakeAsyncSession().on_execute(entity_handler(SavingsTransaction, FakeResult(scalar=txn)))

    result = await savings.reverse_transaction(db, CTX, txn.id, actor_id=uuid4())

    assert result is txn
    assert not db.committed


@pytest.mark.asyncio
async def test_reversing_a_spent_deposit_is_refused() -> None:
    txn = _txn("deposit", "80")
    db = (
        FakeAsyncSession()
        .on_execute(_totals_handler([("deposit", Decimal("100")), ("withdrawal", Decimal("60"))]))
        .on_execute(entity_handler(SavingsTransaction, FakeResult(scalar=txn)))
    )

    with pytest.raises(ServiceError) as exc:
        await savings.reverse_transaction(db, CTX, txn.id, actor_id=uuid4())

    assert exc.value.code == "insufficient_balance"
    assert exc.value.details == {"balance": "40", "amount": "80"}
    assert txn.reversed is False
    assert not db.committed
