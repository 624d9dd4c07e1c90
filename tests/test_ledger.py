from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler, sequence_handler
from microlend.api import deps
from microlend.core.errors import ConflictError, ServiceError
from microlend.models.account import Account
from microlend.models.journal_entry import JournalEntry
from microlend.models.ledger_entry import LedgerEntry
from microlend.services import ledger

CTX = deps.TenantContext(tenant_id="default")


def _account(code: str, account_type: str = "asset", is_active: bool = True) -> Account:
    return Account(id=uuid4(), tenant_id="default", code=code, name=code, type=account_type, is_active=is_active)


def _line(account: Account, debit="0", credit="0") -> ledger.JournalLine:
    return ledger.JournalLine(account_id=account.id, debit=Decimal(debit), credit=Decimal(credit))


def test_validate_lines_returns_totals() -> None:
    cash, portfolio = _account("1000", "cash"), _account("1200")

    totals = ledger.validate_lines([_line(cash, debit="150.50"), _line(portfolio, credit="150.50")])

    assert totals == (Decimal("150.50"), Decimal("150.50"))


@pytest.mark.parametrize(
    "lines_spec, code",
    [
        ([("10", "0")], "unbalanced_journal"),
        ([("10", "0"), ("0", "9.99")], "unbalanced_journal"),
        ([("10", "10"), ("0", "0")], "invalid_ledger_line"),
        ([("0", "0"), ("0", "0")], "invalid_ledger_line"),
        ([("-5", "0"), ("0", "-5")], "invalid_ledger_line"),
    ],
)
def test_validate_lines_rejects_bad_journals(lines_spec, code) -> None:
    account = _account("1000")
    lines = [_line(account, debit=debit, credit=credit) for debit, credit in lines_spec]

    with pytest.raises(ServiceError) as exc:
        ledger.validate_lines(lines)

    assert exc.value.code == code


def test_swap_lines_mirrors_each_side() -> None:
    cash, portfolio = _account("1000", "cash"), _account("1200")

    swapped = ledger.swap_lines([_line(cash, debit="40"), _line(portfolio, credit="40")])

    assert (swapped[0].debit, swapped[0].credit) == (Decimal("0.00"), Decimal("40.00"))
    assert (swapped[1].debit, swapped[1].credit) == (Decimal("40.00"), Decimal("0.00"))


def _by_code_handler(accounts: list[Account]):
    by_code = {account.code: account for account in accounts}

    def _handler(stmt):
        params = stmt.compile().params
        for value in params.values():
            if isinstance(value, str) and value in by_code:
                return FakeResult(scalar=by_code[value])
        return FakeResult(items=accounts)

    return _handler


@pytest.mark.asyncio
async def test_post_coded_journal_drops_zero_lines() -> None:
    cash, portfolio = _account("1000", "cash"), _account("1200")
    db = FakeAsyncSession().on_execute(_by_code_handler([cash, portfolio]))

    journal = await ledger.post_coded_journal(
        db,
        CTX,
        [
            ledger.CodedLine(ledger.CASH, debit=Decimal("100")),
            ledger.CodedLine(ledger.LOAN_PORTFOLIO, credit=Decimal("100")),
            ledger.CodedLine(ledger.INTEREST_INCOME, credit=Decimal("0")),
        ],
        source_type="payment",
        source_id="abc",
    )

    assert journal in db.added
    assert db.flushed
    assert [line.line_no for line in journal.lines] == [1, 2]
    assert [line.account_id for line in journal.lines] == [cash.id, portfolio.id]
    assert journal.source_type == "payment"


@pytest.mark.asyncio
async def test_post_journal_refuses_inactive_account() -> None:
    cash, closed = _account("1000", "cash"), _account("1300", is_active=False)
    db = FakeAsyncSession().on_execute_return(FakeResult(items=[cash, closed]))

    with pytest.raises(ServiceError) as exc:
        await ledger.post_journal(db, CTX, [_line(cash, debit="5"), _line(closed, credit="5")])

    assert exc.value.code == "invalid_ledger_line"


@pytest.mark.asyncio
async def test_missing_chart_account_is_reported() -> None:
    db = FakeAsyncSession()

    with pytest.raises(ServiceError) as exc:
        await ledger.get_account_by_code(db, "default", ledger.CASH)

    assert exc.value.code == "account_missing"


def _original_journal(cash: Account, portfolio: Account) -> JournalEntry:
    journal = JournalEntry(id=uuid4(), tenant_id="default", source_type="loan", source_id="L-1")
    journal.lines = [
        LedgerEntry(tenant_id="default", account_id=portfolio.id, line_no=1, debit=Decimal("500"), credit=Decimal("0")),
        LedgerEntry(tenant_id="default", account_id=cash.id, line_no=2, debit=Decimal("0"), credit=Decimal("500")),
    ]
    return journal


@pytest.mark.asyncio
async def test_post_reversal_mirrors_original() -> None:
    cash, portfolio = _account("1000", "cash"), _account("1200")
    original = _original_journal(cash, portfolio)
    db = FakeAsyncSession().on_execute(
        sequence_handler(
            [
                FakeResult(scalar=original),
                FakeResult(scalar=None),
                FakeResult(items=[cash, portfolio]),
            ]
        )
    )

    reversal = await ledger.post_reversal(db, CTX, original.id)

    assert reversal.reverses_id == original.id
    assert reversal.source_type == "loan"
    assert [(line.debit, line.credit) for line in reversal.lines] == [
        (Decimal("0.00"), Decimal("500.00")),
        (Decimal("500.00"), Decimal("0.00")),
    ]


@pytest.mark.asyncio
async def test_journal_can_only_be_reversed_once() -> None:
    cash, portfolio = _account("1000", "cash"), _account("1200")
    original = _original_journal(cash, portfolio)
    # the lookup for an existing reversal finds a row
    db = FakeAsyncSession().on_execute(entity_handler(JournalEntry, FakeResult(scalar=original)))

    with pytest.raises(ConflictError) as exc:
        await ledger.post_reversal(db, CTX, original.id)

    assert exc.value.code == "already_reversed"


@pytest.mark.asyncio
async def test_seed_chart_skips_existing_codes() -> None:
    db = FakeAsyncSession().on_execute_return(FakeResult(rows=[(ledger.CASH,), (ledger.BANK,)]))

    created = await ledger.seed_chart_of_accounts(db, "default")

    codes = {account.code for account in created}
    assert ledger.CASH not in codes
    assert ledger.LOAN_PORTFOLIO in codes
    assert len(created) == len(ledger.DEFAULT_CHART) - 2
