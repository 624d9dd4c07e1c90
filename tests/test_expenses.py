from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import FakeAsyncSession, FakeResult, chart_handler, entity_handler
from microlend.api import deps
from microlend.core.errors import InvalidTransition, ServiceError
from microlend.models.audit_log import AuditLog
from microlend.models.expense import Expense
from microlend.models.journal_entry import JournalEntry
from microlend.schemas.expenses import ExpenseCreate, ExpenseUpdate
from microlend.services import accounting_reports, ledger
from microlend.services import expenses as expense_service

CTX = deps.TenantContext(tenant_id="default")


def _expense(**overrides) -> Expense:
    values = dict(
        id=uuid4(),
        tenant_id="default",
        date=date(2026, 10, 1),
        category="FUEL",
        vendor="Total Energies",
        reference="R-881",
        amount=Decimal("45.00"),
        note=None,
        branch_id=None,
        account_code=ledger.OPERATING_EXPENSES,
        status="posted",
    )
    values.update(overrides)
    return Expense(**values)


def test_category_is_normalized_to_a_code() -> None:
    payload = ExpenseCreate(category=" office supplies ", amount=Decimal("12.50"))

    assert payload.category == "OFFICE_SUPPLIES"


@pytest.mark.asyncio
async def test_create_posts_expense_against_cash() -> None:
    handler, accounts = chart_handler()
    db = FakeAsyncSession().on_execute(handler)

    expense = await expense_service.create_expense(
        db, CTX, ExpenseCreate(category="fuel", vendor="total energies", amount=Decimal("45")), actor_id=uuid4()
    )

    journal = next(obj for obj in db.added if isinstance(obj, JournalEntry))
    assert expense.status == "posted"
    assert expense.date == date.today()
    assert expense.account_code == ledger.OPERATING_EXPENSES
    assert expense.journal_entry_id == journal.id
    assert journal.source_type == "expense"
    assert journal.source_id == str(expense.id)
    assert [(line.account_id, line.debit, line.credit) for line in journal.lines] == [
        (accounts[ledger.OPERATING_EXPENSES].id, Decimal("45.00"), Decimal("0.00")),
        (accounts[ledger.CASH].id, Decimal("0.00"), Decimal("45.00")),
    ]
    assert any(isinstance(obj, AuditLog) and obj.action == "expense.created" for obj in db.added)
    assert db.commits == 1


@pytest.mark.asyncio
async def test_non_expense_account_is_rejected() -> None:
    handler, _ = chart_handler()
    db = FakeAsyncSession().on_execute(handler)

    with pytest.raises(ServiceError) as exc:
        await expense_service.create_expense(
            db,
            CTX,
            ExpenseCreate(category="rent", amount=Decimal("300"), account_code=ledger.CASH),
            actor_id=uuid4(),
        )

    assert exc.value.code == "invalid_expense_account"
    assert exc.value.details == {"code": ledger.CASH}
    assert not any(isinstance(obj, Expense) for obj in db.added)
    assert db.commits == 0


@pytest.mark.asyncio
async def test_voided_expense_cannot_be_edited_or_voided_again() -> None:
    expense = _expense(status="void")
    db = FakeAsyncSession().on_execute(entity_handler(Expense, FakeResult(scalar=expense)))

    with pytest.raises(ServiceError) as exc:
        await expense_service.update_expense(
            db, CTX, expense.id, ExpenseUpdate(note="typo"), actor_id=uuid4()
        )
    assert exc.value.code == "expense_void"

    with pytest.raises(InvalidTransition):
        await expense_service.void_expense(db, CTX, expense.id, "Duplicate", actor_id=uuid4())
    assert db.commits == 0


@pytest.mark.asyncio
async def test_note_only_edit_keeps_the_journal(monkeypatch) -> None:
    journal_id = uuid4()
    expense = _expense(journal_entry_id=journal_id)
    db = FakeAsyncSession().on_execute(entity_handler(Expense, FakeResult(scalar=expense)))

    async def _no_reversal(*args, **kwargs):
        raise AssertionError("a note edit must not touch the ledger")

    monkeypatch.setattr(ledger, "post_reversal", _no_reversal)

    updated = await expense_service.update_expense(
        db, CTX, expense.id, ExpenseUpdate(note="Generator refill"), actor_id=uuid4()
    )

    assert updated.note == "Generator refill"
    assert updated.journal_entry_id == journal_id
    assert db.commits == 1


@pytest.mark.asyncio
async def test_correction_and_void_keep_the_ledger_balanced(session) -> None:
    await ledger.seed_chart_of_accounts(session, CTX.tenant_id)
    await session.commit()
    actor = uuid4()

    expense = await expense_service.create_expense(
        session, CTX, ExpenseCreate(category="fuel", amount=Decimal("45")), actor_id=actor
    )
    first_journal = expense.journal_entry_id

    expense = await expense_service.update_expense(
        session, CTX, expense.id, ExpenseUpdate(amount=Decimal("60")), actor_id=actor
    )
    assert expense.amount == Decimal("60")
    assert expense.journal_entry_id != first_journal

    report = await accounting_reports.trial_balance(session, CTX, date.today())
    balances = {row.code: row.balance for row in report.rows}
    assert report.total_debit == report.total_credit
    assert balances[ledger.OPERATING_EXPENSES] == Decimal("60.00")
    assert balances[ledger.CASH] == Decimal("-60.00")

    voided = await expense_service.void_expense(session, CTX, expense.id, "Duplicate receipt", actor_id=actor)
    assert voided.status == "void"
    assert voided.void_reason == "Duplicate receipt"
    assert voided.voided_at is not None

    report = await accounting_reports.trial_balance(session, CTX, date.today())
    balances = {row.code: row.balance for row in report.rows}
    assert balances[ledger.OPERATING_EXPENSES] == Decimal("0.00")
    assert balances[ledger.CASH] == Decimal("0.00")

    journals = (
        await session.execute(select(JournalEntry).where(JournalEntry.source_type == "expense"))
    ).scalars().all()
    assert len(journals) == 4
    assert sum(1 for journal in journals if journal.reverses_id is not None) == 2


@pytest.mark.asyncio
async def test_list_filters_by_amount_and_search(session) -> None:
    await ledger.seed_chart_of_accounts(session, CTX.tenant_id)
    await session.commit()
    for category, vendor, amount in (("fuel", "Total", "45"), ("rent", "Landlord", "300"), ("fuel", "Shell", "80")):
        await expense_service.create_expense(
            session, CTX, ExpenseCreate(category=category, vendor=vendor, amount=Decimal(amount)), actor_id=None
        )

    items, total = await expense_service.list_expenses(session, CTX, category="fuel", min_amount=Decimal("50"))
    assert total == 1
    assert items[0].vendor == "Shell"

    items, total = await expense_service.list_expenses(session, CTX, search="landlord")
    assert total == 1
    assert items[0].category == "RENT"


def test_expense_export_is_csv(client, fake_db, all_features, allow_all_permissions) -> None:
    expense = _expense(note="Motorbike, weekly")
    fake_db.on_execute(entity_handler(Expense, FakeResult(items=[expense])))

    response = client.get("/api/v1/expenses/export", params={"category": "fuel"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert f'filename="expenses_{date.today().isoformat()}.csv"' in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0] == "id,date,category,vendor,reference,amount,note,branch_id,status"
    assert lines[1] == f'{expense.id},2026-10-01,FUEL,Total Energies,R-881,45.00,"Motorbike, weekly",,posted'


def test_delete_requires_a_reason(client, all_features, allow_all_permissions) -> None:
    response = client.delete(f"/api/v1/expenses/{uuid4()}")

    assert response.status_code == 422
