from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_schedule_row
from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.collection_sheet import CollectionSheet
from microlend.schemas.collections import CollectionSheetCreate, CollectionSheetUpdate
from microlend.services import collection_sheets

CTX = deps.TenantContext(tenant_id="default")
TODAY = date.today()


def _sheet(**overrides) -> CollectionSheet:
    values = dict(
        id=uuid4(),
        tenant_id="default",
        date=TODAY,
        type="field",
        collector="Juma Said",
        loan_officer="Amina Hassan",
        status="pending",
        deleted_at=None,
    )
    values.update(overrides)
    return CollectionSheet(**values)


async def _create(session, day: date, **fields) -> CollectionSheet:
    sheet = await collection_sheets.create_sheet(
        session, CTX, CollectionSheetCreate(date=day, **fields), actor_id=None
    )
    return sheet


def test_sort_falls_back_to_date_descending() -> None:
    assert str(collection_sheets.parse_sort("collector:asc")) == str(CollectionSheet.collector.asc())
    assert str(collection_sheets.parse_sort("status")) == str(CollectionSheet.status.desc())
    assert str(collection_sheets.parse_sort("password:asc")) == str(CollectionSheet.date.desc())
    assert str(collection_sheets.parse_sort(None)) == str(CollectionSheet.date.desc())


@pytest.mark.asyncio
async def test_scopes_pick_daily_missed_and_past_maturity(session) -> None:
    today_sheet = await _create(session, TODAY)
    yesterday = await _create(session, TODAY - timedelta(days=1))
    done = await _create(session, TODAY - timedelta(days=2))
    await collection_sheets.update_sheet(
        session, CTX, done.id, CollectionSheetUpdate(status="completed"), actor_id=None
    )
    stale = await _create(session, TODAY - timedelta(days=45))

    daily, _ = await collection_sheets.list_sheets(session, CTX, scope="daily")
    missed, _ = await collection_sheets.list_sheets(session, CTX, scope="missed")
    past, _ = await collection_sheets.list_sheets(session, CTX, scope="past_maturity")
    recent_past, _ = await collection_sheets.list_sheets(session, CTX, scope="past_maturity", past_days=1)

    assert [sheet.id for sheet in daily] == [today_sheet.id]
    assert [sheet.id for sheet in missed] == [yesterday.id, stale.id]
    assert [sheet.id for sheet in past] == [stale.id]
    assert {sheet.id for sheet in recent_past} == {stale.id}


@pytest.mark.asyncio
async def test_list_filters_by_collector_and_sorts(session) -> None:
    await _create(session, TODAY, collector="Juma Said", type="office")
    await _create(session, TODAY - timedelta(days=3), collector="Rehema Ali")
    await _create(session, TODAY - timedelta(days=1), collector="juma bakari")

    items, total = await collection_sheets.list_sheets(session, CTX, collector="juma", sort="date:asc")
    assert total == 2
    assert [sheet.collector for sheet in items] == ["juma bakari", "Juma Said"]

    items, total = await collection_sheets.list_sheets(session, CTX, sheet_type="office")
    assert total == 1
    assert items[0].type == "office"


@pytest.mark.asyncio
async def test_completed_sheet_cannot_reopen() -> None:
    sheet = _sheet(status="completed")
    db = FakeAsyncSession().on_execute(entity_handler(CollectionSheet, FakeResult(scalar=sheet)))

    with pytest.raises(InvalidTransition) as exc:
        await collection_sheets.update_sheet(
            db, CTX, sheet.id, CollectionSheetUpdate(status="pending"), actor_id=uuid4()
        )

    assert exc.value.details == {"entity": "collection_sheet", "from_status": "completed", "to_status": "pending"}
    assert db.commits == 0


@pytest.mark.asyncio
async def test_pending_sheet_can_be_cancelled_and_reassigned() -> None:
    sheet = _sheet()
    db = FakeAsyncSession().on_execute(entity_handler(CollectionSheet, FakeResult(scalar=sheet)))

    updated = await collection_sheets.update_sheet(
        db, CTX, sheet.id, CollectionSheetUpdate(status="cancelled", collector="Rehema  Ali"), actor_id=uuid4()
    )

    assert updated.status == "cancelled"
    assert updated.collector == "Rehema Ali"
    assert db.commits == 1


@pytest.mark.asyncio
async def test_soft_delete_hides_sheet_until_restored(session) -> None:
    sheet = await _create(session, TODAY)

    await collection_sheets.remove_sheet(session, CTX, sheet.id, actor_id=None)

    with pytest.raises(NotFoundError):
        await collection_sheets.get_sheet(session, CTX, sheet.id)
    _, total = await collection_sheets.list_sheets(session, CTX)
    assert total == 0
    _, total = await collection_sheets.list_sheets(session, CTX, include_deleted=True)
    assert total == 1

    restored = await collection_sheets.restore_sheet(session, CTX, sheet.id, actor_id=None)
    assert restored.deleted_at is None

    with pytest.raises(ServiceError) as exc:
        await collection_sheets.restore_sheet(session, CTX, sheet.id, actor_id=None)
    assert exc.value.code == "not_deleted"


@pytest.mark.asyncio
async def test_items_list_unpaid_installments_due_by_sheet_date(session) -> None:
    officer = uuid4()
    mine = Borrower(id=uuid4(), tenant_id="default", name="Neema Kimaro", status="active", loan_officer_id=officer)
    other = Borrower(id=uuid4(), tenant_id="default", name="Baraka Mushi", status="active")
    active = make_loan(borrower_id=mine.id, reference="LN-0001", status="active")
    closed = make_loan(borrower_id=mine.id, reference="LN-0002", status="closed")
    elsewhere = make_loan(borrower_id=other.id, reference="LN-0003", status="active")

    rows = [
        make_schedule_row(1, TODAY - timedelta(days=30), principal_paid="100.00", interest_paid="10.00"),
        make_schedule_row(2, TODAY - timedelta(days=1), principal_paid="40.00"),
        make_schedule_row(3, TODAY + timedelta(days=29)),
    ]
    rows[0].status = "paid"
    rows[1].status = "overdue"
    for row in rows:
        row.loan_id = active.id
    closed_row = make_schedule_row(1, TODAY - timedelta(days=5))
    closed_row.loan_id = closed.id
    other_row = make_schedule_row(1, TODAY)
    other_row.loan_id = elsewhere.id
    session.add_all([mine, other, active, closed, elsewhere, *rows, closed_row, other_row])
    await session.commit()

    sheet = await _create(session, TODAY, loan_officer_id=officer)
    result = await collection_sheets.sheet_items(session, CTX, sheet.id)

    assert [(item.reference, item.period) for item in result.items] == [("LN-0001", 2)]
    assert result.items[0].borrower_name == "Neema Kimaro"
    assert result.items[0].amount_due == Decimal("70.00")
    assert result.total_due == Decimal("70.00")

    everyone = await _create(session, TODAY)
    result = await collection_sheets.sheet_items(session, CTX, everyone.id)
    assert [item.reference for item in result.items] == ["LN-0003", "LN-0001"]
    assert result.total_due == Decimal("180.00")


def test_sheet_export_is_csv(client, fake_db, all_features, allow_all_permissions) -> None:
    sheet = _sheet(date=date(2026, 10, 5))
    fake_db.on_execute(entity_handler(CollectionSheet, FakeResult(items=[sheet])))

    response = client.get("/api/v1/collection-sheets/export", params={"scope": "missed", "sort": "date:asc"})

    assert response.status_code == 200
    assert 'filename="collection_sheets.csv"' in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0] == "id,date,type,collector,loan_officer,status,branch_id,created_at"
    assert lines[1] == f"{sheet.id},2026-10-05,field,Juma Said,Amina Hassan,pending,,"
