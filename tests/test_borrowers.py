from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler
from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError
from microlend.models.audit_log import AuditLog
from microlend.models.borrower import Borrower
from microlend.schemas.borrowers import BorrowerCreate, BorrowerUpdate
from microlend.services import borrowers, event_stream

CTX = deps.TenantContext(tenant_id="default")


@pytest.mark.asyncio
async def test_create_keeps_national_id_out_of_audit(unlimited, published_events) -> None:
    db = FakeAsyncSession()
    payload = BorrowerCreate(name="asha  mwita", phone="+255700000003", national_id="19850101-12345-00001-23")

    borrower = await borrowers.create_borrower(db, CTX, payload, actor_id=uuid4())

    assert borrower.national_id == "19850101-12345-00001-23"
    assert borrower.status == "active"
    audit = next(obj for obj in db.added if isinstance(obj, AuditLog))
    assert "national_id" not in audit.new_value
    assert published_events[0][1] == event_stream.BORROWER_CHANGED


@pytest.mark.asyncio
async def test_blacklist_round_trip() -> None:
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Asha", status="active")
    db = FakeAsyncSession().on_execute(entity_handler(Borrower, FakeResult(scalar=borrower)))

    await borrowers.set_blacklisted(db, CTX, borrower.id, blacklisted=True, reason="Fraud", actor_id=uuid4())
    assert borrower.status == "blacklisted"
    assert borrower.blacklist_reason == "Fraud"
    assert borrower.blacklisted_at is not None

    with pytest.raises(InvalidTransition):
        await borrowers.set_blacklisted(db, CTX, borrower.id, blacklisted=True, actor_id=uuid4())

    await borrowers.set_blacklisted(db, CTX, borrower.id, blacklisted=False, actor_id=uuid4())
    assert borrower.status == "active"
    assert borrower.blacklist_reason is None


@pytest.mark.asyncio
async def test_blacklisted_borrower_cannot_be_reactivated_by_update() -> None:
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Asha", status="blacklisted")
    db = FakeAsyncSession().on_execute(entity_handler(Borrower, FakeResult(scalar=borrower)))

    with pytest.raises(InvalidTransition):
        await borrowers.update_borrower(db, CTX, borrower.id, BorrowerUpdate(status="active"), actor_id=uuid4())


@pytest.mark.asyncio
async def test_unknown_borrower() -> None:
    with pytest.raises(NotFoundError):
        await borrowers.get_borrower(FakeAsyncSession(), CTX, uuid4())
