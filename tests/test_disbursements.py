from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan
from microlend.api import deps
from microlend.core.errors import InvalidTransition, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.disbursement import DisbursementBatch, DisbursementItem
from microlend.models.loan import Loan
from microlend.schemas.disbursements import BatchCreate, DisbursementStatus
from microlend.services import disbursements

CTX = deps.TenantContext(tenant_id="default")


def _batch(status: str, *loans: Loan) -> DisbursementBatch:
    items = [
        DisbursementItem(id=uuid4(), tenant_id="default", loan_id=loan.id, amount=loan.amount, status=status)
        for loan in loans
    ]
    return DisbursementBatch(id=uuid4(), tenant_id="default", status=status, items=items)


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        ("queued", DisbursementStatus.SENT, True),
        ("queued", DisbursementStatus.POSTED, False),
        ("sent", DisbursementStatus.POSTED, True),
        ("sent", DisbursementStatus.FAILED, True),
        ("failed", DisbursementStatus.QUEUED, True),
        ("posted", DisbursementStatus.FAILED, False),
    ],
)
def test_batch_transitions(current, target, allowed) -> None:
    batch = DisbursementBatch(status=current, items=[])
    if allowed:
        disbursements.ensure_batch_transition(batch, target)
    else:
        with pytest.raises(InvalidTransition) as exc:
            disbursements.ensure_batch_transition(batch, target)
        assert exc.value.details["from_status"] == current
        assert exc.value.details["to_status"] == target.value


@pytest.mark.asyncio
async def test_create_batch_queues_approved_loans_only() -> None:
    approved = make_loan(status="approved")
    pending = make_loan(status="pending")
    batched = make_loan(status="approved")
    missing = uuid4()
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Neema", phone="+255700000001")
    db = (
        FakeAsyncSession()
        .on_execute(
            entity_handler(Loan, FakeResult(rows=[(approved, borrower), (pending, borrower), (batched, borrower)]))
        )
        .on_execute(entity_handler(DisbursementItem, FakeResult(items=[batched.id])))
    )
    payload = BatchCreate(loan_ids=[approved.id, pending.id, batched.id, missing, approved.id])

    batch, skipped = await disbursements.create_batch(db, CTX, payload, actor_id=uuid4())

    assert batch.status == "queued"
    assert [item.loan_id for item in batch.items] == [approved.id]
    assert batch.items[0].account == "+255700000001"
    assert batch.items[0].amount == Decimal("1000.00")
    assert skipped == [
        {"loan_id": str(pending.id), "reason": "status_pending"},
        {"loan_id": str(batched.id), "reason": "already_batched"},
        {"loan_id": str(missing), "reason": "not_found"},
    ]
    assert db.committed


@pytest.mark.asyncio
async def test_create_batch_without_eligible_loans() -> None:
    db = FakeAsyncSession()
    with pytest.raises(ServiceError) as exc:
        await disbursements.create_batch(db, CTX, BatchCreate(loan_ids=[uuid4()]), actor_id=uuid4())
    assert exc.value.code == "no_approved_loans"


@pytest.mark.asyncio
async def test_post_batch_fails_items_whose_loans_moved_on() -> None:
    loan = make_loan(status="rejected")
    batch = _batch("sent", loan)
    db = (
        FakeAsyncSession()
        .on_execute(entity_handler(DisbursementBatch, FakeResult(scalar=batch)))
        .on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    )

    result = await disbursements.post_batch(db, CTX, batch.id, actor_id=uuid4())

    assert result.status == "failed"
    assert result.error_message == "No items could be posted"
    assert result.items[0].status == "failed"
    assert result.items[0].error_message == "Loan is rejected, expected approved"


@pytest.mark.asyncio
async def test_fail_then_retry_requeues_items() -> None:
    loan = make_loan(status="approved")
    batch = _batch("sent", loan)
    db = FakeAsyncSession().on_execute(entity_handler(DisbursementBatch, FakeResult(scalar=batch)))

    await disbursements.fail_batch(db, CTX, batch.id, "Bank rejected file", actor_id=uuid4())
    assert batch.items[0].status == "failed"
    assert batch.items[0].error_message == "Bank rejected file"

    await disbursements.retry_batch(db, CTX, batch.id, actor_id=uuid4())
    assert batch.status == "queued"
    assert batch.items[0].status == "queued"
    assert batch.error_message is None
    assert [log.action for log in db.added] == ["disbursement.batch_failed", "disbursement.batch_retried"]
