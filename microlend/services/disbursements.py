from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.disbursement import DisbursementBatch, DisbursementItem
from microlend.models.loan import Loan
from microlend.schemas.disbursements import BatchCreate, DisbursementStatus
from microlend.schemas.loan import LoanStatus
from microlend.services import event_stream, loan_workflow
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

BATCH_TRANSITIONS: dict[DisbursementStatus, set[DisbursementStatus]] = {
    DisbursementStatus.QUEUED: {DisbursementStatus.SENT, DisbursementStatus.FAILED},
    DisbursementStatus.SENT: {DisbursementStatus.POSTED, DisbursementStatus.FAILED},
    DisbursementStatus.FAILED: {DisbursementStatus.QUEUED},
    DisbursementStatus.POSTED: set(),
}


def ensure_batch_transition(batch: DisbursementBatch, to_status: DisbursementStatus) -> None:
    if to_status not in BATCH_TRANSITIONS[DisbursementStatus(batch.status)]:
        raise InvalidTransition("disbursement batch", batch.status, to_status.value)


def _batch_snapshot(batch: DisbursementBatch) -> dict:
    snapshot = model_snapshot(batch)
    snapshot["items"] = [
        {"loan_id": str(item.loan_id), "status": item.status, "error_message": item.error_message}
        for item in batch.items
    ]
    return snapshot


def _audit(db, ctx, batch: DisbursementBatch, action: str, old_value, *, actor_id) -> None:
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=action,
        resource_type="disbursement_batch",
        resource_id=str(batch.id),
        old_value=old_value,
        new_value=_batch_snapshot(batch),
    )


async def get_batch(db: AsyncSession, ctx: deps.TenantContext, batch_id, *, for_update: bool = False) -> DisbursementBatch:
    stmt = select(DisbursementBatch).where(
        DisbursementBatch.tenant_id == ctx.tenant_id, DisbursementBatch.id == batch_id
    )
    if for_update:
        stmt = stmt.with_for_update()
    batch = (await db.execute(stmt)).scalar_one_or_none()
    if batch is None:
        raise NotFoundError("Disbursement batch not found")
    return batch


async def list_batches(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[DisbursementBatch], int]:
    conditions = [DisbursementBatch.tenant_id == ctx.tenant_id]
    if status:
        conditions.append(DisbursementBatch.status == status)
    total = (
        await db.execute(select(func.count()).select_from(DisbursementBatch).where(*conditions))
    ).scalar_one()
    stmt = (
        select(DisbursementBatch)
        .where(*conditions)
        .order_by(DisbursementBatch.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def create_batch(
    db: AsyncSession, ctx: deps.TenantContext, payload: BatchCreate, *, actor_id
) -> tuple[DisbursementBatch, list[dict]]:
    """Queue approved loans for disbursement; returns the batch and the skipped loans."""
    loan_ids = list(dict.fromkeys(payload.loan_ids))
    stmt = (
        select(Loan, Borrower)
        .join(Borrower, Borrower.id == Loan.borrower_id)
        .where(Loan.tenant_id == ctx.tenant_id, Loan.id.in_(loan_ids))
    )
    found = {loan.id: (loan, borrower) for loan, borrower in (await db.execute(stmt)).all()}

    queued_stmt = select(DisbursementItem.loan_id).where(
        DisbursementItem.tenant_id == ctx.tenant_id,
        DisbursementItem.loan_id.in_(loan_ids),
        DisbursementItem.status != DisbursementStatus.FAILED.value,
    )
    already_batched = set((await db.execute(queued_stmt)).scalars().all())

    skipped: list[dict] = []
    items: list[DisbursementItem] = []
    for loan_id in loan_ids:
        if loan_id not in found:
            skipped.append({"loan_id": str(loan_id), "reason": "not_found"})
            continue
        loan, borrower = found[loan_id]
        if loan.status != LoanStatus.APPROVED.value:
            skipped.append({"loan_id": str(loan_id), "reason": f"status_{loan.status}"})
            continue
        if loan_id in already_batched:
            skipped.append({"loan_id": str(loan_id), "reason": "already_batched"})
            continue
        items.append(
            DisbursementItem(
                tenant_id=ctx.tenant_id,
                loan_id=loan.id,
                amount=loan.amount,
                account=borrower.phone,
                beneficiary=borrower.name,
                status=DisbursementStatus.QUEUED.value,
            )
        )

    if not items:
        raise ServiceError(
            "None of the loans can be queued for disbursement",
            code="no_approved_loans",
            details={"skipped": skipped},
        )

    batch = DisbursementBatch(
        tenant_id=ctx.tenant_id,
        status=DisbursementStatus.QUEUED.value,
        created_by=actor_id,
        items=items,
    )
    db.add(batch)
    await db.flush()
    _audit(db, ctx, batch, "disbursement.batch_created", None, actor_id=actor_id)
    await db.commit()
    logger.info(
        "Disbursement batch created",
        extra={"batch_id": str(batch.id), "items": len(items), "skipped": len(skipped)},
    )
    return batch, skipped


async def mark_sent(db: AsyncSession, ctx: deps.TenantContext, batch_id, *, actor_id) -> DisbursementBatch:
    batch = await get_batch(db, ctx, batch_id, for_update=True)
    ensure_batch_transition(batch, DisbursementStatus.SENT)
    old_snapshot = _batch_snapshot(batch)
    batch.status = DisbursementStatus.SENT.value
    batch.sent_at = datetime.now(timezone.utc)
    for item in batch.items:
        if item.status == DisbursementStatus.QUEUED.value:
            item.status = DisbursementStatus.SENT.value
    _audit(db, ctx, batch, "disbursement.batch_sent", old_snapshot, actor_id=actor_id)
    await db.commit()
    logger.info("Disbursement batch sent", extra={"batch_id": str(batch.id)})
    return batch


async def post_batch(db: AsyncSession, ctx: deps.TenantContext, batch_id, *, actor_id) -> DisbursementBatch:
    """Disburse every item's loan. Items already posted are left alone; a failing item does not stop the rest."""
    batch = await get_batch(db, ctx, batch_id, for_update=True)
    ensure_batch_transition(batch, DisbursementStatus.POSTED)
    old_snapshot = _batch_snapshot(batch)

    posted_loans: list[Loan] = []
    for item in batch.items:
        if item.status == DisbursementStatus.POSTED.value:
            continue
        loan = await loan_workflow.get_loan(db, ctx, item.loan_id, for_update=True)
        if loan.status != LoanStatus.APPROVED.value:
            item.status = DisbursementStatus.FAILED.value
            item.error_message = f"Loan is {loan.status}, expected approved"
            continue
        try:
            async with db.begin_nested():
                await loan_workflow.disburse_in_session(
                    db, ctx, loan, actor_id=actor_id, method="batch", reference=str(batch.id)
                )
        except ServiceError as exc:
            logger.warning(
                "Disbursement item failed",
                extra={"batch_id": str(batch.id), "loan_id": str(item.loan_id), "code": exc.code},
            )
            item.status = DisbursementStatus.FAILED.value
            item.error_message = exc.message
            continue
        item.status = DisbursementStatus.POSTED.value
        item.error_message = None
        posted_loans.append(loan)

    if any(item.status == DisbursementStatus.POSTED.value for item in batch.items):
        batch.status = DisbursementStatus.POSTED.value
        batch.posted_at = datetime.now(timezone.utc)
        failed = sum(1 for item in batch.items if item.status == DisbursementStatus.FAILED.value)
        batch.error_message = f"{failed} item(s) failed" if failed else None
    else:
        batch.status = DisbursementStatus.FAILED.value
        batch.error_message = "No items could be posted"

    _audit(db, ctx, batch, "disbursement.batch_posted", old_snapshot, actor_id=actor_id)
    await db.commit()
    logger.info(
        "Disbursement batch posted",
        extra={"batch_id": str(batch.id), "status": batch.status, "posted": len(posted_loans)},
    )
    for loan in posted_loans:
        await event_stream.publish(
            ctx.tenant_id,
            event_stream.LOAN_CHANGED,
            {"id": str(loan.id), "status": loan.status, "action": "disbursed"},
        )
    return batch


async def fail_batch(
    db: AsyncSession, ctx: deps.TenantContext, batch_id, error_message: str, *, actor_id
) -> DisbursementBatch:
    batch = await get_batch(db, ctx, batch_id, for_update=True)
    ensure_batch_transition(batch, DisbursementStatus.FAILED)
    old_snapshot = _batch_snapshot(batch)
    batch.status = DisbursementStatus.FAILED.value
    batch.error_message = error_message
    for item in batch.items:
        if item.status != DisbursementStatus.POSTED.value:
            item.status = DisbursementStatus.FAILED.value
            item.error_message = error_message
    _audit(db, ctx, batch, "disbursement.batch_failed", old_snapshot, actor_id=actor_id)
    await db.commit()
    logger.info("Disbursement batch failed", extra={"batch_id": str(batch.id)})
    return batch


async def retry_batch(db: AsyncSession, ctx: deps.TenantContext, batch_id, *, actor_id) -> DisbursementBatch:
    batch = await get_batch(db, ctx, batch_id, for_update=True)
    ensure_batch_transition(batch, DisbursementStatus.QUEUED)
    old_snapshot = _batch_snapshot(batch)
    batch.status = DisbursementStatus.QUEUED.value
    batch.error_message = None
    for item in batch.items:
        if item.status == DisbursementStatus.FAILED.value:
            item.status = DisbursementStatus.QUEUED.value
            item.error_message = None
    _audit(db, ctx, batch, "disbursement.batch_retried", old_snapshot, actor_id=actor_id)
    await db.commit()
    logger.info("Disbursement batch requeued", extra={"batch_id": str(batch.id)})
    return batch
