from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError
from microlend.models.borrower import Borrower
from microlend.schemas.borrowers import BorrowerCreate, BorrowerStatus, BorrowerUpdate
from microlend.services import entitlements, event_stream
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

# national_id is encrypted at rest and kept out of audit snapshots
_AUDIT_EXCLUDE = ("national_id",)


async def get_borrower(db: AsyncSession, ctx: deps.TenantContext, borrower_id) -> Borrower:
    stmt = select(Borrower).where(Borrower.tenant_id == ctx.tenant_id, Borrower.id == borrower_id)
    borrower = (await db.execute(stmt)).scalar_one_or_none()
    if borrower is None:
        raise NotFoundError("Borrower not found")
    return borrower


async def list_borrowers(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    search: str | None = None,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Borrower], int]:
    conditions = [Borrower.tenant_id == ctx.tenant_id]
    if ctx.branch_id is not None:
        conditions.append(Borrower.branch_id == ctx.branch_id)
    if status:
        conditions.append(Borrower.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(Borrower.name.ilike(pattern), Borrower.phone.ilike(pattern), Borrower.email.ilike(pattern))
        )
    total = (await db.execute(select(func.count()).select_from(Borrower).where(*conditions))).scalar_one()
    stmt = select(Borrower).where(*conditions).order_by(Borrower.name).offset(offset).limit(limit)
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def create_borrower(
    db: AsyncSession, ctx: deps.TenantContext, payload: BorrowerCreate, *, actor_id
) -> Borrower:
    await entitlements.ensure_within_limit(db, ctx.tenant_id, "borrowers", Borrower)
    borrower = Borrower(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id or ctx.branch_id,
        loan_officer_id=payload.loan_officer_id,
        name=payload.name,
        phone=payload.phone,
        email=payload.email,
        address=payload.address,
        national_id=payload.national_id,
        status=BorrowerStatus.ACTIVE.value,
    )
    db.add(borrower)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="borrower.created",
        resource_type="borrower",
        resource_id=str(borrower.id),
        new_value=model_snapshot(borrower, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    await event_stream.publish(
        ctx.tenant_id, event_stream.BORROWER_CHANGED, {"id": str(borrower.id), "action": "created"}
    )
    return borrower


async def update_borrower(
    db: AsyncSession, ctx: deps.TenantContext, borrower_id, payload: BorrowerUpdate, *, actor_id
) -> Borrower:
    borrower = await get_borrower(db, ctx, borrower_id)
    old_snapshot = model_snapshot(borrower, exclude=_AUDIT_EXCLUDE)
    updates = payload.model_dump(exclude_unset=True)
    if "status" in updates and updates["status"] is not None:
        updates["status"] = BorrowerStatus(updates["status"]).value
        if borrower.status == BorrowerStatus.BLACKLISTED.value:
            raise InvalidTransition("borrower", borrower.status, updates["status"])
    for field, value in updates.items():
        if field == "name" and not value:
            continue
        setattr(borrower, field, value)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="borrower.updated",
        resource_type="borrower",
        resource_id=str(borrower.id),
        old_value=old_snapshot,
        new_value=model_snapshot(borrower, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    await event_stream.publish(
        ctx.tenant_id, event_stream.BORROWER_CHANGED, {"id": str(borrower.id), "action": "updated"}
    )
    return borrower


async def set_blacklisted(
    db: AsyncSession,
    ctx: deps.TenantContext,
    borrower_id,
    *,
    blacklisted: bool,
    reason: str | None = None,
    actor_id,
) -> Borrower:
    borrower = await get_borrower(db, ctx, borrower_id)
    is_blacklisted = borrower.status == BorrowerStatus.BLACKLISTED.value
    target = BorrowerStatus.BLACKLISTED if blacklisted else BorrowerStatus.ACTIVE
    if is_blacklisted == blacklisted:
        raise InvalidTransition("borrower", borrower.status, target.value)
    old_snapshot = model_snapshot(borrower, exclude=_AUDIT_EXCLUDE)
    borrower.status = target.value
    if blacklisted:
        borrower.blacklist_reason = reason
        borrower.blacklisted_at = datetime.now(timezone.utc)
    else:
        borrower.blacklist_reason = None
        borrower.blacklisted_at = None
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="borrower.blacklisted" if blacklisted else "borrower.unblacklisted",
        resource_type="borrower",
        resource_id=str(borrower.id),
        old_value=old_snapshot,
        new_value=model_snapshot(borrower, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    logger.info(
        "Borrower blacklist changed",
        extra={"borrower_id": str(borrower.id), "blacklisted": blacklisted},
    )
    await event_stream.publish(
        ctx.tenant_id,
        event_stream.BORROWER_CHANGED,
        {"id": str(borrower.id), "action": "blacklisted" if blacklisted else "unblacklisted"},
    )
    return borrower
