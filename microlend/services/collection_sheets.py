"""Collection sheets: the daily list a field collector works through.

A sheet only stores who collects, where and when; the installments on it are
derived on read from the unpaid schedule rows due by the sheet date.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.models.borrower import Borrower
from microlend.models.collection_sheet import CollectionSheet
from microlend.models.loan import Loan
from microlend.models.loan_schedule import LoanSchedule
from microlend.schemas.collections import (
    CollectionItemOut,
    CollectionScope,
    CollectionSheetCreate,
    CollectionSheetItemsResponse,
    CollectionSheetStatus,
    CollectionSheetUpdate,
)
from microlend.schemas.loan import InstallmentStatus
from microlend.services import loan_workflow, payment_allocation
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

DEFAULT_PAST_DAYS = 30
ZERO = Decimal("0.00")

_SORTABLE = {
    "date": CollectionSheet.date,
    "created_at": CollectionSheet.created_at,
    "status": CollectionSheet.status,
    "type": CollectionSheet.type,
    "collector": CollectionSheet.collector,
}

_TRANSITIONS = {
    CollectionSheetStatus.PENDING.value: {
        CollectionSheetStatus.COMPLETED.value,
        CollectionSheetStatus.CANCELLED.value,
    },
}


def scope_conditions(scope: str | CollectionScope, today: date, past_days: int = DEFAULT_PAST_DAYS) -> list:
    scope = CollectionScope(scope)
    open_sheet = CollectionSheet.status != CollectionSheetStatus.COMPLETED.value
    if scope is CollectionScope.DAILY:
        return [CollectionSheet.date == today]
    if scope is CollectionScope.MISSED:
        return [CollectionSheet.date < today, open_sheet]
    return [CollectionSheet.date < today - timedelta(days=past_days), open_sheet]


def parse_sort(sort: str | None):
    """``field:dir`` into an order_by clause; unknown fields fall back to date desc."""
    if not sort:
        return CollectionSheet.date.desc()
    field, _, direction = sort.partition(":")
    column = _SORTABLE.get(field.strip())
    if column is None:
        return CollectionSheet.date.desc()
    return column.asc() if direction.strip().lower() == "asc" else column.desc()


def _conditions(
    ctx: deps.TenantContext,
    *,
    search: str | None = None,
    status: str | None = None,
    sheet_type: str | None = None,
    collector: str | None = None,
    loan_officer: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    scope: str | None = None,
    past_days: int = DEFAULT_PAST_DAYS,
    include_deleted: bool = False,
    today: date | None = None,
) -> list:
    conditions = [CollectionSheet.tenant_id == ctx.tenant_id]
    if not include_deleted:
        conditions.append(CollectionSheet.deleted_at.is_(None))
    if ctx.branch_id is not None:
        conditions.append(CollectionSheet.branch_id == ctx.branch_id)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(CollectionSheet.collector.ilike(pattern), CollectionSheet.loan_officer.ilike(pattern))
        )
    if status:
        conditions.append(CollectionSheet.status == status)
    if sheet_type:
        conditions.append(CollectionSheet.type == sheet_type)
    if collector:
        conditions.append(CollectionSheet.collector.ilike(f"%{collector.strip()}%"))
    if loan_officer:
        conditions.append(CollectionSheet.loan_officer.ilike(f"%{loan_officer.strip()}%"))
    if date_from is not None:
        conditions.append(CollectionSheet.date >= date_from)
    if date_to is not None:
        conditions.append(CollectionSheet.date <= date_to)
    if scope:
        conditions.extend(scope_conditions(scope, today or date.today(), past_days))
    return conditions


async def get_sheet(
    db: AsyncSession, ctx: deps.TenantContext, sheet_id, *, include_deleted: bool = False
) -> CollectionSheet:
    stmt = select(CollectionSheet).where(CollectionSheet.tenant_id == ctx.tenant_id, CollectionSheet.id == sheet_id)
    if not include_deleted:
        stmt = stmt.where(CollectionSheet.deleted_at.is_(None))
    sheet = (await db.execute(stmt)).scalar_one_or_none()
    if sheet is None:
        raise NotFoundError("Collection sheet not found")
    return sheet


async def list_sheets(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    sort: str | None = None,
    offset: int = 0,
    limit: int = 50,
    **filters,
) -> tuple[list[CollectionSheet], int]:
    conditions = _conditions(ctx, **filters)
    total = (
        await db.execute(select(func.count()).select_from(CollectionSheet).where(*conditions))
    ).scalar_one()
    stmt = (
        select(CollectionSheet)
        .where(*conditions)
        .order_by(parse_sort(sort), CollectionSheet.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


async def export_sheets(
    db: AsyncSession, ctx: deps.TenantContext, *, sort: str | None = None, **filters
) -> list[CollectionSheet]:
    stmt = select(CollectionSheet).where(*_conditions(ctx, **filters)).order_by(parse_sort(sort))
    return list((await db.execute(stmt)).scalars().all())


async def create_sheet(
    db: AsyncSession, ctx: deps.TenantContext, payload: CollectionSheetCreate, *, actor_id
) -> CollectionSheet:
    sheet = CollectionSheet(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id or ctx.branch_id,
        date=payload.date,
        type=payload.type.value,
        collector=payload.collector,
        collector_id=payload.collector_id,
        loan_officer=payload.loan_officer,
        loan_officer_id=payload.loan_officer_id,
        status=CollectionSheetStatus.PENDING.value,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(sheet)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="collection_sheet.created",
        resource_type="collection_sheet",
        resource_id=str(sheet.id),
        new_value=model_snapshot(sheet),
    )
    await db.commit()
    await db.refresh(sheet)
    logger.info("Collection sheet created", extra={"sheet_id": str(sheet.id), "date": str(sheet.date)})
    return sheet


async def update_sheet(
    db: AsyncSession, ctx: deps.TenantContext, sheet_id, payload: CollectionSheetUpdate, *, actor_id
) -> CollectionSheet:
    sheet = await get_sheet(db, ctx, sheet_id)
    updates = payload.model_dump(exclude_unset=True)
    new_status = updates.pop("status", None)
    if new_status is not None:
        new_status = CollectionSheetStatus(new_status).value
        if new_status != sheet.status and new_status not in _TRANSITIONS.get(sheet.status, set()):
            raise InvalidTransition("collection_sheet", sheet.status, new_status)

    old_snapshot = model_snapshot(sheet)
    for field, value in updates.items():
        if value is None and field in ("date", "type"):
            continue
        setattr(sheet, field, value.value if hasattr(value, "value") else value)
    if new_status is not None:
        sheet.status = new_status
    sheet.updated_by = actor_id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="collection_sheet.updated",
        resource_type="collection_sheet",
        resource_id=str(sheet.id),
        old_value=old_snapshot,
        new_value=model_snapshot(sheet),
    )
    await db.commit()
    await db.refresh(sheet)
    return sheet


async def remove_sheet(db: AsyncSession, ctx: deps.TenantContext, sheet_id, *, actor_id) -> CollectionSheet:
    sheet = await get_sheet(db, ctx, sheet_id)
    sheet.deleted_at = datetime.now(timezone.utc)
    sheet.updated_by = actor_id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="collection_sheet.deleted",
        resource_type="collection_sheet",
        resource_id=str(sheet.id),
    )
    await db.commit()
    await db.refresh(sheet)
    logger.info("Collection sheet deleted", extra={"sheet_id": str(sheet.id)})
    return sheet


async def restore_sheet(db: AsyncSession, ctx: deps.TenantContext, sheet_id, *, actor_id) -> CollectionSheet:
    sheet = await get_sheet(db, ctx, sheet_id, include_deleted=True)
    if sheet.deleted_at is None:
        raise ServiceError("Collection sheet is not deleted", code="not_deleted")
    sheet.deleted_at = None
    sheet.updated_by = actor_id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="collection_sheet.restored",
        resource_type="collection_sheet",
        resource_id=str(sheet.id),
    )
    await db.commit()
    await db.refresh(sheet)
    return sheet


async def sheet_items(db: AsyncSession, ctx: deps.TenantContext, sheet_id) -> CollectionSheetItemsResponse:
    sheet = await get_sheet(db, ctx, sheet_id)
    stmt = (
        select(LoanSchedule, Loan.reference, Borrower.id, Borrower.name)
        .join(Loan, Loan.id == LoanSchedule.loan_id)
        .join(Borrower, Borrower.id == Loan.borrower_id)
        .where(
            LoanSchedule.tenant_id == ctx.tenant_id,
            Loan.status.in_(loan_workflow.SERVICING_STATUSES),
            LoanSchedule.status != InstallmentStatus.PAID.value,
            LoanSchedule.due_date <= sheet.date,
        )
        .order_by(Borrower.name, LoanSchedule.due_date, LoanSchedule.period)
    )
    if sheet.branch_id is not None:
        stmt = stmt.where(Loan.branch_id == sheet.branch_id)
    if sheet.loan_officer_id is not None:
        stmt = stmt.where(Borrower.loan_officer_id == sheet.loan_officer_id)

    items: list[CollectionItemOut] = []
    for row, reference, borrower_id, borrower_name in (await db.execute(stmt)).all():
        amount_due = sum(payment_allocation.remaining_due(row).values(), ZERO)
        if amount_due <= 0:
            continue
        items.append(
            CollectionItemOut(
                loan_id=row.loan_id,
                reference=reference,
                borrower_id=borrower_id,
                borrower_name=borrower_name,
                period=row.period,
                due_date=row.due_date,
                amount_due=amount_due,
                status=row.status,
            )
        )
    return CollectionSheetItemsResponse(
        sheet_id=sheet.id,
        date=sheet.date,
        items=items,
        total_due=sum((item.amount_due for item in items), ZERO),
    )
