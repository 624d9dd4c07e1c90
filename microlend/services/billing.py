from __future__ import annotations

import calendar
import logging
import secrets
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import ConflictError, InvalidTransition, NotFoundError, ServiceError
from microlend.models.invoice import Invoice
from microlend.models.plan import Plan
from microlend.schemas.tenants import InvoiceCreate, InvoiceStatus, TenantStatus
from microlend.services import entitlements
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)


def period_bounds(period: str) -> tuple[date, date]:
    year, month = (int(part) for part in period.split("-"))
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def invoice_number(period_start: date) -> str:
    return f"INV-{period_start:%Y%m}-{secrets.token_hex(3).upper()}"


async def _get_invoice(db: AsyncSession, ctx: deps.TenantContext, invoice_id) -> Invoice:
    stmt = select(Invoice).where(Invoice.tenant_id == ctx.tenant_id, Invoice.id == invoice_id)
    invoice = (await db.execute(stmt)).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


async def list_invoices(
    db: AsyncSession, ctx: deps.TenantContext, *, status: str | None = None
) -> list[Invoice]:
    stmt = select(Invoice).where(Invoice.tenant_id == ctx.tenant_id)
    if status:
        stmt = stmt.where(Invoice.status == status)
    stmt = stmt.order_by(Invoice.period_start.desc())
    return list((await db.execute(stmt)).scalars().all())


async def issue_invoice(
    db: AsyncSession, ctx: deps.TenantContext, payload: InvoiceCreate, *, actor_id
) -> Invoice:
    tenant = await entitlements.get_tenant(db, ctx.tenant_id)
    if tenant.plan_id is None:
        raise ServiceError("Tenant has no plan to bill", code="no_plan")
    plan = (await db.execute(select(Plan).where(Plan.id == tenant.plan_id))).scalar_one()
    period_start, period_end = period_bounds(payload.period)
    duplicate_stmt = select(Invoice.id).where(
        Invoice.tenant_id == ctx.tenant_id, Invoice.period_start == period_start
    )
    if (await db.execute(duplicate_stmt)).scalar_one_or_none() is not None:
        raise ConflictError(
            f"An invoice for {payload.period} already exists", code="invoice_exists"
        )
    invoice = Invoice(
        tenant_id=ctx.tenant_id,
        plan_id=plan.id,
        number=invoice_number(period_start),
        amount=plan.price_monthly,
        currency=plan.currency,
        period_start=period_start,
        period_end=period_end,
        due_date=date.today() + timedelta(days=payload.due_in_days),
        status=InvoiceStatus.OPEN.value,
    )
    db.add(invoice)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="invoice.issued",
        resource_type="invoice",
        resource_id=str(invoice.id),
        new_value=model_snapshot(invoice),
    )
    await db.commit()
    logger.info("Invoice issued", extra={"invoice": invoice.number})
    return invoice


async def pay_invoice(db: AsyncSession, ctx: deps.TenantContext, invoice_id, *, actor_id) -> Invoice:
    """Settle an open invoice; a suspended tenant with nothing else open is reactivated."""
    invoice = await _get_invoice(db, ctx, invoice_id)
    if invoice.status != InvoiceStatus.OPEN.value:
        raise InvalidTransition("invoice", invoice.status, InvoiceStatus.PAID.value)
    old_snapshot = model_snapshot(invoice)
    invoice.status = InvoiceStatus.PAID.value
    invoice.paid_at = datetime.now(timezone.utc)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="invoice.paid",
        resource_type="invoice",
        resource_id=str(invoice.id),
        old_value=old_snapshot,
        new_value=model_snapshot(invoice),
    )

    open_stmt = select(func.count()).select_from(Invoice).where(
        Invoice.tenant_id == ctx.tenant_id,
        Invoice.status == InvoiceStatus.OPEN.value,
        Invoice.id != invoice.id,
    )
    still_open = int((await db.execute(open_stmt)).scalar_one() or 0)
    tenant = await entitlements.get_tenant(db, ctx.tenant_id)
    if tenant.status == TenantStatus.SUSPENDED.value and still_open == 0:
        tenant_snapshot = model_snapshot(tenant)
        tenant.status = TenantStatus.ACTIVE.value
        record_audit_log(
            db,
            ctx,
            actor_id=actor_id,
            action="tenant.activated",
            resource_type="tenant",
            resource_id=tenant.id,
            old_value=tenant_snapshot,
            new_value=model_snapshot(tenant),
        )
        logger.info("Tenant reactivated after payment", extra={"invoice": invoice.number})
    await db.commit()
    return invoice


async def void_invoice(db: AsyncSession, ctx: deps.TenantContext, invoice_id, *, actor_id) -> Invoice:
    invoice = await _get_invoice(db, ctx, invoice_id)
    if invoice.status != InvoiceStatus.OPEN.value:
        raise InvalidTransition("invoice", invoice.status, InvoiceStatus.VOID.value)
    old_snapshot = model_snapshot(invoice)
    invoice.status = InvoiceStatus.VOID.value
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="invoice.voided",
        resource_type="invoice",
        resource_id=str(invoice.id),
        old_value=old_snapshot,
        new_value=model_snapshot(invoice),
    )
    await db.commit()
    return invoice
