from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.tenants import InvoiceCreate, InvoiceListResponse, InvoiceOut, InvoiceStatus
from microlend.services import billing

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/invoices", response_model=InvoiceListResponse, summary="List tenant invoices")
async def list_invoices(
    status: InvoiceStatus | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.BILLING_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceListResponse:
    invoices = await billing.list_invoices(db, ctx, status=status.value if status else None)
    return InvoiceListResponse(items=invoices, total=len(invoices))


@router.post("/invoices", response_model=InvoiceOut, status_code=201, summary="Issue a monthly invoice")
async def issue_invoice(
    payload: InvoiceCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BILLING_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceOut:
    return await billing.issue_invoice(db, ctx, payload, actor_id=current_user.id)


@router.post("/invoices/{invoice_id}/pay", response_model=InvoiceOut, summary="Mark an invoice paid")
async def pay_invoice(
    invoice_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BILLING_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceOut:
    return await billing.pay_invoice(db, ctx, invoice_id, actor_id=current_user.id)


@router.post("/invoices/{invoice_id}/void", response_model=InvoiceOut, summary="Void an open invoice")
async def void_invoice(
    invoice_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BILLING_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceOut:
    return await billing.void_invoice(db, ctx, invoice_id, actor_id=current_user.id)
