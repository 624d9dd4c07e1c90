import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.payments import (
    AllocationOut,
    PaymentCreate,
    PaymentListResponse,
    PaymentOut,
    PaymentPreviewRequest,
    PaymentReasonRequest,
    PaymentStatus,
    ReceiptOut,
)
from microlend.services import loan_payments, loan_workflow

router = APIRouter(
    tags=["payments"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)
logger = logging.getLogger(__name__)


@router.get("/loans/{loan_id}/payments", response_model=PaymentListResponse, summary="List loan payments")
async def list_payments(
    loan_id: UUID,
    status: PaymentStatus | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> PaymentListResponse:
    await loan_workflow.get_loan(db, ctx, loan_id)
    items, total = await loan_payments.list_payments(
        db, ctx, loan_id, status=status.value if status else None, offset=offset, limit=limit
    )
    return PaymentListResponse(items=items, total=total)


@router.post(
    "/loans/{loan_id}/payments/preview",
    response_model=AllocationOut,
    summary="Preview how a payment would be allocated",
)
async def preview_payment(
    loan_id: UUID,
    payload: PaymentPreviewRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AllocationOut:
    return await loan_payments.preview_payment(db, ctx, loan_id, payload)


@router.post("/loans/{loan_id}/payments", response_model=PaymentOut, status_code=201, summary="Record a payment")
async def create_payment(
    loan_id: UUID,
    payload: PaymentCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    payment = await loan_payments.create_payment(db, ctx, loan_id, payload, actor_id=current_user.id)
    logger.info(
        "Payment recorded",
        extra={"tenant_id": ctx.tenant_id, "loan_id": str(loan_id), "receipt_no": payment.receipt_no},
    )
    return payment


@router.post("/payments/{payment_id}/approve", response_model=PaymentOut, summary="Approve and apply a payment")
async def approve_payment(
    payment_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_APPROVE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    return await loan_payments.approve_payment(db, ctx, payment_id, actor_id=current_user.id)


@router.post("/payments/{payment_id}/reject", response_model=PaymentOut, summary="Reject a pending payment")
async def reject_payment(
    payment_id: UUID,
    payload: PaymentReasonRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_APPROVE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    return await loan_payments.reject_payment(db, ctx, payment_id, payload.reason, actor_id=current_user.id)


@router.post("/payments/{payment_id}/void", response_model=PaymentOut, summary="Void an applied payment")
async def void_payment(
    payment_id: UUID,
    payload: PaymentReasonRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_REVERSE)),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    payment = await loan_payments.void_payment(db, ctx, payment_id, payload.reason, actor_id=current_user.id)
    logger.info("Payment voided", extra={"tenant_id": ctx.tenant_id, "payment_id": str(payment.id)})
    return payment


@router.get("/payments/{payment_id}/receipt", response_model=ReceiptOut, summary="Payment receipt")
async def payment_receipt(
    payment_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.REPAYMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> ReceiptOut:
    return await loan_payments.build_receipt(db, ctx, payment_id)
