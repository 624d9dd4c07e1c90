from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.core.response_envelope import build_success_envelope
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.disbursements import (
    BatchCreate,
    BatchFailRequest,
    DisbursementBatchListResponse,
    DisbursementBatchOut,
    DisbursementStatus,
)
from microlend.services import disbursements, exports

router = APIRouter(
    prefix="/disbursements",
    tags=["disbursements"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)


@router.get("/batches", response_model=DisbursementBatchListResponse, summary="List disbursement batches")
async def list_batches(
    status: DisbursementStatus | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchListResponse:
    items, total = await disbursements.list_batches(
        db, ctx, status=status.value if status else None, offset=offset, limit=limit
    )
    return DisbursementBatchListResponse(items=items, total=total)


@router.post("/batches", status_code=201, summary="Queue approved loans for disbursement")
async def create_batch(
    payload: BatchCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    batch, skipped = await disbursements.create_batch(db, ctx, payload, actor_id=current_user.id)
    envelope = build_success_envelope(
        DisbursementBatchOut.model_validate(batch).model_dump(mode="json"), 201
    )
    envelope["details"] = {"skipped": skipped}
    return JSONResponse(status_code=201, content=envelope)


@router.get("/batches/{batch_id}", response_model=DisbursementBatchOut, summary="Get a batch with its items")
async def get_batch(
    batch_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchOut:
    return await disbursements.get_batch(db, ctx, batch_id)


@router.get(
    "/batches/{batch_id}/export.csv",
    response_class=StreamingResponse,
    summary="Export batch items as CSV",
)
async def export_batch(
    batch_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    batch = await disbursements.get_batch(db, ctx, batch_id)
    return StreamingResponse(
        iter([exports.batch_to_csv(batch)]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="disbursement_batch_{batch.id}.csv"'},
    )


@router.post("/batches/{batch_id}/send", response_model=DisbursementBatchOut, summary="Mark a batch sent")
async def send_batch(
    batch_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchOut:
    return await disbursements.mark_sent(db, ctx, batch_id, actor_id=current_user.id)


@router.post("/batches/{batch_id}/post", response_model=DisbursementBatchOut, summary="Disburse the batch loans")
async def post_batch(
    batch_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchOut:
    return await disbursements.post_batch(db, ctx, batch_id, actor_id=current_user.id)


@router.post("/batches/{batch_id}/fail", response_model=DisbursementBatchOut, summary="Fail a batch")
async def fail_batch(
    batch_id: UUID,
    payload: BatchFailRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchOut:
    return await disbursements.fail_batch(
        db, ctx, batch_id, payload.error_message, actor_id=current_user.id
    )


@router.post("/batches/{batch_id}/retry", response_model=DisbursementBatchOut, summary="Requeue a failed batch")
async def retry_batch(
    batch_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.DISBURSEMENT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> DisbursementBatchOut:
    return await disbursements.retry_batch(db, ctx, batch_id, actor_id=current_user.id)
