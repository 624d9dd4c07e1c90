from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.collections import (
    CollectionScope,
    CollectionSheetCreate,
    CollectionSheetItemsResponse,
    CollectionSheetListResponse,
    CollectionSheetOut,
    CollectionSheetStatus,
    CollectionSheetType,
    CollectionSheetUpdate,
)
from microlend.services import collection_sheets as sheet_service
from microlend.services import exports

router = APIRouter(
    prefix="/collection-sheets",
    tags=["collection-sheets"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)


def _filters(
    search: str | None = Query(default=None, max_length=100),
    status: CollectionSheetStatus | None = Query(default=None),
    sheet_type: CollectionSheetType | None = Query(default=None, alias="type"),
    collector: str | None = Query(default=None, max_length=255),
    loan_officer: str | None = Query(default=None, max_length=255),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    scope: CollectionScope | None = Query(default=None),
    past_days: int = Query(sheet_service.DEFAULT_PAST_DAYS, ge=1, le=3650),
    include_deleted: bool = Query(default=False),
    sort: str | None = Query(default=None, max_length=50, description="field:asc|desc"),
) -> dict:
    return {
        "search": search,
        "status": status.value if status else None,
        "sheet_type": sheet_type.value if sheet_type else None,
        "collector": collector,
        "loan_officer": loan_officer,
        "date_from": date_from,
        "date_to": date_to,
        "scope": scope.value if scope else None,
        "past_days": past_days,
        "include_deleted": include_deleted,
        "sort": sort,
    }


@router.get("", response_model=CollectionSheetListResponse, summary="List collection sheets")
async def list_sheets(
    filters: dict = Depends(_filters),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.COLLECTION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetListResponse:
    items, total = await sheet_service.list_sheets(db, ctx, offset=offset, limit=limit, **filters)
    return CollectionSheetListResponse(items=items, total=total)


@router.get("/export", response_class=StreamingResponse, summary="Collection sheets as CSV")
async def export_sheets(
    filters: dict = Depends(_filters),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.COLLECTION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    sheets = await sheet_service.export_sheets(db, ctx, **filters)
    return StreamingResponse(
        iter([exports.collection_sheets_to_csv(sheets)]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="collection_sheets.csv"'},
    )


@router.post("", response_model=CollectionSheetOut, status_code=201, summary="Create a collection sheet")
async def create_sheet(
    payload: CollectionSheetCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.COLLECTION_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetOut:
    return await sheet_service.create_sheet(db, ctx, payload, actor_id=current_user.id)


@router.get("/{sheet_id}", response_model=CollectionSheetOut, summary="Get a collection sheet")
async def get_sheet(
    sheet_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.COLLECTION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetOut:
    return await sheet_service.get_sheet(db, ctx, sheet_id)


@router.get(
    "/{sheet_id}/items",
    response_model=CollectionSheetItemsResponse,
    summary="Installments to collect on a sheet",
)
async def sheet_items(
    sheet_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.COLLECTION_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetItemsResponse:
    return await sheet_service.sheet_items(db, ctx, sheet_id)


@router.patch("/{sheet_id}", response_model=CollectionSheetOut, summary="Update a collection sheet")
async def update_sheet(
    sheet_id: UUID,
    payload: CollectionSheetUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.COLLECTION_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetOut:
    return await sheet_service.update_sheet(db, ctx, sheet_id, payload, actor_id=current_user.id)


@router.delete("/{sheet_id}", response_model=CollectionSheetOut, summary="Soft-delete a collection sheet")
async def remove_sheet(
    sheet_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.COLLECTION_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetOut:
    return await sheet_service.remove_sheet(db, ctx, sheet_id, actor_id=current_user.id)


@router.post("/{sheet_id}/restore", response_model=CollectionSheetOut, summary="Restore a deleted sheet")
async def restore_sheet(
    sheet_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.COLLECTION_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> CollectionSheetOut:
    return await sheet_service.restore_sheet(db, ctx, sheet_id, actor_id=current_user.id)
