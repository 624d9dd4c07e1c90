import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.borrowers import (
    BlacklistRequest,
    BorrowerCreate,
    BorrowerListResponse,
    BorrowerOut,
    BorrowerStatus,
    BorrowerUpdate,
)
from microlend.services import borrowers as borrower_service

router = APIRouter(
    prefix="/borrowers",
    tags=["borrowers"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)
logger = logging.getLogger(__name__)


@router.get("", response_model=BorrowerListResponse, summary="List borrowers")
async def list_borrowers(
    search: str | None = Query(default=None, max_length=100),
    status: BorrowerStatus | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.BORROWER_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerListResponse:
    items, total = await borrower_service.list_borrowers(
        db, ctx, search=search, status=status.value if status else None, offset=offset, limit=limit
    )
    return BorrowerListResponse(items=items, total=total)


@router.post("", response_model=BorrowerOut, status_code=201, summary="Create a borrower")
async def create_borrower(
    payload: BorrowerCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BORROWER_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerOut:
    borrower = await borrower_service.create_borrower(db, ctx, payload, actor_id=current_user.id)
    logger.info("Borrower created", extra={"tenant_id": ctx.tenant_id, "borrower_id": str(borrower.id)})
    return borrower


@router.get("/{borrower_id}", response_model=BorrowerOut, summary="Get a borrower")
async def get_borrower(
    borrower_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.BORROWER_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerOut:
    return await borrower_service.get_borrower(db, ctx, borrower_id)


@router.patch("/{borrower_id}", response_model=BorrowerOut, summary="Update a borrower")
async def update_borrower(
    borrower_id: UUID,
    payload: BorrowerUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BORROWER_EDIT)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerOut:
    return await borrower_service.update_borrower(db, ctx, borrower_id, payload, actor_id=current_user.id)


@router.post("/{borrower_id}/blacklist", response_model=BorrowerOut, summary="Blacklist a borrower")
async def blacklist_borrower(
    borrower_id: UUID,
    payload: BlacklistRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BORROWER_BLACKLIST)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerOut:
    return await borrower_service.set_blacklisted(
        db, ctx, borrower_id, blacklisted=True, reason=payload.reason, actor_id=current_user.id
    )


@router.post("/{borrower_id}/unblacklist", response_model=BorrowerOut, summary="Lift a blacklist")
async def unblacklist_borrower(
    borrower_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BORROWER_BLACKLIST)),
    db: AsyncSession = Depends(get_db),
) -> BorrowerOut:
    return await borrower_service.set_blacklisted(
        db, ctx, borrower_id, blacklisted=False, actor_id=current_user.id
    )
