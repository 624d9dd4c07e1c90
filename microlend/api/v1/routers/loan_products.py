from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.loan import (
    LoanProductCreate,
    LoanProductListResponse,
    LoanProductOut,
    LoanProductUpdate,
    ProductStatus,
)
from microlend.services import loan_products

router = APIRouter(
    prefix="/loan-products",
    tags=["loan-products"],
    dependencies=[Depends(deps.require_entitlement(EntitlementKey.LOANS))],
)


@router.get("", response_model=LoanProductListResponse, summary="List loan products")
async def list_products(
    status: ProductStatus | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_PRODUCT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanProductListResponse:
    items, total = await loan_products.list_products(db, ctx, status=status.value if status else None)
    return LoanProductListResponse(items=items, total=total)


@router.post("", response_model=LoanProductOut, status_code=201, summary="Create a loan product")
async def create_product(
    payload: LoanProductCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_PRODUCT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanProductOut:
    return await loan_products.create_product(db, ctx, payload, actor_id=current_user.id)


@router.get("/{product_id}", response_model=LoanProductOut, summary="Get a loan product")
async def get_product(
    product_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_PRODUCT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanProductOut:
    return await loan_products.get_product(db, ctx, product_id)


@router.patch("/{product_id}", response_model=LoanProductOut, summary="Update a loan product")
async def update_product(
    product_id: UUID,
    payload: LoanProductUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_PRODUCT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanProductOut:
    return await loan_products.update_product(db, ctx, product_id, payload, actor_id=current_user.id)
