from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import ConflictError, NotFoundError, ServiceError
from microlend.models.loan_product import LoanProduct
from microlend.schemas.loan import LoanProductCreate, LoanProductUpdate
from microlend.services.audit import model_snapshot, record_audit_log


async def get_product(db: AsyncSession, ctx: deps.TenantContext, product_id) -> LoanProduct:
    stmt = select(LoanProduct).where(LoanProduct.tenant_id == ctx.tenant_id, LoanProduct.id == product_id)
    product = (await db.execute(stmt)).scalar_one_or_none()
    if product is None:
        raise NotFoundError("Loan product not found")
    return product


async def list_products(
    db: AsyncSession, ctx: deps.TenantContext, *, status: str | None = None
) -> tuple[list[LoanProduct], int]:
    conditions = [LoanProduct.tenant_id == ctx.tenant_id]
    if status:
        conditions.append(LoanProduct.status == status)
    total = (await db.execute(select(func.count()).select_from(LoanProduct).where(*conditions))).scalar_one()
    stmt = select(LoanProduct).where(*conditions).order_by(LoanProduct.name)
    return list((await db.execute(stmt)).scalars().all()), int(total or 0)


def check_bounds(product: LoanProduct) -> None:
    if product.min_principal > product.max_principal:
        raise ServiceError("min_principal must not exceed max_principal", code="invalid_product_bounds")
    if product.min_term_months > product.max_term_months:
        raise ServiceError("min_term_months must not exceed max_term_months", code="invalid_product_bounds")


async def create_product(
    db: AsyncSession, ctx: deps.TenantContext, payload: LoanProductCreate, *, actor_id
) -> LoanProduct:
    duplicate_stmt = select(LoanProduct.id).where(
        LoanProduct.tenant_id == ctx.tenant_id, LoanProduct.code == payload.code
    )
    if (await db.execute(duplicate_stmt)).scalar_one_or_none() is not None:
        raise ConflictError("Loan product code already exists", code="product_exists")
    product = LoanProduct(tenant_id=ctx.tenant_id, status="active", **payload.model_dump())
    db.add(product)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan_product.created",
        resource_type="loan_product",
        resource_id=str(product.id),
        new_value=model_snapshot(product),
    )
    await db.commit()
    return product


async def update_product(
    db: AsyncSession, ctx: deps.TenantContext, product_id, payload: LoanProductUpdate, *, actor_id
) -> LoanProduct:
    product = await get_product(db, ctx, product_id)
    old_snapshot = model_snapshot(product)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field not in {"penalty_rate"}:
            continue
        setattr(product, field, value)
    check_bounds(product)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan_product.updated",
        resource_type="loan_product",
        resource_id=str(product.id),
        old_value=old_snapshot,
        new_value=model_snapshot(product),
    )
    await db.commit()
    return product
