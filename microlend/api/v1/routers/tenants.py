import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.tenants import (
    FeatureFlagUpdate,
    PlanChangeRequest,
    PlanListResponse,
    TenantDetailResponse,
    TenantStatus,
    TenantUpdate,
)
from microlend.services import tenants as tenant_service

router = APIRouter(tags=["tenants"])
logger = logging.getLogger(__name__)


@router.get("/plans", response_model=PlanListResponse, summary="List active plans")
async def list_plans(
    _: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> PlanListResponse:
    plans = await tenant_service.list_plans(db)
    return PlanListResponse(items=plans, total=len(plans))


@router.get("/tenants/current", response_model=TenantDetailResponse, summary="Current tenant")
async def read_current_tenant(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.TENANT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    return await tenant_service.tenant_detail(db, ctx.tenant_id)


@router.patch("/tenants/current", response_model=TenantDetailResponse, summary="Update the tenant")
async def update_current_tenant(
    payload: TenantUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.TENANT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    await tenant_service.update_tenant(db, ctx, payload, actor_id=current_user.id)
    return await tenant_service.tenant_detail(db, ctx.tenant_id)


@router.post("/tenants/current/suspend", response_model=TenantDetailResponse, summary="Suspend the tenant")
async def suspend_tenant(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SYSTEM_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    await tenant_service.set_status(db, ctx, TenantStatus.SUSPENDED, actor_id=current_user.id)
    logger.info("Tenant suspended", extra={"tenant_id": ctx.tenant_id})
    return await tenant_service.tenant_detail(db, ctx.tenant_id)


@router.post("/tenants/current/activate", response_model=TenantDetailResponse, summary="Reactivate the tenant")
async def activate_tenant(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.SYSTEM_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    await tenant_service.set_status(db, ctx, TenantStatus.ACTIVE, actor_id=current_user.id)
    logger.info("Tenant activated", extra={"tenant_id": ctx.tenant_id})
    return await tenant_service.tenant_detail(db, ctx.tenant_id)


@router.put("/tenants/current/plan", response_model=TenantDetailResponse, summary="Change the tenant plan")
async def change_plan(
    payload: PlanChangeRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BILLING_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    await tenant_service.change_plan(db, ctx, payload.plan_code, actor_id=current_user.id)
    logger.info("Tenant plan changed", extra={"tenant_id": ctx.tenant_id, "plan_code": payload.plan_code})
    return await tenant_service.tenant_detail(db, ctx.tenant_id)


@router.put("/tenants/current/features/{key}", response_model=TenantDetailResponse, summary="Override a feature")
async def set_feature_flag(
    key: str,
    payload: FeatureFlagUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.TENANT_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> TenantDetailResponse:
    await tenant_service.set_feature_flag(db, ctx, key, payload.enabled, actor_id=current_user.id)
    return await tenant_service.tenant_detail(db, ctx.tenant_id)
