from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.errors import InvalidTransition, NotFoundError, ServiceError
from microlend.core.permissions import EntitlementKey
from microlend.models.plan import Plan
from microlend.models.tenant import Tenant, TenantFeatureFlag
from microlend.schemas.tenants import (
    PlanOut,
    TenantDetailResponse,
    TenantOut,
    TenantStatus,
    TenantUpdate,
)
from microlend.services import entitlements
from microlend.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)


def plan_out(plan: Plan, keys) -> PlanOut:
    return PlanOut(
        id=plan.id,
        code=plan.code,
        name=plan.name,
        currency=plan.currency,
        price_monthly=plan.price_monthly,
        price_yearly=plan.price_yearly,
        limits=dict(plan.limits or {}),
        is_active=bool(plan.is_active),
        entitlements=sorted(keys),
    )


async def list_plans(db: AsyncSession) -> list[PlanOut]:
    stmt = select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.price_monthly, Plan.code)
    plans = (await db.execute(stmt)).scalars().all()
    return [plan_out(plan, await entitlements.plan_entitlement_keys(db, plan.id)) for plan in plans]


async def tenant_detail(db: AsyncSession, tenant_id: str) -> TenantDetailResponse:
    state = await entitlements.resolve_tenant_state(db, tenant_id)
    return TenantDetailResponse(
        tenant=TenantOut.model_validate(state.tenant),
        plan=plan_out(state.plan, state.plan_entitlements) if state.plan else None,
        entitlements=sorted(state.entitlements),
        feature_flags=state.flags,
    )


async def update_tenant(
    db: AsyncSession, ctx: deps.TenantContext, payload: TenantUpdate, *, actor_id
) -> Tenant:
    tenant = await entitlements.get_tenant(db, ctx.tenant_id)
    old_snapshot = model_snapshot(tenant)
    updates = payload.model_dump(exclude_unset=True)
    if "name" in updates and not updates["name"]:
        raise ServiceError("Tenant name cannot be empty", code="invalid_name")
    for field, value in updates.items():
        setattr(tenant, field, value)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="tenant.updated",
        resource_type="tenant",
        resource_id=tenant.id,
        old_value=old_snapshot,
        new_value=model_snapshot(tenant),
    )
    await db.commit()
    return tenant


async def set_status(
    db: AsyncSession, ctx: deps.TenantContext, status: TenantStatus, *, actor_id
) -> Tenant:
    tenant = await entitlements.get_tenant(db, ctx.tenant_id)
    if tenant.status == status.value:
        raise InvalidTransition("tenant", tenant.status, status.value)
    old_snapshot = model_snapshot(tenant)
    tenant.status = status.value
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=f"tenant.{'suspended' if status == TenantStatus.SUSPENDED else 'activated'}",
        resource_type="tenant",
        resource_id=tenant.id,
        old_value=old_snapshot,
        new_value=model_snapshot(tenant),
    )
    await db.commit()
    logger.info("Tenant status changed", extra={"status": tenant.status})
    return tenant


async def change_plan(
    db: AsyncSession, ctx: deps.TenantContext, plan_code: str, *, actor_id
) -> Tenant:
    plan = (
        await db.execute(select(Plan).where(Plan.code == plan_code, Plan.is_active.is_(True)))
    ).scalar_one_or_none()
    if plan is None:
        raise NotFoundError(f"Plan '{plan_code}' not found", code="plan_not_found")
    tenant = await entitlements.get_tenant(db, ctx.tenant_id)
    old_snapshot = model_snapshot(tenant)
    tenant.plan_id = plan.id
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="tenant.plan_changed",
        resource_type="tenant",
        resource_id=tenant.id,
        old_value=old_snapshot,
        new_value=model_snapshot(tenant),
    )
    await db.commit()
    return tenant


async def set_feature_flag(
    db: AsyncSession, ctx: deps.TenantContext, key: str, enabled: bool, *, actor_id
) -> TenantFeatureFlag:
    try:
        key = EntitlementKey(key).value
    except ValueError as exc:
        raise ServiceError(
            f"Unknown feature '{key}'",
            code="unknown_feature",
            details={"allowed": EntitlementKey.list_all()},
        ) from exc
    stmt = select(TenantFeatureFlag).where(
        TenantFeatureFlag.tenant_id == ctx.tenant_id, TenantFeatureFlag.key == key
    )
    flag = (await db.execute(stmt)).scalar_one_or_none()
    old_value = {"key": key, "enabled": flag.enabled} if flag else None
    if flag is None:
        flag = TenantFeatureFlag(tenant_id=ctx.tenant_id, key=key, enabled=enabled)
        db.add(flag)
    else:
        flag.enabled = enabled
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="tenant.feature_flag_set",
        resource_type="tenant",
        resource_id=ctx.tenant_id,
        old_value=old_value,
        new_value={"key": key, "enabled": enabled},
    )
    await db.commit()
    return flag
