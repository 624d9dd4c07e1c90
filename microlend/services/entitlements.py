from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.core.errors import NotFoundError, ServiceError
from microlend.core.permissions import EntitlementKey
from microlend.models.plan import Entitlement, Plan, PlanEntitlement
from microlend.models.tenant import Tenant, TenantFeatureFlag

ENTITLEMENT_LABELS = {
    EntitlementKey.LOANS.value: "Loans",
    EntitlementKey.SAVINGS.value: "Savings",
    EntitlementKey.ACCOUNTING.value: "Accounting",
    EntitlementKey.PAYROLL.value: "Payroll",
    EntitlementKey.REPORTS.value: "Reports",
}

PLAN_DEFINITIONS: dict[str, dict] = {
    "basic": {
        "name": "Basic",
        "price_monthly": Decimal("0"),
        "price_yearly": Decimal("0"),
        "limits": {"borrowers": 1000, "loans": 2000},
        "entitlements": [
            EntitlementKey.LOANS.value,
            EntitlementKey.SAVINGS.value,
            EntitlementKey.ACCOUNTING.value,
            EntitlementKey.REPORTS.value,
        ],
    },
    "pro": {
        "name": "Pro",
        "price_monthly": Decimal("29.00"),
        "price_yearly": Decimal("290.00"),
        "limits": {"borrowers": 10000, "loans": 20000},
        "entitlements": EntitlementKey.list_all(),
    },
    "premium": {
        "name": "Premium",
        "price_monthly": Decimal("99.00"),
        "price_yearly": Decimal("990.00"),
        "limits": {"borrowers": None, "loans": None},
        "entitlements": EntitlementKey.list_all(),
    },
}


@dataclass(slots=True)
class TenantState:
    tenant: Tenant
    plan: Plan | None
    plan_entitlements: set[str] = field(default_factory=set)
    flags: dict[str, bool] = field(default_factory=dict)
    entitlements: set[str] = field(default_factory=set)

    @property
    def suspended(self) -> bool:
        return self.tenant.status == "suspended"

    @property
    def limits(self) -> dict:
        return dict(self.plan.limits or {}) if self.plan is not None else {}


def effective_entitlements(plan_keys: Iterable[str], flags: Mapping[str, bool]) -> set[str]:
    """Plan keys with per-tenant overrides applied on top."""
    keys = set(plan_keys)
    for key, enabled in flags.items():
        if enabled:
            keys.add(key)
        else:
            keys.discard(key)
    return keys


def limit_reached(limits: Mapping, resource: str, current_count: int) -> bool:
    limit = limits.get(resource)
    if limit is None:
        return False
    return current_count >= int(limit)


async def plan_entitlement_keys(db: AsyncSession, plan_id) -> set[str]:
    if plan_id is None:
        return set()
    stmt = (
        select(Entitlement.key)
        .join(PlanEntitlement, PlanEntitlement.entitlement_id == Entitlement.id)
        .where(PlanEntitlement.plan_id == plan_id)
    )
    return {row[0] for row in (await db.execute(stmt)).all()}


async def load_feature_flags(db: AsyncSession, tenant_id: str) -> dict[str, bool]:
    stmt = select(TenantFeatureFlag.key, TenantFeatureFlag.enabled).where(
        TenantFeatureFlag.tenant_id == tenant_id
    )
    return {key: bool(enabled) for key, enabled in (await db.execute(stmt)).all()}


async def get_tenant(db: AsyncSession, tenant_id: str) -> Tenant:
    tenant = (await db.execute(select(Tenant).where(Tenant.id == tenant_id))).scalar_one_or_none()
    if tenant is None:
        raise NotFoundError("Tenant not found", code="tenant_not_found")
    return tenant


async def resolve_tenant_state(db: AsyncSession, tenant_id: str) -> TenantState:
    tenant = await get_tenant(db, tenant_id)
    plan = None
    if tenant.plan_id is not None:
        plan = (await db.execute(select(Plan).where(Plan.id == tenant.plan_id))).scalar_one_or_none()
    plan_keys = await plan_entitlement_keys(db, plan.id if plan else None)
    flags = await load_feature_flags(db, tenant_id)
    return TenantState(
        tenant=tenant,
        plan=plan,
        plan_entitlements=plan_keys,
        flags=flags,
        entitlements=effective_entitlements(plan_keys, flags),
    )


async def ensure_within_limit(db: AsyncSession, tenant_id: str, resource: str, model) -> None:
    """Refuse creation once the tenant's plan limit for ``resource`` is used up."""
    state = await resolve_tenant_state(db, tenant_id)
    limits = state.limits
    if limits.get(resource) is None:
        return
    count_stmt = select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
    current = int((await db.execute(count_stmt)).scalar_one() or 0)
    if limit_reached(limits, resource, current):
        raise ServiceError(
            f"Plan limit reached for {resource}",
            code="plan_limit_reached",
            details={"resource": resource, "limit": limits[resource], "current": current},
        )


async def seed_plans(db: AsyncSession, currency: str = "USD") -> dict[str, Plan]:
    """Upsert entitlement keys and the built-in plans; the caller commits."""
    existing_keys = {
        entitlement.key: entitlement
        for entitlement in (await db.execute(select(Entitlement))).scalars().all()
    }
    for key in EntitlementKey.list_all():
        if key not in existing_keys:
            entitlement = Entitlement(key=key, label=ENTITLEMENT_LABELS[key])
            db.add(entitlement)
            existing_keys[key] = entitlement
    await db.flush()

    existing_plans = {plan.code: plan for plan in (await db.execute(select(Plan))).scalars().all()}
    plans: dict[str, Plan] = {}
    for code, definition in PLAN_DEFINITIONS.items():
        plan = existing_plans.get(code)
        if plan is None:
            plan = Plan(code=code, currency=currency, is_active=True)
            db.add(plan)
        plan.name = definition["name"]
        plan.price_monthly = definition["price_monthly"]
        plan.price_yearly = definition["price_yearly"]
        plan.limits = definition["limits"]
        plans[code] = plan
    await db.flush()

    for code, plan in plans.items():
        linked = await plan_entitlement_keys(db, plan.id)
        for key in PLAN_DEFINITIONS[code]["entitlements"]:
            if key not in linked:
                db.add(PlanEntitlement(plan_id=plan.id, entitlement_id=existing_keys[key].id))
    await db.flush()
    return plans
