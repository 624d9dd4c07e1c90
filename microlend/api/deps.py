from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.core.context import set_branch_id, set_tenant_id
from microlend.core.permissions import EntitlementKey, PermissionCode
from microlend.core.security import decode_token
from microlend.core.settings import settings
from microlend.core.tenant import normalize_tenant_id, parse_branch_id
from microlend.db.session import get_db
from microlend.models import User
from microlend.services import authz, entitlements


@dataclass(slots=True)
class TenantContext:
    tenant_id: str
    branch_id: UUID | None = None


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def enforce_inactivity(last_active_at: Optional[datetime], now: datetime) -> None:
    timeout = timedelta(minutes=settings.session_timeout_minutes)
    if last_active_at and now - last_active_at > timeout:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "session_expired", "message": "Session expired due to inactivity"},
        )


def _resolve_subdomain(request: Request) -> str | None:
    host = request.headers.get("host", "").split(":")[0]
    if settings.allowed_tenant_hosts and host not in settings.allowed_tenant_hosts:
        return None
    parts = host.split(".")
    # ignore localhost and bare domains
    if len(parts) >= 3:
        return parts[0]
    return None


async def get_tenant_context(
    request: Request,
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    branch_id: str | None = Header(default=None, alias="X-Branch-ID"),
) -> TenantContext:
    if settings.tenancy_mode == "multi":
        candidate = tenant_id or _resolve_subdomain(request)
        if not candidate:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "tenant_required",
                    "message": "Tenant resolution failed: provide X-Tenant-ID header or subdomain",
                },
            )
    else:
        candidate = settings.default_tenant_id

    try:
        resolved_tenant = normalize_tenant_id(candidate)
        resolved_branch = parse_branch_id(branch_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_tenant_context", "message": str(exc)},
        ) from exc

    set_tenant_id(resolved_tenant)
    if resolved_branch is not None:
        set_branch_id(str(resolved_branch))
    return TenantContext(tenant_id=resolved_tenant, branch_id=resolved_branch)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    user_sub = payload.get("sub")
    if not user_sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("tid") and payload["tid"] != ctx.tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued for another tenant")

    stmt = select(User).where(User.id == user_sub, User.tenant_id == ctx.tenant_id)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    token_version = payload.get("tv")
    if token_version is not None and user.token_version != token_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")

    now = datetime.now(timezone.utc)
    enforce_inactivity(user.last_active_at, now)
    user.last_active_at = now
    db.add(user)
    await db.commit()
    return user


async def require_authenticated_user(current_user: User = Depends(get_current_user)) -> User:
    """Simple guard to require an authenticated user (no permission checks)."""
    return current_user


def require_permission(permission_code: PermissionCode | str):
    async def dependency(
        current_user: User = Depends(require_authenticated_user),
        ctx: TenantContext = Depends(get_tenant_context),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        allowed = await authz.check_permission(current_user, ctx, permission_code, db)
        if not allowed:
            target = (
                permission_code.value
                if isinstance(permission_code, PermissionCode)
                else str(permission_code)
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "forbidden", "message": f"Missing permission: {target}"},
            )
        return current_user

    return dependency


def require_entitlement(key: EntitlementKey | str):
    """Gate a route on the tenant's plan; suspended tenants are refused outright."""

    async def dependency(
        ctx: TenantContext = Depends(get_tenant_context),
        db: AsyncSession = Depends(get_db),
    ) -> None:
        target = key.value if isinstance(key, EntitlementKey) else str(key)
        state = await entitlements.resolve_tenant_state(db, ctx.tenant_id)
        if state.suspended:
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail={"code": "tenant_suspended", "message": "Tenant suspended for non-payment."},
            )
        if target not in state.entitlements:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "feature_disabled",
                    "message": f"Feature '{target}' is not enabled for this tenant.",
                },
            )

    return dependency
