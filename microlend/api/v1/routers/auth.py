import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.api.auth_utils import constant_time_verify, enforce_login_limits, record_login_attempt
from microlend.core.limiter import limiter
from microlend.core.security import create_access_token, create_refresh_token, decode_token
from microlend.core.settings import settings
from microlend.db.session import get_db
from microlend.models import User
from microlend.schemas.auth import LoginRequest, MeResponse, RefreshRequest, TokenPair, UserOut
from microlend.services import authz
from microlend.utils.login_security import is_refresh_used, mark_refresh_used

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

_INVALID_CREDENTIALS = {"code": "invalid_credentials", "message": "Invalid email or password"}


def _issue_tokens(user: User, tenant_id: str) -> TokenPair:
    access = create_access_token(str(user.id), tenant_id, token_version=user.token_version)
    refresh = create_refresh_token(str(user.id), tenant_id, token_version=user.token_version)
    return TokenPair(access_token=access, refresh_token=refresh)


@router.post("/login", response_model=TokenPair)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
) -> TokenPair:
    client_ip = request.client.host if request.client else "unknown"
    await enforce_login_limits(client_ip, ctx.tenant_id, credentials.email)

    stmt = select(User).where(User.tenant_id == ctx.tenant_id, User.email == credentials.email.lower())
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user or not constant_time_verify(user.hashed_password if user else None, credentials.password):
        await record_login_attempt(ctx.tenant_id, credentials.email, success=False)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_CREDENTIALS)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_CREDENTIALS)

    user.last_active_at = datetime.now(timezone.utc)
    db.add(user)
    await db.commit()
    await record_login_attempt(ctx.tenant_id, credentials.email, success=True)
    logger.info("User logged in", extra={"tenant_id": ctx.tenant_id, "user_id": str(user.id)})
    return _issue_tokens(user, ctx.tenant_id)


@router.post("/refresh", response_model=TokenPair)
async def refresh_tokens(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
) -> TokenPair:
    try:
        token_data = decode_token(payload.refresh_token, expected_type="refresh")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user_id = token_data.get("sub")
    token_version = token_data.get("tv")
    jti = token_data.get("jti")
    exp_ts = token_data.get("exp")
    if not user_id or token_version is None or not jti or not exp_ts:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if token_data.get("tid") != ctx.tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued for another tenant")

    stmt = select(User).where(User.id == user_id, User.tenant_id == ctx.tenant_id)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.token_version != token_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")

    now = datetime.now(timezone.utc)
    deps.enforce_inactivity(user.last_active_at, now)

    # rotation: a refresh token is good for one use; reuse revokes every session
    if await is_refresh_used(jti):
        user.token_version += 1
        db.add(user)
        await db.commit()
        logger.warning("Refresh token reuse detected", extra={"tenant_id": ctx.tenant_id, "user_id": str(user.id)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token reuse detected")
    await mark_refresh_used(jti, datetime.fromtimestamp(exp_ts, tz=timezone.utc))

    user.last_active_at = now
    db.add(user)
    await db.commit()
    return _issue_tokens(user, ctx.tenant_id)


@router.post("/logout", status_code=204)
async def logout(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    current_user.token_version += 1
    db.add(current_user)
    await db.commit()
    return None


@router.get("/me", response_model=MeResponse)
async def read_current_user(
    current_user: User = Depends(deps.get_current_user),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    roles = await authz.load_role_names(db, current_user.id, ctx.tenant_id)
    permissions = await authz.effective_permissions(db, current_user, ctx.tenant_id)
    return MeResponse(user=UserOut.model_validate(current_user), roles=roles, permissions=permissions)
