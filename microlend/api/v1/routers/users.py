import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.core.security import get_password_hash
from microlend.db.session import get_db
from microlend.models.branch import Branch
from microlend.models.role import Role
from microlend.models.user import User
from microlend.models.user_role import UserRole
from microlend.schemas.auth import UserOut
from microlend.schemas.users import UserCreate, UserListResponse, UserUpdate
from microlend.services.audit import model_snapshot, record_audit_log

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)

_AUDIT_EXCLUDE = ("hashed_password",)


async def _ensure_branch(db: AsyncSession, ctx: deps.TenantContext, branch_id: UUID | None) -> None:
    if branch_id is None:
        return
    stmt = select(Branch.id).where(Branch.id == branch_id, Branch.tenant_id == ctx.tenant_id)
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_branch", "message": "Branch not found in tenant"},
        )


@router.get("", response_model=UserListResponse, summary="List users in the tenant")
async def list_users(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.USER_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    conditions = [User.tenant_id == ctx.tenant_id]
    if ctx.branch_id is not None:
        conditions.append(User.branch_id == ctx.branch_id)
    total = (await db.execute(select(func.count()).select_from(User).where(*conditions))).scalar_one()
    stmt = select(User).where(*conditions).order_by(User.full_name).offset(offset).limit(limit)
    users = (await db.execute(stmt)).scalars().all()
    return UserListResponse(items=users, total=int(total or 0))


@router.post("", response_model=UserOut, status_code=201, summary="Create a user")
async def create_user(
    payload: UserCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    email = payload.email.lower()
    existing = select(User.id).where(User.tenant_id == ctx.tenant_id, User.email == email)
    if (await db.execute(existing)).scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "user_exists", "message": "A user with this email already exists"},
        )
    await _ensure_branch(db, ctx, payload.branch_id)

    roles: list[Role] = []
    if payload.roles:
        role_stmt = select(Role).where(Role.tenant_id == ctx.tenant_id, Role.name.in_(payload.roles))
        roles = list((await db.execute(role_stmt)).scalars().all())
        missing = sorted(set(payload.roles) - {role.name for role in roles})
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "unknown_role", "message": f"Unknown role: {', '.join(missing)}"},
            )

    try:
        hashed = get_password_hash(payload.password)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "weak_password", "message": str(exc)},
        ) from exc

    user = User(
        tenant_id=ctx.tenant_id,
        branch_id=payload.branch_id,
        email=email,
        full_name=payload.full_name,
        phone_number=payload.phone_number,
        hashed_password=hashed,
        is_active=True,
        is_superuser=False,
        token_version=0,
    )
    db.add(user)
    await db.flush()
    for role in roles:
        db.add(UserRole(tenant_id=ctx.tenant_id, user_id=user.id, role_id=role.id))
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="user.created",
        resource_type="user",
        resource_id=str(user.id),
        new_value={**model_snapshot(user, exclude=_AUDIT_EXCLUDE), "roles": [role.name for role in roles]},
    )
    await db.commit()
    await db.refresh(user)
    logger.info("User created", extra={"tenant_id": ctx.tenant_id, "user_id": str(user.id)})
    return user


@router.patch("/{user_id}", response_model=UserOut, summary="Update a user")
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    stmt = select(User).where(User.id == user_id, User.tenant_id == ctx.tenant_id)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    updates = payload.model_dump(exclude_unset=True)
    if "branch_id" in updates:
        await _ensure_branch(db, ctx, updates["branch_id"])
    old_snapshot = model_snapshot(user, exclude=_AUDIT_EXCLUDE)
    for field, value in updates.items():
        setattr(user, field, value)
    # deactivation revokes outstanding tokens
    if updates.get("is_active") is False:
        user.token_version += 1
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="user.updated",
        resource_type="user",
        resource_id=str(user.id),
        old_value=old_snapshot,
        new_value=model_snapshot(user, exclude=_AUDIT_EXCLUDE),
    )
    await db.commit()
    await db.refresh(user)
    logger.info("User updated", extra={"tenant_id": ctx.tenant_id, "user_id": str(user.id)})
    return user
