import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.db.session import get_db
from microlend.models.role import Role
from microlend.models.user import User
from microlend.models.user_role import UserRole
from microlend.schemas.roles import (
    PermissionCatalogResponse,
    RoleCreate,
    RoleListResponse,
    RoleOut,
    RoleUpdate,
)
from microlend.services.audit import model_snapshot, record_audit_log
from microlend.services.authz import SYSTEM_ROLE_DEFINITIONS

router = APIRouter(prefix="/roles", tags=["roles"])
logger = logging.getLogger(__name__)


def _validated_permissions(codes: list[str]) -> list[str]:
    unknown = PermissionCode.unknown(codes)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "invalid_permission",
                "message": f"Unknown permission: {', '.join(unknown)}",
                "details": {"unknown": unknown},
            },
        )
    return PermissionCode.normalize(codes)


async def _get_role(db: AsyncSession, ctx: deps.TenantContext, role_id: UUID) -> Role:
    stmt = select(Role).where(Role.id == role_id, Role.tenant_id == ctx.tenant_id)
    role = (await db.execute(stmt)).scalar_one_or_none()
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


@router.get("", response_model=RoleListResponse, summary="List roles for the current tenant")
async def list_roles(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.ROLE_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> RoleListResponse:
    stmt = select(Role).where(Role.tenant_id == ctx.tenant_id).order_by(Role.name)
    roles = (await db.execute(stmt)).scalars().all()
    return RoleListResponse(items=roles, total=len(roles))


@router.get("/permissions", response_model=PermissionCatalogResponse, summary="Permission catalog")
async def permission_catalog(
    _: User = Depends(deps.require_permission(PermissionCode.ROLE_VIEW)),
) -> PermissionCatalogResponse:
    return PermissionCatalogResponse(
        permissions=PermissionCode.list_all(),
        system_roles={name: list(definition["permissions"]) for name, definition in SYSTEM_ROLE_DEFINITIONS.items()},
    )


@router.post("", response_model=RoleOut, status_code=201, summary="Create a custom role")
async def create_role(
    payload: RoleCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> RoleOut:
    role = Role(
        tenant_id=ctx.tenant_id,
        name=payload.name,
        description=payload.description,
        is_system_role=False,
        permissions=_validated_permissions(payload.permissions),
    )
    db.add(role)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "role_exists", "message": "Role name already exists"},
        ) from exc
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="role.created",
        resource_type="role",
        resource_id=str(role.id),
        new_value=model_snapshot(role),
    )
    await db.commit()
    await db.refresh(role)
    logger.info(
        "Role created",
        extra={"tenant_id": ctx.tenant_id, "role_id": str(role.id), "role_name": role.name},
    )
    return role


@router.patch("/{role_id}", response_model=RoleOut, summary="Update a role")
async def update_role(
    role_id: UUID,
    payload: RoleUpdate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> RoleOut:
    role = await _get_role(db, ctx, role_id)
    old_snapshot = model_snapshot(role)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("name") and updates["name"] != role.name:
        if role.is_system_role:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System roles cannot be renamed")
        role.name = updates["name"]
    if updates.get("permissions") is not None:
        role.permissions = _validated_permissions(updates["permissions"])
    if "description" in updates:
        role.description = updates["description"]

    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "role_exists", "message": "Role name already exists"},
        ) from exc
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="role.updated",
        resource_type="role",
        resource_id=str(role.id),
        old_value=old_snapshot,
        new_value=model_snapshot(role),
    )
    await db.commit()
    await db.refresh(role)
    logger.info(
        "Role updated",
        extra={"tenant_id": ctx.tenant_id, "role_id": str(role.id), "role_name": role.name},
    )
    return role


@router.delete("/{role_id}", status_code=204, summary="Delete a custom role")
async def delete_role(
    role_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    role = await _get_role(db, ctx, role_id)
    if role.is_system_role:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System roles cannot be deleted")

    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="role.deleted",
        resource_type="role",
        resource_id=str(role.id),
        old_value=model_snapshot(role),
    )
    await db.delete(role)
    await db.commit()
    logger.info(
        "Role deleted",
        extra={"tenant_id": ctx.tenant_id, "role_id": str(role_id), "role_name": role.name},
    )
    return None


@router.post("/{role_id}/users/{user_id}", response_model=RoleOut, summary="Assign a role to a user")
async def assign_role(
    role_id: UUID,
    user_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> RoleOut:
    role = await _get_role(db, ctx, role_id)
    user_stmt = select(User).where(User.id == user_id, User.tenant_id == ctx.tenant_id)
    user = (await db.execute(user_stmt)).scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "user_not_found", "message": "User not found"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "user_inactive", "message": "Cannot assign role to inactive user"},
        )

    existing_stmt = select(func.count()).select_from(UserRole).where(
        UserRole.tenant_id == ctx.tenant_id, UserRole.user_id == user.id, UserRole.role_id == role.id
    )
    if not (await db.execute(existing_stmt)).scalar_one():
        db.add(UserRole(tenant_id=ctx.tenant_id, user_id=user.id, role_id=role.id))
        record_audit_log(
            db,
            ctx,
            actor_id=current_user.id,
            action="role.assigned",
            resource_type="user",
            resource_id=str(user.id),
            new_value={"role": role.name},
        )
        await db.commit()
        logger.info(
            "Role assigned",
            extra={"tenant_id": ctx.tenant_id, "role_id": str(role.id), "user_id": str(user.id)},
        )
    return role


@router.delete("/{role_id}/users/{user_id}", status_code=204, summary="Remove a role from a user")
async def unassign_role(
    role_id: UUID,
    user_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    role = await _get_role(db, ctx, role_id)
    await db.execute(
        delete(UserRole).where(
            UserRole.tenant_id == ctx.tenant_id, UserRole.user_id == user_id, UserRole.role_id == role.id
        )
    )
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="role.unassigned",
        resource_type="user",
        resource_id=str(user_id),
        old_value={"role": role.name},
    )
    await db.commit()
    logger.info(
        "Role unassigned",
        extra={"tenant_id": ctx.tenant_id, "role_id": str(role.id), "user_id": str(user_id)},
    )
    return None
