import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.db.session import get_db
from microlend.models.branch import Branch
from microlend.models.user import User
from microlend.schemas.users import BranchCreate, BranchListResponse, BranchOut
from microlend.services.audit import model_snapshot, record_audit_log

router = APIRouter(prefix="/branches", tags=["branches"])
logger = logging.getLogger(__name__)


@router.get("", response_model=BranchListResponse, summary="List branches")
async def list_branches(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.BRANCH_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> BranchListResponse:
    stmt = select(Branch).where(Branch.tenant_id == ctx.tenant_id).order_by(Branch.name)
    branches = (await db.execute(stmt)).scalars().all()
    return BranchListResponse(items=branches, total=len(branches))


@router.post("", response_model=BranchOut, status_code=201, summary="Create a branch")
async def create_branch(
    payload: BranchCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_permission(PermissionCode.BRANCH_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> BranchOut:
    branch = Branch(
        tenant_id=ctx.tenant_id,
        name=payload.name,
        code=payload.code,
        address=payload.address,
        phone=payload.phone,
        is_active=True,
    )
    db.add(branch)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "branch_exists", "message": "Branch code already exists"},
        ) from exc
    record_audit_log(
        db,
        ctx,
        actor_id=current_user.id,
        action="branch.created",
        resource_type="branch",
        resource_id=str(branch.id),
        new_value=model_snapshot(branch),
    )
    await db.commit()
    await db.refresh(branch)
    logger.info("Branch created", extra={"tenant_id": ctx.tenant_id, "branch_id": str(branch.id)})
    return branch
