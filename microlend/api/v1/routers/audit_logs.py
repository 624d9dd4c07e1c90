from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.api import deps
from microlend.core.permissions import PermissionCode
from microlend.db.session import get_db
from microlend.models.user import User
from microlend.schemas.audit import AuditLogListResponse
from microlend.services import audit


router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("", response_model=AuditLogListResponse, summary="List audit logs for the tenant")
async def list_audit_logs(
    action: list[str] | None = Query(default=None, description="Exact action, or a prefix ending in '.'"),
    resource_type: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    actor_id: UUID | None = Query(default=None),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    _: User = Depends(deps.require_permission(PermissionCode.AUDIT_LOG_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    items, total = await audit.list_audit_logs(
        db,
        ctx,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        actions=action,
        created_from=created_from,
        created_to=created_to,
        offset=offset,
        limit=limit,
    )
    return AuditLogListResponse(items=items, total=total)
