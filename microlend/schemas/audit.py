from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    actor_id: UUID | None = None
    action: str
    resource_type: str
    resource_id: str
    old_value: Any | None = None
    new_value: Any | None = None
    changes: Any | None = None
    summary: str | None = None
    created_at: datetime | None = None


class AuditLogListResponse(BaseModel):
    items: list[AuditLogOut]
    total: int
