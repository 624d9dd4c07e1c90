from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from microlend.schemas.common import normalize_description_text, normalize_title_text


class RoleCreate(BaseModel):
    name: str
    description: str | None = None
    permissions: list[str] = []

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Role name cannot be empty")
        return value.upper().replace(" ", "_")

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Role name cannot be empty")
        return value.upper().replace(" ", "_")

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    description: str | None = None
    is_system_role: bool
    permissions: list[str]
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RoleListResponse(BaseModel):
    items: list[RoleOut]
    total: int


class PermissionCatalogResponse(BaseModel):
    permissions: list[str]
    system_roles: dict[str, list[str]]
