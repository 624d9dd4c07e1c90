from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from microlend.schemas.auth import UserOut
from microlend.schemas.common import normalize_code, normalize_title_text


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    password: str
    phone_number: str | None = None
    branch_id: UUID | None = None
    roles: list[str] = []

    @field_validator("full_name")
    @classmethod
    def normalize_full_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("full_name cannot be empty")
        return value


class UserUpdate(BaseModel):
    full_name: str | None = None
    phone_number: str | None = None
    branch_id: UUID | None = None
    is_active: bool | None = None

    @field_validator("full_name")
    @classmethod
    def normalize_full_name(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class UserListResponse(BaseModel):
    items: list[UserOut]
    total: int


class BranchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=50)
    address: str | None = None
    phone: str | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Branch name cannot be empty")
        return value

    @field_validator("code")
    @classmethod
    def normalize_branch_code(cls, v: str) -> str:
        value = normalize_code(v)
        if not value:
            raise ValueError("Branch code cannot be empty")
        return value


class BranchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    code: str
    address: str | None = None
    phone: str | None = None
    is_active: bool
    created_at: datetime | None = None


class BranchListResponse(BaseModel):
    items: list[BranchOut]
    total: int
