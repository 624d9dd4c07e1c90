from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    email: str
    full_name: str
    phone_number: str | None = None
    is_active: bool
    is_superuser: bool
    last_active_at: datetime | None = None
    created_at: datetime | None = None


class MeResponse(BaseModel):
    user: UserOut
    roles: list[str]
    permissions: list[str]
