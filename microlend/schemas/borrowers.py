from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from microlend.schemas.common import normalize_description_text, normalize_title_text


class BorrowerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLACKLISTED = "blacklisted"


class BorrowerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    email: EmailStr | None = None
    address: str | None = None
    national_id: str | None = Field(default=None, max_length=64)
    branch_id: UUID | None = None
    loan_officer_id: UUID | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Borrower name cannot be empty")
        return value

    @field_validator("address", "national_id")
    @classmethod
    def strip_optional(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class BorrowerUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    email: EmailStr | None = None
    address: str | None = None
    national_id: str | None = Field(default=None, max_length=64)
    branch_id: UUID | None = None
    loan_officer_id: UUID | None = None
    status: BorrowerStatus | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return normalize_title_text(v)

    @field_validator("status")
    @classmethod
    def no_direct_blacklist(cls, v: BorrowerStatus | None) -> BorrowerStatus | None:
        if v == BorrowerStatus.BLACKLISTED:
            raise ValueError("Use the blacklist action to blacklist a borrower")
        return v


class BlacklistRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class BorrowerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    loan_officer_id: UUID | None = None
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    national_id: str | None = None
    status: BorrowerStatus
    blacklist_reason: str | None = None
    blacklisted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BorrowerListResponse(BaseModel):
    items: list[BorrowerOut]
    total: int
