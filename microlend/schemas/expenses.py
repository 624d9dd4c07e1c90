import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from microlend.schemas.common import normalize_code, normalize_description_text, normalize_title_text


class ExpenseStatus(str, Enum):
    POSTED = "posted"
    VOID = "void"


class ExpenseCreate(BaseModel):
    date: dt.date | None = None
    category: str = Field(min_length=1, max_length=50)
    vendor: str | None = Field(default=None, max_length=255)
    reference: str | None = Field(default=None, max_length=100)
    amount: Decimal = Field(gt=0)
    note: str | None = None
    branch_id: UUID | None = None
    account_code: str | None = Field(default=None, max_length=20)

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str) -> str:
        value = normalize_code(v)
        if not value:
            raise ValueError("category cannot be empty")
        return value

    @field_validator("vendor")
    @classmethod
    def normalize_vendor(cls, v: str | None) -> str | None:
        return normalize_title_text(v)

    @field_validator("reference", "note", "account_code")
    @classmethod
    def strip_optional(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class ExpenseUpdate(BaseModel):
    date: dt.date | None = None
    category: str | None = Field(default=None, max_length=50)
    vendor: str | None = Field(default=None, max_length=255)
    reference: str | None = Field(default=None, max_length=100)
    amount: Decimal | None = Field(default=None, gt=0)
    note: str | None = None
    branch_id: UUID | None = None
    account_code: str | None = Field(default=None, max_length=20)

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str | None) -> str | None:
        return normalize_code(v)

    @field_validator("vendor")
    @classmethod
    def normalize_vendor(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    date: dt.date
    category: str
    vendor: str | None = None
    reference: str | None = None
    amount: Decimal
    note: str | None = None
    account_code: str
    status: ExpenseStatus
    journal_entry_id: UUID | None = None
    void_reason: str | None = None
    voided_by: UUID | None = None
    voided_at: dt.datetime | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class ExpenseListResponse(BaseModel):
    items: list[ExpenseOut]
    total: int
