import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from microlend.schemas.common import normalize_title_text


class CollectionSheetType(str, Enum):
    FIELD = "field"
    OFFICE = "office"
    AGENCY = "agency"


class CollectionSheetStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CollectionScope(str, Enum):
    DAILY = "daily"
    MISSED = "missed"
    PAST_MATURITY = "past_maturity"


class CollectionSheetCreate(BaseModel):
    date: dt.date
    type: CollectionSheetType = CollectionSheetType.FIELD
    collector: str | None = Field(default=None, max_length=255)
    collector_id: UUID | None = None
    loan_officer: str | None = Field(default=None, max_length=255)
    loan_officer_id: UUID | None = None
    branch_id: UUID | None = None

    @field_validator("collector", "loan_officer")
    @classmethod
    def normalize_names(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class CollectionSheetUpdate(BaseModel):
    date: dt.date | None = None
    type: CollectionSheetType | None = None
    status: CollectionSheetStatus | None = None
    collector: str | None = Field(default=None, max_length=255)
    collector_id: UUID | None = None
    loan_officer: str | None = Field(default=None, max_length=255)
    loan_officer_id: UUID | None = None
    branch_id: UUID | None = None

    @field_validator("collector", "loan_officer")
    @classmethod
    def normalize_names(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class CollectionSheetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    date: dt.date
    type: CollectionSheetType
    status: CollectionSheetStatus
    collector: str | None = None
    collector_id: UUID | None = None
    loan_officer: str | None = None
    loan_officer_id: UUID | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None
    deleted_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class CollectionSheetListResponse(BaseModel):
    items: list[CollectionSheetOut]
    total: int


class CollectionItemOut(BaseModel):
    """One unpaid installment the collector should chase on the sheet date."""

    loan_id: UUID
    reference: str
    borrower_id: UUID
    borrower_name: str
    period: int
    due_date: dt.date
    amount_due: Decimal
    status: str


class CollectionSheetItemsResponse(BaseModel):
    sheet_id: UUID
    date: dt.date
    items: list[CollectionItemOut]
    total_due: Decimal
