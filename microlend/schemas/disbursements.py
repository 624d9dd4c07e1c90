from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from microlend.schemas.common import normalize_description_text


class DisbursementStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    POSTED = "posted"


class BatchCreate(BaseModel):
    loan_ids: list[UUID] = Field(min_length=1, max_length=500)


class BatchFailRequest(BaseModel):
    error_message: str = Field(min_length=1, max_length=2000)

    @field_validator("error_message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        value = normalize_description_text(v)
        if not value:
            raise ValueError("error_message is required")
        return value


class DisbursementItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    amount: Decimal
    account: str | None = None
    beneficiary: str | None = None
    status: DisbursementStatus
    error_message: str | None = None


class DisbursementBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    status: DisbursementStatus
    error_message: str | None = None
    created_by: UUID | None = None
    sent_at: datetime | None = None
    posted_at: datetime | None = None
    created_at: datetime | None = None
    items: list[DisbursementItemOut] = []


class DisbursementBatchListResponse(BaseModel):
    items: list[DisbursementBatchOut]
    total: int
