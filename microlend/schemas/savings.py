import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from microlend.schemas.common import normalize_description_text


class SavingsType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CHARGE = "charge"
    INTEREST = "interest"


class SavingsStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SavingsTransactionCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    borrower_id: UUID
    type: SavingsType
    amount: Decimal = Field(gt=0)
    date: dt.date | None = None
    reference: str | None = Field(default=None, max_length=100)
    notes: str | None = None


class SavingsDecisionRequest(BaseModel):
    comment: str = Field(min_length=1, max_length=2000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str) -> str:
        value = normalize_description_text(v)
        if not value:
            raise ValueError("comment is required")
        return value


class SavingsTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    borrower_id: UUID
    type: SavingsType
    amount: Decimal
    date: dt.date
    reference: str | None = None
    notes: str | None = None
    status: SavingsStatus
    created_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: dt.datetime | None = None
    approval_comment: str | None = None
    reversed: bool
    reversed_by: UUID | None = None
    reversed_at: dt.datetime | None = None
    journal_entry_id: UUID | None = None
    created_at: dt.datetime | None = None


class SavingsTransactionListResponse(BaseModel):
    items: list[SavingsTransactionOut]
    total: int


class SavingsBalance(BaseModel):
    borrower_id: UUID
    deposits: Decimal
    withdrawals: Decimal
    charges: Decimal
    interest: Decimal
    balance: Decimal


class SavingsStatementLine(BaseModel):
    id: UUID
    date: dt.date
    type: SavingsType
    amount: Decimal
    reference: str | None = None
    running_balance: Decimal


class SavingsStatement(BaseModel):
    borrower_id: UUID
    opening_balance: Decimal
    closing_balance: Decimal
    lines: list[SavingsStatementLine]


class StaffReportRow(BaseModel):
    staff_id: UUID | None = None
    staff_name: str | None = None
    deposits_count: int = 0
    deposits_amount: Decimal = Decimal("0")
    withdrawals_count: int = 0
    withdrawals_amount: Decimal = Decimal("0")
    charges_count: int = 0
    charges_amount: Decimal = Decimal("0")
    interest_count: int = 0
    interest_amount: Decimal = Decimal("0")


class StaffReportResponse(BaseModel):
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    rows: list[StaffReportRow]
