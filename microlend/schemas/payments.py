from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from microlend.schemas.common import normalize_description_text


class AllocationStrategy(str, Enum):
    OLDEST_DUE_FIRST = "oldest_due_first"
    PRINCIPAL_FIRST = "principal_first"
    INTEREST_FIRST = "interest_first"
    FEES_FIRST = "fees_first"
    CUSTOM = "custom"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    VOIDED = "voided"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"
    MOBILE = "mobile"


class AllocationOptions(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    strategy: AllocationStrategy = AllocationStrategy.OLDEST_DUE_FIRST
    custom_order: str | None = Field(
        default=None,
        max_length=100,
        description="Comma-separated categories, e.g. 'interest,principal,fees,penalties'",
    )
    waive_penalties: bool = False

    @model_validator(mode="after")
    def custom_needs_order(self):
        if self.strategy == AllocationStrategy.CUSTOM.value and not (self.custom_order or "").strip():
            raise ValueError("custom_order is required when strategy is 'custom'")
        return self


class PaymentPreviewRequest(AllocationOptions):
    amount: Decimal = Field(gt=0)
    as_of: date | None = None


class PaymentCreate(AllocationOptions):
    amount: Decimal = Field(gt=0)
    payment_date: date | None = None
    method: PaymentMethod = PaymentMethod.CASH
    reference: str | None = Field(default=None, max_length=100)
    auto_apply: bool = True


class PaymentReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        value = normalize_description_text(v)
        if not value:
            raise ValueError("reason is required")
        return value


class AllocationLine(BaseModel):
    period: int
    principal: Decimal = Decimal("0")
    interest: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    penalties: Decimal = Decimal("0")


class AllocationTotals(BaseModel):
    principal: Decimal = Decimal("0")
    interest: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    penalties: Decimal = Decimal("0")


class AllocationOut(BaseModel):
    strategy: AllocationStrategy
    order: list[str]
    amount: Decimal
    lines: list[AllocationLine]
    totals: AllocationTotals
    unapplied: Decimal


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    loan_id: UUID
    amount: Decimal
    payment_date: date
    method: str
    reference: str | None = None
    receipt_no: str
    strategy: AllocationStrategy
    allocation: dict | None = None
    unapplied_amount: Decimal
    status: PaymentStatus
    applied: bool
    reversed: bool
    void_reason: str | None = None
    rejection_reason: str | None = None
    journal_entry_id: UUID | None = None
    posted_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    reversed_at: datetime | None = None
    created_at: datetime | None = None


class PaymentListResponse(BaseModel):
    items: list[PaymentOut]
    total: int


class ReceiptOut(BaseModel):
    receipt_no: str
    payment_id: UUID
    loan_id: UUID
    loan_reference: str
    borrower_name: str | None = None
    amount: Decimal
    currency: str
    payment_date: date
    method: str
    status: PaymentStatus
    totals: AllocationTotals
    unapplied: Decimal
    outstanding_after: Decimal
