from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from microlend.schemas.common import normalize_code, normalize_description_text, normalize_title_text


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    ACTIVE = "active"
    DELINQUENT = "delinquent"
    CLOSED = "closed"


class InterestMethod(str, Enum):
    FLAT = "flat"
    REDUCING = "reducing"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class FeeType(str, Enum):
    AMOUNT = "amount"
    PERCENT = "percent"


class InstallmentStatus(str, Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    PAID = "paid"


# ---------------------------------------------------------------------------
# Loan products
# ---------------------------------------------------------------------------


class LoanProductBase(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=50)
    interest_method: InterestMethod = InterestMethod.FLAT
    interest_rate: Decimal = Field(ge=0, le=100, description="Percent per month")
    min_principal: Decimal = Field(default=Decimal("0"), ge=0)
    max_principal: Decimal = Field(gt=0)
    min_term_months: int = Field(default=1, ge=1)
    max_term_months: int = Field(ge=1, le=600)
    penalty_rate: Decimal | None = Field(default=None, ge=0, le=100, description="Percent per day")
    fee_type: FeeType = FeeType.AMOUNT
    fee_amount: Decimal = Field(default=Decimal("0"), ge=0)
    fee_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Product name cannot be empty")
        return value

    @field_validator("code")
    @classmethod
    def normalize_product_code(cls, v: str) -> str:
        value = normalize_code(v)
        if not value:
            raise ValueError("Product code cannot be empty")
        return value

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_principal > self.max_principal:
            raise ValueError("min_principal must not exceed max_principal")
        if self.min_term_months > self.max_term_months:
            raise ValueError("min_term_months must not exceed max_term_months")
        return self


class LoanProductCreate(LoanProductBase):
    pass


class LoanProductUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = None
    status: ProductStatus | None = None
    interest_method: InterestMethod | None = None
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    min_principal: Decimal | None = Field(default=None, ge=0)
    max_principal: Decimal | None = Field(default=None, gt=0)
    min_term_months: int | None = Field(default=None, ge=1)
    max_term_months: int | None = Field(default=None, ge=1, le=600)
    penalty_rate: Decimal | None = Field(default=None, ge=0, le=100)
    fee_type: FeeType | None = None
    fee_amount: Decimal | None = Field(default=None, ge=0)
    fee_percent: Decimal | None = Field(default=None, ge=0, le=100)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class LoanProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    code: str
    status: ProductStatus
    interest_method: InterestMethod
    interest_rate: Decimal
    min_principal: Decimal
    max_principal: Decimal
    min_term_months: int
    max_term_months: int
    penalty_rate: Decimal | None = None
    fee_type: FeeType
    fee_amount: Decimal
    fee_percent: Decimal
    created_at: datetime | None = None


class LoanProductListResponse(BaseModel):
    items: list[LoanProductOut]
    total: int


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------


class LoanCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    borrower_id: UUID
    product_id: UUID
    amount: Decimal = Field(gt=0)
    term_months: int = Field(ge=1, le=600)
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    interest_method: InterestMethod | None = None
    start_date: date | None = None
    reference: str | None = Field(default=None, max_length=64)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    branch_id: UUID | None = None

    @field_validator("reference")
    @classmethod
    def normalize_reference(cls, v: str | None) -> str | None:
        return normalize_title_text(v)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else None


class LoanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    borrower_id: UUID
    product_id: UUID
    reference: str
    status: LoanStatus
    currency: str
    amount: Decimal
    interest_method: InterestMethod
    interest_rate: Decimal
    term_months: int
    start_date: date
    end_date: date
    total_interest: Decimal
    total_fees: Decimal
    total_penalties: Decimal
    total_paid: Decimal
    outstanding: Decimal
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    disbursed_by: UUID | None = None
    disbursed_at: datetime | None = None
    disbursement_method: str | None = None
    disbursement_reference: str | None = None
    closed_by: UUID | None = None
    closed_at: datetime | None = None
    close_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanListResponse(BaseModel):
    items: list[LoanOut]
    total: int


class LoanRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        value = normalize_description_text(v)
        if not value:
            raise ValueError("reason is required")
        return value


class LoanDisburseRequest(BaseModel):
    method: str | None = Field(default=None, max_length=50)
    reference: str | None = Field(default=None, max_length=100)
    disbursed_on: date | None = None


class LoanCloseRequest(BaseModel):
    override: bool = False
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class LoanScheduleEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: int
    due_date: date
    principal: Decimal
    interest: Decimal
    fees: Decimal
    penalties: Decimal
    total: Decimal
    balance: Decimal
    principal_paid: Decimal = Decimal("0")
    interest_paid: Decimal = Decimal("0")
    fees_paid: Decimal = Decimal("0")
    penalties_paid: Decimal = Decimal("0")
    status: InstallmentStatus = InstallmentStatus.UPCOMING


class LoanScheduleTotals(BaseModel):
    principal: Decimal
    interest: Decimal
    fees: Decimal
    penalties: Decimal
    total: Decimal
    paid: Decimal = Decimal("0")


class LoanScheduleResponse(BaseModel):
    loan_id: UUID | None = None
    interest_method: InterestMethod
    interest_rate: Decimal
    term_months: int
    start_date: date
    entries: list[LoanScheduleEntry]
    totals: LoanScheduleTotals


class LoanSchedulePreviewRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    amount: Decimal = Field(gt=0)
    term_months: int = Field(ge=1, le=600)
    interest_rate: Decimal = Field(ge=0, le=100)
    interest_method: InterestMethod = InterestMethod.FLAT
    start_date: date | None = None
    fees: Decimal = Field(default=Decimal("0"), ge=0)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class PenaltyRunRequest(BaseModel):
    as_of: date | None = None


class PenaltyRunResponse(BaseModel):
    as_of: date
    loans_scanned: int
    rows_penalized: int
    penalty_total: Decimal
    delinquent: int
    recovered: int
