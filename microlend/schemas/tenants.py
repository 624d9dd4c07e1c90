from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from microlend.schemas.common import normalize_title_text


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PAID = "paid"
    VOID = "void"


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    currency: str
    price_monthly: Decimal
    price_yearly: Decimal
    limits: dict = {}
    is_active: bool
    entitlements: list[str] = []


class PlanListResponse(BaseModel):
    items: list[PlanOut]
    total: int


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    status: TenantStatus
    billing_email: str | None = None
    trial_ends_at: datetime | None = None
    created_at: datetime | None = None


class TenantDetailResponse(BaseModel):
    tenant: TenantOut
    plan: PlanOut | None = None
    entitlements: list[str]
    feature_flags: dict[str, bool] = {}


class TenantUpdate(BaseModel):
    name: str | None = None
    billing_email: EmailStr | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return normalize_title_text(v)


class PlanChangeRequest(BaseModel):
    plan_code: str = Field(min_length=1, max_length=50)

    @field_validator("plan_code")
    @classmethod
    def lower_code(cls, v: str) -> str:
        return v.strip().lower()


class FeatureFlagUpdate(BaseModel):
    enabled: bool


class InvoiceCreate(BaseModel):
    period: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="Billing month as YYYY-MM")
    due_in_days: int = Field(default=14, ge=0, le=90)


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    number: str
    amount: Decimal
    currency: str
    period_start: date
    period_end: date
    due_date: date | None = None
    status: InvoiceStatus
    paid_at: datetime | None = None
    created_at: datetime | None = None


class InvoiceListResponse(BaseModel):
    items: list[InvoiceOut]
    total: int
