from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from microlend.schemas.common import normalize_title_text


class PayrunStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PAID = "paid"


class PayrollItemKind(str, Enum):
    ALLOWANCE = "allowance"
    OVERTIME = "overtime"
    DEDUCTION = "deduction"
    ADVANCE = "advance"
    SAVINGS = "savings"
    LOAN = "loan"


class EmployeeCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    branch_id: UUID | None = None
    salary_base: Decimal = Field(ge=0)
    bank_account: str | None = Field(default=None, max_length=64)

    @field_validator("first_name", "last_name")
    @classmethod
    def normalize_names(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Name cannot be empty")
        return value


class EmployeeUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    branch_id: UUID | None = None
    salary_base: Decimal | None = Field(default=None, ge=0)
    bank_account: str | None = None
    status: str | None = Field(default=None, pattern=r"^(active|inactive)$")


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    branch_id: UUID | None = None
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    salary_base: Decimal
    bank_account: str | None = None
    status: str
    created_at: datetime | None = None


class EmployeeListResponse(BaseModel):
    items: list[EmployeeOut]
    total: int


class PayrollItemCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    kind: PayrollItemKind
    name: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0)


class PayrollItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    employee_id: UUID
    kind: PayrollItemKind
    name: str
    amount: Decimal


class PayrunCreate(BaseModel):
    period: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="Pay period as YYYY-MM")


class PayslipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    employee_id: UUID
    base: Decimal
    allowances: Decimal
    overtime: Decimal
    deductions: Decimal
    advances: Decimal
    savings: Decimal
    loans: Decimal
    gross: Decimal
    total_deductions: Decimal
    net: Decimal
    status: str


class PayrunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    period: str
    status: PayrunStatus
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    journal_entry_id: UUID | None = None
    created_at: datetime | None = None
    payslips: list[PayslipOut] = []


class PayrunListResponse(BaseModel):
    items: list[PayrunOut]
    total: int
