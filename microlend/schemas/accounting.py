from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from microlend.schemas.common import normalize_code, normalize_title_text


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"
    CASH = "cash"


class AccountCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=255)
    type: AccountType
    parent_id: UUID | None = None

    @field_validator("code")
    @classmethod
    def normalize_account_code(cls, v: str) -> str:
        value = normalize_code(v)
        if not value:
            raise ValueError("Account code cannot be empty")
        return value

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Account name cannot be empty")
        return value


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    code: str
    name: str
    type: AccountType
    parent_id: UUID | None = None
    is_active: bool
    created_at: datetime | None = None


class AccountListResponse(BaseModel):
    items: list[AccountOut]
    total: int


class JournalLineIn(BaseModel):
    account_id: UUID
    debit: Decimal = Field(default=Decimal("0"), ge=0)
    credit: Decimal = Field(default=Decimal("0"), ge=0)
    description: str | None = None

    @model_validator(mode="after")
    def one_sided(self):
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("Exactly one of debit or credit must be positive")
        return self


class JournalCreate(BaseModel):
    entry_date: date | None = None
    memo: str | None = Field(default=None, max_length=2000)
    lines: list[JournalLineIn] = Field(min_length=2)


class LedgerLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    line_no: int
    entry_date: date
    debit: Decimal
    credit: Decimal
    description: str | None = None


class JournalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    entry_date: date
    memo: str | None = None
    source_type: str
    source_id: str | None = None
    reverses_id: UUID | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    lines: list[LedgerLineOut] = []


class JournalListResponse(BaseModel):
    items: list[JournalOut]
    total: int


class TrialBalanceRow(BaseModel):
    account_id: UUID
    code: str
    name: str
    type: AccountType
    debit: Decimal
    credit: Decimal
    balance: Decimal


class TrialBalanceResponse(BaseModel):
    as_of: date
    rows: list[TrialBalanceRow]
    total_debit: Decimal
    total_credit: Decimal


class ProfitAndLossRow(BaseModel):
    account_id: UUID
    code: str
    name: str
    type: AccountType
    amount: Decimal


class ProfitAndLossResponse(BaseModel):
    start_date: date
    end_date: date
    income: list[ProfitAndLossRow]
    expenses: list[ProfitAndLossRow]
    total_income: Decimal
    total_expenses: Decimal
    net: Decimal


class CashFlowMonth(BaseModel):
    month: str
    inflow: Decimal
    outflow: Decimal
    net: Decimal


class CashFlowResponse(BaseModel):
    months: list[CashFlowMonth]
    total_inflow: Decimal
    total_outflow: Decimal
