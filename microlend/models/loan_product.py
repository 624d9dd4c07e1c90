import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class LoanProduct(Base):
    __tablename__ = "loan_products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_loan_products_tenant_code"),
        CheckConstraint("interest_method IN ('flat', 'reducing')", name="ck_loan_products_method"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_loan_products_status"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_products_rate_nonneg"),
        CheckConstraint("min_principal <= max_principal", name="ck_loan_products_principal_bounds"),
        CheckConstraint("min_term_months <= max_term_months", name="ck_loan_products_term_bounds"),
        CheckConstraint("fee_type IN ('amount', 'percent')", name="ck_loan_products_fee_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    interest_method = Column(String(20), nullable=False, default="flat")
    # percent per month
    interest_rate = Column(Numeric(9, 4), nullable=False, default=0)
    min_principal = Column(Numeric(18, 2), nullable=False, default=0)
    max_principal = Column(Numeric(18, 2), nullable=False)
    min_term_months = Column(Integer, nullable=False, default=1)
    max_term_months = Column(Integer, nullable=False)
    # percent per day on overdue amounts; null falls back to the tenant default
    penalty_rate = Column(Numeric(9, 4), nullable=True)
    fee_type = Column(String(20), nullable=False, default="amount")
    fee_amount = Column(Numeric(18, 2), nullable=False, default=0)
    fee_percent = Column(Numeric(9, 4), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
