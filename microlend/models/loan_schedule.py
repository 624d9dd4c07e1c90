import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class LoanSchedule(Base):
    """One installment of a loan's repayment schedule."""

    __tablename__ = "loan_schedules"
    __table_args__ = (
        UniqueConstraint("loan_id", "period", name="uq_loan_schedules_loan_period"),
        CheckConstraint("status IN ('upcoming', 'overdue', 'paid')", name="ck_loan_schedules_status"),
        CheckConstraint(
            "principal_paid >= 0 AND interest_paid >= 0 AND fees_paid >= 0 AND penalties_paid >= 0",
            name="ck_loan_schedules_paid_nonneg",
        ),
        Index("ix_loan_schedules_tenant_due", "tenant_id", "due_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    principal = Column(Numeric(18, 2), nullable=False, default=0)
    interest = Column(Numeric(18, 2), nullable=False, default=0)
    fees = Column(Numeric(18, 2), nullable=False, default=0)
    penalties = Column(Numeric(18, 2), nullable=False, default=0)
    total = Column(Numeric(18, 2), nullable=False, default=0)
    balance = Column(Numeric(18, 2), nullable=False, default=0)
    principal_paid = Column(Numeric(18, 2), nullable=False, default=0)
    interest_paid = Column(Numeric(18, 2), nullable=False, default=0)
    fees_paid = Column(Numeric(18, 2), nullable=False, default=0)
    penalties_paid = Column(Numeric(18, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="upcoming")
    last_penalty_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
