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
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'disbursed', 'active', 'delinquent', 'closed')",
            name="ck_loans_status",
        ),
        CheckConstraint("amount > 0", name="ck_loans_amount_positive"),
        CheckConstraint("term_months > 0", name="ck_loans_term_positive"),
        CheckConstraint("total_paid >= 0", name="ck_loans_total_paid_nonneg"),
        UniqueConstraint("tenant_id", "reference", name="uq_loans_tenant_reference"),
        Index("ix_loans_tenant_status", "tenant_id", "status"),
        Index("ix_loans_tenant_branch", "tenant_id", "branch_id"),
        Index("ix_loans_tenant_borrower", "tenant_id", "borrower_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("loan_products.id", ondelete="RESTRICT"), nullable=False)
    reference = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    currency = Column(String(3), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    interest_method = Column(String(20), nullable=False)
    interest_rate = Column(Numeric(9, 4), nullable=False)
    term_months = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_interest = Column(Numeric(18, 2), nullable=False, default=0)
    total_fees = Column(Numeric(18, 2), nullable=False, default=0)
    total_penalties = Column(Numeric(18, 2), nullable=False, default=0)
    total_paid = Column(Numeric(18, 2), nullable=False, default=0)
    outstanding = Column(Numeric(18, 2), nullable=False, default=0)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    disbursed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    disbursement_method = Column(String(50), nullable=True)
    disbursement_reference = Column(String(100), nullable=True)
    closed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    close_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
