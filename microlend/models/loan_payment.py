import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.types import JSON

from microlend.db.base import Base


class LoanPayment(Base):
    """A repayment against a loan. Rows are never deleted; voiding sets ``reversed``."""

    __tablename__ = "loan_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_payments_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'voided')", name="ck_loan_payments_status"
        ),
        Index("ix_loan_payments_tenant_loan", "tenant_id", "loan_id"),
        Index("ix_loan_payments_tenant_date", "tenant_id", "payment_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    method = Column(String(30), nullable=False, default="cash")
    reference = Column(String(100), nullable=True)
    receipt_no = Column(String(40), nullable=False, unique=True)
    strategy = Column(String(30), nullable=False, default="oldest_due_first")
    custom_order = Column(String(100), nullable=True)
    waive_penalties = Column(Boolean, nullable=False, default=False)
    allocation = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    unapplied_amount = Column(Numeric(18, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    applied = Column(Boolean, nullable=False, default=False)
    reversed = Column(Boolean, nullable=False, default=False)
    void_reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    journal_entry_id = Column(
        UUID(as_uuid=True), ForeignKey("journal_entries.id", ondelete="SET NULL"), nullable=True
    )
    posted_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    reversed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
