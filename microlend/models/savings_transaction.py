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
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class SavingsTransaction(Base):
    __tablename__ = "savings_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_savings_transactions_amount_positive"),
        CheckConstraint(
            "type IN ('deposit', 'withdrawal', 'charge', 'interest')",
            name="ck_savings_transactions_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_savings_transactions_status"
        ),
        Index("ix_savings_transactions_tenant_borrower", "tenant_id", "borrower_id"),
        Index("ix_savings_transactions_tenant_date", "tenant_id", "date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False)
    type = Column(String(20), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    date = Column(Date, nullable=False)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_comment = Column(Text, nullable=True)
    reversed = Column(Boolean, nullable=False, default=False)
    reversed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    journal_entry_id = Column(
        UUID(as_uuid=True), ForeignKey("journal_entries.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
