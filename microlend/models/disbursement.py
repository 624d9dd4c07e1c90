import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microlend.db.base import Base

_STATUS_CHECK = "status IN ('queued', 'sent', 'failed', 'posted')"


class DisbursementBatch(Base):
    __tablename__ = "disbursement_batches"
    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_disbursement_batches_status"),
        Index("ix_disbursement_batches_tenant_status", "tenant_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="queued")
    error_message = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    items = relationship(
        "DisbursementItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class DisbursementItem(Base):
    __tablename__ = "disbursement_items"
    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_disbursement_items_status"),
        CheckConstraint("amount > 0", name="ck_disbursement_items_amount_positive"),
        Index("ix_disbursement_items_tenant_loan", "tenant_id", "loan_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(
        UUID(as_uuid=True), ForeignKey("disbursement_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    account = Column(String(100), nullable=True)
    beneficiary = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="queued")
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    batch = relationship("DisbursementBatch", back_populates="items")
