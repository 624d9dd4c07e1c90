import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microlend.db.base import Base


class Payrun(Base):
    __tablename__ = "payruns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "period", name="uq_payruns_tenant_period"),
        CheckConstraint("status IN ('draft', 'approved', 'paid')", name="ck_payruns_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(String(7), nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    total_gross = Column(Numeric(18, 2), nullable=False, default=0)
    total_deductions = Column(Numeric(18, 2), nullable=False, default=0)
    total_net = Column(Numeric(18, 2), nullable=False, default=0)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
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

    payslips = relationship(
        "Payslip", back_populates="payrun", cascade="all, delete-orphan", lazy="selectin"
    )


class Payslip(Base):
    __tablename__ = "payslips"
    __table_args__ = (
        UniqueConstraint("payrun_id", "employee_id", name="uq_payslips_payrun_employee"),
        CheckConstraint("status IN ('unpaid', 'paid')", name="ck_payslips_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    payrun_id = Column(UUID(as_uuid=True), ForeignKey("payruns.id", ondelete="CASCADE"), nullable=False)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False)
    base = Column(Numeric(18, 2), nullable=False, default=0)
    allowances = Column(Numeric(18, 2), nullable=False, default=0)
    overtime = Column(Numeric(18, 2), nullable=False, default=0)
    deductions = Column(Numeric(18, 2), nullable=False, default=0)
    advances = Column(Numeric(18, 2), nullable=False, default=0)
    savings = Column(Numeric(18, 2), nullable=False, default=0)
    loans = Column(Numeric(18, 2), nullable=False, default=0)
    gross = Column(Numeric(18, 2), nullable=False, default=0)
    total_deductions = Column(Numeric(18, 2), nullable=False, default=0)
    net = Column(Numeric(18, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="unpaid")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payrun = relationship("Payrun", back_populates="payslips")
