import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class PayrollItem(Base):
    """Recurring earning or deduction applied to every payrun for an employee."""

    __tablename__ = "payroll_items"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('allowance', 'overtime', 'deduction', 'advance', 'savings', 'loan')",
            name="ck_payroll_items_kind",
        ),
        CheckConstraint("amount >= 0", name="ck_payroll_items_amount_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
