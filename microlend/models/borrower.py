import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base
from microlend.db.encryption import EncryptedString


class Borrower(Base):
    __tablename__ = "borrowers"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'blacklisted')", name="ck_borrowers_status"
        ),
        Index("ix_borrowers_tenant_branch", "tenant_id", "branch_id"),
        Index("ix_borrowers_tenant_phone", "tenant_id", "phone"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    loan_officer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    national_id = Column(EncryptedString(length=512), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    blacklist_reason = Column(Text, nullable=True)
    blacklisted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
