import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import UUID

from microlend.db.base import Base


class CollectionSheet(Base):
    __tablename__ = "collection_sheets"
    __table_args__ = (
        CheckConstraint("type IN ('field', 'office', 'agency')", name="ck_collection_sheets_type"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')", name="ck_collection_sheets_status"
        ),
        Index("ix_collection_sheets_tenant_date", "tenant_id", "date"),
        Index("ix_collection_sheets_tenant_status", "tenant_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    type = Column(String(20), nullable=False, default="field")
    collector = Column(String(255), nullable=True)
    collector_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    loan_officer = Column(String(255), nullable=True)
    loan_officer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
