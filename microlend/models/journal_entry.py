import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microlend.db.base import Base


class JournalEntry(Base):
    """Header of a balanced double-entry posting; the lines are ``LedgerEntry`` rows."""

    __tablename__ = "journal_entries"
    __table_args__ = (
        Index("ix_journal_entries_tenant_date", "tenant_id", "entry_date"),
        Index("ix_journal_entries_tenant_source", "tenant_id", "source_type", "source_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    entry_date = Column(Date, nullable=False, server_default=func.current_date())
    memo = Column(Text, nullable=True)
    source_type = Column(String(50), nullable=False, default="manual")
    source_id = Column(String(64), nullable=True)
    reverses_id = Column(
        UUID(as_uuid=True), ForeignKey("journal_entries.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    lines = relationship(
        "LedgerEntry",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="LedgerEntry.line_no",
    )
