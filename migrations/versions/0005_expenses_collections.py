"""expenses and collection sheets

Revision ID: 0005_expenses_collections
Revises: 0004_operations
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0005_expenses_collections"
down_revision = "0004_operations"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "expenses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("vendor", sa.String(length=255), nullable=True),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("account_code", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="posted"),
        sa.Column("journal_entry_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["voided_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint("status IN ('posted', 'void')", name="ck_expenses_status"),
    )
    op.create_index("ix_expenses_tenant_date", "expenses", ["tenant_id", "date"])
    op.create_index("ix_expenses_tenant_branch", "expenses", ["tenant_id", "branch_id"])

    op.create_table(
        "collection_sheets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="field"),
        sa.Column("collector", sa.String(length=255), nullable=True),
        sa.Column("collector_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("loan_officer", sa.String(length=255), nullable=True),
        sa.Column("loan_officer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["collector_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["loan_officer_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("type IN ('field', 'office', 'agency')", name="ck_collection_sheets_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')", name="ck_collection_sheets_status"
        ),
    )
    op.create_index("ix_collection_sheets_tenant_date", "collection_sheets", ["tenant_id", "date"])
    op.create_index("ix_collection_sheets_tenant_status", "collection_sheets", ["tenant_id", "status"])

    # tenants seeded before this revision lack the operating expenses account
    op.execute(
        """
        INSERT INTO accounts (id, tenant_id, code, name, type, is_active, created_at, updated_at)
        SELECT gen_random_uuid(), a.tenant_id, '5200', 'Operating Expenses', 'expense', true, now(), now()
        FROM accounts a
        WHERE a.code = '1000'
          AND NOT EXISTS (
            SELECT 1 FROM accounts b WHERE b.tenant_id = a.tenant_id AND b.code = '5200'
          )
        """
    )


def downgrade() -> None:
    op.drop_index("ix_collection_sheets_tenant_status", table_name="collection_sheets")
    op.drop_index("ix_collection_sheets_tenant_date", table_name="collection_sheets")
    op.drop_table("collection_sheets")
    op.drop_index("ix_expenses_tenant_branch", table_name="expenses")
    op.drop_index("ix_expenses_tenant_date", table_name="expenses")
    op.drop_table("expenses")
