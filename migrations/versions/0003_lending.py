"""borrowers, loan products, loans, schedules, payments and savings

Revision ID: 0003_lending
Revises: 0002_accounting
Create Date: 2026-10-02
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0003_lending"
down_revision = "0002_accounting"
branch_labels = None
depends_on = None


def _uuid(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable)


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=False, server_default="0")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "borrowers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        _uuid("branch_id"),
        _uuid("loan_officer_id"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        # Fernet ciphertext
        sa.Column("national_id", sa.LargeBinary(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("blacklist_reason", sa.Text(), nullable=True),
        sa.Column("blacklisted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["loan_officer_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'blacklisted')", name="ck_borrowers_status"),
    )
    op.create_index("ix_borrowers_tenant_id", "borrowers", ["tenant_id"])
    op.create_index("ix_borrowers_tenant_branch", "borrowers", ["tenant_id", "branch_id"])
    op.create_index("ix_borrowers_tenant_phone", "borrowers", ["tenant_id", "phone"])

    op.create_table(
        "loan_products",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("interest_method", sa.String(length=20), nullable=False, server_default="flat"),
        sa.Column("interest_rate", sa.Numeric(9, 4), nullable=False, server_default="0"),
        _money("min_principal"),
        sa.Column("max_principal", sa.Numeric(18, 2), nullable=False),
        sa.Column("min_term_months", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_term_months", sa.Integer(), nullable=False),
        sa.Column("penalty_rate", sa.Numeric(9, 4), nullable=True),
        sa.Column("fee_type", sa.String(length=20), nullable=False, server_default="amount"),
        _money("fee_amount"),
        sa.Column("fee_percent", sa.Numeric(9, 4), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_loan_products_tenant_code"),
        sa.CheckConstraint("interest_method IN ('flat', 'reducing')", name="ck_loan_products_method"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_loan_products_status"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_products_rate_nonneg"),
        sa.CheckConstraint("min_principal <= max_principal", name="ck_loan_products_principal_bounds"),
        sa.CheckConstraint("min_term_months <= max_term_months", name="ck_loan_products_term_bounds"),
        sa.CheckConstraint("fee_type IN ('amount', 'percent')", name="ck_loan_products_fee_type"),
    )
    op.create_index("ix_loan_products_tenant_id", "loan_products", ["tenant_id"])

    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        _uuid("branch_id"),
        _uuid("borrower_id", nullable=False),
        _uuid("product_id", nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("interest_method", sa.String(length=20), nullable=False),
        sa.Column("interest_rate", sa.Numeric(9, 4), nullable=False),
        sa.Column("term_months", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        _money("total_interest"),
        _money("total_fees"),
        _money("total_penalties"),
        _money("total_paid"),
        _money("outstanding"),
        _uuid("created_by"),
        _uuid("approved_by"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("rejected_by"),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _uuid("disbursed_by"),
        sa.Column("disbursed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disbursement_method", sa.String(length=50), nullable=True),
        sa.Column("disbursement_reference", sa.String(length=100), nullable=True),
        _uuid("closed_by"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["borrower_id"], ["borrowers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["product_id"], ["loan_products.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["rejected_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["disbursed_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["closed_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "reference", name="uq_loans_tenant_reference"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'disbursed', 'active', 'delinquent', 'closed')",
            name="ck_loans_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_loans_amount_positive"),
        sa.CheckConstraint("term_months > 0", name="ck_loans_term_positive"),
        sa.CheckConstraint("total_paid >= 0", name="ck_loans_total_paid_nonneg"),
    )
    op.create_index("ix_loans_tenant_status", "loans", ["tenant_id", "status"])
    op.create_index("ix_loans_tenant_branch", "loans", ["tenant_id", "branch_id"])
    op.create_index("ix_loans_tenant_borrower", "loans", ["tenant_id", "borrower_id"])

    op.create_table(
        "loan_schedules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        _uuid("loan_id", nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        _money("principal"),
        _money("interest"),
        _money("fees"),
        _money("penalties"),
        _money("total"),
        _money("balance"),
        _money("principal_paid"),
        _money("interest_paid"),
        _money("fees_paid"),
        _money("penalties_paid"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="upcoming"),
        sa.Column("last_penalty_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("loan_id", "period", name="uq_loan_schedules_loan_period"),
        sa.CheckConstraint("status IN ('upcoming', 'overdue', 'paid')", name="ck_loan_schedules_status"),
        sa.CheckConstraint(
            "principal_paid >= 0 AND interest_paid >= 0 AND fees_paid >= 0 AND penalties_paid >= 0",
            name="ck_loan_schedules_paid_nonneg",
        ),
    )
    op.create_index("ix_loan_schedules_loan_id", "loan_schedules", ["loan_id"])
    op.create_index("ix_loan_schedules_tenant_due", "loan_schedules", ["tenant_id", "due_date"])

    op.create_table(
        "loan_payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        _uuid("loan_id", nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("method", sa.String(length=30), nullable=False, server_default="cash"),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("receipt_no", sa.String(length=40), nullable=False, unique=True),
        sa.Column("strategy", sa.String(length=30), nullable=False, server_default="oldest_due_first"),
        sa.Column("custom_order", sa.String(length=100), nullable=True),
        sa.Column("waive_penalties", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allocation", postgresql.JSONB(), nullable=True),
        _money("unapplied_amount"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _uuid("journal_entry_id"),
        _uuid("posted_by"),
        _uuid("approved_by"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("reversed_by"),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["posted_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reversed_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_loan_payments_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'voided')", name="ck_loan_payments_status"
        ),
    )
    op.create_index("ix_loan_payments_tenant_loan", "loan_payments", ["tenant_id", "loan_id"])
    op.create_index("ix_loan_payments_tenant_date", "loan_payments", ["tenant_id", "payment_date"])

    op.create_table(
        "savings_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        _uuid("branch_id"),
        _uuid("borrower_id", nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        _uuid("created_by"),
        _uuid("approved_by"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_comment", sa.Text(), nullable=True),
        sa.Column("reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _uuid("reversed_by"),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("journal_entry_id"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["borrower_id"], ["borrowers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reversed_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_savings_transactions_amount_positive"),
        sa.CheckConstraint(
            "type IN ('deposit', 'withdrawal', 'charge', 'interest')", name="ck_savings_transactions_type"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_savings_transactions_status"
        ),
    )
    op.create_index(
        "ix_savings_transactions_tenant_borrower", "savings_transactions", ["tenant_id", "borrower_id"]
    )
    op.create_index("ix_savings_transactions_tenant_date", "savings_transactions", ["tenant_id", "date"])


def downgrade() -> None:
    op.drop_table("savings_transactions")
    op.drop_table("loan_payments")
    op.drop_table("loan_schedules")
    op.drop_table("loans")
    op.drop_table("loan_products")
    op.drop_table("borrowers")
