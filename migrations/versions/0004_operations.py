"""disbursement batches and payroll

Revision ID: 0004_operations
Revises: 0003_lending
Create Date: 2026-10-03
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0004_operations"
down_revision = "0003_lending"
branch_labels = None
depends_on = None

_STATUS_CHECK = "status IN ('queued', 'sent', 'failed', 'posted')"


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=False, server_default="0")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "disbursement_batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint(_STATUS_CHECK, name="ck_disbursement_batches_status"),
    )
    op.create_index(
        "ix_disbursement_batches_tenant_status", "disbursement_batches", ["tenant_id", "status"]
    )

    op.create_table(
        "disbursement_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("loan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("account", sa.String(length=100), nullable=True),
        sa.Column("beneficiary", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["batch_id"], ["disbursement_batches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(_STATUS_CHECK, name="ck_disbursement_items_status"),
        sa.CheckConstraint("amount > 0", name="ck_disbursement_items_amount_positive"),
    )
    op.create_index("ix_disbursement_items_batch_id", "disbursement_items", ["batch_id"])
    op.create_index("ix_disbursement_items_tenant_loan", "disbursement_items", ["tenant_id", "loan_id"])

    op.create_table(
        "employees",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        _money("salary_base"),
        # Fernet ciphertext
        sa.Column("bank_account", sa.LargeBinary(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_employees_status"),
        sa.CheckConstraint("salary_base >= 0", name="ck_employees_salary_nonneg"),
    )
    op.create_index("ix_employees_tenant_id", "employees", ["tenant_id"])

    op.create_table(
        "payroll_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "kind IN ('allowance', 'overtime', 'deduction', 'advance', 'savings', 'loan')",
            name="ck_payroll_items_kind",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_payroll_items_amount_nonneg"),
    )
    op.create_index("ix_payroll_items_tenant_id", "payroll_items", ["tenant_id"])
    op.create_index("ix_payroll_items_employee_id", "payroll_items", ["employee_id"])

    op.create_table(
        "payruns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        _money("total_gross"),
        _money("total_deductions"),
        _money("total_net"),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("journal_entry_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "period", name="uq_payruns_tenant_period"),
        sa.CheckConstraint("status IN ('draft', 'approved', 'paid')", name="ck_payruns_status"),
    )
    op.create_index("ix_payruns_tenant_id", "payruns", ["tenant_id"])

    op.create_table(
        "payslips",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("payrun_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), nullable=False),
        _money("base"),
        _money("allowances"),
        _money("overtime"),
        _money("deductions"),
        _money("advances"),
        _money("savings"),
        _money("loans"),
        _money("gross"),
        _money("total_deductions"),
        _money("net"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="unpaid"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payrun_id"], ["payruns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("payrun_id", "employee_id", name="uq_payslips_payrun_employee"),
        sa.CheckConstraint("status IN ('unpaid', 'paid')", name="ck_payslips_status"),
    )
    op.create_index("ix_payslips_tenant_id", "payslips", ["tenant_id"])


def downgrade() -> None:
    op.drop_table("payslips")
    op.drop_table("payruns")
    op.drop_table("payroll_items")
    op.drop_table("employees")
    op.drop_table("disbursement_items")
    op.drop_table("disbursement_batches")
