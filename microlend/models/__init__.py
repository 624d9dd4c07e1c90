from microlend.models.account import Account
from microlend.models.audit_log import AuditLog
from microlend.models.borrower import Borrower
from microlend.models.branch import Branch
from microlend.models.collection_sheet import CollectionSheet
from microlend.models.disbursement import DisbursementBatch, DisbursementItem
from microlend.models.employee import Employee
from microlend.models.expense import Expense
from microlend.models.invoice import Invoice
from microlend.models.journal_entry import JournalEntry
from microlend.models.ledger_entry import LedgerEntry
from microlend.models.loan import Loan
from microlend.models.loan_payment import LoanPayment
from microlend.models.loan_product import LoanProduct
from microlend.models.loan_schedule import LoanSchedule
from microlend.models.payroll_item import PayrollItem
from microlend.models.payrun import Payrun, Payslip
from microlend.models.plan import Entitlement, Plan, PlanEntitlement
from microlend.models.role import Role
from microlend.models.savings_transaction import SavingsTransaction
from microlend.models.tenant import Tenant, TenantFeatureFlag
from microlend.models.user import User
from microlend.models.user_role import UserRole

__all__ = [
    "Account",
    "AuditLog",
    "Borrower",
    "Branch",
    "CollectionSheet",
    "DisbursementBatch",
    "DisbursementItem",
    "Employee",
    "Entitlement",
    "Expense",
    "Invoice",
    "JournalEntry",
    "LedgerEntry",
    "Loan",
    "LoanPayment",
    "LoanProduct",
    "LoanSchedule",
    "PayrollItem",
    "Payrun",
    "Payslip",
    "Plan",
    "PlanEntitlement",
    "Role",
    "SavingsTransaction",
    "Tenant",
    "TenantFeatureFlag",
    "User",
    "UserRole",
]
