from enum import Enum
from typing import Iterable, List


class PermissionCode(str, Enum):
    # Platform / tenant
    SYSTEM_ADMIN = "system.admin"
    TENANT_VIEW = "tenant.view"
    TENANT_MANAGE = "tenant.manage"
    BILLING_VIEW = "billing.view"
    BILLING_MANAGE = "billing.manage"
    AUDIT_LOG_VIEW = "audit_log.view"

    # Users / roles / branches
    USER_VIEW = "user.view"
    USER_MANAGE = "user.manage"
    ROLE_VIEW = "role.view"
    ROLE_MANAGE = "role.manage"
    BRANCH_VIEW = "branch.view"
    BRANCH_MANAGE = "branch.manage"

    # Borrowers
    BORROWER_VIEW = "borrower.view"
    BORROWER_CREATE = "borrower.create"
    BORROWER_EDIT = "borrower.edit"
    BORROWER_BLACKLIST = "borrower.blacklist"

    # Lending
    LOAN_PRODUCT_VIEW = "loan_product.view"
    LOAN_PRODUCT_MANAGE = "loan_product.manage"
    LOAN_VIEW = "loan.view"
    LOAN_CREATE = "loan.create"
    LOAN_APPROVE = "loan.approve"
    LOAN_REJECT = "loan.reject"
    LOAN_DISBURSE = "loan.disburse"
    LOAN_CLOSE = "loan.close"
    LOAN_MANAGE = "loan.manage"

    # Repayments
    REPAYMENT_VIEW = "repayment.view"
    REPAYMENT_CREATE = "repayment.create"
    REPAYMENT_APPROVE = "repayment.approve"
    REPAYMENT_REVERSE = "repayment.reverse"

    # Savings
    SAVINGS_VIEW = "savings.view"
    SAVINGS_CREATE = "savings.create"
    SAVINGS_APPROVE = "savings.approve"
    SAVINGS_REVERSE = "savings.reverse"

    # Accounting / reporting
    ACCOUNTING_VIEW = "accounting.view"
    ACCOUNTING_POST = "accounting.post"
    ACCOUNTING_MANAGE = "accounting.manage"
    REPORT_VIEW = "report.view"

    # Disbursements
    DISBURSEMENT_VIEW = "disbursement.view"
    DISBURSEMENT_MANAGE = "disbursement.manage"

    # Payroll
    PAYROLL_VIEW = "payroll.view"
    PAYROLL_MANAGE = "payroll.manage"

    # Operations
    EXPENSE_VIEW = "expense.view"
    EXPENSE_MANAGE = "expense.manage"
    COLLECTION_VIEW = "collection.view"
    COLLECTION_MANAGE = "collection.manage"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized

    @classmethod
    def unknown(cls, values: Iterable[str]) -> List[str]:
        valid = set(cls.list_all())
        return sorted({str(value) for value in values if str(value) not in valid})


class EntitlementKey(str, Enum):
    LOANS = "loans"
    SAVINGS = "savings"
    ACCOUNTING = "accounting"
    PAYROLL = "payroll"
    REPORTS = "reports"

    @classmethod
    def list_all(cls) -> List[str]:
        return [key.value for key in cls]
