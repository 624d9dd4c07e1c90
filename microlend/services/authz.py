from typing import TYPE_CHECKING, Iterable, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microlend.core.permissions import PermissionCode
from microlend.models.role import Role
from microlend.models.user import User
from microlend.models.user_role import UserRole

if TYPE_CHECKING:
    from microlend.api.deps import TenantContext

P = PermissionCode

_VIEW_ALL = [
    P.TENANT_VIEW,
    P.BILLING_VIEW,
    P.USER_VIEW,
    P.ROLE_VIEW,
    P.BRANCH_VIEW,
    P.BORROWER_VIEW,
    P.LOAN_PRODUCT_VIEW,
    P.LOAN_VIEW,
    P.REPAYMENT_VIEW,
    P.SAVINGS_VIEW,
    P.ACCOUNTING_VIEW,
    P.REPORT_VIEW,
    P.DISBURSEMENT_VIEW,
    P.PAYROLL_VIEW,
    P.EXPENSE_VIEW,
    P.COLLECTION_VIEW,
    P.AUDIT_LOG_VIEW,
]


SYSTEM_ROLE_DEFINITIONS = {
    "ADMIN": {
        "description": "Full control within the tenant",
        "permissions": PermissionCode.list_all(),
    },
    "DIRECTOR": {
        "description": "Loan approvals with read access across the tenant",
        "permissions": PermissionCode.normalize(_VIEW_ALL + [P.LOAN_APPROVE, P.LOAN_REJECT]),
    },
    "BRANCH_MANAGER": {
        "description": "Branch lending decisions and borrower management",
        "permissions": PermissionCode.normalize(
            [
                P.BRANCH_VIEW,
                P.USER_VIEW,
                P.BORROWER_VIEW,
                P.BORROWER_CREATE,
                P.BORROWER_EDIT,
                P.BORROWER_BLACKLIST,
                P.LOAN_PRODUCT_VIEW,
                P.LOAN_VIEW,
                P.LOAN_CREATE,
                P.LOAN_APPROVE,
                P.LOAN_REJECT,
                P.LOAN_DISBURSE,
                P.LOAN_CLOSE,
                P.REPAYMENT_VIEW,
                P.REPAYMENT_APPROVE,
                P.SAVINGS_VIEW,
                P.DISBURSEMENT_VIEW,
                P.REPORT_VIEW,
                P.EXPENSE_VIEW,
                P.EXPENSE_MANAGE,
                P.COLLECTION_VIEW,
                P.COLLECTION_MANAGE,
            ]
        ),
    },
    "ACCOUNTANT": {
        "description": "Disbursements, reversals, ledger postings and payroll",
        "permissions": PermissionCode.normalize(
            [
                P.BORROWER_VIEW,
                P.LOAN_PRODUCT_VIEW,
                P.LOAN_VIEW,
                P.LOAN_DISBURSE,
                P.LOAN_CLOSE,
                P.LOAN_MANAGE,
                P.REPAYMENT_VIEW,
                P.REPAYMENT_APPROVE,
                P.REPAYMENT_REVERSE,
                P.SAVINGS_VIEW,
                P.SAVINGS_APPROVE,
                P.SAVINGS_REVERSE,
                P.ACCOUNTING_VIEW,
                P.ACCOUNTING_POST,
                P.ACCOUNTING_MANAGE,
                P.REPORT_VIEW,
                P.DISBURSEMENT_VIEW,
                P.DISBURSEMENT_MANAGE,
                P.PAYROLL_VIEW,
                P.PAYROLL_MANAGE,
                P.EXPENSE_VIEW,
                P.EXPENSE_MANAGE,
            ]
        ),
    },
    "LOAN_OFFICER": {
        "description": "Field officer capturing borrowers, loans and repayments",
        "permissions": PermissionCode.normalize(
            [
                P.BORROWER_VIEW,
                P.BORROWER_CREATE,
                P.BORROWER_EDIT,
                P.LOAN_PRODUCT_VIEW,
                P.LOAN_VIEW,
                P.LOAN_CREATE,
                P.REPAYMENT_VIEW,
                P.REPAYMENT_CREATE,
                P.SAVINGS_VIEW,
                P.COLLECTION_VIEW,
                P.COLLECTION_MANAGE,
            ]
        ),
    },
    "CUSTOMER_SERVICE": {
        "description": "Front desk: borrower lookups and savings capture",
        "permissions": PermissionCode.normalize(
            [
                P.BORROWER_VIEW,
                P.LOAN_VIEW,
                P.REPAYMENT_VIEW,
                P.SAVINGS_VIEW,
                P.SAVINGS_CREATE,
            ]
        ),
    },
    "HR": {
        "description": "Payroll and staff records",
        "permissions": PermissionCode.normalize(
            [
                P.USER_VIEW,
                P.BRANCH_VIEW,
                P.ROLE_VIEW,
                P.PAYROLL_VIEW,
                P.PAYROLL_MANAGE,
            ]
        ),
    },
}


def _coerce_codes(raw: Iterable | None) -> Set[str]:
    permissions: set[str] = set()
    for value in raw or []:
        try:
            code = PermissionCode(value)
        except ValueError:
            continue
        permissions.add(code.value)
    return permissions


async def load_permissions(db: AsyncSession, user_id, tenant_id: str) -> Set[str]:
    stmt = (
        select(Role.permissions)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, UserRole.tenant_id == tenant_id, Role.tenant_id == tenant_id)
    )
    result = await db.execute(stmt)
    permissions: set[str] = set()
    for row in result.all():
        permissions |= _coerce_codes(row[0])
    return permissions


async def load_role_names(db: AsyncSession, user_id, tenant_id: str) -> list[str]:
    stmt = (
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, UserRole.tenant_id == tenant_id)
        .order_by(Role.name)
    )
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def effective_permissions(db: AsyncSession, user: User, tenant_id: str) -> list[str]:
    if user.is_superuser:
        return PermissionCode.list_all()
    return sorted(await load_permissions(db, user.id, tenant_id))


async def check_permission(
    user: User,
    ctx: "TenantContext",
    permission_code: PermissionCode | str,
    db: AsyncSession,
) -> bool:
    """Superusers pass; everyone else needs the code in one of their tenant roles."""
    if user.is_superuser:
        return True
    target = permission_code.value if isinstance(permission_code, PermissionCode) else str(permission_code)
    permission_set = await load_permissions(db, user.id, ctx.tenant_id)
    return target in permission_set


async def seed_system_roles(db: AsyncSession, tenant_id: str) -> dict[str, Role]:
    """
    Ensure system roles exist for the tenant, returning a name->Role mapping.
    """
    existing_stmt = select(Role).where(Role.tenant_id == tenant_id, Role.is_system_role.is_(True))
    existing_result = await db.execute(existing_stmt)
    existing = {role.name: role for role in existing_result.scalars().all()}

    created: dict[str, Role] = {}
    for name, definition in SYSTEM_ROLE_DEFINITIONS.items():
        role = existing.get(name)
        if role:
            role.permissions = definition["permissions"]
            role.description = definition["description"]
        else:
            role = Role(
                tenant_id=tenant_id,
                name=name,
                description=definition["description"],
                is_system_role=True,
                permissions=definition["permissions"],
            )
            db.add(role)
        created[name] = role
    await db.commit()
    for role in created.values():
        await db.refresh(role)
    return created


async def ensure_user_in_role(db: AsyncSession, tenant_id: str, user_id, role: Role) -> None:
    stmt = select(UserRole).where(
        UserRole.tenant_id == tenant_id, UserRole.user_id == user_id, UserRole.role_id == role.id
    )
    result = await db.execute(stmt)
    if result.scalar_one_or_none():
        return
    db.add(UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role.id))
    await db.commit()
