from fastapi import APIRouter

from microlend.api.v1.routers import (
    accounting,
    audit_logs,
    auth,
    billing,
    borrowers,
    branches,
    collection_sheets,
    disbursements,
    events,
    expenses,
    health,
    loan_products,
    loans,
    payments,
    payroll,
    roles,
    savings,
    tenants,
    users,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(tenants.router)
api_router.include_router(billing.router)
api_router.include_router(users.router)
api_router.include_router(branches.router)
api_router.include_router(roles.router)
api_router.include_router(borrowers.router)
api_router.include_router(loan_products.router)
api_router.include_router(loans.router)
api_router.include_router(payments.router)
api_router.include_router(savings.router)
api_router.include_router(accounting.router)
api_router.include_router(disbursements.router)
api_router.include_router(payroll.router)
api_router.include_router(expenses.router)
api_router.include_router(collection_sheets.router)
api_router.include_router(events.router)
api_router.include_router(audit_logs.router)

__all__ = ["api_router"]
