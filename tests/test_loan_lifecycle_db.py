"""Loan lifecycle against a real SQLAlchemy session (in-memory SQLite).

The fake session never expires attributes, so these tests are the ones that
catch lazy loads of server-generated columns after a flush or commit.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from microlend.api import deps
from microlend.models.audit_log import AuditLog
from microlend.models.borrower import Borrower
from microlend.models.journal_entry import JournalEntry
from microlend.models.loan_product import LoanProduct
from microlend.schemas.loan import LoanCreate, LoanDisburseRequest, LoanOut
from microlend.schemas.payments import PaymentCreate, PaymentOut
from microlend.services import accounting_reports, ledger, loan_payments, loan_workflow
from microlend.services.audit import model_snapshot

CTX = deps.TenantContext(tenant_id="default")


@pytest.fixture
async def seeded(session):
    await ledger.seed_chart_of_accounts(session, CTX.tenant_id)
    borrower = Borrower(tenant_id=CTX.tenant_id, name="Neema Kimaro", status="active")
    product = LoanProduct(
        tenant_id=CTX.tenant_id,
        name="Business",
        code="BIZ",
        status="active",
        interest_method="flat",
        interest_rate=Decimal("2"),
        min_principal=Decimal("100"),
        max_principal=Decimal("5000"),
        min_term_months=1,
        max_term_months=12,
        fee_type="amount",
        fee_amount=Decimal("0"),
        fee_percent=Decimal("0"),
    )
    session.add_all([borrower, product])
    await session.commit()
    return borrower, product


async def _actions(db, loan_id) -> list[str]:
    stmt = select(AuditLog.action).where(AuditLog.resource_type == "loan", AuditLog.resource_id == str(loan_id))
    return sorted((await db.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_create_approve_disburse_repay_void(session, seeded, unlimited, published_events) -> None:
    borrower, product = seeded
    actor = uuid4()

    loan = await loan_workflow.create_loan(
        session,
        CTX,
        LoanCreate(borrower_id=borrower.id, product_id=product.id, amount=Decimal("600"), term_months=3),
        actor_id=actor,
    )
    assert loan.status == "pending"
    assert LoanOut.model_validate(loan).created_at is not None

    loan = await loan_workflow.approve_loan(session, CTX, loan.id, actor_id=actor)
    approved = LoanOut.model_validate(loan)
    assert approved.status == "approved"
    assert approved.updated_at is not None

    loan = await loan_workflow.disburse_loan(
        session, CTX, loan.id, LoanDisburseRequest(method="cash"), actor_id=actor
    )
    disbursed = LoanOut.model_validate(loan)
    assert disbursed.status == "active"
    assert disbursed.outstanding == Decimal("636.00")

    rows = await loan_workflow.get_schedule_rows(session, CTX, loan.id)
    assert [row.total for row in rows] == [Decimal("212.00")] * 3

    payment = await loan_payments.create_payment(
        session, CTX, loan.id, PaymentCreate(amount=Decimal("212")), actor_id=actor
    )
    assert PaymentOut.model_validate(payment).status == "approved"
    assert loan.total_paid == Decimal("212.00")
    assert loan.outstanding == Decimal("424.00")

    voided = await loan_payments.void_payment(session, CTX, payment.id, "Bounced", actor_id=actor)
    assert voided.status == "voided"
    assert loan.total_paid == Decimal("0.00")
    assert loan.outstanding == Decimal("636.00")

    journals = (await session.execute(select(JournalEntry.source_type))).scalars().all()
    assert sorted(journals) == ["loan_disbursement", "loan_payment", "loan_payment"]
    report = await accounting_reports.trial_balance(session, CTX, date.today())
    assert report.total_debit == report.total_credit
    balances = {row.code: row.balance for row in report.rows}
    assert balances[ledger.LOAN_PORTFOLIO] == Decimal("600.00")
    assert balances[ledger.CASH] == Decimal("-600.00")

    assert await _actions(session, loan.id) == sorted(
        [
            "loan.created",
            "loan.approved",
            "loan.disbursed",
            "loan.activated",
            "loan.payment_applied",
            "loan.payment_reversed",
        ]
    )


@pytest.mark.asyncio
async def test_snapshot_after_flush_reads_refreshed_timestamp(session, seeded, unlimited) -> None:
    borrower, product = seeded
    loan = await loan_workflow.create_loan(
        session,
        CTX,
        LoanCreate(borrower_id=borrower.id, product_id=product.id, amount=Decimal("300"), term_months=2),
        actor_id=uuid4(),
    )
    await loan_workflow.approve_loan(session, CTX, loan.id, actor_id=uuid4())

    # disbursement flushes the loan twice before the activation snapshot
    await loan_workflow.disburse_in_session(session, CTX, loan, actor_id=uuid4())

    assert loan.status == "active"
    assert "updated_at" in loan.__dict__
    assert model_snapshot(loan)["updated_at"] is not None
