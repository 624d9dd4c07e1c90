import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import FakeResult, entity_handler, make_loan, make_schedule_row
from microlend.api import deps
from microlend.core.settings import settings
from microlend.main import app
from microlend.models.borrower import Borrower
from microlend.models.loan import Loan
from microlend.models.loan_product import LoanProduct
from microlend.models.loan_schedule import LoanSchedule
from microlend.services import event_stream

PREVIEW = {
    "amount": "1000",
    "term_months": 3,
    "interest_rate": "2",
    "interest_method": "flat",
    "start_date": "2026-01-15",
    "fees": "25",
}


def test_schedule_preview_is_enveloped(client, all_features, allow_all_permissions) -> None:
    response = client.post("/api/v1/loans/schedule/preview", json=PREVIEW)

    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    assert body["details"] == {}
    assert len(body["data"]["entries"]) == 3
    assert body["data"]["totals"]["total"] == "1085.00"


def test_missing_permission_is_forbidden(client, all_features, deny_all_permissions) -> None:
    response = client.post("/api/v1/loans/schedule/preview", json=PREVIEW)

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "forbidden"
    assert body["message"] == "Missing permission: loan.view"
    assert body["data"] is None


def test_suspended_tenant_is_refused(client, tenant_state_factory, allow_all_permissions) -> None:
    tenant_state_factory(status="suspended")

    response = client.post("/api/v1/loans/schedule/preview", json=PREVIEW)

    assert response.status_code == 402
    assert response.json()["code"] == "tenant_suspended"


def test_feature_outside_plan_is_disabled(client, tenant_state_factory, allow_all_permissions) -> None:
    tenant_state_factory(keys={"loans", "savings", "accounting", "reports"})

    response = client.get("/api/v1/payroll/payruns")

    assert response.status_code == 403
    assert response.json()["code"] == "feature_disabled"


def test_validation_errors_use_the_envelope(client, all_features, allow_all_permissions) -> None:
    response = client.post("/api/v1/loans/schedule/preview", json={**PREVIEW, "term_months": 0})

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["message"].startswith("term_months")


def test_invalid_transition_maps_to_conflict(client, fake_db, all_features, allow_all_permissions) -> None:
    loan = make_loan(status="approved")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/approve")

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "invalid_transition"
    assert body["details"]["from_status"] == "approved"
    assert body["details"]["to_status"] == "approved"
    assert not fake_db.committed


def test_unknown_loan_is_not_found(client, fake_db, all_features, allow_all_permissions) -> None:
    response = client.get(f"/api/v1/loans/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_schedule_export_is_csv(client, fake_db, all_features, allow_all_permissions) -> None:
    loan = make_loan(status="active", reference="LN-2026-0007")
    rows = [
        make_schedule_row(1, date(2026, 2, 15), principal_paid="100.00", interest_paid="10.00"),
        make_schedule_row(2, date(2026, 3, 15)),
    ]
    rows[0].status = "paid"
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(entity_handler(LoanSchedule, FakeResult(items=rows)))

    response = client.get(f"/api/v1/loans/{loan.id}/schedule/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="loan_schedule_LN-2026-0007.csv"' in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("period,due_date,principal")
    assert len(lines) == 3


def test_trial_balance_report(client, fake_db, all_features, allow_all_permissions) -> None:
    fake_db.on_execute_return(
        FakeResult(
            rows=[
                (uuid4(), "1200", "Loan portfolio", "asset", Decimal("1000.00"), Decimal("0")),
                (uuid4(), "1000", "Cash", "cash", Decimal("500.00"), Decimal("1000.00")),
                (uuid4(), "4000", "Interest income", "income", Decimal("0"), Decimal("500.00")),
            ]
        )
    )

    response = client.get("/api/v1/accounting/reports/trial-balance", params={"as_of": "2026-03-31"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [row["code"] for row in data["rows"]] == ["1000", "1200", "4000"]
    assert data["total_debit"] == data["total_credit"] == "1500.00"


def test_created_loan_is_logged_once(client, fake_db, all_features, allow_all_permissions, unlimited, caplog) -> None:
    borrower = Borrower(id=uuid4(), tenant_id="default", name="Neema", status="active")
    product = LoanProduct(
        id=uuid4(),
        tenant_id="default",
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
    fake_db.on_execute(entity_handler(Borrower, FakeResult(scalar=borrower)))
    fake_db.on_execute(entity_handler(LoanProduct, FakeResult(scalar=product)))

    with caplog.at_level(logging.INFO):
        response = client.post(
            "/api/v1/loans",
            json={"borrower_id": str(borrower.id), "product_id": str(product.id), "amount": "600", "term_months": 3},
        )

    assert response.status_code == 201
    assert [record.getMessage() for record in caplog.records].count("Loan created") == 1
    assert fake_db.commits == 1


def test_event_stream_outage_is_unavailable(client, monkeypatch, all_features) -> None:
    async def _subscribe(channel):
        raise RedisConnectionError("redis down")

    monkeypatch.setattr(event_stream, "subscribe", _subscribe)

    response = client.get("/api/v1/events/stream")

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "event_stream_unavailable"
    assert body["message"] == "Live events are temporarily unavailable"


def test_multi_tenant_request_without_tenant_is_refused(client, monkeypatch, all_features, allow_all_permissions) -> None:
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    monkeypatch.setattr(settings, "allowed_tenant_hosts", [])
    app.dependency_overrides.pop(deps.get_tenant_context)

    response = client.post("/api/v1/loans/schedule/preview", json=PREVIEW)

    assert response.status_code == 400
    assert response.json()["code"] == "tenant_required"
