from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import FakeAsyncSession, FakeResult, entity_handler
from microlend.api import deps
from microlend.models.audit_log import AuditLog
from microlend.services.audit import record_audit_log

CTX = deps.TenantContext(tenant_id="default")


def test_record_audit_log_diffs_nested_values() -> None:
    db = FakeAsyncSession()
    entry = record_audit_log(
        db,
        CTX,
        actor_id=uuid4(),
        action="loan.updated",
        resource_type="loan",
        resource_id=uuid4(),
        old_value={"principal": Decimal("1000"), "terms": {"months": 6}, "status": "pending"},
        new_value={"principal": Decimal("1200"), "terms": {"months": 9}, "status": "pending"},
    )

    assert db.added == [entry]
    assert entry.changes == {
        "principal": {"from": "1000", "to": "1200"},
        "terms.months": {"from": 6, "to": 9},
    }
    assert entry.summary == "loan.updated: principal, terms.months"


def test_record_audit_log_without_changes() -> None:
    entry = record_audit_log(
        FakeAsyncSession(),
        CTX,
        actor_id=None,
        action="loan.viewed",
        resource_type="loan",
        resource_id="LN-1",
        old_value={"due": date(2026, 1, 15)},
        new_value={"due": date(2026, 1, 15)},
    )

    assert entry.changes is None
    assert entry.summary == "loan.viewed"
    assert entry.new_value == {"due": "2026-01-15"}


def test_summary_truncates_long_change_lists() -> None:
    entry = record_audit_log(
        FakeAsyncSession(),
        CTX,
        actor_id=None,
        action="borrower.updated",
        resource_type="borrower",
        resource_id="b-1",
        old_value={"a": 1, "b": 1, "c": 1, "d": 1},
        new_value={"a": 2, "b": 2, "c": 2, "d": 2},
    )

    assert entry.summary == "borrower.updated: a, b, c..."


def test_list_audit_logs_endpoint(client, fake_db, allow_all_permissions, all_features) -> None:
    log = AuditLog(
        id=uuid4(),
        tenant_id="default",
        action="loan.approved",
        resource_type="loan",
        resource_id="LN-2026-0001",
        summary="loan.approved: status",
    )
    fake_db.on_execute(entity_handler(AuditLog, FakeResult(items=[log])))
    fake_db.on_execute_return(FakeResult(scalar=1))

    response = client.get("/api/v1/audit-logs", params={"action": "loan.", "resource_type": "loan"})

    assert response.status_code == 200
    body = response.json()["data"]
    assert body["total"] == 1
    assert body["items"][0]["action"] == "loan.approved"
    assert body["items"][0]["resource_id"] == "LN-2026-0001"


def test_list_audit_logs_requires_permission(client, deny_all_permissions, all_features) -> None:
    response = client.get("/api/v1/audit-logs")

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"
