from __future__ import annotations

import csv
from decimal import Decimal
from io import StringIO
from typing import Iterable

from microlend.models.collection_sheet import CollectionSheet
from microlend.models.disbursement import DisbursementBatch
from microlend.models.expense import Expense
from microlend.schemas.accounting import ProfitAndLossResponse, TrialBalanceResponse
from microlend.schemas.loan import LoanScheduleResponse


def _stringify(value) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if value is None:
        return ""
    return str(value)


def _write_csv(headers: list[str], rows: list[list[str]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def schedule_to_csv(schedule: LoanScheduleResponse) -> str:
    headers = [
        "period",
        "due_date",
        "principal",
        "interest",
        "fees",
        "penalties",
        "total",
        "balance",
        "paid",
        "status",
    ]
    rows: list[list[str]] = []
    for entry in schedule.entries:
        paid = entry.principal_paid + entry.interest_paid + entry.fees_paid + entry.penalties_paid
        rows.append(
            [
                str(entry.period),
                entry.due_date.isoformat(),
                _stringify(entry.principal),
                _stringify(entry.interest),
                _stringify(entry.fees),
                _stringify(entry.penalties),
                _stringify(entry.total),
                _stringify(entry.balance),
                _stringify(paid),
                entry.status.value if hasattr(entry.status, "value") else str(entry.status),
            ]
        )
    return _write_csv(headers, rows)


def batch_to_csv(batch: DisbursementBatch) -> str:
    rows = [
        [
            str(batch.id),
            str(item.loan_id),
            _stringify(item.amount),
            _stringify(item.account),
            _stringify(item.beneficiary),
        ]
        for item in batch.items
    ]
    return _write_csv(["batchId", "loanId", "amount", "account", "beneficiary"], rows)


def trial_balance_to_csv(report: TrialBalanceResponse) -> str:
    rows = [
        [
            row.code,
            row.name,
            row.type.value if hasattr(row.type, "value") else str(row.type),
            _stringify(row.debit),
            _stringify(row.credit),
            _stringify(row.balance),
        ]
        for row in report.rows
    ]
    rows.append(["", "TOTAL", "", _stringify(report.total_debit), _stringify(report.total_credit), ""])
    return _write_csv(["code", "name", "type", "debit", "credit", "balance"], rows)


def profit_and_loss_to_csv(report: ProfitAndLossResponse) -> str:
    rows: list[list[str]] = []
    for section, items in (("income", report.income), ("expense", report.expenses)):
        for row in items:
            rows.append([section, row.code, row.name, _stringify(row.amount)])
    rows.append(["total_income", "", "", _stringify(report.total_income)])
    rows.append(["total_expenses", "", "", _stringify(report.total_expenses)])
    rows.append(["net", "", "", _stringify(report.net)])
    return _write_csv(["section", "code", "name", "amount"], rows)


def expenses_to_csv(expenses: Iterable[Expense]) -> str:
    rows = [
        [
            str(expense.id),
            expense.date.isoformat(),
            expense.category,
            _stringify(expense.vendor),
            _stringify(expense.reference),
            _stringify(expense.amount),
            _stringify(expense.note),
            _stringify(expense.branch_id),
            expense.status,
        ]
        for expense in expenses
    ]
    return _write_csv(
        ["id", "date", "category", "vendor", "reference", "amount", "note", "branch_id", "status"], rows
    )


def collection_sheets_to_csv(sheets: Iterable[CollectionSheet]) -> str:
    rows = [
        [
            str(sheet.id),
            sheet.date.isoformat(),
            sheet.type,
            _stringify(sheet.collector),
            _stringify(sheet.loan_officer),
            sheet.status,
            _stringify(sheet.branch_id),
            _stringify(sheet.created_at),
        ]
        for sheet in sheets
    ]
    return _write_csv(
        ["id", "date", "type", "collector", "loan_officer", "status", "branch_id", "created_at"], rows
    )
