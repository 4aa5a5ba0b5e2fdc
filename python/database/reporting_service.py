"""
Reporting queries over the reconciled data

Read-only views used by the /api/queries endpoints. Each view returns the
denormalized rows plus a summary computed over them, and only covers active
clients. Query errors propagate to the caller; there is no partial result.

Usage:
    with provider.session_scope() as session:
        report = ReportingService(session).pending_invoices()
        print(report.summary["total_pending_amount"])
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, and_, desc
from sqlalchemy.orm import Session

from database.models import (
    Client,
    Invoice,
    Platform,
    Transaction,
    TransactionStatus,
    OUTSTANDING_INVOICE_STATUSES,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Sort buckets for pending invoices
_OVERDUE, _DUE_TODAY, _UPCOMING = 1, 2, 3


@dataclass
class ReportResult:
    """Rows of a report and the summary computed over them"""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.rows)


def _amount(value: Any) -> Decimal:
    """Aggregates come back as Decimal, float or None depending on the driver."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _status_value(status: Any) -> Optional[str]:
    return getattr(status, "value", status)


def _client_name() -> Any:
    return (Client.first_name + " " + Client.last_name).label("client_name")


class ReportingService:
    """Aggregation queries for payments, outstanding invoices and platforms."""

    def __init__(self, session: Session):
        self.session = session

    def total_payments(self) -> ReportResult:
        """
        Total paid per active client.

        Only COMPLETED transactions count; clients without any appear with
        total_paid 0. Sorted by total_paid descending.
        """
        completed = and_(
            Transaction.invoice_id == Invoice.id,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        total_paid = func.coalesce(func.sum(Transaction.amount), 0).label("total_paid")

        query = (
            select(
                Client.id.label("client_id"),
                Client.client_code,
                _client_name(),
                Client.email,
                Client.city,
                Client.department,
                total_paid,
                func.count(Transaction.id).label("total_transactions"),
                func.max(Transaction.transaction_date).label("last_payment_date"),
            )
            .select_from(Client)
            .outerjoin(Invoice, Invoice.client_id == Client.id)
            .outerjoin(Transaction, completed)
            .where(Client.is_active == True)
            .group_by(
                Client.id,
                Client.client_code,
                Client.first_name,
                Client.last_name,
                Client.email,
                Client.city,
                Client.department,
            )
            .order_by(desc(total_paid), Client.client_code)
        )

        rows = []
        for row in self.session.execute(query).mappings():
            item = dict(row)
            item["total_paid"] = _amount(item["total_paid"])
            rows.append(item)

        total_clients = len(rows)
        total_amount = sum((row["total_paid"] for row in rows), ZERO)
        average = total_amount / total_clients if total_clients else ZERO

        return ReportResult(
            rows=rows,
            summary={
                "total_clients": total_clients,
                "total_amount_paid": total_amount,
                "average_payment_per_client": average,
            },
        )

    def pending_invoices(self, today: Optional[date] = None) -> ReportResult:
        """
        Outstanding (PENDING, PARTIAL, OVERDUE) invoices of active clients.

        Each row carries pending_amount, days_overdue relative to today and
        the invoice's transactions. Overdue invoices come first, then those
        due today, then the rest; within a bucket by due date ascending and
        pending amount descending. Invoices without a due date open the last bucket.

        Args:
            today: Reference date (defaults to date.today())
        """
        today = today or date.today()

        query = (
            select(
                Invoice.id.label("invoice_id"),
                Invoice.invoice_number,
                Client.client_code,
                _client_name(),
                Client.email,
                Client.phone,
                Client.city,
                Client.department,
                Invoice.billing_period,
                Invoice.due_date,
                Invoice.total_amount,
                Invoice.paid_amount,
                Invoice.status,
                Invoice.description,
            )
            .join(Client, Invoice.client_id == Client.id)
            .where(
                Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
                Client.is_active == True,
            )
        )

        rows = []
        for row in self.session.execute(query).mappings():
            item = dict(row)
            item["status"] = _status_value(item["status"])
            item["total_amount"] = _amount(item["total_amount"])
            item["paid_amount"] = _amount(item["paid_amount"])
            item["pending_amount"] = item["total_amount"] - item["paid_amount"]

            due_date = item["due_date"]
            if due_date is None:
                item["days_overdue"] = None
                item["payment_status"] = "PENDING"
            else:
                item["days_overdue"] = (today - due_date).days
                if due_date < today:
                    item["payment_status"] = "OVERDUE"
                elif due_date == today:
                    item["payment_status"] = "DUE_TODAY"
                else:
                    item["payment_status"] = "PENDING"
            rows.append(item)

        transactions = self._transactions_for_invoices([row["invoice_id"] for row in rows])
        for row in rows:
            row["transactions"] = transactions.get(row["invoice_id"], [])

        def sort_key(row):
            due_date = row["due_date"]
            if due_date is None:
                bucket, due = _UPCOMING, date.min
            elif due_date < today:
                bucket, due = _OVERDUE, due_date
            elif due_date == today:
                bucket, due = _DUE_TODAY, due_date
            else:
                bucket, due = _UPCOMING, due_date
            return (bucket, due, -row["pending_amount"])

        rows.sort(key=sort_key)

        return ReportResult(
            rows=rows,
            summary={
                "total_pending_invoices": len(rows),
                "total_pending_amount": sum((row["pending_amount"] for row in rows), ZERO),
                "overdue_invoices": sum(
                    1 for row in rows if row["days_overdue"] is not None and row["days_overdue"] > 0
                ),
                "due_today_invoices": sum(1 for row in rows if row["days_overdue"] == 0),
            },
        )

    def _transactions_for_invoices(self, invoice_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
        """Nested transaction detail for many invoices in one query."""
        if not invoice_ids:
            return {}

        query = (
            select(
                Transaction.invoice_id,
                Transaction.id.label("transaction_id"),
                Transaction.transaction_reference,
                Transaction.amount,
                Transaction.transaction_date,
                Transaction.status,
                Platform.platform_name,
            )
            .join(Platform, Transaction.platform_id == Platform.id)
            .where(Transaction.invoice_id.in_(invoice_ids))
            .order_by(Transaction.transaction_date, Transaction.id)
        )

        grouped: Dict[int, List[Dict[str, Any]]] = {}
        for row in self.session.execute(query).mappings():
            item = dict(row)
            invoice_id = item.pop("invoice_id")
            item["amount"] = _amount(item["amount"])
            item["status"] = _status_value(item["status"])
            grouped.setdefault(invoice_id, []).append(item)
        return grouped

    def transactions_by_platform(self, platform_name: Optional[str] = None) -> ReportResult:
        """
        Transactions of active clients with invoice and client detail.

        Args:
            platform_name: Only include this platform when given

        Ordered by transaction date, newest first. The summary includes a
        per-platform breakdown.
        """
        query = (
            select(
                Platform.id.label("platform_id"),
                Platform.platform_name,
                Platform.platform_type,
                Transaction.id.label("transaction_id"),
                Transaction.transaction_reference,
                Transaction.transaction_date,
                Transaction.amount,
                Transaction.transaction_type,
                Transaction.status,
                Transaction.description,
                Client.client_code,
                _client_name(),
                Client.email,
                Client.city,
                Client.department,
                Invoice.invoice_number,
                Invoice.total_amount,
                Invoice.status.label("invoice_status"),
            )
            .select_from(Transaction)
            .join(Platform, Transaction.platform_id == Platform.id)
            .join(Invoice, Transaction.invoice_id == Invoice.id)
            .join(Client, Invoice.client_id == Client.id)
            .where(Client.is_active == True)
        )
        if platform_name:
            query = query.where(Platform.platform_name == platform_name)
        query = query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())

        rows = []
        for row in self.session.execute(query).mappings():
            item = dict(row)
            for key in ("platform_type", "transaction_type", "status", "invoice_status"):
                item[key] = _status_value(item[key])
            item["amount"] = _amount(item["amount"])
            item["total_amount"] = _amount(item["total_amount"])
            rows.append(item)

        platform_stats: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            stats = platform_stats.setdefault(row["platform_name"], {
                "platform_name": row["platform_name"],
                "total_transactions": 0,
                "total_amount": ZERO,
                "completed_transactions": 0,
                "pending_transactions": 0,
                "failed_transactions": 0,
            })
            stats["total_transactions"] += 1
            stats["total_amount"] += row["amount"]
            status_key = _STATUS_COUNTERS.get(row["status"])
            if status_key:
                stats[status_key] += 1

        return ReportResult(
            rows=rows,
            summary={
                "total_transactions": len(rows),
                "total_amount": sum((row["amount"] for row in rows), ZERO),
                "completed_transactions": _count_status(rows, TransactionStatus.COMPLETED),
                "pending_transactions": _count_status(rows, TransactionStatus.PENDING),
                "failed_transactions": _count_status(rows, TransactionStatus.FAILED),
                "platform_statistics": list(platform_stats.values()),
                "filtered_by_platform": platform_name or "all",
            },
        )

    def platforms(self) -> ReportResult:
        """Active platforms with their transaction count and completed amount."""
        transaction_count = (
            select(func.count(Transaction.id))
            .where(Transaction.platform_id == Platform.id)
            .correlate(Platform)
            .scalar_subquery()
        )
        completed_amount = (
            select(func.coalesce(func.sum(Transaction.amount), 0))
            .where(
                Transaction.platform_id == Platform.id,
                Transaction.status == TransactionStatus.COMPLETED,
            )
            .correlate(Platform)
            .scalar_subquery()
        )

        query = (
            select(
                Platform.id.label("platform_id"),
                Platform.platform_name,
                Platform.platform_type,
                Platform.is_active,
                transaction_count.label("transaction_count"),
                completed_amount.label("total_amount"),
            )
            .where(Platform.is_active == True)
            .order_by(Platform.platform_name)
        )

        rows = []
        for row in self.session.execute(query).mappings():
            item = dict(row)
            item["platform_type"] = _status_value(item["platform_type"])
            item["total_amount"] = _amount(item["total_amount"])
            rows.append(item)

        return ReportResult(rows=rows, summary={"total_platforms": len(rows)})


_STATUS_COUNTERS = {
    TransactionStatus.COMPLETED.value: "completed_transactions",
    TransactionStatus.PENDING.value: "pending_transactions",
    TransactionStatus.FAILED.value: "failed_transactions",
}


def _count_status(rows: List[Dict[str, Any]], status: TransactionStatus) -> int:
    return sum(1 for row in rows if row["status"] == status.value)
