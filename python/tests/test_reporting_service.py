"""
Tests for the reporting queries over reconciled data.
"""

from datetime import date
from decimal import Decimal

import pytest

from database.models import Client, TransactionStatus
from database.reporting_service import ReportingService


TODAY = date(2024, 3, 1)


@pytest.fixture
def seeded(provider, import_service, make_row):
    """
    Four clients:
      TEST001  INV-1 PAID 100 (TXN-1 completed 100), INV-5 OVERDUE 30 due 2024-02-01
      TEST002  INV-2 PARTIAL 200/50 due today (TXN-2 completed 50, TXN-3 pending 150)
      TEST003  INV-3 PENDING 80 due 2024-03-10 (TXN-4 failed)
      TEST004  INV-4 OVERDUE 40 without due date
    """
    def client(code, email):
        return {"client_code": code, "email": email, "first_name": "Cliente", "last_name": code.title()}

    rows = [
        make_row(**client("TEST001", "a@example.com")),
        make_row(**client("TEST002", "b@example.com"),
                 invoice_number="INV-2", total_amount="200", paid_amount="50", invoice_status="PARTIAL",
                 due_date="2024-03-01", transaction_reference="TXN-2", transaction_amount="50",
                 transaction_date="2024-02-10 09:00:00", platform_name="Daviplata"),
        make_row(**client("TEST002", "b@example.com"),
                 invoice_number="INV-2", total_amount="200", paid_amount="50", invoice_status="PARTIAL",
                 due_date="2024-03-01", transaction_reference="TXN-3", transaction_amount="150",
                 transaction_date="2024-02-20 09:00:00", transaction_status="PENDING"),
        make_row(**client("TEST003", "c@example.com"),
                 invoice_number="INV-3", total_amount="80", paid_amount="0", invoice_status="PENDING",
                 due_date="2024-03-10", transaction_reference="TXN-4", transaction_amount="80",
                 transaction_date="2024-02-25 09:00:00", transaction_status="FAILED"),
        make_row(**client("TEST004", "d@example.com"),
                 invoice_number="INV-4", total_amount="40", paid_amount="0", invoice_status="OVERDUE",
                 due_date="", transaction_reference="TXN-5", transaction_amount="40",
                 transaction_date="2024-02-26 09:00:00", transaction_status="PENDING"),
        make_row(**client("TEST001", "a@example.com"),
                 invoice_number="INV-5", total_amount="30", paid_amount="0", invoice_status="OVERDUE",
                 due_date="2024-02-01", transaction_reference="TXN-6", transaction_amount="30",
                 transaction_date="2024-02-27 09:00:00", transaction_status="PENDING"),
    ]
    stats = import_service.process_batch(rows)
    assert stats.errors == []
    return provider


def deactivate(provider, code):
    with provider.session_scope() as session:
        client = session.query(Client).filter_by(client_code=code).one()
        client.is_active = False


# ============================================
# TOTAL PAYMENTS
# ============================================

class TestTotalPayments:

    def test_rows_and_order(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).total_payments()

        codes = [row["client_code"] for row in report.rows]
        assert codes == ["TEST001", "TEST002", "TEST003", "TEST004"]
        paid = {row["client_code"]: row["total_paid"] for row in report.rows}
        assert paid == {
            "TEST001": Decimal("100"),
            "TEST002": Decimal("50"),
            "TEST003": Decimal("0"),
            "TEST004": Decimal("0"),
        }
        assert report.rows[0]["total_transactions"] == 1
        assert report.rows[2]["last_payment_date"] is None

    def test_summary_matches_completed_transactions(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).total_payments()

        assert report.summary["total_clients"] == 4
        assert report.summary["total_amount_paid"] == Decimal("150")
        assert report.summary["average_payment_per_client"] == Decimal("37.5")

    def test_inactive_clients_excluded(self, seeded):
        deactivate(seeded, "TEST002")
        with seeded.session_scope() as session:
            report = ReportingService(session).total_payments()

        assert "TEST002" not in [row["client_code"] for row in report.rows]
        assert report.summary["total_amount_paid"] == Decimal("100")

    def test_empty_store(self, provider):
        with provider.session_scope() as session:
            report = ReportingService(session).total_payments()

        assert report.rows == []
        assert report.summary == {
            "total_clients": 0,
            "total_amount_paid": Decimal("0"),
            "average_payment_per_client": Decimal("0"),
        }


# ============================================
# PENDING INVOICES
# ============================================

class TestPendingInvoices:

    def test_paid_invoices_excluded_and_order(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).pending_invoices(today=TODAY)

        numbers = [row["invoice_number"] for row in report.rows]
        # Undated INV-4 leads the future bucket
        assert numbers == ["INV-5", "INV-2", "INV-4", "INV-3"]

    def test_row_detail(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).pending_invoices(today=TODAY)

        rows = {row["invoice_number"]: row for row in report.rows}
        assert rows["INV-5"]["days_overdue"] == 29
        assert rows["INV-5"]["payment_status"] == "OVERDUE"
        assert rows["INV-2"]["days_overdue"] == 0
        assert rows["INV-2"]["payment_status"] == "DUE_TODAY"
        assert rows["INV-2"]["pending_amount"] == Decimal("150")
        assert rows["INV-3"]["days_overdue"] == -9
        assert rows["INV-4"]["days_overdue"] is None
        assert rows["INV-4"]["status"] == "OVERDUE"

        references = [t["transaction_reference"] for t in rows["INV-2"]["transactions"]]
        assert references == ["TXN-2", "TXN-3"]
        assert rows["INV-2"]["transactions"][0]["platform_name"] == "Daviplata"

    def test_summary(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).pending_invoices(today=TODAY)

        assert report.summary == {
            "total_pending_invoices": 4,
            "total_pending_amount": Decimal("300"),
            "overdue_invoices": 1,
            "due_today_invoices": 1,
        }

    def test_empty_store(self, provider):
        with provider.session_scope() as session:
            report = ReportingService(session).pending_invoices(today=TODAY)

        assert report.count == 0
        assert report.summary["total_pending_amount"] == Decimal("0")


# ============================================
# TRANSACTIONS BY PLATFORM
# ============================================

class TestTransactionsByPlatform:

    def test_all_platforms(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).transactions_by_platform()

        references = [row["transaction_reference"] for row in report.rows]
        assert references == ["TXN-6", "TXN-5", "TXN-4", "TXN-3", "TXN-2", "TXN-1"]
        assert report.summary["total_transactions"] == 6
        assert report.summary["completed_transactions"] == 2
        assert report.summary["pending_transactions"] == 3
        assert report.summary["failed_transactions"] == 1
        assert report.summary["filtered_by_platform"] == "all"

        by_platform = {p["platform_name"]: p for p in report.summary["platform_statistics"]}
        assert by_platform["Daviplata"]["total_transactions"] == 1
        assert by_platform["Nequi"]["total_transactions"] == 5
        assert by_platform["Nequi"]["total_amount"] == Decimal("400")

    def test_filter(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).transactions_by_platform("Daviplata")

        assert [row["transaction_reference"] for row in report.rows] == ["TXN-2"]
        assert report.rows[0]["status"] == TransactionStatus.COMPLETED.value
        assert report.rows[0]["client_code"] == "TEST002"
        assert report.summary["filtered_by_platform"] == "Daviplata"

    def test_unknown_platform(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).transactions_by_platform("Efecty")

        assert report.count == 0
        assert report.summary["total_amount"] == Decimal("0")


# ============================================
# PLATFORMS
# ============================================

class TestPlatforms:

    def test_counts_and_completed_amounts(self, seeded):
        with seeded.session_scope() as session:
            report = ReportingService(session).platforms()

        assert [row["platform_name"] for row in report.rows] == ["Daviplata", "Nequi"]
        nequi = report.rows[1]
        assert nequi["transaction_count"] == 5
        assert nequi["total_amount"] == Decimal("100")
        assert nequi["platform_type"] == "DIGITAL_WALLET"
        assert report.summary == {"total_platforms": 2}
