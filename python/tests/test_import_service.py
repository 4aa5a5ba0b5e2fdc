"""
Tests for the CSV reconciliation pipeline.

Covers created/updated counters across re-imports, per-row error reporting,
and rollback of partially processed rows.
"""

import io
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from database.import_service import (
    DataImportService,
    ImportStatistics,
    read_csv_rows,
    read_csv_bytes,
)
from database.models import Client, Invoice, Platform, Transaction, InvoiceStatus, PlatformType


def count(provider, model) -> int:
    with provider.session_scope() as session:
        return session.scalar(select(func.count(model.id)))


# ============================================
# CSV PARSING
# ============================================

class TestCsvParsing:
    """Tests for reading CSV payloads into rows."""

    def test_header_names_are_stripped(self):
        rows = read_csv_rows(io.StringIO(" client_code ,first_name\nCLI001,Ana\n"))
        assert rows == [{"client_code": "CLI001", "first_name": "Ana"}]

    def test_byte_order_mark_is_ignored(self):
        rows = read_csv_bytes("\ufeffclient_code,city\nCLI001,Cali\n".encode("utf-8"))
        assert rows[0]["client_code"] == "CLI001"

    def test_empty_payload(self):
        assert read_csv_bytes(b"") == []

    def test_utf8_content(self):
        rows = read_csv_bytes("city\nMedellín\n".encode("utf-8"))
        assert rows[0]["city"] == "Medellín"


# ============================================
# STATISTICS
# ============================================

class TestImportStatistics:

    def test_record(self):
        stats = ImportStatistics()
        stats.record("clients", created=True)
        stats.record("clients", created=False)
        assert stats.clients_processed == 2
        assert stats.clients_created == 1
        assert stats.clients_updated == 1

    def test_to_dict_has_all_counters(self):
        data = ImportStatistics().to_dict()
        for kind in ("clients", "invoices", "transactions"):
            for outcome in ("processed", "created", "updated"):
                assert data[f"{kind}_{outcome}"] == 0
        assert data["errors"] == []


# ============================================
# PIPELINE
# ============================================

class TestProcessBatch:
    """Tests for DataImportService.process_batch."""

    def test_single_row_creates_everything(self, provider, import_service, make_row):
        stats = import_service.process_batch([make_row()])

        assert stats.errors == []
        assert stats.clients_created == 1
        assert stats.invoices_created == 1
        assert stats.transactions_created == 1
        assert stats.total_rows == 1
        assert count(provider, Client) == 1
        assert count(provider, Invoice) == 1
        assert count(provider, Transaction) == 1
        assert count(provider, Platform) == 1

    def test_rows_are_linked(self, provider, import_service, make_row):
        import_service.process_batch([make_row()])

        with provider.session_scope() as session:
            transaction = session.execute(select(Transaction)).scalar_one()
            assert transaction.transaction_reference == "TXN-1"
            assert transaction.platform.platform_name == "Nequi"
            assert transaction.invoice.invoice_number == "INV-1"
            assert transaction.invoice.client.client_code == "TEST001"
            assert transaction.invoice.client.first_name == "Laura"

    def test_reimport_updates(self, provider, import_service, make_row):
        import_service.process_batch([make_row()])
        stats = import_service.process_batch([make_row(paid_amount="50.00")])

        assert stats.clients_created == 0
        assert stats.clients_updated == 1
        assert stats.invoices_updated == 1
        assert stats.transactions_updated == 1
        assert count(provider, Client) == 1
        assert count(provider, Invoice) == 1
        assert count(provider, Transaction) == 1

        with provider.session_scope() as session:
            invoice = session.execute(select(Invoice)).scalar_one()
            assert invoice.paid_amount == Decimal("50.00")

    def test_invoice_stays_with_first_client(self, provider, import_service, make_row):
        import_service.process_batch([make_row()])
        other = make_row(client_code="TEST002", email="other@example.com", transaction_reference="TXN-9")
        stats = import_service.process_batch([other])

        assert stats.errors == []
        assert stats.invoices_updated == 1
        assert stats.transactions_created == 1
        with provider.session_scope() as session:
            invoice = session.execute(select(Invoice)).scalar_one()
            assert invoice.client.client_code == "TEST001"
            assert len(invoice.transactions) == 2

    def test_same_client_across_rows(self, provider, import_service, make_row):
        rows = [
            make_row(),
            make_row(invoice_number="INV-2", transaction_reference="TXN-2"),
        ]
        stats = import_service.process_batch(rows)

        assert stats.clients_created == 1
        assert stats.clients_updated == 1
        assert stats.invoices_created == 2
        assert stats.transactions_created == 2
        assert count(provider, Client) == 1

    def test_missing_platform_is_reported_without_writes(self, provider, import_service, make_row):
        stats = import_service.process_batch([make_row(platform_name="")])

        assert len(stats.errors) == 1
        assert "Row 2" in stats.errors[0]
        assert "platform" in stats.errors[0]
        assert stats.failed_rows == 1
        assert stats.clients_processed == 0
        assert count(provider, Client) == 0

    def test_row_numbers_follow_file_lines(self, import_service, make_row):
        rows = [
            make_row(),
            make_row(invoice_number="", transaction_reference="TXN-2"),
            make_row(invoice_number="INV-3", transaction_reference="TXN-3", total_amount="abc"),
        ]
        stats = import_service.process_batch(rows)

        assert stats.errors == [
            "Row 3: Missing invoice number",
            "Row 4: Invalid total amount",
        ]
        assert stats.total_rows == 3
        assert stats.failed_rows == 2
        assert stats.invoices_created == 1

    def test_failed_row_is_rolled_back(self, provider, import_service, make_row):
        # New client, invoice and platform are resolved before the date fails
        bad = make_row(
            client_code="TEST002",
            email="new@example.com",
            invoice_number="INV-2",
            transaction_reference="TXN-2",
            platform_name="NewPay",
            transaction_date="not-a-date",
        )
        stats = import_service.process_batch([make_row(), bad])

        assert len(stats.errors) == 1
        assert stats.errors[0].startswith("Row 3: Error processing transaction")
        assert stats.clients_processed == 1
        assert count(provider, Client) == 1
        assert count(provider, Invoice) == 1
        assert count(provider, Platform) == 1

    def test_duplicate_email_on_other_client(self, provider, import_service, make_row):
        other = make_row(client_code="TEST002", invoice_number="INV-2", transaction_reference="TXN-2")
        stats = import_service.process_batch([make_row(), other])

        assert len(stats.errors) == 1
        assert "Row 3" in stats.errors[0]
        assert "Error processing client" in stats.errors[0]
        assert count(provider, Client) == 1
        assert count(provider, Invoice) == 1

    def test_batch_continues_after_error(self, provider, import_service, make_row):
        rows = [
            make_row(transaction_amount=""),
            make_row(client_code="TEST002", email="b@example.com",
                     invoice_number="INV-2", transaction_reference="TXN-2"),
        ]
        stats = import_service.process_batch(rows)

        assert stats.failed_rows == 1
        assert "transaction amount is required" in stats.errors[0]
        assert stats.clients_created == 1
        assert count(provider, Client) == 1

    def test_unknown_platform_gets_default_type(self, provider, make_row):
        service = DataImportService(provider.get_unit_of_work, "BANK")
        service.process_batch([make_row(platform_name="Banco Nuevo")])

        with provider.session_scope() as session:
            platform = session.execute(select(Platform)).scalar_one()
            assert platform.platform_type == PlatformType.BANK

    def test_invalid_default_platform_type(self, provider):
        with pytest.raises(ValueError):
            DataImportService(provider.get_unit_of_work, "CASH")

    def test_empty_batch(self, import_service):
        stats = import_service.process_batch([])
        assert stats.total_rows == 0
        assert not stats.has_errors


class TestImportCsvFile:
    """Tests for importing CSV files from disk."""

    def test_bundled_sample(self, provider, import_service):
        from pathlib import Path

        sample = Path(__file__).parent.parent / "data.csv"
        stats = import_service.import_csv_file(sample)

        assert stats.errors == []
        assert stats.total_rows == 6
        assert stats.clients_created == 4
        assert stats.invoices_created == 6
        assert stats.transactions_created == 6
        assert count(provider, Platform) == 5

    def test_file_with_bad_rows(self, tmp_path, provider, import_service):
        csv_path = tmp_path / "import.csv"
        csv_path.write_text(
            "client_code,first_name,last_name,invoice_number,total_amount,transaction_reference,"
            "transaction_date,transaction_amount,platform_name,invoice_status\n"
            "CLI100,Ana,Ruiz,F-1,100,T-1,2024-01-01,100,Nequi,PENDING\n"
            "CLI101,Luis,Gil,F-2,100,T-2,2024-01-01,100,,PENDING\n",
            encoding="utf-8",
        )
        stats = import_service.import_csv_file(csv_path)

        assert stats.total_rows == 2
        assert stats.errors == ["Row 3: Missing platform name"]
        with provider.session_scope() as session:
            invoice = session.execute(select(Invoice)).scalar_one()
            assert invoice.status == InvoiceStatus.PENDING
