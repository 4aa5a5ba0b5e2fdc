"""
Shared fixtures: an in-memory SQLite store behind a DatabaseSessionProvider.

StaticPool keeps the single in-memory database alive across sessions, so
the import service's per-row units of work and the assertions see the same
data.
"""

import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import create_test_provider
from database.import_service import DataImportService


BASE_ROW: Dict[str, Any] = {
    "client_code": "TEST001",
    "first_name": "Laura",
    "last_name": "Torres",
    "email": "laura.torres@example.com",
    "phone": "3001112233",
    "address": "Calle 1 # 2-3",
    "city": "Medellín",
    "department": "Antioquia",
    "invoice_number": "INV-1",
    "billing_period": "2024-01",
    "total_amount": "100.00",
    "paid_amount": "100.00",
    "invoice_status": "PAID",
    "due_date": "2024-02-01",
    "transaction_reference": "TXN-1",
    "transaction_date": "2024-01-15 10:00:00",
    "transaction_amount": "100.00",
    "transaction_type": "PAYMENT",
    "transaction_status": "COMPLETED",
    "platform_name": "Nequi",
}


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine per test."""
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def provider(engine):
    """Initialized provider with all tables created."""
    db_provider = create_test_provider(engine=engine)
    db_provider.init()
    db_provider.create_tables()
    yield db_provider
    db_provider.close()


@pytest.fixture
def session(provider):
    """A plain session; tests commit explicitly when they need to."""
    db_session = provider.session_factory()
    yield db_session
    db_session.close()


@pytest.fixture
def import_service(provider) -> DataImportService:
    return DataImportService(provider.get_unit_of_work)


@pytest.fixture
def make_row() -> Callable[..., Dict[str, Any]]:
    """Build a CSV row from BASE_ROW with per-test overrides."""
    def _make_row(**overrides: Any) -> Dict[str, Any]:
        row = dict(BASE_ROW)
        row.update(overrides)
        return row
    return _make_row
