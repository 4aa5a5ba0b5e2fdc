"""
Tests for ClientRepository (client administration).
"""

import pytest
from sqlalchemy import select, func

from database.models import Client, Invoice, Platform, Transaction
from database.repositories import ClientRepository, DuplicateEntityError, EntityNotFoundError


def client_data(**overrides):
    data = {
        "client_code": "CLI001",
        "first_name": "Ana",
        "last_name": "Rodríguez",
        "email": "ana@example.com",
        "phone": "3204567890",
        "address": "Avenida 3 # 8-50",
        "city": "Cali",
        "department": "Valle del Cauca",
    }
    data.update(overrides)
    return data


@pytest.fixture
def repo(session):
    return ClientRepository(session)


class TestCreate:

    def test_create(self, repo, session):
        client = repo.create(client_data(client_code="cli001"))
        session.commit()

        assert client.id is not None
        assert client.client_code == "CLI001"
        assert client.is_active is True
        assert repo.get_by_code("cli001").id == client.id

    def test_duplicate_code(self, repo, session):
        repo.create(client_data())
        session.commit()

        with pytest.raises(DuplicateEntityError, match="CLI001"):
            repo.create(client_data(email="other@example.com"))

    def test_duplicate_email(self, repo, session):
        repo.create(client_data())
        session.commit()

        with pytest.raises(DuplicateEntityError):
            repo.create(client_data(client_code="CLI002"))


class TestUpdate:

    def test_update_fields(self, repo, session):
        client = repo.create(client_data())
        session.commit()

        updated = repo.update(client.id, {"city": "Palmira", "phone": None})
        session.commit()

        assert updated.city == "Palmira"
        assert updated.phone is None
        assert updated.first_name == "Ana"

    def test_update_missing(self, repo):
        with pytest.raises(EntityNotFoundError):
            repo.update(404, {"city": "Cali"})

    def test_update_to_taken_code(self, repo, session):
        repo.create(client_data())
        other = repo.create(client_data(client_code="CLI002", email="b@example.com"))
        session.commit()

        with pytest.raises(DuplicateEntityError):
            repo.update(other.id, {"client_code": "cli001"})

    def test_keep_own_code(self, repo, session):
        client = repo.create(client_data())
        session.commit()

        updated = repo.update(client.id, {"client_code": "CLI001", "last_name": "Gómez"})
        assert updated.last_name == "Gómez"

    def test_unknown_keys_ignored(self, repo, session):
        client = repo.create(client_data())
        repo.update(client.id, {"is_active": False, "id": 99})
        assert client.is_active is True
        assert client.id != 99


class TestSoftDelete:

    def test_soft_delete(self, repo, session):
        client = repo.create(client_data())
        session.commit()

        assert repo.soft_delete(client.id) is True
        session.commit()

        assert repo.get_by_id(client.id).is_active is False
        assert repo.list_all(include_inactive=False) == []
        assert len(repo.list_all()) == 1

    def test_soft_delete_missing(self, repo):
        assert repo.soft_delete(12345) is False


class TestHardDelete:

    def test_removes_invoices_and_transactions(self, repo, session, import_service, make_row):
        import_service.process_batch([
            make_row(),
            make_row(invoice_number="INV-2", transaction_reference="TXN-2"),
            make_row(client_code="TEST002", email="other@example.com",
                     invoice_number="INV-3", transaction_reference="TXN-3"),
        ])
        client = repo.get_by_code("TEST001")

        assert repo.hard_delete(client.id) is True
        session.commit()

        assert repo.get_by_code("TEST001") is None
        assert session.scalar(select(func.count(Client.id))) == 1
        assert session.scalars(select(Invoice.invoice_number)).all() == ["INV-3"]
        assert session.scalars(select(Transaction.transaction_reference)).all() == ["TXN-3"]
        # Platforms are shared reference data
        assert session.scalar(select(func.count(Platform.id))) == 1

    def test_hard_delete_missing(self, repo):
        assert repo.hard_delete(12345) is False


class TestSearchAndStatistics:

    @pytest.fixture
    def populated(self, repo, session):
        repo.create(client_data())
        repo.create(client_data(client_code="CLI002", first_name="Juan", last_name="Pérez",
                                email="juan@example.com", city="Bogotá", department="Cundinamarca"))
        repo.create(client_data(client_code="CLI003", first_name="María", last_name="Gómez",
                                email="maria@example.com", city="Cali"))
        session.commit()
        return repo

    def test_search_by_name(self, populated):
        results = populated.search("juan")
        assert [c.client_code for c in results] == ["CLI002"]

    def test_search_by_city(self, populated):
        codes = sorted(c.client_code for c in populated.search("Cali"))
        assert codes == ["CLI001", "CLI003"]

    def test_search_by_code(self, populated):
        assert [c.client_code for c in populated.search(" cli003 ")] == ["CLI003"]

    def test_search_no_match(self, populated):
        assert populated.search("zzz") == []

    def test_statistics(self, populated, session):
        populated.soft_delete(populated.get_by_code("CLI002").id)
        session.commit()

        assert populated.statistics() == {
            "total_clients": 3,
            "active_clients": 2,
            "inactive_clients": 1,
            "cities_count": 2,
            "departments_count": 2,
        }

    def test_statistics_empty(self, repo):
        stats = repo.statistics()
        assert stats["total_clients"] == 0
        assert stats["inactive_clients"] == 0
