"""
Repository Pattern for Reconciliation Service Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.
"""

import logging
from typing import List, Optional, Dict, Any

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import Client, normalize_client_code

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


class InvalidRowDataError(RepositoryError):
    """Raised when a value cannot be coerced into its column type."""
    pass


# Contact fields an administrator may change on a client
CLIENT_FIELDS = (
    "client_code",
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "department",
)


# ============================================
# CLIENT REPOSITORY
# ============================================

class ClientRepository:
    """Repository for client administration (CRUD, search, statistics)."""

    def __init__(self, session: Session):
        self.session = session

    def list_all(self, include_inactive: bool = True) -> List[Client]:
        """
        List clients, newest first.

        Args:
            include_inactive: If False, only active clients are returned
        """
        query = select(Client).order_by(Client.created_at.desc(), Client.id.desc())
        if not include_inactive:
            query = query.where(Client.is_active == True)
        return list(self.session.execute(query).scalars().all())

    def get_by_id(self, client_id: int) -> Optional[Client]:
        return self.session.get(Client, client_id)

    def get_by_code(self, client_code: str) -> Optional[Client]:
        query = select(Client).where(Client.client_code == normalize_client_code(client_code))
        return self.session.execute(query).scalar_one_or_none()

    def create(self, client_data: Dict[str, Any]) -> Client:
        """
        Create a new client.

        Args:
            client_data: Dictionary containing client fields

        Returns:
            Created Client instance

        Raises:
            DuplicateEntityError: If the client code or email is taken
        """
        data = {key: client_data.get(key) for key in CLIENT_FIELDS}
        data["client_code"] = normalize_client_code(data["client_code"])

        if self.get_by_code(data["client_code"]) is not None:
            raise DuplicateEntityError(f"Client code already exists: {data['client_code']}")

        try:
            client = Client(**data)
            self.session.add(client)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Client already exists: {e.orig}")

        logger.debug(f"Created client: {client.id} ({client.client_code})")
        return client

    def update(self, client_id: int, updates: Dict[str, Any]) -> Client:
        """
        Update a client's code and contact fields.

        Raises:
            EntityNotFoundError: If client not found
            DuplicateEntityError: If the new code or email belongs to another client
        """
        client = self.get_by_id(client_id)
        if not client:
            raise EntityNotFoundError(f"Client not found: {client_id}")

        if updates.get("client_code"):
            updates["client_code"] = normalize_client_code(updates["client_code"])
            other = self.get_by_code(updates["client_code"])
            if other is not None and other.id != client.id:
                raise DuplicateEntityError(f"Client code already exists: {updates['client_code']}")

        for key, value in updates.items():
            if key in CLIENT_FIELDS:
                setattr(client, key, value)

        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Client update conflicts with an existing client: {e.orig}")
        return client

    def soft_delete(self, client_id: int) -> bool:
        """
        Deactivate a client. Its invoices and transactions are kept but
        drop out of every report.

        Returns:
            True if deactivated, False if not found
        """
        client = self.get_by_id(client_id)
        if not client:
            return False

        client.is_active = False
        self.session.flush()
        return True

    def hard_delete(self, client_id: int) -> bool:
        """
        Permanently remove a client together with its invoices and their
        transactions (ON DELETE CASCADE).

        Returns:
            True if deleted, False if not found
        """
        client = self.get_by_id(client_id)
        if not client:
            return False

        self.session.delete(client)
        self.session.flush()
        logger.warning(f"Hard deleted client: {client_id} ({client.client_code})")
        return True

    def search(self, term: str) -> List[Client]:
        """Case-insensitive substring search over code, names, email and city."""
        pattern = f"%{term.strip()}%"
        query = select(Client).where(
            or_(
                Client.client_code.ilike(pattern),
                Client.first_name.ilike(pattern),
                Client.last_name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.city.ilike(pattern),
            )
        ).order_by(Client.created_at.desc(), Client.id.desc())
        return list(self.session.execute(query).scalars().all())

    def statistics(self) -> Dict[str, int]:
        """Client counts by activity plus distinct cities and departments."""
        query = select(
            func.count(Client.id),
            func.count(Client.id).filter(Client.is_active == True),
            func.count(func.distinct(Client.city)),
            func.count(func.distinct(Client.department)),
        )
        total, active, cities, departments = self.session.execute(query).one()
        return {
            "total_clients": total,
            "active_clients": active,
            "inactive_clients": total - active,
            "cities_count": cities,
            "departments_count": departments,
        }
