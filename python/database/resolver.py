"""
Entity Resolver for the CSV reconciliation import

Maps the attributes found in one denormalized row onto the four normalized
tables, one operation per entity kind. Every operation is an upsert keyed by
the entity's natural key:

    INSERT ... ON CONFLICT (<natural key>) DO NOTHING RETURNING id
    -> a returned id means the row was created
    UPDATE ... SET <mutable attributes> WHERE <natural key> = ? RETURNING id
    -> otherwise the existing row is refreshed

The conflict target makes concurrent imports of the same key converge on one
row instead of failing on the unique constraint. Other constraint violations
(a client email already used by another client, a dangling foreign key) are
raised as RepositoryError subclasses with an "Error processing <entity>: "
prefix so the import can report them per row.

Usage:
    with provider.get_unit_of_work() as uow:
        resolver = EntityResolver(uow.session)
        client = resolver.resolve_client(row)
        invoice = resolver.resolve_invoice(row, client.id)
        uow.commit()
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Type

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import (
    Client,
    Invoice,
    Platform,
    Transaction,
    InvoiceStatus,
    PlatformType,
    TransactionStatus,
    TransactionType,
    normalize_client_code,
)
from database.repositories import (
    RepositoryError,
    DuplicateEntityError,
    InvalidRowDataError,
)

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT support
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Accepted in addition to ISO-8601
_DATETIME_FORMATS = ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%d/%m/%Y")

DEFAULT_PLATFORM_TYPE = PlatformType.DIGITAL_WALLET


@dataclass(frozen=True)
class ResolveResult:
    """Surrogate id of a resolved entity and whether this call created it."""
    id: int
    created: bool


# ============================================
# FIELD COERCION
# ============================================

def clean_value(value: Any) -> Optional[str]:
    """Strip a raw cell; blank cells become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_amount(value: Any, field: str) -> Optional[Decimal]:
    """Parse a monetary cell into a Decimal. Blank cells return None."""
    text = clean_value(value)
    if text is None:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise InvalidRowDataError(f"Invalid {field}: '{text}'")
    if not amount.is_finite():
        raise InvalidRowDataError(f"Invalid {field}: '{text}'")
    return amount


def parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """Parse an ISO-8601 (or DD/MM/YYYY) date-time cell."""
    text = clean_value(value)
    if text is None:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise InvalidRowDataError(f"Invalid {field}: '{text}'")


def parse_date(value: Any, field: str) -> Optional[date]:
    parsed = parse_datetime(value, field)
    return parsed.date() if parsed is not None else None


def parse_enum(enum_cls: Type, value: Any, field: str):
    """Match a cell against an enum case-insensitively. Blank cells return None."""
    text = clean_value(value)
    if text is None:
        return None
    try:
        return enum_cls(text.upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidRowDataError(f"Invalid {field}: '{text}' (expected one of {allowed})")


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


# ============================================
# ENTITY RESOLVER
# ============================================

class EntityResolver:
    """Find-or-create for clients, invoices, platforms and transactions."""

    def __init__(self, session: Session, default_platform_type: PlatformType = DEFAULT_PLATFORM_TYPE):
        self.session = session
        self.default_platform_type = default_platform_type

    def _insert(self, table):
        dialect = self.session.get_bind().dialect.name
        insert_factory = _DIALECT_INSERTS.get(dialect)
        if insert_factory is None:
            raise RepositoryError(f"Upsert is not supported on the '{dialect}' dialect")
        return insert_factory(table)

    def _upsert(
        self,
        entity: str,
        model,
        key_column: str,
        insert_values: Dict[str, Any],
        update_values: Dict[str, Any],
    ) -> ResolveResult:
        table = model.__table__
        key = insert_values[key_column]

        try:
            insert_stmt = (
                self._insert(table)
                .values(**insert_values)
                .on_conflict_do_nothing(index_elements=[table.c[key_column]])
                .returning(table.c.id)
            )
            new_id = self.session.execute(insert_stmt).scalar_one_or_none()
            if new_id is not None:
                logger.debug("Created %s %s=%s id=%s", entity, key_column, key, new_id)
                return ResolveResult(id=new_id, created=True)

            if update_values:
                existing_stmt = (
                    update(table)
                    .where(table.c[key_column] == key)
                    .values(**update_values)
                    .returning(table.c.id)
                )
            else:
                existing_stmt = select(table.c.id).where(table.c[key_column] == key)
            existing_id = self.session.execute(existing_stmt).scalar_one_or_none()
        except IntegrityError as e:
            message = str(e.orig)
            if "unique" in message.lower() or "duplicate" in message.lower():
                raise DuplicateEntityError(f"Error processing {entity}: {message}") from e
            raise RepositoryError(f"Error processing {entity}: {message}") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"Error processing {entity}: {e}") from e

        if existing_id is None:
            # Conflict reported but row gone: deleted by a concurrent writer
            raise RepositoryError(f"Error processing {entity}: {key_column} '{key}' disappeared during upsert")

        logger.debug("Updated %s %s=%s id=%s", entity, key_column, key, existing_id)
        return ResolveResult(id=existing_id, created=False)

    def resolve_client(self, row: Mapping[str, Any]) -> ResolveResult:
        """
        Resolve a client by client_code.

        Contact fields (names, email, phone, address, city, department) are
        overwritten from the row on every sighting; blank cells clear them.
        """
        contact = {
            "first_name": clean_value(row.get("first_name")),
            "last_name": clean_value(row.get("last_name")),
            "email": (clean_value(row.get("email")) or "").lower() or None,
            "phone": clean_value(row.get("phone")),
            "address": clean_value(row.get("address")),
            "city": clean_value(row.get("city")),
            "department": clean_value(row.get("department")),
        }
        code = normalize_client_code(row.get("client_code"))
        if not code:
            raise InvalidRowDataError("Error processing client: missing client code")

        return self._upsert(
            "client",
            Client,
            "client_code",
            insert_values={"client_code": code, **contact},
            update_values=contact,
        )

    def resolve_invoice(self, row: Mapping[str, Any], client_id: int) -> ResolveResult:
        """
        Resolve an invoice by invoice_number, owned by client_id.

        Billing period, amounts, status and due date are refreshed on update;
        blank status/due date cells leave the stored values untouched. The
        owning client is set on insert only.
        """
        number = clean_value(row.get("invoice_number"))
        if not number:
            raise InvalidRowDataError("Error processing invoice: missing invoice number")

        try:
            total_amount = parse_amount(row.get("total_amount"), "total amount")
            paid_amount = parse_amount(row.get("paid_amount"), "paid amount")
            status = parse_enum(InvoiceStatus, row.get("invoice_status"), "invoice status")
            due_date = parse_date(row.get("due_date"), "due date")
        except InvalidRowDataError as e:
            raise InvalidRowDataError(f"Error processing invoice: {e}") from e

        if total_amount is None:
            raise InvalidRowDataError("Error processing invoice: total amount is required")
        if paid_amount is None:
            paid_amount = Decimal("0")

        values = {
            "billing_period": clean_value(row.get("billing_period")),
            "total_amount": total_amount,
            "paid_amount": paid_amount,
        }
        optional = _drop_none({"status": status, "due_date": due_date})

        return self._upsert(
            "invoice",
            Invoice,
            "invoice_number",
            insert_values={"invoice_number": number, "client_id": client_id, **values, **optional},
            update_values={**values, **optional},
        )

    def resolve_platform(self, platform_name: Any) -> ResolveResult:
        """
        Resolve a platform by name.

        Unknown platforms are created with the default type (DIGITAL_WALLET);
        existing platforms are never modified.
        """
        name = clean_value(platform_name)
        if not name:
            raise InvalidRowDataError("Error processing platform: missing platform name")

        return self._upsert(
            "platform",
            Platform,
            "platform_name",
            insert_values={"platform_name": name, "platform_type": self.default_platform_type},
            update_values={},
        )

    def resolve_transaction(
        self,
        row: Mapping[str, Any],
        invoice_id: int,
        platform_id: int,
    ) -> ResolveResult:
        """
        Resolve a transaction by transaction_reference.

        Date, amount, type and status are refreshed on update, and the
        transaction is re-linked to the row's invoice and platform.
        """
        reference = clean_value(row.get("transaction_reference"))
        if not reference:
            raise InvalidRowDataError("Error processing transaction: missing transaction reference")

        try:
            amount = parse_amount(row.get("transaction_amount"), "transaction amount")
            transaction_date = parse_datetime(row.get("transaction_date"), "transaction date")
            transaction_type = parse_enum(TransactionType, row.get("transaction_type"), "transaction type")
            status = parse_enum(TransactionStatus, row.get("transaction_status"), "transaction status")
        except InvalidRowDataError as e:
            raise InvalidRowDataError(f"Error processing transaction: {e}") from e

        if amount is None:
            raise InvalidRowDataError("Error processing transaction: transaction amount is required")
        if transaction_date is None:
            raise InvalidRowDataError("Error processing transaction: transaction date is required")

        values = {
            "invoice_id": invoice_id,
            "platform_id": platform_id,
            "transaction_date": transaction_date,
            "amount": amount,
        }
        optional = _drop_none({"transaction_type": transaction_type, "status": status})

        return self._upsert(
            "transaction",
            Transaction,
            "transaction_reference",
            insert_values={"transaction_reference": reference, **values, **optional},
            update_values={**values, **optional},
        )
