"""
CSV Reconciliation Import Service

Turns denormalized spreadsheet rows into normalized clients, invoices,
platforms and transactions. Each row is validated, then resolved inside its
own unit of work: the four upserts commit together or not at all, and a
failing row is recorded in the statistics without stopping the batch.

Usage:
    provider = DatabaseSessionProvider(settings)
    service = DataImportService(provider.get_unit_of_work)
    stats = service.import_csv_file("data.csv")
    print(stats.to_dict())
"""

import csv
import io
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, TextIO, Union

from sqlalchemy.exc import SQLAlchemyError

from database.connection import UnitOfWork
from database.models import PlatformType
from database.repositories import RepositoryError
from database.resolver import EntityResolver, DEFAULT_PLATFORM_TYPE
from row_validator import validate_row

logger = logging.getLogger(__name__)

# The header occupies line 1, so the first data row is line 2
FIRST_DATA_ROW = 2


@dataclass
class ImportStatistics:
    """Counters and per-row errors for one import batch"""
    clients_processed: int = 0
    clients_created: int = 0
    clients_updated: int = 0
    invoices_processed: int = 0
    invoices_created: int = 0
    invoices_updated: int = 0
    transactions_processed: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    total_rows: int = 0
    failed_rows: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, kind: str, created: bool) -> None:
        setattr(self, f"{kind}_processed", getattr(self, f"{kind}_processed") + 1)
        outcome = "created" if created else "updated"
        setattr(self, f"{kind}_{outcome}", getattr(self, f"{kind}_{outcome}") + 1)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def read_csv_rows(stream: TextIO) -> List[Dict[str, str]]:
    """
    Parse CSV text into row mappings.

    Header names are stripped and a UTF-8 byte order mark is ignored.
    Missing trailing cells come back as None.
    """
    reader = csv.DictReader(stream)
    if reader.fieldnames is None:
        return []
    reader.fieldnames = [name.lstrip("\ufeff").strip() for name in reader.fieldnames]
    return [dict(row) for row in reader]


def read_csv_bytes(content: bytes) -> List[Dict[str, str]]:
    """Parse an uploaded CSV payload."""
    return read_csv_rows(io.StringIO(content.decode("utf-8-sig"), newline=""))


class DataImportService:
    """
    Reconciles batches of raw rows into the normalized store.

    Rows are processed strictly in order; counters are only incremented once
    a row's unit of work has committed.
    """

    def __init__(
        self,
        unit_of_work_factory: Callable[[], UnitOfWork],
        default_platform_type: Union[PlatformType, str] = DEFAULT_PLATFORM_TYPE,
    ):
        """
        Args:
            unit_of_work_factory: Returns a fresh UnitOfWork per row,
                typically DatabaseSessionProvider.get_unit_of_work
            default_platform_type: Type given to platforms first seen in a row
        """
        self._uow_factory = unit_of_work_factory
        self._default_platform_type = PlatformType(default_platform_type)

    def process_batch(self, rows: Iterable[Mapping[str, Any]]) -> ImportStatistics:
        """
        Validate and reconcile every row.

        Args:
            rows: Raw rows in file order

        Returns:
            ImportStatistics for the batch
        """
        stats = ImportStatistics()

        for index, row in enumerate(rows):
            row_number = index + FIRST_DATA_ROW
            stats.total_rows += 1

            defects = validate_row(row, row_number)
            if defects:
                stats.errors.extend(defects)
                stats.failed_rows += 1
                logger.warning("Skipping invalid row %d: %s", row_number, "; ".join(defects))
                continue

            try:
                outcome = self._process_row(row)
            except (RepositoryError, SQLAlchemyError) as e:
                stats.errors.append(f"Row {row_number}: {e}")
                stats.failed_rows += 1
                logger.warning("Error processing row %d: %s", row_number, e)
                continue

            for kind, created in outcome.items():
                stats.record(kind, created)

        logger.info(
            "Import finished: rows=%d failed=%d clients=%d/%d invoices=%d/%d transactions=%d/%d (created/updated)",
            stats.total_rows,
            stats.failed_rows,
            stats.clients_created,
            stats.clients_updated,
            stats.invoices_created,
            stats.invoices_updated,
            stats.transactions_created,
            stats.transactions_updated,
        )
        return stats

    def _process_row(self, row: Mapping[str, Any]) -> Dict[str, bool]:
        """Resolve the four entities of one row in a single transaction."""
        with self._uow_factory() as uow:
            resolver = EntityResolver(uow.session, self._default_platform_type)

            client = resolver.resolve_client(row)
            invoice = resolver.resolve_invoice(row, client.id)
            platform = resolver.resolve_platform(row.get("platform_name"))
            transaction = resolver.resolve_transaction(row, invoice.id, platform.id)

            uow.commit()

        return {
            "clients": client.created,
            "invoices": invoice.created,
            "transactions": transaction.created,
        }

    def import_csv_file(self, path: Union[str, Path]) -> ImportStatistics:
        """Read a CSV file from disk and process all of its rows."""
        path = Path(path)
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            rows = read_csv_rows(f)
        logger.info("Processing %d records from %s", len(rows), path.name)
        return self.process_batch(rows)
