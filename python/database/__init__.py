"""
Database Package for the Financial Data Reconciliation Service

This package provides:
- SQLAlchemy ORM models for clients, invoices, platforms and transactions
- An explicitly constructed session provider and Unit of Work
- Idempotent entity resolution (create-or-update by natural key)
- The CSV reconciliation pipeline
- Repository and reporting services for the API
"""

from database.models import (
    Base,
    Platform,
    Client,
    Invoice,
    Transaction,
    PlatformType,
    InvoiceStatus,
    TransactionType,
    TransactionStatus,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
    InvalidRowDataError,
    ClientRepository,
)
from database.resolver import EntityResolver, ResolveResult
from database.import_service import DataImportService, ImportStatistics
from database.reporting_service import ReportingService, ReportResult

__all__ = [
    # Base
    'Base',
    # Models
    'Platform',
    'Client',
    'Invoice',
    'Transaction',
    'PlatformType',
    'InvoiceStatus',
    'TransactionType',
    'TransactionStatus',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'create_test_provider',
    # Errors
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
    'InvalidRowDataError',
    # Services
    'ClientRepository',
    'EntityResolver',
    'ResolveResult',
    'DataImportService',
    'ImportStatistics',
    'ReportingService',
    'ReportResult',
]
