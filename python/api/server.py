"""
FastAPI Reconciliation API Server

Exposes client administration, CSV data loading and the reporting queries
over the normalized store.

Usage:
    uvicorn api.server:app --reload --port 3000
"""

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Depends, Path as PathParam, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.models import (
    ClientPayload,
    ClientOut,
    ClientResponse,
    ClientListResponse,
    ClientStatisticsResponse,
    MessageResponse,
    ImportResponse,
    ReportResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import ConfigManager
from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.import_service import DataImportService, ImportStatistics, read_csv_bytes
from database.reporting_service import ReportingService, ReportResult
from database.repositories import ClientRepository, EntityNotFoundError

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH")

# Allowed content types for CSV uploads
ALLOWED_CONTENT_TYPES = {
    "text/csv",
    "text/plain",
    "application/octet-stream",
    "application/csv",
    "application/vnd.ms-excel",
}
UPLOAD_CHUNK_SIZE = 8192


# ============================================
# DEPENDENCIES
# ============================================

def get_config_instance(request: Request) -> ConfigManager:
    return request.app.state.config


def get_provider(request: Request) -> DatabaseSessionProvider:
    """Dependency to get the storage handle opened at startup."""
    provider = request.app.state.db_provider
    if provider is None or not provider.initialized:
        raise HTTPException(status_code=503, detail="Database not initialized. Service is starting up.")
    return provider


def get_db_session(
    provider: DatabaseSessionProvider = Depends(get_provider),
) -> Generator[Session, None, None]:
    """Dependency yielding a request-scoped session; writes commit explicitly."""
    yield from provider.get_session()


def _client_out(client) -> ClientOut:
    return ClientOut(**client.to_dict())


def _report_response(report: ReportResult, **extra) -> ReportResponse:
    return ReportResponse(data=report.rows, summary=report.summary, count=report.count, **extra)


def _import_response(stats: ImportStatistics) -> ImportResponse:
    if stats.has_errors:
        message = f"Data loaded with {len(stats.errors)} errors"
    else:
        message = "Data loaded successfully"
    return ImportResponse(message=message, data=stats.to_dict())


# ============================================
# APPLICATION FACTORY
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the storage handle at startup and release it at shutdown."""
    config: ConfigManager = app.state.config
    owns_provider = app.state.db_provider is None

    logger.info("Starting Reconciliation API...")
    if owns_provider:
        app.state.db_provider = DatabaseSessionProvider(DatabaseSettings.from_config(config.database))

    await run_in_threadpool(app.state.db_provider.init)
    app.state.startup_time = datetime.now(timezone.utc)
    logger.info("API ready")

    try:
        yield
    finally:
        logger.info("Shutting down Reconciliation API...")
        if owns_provider:
            app.state.db_provider.close()


def create_app(
    provider: Optional[DatabaseSessionProvider] = None,
    config: Optional[ConfigManager] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        provider: Storage handle to use. When omitted one is built from the
            configuration at startup and closed at shutdown; an injected
            provider stays owned by the caller.
        config: Loaded configuration (config.yaml lookup when omitted)
    """
    config = config or ConfigManager.create(CONFIG_PATH)
    config.configure_logging()

    app = FastAPI(
        title="Financial Data Reconciliation API",
        description="Reconciles client payment spreadsheets and reports on payments and outstanding invoices",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.db_provider = provider
    app.state.startup_time = None

    setup_cors(app, config.api.cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)

    _register_client_routes(app)
    _register_data_loader_routes(app)
    _register_query_routes(app)
    _register_health_routes(app)
    return app


# ============================================
# CLIENTS
# ============================================

def _register_client_routes(app: FastAPI) -> None:

    @app.get("/api/clients", response_model=ClientListResponse, summary="List clients")
    def list_clients(session: Session = Depends(get_db_session)):
        clients = ClientRepository(session).list_all()
        return ClientListResponse(data=[_client_out(c) for c in clients], count=len(clients))

    @app.get(
        "/api/clients/search",
        response_model=ClientListResponse,
        responses={400: {"model": ErrorResponse, "description": "Missing search term"}},
        summary="Search clients",
    )
    def search_clients(
        q: str = Query(..., min_length=1, description="Search term"),
        session: Session = Depends(get_db_session),
    ):
        if not q.strip():
            raise HTTPException(status_code=400, detail="Search term is required")
        clients = ClientRepository(session).search(q)
        return ClientListResponse(data=[_client_out(c) for c in clients], count=len(clients), search_term=q)

    @app.get("/api/clients/statistics", response_model=ClientStatisticsResponse, summary="Client statistics")
    def client_statistics(session: Session = Depends(get_db_session)):
        return ClientStatisticsResponse(data=ClientRepository(session).statistics())

    @app.get(
        "/api/clients/{client_id}",
        response_model=ClientResponse,
        responses={404: {"model": ErrorResponse, "description": "Client not found"}},
        summary="Get a client",
    )
    def get_client(
        client_id: int = PathParam(..., gt=0),
        session: Session = Depends(get_db_session),
    ):
        client = ClientRepository(session).get_by_id(client_id)
        if client is None:
            raise EntityNotFoundError("Client not found")
        return ClientResponse(data=_client_out(client))

    @app.post(
        "/api/clients",
        status_code=201,
        response_model=ClientResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Validation error"},
            409: {"model": ErrorResponse, "description": "Client code already exists"},
        },
        summary="Create a client",
    )
    def create_client(payload: ClientPayload, session: Session = Depends(get_db_session)):
        client = ClientRepository(session).create(payload.model_dump())
        session.commit()
        logger.info("Client created: id=%d code=%s", client.id, client.client_code)
        return ClientResponse(message="Client created successfully", data=_client_out(client))

    @app.put(
        "/api/clients/{client_id}",
        response_model=ClientResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Validation error"},
            404: {"model": ErrorResponse, "description": "Client not found"},
            409: {"model": ErrorResponse, "description": "Client code already exists"},
        },
        summary="Update a client",
    )
    def update_client(
        payload: ClientPayload,
        client_id: int = PathParam(..., gt=0),
        session: Session = Depends(get_db_session),
    ):
        client = ClientRepository(session).update(client_id, payload.model_dump())
        session.commit()
        logger.info("Client updated: id=%d", client.id)
        return ClientResponse(message="Client updated successfully", data=_client_out(client))

    @app.delete(
        "/api/clients/{client_id}",
        response_model=MessageResponse,
        responses={404: {"model": ErrorResponse, "description": "Client not found"}},
        summary="Deactivate a client",
    )
    def delete_client(
        client_id: int = PathParam(..., gt=0),
        session: Session = Depends(get_db_session),
    ):
        if not ClientRepository(session).soft_delete(client_id):
            raise EntityNotFoundError("Client not found")
        session.commit()
        logger.info("Client deactivated: id=%d", client_id)
        return MessageResponse(message="Client deleted successfully")

    @app.delete(
        "/api/clients/{client_id}/hard",
        response_model=MessageResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid client id"},
            404: {"model": ErrorResponse, "description": "Client not found"},
        },
        summary="Permanently delete a client and its invoices",
    )
    def hard_delete_client(
        client_id: int = PathParam(..., gt=0),
        session: Session = Depends(get_db_session),
    ):
        if not ClientRepository(session).hard_delete(client_id):
            raise EntityNotFoundError("Client not found")
        session.commit()
        logger.warning("Client permanently deleted: id=%d", client_id)
        return MessageResponse(message="Client permanently deleted")


# ============================================
# DATA LOADER
# ============================================

def _register_data_loader_routes(app: FastAPI) -> None:

    @app.post(
        "/api/data-loader/upload",
        response_model=ImportResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid CSV file"},
            413: {"model": ErrorResponse, "description": "File too large"},
        },
        summary="Import an uploaded CSV",
    )
    async def upload_csv(
        csv_file: UploadFile = File(..., alias="csvFile", description="Reconciliation CSV export"),
        provider: DatabaseSessionProvider = Depends(get_provider),
        config: ConfigManager = Depends(get_config_instance),
    ):
        """Reconcile every row of the uploaded CSV; row failures are reported, not raised."""
        content_type = (csv_file.content_type or "").lower()
        filename = (csv_file.filename or "").lower()
        if content_type not in ALLOWED_CONTENT_TYPES and "csv" not in content_type:
            raise HTTPException(status_code=400, detail="Only CSV files are allowed")
        if filename and not filename.endswith(".csv"):
            raise HTTPException(status_code=400, detail="Only CSV files are allowed")

        max_size_mb = config.data_import.max_upload_size_mb
        max_size_bytes = max_size_mb * 1024 * 1024
        chunks = []
        total_size = 0
        while True:
            chunk = await csv_file.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > max_size_bytes:
                raise HTTPException(status_code=413, detail=f"File too large. Maximum size is {max_size_mb}MB")
            chunks.append(chunk)

        payload = b"".join(chunks)
        if not payload.strip():
            raise HTTPException(status_code=400, detail="CSV file is empty")
        try:
            rows = read_csv_bytes(payload)
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")

        # A header without data rows is a valid, empty batch
        logger.info("Processing %d records from upload %s", len(rows), csv_file.filename)
        service = DataImportService(provider.get_unit_of_work, config.data_import.default_platform_type)
        stats = await run_in_threadpool(service.process_batch, rows)
        return _import_response(stats)

    @app.post(
        "/api/data-loader/load-sample",
        response_model=ImportResponse,
        responses={404: {"model": ErrorResponse, "description": "Sample file not found"}},
        summary="Import the bundled sample CSV",
    )
    async def load_sample(
        provider: DatabaseSessionProvider = Depends(get_provider),
        config: ConfigManager = Depends(get_config_instance),
    ):
        sample_path = config.resolve_sample_csv_path()
        if not sample_path.is_file():
            raise HTTPException(status_code=404, detail="Sample data file not found")

        service = DataImportService(provider.get_unit_of_work, config.data_import.default_platform_type)
        stats = await run_in_threadpool(service.import_csv_file, sample_path)
        return _import_response(stats)


# ============================================
# QUERIES
# ============================================

def _register_query_routes(app: FastAPI) -> None:

    @app.get("/api/queries/total-payments", response_model=ReportResponse, summary="Total paid per client")
    def total_payments(session: Session = Depends(get_db_session)):
        return _report_response(ReportingService(session).total_payments())

    @app.get("/api/queries/pending-invoices", response_model=ReportResponse, summary="Outstanding invoices")
    def pending_invoices(session: Session = Depends(get_db_session)):
        return _report_response(ReportingService(session).pending_invoices())

    @app.get(
        "/api/queries/transactions-by-platform",
        response_model=ReportResponse,
        summary="Transactions grouped by platform",
    )
    def transactions_by_platform(
        platform: Optional[str] = Query(default=None, description="Only this platform"),
        session: Session = Depends(get_db_session),
    ):
        platform = platform.strip() if platform else None
        report = ReportingService(session).transactions_by_platform(platform or None)
        return _report_response(report, filtered_by_platform=platform or "all")

    @app.get("/api/queries/platforms", response_model=ReportResponse, summary="Active platforms")
    def platforms(session: Session = Depends(get_db_session)):
        return _report_response(ReportingService(session).platforms())


# ============================================
# HEALTH
# ============================================

def _register_health_routes(app: FastAPI) -> None:

    @app.get("/api/health", response_model=HealthResponse, summary="Health check")
    def health_check(request: Request):
        """Always returns HTTP 200; database problems are reported in the body."""
        provider = request.app.state.db_provider
        database_ok = provider is not None and provider.initialized and provider.health_check()

        uptime_seconds = None
        startup_time = request.app.state.startup_time
        if startup_time:
            uptime_seconds = int((datetime.now(timezone.utc) - startup_time).total_seconds())

        return HealthResponse(
            status="healthy" if database_ok else "degraded",
            database="ok" if database_ok else "unavailable",
            uptime_seconds=uptime_seconds,
        )

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect root to API documentation."""
        return RedirectResponse(url="/api/docs")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = app.state.config
    uvicorn.run(app, host=os.getenv("API_HOST", config.api.host), port=int(os.getenv("API_PORT", config.api.port)))
