"""
Storage handle for the reconciliation store

DatabaseSessionProvider is built explicitly by whoever needs the database
(the API lifespan, the seed script, the tests) and passed down; there is no
module-level engine. It offers three ways to talk to the store:

- get_session(): a plain request-scoped session (FastAPI dependency body)
- session_scope(): commit on success, roll back on error
- get_unit_of_work(): explicit commit, used once per imported CSV row

Engine creation retries transient OperationalErrors with tenacity.
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base

logger = logging.getLogger(__name__)


# ============================================
# SETTINGS
# ============================================

@dataclass
class DatabaseSettings:
    """Where the reconciliation store lives and how the pool is sized."""
    host: str = "localhost"
    port: int = 5432
    database: str = "recon_database"
    user: str = "recon_user"
    password: str = "recon_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """DATABASE_URL, or the DB_* variables, with the dataclass defaults as fallback."""
        defaults = cls()
        return cls(
            host=os.getenv("DB_HOST", defaults.host),
            port=int(os.getenv("DB_PORT", defaults.port)),
            database=os.getenv("DB_NAME", defaults.database),
            user=os.getenv("DB_USER", defaults.user),
            password=os.getenv("DB_PASSWORD", defaults.password),
            pool_size=int(os.getenv("DB_POOL_SIZE", defaults.pool_size)),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", defaults.max_overflow)),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", defaults.pool_timeout)),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", defaults.pool_recycle)),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or None
        )

    @classmethod
    def from_config(cls, db_config) -> 'DatabaseSettings':
        """Create settings from a config_manager.DatabaseConfig section.

        DATABASE_URL in the environment still wins over the file.
        """
        return cls(
            host=db_config.host,
            port=db_config.port,
            database=db_config.name,
            user=db_config.user,
            password=db_config.password,
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            echo=db_config.echo,
            url=os.getenv("DATABASE_URL") or db_config.url
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def get_pool_settings(self) -> dict:
        """Connection pool keyword arguments for create_engine()."""
        return {
            "poolclass": QueuePool,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


# ============================================
# RETRY
# ============================================

def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
):
    """
    Retry on OperationalError (database unreachable, connection dropped)
    with exponential backoff; the last error is re-raised.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


db_retry = create_retry_decorator()


# ============================================
# UNIT OF WORK
# ============================================

class UnitOfWork:
    """
    One transaction around a block of work.

    Nothing is written unless commit() is called inside the block; leaving
    the block with an exception rolls everything back. The import opens one
    per CSV row so that a row's client, invoice, platform and transaction
    land together or not at all.

    Usage:
        with provider.get_unit_of_work() as uow:
            EntityResolver(uow.session).resolve_platform("Nequi")
            uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork is only usable inside its 'with' block")
        return self._session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        if self._session is not None:
            self._session.rollback()

    def close(self) -> None:
        """Release the session; anything not committed is discarded."""
        if self._session is not None:
            self._session.close()
            self._session = None


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Explicitly constructed storage handle with an init()/close() lifecycle.

    Usage:
        provider = DatabaseSessionProvider(DatabaseSettings.from_config(config.database))
        provider.init()
        try:
            with provider.session_scope() as session:
                ReportingService(session).total_payments()
        finally:
            provider.close()
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Connection settings (DB_* environment when omitted)
            engine: Ready-made engine, e.g. in-memory SQLite in the tests
        """
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._listeners_installed = False

    def init(self, echo: Optional[bool] = None) -> None:
        """Create the engine (if none was given) and the session factory. Idempotent."""
        if self._session_factory is not None:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()

        if not self._listeners_installed:
            self._install_listeners(self._engine)
            self._listeners_installed = True

        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info("Database session provider initialized (dialect=%s)", self._engine.dialect.name)

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    @db_retry
    def _connect(self) -> Engine:
        """Build the engine and prove it can reach the database."""
        url = self._settings.get_url()
        pool_settings = {} if self._settings.is_sqlite else self._settings.get_pool_settings()
        engine = create_engine(url, echo=self._settings.echo, **pool_settings)

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    @staticmethod
    def _install_listeners(engine: Engine) -> None:
        """SQLite only enforces the ON DELETE CASCADE foreign keys when asked to."""

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            if engine.dialect.name == "sqlite":
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
            logger.debug("New database connection established")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_session(self) -> Generator[Session, None, None]:
        """
        Yield a session and close it afterwards.

        Never commits: the API's write endpoints commit explicitly.
        """
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def get_unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits when the block succeeds and rolls back when it raises."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create missing tables (development databases and tests)."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def health_check(self) -> bool:
        """True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Dispose of the connection pool. init() may be called again afterwards."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider around a caller-supplied engine, typically in-memory SQLite."""
    return DatabaseSessionProvider(settings=settings, engine=engine)
