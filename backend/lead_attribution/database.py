"""Database connection, session management and store error translation."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from lead_attribution.config import settings
from lead_attribution.exceptions import StoreUnavailable, TransactionFailed

logger = logging.getLogger(__name__)


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite run real nested transactions.

    pysqlite defers BEGIN on its own, which breaks SAVEPOINT. Disable that
    and emit BEGIN when SQLAlchemy starts a transaction.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_store_engine(
    database_url: str,
    timeout_seconds: int = settings.STORE_TIMEOUT_SECONDS,
    **engine_kwargs
) -> Engine:
    """
    Create a sync engine for the record store.

    Async driver URLs are rewritten to the sync driver. Every engine gets a
    timeout so no store call can block indefinitely.
    """
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql://")

    if database_url.startswith("sqlite"):
        connect_args = engine_kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", timeout_seconds)
        engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        echo=settings.LOG_LEVEL == "DEBUG",
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=timeout_seconds,
        connect_args={
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        },
        **engine_kwargs
    )


engine = create_store_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into store error kinds."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        logger.error(f"Store unavailable during {operation}: {e}")
        raise StoreUnavailable(f"{operation}: {e}") from e
    except SQLAlchemyError as e:
        logger.error(f"Transaction failed during {operation}: {e}")
        raise TransactionFailed(f"{operation}: {e}") from e
