"""
Module: crm_kernel.db.engine
Responsibility: Process-wide engine and session factory, plus the two
    transaction helpers every caller uses to own a unit of work.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables/drop_tables to populate metadata.

Backends:
    - PostgreSQL: QueuePool with pre-ping, READ COMMITTED.  The stock
      preflight read takes row locks (SELECT ... FOR UPDATE).
    - SQLite: NullPool, one connection per session, 30 s busy timeout.
      No row locks; the compare-and-set UPDATE in the stock ledger is
      the oversell barrier.

Failure modes:
    - RuntimeError from the accessors before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from crm_kernel.exceptions import ConcurrencyError, InventoryError
from crm_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_MS = 30000

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _set_sqlite_busy_timeout(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def _build_engine(
    database_url: str,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_pre_ping: bool,
    pool_timeout: int,
    pool_recycle: int,
) -> Engine:
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
        )
        event.listen(engine, "connect", _set_sqlite_busy_timeout)
        return engine
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory.  A second call replaces both.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///path.db``.
        Pool arguments apply to PostgreSQL only.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(
        database_url, echo, pool_size, max_overflow, pool_pre_ping, pool_timeout, pool_recycle
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """A new, unmanaged session.  The caller closes it."""
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """
    The shared factory.  Webhook deliveries and concurrent stock operations
    each open their own session from it.
    """
    return _require_factory()


@contextmanager
def transaction_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on any
    exception, always close.

    Expected ledger outcomes (InventoryError, ConcurrencyError) log the
    rollback at INFO with their error code; anything else logs at WARNING
    with the traceback.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except (InventoryError, ConcurrencyError) as exc:
        session.rollback()
        logger.info("transaction_rolled_back", extra={"error_code": exc.code})
        raise
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    transaction_scope over the shared factory::

        with session_scope() as session:
            StockLedgerService(session).deduct_stock(...)
    """
    with transaction_scope(get_session_factory()) as session:
        yield session


def create_tables(install_triggers: bool = True) -> None:
    """
    Create every CRM table, then the append-only triggers on stock_movements
    and webhook_deliveries (PostgreSQL and SQLite).
    """
    from crm_kernel.db.base import Base
    from crm_kernel.db.triggers import install_immutability_triggers, supports_triggers
    import crm_kernel.models  # noqa: F401

    engine = get_engine()
    Base.metadata.create_all(engine)
    if install_triggers and supports_triggers(engine):
        install_immutability_triggers(engine)


def drop_tables() -> None:
    """Drop every CRM table.  Tests and local resets only."""
    from crm_kernel.db.base import Base
    from crm_kernel.db.triggers import supports_triggers, uninstall_immutability_triggers
    import crm_kernel.models  # noqa: F401

    engine = get_engine()
    if supports_triggers(engine):
        uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
