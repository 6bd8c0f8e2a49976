"""
Module: crm_kernel.db.triggers
Responsibility: Loading, installing, and verifying the database triggers that
    keep stock_movements and webhook_deliveries append-only.  This is the
    database-level complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only (pathlib for
    SQL file loading, sqlalchemy for execution).  MUST NOT import from
    models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (via 4 triggers per backend):
    StockMovement rows: no UPDATE, no DELETE.
    WebhookDelivery rows: no UPDATE, no DELETE.

The ORM listeners only see unit-of-work flushes.  Core statements such as
``update(StockMovement)`` or ``delete(WebhookDelivery)`` and raw SQL skip
mapper events; the triggers reject them inside the database.

Backends:
    - PostgreSQL: plpgsql functions raising IMMUTABILITY_VIOLATION
      (SQLSTATE restrict_violation), surfaced by SQLAlchemy as a DBAPIError.
    - SQLite: ``RAISE(ABORT, ...)`` triggers, surfaced as IntegrityError.
      The sqlite3 driver runs one statement per execute(), so the files are
      run through executescript() on the raw driver connection.

Failure modes:
    - FileNotFoundError if SQL files are missing from the sql/ directory.
    - ValueError for a dialect with no trigger set.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from crm_kernel.logging_config import get_logger

logger = get_logger("db.triggers")


# =============================================================================
# SQL File Loading
# =============================================================================

SQL_DIR = Path(__file__).parent / "sql"

SUPPORTED_DIALECTS = ("postgresql", "sqlite")

# Installation order (numbered for predictable order)
TRIGGER_FILES = [
    "01_stock_movement.sql",
    "02_webhook_delivery.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_stock_movement_immutability_update",
    "trg_stock_movement_immutability_delete",
    "trg_webhook_delivery_immutability_update",
    "trg_webhook_delivery_immutability_delete",
]


def _dialect_dir(dialect: str) -> Path:
    if dialect not in SUPPORTED_DIALECTS:
        raise ValueError(f"No immutability triggers for dialect '{dialect}'")
    return SQL_DIR / dialect


def _load_sql_file(dialect: str, filename: str) -> str:
    return (_dialect_dir(dialect) / filename).read_text(encoding="utf-8")


def load_trigger_sql(dialect: str) -> str:
    """
    Concatenate every trigger file for ``dialect`` in numbered order.

    Each file is preceded by a ``-- Loading: <file>`` comment header.
    """
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(dialect, filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def load_drop_sql(dialect: str) -> str:
    return _load_sql_file(dialect, DROP_FILE)


def _run_script(engine: Engine, sql_content: str) -> None:
    if engine.dialect.name == "sqlite":
        raw = engine.raw_connection()
        try:
            raw.driver_connection.executescript(sql_content)
        finally:
            raw.close()
        return

    with engine.connect() as conn:
        conn.execute(text(sql_content))
        conn.commit()


# =============================================================================
# Public API
# =============================================================================


def supports_triggers(engine: Engine) -> bool:
    return engine.dialect.name in SUPPORTED_DIALECTS


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the append-only triggers on stock_movements and webhook_deliveries.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: Every trigger in ALL_TRIGGER_NAMES is installed.
        Re-running is harmless (CREATE OR REPLACE / IF NOT EXISTS).
    """
    dialect = engine.dialect.name
    _run_script(engine, load_trigger_sql(dialect))
    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": dialect, "trigger_count": len(ALL_TRIGGER_NAMES)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove the append-only triggers and their backing functions.

    WARNING: Only for teardown or a migration that must rewrite history.
    Re-install immediately afterwards.
    """
    dialect = engine.dialect.name
    _run_script(engine, load_drop_sql(dialect))
    logger.warning("immutability_triggers_uninstalled", extra={"dialect": dialect})


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names from ALL_TRIGGER_NAMES present in the database, sorted."""
    if engine.dialect.name == "sqlite":
        check_sql = "SELECT name FROM sqlite_master WHERE type = 'trigger' ORDER BY name"
    else:
        check_sql = "SELECT tgname FROM pg_trigger WHERE NOT tgisinternal ORDER BY tgname"

    with engine.connect() as conn:
        names = [row[0] for row in conn.execute(text(check_sql))]
    return [name for name in names if name in ALL_TRIGGER_NAMES]


def get_missing_triggers(engine: Engine) -> list[str]:
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)


def triggers_installed(engine: Engine) -> bool:
    return not get_missing_triggers(engine)
