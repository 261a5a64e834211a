"""SQLite engine and session setup for the catalog mirror."""

from __future__ import annotations

from typing import Any, Callable

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from maplister.logging_config import get_logger

from .models_sql import Base

LOGGER = get_logger(__name__)

DEFAULT_BUSY_TIMEOUT = 30.0


def _connection_pragmas(busy_timeout_ms: int | None = None) -> Callable[[Any, Any], None]:
    """Build a ``connect`` listener for the per-connection SQLite pragmas.

    ``foreign_keys`` and ``busy_timeout`` only last for one DBAPI connection,
    so they are set on every connection the pool opens.
    """

    statements = ["PRAGMA foreign_keys=ON", "PRAGMA synchronous=NORMAL"]
    if busy_timeout_ms is not None:
        statements.append(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")

    def on_connect(dbapi_connection, connection_record) -> None:  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        finally:
            cursor.close()

    return on_connect


def enforce_foreign_keys(engine: Engine, *, busy_timeout_ms: int | None = None) -> Engine:
    """Register the per-connection pragmas (foreign keys included) on *engine*."""

    event.listen(engine, "connect", _connection_pragmas(busy_timeout_ms))
    return engine


def _enable_wal(engine: Engine) -> str | None:
    """Switch the database file to WAL; the mode persists in the file itself."""

    try:
        with engine.connect() as connection:
            mode = connection.exec_driver_sql("PRAGMA journal_mode=WAL").scalar()
    except SQLAlchemyError as exc:
        LOGGER.warning("Unable to enable WAL journal mode: %s", exc)
        return None
    if str(mode).lower() != "wal":
        LOGGER.warning("SQLite kept journal_mode=%s", mode)
    return mode


def get_engine(sqlite_path: str, *, busy_timeout: int | float | None = None) -> Engine:
    """Engine for the catalog file at *sqlite_path*, shared by the worker threads."""

    timeout = float(busy_timeout) if busy_timeout is not None else DEFAULT_BUSY_TIMEOUT
    engine = create_engine(
        URL.create("sqlite", database=sqlite_path),
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": timeout},
    )
    enforce_foreign_keys(engine, busy_timeout_ms=int(timeout * 1000))
    _enable_wal(engine)
    return engine


def make_session(engine: Engine) -> sessionmaker[Session]:
    # Rows returned by the store are read after their session closed.
    return sessionmaker(engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create the catalog tables that do not exist yet."""

    Base.metadata.create_all(engine, checkfirst=True)
