"""SQLAlchemy engine and session factory for the transaction ledger.

Nothing here is a process-wide singleton: the app builds one engine and one
session factory at startup and hands them to the services that need them.
"""

from datetime import datetime, timezone

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = structlog.get_logger()

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we write is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite opens transactions lazily and breaks SAVEPOINT semantics;
    # take over BEGIN so nested transactions behave as on PostgreSQL.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str, **kwargs) -> Engine:
    """Create the ledger engine for ``url``.

    In-memory SQLite URLs share one connection (``StaticPool``) so every
    session sees the same database.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)
        engine = create_engine(url, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create ledger tables that do not exist yet."""
    from apps.api.domains.ingestion import models  # noqa: F401  (registers tables)

    Base.metadata.create_all(engine)
    logger.info("ledger_schema_ready", dialect=engine.dialect.name)


def ping(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("database_ping_failed", error=str(e))
        return False
