"""
Module: inventory_kernel.db.engine
Responsibility: Build the process-wide SQLAlchemy engine and session factory
    for the configured backend, and create or drop the schema.
Architecture position: Kernel > DB.  May import from db/base.py and
    (lazily, for DDL) models/.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; the services take explicit row locks
      (SELECT ... FOR UPDATE) on stock snapshots and documents.
    - SQLite opens every transaction with BEGIN IMMEDIATE, so concurrent
      writers queue on the database write lock up front instead of
      deadlocking on a SHARED -> RESERVED upgrade.  ``busy_timeout`` bounds
      the wait.
    - Sessions never expire attributes on commit: DTOs are built after the
      unit of work commits.

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
    - OperationalError when a lock or busy timeout expires; the unit of work
      classifies it as contention and retries.
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool, busy_timeout: float) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": busy_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite must not issue its own BEGIN; ours below is the only one.
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _server_engine(database_url: str, echo: bool, pool_size: int, max_overflow: int) -> Engine:
    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    busy_timeout: float = 5.0,
) -> Engine:
    """
    Create the engine and session factory, replacing any previous pair.

    Args:
        database_url: ``sqlite:///...`` or ``postgresql://...``.
        echo: Log every SQL statement.
        pool_size / max_overflow: Connection pool bounds (server databases).
        busy_timeout: Seconds SQLite waits for the write lock.
    """
    global _engine, _session_factory

    reset_engine()
    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo, busy_timeout)
    else:
        _engine = _server_engine(database_url, echo, pool_size, max_overflow)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "busy_timeout": busy_timeout,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory every unit of work draws its sessions from; one session per thread."""
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def create_tables() -> None:
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401  (registers every table)

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.sorted_tables)})


def drop_tables() -> None:
    """Drop the whole schema. Tests only."""
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the pool and forget the engine."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
