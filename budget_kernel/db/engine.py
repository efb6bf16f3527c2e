"""
Module: budget_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    transactional scope every store call runs in.
Architecture position: Kernel > DB.  Imports db/base.py; create_tables()
    additionally imports the module ORM registry so every table is known.

Supported backends:
    - PostgreSQL (psycopg2) for deployments: QueuePool with pre-ping,
      READ COMMITTED isolation.
    - SQLite for tests and local use: foreign keys switched on for every
      connection, a shared StaticPool for in-memory databases.

Failure modes:
    - ValueError for any other backend.
    - RuntimeError when the engine is used before init_engine_from_url().
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from budget_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_foreign_keys_on(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(database_url: str, echo: bool, pool: dict) -> Engine:
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        options: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **options)
        event.listen(engine, "connect", _sqlite_foreign_keys_on)
        return engine

    if backend == "postgresql":
        return create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
            **pool,
        )

    raise ValueError(f"Unsupported database backend: {backend}")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create the engine and session factory; replaces any previous pair.

    Pool arguments apply to PostgreSQL only.
    """
    global _engine, _session_factory
    _engine = _build_engine(
        database_url,
        echo,
        {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
        },
    )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to ``SqlEntityStore``."""
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """One unit of work: commits on exit, rolls back and re-raises on error."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from budget_kernel.db.base import Base
    from budget_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Tests only."""
    from budget_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose pooled connections and forget the engine."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
