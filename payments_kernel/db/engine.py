"""
Engine and session management for the payments store.

Backends:
    PostgreSQL (psycopg2) is the production target.  It runs at READ
    COMMITTED with a QueuePool, and the services take explicit row locks
    (``FOR UPDATE``) on counter rows and on boletines being scheduled.

    SQLite serves local runs and the default test run.  pysqlite is told to
    leave BEGIN to SQLAlchemy so savepoints work, and in-memory databases
    share one connection.  SQLite ignores ``FOR UPDATE``; it serializes
    writers on its own.

Module state is a single engine plus its sessionmaker, set by
``init_engine_from_url`` (or ``init_engine_from_settings``) and cleared by
``reset_engine``.  Everything else raises ``RuntimeError`` until then.

Only ``create_tables`` reaches outside the kernel: it imports the module
ORM registry so every table is on the metadata.
"""

import atexit
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from payments_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_READY = "no database engine; call init_engine_from_url() or init_engine_from_settings()"


@dataclass
class _State:
    engine: Engine | None = None
    factory: sessionmaker[Session] | None = None


_state = _State()


@dataclass(frozen=True)
class PoolOptions:
    """Connection pool sizing for server backends; SQLite ignores it."""

    size: int = 20
    max_overflow: int = 10
    pre_ping: bool = True
    timeout: int = 30
    recycle: int = 1800

    def engine_kwargs(self) -> dict[str, Any]:
        return {
            "poolclass": QueuePool,
            "pool_size": self.size,
            "max_overflow": self.max_overflow,
            "pool_pre_ping": self.pre_ping,
            "pool_timeout": self.timeout,
            "pool_recycle": self.recycle,
            "isolation_level": "READ COMMITTED",
        }


def _sqlite_kwargs(url: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    in_memory = ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:")
    if in_memory:
        kwargs["poolclass"] = StaticPool
    return kwargs


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool: PoolOptions | None = None,
) -> Engine:
    """Create the engine and session factory, replacing any previous ones.

    Sessions do not expire on commit, so DTOs built after a commit read the
    committed values.
    """
    pool = pool or PoolOptions()
    is_sqlite = database_url.startswith("sqlite")
    kwargs = _sqlite_kwargs(database_url) if is_sqlite else pool.engine_kwargs()

    engine = create_engine(database_url, echo=echo, **kwargs)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)

    _state.engine = engine
    _state.factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": engine.dialect.name,
            "pool_size": pool.size,
            "max_overflow": pool.max_overflow,
            "echo": echo,
        },
    )
    return engine


def init_engine_from_settings(settings) -> Engine:
    """Initialize from a ``payments_config`` ``DatabaseSettings`` section."""
    return init_engine_from_url(
        settings.url,
        echo=settings.echo,
        pool=PoolOptions(size=settings.pool_size, max_overflow=settings.max_overflow),
    )


def get_engine() -> Engine:
    if _state.engine is None:
        raise RuntimeError(_NOT_READY)
    return _state.engine


def get_session_factory() -> sessionmaker[Session]:
    """The sessionmaker itself, for callers that open one session per unit of work."""
    if _state.factory is None:
        raise RuntimeError(_NOT_READY)
    return _state.factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """One unit of work: commit on success, roll back and re-raise on error.

    ``with session_scope() as session: session.add(unit)``
    """
    with get_session() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            logger.debug("session_scope_rolled_back")
            raise


def create_tables() -> None:
    """Create every kernel and module table (append-only listeners included)."""
    from payments_kernel.db.base import Base
    from payments_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every table.  Tests and local resets only."""
    from payments_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the current engine, if any, and forget it."""
    engine, _state.engine, _state.factory = _state.engine, None, None
    if engine is not None:
        engine.dispose()


@atexit.register
def _dispose_on_exit() -> None:
    if _state.engine is not None:
        _state.engine.dispose()


def is_postgres() -> bool:
    return _state.engine is not None and _state.engine.dialect.name == "postgresql"
