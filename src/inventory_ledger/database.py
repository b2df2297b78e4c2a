"""Database utilities."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

SQLITE_BUSY_TIMEOUT = 30.0

# Connection execution option asking for a write-locked transaction.
WRITE_LOCK_OPTION = "inventory_ledger_write_lock"

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


def _install_sqlite_locking(engine: Engine) -> None:
    # pysqlite opens transactions lazily and only takes the write lock on the
    # first UPDATE; two writers that both read first then deadlock on the
    # upgrade. Writer sessions therefore start IMMEDIATE and queue on the
    # busy timeout. Readers stay DEFERRED and, under WAL, never block them.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection):  # pragma: no cover - driver hook
        if connection.get_execution_options().get(WRITE_LOCK_OPTION):
            connection.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            connection.exec_driver_sql("BEGIN")


def is_lock_contention(exc: OperationalError) -> bool:
    """True when *exc* is SQLite giving up on a busy or locked database."""

    orig = exc.orig
    if getattr(orig, "sqlite_errorname", None) in {"SQLITE_BUSY", "SQLITE_LOCKED"}:
        return True
    message = str(orig).lower()
    return "database is locked" in message or "database is busy" in message


def begin_write(session: Session) -> None:
    """Open *session*'s transaction holding the database write lock."""

    session.connection(execution_options={WRITE_LOCK_OPTION: True})


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Build an engine for *database_url* with backend specific tuning."""

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
        _install_sqlite_locking(engine)
        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    """Return a lazily created engine instance."""

    global _engine
    if _engine is None:
        _engine = create_db_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(engine: Engine | None = None) -> None:
    """Ensure that the database schema exists."""

    from . import models  # noqa: F401 - ensure models are imported

    Base.metadata.create_all(bind=engine or get_engine())
