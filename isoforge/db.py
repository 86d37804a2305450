"""Job store database plumbing.

The job store is written from several places at once: the request that
creates a job, the detached pipeline and the external runner's callbacks.
SQLite connections are therefore opened in WAL mode with a busy timeout so
that concurrent writers wait for each other instead of failing, and
optimistic version checks in ``isoforge.builds.jobs`` resolve the races.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from isoforge.config import get_settings

SQLITE_BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def _is_sqlite_file(db_url: str) -> bool:
    return db_url.startswith("sqlite:///") and ":memory:" not in db_url


def _enable_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for the job store.

    For file-backed SQLite the parent directory is created and every
    connection is switched to WAL mode.

    Args:
        db_url: Database URL. Defaults to ``Settings.db_url``.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        # the pipeline runs in worker threads
        connect_args["check_same_thread"] = False
    if _is_sqlite_file(db_url):
        Path(db_url.removeprefix("sqlite:///")).parent.mkdir(
            parents=True, exist_ok=True
        )

    engine = create_engine(db_url, connect_args=connect_args)
    if _is_sqlite_file(db_url):
        event.listen(engine, "connect", _enable_sqlite_pragmas)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine``.

    Objects stay loaded after commit so snapshots can be built from them.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Commits on success, rolls back on any exception and always closes.

    Args:
        session_factory: Optional session factory. Creates one if not provided.

    Yields:
        SQLAlchemy Session instance.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the job and job log tables if they do not exist."""
    from isoforge.builds import models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


__all__ = [
    "Base",
    "SQLITE_BUSY_TIMEOUT_MS",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
