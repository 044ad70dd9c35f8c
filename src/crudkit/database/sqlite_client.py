from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from crudkit.config.loader import CrudSettings


def get_engine(url: str, echo: bool = False, metadata: Optional[MetaData] = None) -> Engine:
    """
    Create an engine and, when ``metadata`` is given, its tables.

    SQLite connections get foreign keys enabled on connect.
    """
    engine = create_engine(url, echo=echo, future=True)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    if metadata is not None:
        metadata.create_all(engine)
    return engine


def engine_from_settings(settings: CrudSettings, metadata: Optional[MetaData] = None) -> Engine:
    return get_engine(settings.database.url, echo=settings.database.echo, metadata=metadata)


def get_session(engine: Engine) -> Session:
    """Get a SQLAlchemy session (caller must close it)."""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


@contextmanager
def session_context(engine: Engine) -> Generator[Session, None, None]:
    """
    Context manager for SQLAlchemy sessions.

    Rolls back on error and always closes the session. Commits are left to
    the repository functions (``save=True``) or the caller.

    Usage:
        with session_context(engine) as session:
            move_item(session, dog, 0)
    """
    session = get_session(engine)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
