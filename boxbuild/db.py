"""Storage for the persisted layer cache.

The cache lives in a single SQLite file by default (``BOX_CACHE_DB_URL``).
Several builders of one ``box multi`` run write to it at once, so
connections are shared across threads and each write is its own short
transaction.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from boxbuild.config import get_settings


class Base(DeclarativeBase):
    """Declarative base of the cache tables."""

    pass


def _ensure_sqlite_parent(db_url: str) -> None:
    """Make the directory holding a SQLite cache file."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database == ":memory:":
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def get_engine(db_url: str | None = None) -> Any:
    """Open the cache database.

    Args:
        db_url: SQLAlchemy URL; ``Settings.cache_db_url`` when omitted.
    """
    if db_url is None:
        db_url = get_settings().cache_db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        # multi builds share one engine across worker threads
        connect_args["check_same_thread"] = False
        _ensure_sqlite_parent(db_url)

    return create_engine(db_url, connect_args=connect_args)


def get_session_factory(engine: Any | None = None) -> sessionmaker[Session]:
    """Session factory for cache stores.

    Loaded entries stay readable after commit, since stores hand them to
    ``box cache list`` after the session is gone.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Session that commits when the block ends and rolls back if it raises."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Any | None = None) -> None:
    """Create the cache tables that do not exist yet."""
    # CacheEntry must be mapped before metadata is complete
    from boxbuild.builds import models as builds_models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
