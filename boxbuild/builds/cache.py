"""Layer cache stores.

This module provides the stores the build orchestrator consults before
executing an image-producing step:
- MemoryCacheStore: entries live as long as the builder
- SqlCacheStore: entries persisted in the cache database across runs

Each builder owns its store; stores are never shared between concurrently
running builders, but the SQL store may point several builders at the same
database.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from boxbuild.builds.models import CacheEntry
from boxbuild.db import create_all_tables, get_engine, get_session, get_session_factory

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Mapping of cache keys to the image references they produced."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the image reference for a key, or None on a miss."""

    @abstractmethod
    def put(self, key: str, image_ref: str, verb: str, plan: str | None = None) -> None:
        """Store the image reference produced for a key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget a key (used when its image no longer exists)."""

    @abstractmethod
    def clear(self) -> int:
        """Remove every entry and return how many were removed."""


class MemoryCacheStore(CacheStore):
    """In-process cache store."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, image_ref: str, verb: str, plan: str | None = None) -> None:
        with self._lock:
            self._entries[key] = image_ref

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


class SqlCacheStore(CacheStore):
    """Cache store backed by the CacheEntry table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, db_url: str | None = None) -> SqlCacheStore:
        """Open (creating if needed) the cache database at a URL.

        Args:
            db_url: Database URL. If not provided, uses settings default.

        Returns:
            SqlCacheStore bound to the database.
        """
        engine = get_engine(db_url)
        create_all_tables(engine)
        return cls(get_session_factory(engine))

    def get(self, key: str) -> str | None:
        with get_session(self._session_factory) as session:
            entry = session.get(CacheEntry, key)
            if entry is None:
                return None
            entry.mark_used()
            return entry.image_ref

    def _write(self, key: str, image_ref: str, verb: str, plan: str | None) -> None:
        with get_session(self._session_factory) as session:
            entry = session.get(CacheEntry, key)
            if entry is None:
                session.add(CacheEntry(key=key, image_ref=image_ref, verb=verb, plan=plan))
            else:
                entry.image_ref = image_ref

    def put(self, key: str, image_ref: str, verb: str, plan: str | None = None) -> None:
        try:
            self._write(key, image_ref, verb, plan)
        except IntegrityError:
            # Another builder inserted the key after our lookup; update it
            logger.debug("Cache entry %s stored concurrently, updating", key[:23])
            self._write(key, image_ref, verb, plan)
        logger.debug("Stored cache entry %s -> %s", key[:23], image_ref)

    def delete(self, key: str) -> None:
        with get_session(self._session_factory) as session:
            session.execute(delete(CacheEntry).where(CacheEntry.key == key))

    def clear(self) -> int:
        with get_session(self._session_factory) as session:
            result = session.execute(delete(CacheEntry))
            return result.rowcount or 0

    def list_entries(self, verb: str | None = None, limit: int = 100) -> list[CacheEntry]:
        """List persisted entries, most recently created first.

        Args:
            verb: Filter by step verb.
            limit: Maximum results to return.

        Returns:
            List of CacheEntry instances.
        """
        with get_session(self._session_factory) as session:
            stmt = select(CacheEntry)
            if verb is not None:
                stmt = stmt.where(CacheEntry.verb == verb)
            stmt = stmt.order_by(CacheEntry.created_at.desc()).limit(limit)
            return list(session.execute(stmt).scalars().all())


__all__ = ["CacheStore", "MemoryCacheStore", "SqlCacheStore"]
