"""Build cache ORM models.

This module defines the CacheEntry model that persists step cache keys
and the image references they produced across runs.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from boxbuild.db import Base


class CacheEntry(Base):
    """ORM model for one cached build step.

    Attributes:
        key: Cache key (sha256:...) of the step inputs.
        image_ref: Image reference produced by the step.
        verb: Verb of the step that produced the entry.
        plan: Name of the plan that first produced the entry.
        hits: Number of times the entry was reused.
        created_at: Timestamp of creation.
        last_used_at: Timestamp of the last cache hit.
    """

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(80), primary_key=True)
    image_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    verb: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    plan: Mapped[str | None] = mapped_column(String(500), nullable=True)
    hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of CacheEntry."""
        return (
            f"<CacheEntry(key='{self.key[:23]}...', verb='{self.verb}', "
            f"image_ref='{self.image_ref}')>"
        )

    def mark_used(self) -> None:
        """Record a cache hit on this entry."""
        self.hits = (self.hits or 0) + 1
        self.last_used_at = datetime.now()


__all__ = ["CacheEntry"]
