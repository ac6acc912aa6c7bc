from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all models."""
    pass


class JobRecord(Base):
    """A posting seen by a search, kept for the retention window."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    url: Mapped[str] = mapped_column(String(1000), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    company: Mapped[str] = mapped_column(String(200), nullable=False)
    platform: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    location: Mapped[Optional[str]] = mapped_column(String(300))
    description: Mapped[Optional[str]] = mapped_column(Text)
    logo: Mapped[Optional[str]] = mapped_column(String(500))
    tags: Mapped[Optional[str]] = mapped_column(String(300))  # comma separated
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    scraped_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<JobRecord id={self.id} platform={self.platform} title={self.title!r}>"


class SearchRecord(Base):
    """One search a user ran, newest rows first in history."""

    __tablename__ = "searches"
    __table_args__ = (Index("ix_searches_user_searched_at", "user_id", "searched_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    query: Mapped[str] = mapped_column(String(300), nullable=False)
    platform: Mapped[str] = mapped_column(String(120), nullable=False, default="all")
    location: Mapped[Optional[str]] = mapped_column(String(40))
    result_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(120))
    searched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SearchRecord id={self.id} query={self.query!r} results={self.result_count}>"


__all__ = ["Base", "JobRecord", "SearchRecord"]
