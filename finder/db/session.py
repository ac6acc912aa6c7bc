"""Shared SQLAlchemy engine/session setup.

The database URL comes from ``FINDER_DATABASE_URL`` (preferred) or
``DATABASE_URL`` and falls back to a local SQLite file. ``.env`` is loaded
through :mod:`finder.config` so the API, CLI and scripts share one database.

FINDER_DB_POOL_SIZE (int, default 5)
FINDER_DB_MAX_OVERFLOW (int, default 10)
FINDER_DB_ECHO ("1" to enable SQL echo)
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import finder.config  # noqa: F401  (loads .env)


def _coalesce_url() -> str:
    url = (
        os.getenv("FINDER_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or "sqlite:///./finder.db"
    )
    # Hosted Postgres still hands out the legacy scheme
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str | None = None) -> Engine:
    url = url or _coalesce_url()
    echo = os.getenv("FINDER_DB_ECHO", "0") == "1"

    if url.startswith("sqlite"):
        # request handlers and search-run threads share the file
        return create_engine(url, echo=echo, pool_pre_ping=True, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=int(os.getenv("FINDER_DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("FINDER_DB_MAX_OVERFLOW", "10")),
    )


ENGINE: Engine = make_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session and always close it. Callers commit explicitly."""
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def current_engine_url() -> str:
    return ENGINE.url.render_as_string(hide_password=True)
