from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header
from sqlalchemy.orm import Session

from finder.db.session import get_session


def db_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a SQLAlchemy :class:`Session`.

    Usage in route handlers:
        def handler(session: Session = Depends(db_session)):
            ...
    """
    with get_session() as session:
        yield session


def current_user(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Identity of the caller, or None for anonymous requests.

    Only used to scope search history; searching itself is open.
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


__all__ = ["db_session", "current_user"]
