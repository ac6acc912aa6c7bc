from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from finder.core.normalize import JobPosting
from finder.db.models import JobRecord, SearchRecord


def record_search(
    session: Session,
    query: str,
    result_count: int,
    *,
    platform: str = "all",
    location: Optional[str] = None,
    user_id: Optional[str] = None,
) -> SearchRecord:
    row = SearchRecord(
        query=query,
        platform=platform,
        location=location,
        result_count=result_count,
        user_id=user_id,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def list_history(session: Session, user_id: Optional[str] = None, limit: int = 10) -> Sequence[SearchRecord]:
    """Newest searches first. ``user_id=None`` lists anonymous searches only."""
    stmt = select(SearchRecord)
    if user_id is None:
        stmt = stmt.where(SearchRecord.user_id.is_(None))
    else:
        stmt = stmt.where(SearchRecord.user_id == user_id)
    stmt = stmt.order_by(SearchRecord.searched_at.desc(), SearchRecord.id.desc()).limit(limit)
    return session.execute(stmt).scalars().all()


def cleanup_expired(session: Session, hours: int = 24, *, now: Optional[datetime] = None) -> int:
    """Delete stored jobs scraped more than ``hours`` ago. Returns the number removed."""
    if hours <= 0:
        raise ValueError("Retention 'hours' must be positive")
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    deleted = (
        session.query(JobRecord)
        .filter(JobRecord.scraped_at < cutoff)
        .delete(synchronize_session=False)
    )
    session.commit()
    return deleted


def store_jobs(session: Session, jobs: Iterable[JobPosting]) -> int:
    """Upsert postings by URL, refreshing ``scraped_at``. Returns rows written."""
    now = datetime.now(timezone.utc)
    written = 0
    for job in jobs:
        data = {
            "title": job.title,
            "company": job.company,
            "platform": job.platform,
            "location": job.location,
            "description": job.description,
            "logo": job.logo,
            "tags": ",".join(job.tags) or None,
            "posted_at": job.posted_at,
            "scraped_at": now,
        }
        row = session.query(JobRecord).filter(JobRecord.url == job.url).one_or_none()
        if row is None:
            session.add(JobRecord(url=job.url, **data))
            # flush so a repeated url later in the batch finds this row
            session.flush()
        else:
            for key, value in data.items():
                if value is None:
                    continue
                setattr(row, key, value)
        written += 1
    session.commit()
    return written


def query_jobs(session: Session, limit: int = 10) -> Sequence[JobRecord]:
    return session.query(JobRecord).order_by(JobRecord.scraped_at.desc(), JobRecord.id.desc()).limit(limit).all()
