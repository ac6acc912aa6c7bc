"""Delete stored postings older than the retention window.

Wraps ``cleanup_expired`` for cron use. ``--dry-run`` only counts and
samples the rows that would go.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from finder.config import get_settings
from finder.db.crud import cleanup_expired
from finder.db.models import JobRecord
from finder.db.session import get_session

DEFAULT_SAMPLE_SIZE = 10

logger = logging.getLogger(__name__)


def _parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class PruneSummary:
    cutoff_utc: str
    matched: int
    deleted: int
    dry_run: bool
    sample: list[dict]

    def to_dict(self) -> dict:
        return asdict(self)


def prune_jobs(hours: int, *, dry_run: bool = False, sample_size: int = DEFAULT_SAMPLE_SIZE) -> PruneSummary:
    if hours <= 0:
        raise ValueError("Retention 'hours' must be positive")

    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=hours)

    with get_session() as session:
        stale = session.query(JobRecord).filter(JobRecord.scraped_at < cutoff)
        total = stale.count()
        sample = [
            {
                "id": row.id,
                "platform": row.platform,
                "company": row.company,
                "title": row.title,
                "scraped_at": row.scraped_at.isoformat() if row.scraped_at else None,
                "url": row.url,
            }
            for row in stale.order_by(JobRecord.scraped_at.asc(), JobRecord.id.asc()).limit(sample_size)
        ] if total else []

        deleted = 0
        if total and not dry_run:
            deleted = cleanup_expired(session, hours, now=now)

    return PruneSummary(
        cutoff_utc=cutoff.isoformat(),
        matched=total,
        deleted=deleted,
        dry_run=dry_run,
        sample=sample,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune stored jobs older than the retention window")
    parser.add_argument(
        "--hours",
        type=int,
        default=get_settings().job_retention_hours,
        help="Retention window in hours (default: env FINDER_JOB_RETENTION_HOURS or 24)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=_parse_bool(os.getenv("FINDER_PRUNE_DRY_RUN")),
        help="Report what would be deleted without modifying the database",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=DEFAULT_SAMPLE_SIZE,
        help="How many representative rows to include in the summary output",
    )
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("FINDER_LOG_LEVEL", "INFO").upper())
    summary = prune_jobs(args.hours, dry_run=args.dry_run, sample_size=args.sample_size)
    logger.info("matched=%d deleted=%d dry_run=%s", summary.matched, summary.deleted, summary.dry_run)
    print(summary.to_dict())


if __name__ == "__main__":
    main()
