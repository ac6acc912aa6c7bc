from __future__ import annotations
import threading
from typing import Iterable, Literal
from urllib.parse import urlsplit

from .normalize import JobPosting, normalize_url

IdentityMode = Literal["url", "composite"]
IDENTITY_MODES = ("url", "composite")


def _composite_key(job: JobPosting) -> str:
    return f"{job.platform.lower()}|{job.title.lower()}|{job.company.lower()}"

def _url_is_ambiguous(url: str) -> bool:
    # A bare host (no path, no query) points at a careers site, not one posting
    if not url:
        return True
    parts = urlsplit(url)
    return not parts.path.strip("/") and not parts.query

def job_identity(job: JobPosting, mode: IdentityMode = "url") -> str:
    """Key used to recognise the same posting across platforms.

    ``url`` mode compares normalized URLs and falls back to the
    platform+title+company composite when the URL is missing or ambiguous.
    ``composite`` mode always uses the composite key.
    """
    if mode not in IDENTITY_MODES:
        raise ValueError(f"Unknown identity mode: {mode!r}")
    if mode == "url":
        url = normalize_url(job.url)
        if not _url_is_ambiguous(url):
            return f"url:{url}"
    return f"key:{_composite_key(job)}"


class Deduplicator:
    """Per-run seen set. ``accept`` is serialized so one caller wins each identity."""

    def __init__(self, mode: IdentityMode = "url"):
        if mode not in IDENTITY_MODES:
            raise ValueError(f"Unknown identity mode: {mode!r}")
        self.mode = mode
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def accept(self, identity: str) -> bool:
        with self._lock:
            if identity in self._seen:
                return False
            self._seen.add(identity)
            return True

    def accept_job(self, job: JobPosting) -> bool:
        return self.accept(job_identity(job, self.mode))

    def filter(self, jobs: Iterable[JobPosting]) -> list[JobPosting]:
        return [j for j in jobs if self.accept_job(j)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()


def deduplicate_jobs(jobs: Iterable[JobPosting], mode: IdentityMode = "url") -> list[JobPosting]:
    # First occurrence wins; input order is preserved
    return Deduplicator(mode).filter(jobs)
