from .normalize import JobPosting, SearchQuery, canonical_location, normalize_url
from .dedupe import Deduplicator, deduplicate_jobs, job_identity
from .aggregator import SearchRun, RunOptions, RunState, collect_search
from .emitter import EventEmitter

__all__ = [
    "JobPosting",
    "SearchQuery",
    "canonical_location",
    "normalize_url",
    "Deduplicator",
    "deduplicate_jobs",
    "job_identity",
    "SearchRun",
    "RunOptions",
    "RunState",
    "collect_search",
    "EventEmitter",
]
