from __future__ import annotations
import threading
from typing import Iterable, Protocol, Sequence

from finder.core.normalize import JobPosting, SearchQuery


class PlatformSearcher(Protocol):
    """One external job source.

    ``search`` yields batches (pages) of postings as they arrive and either
    returns normally (possibly after zero batches) or raises
    :class:`finder.core.errors.PlatformError`. It must give up once
    ``timeout`` seconds have passed and should stop early when ``cancelled``
    is set.
    """

    name: str

    def search(
        self,
        query: SearchQuery,
        *,
        timeout: float,
        cancelled: threading.Event,
    ) -> Iterable[Sequence[JobPosting]]: ...
