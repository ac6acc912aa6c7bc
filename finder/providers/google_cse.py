"""Platform searcher backed by the Google Custom Search JSON API.

Each ATS platform is searched with a ``site:`` restricted query, e.g.::

    site:lever.co remote intext:"apply" intext:"backend engineer"

Results come back ten at a time; every page is turned into postings and
yielded immediately so the aggregator can stream them.
"""
from __future__ import annotations

import concurrent.futures
import json
import logging
import math
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from finder.config import Settings
from finder.core.errors import PlatformError, PlatformTimeout, QuotaExceeded
from finder.core.normalize import JobPosting, SearchQuery, canonical_location
from finder.core.platforms import platform_from_url, site_expression
from finder.providers.detail import scrape_job_details
from finder.providers.extract import (
    extract_location,
    extract_posted_at,
    extract_tags,
    extract_title_and_company,
    is_direct_job_url,
    logo_for,
)

log = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/customsearch/v1"
PAGE_SIZE = 10
MAX_PAGES = 5                 # the API stops at start=50
QUOTA_COOLDOWN = 15 * 60      # seconds to stay away after a 429
DETAIL_BATCH_SIZE = 5
DETAIL_MAX_URLS = 20
DETAIL_MIN_DIRECT = 10        # only scrape detail pages when search hits were thin
UA = {"User-Agent": "Mozilla/5.0 HiddenJobs/1.0", "Accept": "application/json"}

LOCATION_TERMS = {
    "remote": " remote",
    "onsite": " onsite",
    "hybrid": " hybrid",
    "united-states": " united states",
}


def build_search_query(query: SearchQuery, site: str) -> str:
    loc = LOCATION_TERMS.get(query.location, "")
    return f'{site_expression(site)}{loc} intext:"apply" intext:"{query.query}"'


class GoogleSearchClient:
    """Thin wrapper around the search API with a response cache and quota guard."""

    def __init__(
        self,
        api_key: str,
        engine_id: str,
        *,
        cache_seconds: int = 3600,
        quota_cooldown: float = QUOTA_COOLDOWN,
    ):
        self.api_key = api_key
        self.engine_id = engine_id
        self.cache_seconds = cache_seconds
        self.quota_cooldown = quota_cooldown
        self._cache: Dict[str, Tuple[float, List[dict]]] = {}
        self._lock = threading.Lock()
        self._blocked_until = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleSearchClient":
        return cls(
            settings.google_api_key,
            settings.google_engine_id,
            cache_seconds=settings.result_cache_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.engine_id)

    @property
    def quota_exhausted(self) -> bool:
        with self._lock:
            return time.monotonic() < self._blocked_until

    def _block(self) -> None:
        with self._lock:
            self._blocked_until = time.monotonic() + self.quota_cooldown

    def search(
        self,
        expression: str,
        *,
        start: int = 1,
        time_filter: str = "all",
        timeout: float = 10.0,
        platform: str = "search",
    ) -> List[dict]:
        """Return the raw ``items`` of one result page (empty list when there are none)."""
        if self.quota_exhausted:
            raise QuotaExceeded(platform, "search quota exhausted")

        params: Dict[str, Any] = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": expression,
            "num": PAGE_SIZE,
            "start": start,
        }
        if time_filter and time_filter != "all":
            params["tbs"] = f"qdr:{time_filter}"

        cache_key = json.dumps({k: v for k, v in params.items() if k != "key"}, sort_keys=True)
        now = time.monotonic()
        with self._lock:
            hit = self._cache.get(cache_key)
            if hit and now - hit[0] < self.cache_seconds:
                log.debug("search cache hit q=%r start=%s", expression, start)
                return list(hit[1])

        try:
            resp = requests.get(API_URL, params=params, headers=UA, timeout=timeout)
        except requests.Timeout as exc:
            raise PlatformTimeout(platform, "search request timed out") from exc
        except requests.RequestException as exc:
            raise PlatformError(platform, f"search request failed: {exc}") from exc

        if resp.status_code == 429 or (resp.status_code == 403 and "rateLimitExceeded" in resp.text):
            self._block()
            log.warning("search quota exhausted; pausing for %ss", self.quota_cooldown)
            raise QuotaExceeded(platform, "search quota exhausted")
        if resp.status_code >= 400:
            raise PlatformError(platform, f"search API returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise PlatformError(platform, "search API returned invalid JSON") from exc

        items = [i for i in (data.get("items") or []) if isinstance(i, dict)]
        with self._lock:
            self._cache[cache_key] = (now, items)
        return list(items)


def parse_search_items(items: Iterable[dict]) -> Tuple[List[JobPosting], List[str]]:
    """Split one result page into ready postings and URLs that need a detail fetch."""
    jobs: List[JobPosting] = []
    follow_up: List[str] = []
    for item in items:
        link = (item.get("link") or "").strip()
        if not link:
            continue
        title = item.get("title") or ""
        snippet = item.get("snippet") or ""
        extracted = extract_title_and_company(title, snippet, link)
        if extracted and is_direct_job_url(link):
            job_title, company = extracted
            jobs.append(JobPosting(
                title=job_title,
                company=company,
                url=link,
                platform=platform_from_url(link),
                location=canonical_location(extract_location(snippet or title)) or "Location not specified",
                logo=logo_for(company),
                tags=extract_tags(job_title, snippet),
                posted_at=extract_posted_at(snippet or title),
                raw=item,
            ))
        elif "greenhouse.io" in link or "gh_jid=" in link or is_direct_job_url(link):
            follow_up.append(link)
    return jobs, follow_up


class GoogleSiteSearcher:
    """Searches one ATS site. ``client`` defaults to the process-wide client."""

    def __init__(
        self,
        site: str,
        client: Optional[GoogleSearchClient] = None,
        *,
        max_results: Optional[int] = None,
        request_timeout: Optional[float] = None,
        fetch_details: bool = True,
    ):
        self.name = site
        self.site = site
        self._client = client
        self._max_results = max_results
        self._request_timeout = request_timeout
        self.fetch_details = fetch_details

    @property
    def client(self) -> GoogleSearchClient:
        if self._client is None:
            from finder.providers import default_client
            return default_client()
        return self._client

    def _limits(self) -> Tuple[int, float]:
        from finder.config import get_settings
        settings = get_settings()
        max_results = self._max_results or settings.max_results_per_platform
        req_timeout = self._request_timeout or settings.request_timeout
        return max_results, req_timeout

    def search(
        self,
        query: SearchQuery,
        *,
        timeout: float,
        cancelled: threading.Event,
    ) -> Iterable[Sequence[JobPosting]]:
        deadline = time.monotonic() + timeout
        max_results, req_timeout = self._limits()
        expression = build_search_query(query, self.site)
        max_pages = min(math.ceil(max_results / PAGE_SIZE), MAX_PAGES)
        log.info("searching %s: %s", self.name, expression)

        found = 0
        follow_up: List[str] = []
        for page in range(max_pages):
            if cancelled.is_set():
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PlatformTimeout(self.name, f"timed out after {timeout:g}s")
            items = self.client.search(
                expression,
                start=page * PAGE_SIZE + 1,
                time_filter=query.time_filter,
                timeout=min(req_timeout, remaining),
                platform=self.name,
            )
            if not items:
                break
            jobs, urls = parse_search_items(items)
            jobs = jobs[: max_results - found]
            follow_up.extend(urls)
            if jobs:
                found += len(jobs)
                yield jobs
            if found >= max_results:
                break

        if not self.fetch_details or found >= DETAIL_MIN_DIRECT or not follow_up:
            return
        log.info("%s: %d direct hits, scraping up to %d detail pages", self.name, found, DETAIL_MAX_URLS)
        urls = list(dict.fromkeys(follow_up))[:DETAIL_MAX_URLS]
        for i in range(0, len(urls), DETAIL_BATCH_SIZE):
            if cancelled.is_set():
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                # detail pages are a bonus; keep what the search pages gave us
                log.info("%s: detail budget exhausted", self.name)
                return
            batch = urls[i:i + DETAIL_BATCH_SIZE]
            scraped = self._scrape_batch(batch, min(req_timeout, remaining))
            scraped = scraped[: max_results - found]
            if scraped:
                found += len(scraped)
                yield scraped
            if found >= max_results:
                return

    def _scrape_batch(self, urls: List[str], timeout: float) -> List[JobPosting]:
        jobs: List[JobPosting] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=DETAIL_BATCH_SIZE) as ex:
            futs = {ex.submit(scrape_job_details, u, timeout=timeout): u for u in urls}
            for fut in concurrent.futures.as_completed(futs):
                job = fut.result()
                if job is not None:
                    jobs.append(job)
                else:
                    log.debug("no posting extracted from %s", futs[fut])
        # keep search order rather than completion order
        order = {u: n for n, u in enumerate(urls)}
        jobs.sort(key=lambda j: order.get(j.url, len(order)))
        return jobs
