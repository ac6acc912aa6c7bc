from __future__ import annotations
import threading
from typing import Dict, List, Optional

from finder.config import get_settings
from finder.core.errors import RunError
from finder.core.normalize import SearchQuery
from finder.core.platforms import SITE_EXPRESSIONS, STREAM_PLATFORMS, platforms_for_site

from .base import PlatformSearcher
from .google_cse import GoogleSearchClient, GoogleSiteSearcher

# Searcher registry keyed by site; unknown sites get a generic searcher on demand
REGISTRY: Dict[str, PlatformSearcher] = {}

_client: Optional[GoogleSearchClient] = None
_client_lock = threading.Lock()


def register(searcher: PlatformSearcher) -> None:
    REGISTRY[searcher.name] = searcher

def get(name: str) -> PlatformSearcher:
    try:
        return REGISTRY[name]
    except KeyError:
        return GoogleSiteSearcher(name)


def default_client() -> GoogleSearchClient:
    """Process-wide search client, built from settings on first use."""
    global _client
    with _client_lock:
        if _client is None:
            _client = GoogleSearchClient.from_settings(get_settings())
        return _client

def reset_client(client: Optional[GoogleSearchClient] = None) -> None:
    global _client
    with _client_lock:
        _client = client


def searchers_for_query(query: SearchQuery) -> List[PlatformSearcher]:
    sites = platforms_for_site(query.site, get_settings().max_platforms)
    return [get(site) for site in sites]


def preflight(query: SearchQuery) -> None:
    """Refuse a run before any platform is dispatched when searching cannot work."""
    client = default_client()
    if not client.configured:
        raise RunError("Search API is not configured (set GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_ENGINE_ID)")
    if client.quota_exhausted:
        raise RunError("Search quota exceeded. Please try again later.")


for _site in dict.fromkeys([*STREAM_PLATFORMS, *SITE_EXPRESSIONS]):
    register(GoogleSiteSearcher(_site))


__all__ = [
    "PlatformSearcher",
    "REGISTRY",
    "register",
    "get",
    "default_client",
    "reset_client",
    "searchers_for_query",
    "preflight",
]
