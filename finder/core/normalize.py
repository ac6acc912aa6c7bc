from __future__ import annotations
from datetime import datetime
from typing import Any, Literal
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

Location = Literal["all", "remote", "onsite", "hybrid", "united-states"]
TimeFilter = Literal["all", "h1", "h4", "h8", "h12", "d", "h48", "h72", "w", "m"]

# Query params that never change which posting a URL points at
_TRACKING_PARAMS = {"gh_src", "source", "src", "ref", "referrer", "lever-source", "lever-origin", "trk"}


class SearchQuery(BaseModel):
    """Normalized search parameters for one run. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    query: str = Field(min_length=1)
    site: str = "all"
    location: Location = "all"
    time_filter: TimeFilter = Field("all", alias="timeFilter")
    page: int = Field(1, ge=1)
    limit: int = Field(25, ge=1, le=50)

    @field_validator("query")
    @classmethod
    def _strip_query(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("Job title is required")
        return v

    @field_validator("site")
    @classmethod
    def _normalize_site(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if not v:
            raise ValueError("Platform is required")
        return v

    @property
    def cache_key(self) -> str:
        # Pagination is deliberately excluded: all pages share one aggregated result
        return f"{self.query}:{self.site}:{self.location}:{self.time_filter}"


class JobPosting(BaseModel):
    """External-source job record as copied into stream events."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    company: str
    url: str
    platform: str
    location: str | None = None
    description: str | None = None
    logo: str | None = None
    tags: list[str] = []
    posted_at: datetime | None = Field(None, alias="postedAt")
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def canonical_location(loc: str | None) -> str | None:
    if not loc:
        return None
    loc = " ".join(loc.split())
    loc = loc.replace("United States of America", "United States")
    loc = loc.replace("US-Remote", "Remote - US")
    return loc

def normalize_url(url: str | None) -> str:
    """Canonical form of a posting URL for identity comparisons.

    Lowercases scheme and host, drops fragments, tracking/utm params and the
    trailing slash. Job id params such as ``gh_jid`` are kept.
    """
    if not url:
        return ""
    parts = urlsplit(url.strip())
    if not parts.netloc:
        return url.strip().lower()
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.lower().startswith("utm_") and k.lower() not in _TRACKING_PARAMS
    ]
    path = parts.path.rstrip("/")
    return urlunsplit(("https" if parts.scheme in ("http", "https") else parts.scheme.lower(), host, path, urlencode(sorted(query)), ""))
