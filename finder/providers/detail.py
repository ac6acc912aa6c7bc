from __future__ import annotations
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from finder.core.normalize import JobPosting, canonical_location
from finder.core.platforms import platform_from_url
from finder.providers.extract import extract_company, extract_tags, logo_for

log = logging.getLogger(__name__)

DEFAULT_UA = "Mozilla/5.0 (compatible; HiddenJobsBot/1.0)"
LANDING_PAGE_TITLES = re.compile(r"^(careers|jobs|search jobs|join us|open positions)$", re.I)


def _jsonld_postings(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    found: List[Dict[str, Any]] = []
    for tag in soup.find_all("script", type="application/ld+json"):
        if not isinstance(tag, Tag):
            continue
        raw = tag.string or tag.get_text(strip=False) or ""
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        nodes = data if isinstance(data, list) else data.get("@graph", [data]) if isinstance(data, dict) else []
        for node in nodes:
            if not isinstance(node, dict):
                continue
            typ = node.get("@type") or ""
            types = typ if isinstance(typ, list) else [typ]
            if any(isinstance(t, str) and t.lower() == "jobposting" for t in types):
                found.append(node)
    return found


def _meta(soup: BeautifulSoup, prop: str) -> str:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    if isinstance(tag, Tag):
        return str(tag.get("content") or "").strip()
    return ""


def _page_title(soup: BeautifulSoup) -> str:
    title = _meta(soup, "og:title")
    if title:
        return title
    h1 = soup.find("h1")
    if isinstance(h1, Tag):
        text = h1.get_text(" ", strip=True)
        if text:
            return text
    return soup.title.get_text(strip=True) if soup.title else ""


def _jsonld_location(node: Dict[str, Any]) -> Optional[str]:
    loc = node.get("jobLocation")
    if isinstance(loc, list):
        loc = loc[0] if loc else None
    if not isinstance(loc, dict):
        return "Remote" if node.get("jobLocationType") == "TELECOMMUTE" else None
    addr = loc.get("address")
    if isinstance(addr, str):
        return addr
    if isinstance(addr, dict):
        parts = [addr.get("addressLocality"), addr.get("addressRegion")]
        text = ", ".join(str(p) for p in parts if p)
        return text or addr.get("addressCountry")
    return None


def _parse_date(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_job_page(html: str, url: str) -> Optional[JobPosting]:
    """Build a posting from a job detail page, or None for landing/index pages."""
    soup = BeautifulSoup(html, "html.parser")
    postings = _jsonld_postings(soup)
    node = postings[0] if postings else {}

    title = str(node.get("title") or "").strip() or _page_title(soup)
    title = " ".join(title.split())
    if not title or LANDING_PAGE_TITLES.match(title) or len(title) > 150:
        return None

    company = ""
    org = node.get("hiringOrganization")
    if isinstance(org, dict):
        company = str(org.get("name") or "").strip()
    elif isinstance(org, str):
        company = org.strip()
    if not company:
        company = _meta(soup, "og:site_name") or extract_company(title, "", url)

    # drop a trailing " - Company" / " | Company" from page titles
    if company:
        title = re.sub(rf"\s*[-|–@]\s*{re.escape(company)}\s*$", "", title, flags=re.I) or title

    description = _meta(soup, "og:description") or _meta(soup, "description") or None
    return JobPosting(
        title=title,
        company=company,
        url=url,
        platform=platform_from_url(url),
        location=canonical_location(_jsonld_location(node)) if node else None,
        description=description,
        logo=logo_for(company),
        tags=extract_tags(title, description or ""),
        posted_at=_parse_date(node.get("datePosted")),
    )


def scrape_job_details(url: str, *, timeout: float = 10.0) -> Optional[JobPosting]:
    """Fetch one job page. Network failures and non-200s give None, never raise."""
    try:
        r = requests.get(url, headers={"User-Agent": DEFAULT_UA}, timeout=timeout)
    except requests.RequestException as exc:
        log.debug("detail fetch failed %s: %s", url, exc)
        return None
    if r.status_code != 200 or not r.text:
        log.debug("detail fetch %s -> HTTP %s", url, r.status_code)
        return None
    return parse_job_page(r.text, url)
