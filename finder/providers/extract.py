"""Heuristics that turn a web search hit (title, snippet, link) into a posting.

Search engines only give us a page title and a short snippet, so most fields
are recovered with patterns tuned on ATS result pages.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import urlsplit

DIRECT_JOB_PATTERNS = [
    re.compile(r"/jobs/\d+"),
    re.compile(r"/job/[a-zA-Z0-9-_]+"),
    re.compile(r"/posting/[a-zA-Z0-9-_]+"),
    re.compile(r"/applications/[a-zA-Z0-9-_]+"),
    re.compile(r"jobId="),
    re.compile(r"gh_jid="),
    re.compile(r"job_id="),
]
GENERIC_PAGE = re.compile(r"/(careers|jobs|opportunities|openings|apply|employment)/?$")

# Lever and Ashby put the posting id right after the company slug
_ATS_POSTING = re.compile(r"(jobs\.lever\.co|jobs\.ashbyhq\.com)/[^/]+/[0-9a-f-]{8,}", re.I)

TITLE_SEPARATORS = [
    re.compile(r"\|\s*(.+)$"),
    re.compile(r"\s-\s*(.+)$"),
    re.compile(r"–\s*(.+)$"),
    re.compile(r"\sat\s+(.+)$", re.I),
    re.compile(r"\swith\s+(.+)$", re.I),
    re.compile(r"\s@\s*(.+)$"),
    re.compile(r":\s*(.+)$"),
]
URL_COMPANY_PATTERNS = [
    re.compile(r"boards\.greenhouse\.io/([^/?#]+)"),
    re.compile(r"job-boards\.greenhouse\.io/([^/?#]+)"),
    re.compile(r"jobs\.lever\.co/([^/?#]+)"),
    re.compile(r"jobs\.ashbyhq\.com/([^/?#]+)"),
    re.compile(r"//([^.]+)\.wd\d+\.myworkdayjobs\.com"),
    re.compile(r"apply\.workable\.com/([^/?#]+)"),
    re.compile(r"careers\.([^.]+)\."),
    re.compile(r"([^./]+)\.careers\."),
    re.compile(r"jobs\.([^.]+)\."),
    re.compile(r"([^./]+)\.jobs\."),
]
SNIPPET_COMPANY_PATTERNS = [
    re.compile(r"(?:work\s+at|join|hiring\s+at|career\s+at|opportunity\s+at)\s+([A-Z][a-zA-Z&.,-]+(?:\s[A-Z][a-zA-Z&.,-]+)*)"),
    re.compile(r"([A-Z][a-zA-Z&.,-]+(?:\s[A-Z][a-zA-Z&.,-]+)*)\s+is\s+(?:hiring|looking|seeking)"),
]
NOT_A_COMPANY = [
    re.compile(r"^\d+$"),
    re.compile(r"^(remote|onsite|on-site|hybrid)$", re.I),
    re.compile(r"^(full.?time|part.?time|contract|freelance|internship)$", re.I),
    re.compile(r"^(united states|usa|us|canada|uk|europe|asia|emea|apac)$", re.I),
    re.compile(r"^(new york|san francisco|seattle|austin|boston|chicago|denver|los angeles|atlanta|london|toronto)$", re.I),
    re.compile(r"^(apply|hiring|careers?|jobs?|opportunities|openings|positions|job application)$", re.I),
    re.compile(r"^[a-z]{2}$", re.I),
]
SKIP_HOST_PARTS = {"www", "boards", "job-boards", "jobs", "careers", "apply", "greenhouse", "lever",
                   "ashbyhq", "myworkdayjobs", "workable", "adp", "icims", "jobvite", "com", "io", "co"}
GENERIC_TITLES = ("careers", "jobs", "opportunities", "openings", "apply", "home", "about", "hiring")
SNIPPET_ROLE = re.compile(
    r"(?:director|manager|engineer|analyst|specialist|lead|senior|principal|staff|developer|designer|"
    r"scientist|architect|consultant)\s+(?:of\s+)?(?:technology|engineering|product|data|marketing|sales|"
    r"operations|design|security|software|web|mobile|ai|ml)",
    re.I,
)
TECH_TAGS = (
    "react", "vue", "angular", "javascript", "typescript", "python", "java", "node.js",
    "aws", "docker", "kubernetes", "sql", "nosql", "mongodb", "postgresql",
    "remote", "full-time", "part-time", "contract", "senior", "junior", "lead",
)


def is_direct_job_url(url: str) -> bool:
    """True when the link points at a single posting rather than a careers index."""
    if not url:
        return False
    has_pattern = any(p.search(url) for p in DIRECT_JOB_PATTERNS) or bool(_ATS_POSTING.search(url))
    return has_pattern and not GENERIC_PAGE.search(url)


def is_likely_company_name(text: str) -> bool:
    text = (text or "").strip()
    if len(text) < 2:
        return False
    return not any(p.search(text) for p in NOT_A_COMPANY)


def clean_company_name(company: str) -> str:
    words = company.replace("-", " ").replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:].lower() if w.islower() or w.isupper() else w for w in words)


def extract_company(title: str, snippet: str, url: str) -> str:
    for sep in TITLE_SEPARATORS:
        m = sep.search(title or "")
        if m and is_likely_company_name(m.group(1)):
            return clean_company_name(m.group(1).strip())

    for pat in URL_COMPANY_PATTERNS:
        m = pat.search(url or "")
        if m:
            candidate = re.sub(r"(careers?|jobs?)$", "", m.group(1)).strip("-_ ")
            if candidate and is_likely_company_name(candidate):
                return clean_company_name(candidate)

    for pat in SNIPPET_COMPANY_PATTERNS:
        m = pat.search(snippet or "")
        if m and is_likely_company_name(m.group(1)):
            return clean_company_name(m.group(1).strip())

    host = urlsplit(url or "").hostname or ""
    for part in host.split("."):
        if part and part not in SKIP_HOST_PARTS and len(part) > 2:
            return clean_company_name(part)
    return "Company"


def _strip_suffix(title: str, company: str) -> str:
    if company and company != "Company":
        esc = re.escape(company)
        title = re.sub(rf"\s+at\s+{esc}\s*$", "", title, flags=re.I)
        title = re.sub(rf"\s*[-|–@]?\s*{esc}\s*$", "", title, flags=re.I)
    title = re.sub(r"\s*\|\s*.+$", "", title)
    title = re.sub(r"\s+-\s+.+$", "", title)
    title = re.sub(r"\s*–\s*.+$", "", title)
    title = re.sub(r"\s+at\s+.+$", "", title, flags=re.I)
    title = re.sub(r"\s*\([^)]*\)$", "", title)
    title = re.sub(r"\s*(job|position|opening)\s*$", "", title, flags=re.I)
    return " ".join(title.split())


def extract_title_and_company(title: str, snippet: str, url: str) -> Optional[Tuple[str, str]]:
    """Return ``(job_title, company)`` for a search hit, or None if it is not a posting."""
    if not title:
        return None
    company = extract_company(title, snippet, url)
    clean = _strip_suffix(title, company)

    lowered = clean.lower()
    if any(g in lowered for g in GENERIC_TITLES) and len(clean) < 30:
        m = SNIPPET_ROLE.search(snippet or "")
        if not m:
            return None
        clean = m.group(0)

    if len(clean) < 3 or len(clean) > 100:
        return None
    return clean, company


_CITY_STATE = re.compile(r"\b([A-Z][a-z]+(?:\s[A-Z][a-z]+)?,\s*[A-Z]{2})\b")
_REMOTE = re.compile(r"\b(remote|work from home|wfh|distributed)\b", re.I)
_LABELLED = re.compile(r"(?:location|based in|office in)[:\s]+([A-Z][a-z]+(?:\s[A-Z][a-z]+)*)")


def extract_location(text: str) -> Optional[str]:
    if not text:
        return None
    m = _CITY_STATE.search(text)
    if m:
        return m.group(1)
    if _REMOTE.search(text):
        return "Remote"
    m = _LABELLED.search(text)
    if m:
        return m.group(1).strip()
    return None


_DAYS_AGO = re.compile(r"(\d+)\s+days?\s+ago", re.I)
_MONTH_DATE = re.compile(r"\b([A-Z][a-z]{2,8})\.?\s+(\d{1,2}),?\s+(\d{4})\b")
_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


def extract_posted_at(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    if not text:
        return None
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    m = _DAYS_AGO.search(text)
    if m:
        return (now - timedelta(days=int(m.group(1)))).replace(hour=0, minute=0, second=0, microsecond=0)
    m = _MONTH_DATE.search(text)
    if m:
        raw = f"{m.group(1)[:3]} {m.group(2)} {m.group(3)}"
        try:
            return datetime.strptime(raw, "%b %d %Y")
        except ValueError:
            pass
    m = _ISO_DATE.search(text)
    if m:
        try:
            return datetime.strptime(m.group(1), "%Y-%m-%d")
        except ValueError:
            return None
    return None


def extract_tags(title: str, description: str) -> list[str]:
    content = f"{title} {description}".lower()
    tags: list[str] = []
    for term in TECH_TAGS:
        if term in content:
            tag = term[:1].upper() + term[1:]
            if tag not in tags:
                tags.append(tag)
    return tags[:5]


def logo_for(company: str) -> Optional[str]:
    slug = re.sub(r"[^a-z0-9]", "", (company or "").lower())
    if not slug or slug == "company":
        return None
    return f"https://logo.clearbit.com/{slug}.com"
