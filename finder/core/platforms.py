from __future__ import annotations

from typing import Dict, List

# Sites fanned out for site=all, in priority order (quota: only the first few run)
STREAM_PLATFORMS: List[str] = [
    "greenhouse.io",
    "lever.co",
    "ashbyhq.com",
    "myworkdayjobs.com",
    "jobs.workable.com",
    "adp",
    "icims.com",
    "jobvite.com",
]

# Search expression per site; None means the generic "site:<name>" form
SITE_EXPRESSIONS: Dict[str, str] = {
    "greenhouse.io": "site:greenhouse.io",
    "boards.greenhouse.io": "site:greenhouse.io",
    "lever.co": "site:lever.co",
    "jobs.lever.co": "site:lever.co",
    "ashbyhq.com": "site:ashbyhq.com",
    "jobs.ashbyhq.com": "site:ashbyhq.com",
    "builtin.com": "site:builtin.com/job/",
    "glassdoor.com": "site:glassdoor.com/job-listing/",
    "adp": "(site:workforcenow.adp.com OR site:myjobs.adp.com)",
    "careers.*": "(site:careers.* OR site:*/careers/* OR site:*/career/*)",
    "other-pages": (
        "(site:*/employment/* OR site:*/opportunities/* OR site:*/openings/*"
        " OR site:*/join-us/* OR site:*/work-with-us/*)"
    ),
}

_URL_LABELS = (
    (("boards.greenhouse.io", "greenhouse.io"), "Greenhouse"),
    (("jobs.lever.co", "lever.co"), "Lever"),
    (("jobs.ashbyhq.com", "ashbyhq.com"), "Ashby"),
    (("myworkdayjobs.com",), "Workday"),
    (("jobs.workable.com",), "Workable"),
    (("workforcenow.adp.com", "myjobs.adp.com"), "ADP"),
    (("icims.com",), "iCIMS"),
    (("jobvite.com",), "Jobvite"),
    (("linkedin.com",), "LinkedIn"),
    (("glassdoor.com",), "Glassdoor"),
    (("/careers/", "/career/"), "Career Pages"),
)


def platforms_for_site(site: str, max_platforms: int) -> list[str]:
    """Sites to search for one query. ``all`` expands to the capped stream list."""
    site = (site or "").strip().lower()
    if site == "all":
        return STREAM_PLATFORMS[: max(max_platforms, 0)]
    return [site] if site else []


def site_expression(site: str) -> str:
    return SITE_EXPRESSIONS.get(site, f"site:{site}")


def platform_from_url(url: str) -> str:
    for needles, label in _URL_LABELS:
        if any(n in url for n in needles):
            return label
    return "Other"
