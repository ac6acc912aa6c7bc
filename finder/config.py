"""Runtime settings for the search aggregator.

Values come from environment variables; a ``.env`` file is loaded on import
(path override via ``FINDER_DOTENV``) so the API, CLI and scripts agree on
credentials and limits without extra flags.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Union

from dotenv import load_dotenv

_ = load_dotenv(dotenv_path=os.getenv("FINDER_DOTENV", ".env"))


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    google_api_key: str = ""
    google_engine_id: str = ""
    platform_timeout: float = 25.0       # seconds per platform before Error(timeout)
    request_timeout: float = 10.0        # seconds per outbound HTTP request
    max_platforms: int = 5               # platforms searched when site=all
    max_results_per_platform: int = 20
    max_workers: int = 8
    dedup_key: str = "url"
    result_cache_seconds: int = 3600
    job_retention_hours: int = 24
    history_limit: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            google_api_key=os.getenv("GOOGLE_SEARCH_API_KEY", ""),
            google_engine_id=os.getenv("GOOGLE_SEARCH_ENGINE_ID", ""),
            platform_timeout=_env_float("FINDER_PLATFORM_TIMEOUT", 25.0),
            request_timeout=_env_float("FINDER_REQUEST_TIMEOUT", 10.0),
            max_platforms=_env_int("FINDER_MAX_PLATFORMS", 5),
            max_results_per_platform=_env_int("FINDER_MAX_RESULTS_PER_PLATFORM", 20),
            max_workers=_env_int("FINDER_MAX_WORKERS", 8),
            dedup_key=os.getenv("FINDER_DEDUP_KEY", "url").strip().lower() or "url",
            result_cache_seconds=_env_int("FINDER_RESULT_CACHE_SECONDS", 3600),
            job_retention_hours=_env_int("FINDER_JOB_RETENTION_HOURS", 24),
            history_limit=_env_int("FINDER_HISTORY_LIMIT", 10),
        )

    @property
    def has_search_credentials(self) -> bool:
        return bool(self.google_api_key and self.google_engine_id)


def load_platforms(path: Union[str, Path]) -> list[str]:
    """Read a custom platform list: a JSON list of sites or ``{"platforms": [...]}``."""
    path = Path(path)
    with path.open(encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("platforms", [])
    if isinstance(data, list):
        return [str(s).strip().lower() for s in data if str(s).strip()]
    return []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once. Tests call ``get_settings.cache_clear()``."""
    return Settings.from_env()
