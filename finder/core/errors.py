from __future__ import annotations


class FinderError(Exception):
    """Base class for search aggregation failures."""


class PlatformError(FinderError):
    """One platform failed. Recorded against that platform, never fatal to the run."""

    def __init__(self, platform: str, reason: str):
        super().__init__(f"{platform}: {reason}")
        self.platform = platform
        self.reason = reason


class PlatformTimeout(PlatformError):
    pass


class QuotaExceeded(PlatformError):
    pass


class RunError(FinderError):
    """Run-level fault detected before or outside any single platform."""


class TransportError(FinderError):
    """The output channel is gone (client disconnected or write failed)."""
