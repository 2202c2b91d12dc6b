"""
Exception hierarchy for the archival pipeline.

Item-level failures (one post, one image) are caught where the item is
processed and never escape a run. The classes below are what run-level
failures and per-item diagnostics are expressed in.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ArchiveError",
    "NetworkError",
    "FetchError",
    "AuthenticationError",
    "DiscoveryError",
    "ConversionError",
    "ValidationError",
]


class ArchiveError(RuntimeError):
    """Base exception for every failure raised by the pipeline."""


class NetworkError(ArchiveError):
    """Raised on transport failure or an unexpected HTTP status."""

    def __init__(self, message: str, *, url: Optional[str] = None,
                 status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FetchError(NetworkError):
    """Raised when a publication's primary endpoint cannot be reached."""


class AuthenticationError(NetworkError):
    """Raised when an authenticated page answers 401/403."""


class DiscoveryError(ArchiveError):
    """Raised when no post listing can be obtained by any discovery path."""


class ConversionError(ArchiveError):
    """Raised when no document could be converted for the e-book."""


class ValidationError(ArchiveError):
    """Raised by callers for malformed input (URLs, dates, options)."""
