"""annocache exception hierarchy.

Hierarchy:
    AnnoCacheError
    ├── InvalidRegionError  (bad input: not cached, not retried)
    ├── NetworkError        (offline, timeout, non-2xx: counted against retry budget)
    ├── ParseError          (payload shape mismatch: counted like NetworkError)
    └── CacheIOError        (disk tier failure: never surfaced to callers)
"""

from __future__ import annotations

from annocache.models import FailureKind


class AnnoCacheError(Exception):
    """Base class for every annocache exception."""


class InvalidRegionError(AnnoCacheError, ValueError):
    """Request failed input validation (empty region, region too large, empty id)."""

    kind = FailureKind.VALIDATION


class NetworkError(AnnoCacheError):
    """Remote service unreachable, timed out or answered with a non-2xx status."""

    def __init__(self, reason: str, kind: FailureKind = FailureKind.REMOTE_ERROR) -> None:
        self.reason = reason
        self.kind = kind
        super().__init__(reason)


class ParseError(AnnoCacheError):
    """Response body did not match the expected schema."""

    kind = FailureKind.MALFORMED_RESPONSE

    def __init__(self, message: str, reason: str = "Malformed response") -> None:
        self.reason = reason
        super().__init__(message)


class CacheIOError(AnnoCacheError):
    """Disk cache read/write failure. Absorbed inside the cache layer."""
