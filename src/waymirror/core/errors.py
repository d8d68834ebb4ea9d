"""
Error Types

Exceptions raised while talking to the Wayback Machine and while reading or
writing the persisted run state. Each error knows whether the download
pipeline should retry the request that produced it.
"""

from typing import Optional


class MirrorError(Exception):
    """Base class for all waymirror errors."""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ConfigurationError(MirrorError):
    """Invalid run configuration, raised before any work begins."""


class TransportError(MirrorError):
    """Connection, DNS, TLS or timeout failure."""

    retryable = True


class ParseError(MirrorError):
    """The capture index returned something that is not the expected JSON."""


class RateLimited(MirrorError):
    """HTTP 429 from the archive."""

    retryable = True


class NotFound(MirrorError):
    """HTTP 404. Terminal: the snapshot is skipped, not counted as a failure."""


class TooManyRedirects(MirrorError):
    """Redirect chain exceeded the maximum depth."""


class OtherHttpError(MirrorError):
    """Any other non-2xx response outside capture-everything mode."""

    retryable = True

    def __init__(self, status_code: int, reason: str = "", url: Optional[str] = None):
        super().__init__(f"HTTP Error: {status_code} {reason}".rstrip(), url)
        self.status_code = status_code


class DecompressionError(MirrorError):
    """Corrupt gzip body. Downgraded to a warning by the retriever."""


class StateCorruption(MirrorError):
    """Unreadable snapshot cache or download ledger."""
