"""
Exception hierarchy for the colorcount pipeline.

Failures are always scoped to the single URL or image in flight. Only
NoFreeConnections is retried; everything else is logged and the work item
is dropped.
"""

from __future__ import annotations

from typing import Optional


class ColorCountError(Exception):
    """Base class for every error raised by colorcount."""


class ConfigError(ColorCountError):
    """Raised when a configuration value is out of range."""


class Cancelled(ColorCountError):
    """Raised when the shared cancel token fires while an operation is blocked."""


class ChannelClosed(ColorCountError):
    """Raised on send to a closed channel, or receive from a closed, drained one."""


class ImageReleased(ColorCountError):
    """Raised when a downloaded image buffer is read after release."""


# =============================================================================
# TRANSPORT
# =============================================================================

class DownloadError(ColorCountError):
    """Non-retryable download failure for a single URL."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason


class HTTPStatusError(DownloadError):
    """Server answered with something other than 200 OK."""

    def __init__(self, url: str, status: int, phrase: Optional[str] = None):
        reason = f"HTTP {status}" + (f": {phrase}" if phrase else "")
        super().__init__(url, reason)
        self.status = status


class MediaIsEmpty(DownloadError):
    """Response body had zero length."""

    def __init__(self, url: str):
        super().__init__(url, "url refers to an empty file")


class BodyTooLarge(DownloadError):
    """Response body exceeded the configured maximum size."""

    def __init__(self, url: str, limit: int):
        super().__init__(url, f"response body exceeds {limit} bytes")
        self.limit = limit


class NoFreeConnections(ColorCountError):
    """Every connection slot for the host is busy. Retryable."""

    def __init__(self, host: str):
        super().__init__(f"no free connections to host {host}")
        self.host = host


# =============================================================================
# PROCESSING AND OUTPUT
# =============================================================================

class DecodeError(ColorCountError):
    """Image bytes could not be decoded as JPEG."""


class SinkError(ColorCountError):
    """Output destination could not be opened, written or closed."""
