"""
Reusable response buffers and the downloaded image wrapper.

Downloader workers fill a pooled bytearray with the response body and wrap it
in a DownloadedImage. The processing worker that receives the image releases
it right after counting (the class is a context manager for that), which
hands the buffer back to the pool for the next download.
"""

from __future__ import annotations

import threading
from typing import Optional

from colorcount.exceptions import ImageReleased

DEFAULT_MAX_POOLED = 64


class BufferPool:
    """Thread-safe free list of bytearrays."""

    def __init__(self, max_pooled: int = DEFAULT_MAX_POOLED):
        self._max_pooled = max_pooled
        self._free: list[bytearray] = []
        self._lock = threading.Lock()

    def acquire(self) -> bytearray:
        with self._lock:
            if self._free:
                return self._free.pop()
        return bytearray()

    def release(self, buf: bytearray) -> None:
        buf.clear()
        with self._lock:
            if len(self._free) < self._max_pooled:
                self._free.append(buf)

    def __len__(self) -> int:
        with self._lock:
            return len(self._free)


class DownloadedImage:
    """Immutable view over a downloaded body plus its source URL."""

    def __init__(self, url: str, buffer: bytearray, pool: Optional[BufferPool] = None):
        self._url = url
        self._buffer: Optional[bytearray] = buffer
        self._view: Optional[memoryview] = memoryview(buffer).toreadonly()
        self._size = len(buffer)
        self._pool = pool

    @property
    def url(self) -> str:
        return self._url

    @property
    def size(self) -> int:
        return self._size

    @property
    def released(self) -> bool:
        return self._buffer is None

    @property
    def data(self) -> memoryview:
        if self._view is None:
            raise ImageReleased(f"image buffer already released ({self._url})")
        return self._view

    def release(self) -> None:
        """Return the buffer to its pool. Further reads raise ImageReleased."""
        if self._buffer is None:
            return
        buf, view = self._buffer, self._view
        self._buffer = None
        self._view = None
        try:
            view.release()
            if self._pool is not None:
                self._pool.release(buf)
        except BufferError:
            # still exported somewhere; leave the buffer to the garbage collector
            pass

    def __len__(self) -> int:
        return self._size

    def __enter__(self) -> "DownloadedImage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self._size} bytes"
        return f"DownloadedImage({self._url!r}, {state})"
