"""
Concurrent image downloader.

A pool of N workers pulls URLs from the URL source, fetches each one with a
shared aiohttp session and pushes the downloaded body onto a bounded output
channel. The output channel is closed once every worker has exited.

Error policy per request:
- non-200 status, empty body, oversized body, timeout or any other transport
  error: logged, URL skipped
- every connection slot for the host busy (NoFreeConnections): the worker
  polls every ``retry_interval`` seconds until a slot frees up or the cancel
  token fires. There is no cap on the number of polls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

from colorcount.buffers import BufferPool, DownloadedImage
from colorcount.cancel import CancelToken
from colorcount.channel import Channel, Stage
from colorcount.exceptions import (
    BodyTooLarge,
    Cancelled,
    ChannelClosed,
    DownloadError,
    HTTPStatusError,
    MediaIsEmpty,
    NoFreeConnections,
)
from colorcount.logs import RunnerAdapter
from colorcount.source import UrlSource

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_MAX_CONNS_PER_HOST = 32
DEFAULT_READ_TIMEOUT = 8.0
DEFAULT_READ_BUFFER_SIZE = 6 * 1024 * 1024
DEFAULT_MAX_BODY_SIZE = 16 * 1024 * 1024
DEFAULT_RETRY_INTERVAL = 0.025
DEFAULT_QUEUE_SIZE = 10

CHUNK_SIZE = 64 * 1024
USER_AGENT = "colorcount/1.0"


# =============================================================================
# PER-HOST CONNECTION SLOTS
# =============================================================================

class HostConnectionLimiter:
    """
    Non-blocking per-host connection slots.

    Unlike a semaphore this never queues: when every slot for a host is in
    use ``acquire_nowait`` raises NoFreeConnections and the caller decides
    whether to retry.
    """

    def __init__(self, max_per_host: int = DEFAULT_MAX_CONNS_PER_HOST):
        self.max_per_host = max(1, max_per_host)
        self._inflight: Counter[str] = Counter()

    def acquire_nowait(self, host: str) -> None:
        if self._inflight[host] >= self.max_per_host:
            raise NoFreeConnections(host)
        self._inflight[host] += 1

    def release(self, host: str) -> None:
        self._inflight[host] -= 1
        if self._inflight[host] <= 0:
            del self._inflight[host]

    def in_use(self, host: str) -> int:
        return self._inflight.get(host, 0)


def host_of(url: str) -> str:
    return urlsplit(url).netloc.lower()


# =============================================================================
# DOWNLOADER
# =============================================================================

class MediaDownloader:
    """
    Pool of download workers fed by a UrlSource.

    Settings may be changed with the setters until ``start`` is called.
    """

    def __init__(
        self,
        logger: logging.Logger,
        source: UrlSource,
        *,
        max_conns_per_host: int = DEFAULT_MAX_CONNS_PER_HOST,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE,
        max_body_size: int = DEFAULT_MAX_BODY_SIZE,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        pool: Optional[BufferPool] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._log = logger.getChild("downloader")
        self._source = source
        self._images: Channel[DownloadedImage] = Channel(queue_size)
        self._pool = pool or BufferPool()
        self._session = session
        self._owns_session = session is None
        self._limiter = HostConnectionLimiter(max_conns_per_host)
        self._stage = Stage("downloader", self._images, self._log)
        self._supervisor: Optional[asyncio.Task] = None

        self.read_timeout = read_timeout
        self.read_buffer_size = read_buffer_size
        self.max_body_size = max_body_size
        self.retry_interval = retry_interval

        self.downloaded = 0
        self.failed = 0
        self.retries = 0
        self.bytes_downloaded = 0

    # ---------------------------------------------------------------- settings

    @property
    def max_conns_per_host(self) -> int:
        return self._limiter.max_per_host

    def set_max_conns_per_host(self, n: int) -> None:
        """Maximum parallel connections to a single host."""
        self._limiter = HostConnectionLimiter(n)

    def set_read_timeout(self, seconds: float) -> None:
        """Maximum duration for reading a full response, body included."""
        self.read_timeout = seconds

    # ---------------------------------------------------------------- lifecycle

    def _build_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=0,
            limit_per_host=self._limiter.max_per_host,
            ttl_dns_cache=300,
            use_dns_cache=True,
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.read_timeout),
            read_bufsize=self.read_buffer_size,
            headers={"User-Agent": USER_AGENT},
        )

    def start(self, token: CancelToken, workers: int) -> None:
        """Launch ``workers`` download runners and return immediately."""
        if self._session is None:
            self._session = self._build_session()
        self._stage.spawn(workers, lambda num: self._runner(token, num))
        self._supervisor = asyncio.create_task(self._supervise(), name="downloader")

    async def _supervise(self) -> None:
        try:
            await self._stage.wait_and_close()
        finally:
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None
            self._log.debug(f"[Download] all runners stopped downloaded={self.downloaded} "
                            f"failed={self.failed} retries={self.retries}")

    async def wait(self) -> None:
        """Wait until every runner has exited and the session is closed."""
        if self._supervisor is not None:
            await self._supervisor

    def next(self) -> Channel[DownloadedImage]:
        """Stream of downloaded images, closed when every runner has drained."""
        return self._images

    # ---------------------------------------------------------------- workers

    async def _runner(self, token: CancelToken, num: int) -> None:
        log = RunnerAdapter(self._log, num)
        urls = self._source.next()

        while True:
            try:
                url = await urls.receive(token)
            except (ChannelClosed, Cancelled):
                # input exhausted or interrupted
                return

            started = time.monotonic()
            try:
                img = await self.download(token, url)
            except Cancelled:
                return
            except DownloadError as e:
                self.failed += 1
                log.error(f"[Download] failed url={url} error={e.reason}")
                continue
            except Exception as e:
                self.failed += 1
                log.exception(f"[Download] unexpected failure url={url} error={e!r}")
                continue

            self.downloaded += 1
            self.bytes_downloaded += img.size

            try:
                await self._images.send(img, token)
            except (Cancelled, ChannelClosed):
                img.release()
                return

            log.debug(f"[Download] ok url={url} size={img.size} "
                      f"dur={time.monotonic() - started:.3f}s")

    async def download(self, token: CancelToken, url: str) -> DownloadedImage:
        """
        Fetch ``url`` into a pooled buffer.

        Raises:
            DownloadError: Non-retryable failure (status, empty body, transport)
            Cancelled: Token fired during the request or the retry poll
        """
        try:
            host = host_of(url)
        except ValueError as e:
            # e.g. unbalanced IPv6 brackets
            raise DownloadError(url, f"Error: {e}") from e
        while True:
            try:
                return await self._attempt(token, url, host)
            except NoFreeConnections:
                self.retries += 1
                if not await token.sleep(self.retry_interval):
                    raise Cancelled()

    async def _attempt(self, token: CancelToken, url: str, host: str) -> DownloadedImage:
        self._limiter.acquire_nowait(host)
        buf = self._pool.acquire()
        try:
            await token.guard(self._fetch(url, buf))
        except BaseException:
            self._pool.release(buf)
            raise
        finally:
            self._limiter.release(host)
        return DownloadedImage(url, buf, self._pool)

    async def _fetch(self, url: str, buf: bytearray) -> None:
        if self._session is None:
            raise RuntimeError("downloader is not started")
        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    raise HTTPStatusError(url, response.status, response.reason)

                length = response.content_length
                if length is not None and length > self.max_body_size:
                    raise BodyTooLarge(url, self.max_body_size)

                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    if len(buf) + len(chunk) > self.max_body_size:
                        raise BodyTooLarge(url, self.max_body_size)
                    buf += chunk
        except asyncio.TimeoutError:
            raise DownloadError(url, "Request Timeout")
        except aiohttp.ClientError as e:
            raise DownloadError(url, f"Connection Error: {e}")
        except ValueError as e:
            # malformed URLs
            raise DownloadError(url, f"Error: {e}")

        if not buf:
            raise MediaIsEmpty(url)
