"""Tests for the downloader: error policy, per-host limiting and the retry poll."""

import asyncio
import io
import socket

import pytest

from colorcount.cancel import CancelToken
from colorcount.downloader import HostConnectionLimiter, MediaDownloader, host_of
from colorcount.exceptions import (
    BodyTooLarge,
    Cancelled,
    DownloadError,
    HTTPStatusError,
    MediaIsEmpty,
    NoFreeConnections,
)
from colorcount.source import PlainTextUrlSource

from conftest import make_jpeg


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_limiter_slots():
    lim = HostConnectionLimiter(2)
    lim.acquire_nowait("a")
    lim.acquire_nowait("a")
    lim.acquire_nowait("b")
    with pytest.raises(NoFreeConnections):
        lim.acquire_nowait("a")
    lim.release("a")
    lim.acquire_nowait("a")
    assert lim.in_use("a") == 2
    assert lim.in_use("c") == 0


def test_host_of():
    assert host_of("http://Example.com:8080/a.jpg?x=1") == "example.com:8080"


class _Started:
    """Downloader started on an empty source, for calling download() directly."""

    def __init__(self, logger, **kwargs):
        self.token = CancelToken()
        self.source = PlainTextUrlSource(logger)
        self.downloader = MediaDownloader(logger, self.source, **kwargs)

    async def __aenter__(self):
        self.downloader.start(self.token, 1)
        return self

    async def __aexit__(self, *exc):
        self.source.start(self.token, _empty_stream())
        await asyncio.wait_for(self.downloader.wait(), timeout=5)


def _empty_stream():
    return io.StringIO("")


@pytest.mark.asyncio
async def test_download_ok(image_server, logger):
    body = make_jpeg((4, 4), (0, 255, 0))
    url = image_server.add("/ok.jpg", body)

    async with _Started(logger) as s:
        img = await s.downloader.download(s.token, url)
    assert img.url == url
    assert bytes(img.data) == body
    img.release()


@pytest.mark.asyncio
async def test_non_200_is_not_retried(image_server, logger):
    url = image_server.url("/missing.jpg")
    async with _Started(logger) as s:
        with pytest.raises(HTTPStatusError) as err:
            await s.downloader.download(s.token, url)
    assert err.value.status == 404
    assert image_server.hits["/missing.jpg"] == 1


@pytest.mark.asyncio
async def test_empty_body(image_server, logger):
    url = image_server.add("/empty.jpg", b"")
    async with _Started(logger) as s:
        with pytest.raises(MediaIsEmpty):
            await s.downloader.download(s.token, url)


@pytest.mark.asyncio
async def test_body_size_cap(image_server, logger):
    url = image_server.add("/big.jpg", b"x" * 4096)
    async with _Started(logger, max_body_size=1024) as s:
        with pytest.raises(BodyTooLarge):
            await s.downloader.download(s.token, url)


@pytest.mark.asyncio
async def test_read_timeout(image_server, logger):
    url = image_server.add("/slow.jpg", b"x", delay=1)
    async with _Started(logger, read_timeout=0.2) as s:
        with pytest.raises(DownloadError, match="Timeout"):
            await s.downloader.download(s.token, url)


@pytest.mark.asyncio
async def test_connection_refused(logger):
    url = f"http://127.0.0.1:{free_port()}/nothing-here.jpg"
    async with _Started(logger) as s:
        with pytest.raises(DownloadError, match="Connection Error"):
            await s.downloader.download(s.token, url)


@pytest.mark.asyncio
async def test_malformed_url_is_a_download_error(logger):
    async with _Started(logger) as s:
        with pytest.raises(DownloadError, match="IPv6"):
            await s.downloader.download(s.token, "http://[broken/x.jpg")


@pytest.mark.asyncio
async def test_malformed_url_does_not_stop_the_worker(image_server, logger):
    good = image_server.add("/good.jpg", make_jpeg())

    token = CancelToken()
    source = PlainTextUrlSource(logger)
    downloader = MediaDownloader(logger, source)
    source.start(token, _stream(["http://[broken/x.jpg", good]))
    downloader.start(token, 1)

    got = []
    async for img in downloader.next():
        got.append(img.url)
        img.release()
    await asyncio.wait_for(downloader.wait(), timeout=5)

    assert got == [good]
    assert downloader.failed == 1
    assert downloader.downloaded == 1


@pytest.mark.asyncio
async def test_waits_for_free_connection(image_server, logger):
    url = image_server.add("/ok.jpg", make_jpeg())
    host = host_of(url)

    async with _Started(logger, max_conns_per_host=1, retry_interval=0.01) as s:
        limiter = s.downloader._limiter
        limiter.acquire_nowait(host)
        asyncio.get_running_loop().call_later(0.1, limiter.release, host)

        img = await asyncio.wait_for(s.downloader.download(s.token, url), timeout=5)
        img.release()

    assert s.downloader.retries >= 3
    assert image_server.hits["/ok.jpg"] == 1


@pytest.mark.asyncio
async def test_cancel_during_retry_poll(image_server, logger):
    url = image_server.add("/ok.jpg", make_jpeg())

    async with _Started(logger, max_conns_per_host=1) as s:
        s.downloader._limiter.acquire_nowait(host_of(url))
        asyncio.get_running_loop().call_later(0.1, s.token.cancel)
        with pytest.raises(Cancelled):
            await asyncio.wait_for(s.downloader.download(s.token, url), timeout=5)


@pytest.mark.asyncio
async def test_cancel_aborts_request(image_server, logger):
    url = image_server.add("/slow.jpg", b"x", delay=1)
    async with _Started(logger) as s:
        asyncio.get_running_loop().call_later(0.1, s.token.cancel)
        with pytest.raises(Cancelled):
            await asyncio.wait_for(s.downloader.download(s.token, url), timeout=2)


@pytest.mark.asyncio
async def test_workers_skip_failures_and_close_stream(image_server, logger):
    good = [image_server.add(f"/img{i}.jpg", make_jpeg()) for i in range(5)]
    urls = good + [image_server.url("/404.jpg"), image_server.add("/empty.jpg", b"")]

    token = CancelToken()
    source = PlainTextUrlSource(logger)
    downloader = MediaDownloader(logger, source)
    source.start(token, _stream(urls))
    downloader.start(token, 3)

    got = []
    async for img in downloader.next():
        got.append(img.url)
        img.release()
    await asyncio.wait_for(downloader.wait(), timeout=5)

    assert sorted(got) == sorted(good)
    assert downloader.downloaded == 5
    assert downloader.failed == 2
    assert downloader.next().closed


@pytest.mark.asyncio
async def test_single_connection_per_host_serializes(image_server, logger):
    urls = [image_server.add(f"/s{i}.jpg", make_jpeg(), delay=0.05) for i in range(6)]

    token = CancelToken()
    source = PlainTextUrlSource(logger)
    downloader = MediaDownloader(logger, source, max_conns_per_host=1, retry_interval=0.005)
    source.start(token, _stream(urls))
    downloader.start(token, 4)

    count = 0
    async for img in downloader.next():
        count += 1
        img.release()
    await asyncio.wait_for(downloader.wait(), timeout=10)

    assert count == 6
    assert image_server.max_active == 1
    assert downloader.retries > 0


def _stream(urls):
    return io.StringIO("\n".join(urls) + "\n")
