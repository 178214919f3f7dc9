"""Pytest configuration and shared fixtures."""

import asyncio
import io
import logging
import os
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from hypothesis import Verbosity, settings
from PIL import Image

# Configure Hypothesis profiles
settings.register_profile("ci", max_examples=200, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.register_profile("debug", max_examples=10, verbosity=Verbosity.verbose)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "dev"))


def make_jpeg(size=(1, 1), color=(255, 0, 0), quality=95, mode="RGB") -> bytes:
    """Encode a solid-colour JPEG."""
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def oversized_jpeg(width=65000, height=65000) -> bytes:
    """Small JPEG whose SOF0 header claims ``width`` x ``height`` pixels."""
    data = bytearray(make_jpeg((8, 8), (10, 20, 30)))
    sof = data.index(b"\xff\xc0")
    # marker(2) length(2) precision(1) height(2) width(2)
    data[sof + 5:sof + 7] = height.to_bytes(2, "big")
    data[sof + 7:sof + 9] = width.to_bytes(2, "big")
    return bytes(data)


def decoded_pixel(data: bytes, xy=(0, 0)) -> tuple:
    """What Pillow decodes at ``xy``; JPEG is lossy so tests compare against this."""
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGB").getpixel(xy)


@pytest.fixture
def logger():
    """Provide a quiet application logger."""
    log = logging.getLogger("colorcount.tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def red_jpeg() -> bytes:
    return make_jpeg((1, 1), (255, 0, 0))


@dataclass
class ImageServer:
    """Local HTTP server answering from a path -> (status, body, delay) table."""
    server: TestServer
    routes: dict = field(default_factory=dict)
    hits: dict = field(default_factory=dict)
    active: int = 0
    max_active: int = 0

    def add(self, path: str, body: bytes = b"", status: int = 200, delay: float = 0.0) -> str:
        self.routes[path] = (status, body, delay)
        return self.url(path)

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))


@pytest_asyncio.fixture
async def image_server():
    state = {}

    async def handler(request: web.Request) -> web.Response:
        srv: ImageServer = state["srv"]
        srv.hits[request.path] = srv.hits.get(request.path, 0) + 1
        entry = srv.routes.get(request.path)
        if entry is None:
            return web.Response(status=404)
        status, body, delay = entry
        srv.active += 1
        srv.max_active = max(srv.max_active, srv.active)
        try:
            if delay:
                await asyncio.sleep(delay)
            return web.Response(status=status, body=body, content_type="image/jpeg")
        finally:
            srv.active -= 1

    app = web.Application()
    app.router.add_get("/{name:.*}", handler)
    server = TestServer(app)
    await server.start_server()
    srv = ImageServer(server)
    state["srv"] = srv
    try:
        yield srv
    finally:
        await server.close()
