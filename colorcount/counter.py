"""
Colour counting.

Decodes a downloaded JPEG, builds a histogram of packed 0xRRGGBB colours
(alpha and other extra channels are discarded) and picks the three most
frequent ones.

Two counters produce identical histograms:
- PixelCounter walks the decoded image pixel by pixel through Pillow's pixel
  access object. Low memory, slow.
- BufferCounter converts the image to a raw interleaved RGB buffer and counts
  it with numpy. Several times faster, holds a copy of the pixel data.

Top-3 selection is a single pass over the histogram with a three-slot
insertion, so no sort of all distinct colours is ever needed. Among colours
with equal counts the winner depends on histogram iteration order.
"""

from __future__ import annotations

import io
from collections import Counter
from typing import Dict, Iterable, Protocol, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from colorcount.buffers import DownloadedImage
from colorcount.exceptions import DecodeError
from colorcount.result import Color, ResultRecord

Histogram = Dict[Color, int]

SUPPORTED_FORMATS = ("JPEG",)


class ColorCounter(Protocol):
    def count(self, image: DownloadedImage) -> ResultRecord: ...


def top3(histogram: Iterable[Tuple[int, int]]) -> Tuple[Color, Color, Color]:
    """
    Pick the three most frequent colours from (color, count) pairs.

    Slots are kept ordered by count, descending. Each pair is first compared
    with the third slot, which rejects most of them; the rest are inserted,
    shifting lower slots down and dropping the previous third place.

    Slots left empty (fewer than three distinct colours) repeat the colour
    above them, so a single-colour image reports that colour three times.

    Raises:
        ValueError: If the histogram is empty
    """
    colors = [None, None, None]
    counts = [0, 0, 0]

    for color, cnt in histogram:
        if cnt <= counts[2]:
            continue
        if cnt > counts[0]:
            colors[2], counts[2] = colors[1], counts[1]
            colors[1], counts[1] = colors[0], counts[0]
            colors[0], counts[0] = color, cnt
        elif cnt > counts[1]:
            colors[2], counts[2] = colors[1], counts[1]
            colors[1], counts[1] = color, cnt
        else:
            colors[2], counts[2] = color, cnt

    if colors[0] is None:
        raise ValueError("empty histogram")
    if colors[1] is None:
        colors[1] = colors[0]
    if colors[2] is None:
        colors[2] = colors[1]

    return Color(colors[0]), Color(colors[1]), Color(colors[2])


def decode(data) -> Image.Image:
    """
    Decode JPEG bytes into an RGB Pillow image.

    Raises:
        DecodeError: Not a JPEG, truncated, claims too many pixels or otherwise
            undecodable
    """
    try:
        img = Image.open(io.BytesIO(data), formats=SUPPORTED_FORMATS)
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"image could not be decoded [{e}]") from e

    if img.width == 0 or img.height == 0:
        raise DecodeError("image has no pixels")

    if img.mode != "RGB":
        # L, CMYK and YCbCr JPEGs; drops any extra channel
        img = img.convert("RGB")
    return img


class _BaseCounter:
    def histogram(self, img: Image.Image) -> Histogram:
        raise NotImplementedError

    def count(self, image: DownloadedImage) -> ResultRecord:
        """
        Count the three most frequent colours of ``image``.

        Raises:
            DecodeError: Image could not be decoded
        """
        img = decode(image.data)
        try:
            hist = self.histogram(img)
        finally:
            img.close()
        return ResultRecord(url=image.url, colors=top3(hist.items()))


class PixelCounter(_BaseCounter):
    """Visits every pixel through Pillow's pixel access object."""

    def histogram(self, img: Image.Image) -> Histogram:
        if img.mode != "RGB":
            img = img.convert("RGB")
        px = img.load()
        width, height = img.size
        counts: Counter[int] = Counter()
        for y in range(height):
            for x in range(width):
                r, g, b = px[x, y]
                counts[(r << 16) | (g << 8) | b] += 1
        return {Color(c): n for c, n in counts.items()}


class BufferCounter(_BaseCounter):
    """Walks the raw interleaved RGB buffer with numpy."""

    def histogram(self, img: Image.Image) -> Histogram:
        if img.mode != "RGB":
            img = img.convert("RGB")
        pix = np.frombuffer(img.tobytes(), dtype=np.uint8).reshape(-1, 3).astype(np.uint32)
        packed = (pix[:, 0] << 16) | (pix[:, 1] << 8) | pix[:, 2]
        colors, counts = np.unique(packed, return_counts=True)
        return {Color(int(c)): int(n) for c, n in zip(colors, counts)}


COUNTERS = {
    "pixels": PixelCounter,
    "buffer": BufferCounter,
}


def make_counter(name: str) -> ColorCounter:
    try:
        return COUNTERS[name]()
    except KeyError:
        raise ValueError(f"unknown counter '{name}', choose from {sorted(COUNTERS)}") from None
