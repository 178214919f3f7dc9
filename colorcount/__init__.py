"""
colorcount: batch top-3 color counter for JPEG URLs.

Reads a list of image URLs, downloads them concurrently with a per-host
connection cap, finds the three most frequent pixel colors of each image and
appends one CSV line per image to the output file.
"""

__version__ = "1.0.0"

from colorcount.buffers import BufferPool, DownloadedImage
from colorcount.cancel import CancelToken
from colorcount.channel import Channel, Stage
from colorcount.counter import BufferCounter, PixelCounter, top3
from colorcount.downloader import HostConnectionLimiter, MediaDownloader
from colorcount.pipeline import ImageProcessor, WorkerStats
from colorcount.result import Color, ResultRecord
from colorcount.sink import BufferedCSV
from colorcount.source import PlainTextUrlSource, TabularUrlSource

__all__ = [
    "BufferCounter",
    "BufferPool",
    "BufferedCSV",
    "CancelToken",
    "Channel",
    "Color",
    "DownloadedImage",
    "HostConnectionLimiter",
    "ImageProcessor",
    "MediaDownloader",
    "PixelCounter",
    "PlainTextUrlSource",
    "ResultRecord",
    "Stage",
    "TabularUrlSource",
    "WorkerStats",
    "top3",
]
