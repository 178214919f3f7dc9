"""
URL sources.

A source reads candidate URLs in a background task and pushes them, one at a
time, onto a small bounded channel consumed by the downloader workers.
Lines are trimmed and anything shorter than ``MIN_URL_LENGTH`` (the length of
"http://x") is skipped. The channel is closed exactly once, on end of input
or on cancellation, and the input handle is released at the same time.

Two inputs are supported:
- PlainTextUrlSource: one URL per line in a text file or stream
- TabularUrlSource: a URL column of a CSV or Parquet file, loaded with Polars
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from pathlib import Path
from typing import Iterator, Optional, TextIO, Union

import polars as pl

from colorcount.cancel import CancelToken
from colorcount.channel import Channel
from colorcount.exceptions import Cancelled, ChannelClosed

MIN_URL_LENGTH = 8

StreamHandle = Union[str, os.PathLike, TextIO]


class UrlSource:
    """Base class: owns the output channel and the producer task."""

    def __init__(self, logger: logging.Logger, capacity: int = 0):
        self._log = logger.getChild("inputer")
        self._urls: Channel[str] = Channel(capacity)
        self._task: Optional[asyncio.Task] = None
        self.lines_passed = 0
        self.lines_skipped = 0

    def next(self) -> Channel[str]:
        """Stream of accepted URLs. Single pass; exhausted once closed."""
        return self._urls

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _read(self) -> Optional[str]:
        """Return the next raw line, or None at end of input."""
        raise NotImplementedError

    def _close_input(self) -> None:
        pass

    def _launch(self, token: CancelToken) -> None:
        self._task = asyncio.create_task(self._run(token), name=self._log.name)

    async def _run(self, token: CancelToken) -> None:
        reason = "reached EOF"
        try:
            while not token.cancelled:
                try:
                    raw = await self._read()
                except (OSError, ValueError) as e:
                    # includes UnicodeDecodeError; treated as end of input
                    self._log.error(f"[Input] scanner failed error={e}")
                    break
                if raw is None:
                    break

                url = raw.strip()
                if len(url) < MIN_URL_LENGTH:
                    self.lines_skipped += 1
                    continue

                try:
                    await self._urls.send(url, token)
                except (Cancelled, ChannelClosed):
                    break
                self.lines_passed += 1

            if token.cancelled:
                reason = "interrupted"
        finally:
            await self._urls.close()
            self._close_input()
            self._log.debug(f"[Input] {reason} passed={self.lines_passed} skipped={self.lines_skipped}")


class PlainTextUrlSource(UrlSource):
    """URLs from a plain text file, one per line."""

    def __init__(self, logger: logging.Logger, capacity: int = 0):
        super().__init__(logger, capacity)
        self._handle: Optional[TextIO] = None

    def start(self, token: CancelToken, stream: StreamHandle) -> None:
        """
        Open ``stream`` and start scanning it in the background.

        Args:
            token: Shared cancel token
            stream: File path, or an already open text stream

        Raises:
            OSError: If the file cannot be opened
        """
        if isinstance(stream, (str, os.PathLike)):
            self._handle = open(stream, "r", encoding="utf-8")
        else:
            self._handle = stream
        self._launch(token)

    async def _read(self) -> Optional[str]:
        line = await asyncio.to_thread(self._handle.readline)
        return line if line else None

    def _close_input(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class TabularUrlSource(UrlSource):
    """URLs from one column of a CSV or Parquet file."""

    def __init__(self, logger: logging.Logger, url_col: str = "url",
                 file_format: Optional[str] = None, capacity: int = 0):
        super().__init__(logger, capacity)
        self.url_col = url_col
        self.file_format = file_format
        self._rows: Optional[Iterator[Optional[str]]] = None

    def start(self, token: CancelToken, stream: StreamHandle) -> None:
        """
        Load the URL column and start feeding it in the background.

        Raises:
            OSError: If the file is missing or unreadable
            ValueError: If the format is unknown or the column is absent
        """
        df = load_url_frame(stream, self.url_col, self.file_format)
        self._rows = iter(df.get_column(self.url_col).to_list())
        self._launch(token)

    async def _read(self) -> Optional[str]:
        for value in self._rows:
            if value is not None:
                return str(value)
        return None

    def _close_input(self) -> None:
        self._rows = None


def load_url_frame(stream: StreamHandle, url_col: str = "url",
                   file_format: Optional[str] = None) -> pl.DataFrame:
    """
    Read a CSV or Parquet file into a one-column Polars DataFrame.

    Args:
        stream: File path or binary/text stream
        url_col: Name of the URL column
        file_format: 'csv' or 'parquet'; inferred from the extension if None

    Returns:
        DataFrame with a single Utf8 column named ``url_col``
    """
    if file_format is None:
        if not isinstance(stream, (str, os.PathLike)):
            raise ValueError("file format must be given for an open stream")
        suffix = Path(stream).suffix.lower()
        if suffix == ".parquet":
            file_format = "parquet"
        elif suffix in (".csv", ".tsv"):
            file_format = "csv"
        else:
            raise ValueError(f"Could not determine file format from extension: {stream}")

    if isinstance(stream, (str, os.PathLike)) and not Path(stream).exists():
        raise FileNotFoundError(f"Input file {stream} not found")

    if isinstance(stream, io.TextIOBase):
        stream = io.BytesIO(stream.read().encode("utf-8"))

    if file_format == "parquet":
        df = pl.read_parquet(stream)
    elif file_format == "csv":
        df = pl.read_csv(stream)
    else:
        raise ValueError(f"Unsupported file format: {file_format}")

    if url_col not in df.columns:
        raise ValueError(f"URL column '{url_col}' not found. Available: {df.columns[:10]}")

    return df.select(pl.col(url_col).cast(pl.Utf8))
