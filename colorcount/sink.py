"""
Buffered CSV output.

Records from every processing worker funnel into one BufferedCSV. Lines are
collected in memory under a lock and written to the file whenever the buffer
reaches its capacity, and once more on close.
"""

from __future__ import annotations

import os
import threading
from typing import List, Optional, TextIO, Union

from colorcount.exceptions import SinkError
from colorcount.result import ResultRecord

DEFAULT_BUFFER_LEN = 10


class BufferedCSV:
    """
    CSV file with a write buffer.

    The file is opened for appending; the header is written only if the file
    was empty when opened, right before the first record. ``save`` after
    ``close`` is silently ignored so late results from in-flight workers do
    not crash anything.
    """

    def __init__(self, size: int = DEFAULT_BUFFER_LEN):
        if size < 2:
            size = DEFAULT_BUFFER_LEN
        self.size = size
        self._buf: List[str] = []
        self._file: Optional[TextIO] = None
        self._lock = threading.Lock()
        self._header_pending = False
        self.saved = 0

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self, path: Union[str, os.PathLike]) -> None:
        """
        Create ``path`` or append to it if it exists.

        Raises:
            SinkError: File could not be opened
        """
        try:
            f = open(path, "a", encoding="utf-8", newline="")
        except OSError as e:
            raise SinkError(f"output file open/create failed: {e}") from e

        try:
            f.seek(0, os.SEEK_END)
            empty = f.tell() == 0
        except OSError as e:
            f.close()
            raise SinkError(f"output file seek failed: {e}") from e

        with self._lock:
            self._file = f
            self._header_pending = empty

    def save(self, record: ResultRecord) -> None:
        """
        Buffer ``record`` and flush once the buffer is full.

        Raises:
            SinkError: Flush to the file failed; the buffered lines are kept
        """
        with self._lock:
            if self._file is None:
                return

            if self._header_pending:
                self._buf.append(record.header())
                self._header_pending = False

            self._buf.append(record.line())
            self.saved += 1
            if len(self._buf) < self.size:
                return

            self._flush()

    def _flush(self) -> None:
        if not self._buf:
            return
        try:
            self._file.write("".join(self._buf))
            self._file.flush()
        except OSError as e:
            raise SinkError(f"output write failed: {e}") from e
        self._buf.clear()

    def close(self) -> None:
        """
        Flush what is left and close the file. Repeated calls do nothing.

        Raises:
            SinkError: Final flush or close failed; the file is closed anyway
        """
        with self._lock:
            if self._file is None:
                return
            f, self._file = self._file, None
            try:
                if self._buf:
                    f.write("".join(self._buf))
                    self._buf.clear()
            except OSError as e:
                f.close()
                raise SinkError(f"output file flush failed: {e}") from e
            try:
                f.close()
            except OSError as e:
                raise SinkError(f"output file close failed: {e}") from e

    def __enter__(self) -> "BufferedCSV":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
