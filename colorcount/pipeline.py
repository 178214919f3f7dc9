"""
Image processing stage.

ImageProcessor drains the downloader's output with M workers. Each worker
counts colours in a thread pool (decoding is CPU bound), releases the image
buffer right after counting, and saves the record. A failed count or save is
logged and the worker moves on; nothing here stops a sibling worker.

``start`` returns only when every worker has exited, which is when the
whole pipeline has drained or been cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from colorcount.buffers import DownloadedImage
from colorcount.cancel import CancelToken
from colorcount.channel import Channel, Stage
from colorcount.counter import ColorCounter
from colorcount.exceptions import Cancelled, ChannelClosed, DecodeError, SinkError
from colorcount.logs import RunnerAdapter
from colorcount.result import ResultRecord
from colorcount.sink import BufferedCSV

REPORT_EVERY = 100


@dataclass
class WorkerStats:
    """Throughput counters kept by one processing worker."""
    runner: int
    count: int = 0
    total_bytes: int = 0
    max_image_size: int = 0
    bytes_last_100: int = 0
    started: float = field(default_factory=time.monotonic)
    started_100: float = field(default_factory=time.monotonic)

    def add(self, size: int) -> bool:
        """Record one image; True when a periodic report is due."""
        self.count += 1
        self.total_bytes += size
        self.bytes_last_100 += size
        if size > self.max_image_size:
            self.max_image_size = size
        return self.count % REPORT_EVERY == 0

    def reset_window(self) -> None:
        self.bytes_last_100 = 0
        self.started_100 = time.monotonic()

    @property
    def total_bps(self) -> int:
        return int(self.total_bytes / (time.monotonic() - self.started + 1))

    @property
    def window_bps(self) -> int:
        return int(self.bytes_last_100 / (time.monotonic() - self.started_100 + 1))


StatsCallback = Callable[[WorkerStats, str], None]
ResultCallback = Callable[[ResultRecord], None]


class ImageProcessor:
    """
    Orchestrates counting and saving.

    Args:
        logger: Parent logger
        downloader: Anything with ``next() -> Channel[DownloadedImage]``
        output: Result sink
        counter: Colour counter
        on_stats: Called with (stats, reason) on every throughput report
        on_result: Called with every record handed to the sink
    """

    def __init__(
        self,
        logger: logging.Logger,
        downloader,
        output: BufferedCSV,
        counter: ColorCounter,
        *,
        on_stats: Optional[StatsCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ):
        self._log = logger.getChild("imgproc")
        self._down = downloader
        self._output = output
        self._counter = counter
        self._on_stats = on_stats
        self._on_result = on_result
        self.stats: List[WorkerStats] = []
        self.failed = 0

    @property
    def processed(self) -> int:
        return sum(s.count for s in self.stats)

    @property
    def bytes_processed(self) -> int:
        return sum(s.total_bytes for s in self.stats)

    async def start(self, token: CancelToken, workers: int) -> None:
        """Launch ``workers`` runners and wait until all of them exit."""
        workers = max(1, workers)
        stage = Stage("imgproc", logger=self._log)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="imgproc") as executor:
            stage.spawn(workers, lambda num: self._runner(token, num, executor))
            await stage.wait_and_close()

    def _report(self, log: logging.LoggerAdapter, stats: WorkerStats, reason: str) -> None:
        log.info(f"[Process] {reason} count={stats.count} total-bytes={stats.total_bytes} "
                 f"total-bsec-thr={stats.total_bps} 100-bsec-thr={stats.window_bps} "
                 f"max-image-size={stats.max_image_size}")
        if self._on_stats is not None:
            self._on_stats(stats, reason)

    async def _runner(self, token: CancelToken, num: int, executor: ThreadPoolExecutor) -> None:
        log = RunnerAdapter(self._log, num)
        stats = WorkerStats(runner=num)
        self.stats.append(stats)
        images: Channel[DownloadedImage] = self._down.next()
        loop = asyncio.get_running_loop()

        while True:
            try:
                img = await images.receive(token)
            except ChannelClosed:
                self._report(log, stats, "reached EOF")
                return
            except Cancelled:
                self._report(log, stats, "interrupted")
                return

            url, size = img.url, img.size
            started = time.monotonic()
            # not guarded by the token: the buffer must outlive the count
            with img:
                try:
                    res = await loop.run_in_executor(executor, self._counter.count, img)
                except DecodeError as e:
                    self.failed += 1
                    log.error(f"[Process] counting failed url={url} error={e}")
                    continue
                except Exception as e:
                    # unexpected decoder/counter errors drop this image only
                    self.failed += 1
                    log.exception(f"[Process] counting crashed url={url} error={e!r}")
                    continue

            log.debug(f"[Process] image processed url={url} "
                      f"dur={time.monotonic() - started:.3f}s res={res.line().rstrip()}")

            if stats.add(size):
                self._report(log, stats, "+100 processed")
                stats.reset_window()

            try:
                self._output.save(res)
            except SinkError as e:
                log.error(f"[Process] result saving failed url={url} error={e}")
                continue

            if self._on_result is not None:
                self._on_result(res)
