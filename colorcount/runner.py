"""
Wires the stages together and runs one batch.

    text/csv/parquet -> UrlSource -> MediaDownloader -> ImageProcessor -> BufferedCSV

The output is opened first so a bad destination fails fast. The URL source
is started before the downloader so a missing input file fails before any
worker is spawned. ``run`` returns once every processing worker has exited
and the output is flushed and closed.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from colorcount import __version__
from colorcount.buffers import BufferPool
from colorcount.cancel import CancelToken
from colorcount.config import Config
from colorcount.counter import make_counter
from colorcount.downloader import MediaDownloader
from colorcount.pipeline import ImageProcessor, ResultCallback, StatsCallback
from colorcount.sink import BufferedCSV
from colorcount.source import PlainTextUrlSource, TabularUrlSource, UrlSource


@dataclass
class RunSummary:
    """Outcome of one pipeline run."""
    started_at: float
    finished_at: float
    duration_sec: float
    urls_read: int
    urls_skipped: int
    downloaded: int
    download_failures: int
    connection_retries: int
    processed: int
    count_failures: int
    records_saved: int
    bytes_processed: int
    cancelled: bool

def build_source(cfg: Config, logger: logging.Logger) -> UrlSource:
    if cfg.input_format == "text":
        return PlainTextUrlSource(logger)
    return TabularUrlSource(logger, url_col=cfg.url_col, file_format=cfg.input_format)

async def run(
    cfg: Config,
    token: CancelToken,
    logger: logging.Logger,
    *,
    on_result: Optional[ResultCallback] = None,
    on_stats: Optional[StatsCallback] = None,
) -> RunSummary:
    """
    Run the whole pipeline for ``cfg``.

    Raises:
        SinkError: Output could not be opened, or the final flush/close failed
        OSError, ValueError: Input could not be opened or parsed
    """
    output = BufferedCSV(cfg.output_buffer_size)
    output.open(cfg.output_path)

    source = build_source(cfg, logger)
    try:
        source.start(token, cfg.input_path)
    except Exception:
        output.close()
        raise

    downloader = MediaDownloader(
        logger,
        source,
        max_conns_per_host=cfg.max_conns_per_host,
        read_timeout=cfg.read_timeout,
        read_buffer_size=cfg.read_buffer_size,
        max_body_size=cfg.max_body_size,
        retry_interval=cfg.retry_interval,
        pool=BufferPool(max_pooled=cfg.download_workers + cfg.process_workers + 10),
    )
    processor = ImageProcessor(
        logger,
        downloader,
        output,
        make_counter(cfg.counter),
        on_stats=on_stats,
        on_result=on_result,
    )

    started_at = time.time()
    started = time.monotonic()
    logger.info(f"[Run] processing started dworkers={cfg.download_workers} "
                f"pworkers={cfg.process_workers} input={cfg.input_path} output={cfg.output_path}")

    try:
        downloader.start(token, cfg.download_workers)
        await processor.start(token, cfg.process_workers)
        await downloader.wait()
        await source.wait()
    finally:
        output.close()

    duration = time.monotonic() - started
    logger.info(f"[Run] completed dur={duration:.3f}s processed={processor.processed}")

    return RunSummary(
        started_at=started_at,
        finished_at=time.time(),
        duration_sec=duration,
        urls_read=source.lines_passed,
        urls_skipped=source.lines_skipped,
        downloaded=downloader.downloaded,
        download_failures=downloader.failed,
        connection_retries=downloader.retries,
        processed=processor.processed,
        count_failures=processor.failed,
        records_saved=output.saved,
        bytes_processed=processor.bytes_processed,
        cancelled=token.cancelled,
    )

def write_overview(cfg: Config, summary: RunSummary) -> str:
    """Write a JSON overview next to the output file and return its path."""
    out = Path(cfg.output_path)
    overview_path = out.with_name(out.stem + "_overview.json")

    mb = summary.bytes_processed / 1e6
    report = {
        "colorcount_version": __version__,
        "script_inputs": {
            "input": cfg.input_path,
            "input_format": cfg.input_format,
            "output": cfg.output_path,
            "download_workers": cfg.download_workers,
            "process_workers": cfg.process_workers,
            "max_conns_per_host": cfg.max_conns_per_host,
            "read_timeout": cfg.read_timeout,
            "counter": cfg.counter,
        },
        "summary": {
            **asdict(summary),
            "processed_mb": round(mb, 3),
            "avg_speed_MBps": round(mb / summary.duration_sec, 3) if summary.duration_sec > 0 else 0.0,
        },
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    with overview_path.open("w") as f:
        json.dump(report, f, indent=2)

    return str(overview_path.resolve())
