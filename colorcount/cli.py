"""
colorcount command line.

Examples:
  colorcount start --input urls.txt --output result.csv
  colorcount --debug start -dw 64 -pw 8 --progress
  colorcount start --config run.json
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from tqdm import tqdm

from colorcount import __version__
from colorcount.cancel import CancelToken
from colorcount.config import COUNTER_NAMES, INPUT_FORMATS, Config, load_config
from colorcount.exceptions import ColorCountError
from colorcount.logs import configure_logging
from colorcount.runner import RunSummary, run, write_overview


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="colorcount",
        description="JPEG color counter: top-3 colors for every image URL in a list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--debug", action="store_true", default=None, help="debug mode activation")

    sub = p.add_subparsers(dest="command")
    s = sub.add_parser("start", aliases=["s"], help="start application")

    s.add_argument("--config", type=str, help="Path to JSON config file")

    # Input/Output
    s.add_argument("-i", "--input", dest="input_path", type=str, help="input file name (default input.txt)")
    s.add_argument("--input_format", type=str, choices=INPUT_FORMATS, default=None)
    s.add_argument("--url", dest="url_col", type=str, default=None, help="URL column for csv/parquet input")
    s.add_argument("-o", "--output", dest="output_path", type=str, help="output file name (default result.csv)")

    # Workers
    s.add_argument("-dw", "--dworkers", dest="download_workers", type=int, default=None,
                   help="amount of parallel download workers")
    s.add_argument("-pw", "--pworkers", dest="process_workers", type=int, default=None,
                   help="amount of parallel image processing workers")

    # Download settings
    s.add_argument("--max_conns_per_host", type=int, default=None)
    s.add_argument("--timeout", dest="read_timeout", type=float, default=None, help="read timeout, seconds")
    s.add_argument("--max_body_size", type=int, default=None)
    s.add_argument("--read_buffer_size", type=int, default=None)

    # Processing / output
    s.add_argument("--buffer_size", dest="output_buffer_size", type=int, default=None)
    s.add_argument("--counter", type=str, choices=COUNTER_NAMES, default=None)
    s.add_argument("--progress", action="store_true", default=None)
    s.add_argument("--no_overview", action="store_true")
    return p


def parse_args(argv: Optional[List[str]] = None) -> Config:
    """Parse command line arguments, merged over env vars and the JSON config."""
    p = build_parser()
    args = p.parse_args(argv)
    if args.command not in ("start", "s"):
        p.print_help()
        raise SystemExit(2)

    values = {k: v for k, v in vars(args).items() if k not in ("command", "config", "no_overview")}
    if args.no_overview:
        values["overview"] = False
    try:
        return load_config(values, config_file=args.config)
    except (ColorCountError, OSError, ValueError) as e:
        p.error(str(e))


def print_summary(summary: RunSummary) -> None:
    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"URLs read:             {summary.urls_read}")
    print(f"Downloaded:            {summary.downloaded}")
    print(f"Failed downloads:      {summary.download_failures}")
    print(f"Processed images:      {summary.processed}")
    print(f"Failed counts:         {summary.count_failures}")
    print(f"Records saved:         {summary.records_saved}")
    print(f"Elapsed time:          {summary.duration_sec:.2f}s")
    mb = summary.bytes_processed / 1e6
    print(f"Total processed:       {mb:.2f} MB")
    if summary.duration_sec > 0:
        print(f"Average speed:         {mb / summary.duration_sec:.2f} MB/s")
    if summary.cancelled:
        print("[Shutdown] Run was interrupted; output holds partial results")
    print("=" * 72)


async def main_async(cfg: Config) -> int:
    logger = configure_logging(cfg.debug)
    logger.info(f"[Run] colorcount {__version__} started")

    token = CancelToken()
    loop = asyncio.get_running_loop()

    def _on_signal(signame: str) -> None:
        logger.info(f"[Shutdown] signal {signame} captured. Attempting graceful shutdown...")
        token.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except NotImplementedError:
            # Windows event loops
            pass

    pbar = tqdm(desc="Processing", unit="img") if cfg.progress else None
    try:
        summary = await run(
            cfg,
            token,
            logger,
            on_result=(lambda _rec: pbar.update(1)) if pbar is not None else None,
        )
    except (ColorCountError, OSError, ValueError) as e:
        logger.error(f"[Run] failed error={e}")
        return 1
    finally:
        if pbar is not None:
            pbar.close()

    print_summary(summary)

    if cfg.overview:
        try:
            overview = write_overview(cfg, summary)
            print(f"[Report] Overview: {overview}")
        except OSError as e:
            print(f"[Report] Failed: {e}")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    cfg = parse_args(argv)
    return asyncio.run(main_async(cfg))


if __name__ == "__main__":
    sys.exit(main())
