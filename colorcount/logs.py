"""Logging helpers: root configuration for the CLI and per-runner adapters."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(debug: bool = False, stream: Optional[Any] = None) -> logging.Logger:
    """
    Configure the root handler and return the application logger.

    Only the CLI calls this; library code receives a logger in its
    constructor and never touches global logging state.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=stream,
    )
    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    return logging.getLogger("colorcount")


class RunnerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the worker number."""

    def __init__(self, logger: logging.Logger, runner: int):
        super().__init__(logger, {"runner": runner})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]):
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"runner={self.extra['runner']} {msg}", kwargs
