"""
Run configuration.

Values are resolved from, lowest to highest precedence: dataclass defaults,
COLORCOUNT_* environment variables, a JSON config file, command-line flags.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from colorcount.downloader import (
    DEFAULT_MAX_BODY_SIZE,
    DEFAULT_MAX_CONNS_PER_HOST,
    DEFAULT_READ_BUFFER_SIZE,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_RETRY_INTERVAL,
)
from colorcount.exceptions import ConfigError
from colorcount.sink import DEFAULT_BUFFER_LEN

ENV_PREFIX = "COLORCOUNT_"

INPUT_FORMATS = ("text", "csv", "parquet")
COUNTER_NAMES = ("pixels", "buffer")


def _cpu_count() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class Config:
    """Main application configuration."""
    input_path: str = "input.txt"
    output_path: str = "result.csv"

    input_format: str = "text"
    url_col: str = "url"

    download_workers: int = _cpu_count()
    process_workers: int = _cpu_count()

    # Downloader
    max_conns_per_host: int = DEFAULT_MAX_CONNS_PER_HOST
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE
    retry_interval: float = DEFAULT_RETRY_INTERVAL

    # Output
    output_buffer_size: int = DEFAULT_BUFFER_LEN
    counter: str = "buffer"

    # Reporting
    debug: bool = False
    progress: bool = False
    overview: bool = True

    def validate(self) -> "Config":
        """Return self, or raise ConfigError on the first invalid value."""
        for name in ("download_workers", "process_workers", "max_conns_per_host",
                     "max_body_size", "read_buffer_size", "output_buffer_size"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("read_timeout", "retry_interval"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.input_format not in INPUT_FORMATS:
            raise ConfigError(f"input_format must be one of {INPUT_FORMATS}, got '{self.input_format}'")
        if self.counter not in COUNTER_NAMES:
            raise ConfigError(f"counter must be one of {COUNTER_NAMES}, got '{self.counter}'")
        if not self.input_path:
            raise ConfigError("input_path is required")
        if not self.output_path:
            raise ConfigError("output_path is required")
        return self

    def merged(self, values: Mapping[str, Any]) -> "Config":
        """Copy with ``values`` applied; None values and unknown keys are ignored."""
        known = {f.name: f for f in fields(self)}
        changes = {}
        for key, value in values.items():
            if value is None or key not in known:
                continue
            changes[key] = _coerce(known[key].type, value, key)
        return replace(self, **changes)


def _coerce(type_name: Any, value: Any, key: str) -> Any:
    # field types are strings under postponed annotations
    type_name = getattr(type_name, "__name__", type_name)
    try:
        if type_name == "bool":
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r}") from e


def from_env(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Collect COLORCOUNT_<FIELD> variables, e.g. COLORCOUNT_DOWNLOAD_WORKERS."""
    environ = os.environ if environ is None else environ
    out = {}
    for f in fields(Config):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            out[f.name] = environ[key]
    return out


# JSON keys that differ from field names
JSON_ALIASES = {
    "input": "input_path",
    "output": "output_path",
    "url": "url_col",
    "dworkers": "download_workers",
    "pworkers": "process_workers",
    "timeout": "read_timeout",
    "buffer_size": "output_buffer_size",
}


def from_json(path: str) -> dict:
    """Load a JSON config file into field-name keyed values."""
    cfg_path = Path(path)
    with cfg_path.open("r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must hold a JSON object")
    return {JSON_ALIASES.get(k, k): v for k, v in data.items()}


def load_config(cli_values: Optional[Mapping[str, Any]] = None,
                config_file: Optional[str] = None,
                environ: Optional[Mapping[str, str]] = None) -> Config:
    cfg = Config().merged(from_env(environ))
    if config_file:
        cfg = cfg.merged(from_json(config_file))
    if cli_values:
        cfg = cfg.merged(cli_values)
    return cfg.validate()
