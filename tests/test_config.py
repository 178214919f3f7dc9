"""Tests for configuration loading and the command line parser."""

import json

import pytest

from colorcount.cli import build_parser, parse_args
from colorcount.config import Config, from_env, load_config
from colorcount.exceptions import ConfigError


def test_defaults_match_pipeline_defaults():
    cfg = Config().validate()
    assert cfg.max_conns_per_host == 32
    assert cfg.read_timeout == 8.0
    assert cfg.max_body_size == 16 * 1024 * 1024
    assert cfg.read_buffer_size == 6 * 1024 * 1024
    assert cfg.output_buffer_size == 10
    assert cfg.retry_interval == 0.025
    assert cfg.download_workers >= 1


@pytest.mark.parametrize("field, value", [
    ("download_workers", 0),
    ("process_workers", -1),
    ("max_conns_per_host", 0),
    ("read_timeout", 0),
    ("input_format", "xml"),
    ("counter", "fast"),
])
def test_validate_rejects(field, value):
    with pytest.raises(ConfigError):
        Config(**{field: value}).validate()


def test_env_values_are_coerced():
    env = {
        "COLORCOUNT_DOWNLOAD_WORKERS": "12",
        "COLORCOUNT_READ_TIMEOUT": "2.5",
        "COLORCOUNT_DEBUG": "true",
        "UNRELATED": "x",
    }
    cfg = load_config(environ=env)
    assert cfg.download_workers == 12
    assert cfg.read_timeout == 2.5
    assert cfg.debug is True
    assert from_env({"UNRELATED": "x"}) == {}


def test_bad_env_value():
    with pytest.raises(ConfigError):
        load_config(environ={"COLORCOUNT_PROCESS_WORKERS": "many"})


def test_precedence_env_json_cli(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"input": "from-json.txt", "dworkers": 5, "pworkers": 6}))
    env = {"COLORCOUNT_DOWNLOAD_WORKERS": "3", "COLORCOUNT_OUTPUT_PATH": "env.csv"}

    cfg = load_config({"process_workers": 9, "input_path": None}, config_file=str(path), environ=env)

    assert cfg.input_path == "from-json.txt"
    assert cfg.output_path == "env.csv"
    assert cfg.download_workers == 5
    assert cfg.process_workers == 9


def test_json_must_be_object(tmp_path):
    path = tmp_path / "run.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        load_config(config_file=str(path), environ={})


def test_parse_args(monkeypatch):
    monkeypatch.delenv("COLORCOUNT_DOWNLOAD_WORKERS", raising=False)
    cfg = parse_args(["--debug", "start", "-i", "urls.txt", "-o", "out.csv",
                      "-dw", "16", "-pw", "4", "--max_conns_per_host", "1",
                      "--counter", "pixels", "--no_overview"])
    assert cfg.input_path == "urls.txt"
    assert cfg.output_path == "out.csv"
    assert cfg.download_workers == 16
    assert cfg.process_workers == 4
    assert cfg.max_conns_per_host == 1
    assert cfg.counter == "pixels"
    assert cfg.debug is True
    assert cfg.overview is False
    assert cfg.progress is False


def test_parse_args_alias_and_defaults():
    cfg = parse_args(["s"])
    assert cfg.input_path == "input.txt"
    assert cfg.output_path == "result.csv"


def test_parse_args_requires_command():
    with pytest.raises(SystemExit):
        parse_args([])


def test_parse_args_rejects_invalid_values():
    with pytest.raises(SystemExit):
        parse_args(["start", "-dw", "0"])


def test_parser_has_version():
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["--version"])
    assert exc.value.code == 0
