import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

import pytest

from multinic.logsetup import JsonFormatter, initialize_logger


@pytest.fixture
def cleanup():
    yield
    log = logging.getLogger("multinic")
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()


def make_record(level, msg, args=(), exc_info=None):
    return logging.LogRecord(
        "multinic.test", level, "/src/pkg/module.py", 42, msg, args, exc_info
    )


def test_format_debug_record():
    out = json.loads(JsonFormatter().format(make_record(logging.DEBUG, "hello %s", ("world",))))
    assert out["level"] == "debug"
    assert out["msg"] == "hello world"
    assert out["caller"] == "pkg/module.py:42"
    assert "stacktrace" not in out


def test_format_timestamp_parses():
    out = json.loads(JsonFormatter().format(make_record(logging.INFO, "x")))
    ts = out["ts"].replace("Z", "+0000")
    parsed = datetime.strptime(ts, "%Y-%m-%dT%H:%M:%S.%f%z")
    assert parsed.year >= 2000
    assert out["level"] == "info"


def test_format_warning_level_name():
    out = json.loads(JsonFormatter().format(make_record(logging.WARNING, "w")))
    assert out["level"] == "warn"


def test_format_error_includes_stacktrace():
    try:
        raise ValueError("boom")
    except ValueError:
        import sys

        record = make_record(logging.ERROR, "failed", exc_info=sys.exc_info())
    out = json.loads(JsonFormatter().format(record))
    assert out["level"] == "error"
    assert "ValueError: boom" in out["stacktrace"]


def test_initialize_logger_writes_json_lines(tmp_path, cleanup):
    path = tmp_path / "plugin.log"
    log = initialize_logger(str(path))
    logging.getLogger("multinic.netconf").debug("routes %d", 2)
    for handler in log.handlers:
        handler.flush()
    lines = path.read_text().splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["msg"] == "routes 2"
    assert entry["level"] == "debug"


def test_initialize_logger_rotation_settings(tmp_path, cleanup):
    log = initialize_logger(str(tmp_path / "plugin.log"))
    assert len(log.handlers) == 1
    handler = log.handlers[0]
    assert isinstance(handler, RotatingFileHandler)
    assert handler.maxBytes == 500 * 1024 * 1024
    assert handler.backupCount == 3
    assert log.level == logging.DEBUG


def test_initialize_logger_twice_does_not_duplicate(tmp_path, cleanup):
    path = tmp_path / "plugin.log"
    initialize_logger(str(path))
    log = initialize_logger(str(path))
    log.info("once")
    for handler in log.handlers:
        handler.flush()
    lines = path.read_text().splitlines()
    assert [json.loads(line)["msg"] for line in lines] == ["once"]