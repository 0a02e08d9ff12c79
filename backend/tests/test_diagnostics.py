"""Tests for diagnostics — crash handler, structured logging, faulthandler."""

import json
import logging
import os
import sys
from unittest.mock import patch

import pytest

from kanjiblock.diagnostics import (
    MAX_CRASH_REPORTS,
    JSONFormatter,
    _prune,
    _validate_log_dir,
    build_crash_report,
    log_context,
    setup_excepthook,
    write_crash_report,
)

pytestmark = pytest.mark.smoke


@pytest.fixture
def crash_dir(tmp_path):
    d = tmp_path / "crash_reports"
    d.mkdir()
    return d


@pytest.fixture(autouse=True)
def _restore_excepthook():
    original = sys.excepthook
    yield
    sys.excepthook = original


def _exc_info(exc):
    try:
        raise exc
    except type(exc):
        return sys.exc_info()


def test_excepthook_writes_crash_json(crash_dir):
    setup_excepthook(str(crash_dir))
    with patch("sys.__excepthook__") as mock_orig:
        sys.excepthook(*_exc_info(ValueError("test crash")))
        mock_orig.assert_called_once()

    crash_files = list(crash_dir.glob("crash_*.json"))
    assert len(crash_files) == 1
    data = json.loads(crash_files[0].read_text())
    assert data["exception_type"] == "ValueError"
    assert data["exception_message"] == "test crash"
    assert crash_files[0].stat().st_mode & 0o777 == 0o600


def test_crash_report_strips_home():
    home = os.path.expanduser("~")
    if home in ("", "/"):
        pytest.skip("no distinct home directory")
    report = build_crash_report(
        *_exc_info(FileNotFoundError(f"{home}/blocks/secret.json"))
    )
    assert home not in json.dumps(report)
    assert "<HOME>" in report["exception_message"]


def test_old_crash_reports_cleaned_up(crash_dir):
    """Only MAX_CRASH_REPORTS newest files are kept."""
    for i in range(10):
        f = crash_dir / f"crash_2024010{i}T000000Z.json"
        f.write_text("{}")
        os.utime(f, (1704067200 + i * 3600, 1704067200 + i * 3600))

    _prune(str(crash_dir), "crash_*.json", keep=MAX_CRASH_REPORTS)

    remaining = sorted(p.name for p in crash_dir.glob("crash_*.json"))
    assert len(remaining) == 5
    assert remaining[0] == "crash_20240105T000000Z.json"


def test_crash_handler_self_failure_doesnt_recurse(crash_dir):
    setup_excepthook(str(crash_dir))
    with patch(
        "kanjiblock.diagnostics.os.makedirs", side_effect=PermissionError("denied")
    ):
        with patch("sys.__excepthook__") as mock_orig:
            sys.excepthook(*_exc_info(RuntimeError("original error")))
            mock_orig.assert_called_once()


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord(
        "kanjiblock.engine.pipeline", logging.INFO, __file__, 1,
        "Render pass for block %s", (42,), None,
    )
    record.block_number = 42
    record.cmd = "render"
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Render pass for block 42"
    assert entry["level"] == "INFO"
    assert entry["block_number"] == 42
    assert entry["cmd"] == "render"
    assert "seed" not in entry


def test_json_formatter_exception():
    record = logging.LogRecord(
        "kanjiblock", logging.ERROR, __file__, 1, "boom", (), _exc_info(KeyError("x"))
    )
    entry = json.loads(JSONFormatter().format(record))
    assert entry["exception"]["type"] == "KeyError"
    assert "Traceback" in entry["exception"]["traceback"]


def test_app_log_dir_outside_app_dir_rejected():
    result = _validate_log_dir("/tmp/evil/logs")
    assert result == os.path.expanduser("~/.kanjiblock/logs")


def test_app_log_dir_inside_app_dir_accepted():
    test_dir = os.path.expanduser("~/.kanjiblock/custom-logs")
    assert _validate_log_dir(test_dir) == os.path.realpath(test_dir)


def test_empty_log_dir_is_default():
    assert _validate_log_dir("") == os.path.expanduser("~/.kanjiblock/logs")


def test_write_crash_report_prunes(crash_dir):
    for i in range(MAX_CRASH_REPORTS):
        f = crash_dir / f"crash_2024010{i}T000000Z.json"
        f.write_text("{}")
        os.utime(f, (1704067200 + i * 3600, 1704067200 + i * 3600))
    report = build_crash_report(*_exc_info(RuntimeError("late")))
    path = write_crash_report(str(crash_dir), report)
    assert path.exists()
    assert len(list(crash_dir.glob("crash_*.json"))) == MAX_CRASH_REPORTS
    assert not (crash_dir / "crash_20240100T000000Z.json").exists()
    assert json.loads(path.read_text(encoding="utf-8"))["version"]


def test_old_logs_pruned_by_age(tmp_path):
    old = tmp_path / "sidecar.log.3"
    old.write_text("")
    os.utime(old, (1704067200, 1704067200))
    fresh = tmp_path / "sidecar.log"
    fresh.write_text("")
    _prune(str(tmp_path), "sidecar.log*", max_age_days=7)
    assert not old.exists()
    assert fresh.exists()


def test_log_context_formats_seed_and_drops_unset():
    assert log_context(block_number=46147, seed=0x1234567890ABCDEF) == {
        "block_number": 46147,
        "seed": "1234567890abcdef",
    }
    assert log_context(seed=5) == {"seed": "0000000000000005"}
    assert log_context(cmd="render", msg_id="m1") == {"cmd": "render", "msg_id": "m1"}
    assert log_context() == {}


def test_log_context_fields_reach_json_line(tmp_path):
    log_path = tmp_path / "sidecar.log"
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    test_logger = logging.getLogger("kanjiblock.test_context")
    test_logger.addHandler(handler)
    test_logger.setLevel(logging.INFO)
    try:
        test_logger.info(
            "Render pass for block %s",
            7,
            extra=log_context(block_number=7, seed=255, cmd="render", msg_id="abc"),
        )
    finally:
        test_logger.removeHandler(handler)
        handler.close()

    entry = json.loads(log_path.read_text(encoding="utf-8").splitlines()[0])
    assert entry["block_number"] == 7
    assert entry["seed"] == "00000000000000ff"
    assert entry["cmd"] == "render"
    assert entry["msg_id"] == "abc"
