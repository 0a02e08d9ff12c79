"""Diagnostics — structured logging, faulthandler, crash dumps.

Log records carry pass context (block number, seed) and request context
(command, message id) as JSON fields; build them with log_context() and
pass the result as `extra=`.

Layers:
1. JSON lines via RotatingFileHandler under ~/.kanjiblock/logs (plus optional stderr)
2. faulthandler: C-level crash tracebacks (OpenCV / Pillow segfaults)
3. sys.excepthook: unhandled exceptions → PII-stripped JSON crash dumps
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from pathlib import Path

from kanjiblock._version import __version__

logger = logging.getLogger(__name__)

APP_DIR = "~/.kanjiblock"
LOG_FILE_NAME = "sidecar.log"
FAULT_FILE_NAME = "sidecar_fault.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7

# Fields log_context() may set on a LogRecord; JSONFormatter emits them
CONTEXT_FIELDS = ("block_number", "seed", "cmd", "msg_id")


def app_path(*parts: str) -> str:
    return os.path.join(os.path.expanduser(APP_DIR), *parts)


def log_context(
    *,
    block_number: int | None = None,
    seed: int | None = None,
    cmd: str | None = None,
    msg_id: str | None = None,
) -> dict:
    """`extra=` mapping for a log call. Seeds are written as 16 hex digits."""
    context = {}
    if block_number is not None:
        context["block_number"] = block_number
    if seed is not None:
        context["seed"] = f"{seed:016x}"
    if cmd is not None:
        context["cmd"] = cmd
    if msg_id is not None:
        context["msg_id"] = msg_id
    return context


def _validate_log_dir(env_dir: str) -> str:
    """Log directory, confined to ~/.kanjiblock. Falls back to the default."""
    default = app_path("logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(os.path.expanduser(APP_DIR))
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside %s, using default", APP_DIR)
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with any context fields present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if hasattr(record, name)
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str, ensure_ascii=False)


def _prune(
    directory: str,
    pattern: str,
    *,
    keep: int | None = None,
    max_age_days: int | None = None,
):
    """Delete matching files beyond the newest `keep` or older than max_age_days."""
    try:
        files = sorted(
            Path(directory).glob(pattern),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )
        doomed = files[keep:] if keep is not None else []
        if max_age_days is not None:
            cutoff = time.time() - max_age_days * 86400
            doomed += [f for f in files if f.stat().st_mtime < cutoff]
        for f in doomed:
            f.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Pruning %s skipped: %s", directory, e)


def setup_structured_logging(
    log_dir: str | None = None, *, stderr: bool = False
) -> str:
    """Attach the rotating JSON log handler to the root logger.

    Args:
        log_dir: Override log directory (must be under ~/.kanjiblock).
        stderr:  Also emit plain-text records to stderr.

    Returns:
        The directory the log file is written to.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)
    _prune(resolved_dir, LOG_FILE_NAME + "*", max_age_days=MAX_LOG_AGE_DAYS)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILE_NAME),
        maxBytes=10_000_000,
        backupCount=7,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    level = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.addHandler(handler)

    if stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(console)

    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Enable faulthandler for C-level crash tracebacks.

    Writes to its own file; rotation of the main log would invalidate the
    descriptor faulthandler holds.
    """
    fault_path = os.path.join(log_dir, FAULT_FILE_NAME)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def build_crash_report(exc_type, exc_value, exc_tb) -> dict:
    """PII-stripped crash report for an unhandled exception."""
    from kanjiblock.security import strip_pii

    report = {
        "timestamp": datetime.datetime.now(tz=datetime.timezone.utc).strftime(
            "%Y%m%dT%H%M%SZ"
        ),
        "version": __version__,
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    # strip_pii expects the Sentry event shape
    return strip_pii({"extra": report}, {}).get("extra", report)


def write_crash_report(crash_dir: str, report: dict) -> Path:
    """Write a report readable only by the owner and prune old ones."""
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)
    path = Path(crash_dir) / f"crash_{report['timestamp']}.json"
    old_umask = os.umask(0o077)
    try:
        path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    finally:
        os.umask(old_umask)
    _prune(crash_dir, "crash_*.json", keep=MAX_CRASH_REPORTS)
    return path


def setup_excepthook(crash_dir: str | None = None):
    """Install sys.excepthook that writes structured crash dumps."""
    crash_dir = crash_dir or app_path("crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(crash_dir, build_crash_report(exc_type, exc_value, exc_tb))
        except Exception as e:
            # Never recurse into the hook; report and fall through
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics(*, stderr: bool = False):
    """Initialize all diagnostic layers. Call from main.py."""
    log_dir = setup_structured_logging(stderr=stderr)
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, version=%s", log_dir, __version__)
