"""Security validation gates for kanjiblock."""

import json
import os
import re
from pathlib import Path

# SEC-1: Block file validation
MAX_BLOCK_FILE_SIZE = 16 * 1024 * 1024  # 16 MB
ALLOWED_BLOCK_EXTENSIONS = {".json"}

# SEC-2: Canvas size cap
MAX_CANVAS_EDGE = 4096

# SEC-3: Batch size cap for background export
MAX_BATCH_BLOCKS = 1000

ALLOWED_OUTPUT_EXTENSIONS = {".png"}
BLOCKED_OUTPUT_PREFIXES = (
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/private/var",
    "/private/etc",
)


def _unsafe_name(name: str) -> bool:
    return ".." in name or "/" in name or "\\" in name or "\x00" in name


def validate_block_file(path: str) -> list[str]:
    """Validate a block JSON file path. Returns list of errors (empty = valid).

    Checks (SEC-1):
    - Resolves under the user home directory
    - File exists
    - Not a symlink
    - .json extension
    - File size <= 16 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_BLOCK_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_BLOCK_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size > MAX_BLOCK_FILE_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB "
            f"(max {MAX_BLOCK_FILE_SIZE // (1024 * 1024)} MB)"
        )

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


def validate_canvas_size(width, height) -> list[str]:
    """Validate canvas dimensions against SEC-2 cap. Returns list of errors."""
    errors: list[str] = []
    for label, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"Canvas {label} must be an integer")
        elif not 1 <= value <= MAX_CANVAS_EDGE:
            errors.append(
                f"Canvas {label} {value} outside 1..{MAX_CANVAS_EDGE} (SEC-2)"
            )
    return errors


def validate_batch_size(blocks: list) -> list[str]:
    """Validate export batch length against SEC-3 cap. Returns list of errors."""
    errors: list[str] = []
    if not blocks:
        errors.append("Batch must contain at least one block")
    elif len(blocks) > MAX_BATCH_BLOCKS:
        errors.append(
            f"Batch of {len(blocks)} blocks exceeds maximum {MAX_BATCH_BLOCKS} (SEC-3)"
        )
    return errors


def validate_output_path(path: str, *, directory: bool = False) -> list[str]:
    """Validate an export output path. Returns list of errors (empty = valid).

    Checks:
    - Path is absolute
    - Not a system directory
    - Extension in whitelist (files only)
    - Parent directory (or the directory itself) exists and is writable
    - Filename is safe (no traversal)
    """
    errors: list[str] = []
    p = Path(path)

    if not p.is_absolute():
        errors.append("Output path must be absolute")
        return errors

    resolved = str(p.resolve())
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved.startswith(prefix):
            errors.append(f"Cannot write to system directory: {prefix}")
            return errors

    target = p if directory else p.parent
    if not directory:
        ext = p.suffix.lower()
        if ext not in ALLOWED_OUTPUT_EXTENSIONS:
            errors.append(f"Output extension '{ext}' not allowed.")
        if _unsafe_name(p.name):
            errors.append(f"Unsafe output filename: {p.name}")

    if not target.is_dir():
        errors.append(f"Output directory does not exist: {target}")
    elif not os.access(str(target), os.W_OK):
        errors.append(f"Output directory is not writable: {target}")

    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    if _HOME not in ("", "/"):
        event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
