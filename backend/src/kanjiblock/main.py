import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from kanjiblock._version import __version__
from kanjiblock.diagnostics import app_path, init_diagnostics
from kanjiblock.security import strip_pii
from kanjiblock.zmq_server import ZMQServer

# SEC-4: Resource limits (Linux/macOS only)
MAX_MEMORY_BYTES = 2 * 1024 * 1024 * 1024  # 2 GB


def _init_sentry():
    """Consent-gated Sentry init. Without consent the DSN stays empty (no-op)."""
    consent_path = app_path("telemetry_consent")
    dsn = ""
    if os.path.exists(consent_path) and Path(consent_path).read_text().strip() == "yes":
        dsn = os.environ.get("SENTRY_DSN", "")

    sentry_sdk.init(
        dsn=dsn,
        release=f"kanjiblock@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def _apply_resource_limits():
    """Apply SEC-4 memory limits. Skipped on Windows."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        resource.setrlimit(resource.RLIMIT_AS, (MAX_MEMORY_BYTES, hard))
    except (ImportError, ValueError, OSError):
        print("WARNING: Could not set memory limit (SEC-4)", file=sys.stderr)


def main():
    _init_sentry()
    init_diagnostics()
    _apply_resource_limits()
    server = ZMQServer()
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
