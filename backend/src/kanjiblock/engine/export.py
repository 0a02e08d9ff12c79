"""Export — write rendered passes to PNG plus token-metadata JSON.

ExportManager renders a batch of blocks on a background thread with
progress and cancel. Each block is its own pass with its own generator, so
a batch running next to a live preview shares no pass state with it.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import sentry_sdk

from kanjiblock.blocks import BlockData
from kanjiblock.config import StyleConfig
from kanjiblock.diagnostics import log_context
from kanjiblock.engine.encode import encode_png
from kanjiblock.engine.pipeline import DEFAULT_RESOLUTION, RenderResult, run_pass
from kanjiblock.errors import KanjiBlockError
from kanjiblock.style.metadata import build_token_metadata

logger = logging.getLogger(__name__)


def export_pass(
    result: RenderResult, output_path: str | Path, style: dict | None = None
) -> tuple[Path, Path]:
    """Write result's frame to output_path and its metadata next to it.

    Returns (image_path, metadata_path).
    """
    image_path = Path(output_path)
    metadata_path = image_path.with_suffix(".json")
    image_path.write_bytes(encode_png(result.frame))
    metadata = build_token_metadata(result, style)
    metadata_path.write_text(
        json.dumps(metadata, indent=2, ensure_ascii=False), encoding="utf-8"
    )
    return image_path, metadata_path


def output_name(block: BlockData, index: int) -> str:
    if block.number is not None:
        return f"{block.number}.png"
    return f"block_{index:05d}.png"


class ExportStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class ExportJob:
    """Tracks state of a background batch export."""

    status: ExportStatus = ExportStatus.IDLE
    current_block: int = 0
    total_blocks: int = 0
    error: str | None = None
    output_dir: str = ""
    written: list[str] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _cancel_event: threading.Event = field(default_factory=threading.Event)
    _thread: threading.Thread | None = field(default=None, repr=False)

    @property
    def progress(self) -> float:
        if self.total_blocks == 0:
            return 0.0
        return self.current_block / self.total_blocks

    def cancel(self):
        self._cancel_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker thread exits. Returns False on timeout."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()


class ExportManager:
    """Manages background export jobs. One job at a time."""

    def __init__(self):
        self._job: ExportJob | None = None

    @property
    def job(self) -> ExportJob | None:
        return self._job

    def start(
        self,
        blocks: list[BlockData],
        output_dir: str,
        params: dict | None = None,
        *,
        width: int = DEFAULT_RESOLUTION[0],
        height: int = DEFAULT_RESOLUTION[1],
        config: StyleConfig | None = None,
        style: dict | None = None,
    ) -> ExportJob:
        """Start a background export. Returns the job for status tracking.

        Raises:
            RuntimeError: If an export is already running.
        """
        if self._job is not None and self._job.status == ExportStatus.RUNNING:
            raise RuntimeError("Export already in progress")

        job = ExportJob(output_dir=str(output_dir), total_blocks=len(blocks))
        self._job = job

        snapshot = (list(blocks), dict(params or {}))
        thread = threading.Thread(
            target=self._run_export,
            args=(job, *snapshot, width, height, config or StyleConfig(), style),
            daemon=True,
        )
        job._thread = thread
        job.status = ExportStatus.RUNNING
        thread.start()

        return job

    def _run_export(
        self,
        job: ExportJob,
        blocks: list[BlockData],
        params: dict,
        width: int,
        height: int,
        config: StyleConfig,
        style: dict | None,
    ):
        try:
            out_dir = Path(job.output_dir)
            for i, block in enumerate(blocks):
                if job._cancel_event.is_set():
                    with job._lock:
                        job.status = ExportStatus.CANCELLED
                    return

                try:
                    result = run_pass(
                        block, params, width=width, height=height, config=config
                    )
                except KanjiBlockError as e:
                    # Bad input for this block only; the rest of the batch is fine
                    logger.warning(
                        "Skipping block %s: %s",
                        block.number,
                        type(e).__name__,
                        extra=log_context(block_number=block.number),
                    )
                    with job._lock:
                        job.skipped.append(
                            {"index": i, "number": block.number, "error": str(e)}
                        )
                        job.current_block = i + 1
                    continue

                image_path, _ = export_pass(result, out_dir / output_name(block, i), style)
                with job._lock:
                    job.written.append(str(image_path))
                    job.current_block = i + 1

            with job._lock:
                job.status = ExportStatus.COMPLETE

        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Export failed")
            with job._lock:
                job.status = ExportStatus.ERROR
                job.error = f"Export failed: {type(e).__name__}"

    def get_status(self) -> dict:
        """Return serializable status dict."""
        if self._job is None:
            return {
                "status": ExportStatus.IDLE.value,
                "progress": 0.0,
                "current_block": 0,
                "total_blocks": 0,
            }
        with self._job._lock:
            return {
                "status": self._job.status.value,
                "progress": round(self._job.progress, 4),
                "current_block": self._job.current_block,
                "total_blocks": self._job.total_blocks,
                "output_dir": self._job.output_dir,
                "written": list(self._job.written),
                "skipped": list(self._job.skipped),
                "error": self._job.error,
            }

    def cancel(self) -> bool:
        """Cancel the running export. Returns True if a job was cancelled."""
        if self._job is None:
            return False
        with self._job._lock:
            if self._job.status == ExportStatus.RUNNING:
                self._job.cancel()
                return True
        return False
