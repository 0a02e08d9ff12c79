"""Tests for engine.export — PNG + metadata files, background batch export."""

import json
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from conftest import make_block
from kanjiblock.engine.encode import decode_image
from kanjiblock.engine.export import (
    ExportManager,
    ExportStatus,
    export_pass,
    output_name,
)
from kanjiblock.engine.pipeline import run_pass


@pytest.fixture
def opts(config):
    """Small canvas, drawing from the Latin test table."""
    return {"width": 64, "height": 64, "config": config}


def test_export_pass_writes_png_and_metadata(tmp_path, block, opts):
    result = run_pass(block, **opts)
    image_path, metadata_path = export_pass(
        result, tmp_path / "1.png", {"name": "Kanji", "description": "d"}
    )
    np.testing.assert_array_equal(decode_image(image_path.read_bytes()), result.frame)
    metadata = json.loads(metadata_path.read_text())
    assert metadata_path.suffix == ".json"
    assert metadata["name"] == "Kanji #1"
    assert {"trait_type": "kanji", "value": result.glyph} in metadata["attributes"]


def test_metadata_is_written_as_utf8(tmp_path, block, opts):
    result = replace(run_pass(block, **opts), glyph="一")
    original = Path.write_text
    encodings = []

    def recording_write_text(self, data, *args, **kwargs):
        encodings.append(kwargs.get("encoding"))
        return original(self, data, *args, **kwargs)

    with patch.object(Path, "write_text", recording_write_text):
        _, metadata_path = export_pass(result, tmp_path / "1.png")

    assert encodings == ["utf-8"]
    raw = metadata_path.read_bytes()
    assert "一".encode("utf-8") in raw
    metadata = json.loads(raw.decode("utf-8"))
    assert {"trait_type": "kanji", "value": "一"} in metadata["attributes"]


def test_export_is_byte_identical_across_runs(tmp_path, block, opts):
    a, _ = export_pass(run_pass(block, **opts), tmp_path / "a.png")
    b, _ = export_pass(run_pass(make_block(), **opts), tmp_path / "b.png")
    assert a.read_bytes() == b.read_bytes()


def test_output_name():
    assert output_name(make_block(number=46147), 3) == "46147.png"
    assert output_name(make_block(number=None), 3) == "block_00003.png"


def test_batch_export_completes(tmp_path, opts):
    blocks = [make_block(f"0x{i:064x}", number=i) for i in range(1, 5)]
    manager = ExportManager()
    job = manager.start(blocks, str(tmp_path), {"mod1": 0.5}, **opts)
    assert job.wait(timeout=30)
    assert job.status == ExportStatus.COMPLETE
    assert job.progress == 1.0
    for i in range(1, 5):
        assert (tmp_path / f"{i}.png").exists()
        assert (tmp_path / f"{i}.json").exists()
    status = manager.get_status()
    assert status["status"] == "complete"
    assert len(status["written"]) == 4
    assert status["skipped"] == []


def test_batch_export_skips_malformed_blocks(tmp_path, opts):
    blocks = [make_block("0xbad", number=1), make_block(number=2)]
    manager = ExportManager()
    job = manager.start(blocks, str(tmp_path), **opts)
    assert job.wait(timeout=30)
    assert job.status == ExportStatus.COMPLETE
    assert [s["number"] for s in job.skipped] == [1]
    assert not (tmp_path / "1.png").exists()
    assert (tmp_path / "2.png").exists()


def test_batch_export_matches_single_pass(tmp_path, block, opts):
    manager = ExportManager()
    job = manager.start([block], str(tmp_path), **opts)
    assert job.wait(timeout=30)
    exported = decode_image((tmp_path / "1.png").read_bytes())
    np.testing.assert_array_equal(exported, run_pass(block, **opts).frame)


def test_batch_export_missing_dir_errors(tmp_path, block, opts):
    manager = ExportManager()
    job = manager.start([block], str(tmp_path / "nope"), **opts)
    assert job.wait(timeout=30)
    assert job.status == ExportStatus.ERROR
    assert "FileNotFoundError" in job.error


def test_cancel_before_start_of_next_block(tmp_path, config):
    blocks = [make_block(f"0x{i:064x}", number=i) for i in range(1, 200)]
    manager = ExportManager()
    job = manager.start(blocks, str(tmp_path), width=256, height=256, config=config)
    assert manager.cancel() or job.status == ExportStatus.COMPLETE
    assert job.wait(timeout=60)
    assert job.status in (ExportStatus.CANCELLED, ExportStatus.COMPLETE)
    if job.status == ExportStatus.CANCELLED:
        assert job.current_block < len(blocks)


def test_second_start_while_running_rejected(tmp_path, opts, config):
    blocks = [make_block(f"0x{i:064x}", number=i) for i in range(1, 100)]
    manager = ExportManager()
    job = manager.start(blocks, str(tmp_path), width=256, height=256, config=config)
    try:
        if job.status == ExportStatus.RUNNING:
            with pytest.raises(RuntimeError, match="already in progress"):
                manager.start(blocks, str(tmp_path), **opts)
    finally:
        manager.cancel()
        job.wait(timeout=60)


def test_idle_status():
    status = ExportManager().get_status()
    assert status["status"] == "idle"
    assert ExportManager().cancel() is False
