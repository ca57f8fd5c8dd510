"""Tests for the export stage: failures, progress bridging, delivery."""

import asyncio
import threading
from datetime import date

import pytest

import daycompile.export as export_mod
from daycompile.export import (
    Artifact,
    EncodeProgressLogger,
    Failure,
    FailureKind,
    deliver,
    export,
)
from daycompile.media import Workspace
from daycompile.overlays import with_overlays
from daycompile.timeline import CompilationCancelled, ProgressTracker, build


def _plan(ws, entries, settings):
    plan = asyncio.run(build(entries, ws, title="Day", settings=settings))
    return with_overlays(plan, settings)


class TestEncodeProgressLogger:

    def test_reports_frame_fraction(self):
        seen = []
        logger = EncodeProgressLogger(seen.append)
        logger.bars["frame_index"] = {"total": 10}
        logger.bars_callback("frame_index", "index", 5)
        logger.bars_callback("frame_index", "total", 10)
        assert seen == [0.5]

    def test_ignores_bars_without_total(self):
        seen = []
        logger = EncodeProgressLogger(seen.append)
        logger.bars["chunk"] = {"total": None}
        logger.bars_callback("chunk", "index", 3)
        assert seen == []

    def test_raises_when_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        logger = EncodeProgressLogger(lambda f: None, cancel)
        logger.bars["frame_index"] = {"total": 10}
        with pytest.raises(CompilationCancelled):
            logger.bars_callback("frame_index", "index", 1)


class TestExportFailures:

    def test_encoder_unavailable(self, tmp_path, work_dir, small, image_entry, monkeypatch):
        def missing():
            raise RuntimeError("ffmpeg not found")

        monkeypatch.setattr(export_mod, "check_encoder", missing)
        with Workspace(work_dir) as ws:
            plan = _plan(ws, [image_entry], small)
            result = asyncio.run(export(plan, ws, settings=small, output_dir=tmp_path / "out"))
            assert isinstance(result, Failure)
            assert result.kind is FailureKind.ENCODER_SESSION
            assert "ffmpeg not found" in result.reason
            # Staged sources are released even though nothing was encoded.
            assert ws.files() == []

    def test_track_cannot_be_created(self, tmp_path, work_dir, small, image_entry):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        with Workspace(work_dir) as ws:
            plan = _plan(ws, [image_entry], small)
            result = asyncio.run(export(plan, ws, settings=small, output_dir=blocker / "out"))
            assert isinstance(result, Failure)
            assert result.kind is FailureKind.TRACK

    def test_encode_error_leaves_nothing_behind(self, tmp_path, work_dir, small, image_entry, monkeypatch):
        def broken(*args):
            raise OSError("disk full")

        monkeypatch.setattr(export_mod, "_encode", broken)
        out = tmp_path / "out"
        with Workspace(work_dir) as ws:
            plan = _plan(ws, [image_entry, image_entry], small)
            result = asyncio.run(export(plan, ws, settings=small, output_dir=out))
            assert isinstance(result, Failure)
            assert result.kind is FailureKind.ENCODE
            assert str(result) == "encode failed: disk full"
            assert ws.files() == []
        assert list(out.iterdir()) == []

    def test_encoder_library_error_is_encode_failure(self, tmp_path, work_dir, small, image_entry, monkeypatch):
        def broken(*args):
            raise ValueError("bad frame shape")

        monkeypatch.setattr(export_mod, "_encode", broken)
        out = tmp_path / "out"
        with Workspace(work_dir) as ws:
            plan = _plan(ws, [image_entry], small)
            result = asyncio.run(export(plan, ws, settings=small, output_dir=out))
            assert isinstance(result, Failure)
            assert result.kind is FailureKind.ENCODE
            assert "bad frame shape" in result.reason
            assert ws.files() == []
        assert list(out.iterdir()) == []

    def test_progress_covers_tail_of_range(self, tmp_path, work_dir, small, image_entry):
        seen = []
        tracker = ProgressTracker(seen.append)
        with Workspace(work_dir) as ws:
            plan = _plan(ws, [image_entry, image_entry], small)
            result = asyncio.run(export(
                plan, ws, settings=small, progress=tracker, output_dir=tmp_path,
            ))
        assert isinstance(result, Artifact)
        assert min(seen) >= 0.8
        assert seen == sorted(seen)
        assert seen[-1] == 1.0


class TestDeliver:

    def _artifact(self, tmp_path):
        src = tmp_path / "artifact.mp4"
        src.write_bytes(b"fake mp4")
        return Artifact(path=src, total_duration=2.0, timeline=((0.0, 2.0),))

    def test_to_directory_uses_dated_name(self, tmp_path):
        dest_dir = tmp_path / "videos"
        dest_dir.mkdir()
        dest = deliver(self._artifact(tmp_path), dest_dir)
        assert dest == dest_dir / f"day-{date.today().isoformat()}.mp4"
        assert dest.read_bytes() == b"fake mp4"

    def test_to_new_file_path(self, tmp_path):
        artifact = self._artifact(tmp_path)
        dest = deliver(artifact, tmp_path / "nested" / "monday.mp4")
        assert dest.read_bytes() == b"fake mp4"
        # The artifact itself stays where it was.
        assert artifact.path.exists()
