"""End-to-end tests: entries in, one portrait mp4 out.

Uses a tiny canvas (36x64 at 10fps) so every compile encodes in well
under a second.
"""

import asyncio
import threading
from datetime import datetime

import imageio_ffmpeg
import numpy as np
import pytest

from daycompile import (
    Artifact,
    Failure,
    FailureKind,
    LogEntry,
    MediaKind,
    compile_day,
    compile_day_sync,
)
from daycompile.media import probe_video


def _first_frame(path, size):
    reader = imageio_ffmpeg.read_frames(str(path))
    try:
        next(reader)
        raw = next(reader)
    finally:
        reader.close()
    w, h = size
    return np.frombuffer(raw, dtype=np.uint8).reshape(h, w, 3)


class TestCompileDay:

    def test_mixed_day(self, tmp_path, work_dir, small, image_entry, short_video_entry):
        seen = []
        result = compile_day_sync(
            [image_entry, short_video_entry, image_entry],
            "Monday",
            settings=small,
            on_progress=seen.append,
            output_dir=tmp_path / "out",
            work_dir=work_dir,
        )
        assert isinstance(result, Artifact)
        assert result.path.exists()
        assert result.path.parent == tmp_path / "out"
        assert result.total_duration == pytest.approx(7.0, abs=0.1)
        assert [start for start, _ in result.timeline] == pytest.approx([0.0, 2.0, 5.0], abs=0.1)

        probe = probe_video(result.path)
        assert (probe.width, probe.height) == small.render_size
        assert probe.duration == pytest.approx(result.total_duration, abs=0.2)

        assert seen[0] == 0.0
        assert seen[-1] == 1.0
        assert seen == sorted(seen)
        # Workspace is gone.
        assert list(work_dir.iterdir()) == []

    def test_long_clip_is_compressed(self, tmp_path, work_dir, small, image_entry, long_video_entry):
        result = compile_day_sync(
            [image_entry, image_entry, image_entry, long_video_entry],
            settings=small,
            output_dir=tmp_path,
            work_dir=work_dir,
        )
        assert isinstance(result, Artifact)
        assert [d for _, d in result.timeline] == pytest.approx([2.0, 2.0, 2.0, 5.0])
        assert [s for s, _ in result.timeline] == pytest.approx([0.0, 2.0, 4.0, 6.0])
        assert result.total_duration == pytest.approx(11.0)

    def test_accepts_log_entries(self, tmp_path, work_dir, small, image_bytes):
        entries = [
            LogEntry(MediaKind.IMAGE, image_bytes(), captured_at=datetime(2025, 11, 17, 8)),
            LogEntry(MediaKind.IMAGE, image_bytes(color=(0, 0, 255))),
        ]
        result = compile_day_sync(entries, settings=small, output_dir=tmp_path, work_dir=work_dir)
        assert isinstance(result, Artifact)
        assert result.total_duration == 4.0

    def test_bad_entries_are_skipped(self, tmp_path, work_dir, small, image_entry, corrupt_entries):
        result = compile_day_sync(
            [corrupt_entries[0], image_entry, corrupt_entries[1]],
            settings=small, output_dir=tmp_path, work_dir=work_dir,
        )
        assert isinstance(result, Artifact)
        assert result.timeline == ((0.0, 2.0),)

    def test_same_input_same_output(self, tmp_path, work_dir, small, image_entry, short_video_entry):
        entries = [short_video_entry, image_entry]
        first = compile_day_sync(entries, "Title", settings=small, output_dir=tmp_path, work_dir=work_dir)
        second = compile_day_sync(entries, "Title", settings=small, output_dir=tmp_path, work_dir=work_dir)
        assert first.path != second.path
        assert first.timeline == second.timeline
        assert first.total_duration == second.total_duration
        assert probe_video(first.path).duration == pytest.approx(
            probe_video(second.path).duration, abs=0.05,
        )

    def test_async_entry_point(self, tmp_path, work_dir, small, image_entry):
        result = asyncio.run(compile_day(
            [image_entry], settings=small, output_dir=tmp_path, work_dir=work_dir,
        ))
        assert isinstance(result, Artifact)
        assert result.timeline == ((0.0, 2.0),)


class TestCompileDayFailures:

    def test_all_corrupt_never_encodes(self, tmp_path, work_dir, small, corrupt_entries, monkeypatch):
        import daycompile.export as export_mod

        calls = []
        monkeypatch.setattr(export_mod, "_encode", lambda *args: calls.append(args))
        seen = []
        out = tmp_path / "out"
        result = compile_day_sync(
            corrupt_entries, "Monday",
            settings=small, on_progress=seen.append, output_dir=out, work_dir=work_dir,
        )
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.NO_USABLE_MEDIA
        assert "No usable media" in result.reason
        assert calls == []
        assert not out.exists()
        assert max(seen) <= 0.8
        assert list(work_dir.iterdir()) == []

    def test_empty_input(self, tmp_path, work_dir, small):
        result = compile_day_sync([], settings=small, output_dir=tmp_path, work_dir=work_dir)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.NO_USABLE_MEDIA

    def test_cancelled_before_start(self, tmp_path, work_dir, small, image_entry):
        cancel = threading.Event()
        cancel.set()
        result = compile_day_sync(
            [image_entry], settings=small, cancel=cancel, output_dir=tmp_path, work_dir=work_dir,
        )
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.CANCELLED
        assert list(work_dir.iterdir()) == []

    def test_cancelled_between_segments(self, tmp_path, work_dir, small, image_entry):
        cancel = threading.Event()
        out = tmp_path / "out"

        def on_progress(frac):
            if frac >= 0.85:
                cancel.set()

        result = compile_day_sync(
            [image_entry, image_entry, image_entry],
            settings=small, on_progress=on_progress, cancel=cancel,
            output_dir=out, work_dir=work_dir,
        )
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.CANCELLED
        assert list(out.iterdir()) == []
        assert list(work_dir.iterdir()) == []

    def test_cancelled_while_encoding(self, tmp_path, work_dir, small, image_entry):
        cancel = threading.Event()
        out = tmp_path / "out"

        def on_progress(frac):
            if frac > 0.92:
                cancel.set()

        result = compile_day_sync(
            [image_entry, image_entry],
            settings=small, on_progress=on_progress, cancel=cancel,
            output_dir=out, work_dir=work_dir,
        )
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.CANCELLED
        assert list(out.iterdir()) == []

    def test_failed_segment_is_black(self, tmp_path, work_dir, small, image_bytes, monkeypatch):
        import daycompile.export as export_mod
        from daycompile.media import MediaEntry

        def broken(*args, **kwargs):
            raise OSError("decoder crashed")

        monkeypatch.setattr(export_mod, "realize_segment", broken)
        entry = MediaEntry(kind=MediaKind.IMAGE, payload=image_bytes(color=(250, 250, 250)))
        result = compile_day_sync(
            [entry, entry], settings=small, output_dir=tmp_path, work_dir=work_dir,
        )
        assert isinstance(result, Artifact)
        assert result.total_duration == 4.0
        frame = _first_frame(result.path, small.render_size)
        assert frame[45, 18].max() < 40
