"""Tests for the input model, media decoding and the workspace."""

import io
from datetime import datetime

import pytest
from PIL import Image

from daycompile.media import (
    LogEntry,
    MediaDecodeError,
    MediaEntry,
    MediaKind,
    SkipReason,
    WellnessCategory,
    Workspace,
    decode_image,
    order_chronologically,
    probe_video,
)


class TestLabels:

    def test_media_kind_labels(self):
        assert MediaKind.from_label("image") is MediaKind.IMAGE
        assert MediaKind.from_label(" Video ") is MediaKind.VIDEO
        assert MediaKind.from_label("photo") is MediaKind.IMAGE

    def test_unknown_media_kind(self):
        with pytest.raises(ValueError, match="Unknown media kind"):
            MediaKind.from_label("audio")

    def test_category_labels_are_case_insensitive(self):
        assert WellnessCategory.from_label("workout") is WellnessCategory.WORKOUT
        assert WellnessCategory.from_label("SUPPLEMENTS") is WellnessCategory.SUPPLEMENTS

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="Unknown category"):
            WellnessCategory.from_label("Sleep")


class TestEntries:

    def test_image_rejects_natural_duration(self):
        with pytest.raises(ValueError, match="natural_duration"):
            MediaEntry(kind=MediaKind.IMAGE, payload=b"x", natural_duration=2.0)

    def test_video_accepts_natural_duration(self):
        entry = MediaEntry(kind=MediaKind.VIDEO, payload=b"x", natural_duration=7.5)
        assert entry.natural_duration == 7.5

    def test_log_entry_reduces_to_kind_and_bytes(self):
        log = LogEntry(
            media_kind=MediaKind.VIDEO,
            media_bytes=b"abc",
            category=WellnessCategory.WORKOUT,
            description="Morning run",
        )
        assert log.to_media_entry() == MediaEntry(kind=MediaKind.VIDEO, payload=b"abc")

    def test_order_chronologically_puts_undated_last(self):
        a = LogEntry(MediaKind.IMAGE, b"a", captured_at=datetime(2025, 1, 1, 12))
        b = LogEntry(MediaKind.IMAGE, b"b", captured_at=datetime(2025, 1, 1, 8))
        c = LogEntry(MediaKind.IMAGE, b"c")
        d = LogEntry(MediaKind.IMAGE, b"d")
        ordered = order_chronologically([c, a, d, b])
        assert [e.media_bytes for e in ordered] == [b"b", b"a", b"c", b"d"]


class TestDecodeImage:

    def test_decodes_png(self, image_bytes):
        img = decode_image(image_bytes(size=(80, 60)))
        assert img.mode == "RGB"
        assert img.size == (80, 60)

    def test_applies_exif_orientation(self):
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW on display
        buf = io.BytesIO()
        Image.new("RGB", (80, 60), (0, 128, 0)).save(buf, format="JPEG", exif=exif.tobytes())
        img = decode_image(buf.getvalue())
        assert img.size == (60, 80)

    def test_garbage_is_unreadable(self):
        with pytest.raises(MediaDecodeError) as info:
            decode_image(b"definitely not an image")
        assert info.value.reason is SkipReason.UNREADABLE

    def test_decode_error_is_value_error(self):
        with pytest.raises(ValueError):
            decode_image(b"")


class TestProbeVideo:

    def test_probes_duration_and_size(self, tmp_path, video_bytes):
        path = tmp_path / "probe.mp4"
        path.write_bytes(video_bytes(2, size=(64, 48)))
        probe = probe_video(path)
        assert probe.duration == pytest.approx(2.0, abs=0.1)
        assert (probe.width, probe.height) == (64, 48)
        assert probe.rotation == 0

    def test_garbage_raises_decode_error(self, tmp_path):
        path = tmp_path / "junk.mp4"
        path.write_bytes(b"\x00" * 512)
        with pytest.raises(MediaDecodeError):
            probe_video(path)


class TestWorkspace:

    def test_new_paths_are_unique(self, work_dir):
        with Workspace(work_dir) as ws:
            a = ws.new_path(".mp4")
            b = ws.new_path(".mp4")
            assert a != b
            assert a.parent == ws.root

    def test_subdir_is_created(self, work_dir):
        with Workspace(work_dir) as ws:
            path = ws.new_path(".mp4", subdir="track")
            assert path.parent.is_dir()
            assert path.parent.name == "track"

    def test_write_and_discard(self, work_dir):
        with Workspace(work_dir) as ws:
            path = ws.write(b"payload", ".bin")
            assert ws.files() == [path]
            ws.discard(path)
            ws.discard(path)  # already gone is fine
            ws.discard(None)
            assert ws.files() == []

    def test_removed_on_exit_even_after_error(self, work_dir):
        with pytest.raises(RuntimeError):
            with Workspace(work_dir) as ws:
                ws.write(b"payload", ".bin")
                raise RuntimeError("boom")
        assert list(work_dir.iterdir()) == []
