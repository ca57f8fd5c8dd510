"""Shared test fixtures for daycompile tests."""

import io
import subprocess

import imageio_ffmpeg
import pytest
from PIL import Image

from daycompile.media import MediaEntry, MediaKind
from daycompile.timeline import RenderSettings

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

def _make_video_bytes(tmp_path, duration, size=(64, 48), fps=10, name="clip.mp4"):
    """Encode a synthetic test-pattern clip with ffmpeg and return its bytes."""
    out = tmp_path / name
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi",
            "-i", f"testsrc=size={size[0]}x{size[1]}:rate={fps}:duration={duration}",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out.read_bytes()


def _make_image_bytes(size=(80, 60), color=(200, 40, 40), fmt="PNG"):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_entry():
    return MediaEntry(kind=MediaKind.IMAGE, payload=_make_image_bytes())


@pytest.fixture
def short_video_entry(tmp_path):
    """3-second landscape clip."""
    return MediaEntry(
        kind=MediaKind.VIDEO,
        payload=_make_video_bytes(tmp_path, 3, name="short.mp4"),
    )


@pytest.fixture
def long_video_entry(tmp_path):
    """12-second landscape clip, longer than the 5s clip limit."""
    return MediaEntry(
        kind=MediaKind.VIDEO,
        payload=_make_video_bytes(tmp_path, 12, name="long.mp4"),
    )


@pytest.fixture
def corrupt_entries():
    """Five entries that no decoder accepts."""
    junk = b"\x00\x01not really media\xff" * 16
    return [
        MediaEntry(kind=MediaKind.IMAGE, payload=junk),
        MediaEntry(kind=MediaKind.VIDEO, payload=junk),
        MediaEntry(kind=MediaKind.IMAGE, payload=b""),
        MediaEntry(kind=MediaKind.VIDEO, payload=b""),
        MediaEntry(kind=MediaKind.IMAGE, payload=junk[:10]),
    ]


@pytest.fixture
def work_dir(tmp_path):
    """Parent directory for compilation workspaces; should end up empty."""
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def small():
    """Tiny portrait canvas so end-to-end tests encode in well under a second."""
    return RenderSettings(render_size=(36, 64), frame_rate=10)


@pytest.fixture
def video_bytes(tmp_path):
    """Factory: video_bytes(duration, size=(64, 48)) -> encoded mp4 bytes."""
    counter = iter(range(1000))

    def make(duration, size=(64, 48)):
        return _make_video_bytes(tmp_path, duration, size=size, name=f"v{next(counter)}.mp4")
    return make


@pytest.fixture
def image_bytes():
    """Factory: image_bytes(size=(80, 60), color=..., fmt="PNG") -> encoded bytes."""
    return _make_image_bytes
