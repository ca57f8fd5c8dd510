"""Input model and media decoding.

Log entries come from the app's entry store. The compiler only reads the
media kind and raw bytes. Category and description are display metadata
from the activity classifier, which is injected as an ActivityClassifier
rather than looked up globally.

Also contains the per-call Workspace that owns every temporary file the
pipeline writes (decoded stills, video payloads, intermediate clips).
"""

import enum
import io
import logging
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps
from moviepy.video.io.ffmpeg_reader import ffmpeg_parse_infos

from .geometry import normalize_orientation


logger = logging.getLogger(__name__)


class MediaKind(enum.Enum):
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def from_label(cls, label: str) -> "MediaKind":
        """Parse 'image' / 'video' (and the legacy 'photo' alias)."""
        value = label.strip().lower()
        if value == "photo":
            return cls.IMAGE
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown media kind: '{label}'. Valid: ['image', 'video']"
            ) from None


class WellnessCategory(enum.Enum):
    WORKOUT = "Workout"
    FOOD = "Food"
    SUPPLEMENTS = "Supplements"

    @classmethod
    def from_label(cls, label: str) -> "WellnessCategory":
        for member in cls:
            if member.value.lower() == label.strip().lower():
                return member
        raise ValueError(
            f"Unknown category: '{label}'. Valid: {[m.value for m in cls]}"
        )


@dataclass(frozen=True)
class MediaEntry:
    """One item to compile. Immutable once handed to the compiler."""

    kind: MediaKind
    payload: bytes
    natural_duration: float | None = None

    def __post_init__(self):
        if self.kind is MediaKind.IMAGE and self.natural_duration is not None:
            raise ValueError("natural_duration only applies to video entries")


@dataclass(frozen=True)
class LogEntry:
    """A logged activity as the entry store exposes it."""

    media_kind: MediaKind
    media_bytes: bytes
    captured_at: datetime | None = None
    category: WellnessCategory = WellnessCategory.FOOD
    description: str = ""

    def to_media_entry(self) -> MediaEntry:
        return MediaEntry(kind=self.media_kind, payload=self.media_bytes)


@dataclass(frozen=True)
class Classification:
    description: str
    category: WellnessCategory
    confidence: float = 0.0


class ActivityClassifier(Protocol):
    """Assigns a category and a short description to a media entry."""

    def classify(self, entry: MediaEntry) -> Classification: ...


def order_chronologically(entries: list[LogEntry]) -> list[LogEntry]:
    """Stable sort by capture time. Entries without a timestamp go last."""
    return sorted(
        entries,
        key=lambda e: (e.captured_at is None, e.captured_at or datetime.min),
    )


# ── Decoding ───────────────────────────────────────────────────────


class SkipReason(enum.Enum):
    UNREADABLE = "unreadable payload"
    NO_VIDEO_TRACK = "no video track"
    BAD_DURATION = "unknown or zero duration"
    BAD_SIZE = "unknown frame size"
    BAD_ORIENTATION = "unsupported orientation"


class MediaDecodeError(ValueError):
    """A payload that cannot be turned into a timeline segment."""

    def __init__(self, reason: SkipReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


@dataclass(frozen=True)
class ProbeResult:
    """Video metadata read from the container without decoding frames."""

    duration: float | None
    width: int
    height: int
    rotation: int
    fps: float | None


def decode_image(payload: bytes) -> Image.Image:
    """Decode image bytes into an upright RGB image.

    EXIF orientation is applied here, so every decoded still is 0 degrees.
    """
    try:
        img = Image.open(io.BytesIO(payload))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise MediaDecodeError(SkipReason.UNREADABLE, str(exc)) from exc

    if img.width <= 0 or img.height <= 0:
        raise MediaDecodeError(SkipReason.BAD_SIZE, f"{img.width}x{img.height}")
    return img.convert("RGB")


def probe_video(path: str | Path) -> ProbeResult:
    """Read duration, natural size and rotation of a video file.

    Size is the stored (pre-rotation) frame size. Rotation follows the
    container `rotate` convention (clockwise degrees) and is folded into
    (0, 90, -90, 180).
    """
    try:
        infos = ffmpeg_parse_infos(str(path))
    except (OSError, ValueError, KeyError, IndexError) as exc:
        raise MediaDecodeError(SkipReason.UNREADABLE, str(exc)) from exc

    if not infos.get("video_found"):
        raise MediaDecodeError(SkipReason.NO_VIDEO_TRACK, str(path))

    size = infos.get("video_size")
    if not size or size[0] <= 0 or size[1] <= 0:
        raise MediaDecodeError(SkipReason.BAD_SIZE, str(size))

    try:
        rotation = normalize_orientation(infos.get("video_rotation") or 0)
    except ValueError as exc:
        raise MediaDecodeError(SkipReason.BAD_ORIENTATION, str(exc)) from exc

    duration = infos.get("video_duration") or infos.get("duration")
    logger.debug(
        "Probed %s: %sx%s rot=%s dur=%s", path, size[0], size[1], rotation, duration,
    )
    return ProbeResult(
        duration=float(duration) if duration else None,
        width=int(size[0]),
        height=int(size[1]),
        rotation=rotation,
        fps=infos.get("video_fps"),
    )


# ── Workspace ──────────────────────────────────────────────────────


class Workspace:
    """Scoped temporary storage for one compilation.

    Every intermediate file lives under one TemporaryDirectory that is
    removed on exit, whatever the outcome. Files are also discarded one
    by one as soon as the pipeline has consumed them.
    """

    def __init__(self, parent: str | Path | None = None):
        self._tmp = tempfile.TemporaryDirectory(
            prefix="daycompile-", dir=str(parent) if parent else None,
        )
        self.root = Path(self._tmp.name)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()

    def cleanup(self) -> None:
        self._tmp.cleanup()

    def new_path(self, suffix: str, subdir: str | None = None) -> Path:
        """Reserve a unique file path inside the workspace."""
        base = self.root / subdir if subdir else self.root
        base.mkdir(parents=True, exist_ok=True)
        return base / f"{uuid.uuid4().hex}{suffix}"

    def write(self, payload: bytes, suffix: str) -> Path:
        path = self.new_path(suffix)
        path.write_bytes(payload)
        return path

    def discard(self, path: str | Path | None) -> None:
        """Delete one workspace file. Already-deleted files are fine."""
        if path is not None:
            Path(path).unlink(missing_ok=True)

    def files(self) -> list[Path]:
        """All files currently held, for tests and diagnostics."""
        return sorted(p for p in self.root.rglob("*") if p.is_file())
