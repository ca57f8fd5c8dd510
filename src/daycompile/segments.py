"""Segment normalizer — one media entry in, one timeline segment out.

Duration policy:
  - Stills play for a fixed IMAGE_DURATION.
  - Clips up to CLIP_MAX_DURATION play at their own length.
  - Longer clips are sped up to fit CLIP_MAX_DURATION exactly. The whole
    source is kept and played faster, nothing is truncated.

Entries that cannot be decoded are skipped, not fatal: the normalizer
returns a Skipped value and deletes anything it wrote for the entry.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .geometry import AffineTransform2D, compute_fill_transform
from .media import (
    MediaDecodeError,
    MediaEntry,
    MediaKind,
    SkipReason,
    Workspace,
    decode_image,
    probe_video,
)


logger = logging.getLogger(__name__)

IMAGE_DURATION = 2.0
CLIP_MAX_DURATION = 5.0


@dataclass(frozen=True)
class NormalizedSegment:
    """One entry's resolved placement on the output timeline."""

    source_ref: Path
    kind: MediaKind
    start_time: float
    render_duration: float
    fit_transform: AffineTransform2D
    speed_factor: float
    source_size: tuple[int, int]
    source_duration: float | None = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.render_duration


@dataclass(frozen=True)
class Skipped:
    """An entry that contributes no segment."""

    reason: SkipReason
    detail: str = ""


def resolve_clip_timing(
    source_duration: float, max_duration: float = CLIP_MAX_DURATION,
) -> tuple[float, float]:
    """Return (render_duration, speed_factor) for a clip.

    Short clips keep their length at normal speed. Long clips are
    time-compressed to exactly max_duration.
    """
    if source_duration <= max_duration:
        return source_duration, 1.0
    return max_duration, source_duration / max_duration


def normalize(
    entry: MediaEntry,
    workspace: Workspace,
    target_size: tuple[int, int],
    image_duration: float = IMAGE_DURATION,
    clip_max_duration: float = CLIP_MAX_DURATION,
) -> NormalizedSegment | Skipped:
    """Turn one media entry into a timeline segment starting at 0.

    The Timeline Builder moves the segment to its real start time.

    Args:
        entry: Image or video entry with raw payload bytes.
        workspace: Owns the decoded still / written payload file.
        target_size: Output canvas (width, height).
        image_duration: Fixed on-screen time for stills.
        clip_max_duration: Longest on-screen time for a clip.

    Returns:
        NormalizedSegment, or Skipped with the reason it was dropped.
    """
    if entry.kind is MediaKind.IMAGE:
        return _normalize_image(entry, workspace, target_size, image_duration)
    return _normalize_video(entry, workspace, target_size, clip_max_duration)


def _normalize_image(entry, workspace, target_size, image_duration):
    try:
        img = decode_image(entry.payload)
    except MediaDecodeError as exc:
        logger.warning("Skipping image entry: %s", exc)
        return Skipped(exc.reason, exc.detail)

    # Store the upright pixels so realization never re-reads EXIF.
    path = workspace.new_path(".png")
    try:
        img.save(path, format="PNG")
    except OSError as exc:
        workspace.discard(path)
        logger.warning("Skipping image entry, could not stage it: %s", exc)
        return Skipped(SkipReason.UNREADABLE, str(exc))

    size = (img.width, img.height)
    return NormalizedSegment(
        source_ref=path,
        kind=MediaKind.IMAGE,
        start_time=0.0,
        render_duration=image_duration,
        fit_transform=compute_fill_transform(size, 0, target_size),
        speed_factor=1.0,
        source_size=size,
    )


def _normalize_video(entry, workspace, target_size, clip_max_duration):
    path = None
    try:
        path = workspace.write(entry.payload, ".mp4")
        probe = probe_video(path)
        duration = probe.duration or entry.natural_duration
        if not duration or duration <= 0:
            raise MediaDecodeError(SkipReason.BAD_DURATION, str(duration))
    except MediaDecodeError as exc:
        workspace.discard(path)
        logger.warning("Skipping video entry: %s", exc)
        return Skipped(exc.reason, exc.detail)
    except OSError as exc:
        workspace.discard(path)
        logger.warning("Skipping video entry, could not stage it: %s", exc)
        return Skipped(SkipReason.UNREADABLE, str(exc))

    render_duration, speed = resolve_clip_timing(duration, clip_max_duration)
    size = (probe.width, probe.height)
    return NormalizedSegment(
        source_ref=path,
        kind=MediaKind.VIDEO,
        start_time=0.0,
        render_duration=render_duration,
        fit_transform=compute_fill_transform(size, probe.rotation, target_size),
        speed_factor=speed,
        source_size=size,
        source_duration=duration,
    )
