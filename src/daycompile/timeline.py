"""Timeline builder — sequence normalized segments onto one track.

Walks the entries in caller order, normalizes each one and places it at
the running cursor. Segments never overlap and never leave gaps:

    segments[i + 1].start_time == segments[i].start_time + segments[i].render_duration

The result is a CompositionPlan: an immutable description of one output
video, built fresh for every call and never shared between calls.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable

from .geometry import AffineTransform2D
from .media import MediaEntry, Workspace
from .segments import CLIP_MAX_DURATION, IMAGE_DURATION, NormalizedSegment, normalize


logger = logging.getLogger(__name__)

# The build phase owns [0, BUILD_SPAN] of the progress range. Realization
# and the final encode share the rest.
BUILD_SPAN = 0.8


class NoUsableMediaError(Exception):
    """No entry could be decoded, so there is nothing to compile."""


class CompilationCancelled(Exception):
    """The caller's cancel event was set between two units of work."""


def check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CompilationCancelled("cancelled")


@dataclass(frozen=True)
class RenderSettings:
    """Fixed output recipe. Tests shrink size and fps through the same object."""

    render_size: tuple[int, int] = (1080, 1920)
    frame_rate: int = 30
    image_duration: float = IMAGE_DURATION
    clip_max_duration: float = CLIP_MAX_DURATION
    title_fade: float = 0.5
    transition_half: float = 0.3
    transition_peak: float = 0.3
    title_position: str = "top-center"
    title_color: tuple[int, int, int] = (255, 255, 255)
    codec: str = "libx264"
    crf: int = 20
    preset: str = "medium"
    pix_fmt: str = "yuv420p"

    def quality_params(self) -> list[str]:
        """ffmpeg rate-control flags for the configured codec."""
        if self.codec.endswith("_nvenc"):
            return ["-cq", str(self.crf)]
        return ["-crf", str(self.crf)]


DEFAULT_SETTINGS = RenderSettings()


@dataclass(frozen=True)
class LayerInstruction:
    """Which transform is active over which stretch of the track."""

    time_range: tuple[float, float]
    transform: AffineTransform2D


@dataclass(frozen=True)
class CompositionPlan:
    """Complete description of one output video."""

    render_size: tuple[int, int]
    frame_rate: int
    total_duration: float
    segments: tuple[NormalizedSegment, ...]
    overlay_layers: tuple = field(default_factory=tuple)
    title: str = ""

    def __post_init__(self):
        if not self.segments:
            raise ValueError("CompositionPlan needs at least one segment")

    def instructions(self) -> tuple[LayerInstruction, ...]:
        """One (time_range, transform) pair per segment, in track order."""
        return tuple(
            LayerInstruction((s.start_time, s.end_time), s.fit_transform)
            for s in self.segments
        )

    def frame_span(self, index: int) -> tuple[int, int]:
        """[first, last) output frame of segment `index` on the fps grid.

        Boundaries are rounded from absolute times, so spans tile the
        track exactly and add up to total_frames.
        """
        seg = self.segments[index]
        return (
            round(seg.start_time * self.frame_rate),
            round(seg.end_time * self.frame_rate),
        )

    @property
    def total_frames(self) -> int:
        return round(self.total_duration * self.frame_rate)

    def timing(self) -> tuple[tuple[float, float], ...]:
        """(start_time, render_duration) per segment."""
        return tuple((s.start_time, s.render_duration) for s in self.segments)


# ── Progress ───────────────────────────────────────────────────────


class ProgressTracker:
    """Forwards a monotonically non-decreasing fraction in [0, 1].

    Lower values than the last report are ignored, values are clamped.
    """

    def __init__(self, on_progress: Callable[[float], None] | None = None):
        self._on_progress = on_progress
        self._lock = threading.Lock()
        self.value = 0.0

    def report(self, fraction: float) -> None:
        fraction = min(1.0, max(0.0, fraction))
        with self._lock:
            if fraction < self.value:
                return
            self.value = fraction
        if self._on_progress:
            self._on_progress(fraction)

    def span(self, base: float, width: float) -> Callable[[float], None]:
        """Return a callback that maps [0, 1] onto [base, base + width]."""
        def cb(frac: float) -> None:
            self.report(base + min(1.0, max(0.0, frac)) * width)
        return cb


# ── Build ──────────────────────────────────────────────────────────


def place_segments(
    normalized: list[NormalizedSegment],
) -> tuple[tuple[NormalizedSegment, ...], float]:
    """Assign running start times. Returns (segments, total_duration)."""
    placed = []
    cursor = 0.0
    for seg in normalized:
        placed.append(replace(seg, start_time=cursor))
        cursor += seg.render_duration
    return tuple(placed), cursor


async def build(
    entries: list[MediaEntry],
    workspace: Workspace,
    *,
    title: str = "",
    settings: RenderSettings = DEFAULT_SETTINGS,
    progress: ProgressTracker | None = None,
    cancel: threading.Event | None = None,
) -> CompositionPlan:
    """Normalize every entry in order and lay them out on one track.

    Each decode runs in a worker thread, so the event loop stays free
    while ffmpeg probes a payload. After every entry (accepted or
    skipped) progress advances towards BUILD_SPAN.

    Raises:
        NoUsableMediaError: No entry produced a segment.
        CompilationCancelled: The cancel event was set between entries.
    """
    tracker = progress or ProgressTracker()
    total = len(entries)
    accepted = []

    for i, entry in enumerate(entries):
        check_cancelled(cancel)
        outcome = await asyncio.to_thread(
            normalize,
            entry,
            workspace,
            settings.render_size,
            settings.image_duration,
            settings.clip_max_duration,
        )
        if isinstance(outcome, NormalizedSegment):
            accepted.append(outcome)
        else:
            logger.info("Entry %d skipped (%s)", i, outcome.reason.value)
        tracker.report(BUILD_SPAN * (i + 1) / total)

    if not accepted:
        raise NoUsableMediaError(
            f"No usable media: none of the {total} entries could be decoded"
        )

    segments, total_duration = place_segments(accepted)
    logger.info(
        "Timeline: %d of %d entries, %.2fs", len(segments), total, total_duration,
    )
    return CompositionPlan(
        render_size=settings.render_size,
        frame_rate=settings.frame_rate,
        total_duration=total_duration,
        segments=segments,
        title=title,
    )
