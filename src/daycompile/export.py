"""Export pipeline — realize the plan and encode the final mp4.

Phases and their share of the progress range:
  1. Encoder check and track setup          (fatal on failure)
  2. Per-segment realization  [0.8, 0.9]    (a failing segment is skipped
     and its slot filled with black so every later timestamp holds)
  3. Concatenate, composite overlays, encode  [0.9, 1.0]  (fatal on failure)

Every intermediate file (staged sources, realized clips) is deleted as
soon as it has been consumed, and in a `finally` on every exit path. The
output is a fresh temporary mp4 that nothing else knows about. The caller
decides whether to deliver() it somewhere.
"""

import asyncio
import enum
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Union

import imageio_ffmpeg
from moviepy import ColorClip, VideoFileClip, concatenate_videoclips
from proglog import ProgressBarLogger

from .media import MediaDecodeError, Workspace
from .overlays import apply_overlays_to_frame, prepare_title
from .realize import realize_segment
from .segments import NormalizedSegment
from .timeline import (
    BUILD_SPAN,
    DEFAULT_SETTINGS,
    CompilationCancelled,
    CompositionPlan,
    ProgressTracker,
    RenderSettings,
    check_cancelled,
)


logger = logging.getLogger(__name__)

REALIZE_SPAN = 0.1
ENCODE_BASE = BUILD_SPAN + REALIZE_SPAN
ENCODE_SPAN = 1.0 - ENCODE_BASE
TRACK_DIR = "track"


class FailureKind(enum.Enum):
    NO_USABLE_MEDIA = "no usable media"
    TRACK = "track creation failed"
    ENCODER_SESSION = "encoder session failed"
    ENCODE = "encode failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Artifact:
    """A finished, playable video at a temporary location."""

    path: Path
    total_duration: float
    timeline: tuple[tuple[float, float], ...]


@dataclass(frozen=True)
class Failure:
    """Terminal failure. No partial artifact survives it."""

    kind: FailureKind
    reason: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.reason}"


ExportResult = Union[Artifact, Failure]


class EncodeProgressLogger(ProgressBarLogger):
    """Bridge moviepy's proglog frame bar to a [0, 1] callback.

    Also the only place the encoder loop can be interrupted: a set
    cancel event raises out of write_videofile on the next frame.
    """

    def __init__(
        self,
        on_fraction: Callable[[float], None],
        cancel: threading.Event | None = None,
    ):
        super().__init__()
        self._on_fraction = on_fraction
        self._cancel = cancel

    def bars_callback(self, bar, attr, value, old_value=None):
        check_cancelled(self._cancel)
        if attr != "index":
            return
        total = (self.bars.get(bar) or {}).get("total")
        if not total:
            return
        self._on_fraction(float(value) / float(total))


def check_encoder() -> str:
    """Return the ffmpeg executable. Raises RuntimeError if there is none."""
    return imageio_ffmpeg.get_ffmpeg_exe()


# ── Phases ─────────────────────────────────────────────────────────


def _realize_one(
    segment: NormalizedSegment,
    frame_count: int,
    workspace: Workspace,
    settings: RenderSettings,
) -> Path | None:
    """Realize one segment. Returns None when its slot should be black.

    The staged source is deleted here whatever happens.
    """
    if frame_count <= 0:
        workspace.discard(segment.source_ref)
        return None

    clip_path = workspace.new_path(".mp4", subdir=TRACK_DIR)
    try:
        return realize_segment(segment, frame_count, clip_path, settings)
    except (MediaDecodeError, OSError, ValueError) as exc:
        logger.warning(
            "Segment at %.2fs could not be assembled, filling %d frames with black: %s",
            segment.start_time, frame_count, exc,
        )
        workspace.discard(clip_path)
        return None
    finally:
        workspace.discard(segment.source_ref)


def _encode(
    plan: CompositionPlan,
    clips: list[tuple[Path | None, int]],
    output_path: Path,
    settings: RenderSettings,
    on_fraction: Callable[[float], None],
    cancel: threading.Event | None,
) -> None:
    """Concatenate realized clips, draw overlays per frame, write the mp4."""
    fps = plan.frame_rate
    opened = []
    parts = []
    try:
        for path, frame_count in clips:
            if frame_count <= 0:
                continue
            duration = frame_count / fps
            if path is None:
                parts.append(ColorClip(size=plan.render_size, color=(0, 0, 0), duration=duration))
            else:
                clip = VideoFileClip(str(path), audio=False)
                opened.append(clip)
                parts.append(clip.with_duration(duration))

        track = concatenate_videoclips(parts, method="chain")

        layers = plan.overlay_layers
        title = prepare_title(plan.title, plan.render_size, settings)

        def _apply_overlays(get_frame, t):
            return apply_overlays_to_frame(get_frame(t), t, layers, title)

        final = track.transform(_apply_overlays).with_duration(plan.total_frames / fps)
        final.write_videofile(
            str(output_path),
            fps=fps,
            codec=settings.codec,
            audio=False,
            preset=settings.preset,
            ffmpeg_params=[*settings.quality_params(), "-pix_fmt", settings.pix_fmt],
            logger=EncodeProgressLogger(on_fraction, cancel),
        )
    finally:
        for clip in opened:
            clip.close()


def _reserve_output(output_dir: str | Path | None) -> Path:
    if output_dir is not None:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        prefix="day-", suffix=".mp4", dir=str(output_dir) if output_dir else None,
    )
    os.close(fd)
    return Path(name)


# ── Entry point ────────────────────────────────────────────────────


async def export(
    plan: CompositionPlan,
    workspace: Workspace,
    *,
    settings: RenderSettings = DEFAULT_SETTINGS,
    progress: ProgressTracker | None = None,
    cancel: threading.Event | None = None,
    output_dir: str | Path | None = None,
) -> ExportResult:
    """Render a composition plan into one mp4.

    Segments are realized strictly in plan order, one at a time. Each is
    awaited in a worker thread, and cancellation is checked between them.
    A segment that cannot be assembled keeps its slot on the timeline as
    black frames, so later segments and overlays stay at their times.

    Args:
        plan: Plan with segments and (usually) overlay layers.
        workspace: Owns the staged sources referenced by the plan.
        settings: Encoder settings (codec, crf, preset, pixel format).
        progress: Receives [0.8, 1.0] during this phase, 1.0 on success.
        cancel: Optional event checked between segments and per encoded frame.
        output_dir: Where the temporary artifact is created.

    Returns:
        Artifact on success, Failure otherwise.
    """
    tracker = progress or ProgressTracker()
    clips: list[tuple[Path | None, int]] = []
    output_path: Path | None = None
    succeeded = False

    try:
        try:
            await asyncio.to_thread(check_encoder)
        except RuntimeError as exc:
            return Failure(FailureKind.ENCODER_SESSION, f"Could not start encoder: {exc}")

        try:
            (workspace.root / TRACK_DIR).mkdir(parents=True, exist_ok=True)
            output_path = _reserve_output(output_dir)
        except OSError as exc:
            return Failure(FailureKind.TRACK, f"Could not create output track: {exc}")

        realize_progress = tracker.span(BUILD_SPAN, REALIZE_SPAN)
        count = len(plan.segments)
        for i, segment in enumerate(plan.segments):
            check_cancelled(cancel)
            first, last = plan.frame_span(i)
            path = await asyncio.to_thread(
                _realize_one, segment, last - first, workspace, settings,
            )
            clips.append((path, last - first))
            realize_progress((i + 1) / count)

        check_cancelled(cancel)
        logger.info("Encoding %d segments to %s", count, output_path)
        try:
            await asyncio.to_thread(
                _encode, plan, clips, output_path, settings,
                tracker.span(ENCODE_BASE, ENCODE_SPAN), cancel,
            )
        except (CompilationCancelled, OSError):
            raise
        except Exception as exc:
            logger.exception("Encode failed")
            return Failure(FailureKind.ENCODE, str(exc) or type(exc).__name__)
        succeeded = True
    except CompilationCancelled:
        return Failure(FailureKind.CANCELLED, "Compilation was cancelled")
    except OSError as exc:
        logger.error("Encode failed: %s", exc)
        return Failure(FailureKind.ENCODE, str(exc))
    finally:
        for segment in plan.segments:
            workspace.discard(segment.source_ref)
        for path, _ in clips:
            workspace.discard(path)
        if not succeeded and output_path is not None:
            output_path.unlink(missing_ok=True)

    tracker.report(1.0)
    return Artifact(
        path=output_path,
        total_duration=plan.total_duration,
        timeline=plan.timing(),
    )


# ── Delivery side channel ──────────────────────────────────────────


def deliver(artifact: Artifact, destination: str | Path) -> Path:
    """Copy a finished artifact to where the user asked for it.

    A directory destination gets a dated file name. Errors are raised to
    the caller and do not affect the artifact itself.
    """
    dest = Path(destination)
    if dest.is_dir():
        dest = dest / f"day-{date.today().isoformat()}.mp4"
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(artifact.path, dest)
    return dest
