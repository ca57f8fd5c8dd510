"""Segment realization — turn each planned segment into a canvas-sized clip.

Every segment becomes an intermediate mp4 at the output size and frame
rate, with exactly the number of frames its span on the timeline needs:

  - Stills are warped once and written as a constant-frame clip.
  - Videos are decoded *without* ffmpeg's auto-rotation, so the stored
    frame matches the fill transform computed from the natural size and
    rotation. Output frame k samples the source at k / fps * speed_factor,
    which plays long clips faster instead of cutting them.

Frames are pushed through a FrameSink: a bounded queue drained by a writer
thread that feeds ffmpeg's stdin. A full queue blocks the producer until
the encoder has taken more input.
"""

import logging
import queue
import threading
from pathlib import Path

import imageio_ffmpeg
import numpy as np
from PIL import Image

from .geometry import AffineTransform2D
from .media import MediaDecodeError, MediaKind, SkipReason
from .segments import NormalizedSegment
from .timeline import RenderSettings


logger = logging.getLogger(__name__)

_CLOSE = object()


class FrameSink:
    """Backpressured frame writer around imageio_ffmpeg.write_frames.

    Usage:
        with FrameSink(path, (w, h), fps=30) as sink:
            for frame in frames:
                sink.append(frame)

    append() blocks while `max_pending` frames are already waiting for the
    encoder. Errors raised on the writer thread resurface on the next
    append() or on close().
    """

    def __init__(
        self,
        path: str | Path,
        size: tuple[int, int],
        fps: int,
        codec: str = "libx264",
        quality_params: list[str] | None = None,
        pix_fmt: str = "yuv420p",
        max_pending: int = 8,
    ):
        self.path = Path(path)
        self.size = size
        self.frames_written = 0
        self._error: BaseException | None = None
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)

        self._writer = imageio_ffmpeg.write_frames(
            str(self.path),
            size,
            fps=fps,
            codec=codec,
            pix_fmt_in="rgb24",
            pix_fmt_out=pix_fmt,
            quality=None,
            macro_block_size=2,
            output_params=[*(quality_params or ["-crf", "20"]), "-an"],
        )
        # Starts the ffmpeg process; fails here if it cannot be launched.
        self._writer.send(None)

        self._thread = threading.Thread(
            target=self._drain, name=f"frame-sink-{self.path.stem}", daemon=True,
        )
        self._thread.start()

    def __enter__(self) -> "FrameSink":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _CLOSE:
                    return
                # After a failure keep consuming so producers never deadlock.
                if self._error is None:
                    self._writer.send(item)
                    self.frames_written += 1
            except OSError as exc:
                self._error = exc
            finally:
                self._queue.task_done()

    def append(self, frame: np.ndarray) -> None:
        """Queue one RGB frame, blocking until the encoder has room."""
        if self._error is not None:
            raise self._error
        h, w = frame.shape[:2]
        if (w, h) != tuple(self.size):
            raise ValueError(f"Frame is {w}x{h}, sink expects {self.size[0]}x{self.size[1]}")
        self._queue.put(np.ascontiguousarray(frame, dtype=np.uint8))

    def close(self) -> None:
        """Flush queued frames, finish the file and surface any writer error."""
        self._queue.put(_CLOSE)
        self._thread.join()
        self._writer.close()
        if self._error is not None:
            raise self._error

    def abort(self) -> None:
        """Stop writing after a producer-side failure. The file is unusable."""
        self._error = self._error or RuntimeError("frame sink aborted")
        self._queue.put(_CLOSE)
        self._thread.join()
        try:
            self._writer.close()
        except (OSError, RuntimeError) as exc:
            logger.debug("Ignoring ffmpeg shutdown error after abort: %s", exc)


# ── Frame warping ─────────────────────────────────────────────────


def warp_frame(
    frame: np.ndarray,
    transform: AffineTransform2D,
    render_size: tuple[int, int],
) -> np.ndarray:
    """Apply a fill transform to one source frame.

    Returns an RGB uint8 array of shape (render_h, render_w, 3).
    """
    img = Image.fromarray(frame)
    warped = img.transform(
        tuple(render_size),
        Image.Transform.AFFINE,
        data=transform.inverse_coefficients(),
        resample=Image.Resampling.BILINEAR,
    )
    return np.asarray(warped)


def source_frame_index(
    output_index: int, out_fps: float, src_fps: float, speed_factor: float,
) -> int:
    """Source frame shown at output frame `output_index` of a segment."""
    return int(output_index / out_fps * speed_factor * src_fps + 1e-6)


# ── Realization ──────────────────────────────────────────────────


def realize_image(
    segment: NormalizedSegment,
    frame_count: int,
    output_path: str | Path,
    settings: RenderSettings,
) -> Path:
    """Write a still as a constant-frame clip of `frame_count` frames."""
    with Image.open(segment.source_ref) as img:
        pixels = np.asarray(img.convert("RGB"))
    frame = warp_frame(pixels, segment.fit_transform, settings.render_size)

    with FrameSink(
        output_path, settings.render_size, settings.frame_rate,
        codec=settings.codec, quality_params=settings.quality_params(),
        pix_fmt=settings.pix_fmt,
    ) as sink:
        for _ in range(frame_count):
            sink.append(frame)
    return Path(output_path)


def realize_video(
    segment: NormalizedSegment,
    frame_count: int,
    output_path: str | Path,
    settings: RenderSettings,
) -> Path:
    """Resample a clip onto the output frame grid, time-scaled and warped.

    If the source runs out of frames early the last one is held.

    Raises:
        MediaDecodeError: The source yields no frames at all.
        OSError: ffmpeg failed while reading or writing.
    """
    src_w, src_h = segment.source_size
    frame_bytes = src_w * src_h * 3
    out_fps = settings.frame_rate

    reader = imageio_ffmpeg.read_frames(
        str(segment.source_ref), pix_fmt="rgb24", input_params=["-noautorotate"],
    )
    try:
        meta = next(reader)
        src_fps = meta.get("fps") or out_fps

        current_index = -1
        current_raw = None
        warped = None
        warped_index = -2

        with FrameSink(
            output_path, settings.render_size, out_fps,
            codec=settings.codec, quality_params=settings.quality_params(),
            pix_fmt=settings.pix_fmt,
        ) as sink:
            for k in range(frame_count):
                want = source_frame_index(k, out_fps, src_fps, segment.speed_factor)
                while current_index < want:
                    try:
                        current_raw = next(reader)
                    except StopIteration:
                        break
                    current_index += 1

                if current_raw is None:
                    raise MediaDecodeError(SkipReason.NO_VIDEO_TRACK, "no frames decoded")
                if len(current_raw) != frame_bytes:
                    raise MediaDecodeError(
                        SkipReason.BAD_SIZE,
                        f"decoded frame has {len(current_raw)} bytes, "
                        f"expected {src_w}x{src_h}",
                    )

                if warped_index != current_index:
                    pixels = np.frombuffer(current_raw, dtype=np.uint8).reshape(src_h, src_w, 3)
                    warped = warp_frame(pixels, segment.fit_transform, settings.render_size)
                    warped_index = current_index
                sink.append(warped)
    finally:
        reader.close()
    return Path(output_path)


def realize_segment(
    segment: NormalizedSegment,
    frame_count: int,
    output_path: str | Path,
    settings: RenderSettings,
) -> Path:
    """Dispatch on segment kind."""
    if segment.kind is MediaKind.IMAGE:
        return realize_image(segment, frame_count, output_path, settings)
    return realize_video(segment, frame_count, output_path, settings)
