"""Overlay layers drawn above the single video track.

Two kinds of layer:
  - Title: the date/title string, fades in over the first half second
    and stays up for the whole video.
  - Transition: a short partial dip to black centred on every boundary
    between two segments. It is a flat overlay on the one track, not a
    cross-dissolve between two sources.

Layers are purely descriptive (time range + opacity keyframes). The
export stage composites them per frame with apply_overlays_to_frame.
"""

import enum
from dataclasses import dataclass, replace

import numpy as np
from PIL import Image, ImageDraw

from .common import load_font
from .timeline import DEFAULT_SETTINGS, CompositionPlan, RenderSettings


# ── Constants ────────────────────────────────────────────────────

OVERLAY_MARGIN_FRAC = 0.06       # margin from edges as fraction of frame dimension
OVERLAY_BG_ALPHA = 120           # ~47% opacity behind the title text
TITLE_REF_H = 1920               # reference frame height for the sizes below
_REF_TITLE_FONT_SIZE = (72, 10)  # (value at reference height, floor)
_REF_PADDING_X = (36, 4)
_REF_PADDING_Y = (18, 2)
_REF_BORDER_RADIUS = (24, 2)


class OverlayKind(enum.Enum):
    TITLE = "title"
    TRANSITION = "transition"


@dataclass(frozen=True)
class OverlayLayer:
    """A timed visual element above the track.

    Keyframe times are relative to `start`. The layer is active on
    [start, end).
    """

    kind: OverlayKind
    start: float
    end: float
    keyframes: tuple[tuple[float, float], ...]
    text: str = ""


# ── Layer construction ───────────────────────────────────────────


def build_overlays(
    plan: CompositionPlan, settings: RenderSettings = DEFAULT_SETTINGS,
) -> tuple[OverlayLayer, ...]:
    """Build the title layer plus one transition per internal boundary.

    Args:
        plan: CompositionPlan with placed segments and a title.
        settings: RenderSettings for fade lengths.

    Returns:
        (title, transition_1, ..., transition_n-1) in that order.
    """
    layers = [
        OverlayLayer(
            kind=OverlayKind.TITLE,
            start=0.0,
            end=plan.total_duration,
            keyframes=((0.0, 0.0), (settings.title_fade, 1.0)),
            text=plan.title,
        )
    ]

    half = settings.transition_half
    # No transition after the last segment.
    for seg in plan.segments[:-1]:
        boundary = seg.start_time + seg.render_duration
        layers.append(
            OverlayLayer(
                kind=OverlayKind.TRANSITION,
                start=boundary - half,
                end=boundary + half,
                keyframes=(
                    (0.0, 0.0),
                    (half, settings.transition_peak),
                    (2 * half, 0.0),
                ),
            )
        )
    return tuple(layers)


def with_overlays(
    plan: CompositionPlan, settings: RenderSettings = DEFAULT_SETTINGS,
) -> CompositionPlan:
    """Return a copy of the plan carrying its overlay layers."""
    return replace(plan, overlay_layers=build_overlays(plan, settings))


def opacity_at(layer: OverlayLayer, t: float) -> float:
    """Linearly interpolated opacity of `layer` at absolute time t.

    Zero outside [start, end). Holds the last keyframe value after it.
    """
    if not (layer.start <= t < layer.end):
        return 0.0

    local = t - layer.start
    frames = layer.keyframes
    if local <= frames[0][0]:
        return frames[0][1]

    for (t0, v0), (t1, v1) in zip(frames, frames[1:]):
        if local <= t1:
            if t1 == t0:
                return v1
            return v0 + (v1 - v0) * (local - t0) / (t1 - t0)

    return frames[-1][1]


# ── Title rendering ──────────────────────────────────────────────


def _scale(ref_and_floor: tuple[int, int], frame_h: int) -> int:
    """Scale a reference pixel value to the current frame height."""
    ref_val, floor = ref_and_floor
    return max(floor, round(ref_val * frame_h / TITLE_REF_H))


def compute_overlay_position(
    position: str,
    patch_w: int,
    patch_h: int,
    frame_w: int,
    frame_h: int,
) -> tuple[int, int]:
    """Compute (x, y) for an overlay patch on a 3x3 grid.

    Margin is OVERLAY_MARGIN_FRAC of the frame dimension from each edge.

    Args:
        position: One of the 9 grid positions (e.g. "top-center").
        patch_w, patch_h: Rendered patch size.
        frame_w, frame_h: Target frame size.

    Returns:
        (x, y) top-left corner for placing the overlay.
    """
    margin_x = int(frame_w * OVERLAY_MARGIN_FRAC)
    margin_y = int(frame_h * OVERLAY_MARGIN_FRAC)

    vert, horiz = position.split("-", 1)
    if horiz == "left":
        x = margin_x
    elif horiz == "right":
        x = frame_w - margin_x - patch_w
    else:  # center
        x = (frame_w - patch_w) // 2

    if vert == "top":
        y = margin_y
    elif vert == "bottom":
        y = frame_h - margin_y - patch_h
    else:  # middle
        y = (frame_h - patch_h) // 2

    return x, y


def render_title_patch(
    text: str,
    frame_h: int,
    color: tuple[int, int, int],
    max_width: int | None = None,
) -> np.ndarray:
    """Render title text on a semi-transparent dark rounded background.

    Sizes scale with the output frame height. Text wider than max_width
    is truncated with an ellipsis.

    Returns:
        numpy array of shape (h, w, 4), dtype uint8 (RGBA).
    """
    font = load_font(_scale(_REF_TITLE_FONT_SIZE, frame_h))
    pad_x = _scale(_REF_PADDING_X, frame_h)
    pad_y = _scale(_REF_PADDING_Y, frame_h)

    draw_tmp = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    bbox = draw_tmp.textbbox((0, 0), text, font=font)
    if max_width:
        while (bbox[2] - bbox[0]) + 2 * pad_x > max_width and len(text) > 5:
            text = text[:-4] + "..."
            bbox = draw_tmp.textbbox((0, 0), text, font=font)

    patch_w = (bbox[2] - bbox[0]) + 2 * pad_x
    patch_h = (bbox[3] - bbox[1]) + 2 * pad_y

    img = Image.new("RGBA", (patch_w, patch_h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle(
        [(0, 0), (patch_w - 1, patch_h - 1)],
        radius=_scale(_REF_BORDER_RADIUS, frame_h),
        fill=(0, 0, 0, OVERLAY_BG_ALPHA),
    )
    # Offset by the bbox origin so glyph ascent padding doesn't shift text.
    draw.text((pad_x - bbox[0], pad_y - bbox[1]), text, fill=(*color, 255), font=font)
    return np.array(img)


@dataclass(frozen=True)
class PlacedPatch:
    """A pre-rendered RGBA patch and where it goes on the frame."""

    rgba: np.ndarray
    x: int
    y: int


def prepare_title(
    text: str, render_size: tuple[int, int], settings: RenderSettings,
) -> PlacedPatch | None:
    """Render the title once per export. None when there is no title text."""
    if not text:
        return None
    frame_w, frame_h = render_size
    max_w = frame_w - 2 * int(frame_w * OVERLAY_MARGIN_FRAC)
    patch = render_title_patch(text, frame_h, settings.title_color, max_width=max_w)
    patch_h, patch_w = patch.shape[:2]
    x, y = compute_overlay_position(
        settings.title_position, patch_w, patch_h, frame_w, frame_h,
    )
    # Clamp to frame bounds.
    x = max(0, min(x, frame_w - patch_w))
    y = max(0, min(y, frame_h - patch_h))
    return PlacedPatch(rgba=patch, x=x, y=y)


# ── Frame-level compositing ──────────────────────────────────────


def apply_overlays_to_frame(
    frame: np.ndarray,
    t: float,
    layers: tuple[OverlayLayer, ...],
    title: PlacedPatch | None,
) -> np.ndarray:
    """Composite every active layer onto one frame at time t.

    Layers are drawn in order. Transitions darken the whole frame by
    their opacity; the title patch is alpha-blended with its own alpha
    scaled by the layer opacity.

    Returns:
        New frame, same shape and dtype. The input is not mutated.
    """
    result = frame.astype(np.float32)
    frame_h, frame_w = frame.shape[:2]

    for layer in layers:
        alpha = opacity_at(layer, t)
        if alpha <= 0.0:
            continue

        if layer.kind is OverlayKind.TRANSITION:
            result *= 1.0 - alpha
        elif title is not None:
            patch = title.rgba
            ph = min(patch.shape[0], frame_h - title.y)
            pw = min(patch.shape[1], frame_w - title.x)
            if ph <= 0 or pw <= 0:
                continue
            a = patch[:ph, :pw, 3:4].astype(np.float32) / 255.0 * alpha
            rgb = patch[:ph, :pw, :3].astype(np.float32)
            region = result[title.y:title.y + ph, title.x:title.x + pw]
            result[title.y:title.y + ph, title.x:title.x + pw] = region * (1 - a) + rgb * a

    return np.clip(result, 0, 255).astype(np.uint8)
