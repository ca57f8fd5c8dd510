"""Fill-transform geometry for placing source frames on the portrait canvas.

Everything here is pure: no I/O, no moviepy, no Pillow. The export stage
turns an AffineTransform2D into Pillow affine coefficients and warps each
frame with it.

Coordinate system: image space, origin top-left, y pointing down. A
rotation of +90 is a clockwise quarter turn as seen on screen, which is
how container `rotate` metadata is expressed.

The scaled source always covers the whole target frame (aspect fill).
Edges may be cropped, the frame is never letterboxed.
"""

from dataclasses import dataclass


VALID_ORIENTATIONS = (0, 90, -90, 180)

# Exact (cos, sin) per orientation. Avoids float noise from math.cos(pi/2).
_COS_SIN = {
    0: (1, 0),
    90: (0, 1),
    -90: (0, -1),
    180: (-1, 0),
}


@dataclass(frozen=True)
class AffineTransform2D:
    """Uniform scale + quarter-turn rotation + translation.

    Maps a source pixel (x, y) to the target frame:

        x' = scale * (cos * x - sin * y) + tx
        y' = scale * (sin * x + cos * y) + ty

    Never mutated once built. If inputs change, compute a new one.
    """

    scale: float
    rotation: int
    translation: tuple[float, float]

    def __post_init__(self):
        if self.rotation not in _COS_SIN:
            raise ValueError(
                f"Unsupported rotation {self.rotation!r}. "
                f"Valid: {list(VALID_ORIENTATIONS)}"
            )

    @property
    def matrix(self) -> tuple[tuple[float, float, float], tuple[float, float, float]]:
        """Forward 2x3 matrix ((a, b, tx), (c, d, ty))."""
        cos, sin = _COS_SIN[self.rotation]
        s = self.scale
        tx, ty = self.translation
        return ((s * cos, -s * sin, tx), (s * sin, s * cos, ty))

    def apply(self, point: tuple[float, float]) -> tuple[float, float]:
        """Map a source-space point into target space."""
        (a, b, tx), (c, d, ty) = self.matrix
        x, y = point
        return (a * x + b * y + tx, c * x + d * y + ty)

    def bounding_box(
        self, source_size: tuple[float, float],
    ) -> tuple[float, float, float, float]:
        """Target-space (left, top, right, bottom) of a transformed source frame."""
        w, h = source_size
        corners = [self.apply(p) for p in ((0, 0), (w, 0), (0, h), (w, h))]
        xs = [x for x, _ in corners]
        ys = [y for _, y in corners]
        return (min(xs), min(ys), max(xs), max(ys))

    def inverse_coefficients(self) -> tuple[float, float, float, float, float, float]:
        """Target-to-source coefficients for Pillow's AFFINE transform.

        Pillow asks for the inverse map: for each output pixel (x', y')
        it samples the input at (a*x' + b*y' + c, d*x' + e*y' + f).
        """
        cos, sin = _COS_SIN[self.rotation]
        s = self.scale
        tx, ty = self.translation
        return (
            cos / s, sin / s, -(cos * tx + sin * ty) / s,
            -sin / s, cos / s, (sin * tx - cos * ty) / s,
        )


def normalize_orientation(degrees: float) -> int:
    """Fold container rotation metadata into one of (0, 90, -90, 180).

    270 and -270 are the same quarter turns as -90 and 90. Anything that
    is not a multiple of 90 is rejected.
    """
    turned = round(degrees) % 360
    if turned == 0:
        return 0
    if turned == 90:
        return 90
    if turned == 180:
        return 180
    if turned == 270:
        return -90
    raise ValueError(f"Unsupported orientation: {degrees!r} degrees")


def effective_size(
    source_size: tuple[float, float], orientation: int,
) -> tuple[float, float]:
    """Displayed (width, height) once the orientation is applied."""
    w, h = source_size
    if orientation in (90, -90):
        return (h, w)
    return (w, h)


def compute_fill_transform(
    source_size: tuple[float, float],
    orientation: int,
    target_size: tuple[float, float],
) -> AffineTransform2D:
    """Compute the aspect-fill transform from a source frame into the target.

    Steps: correct the orientation, scale by the larger of the two axis
    ratios so the target is fully covered, then centre. The centring
    offset is split into a pre-scale part, which brings the rotated frame
    back into the positive quadrant, and the post-scale crop offset.

    Each orientation has its own branch with its own pre-scale translation.

    Args:
        source_size: Natural (width, height) of the stored frame, > 0.
        orientation: Clockwise display rotation: 0, 90, -90 or 180.
        target_size: Output canvas (width, height).

    Returns:
        AffineTransform2D mapping stored source pixels onto the canvas.
    """
    w, h = source_size
    target_w, target_h = target_size
    eff_w, eff_h = effective_size(source_size, orientation)

    scale = max(target_w / eff_w, target_h / eff_h)

    # Crop offsets: non-positive on the overflowing axis, zero on the other.
    off_x = (target_w - eff_w * scale) / 2
    off_y = (target_h - eff_h * scale) / 2

    if orientation == 0:
        # Scale, then shift by the crop offset.
        pre_x, pre_y = 0.0, 0.0
    elif orientation == 90:
        # Clockwise turn sends x to y and y to -x, so the frame lands at
        # x in [-h, 0]. Shift right by the stored height before scaling.
        pre_x, pre_y = h, 0.0
    elif orientation == -90:
        # Counter-clockwise turn sends y to x and x to -y. The frame lands
        # at y in [-w, 0]. Shift down by the stored width before scaling.
        pre_x, pre_y = 0.0, w
    elif orientation == 180:
        # Half turn mirrors both axes into negative space.
        pre_x, pre_y = w, h
    else:
        raise ValueError(
            f"Unsupported orientation {orientation!r}. "
            f"Valid: {list(VALID_ORIENTATIONS)}"
        )

    translation = (pre_x * scale + off_x, pre_y * scale + off_y)
    return AffineTransform2D(scale=scale, rotation=orientation, translation=translation)


def covers_target(
    transform: AffineTransform2D,
    source_size: tuple[float, float],
    target_size: tuple[float, float],
    tolerance: float = 1e-6,
) -> bool:
    """True when the transformed source leaves no uncovered edge on the target."""
    left, top, right, bottom = transform.bounding_box(source_size)
    target_w, target_h = target_size
    return (
        left <= tolerance
        and top <= tolerance
        and right >= target_w - tolerance
        and bottom >= target_h - tolerance
    )
