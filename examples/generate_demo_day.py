#!/usr/bin/env python3
"""Generate a synthetic day of photos and clips plus its day manifest.

Creates examples/demo-day/ with three labelled photos (landscape,
portrait and square), a short clip and a 12-second clip. The long clip
ends on a white "END" card, so the speed-up to 5s is easy to see: the
card must still appear at the very end of its segment.

Usage:
    python examples/generate_demo_day.py
    # Then compile:
    daycompile compile --manifest examples/demo-day/day.yaml \
        --output examples/demo-day.mp4
"""

from pathlib import Path

import numpy as np
import yaml
from moviepy import ColorClip, CompositeVideoClip, ImageClip
from PIL import Image, ImageDraw

from daycompile.common import load_font

OUTPUT_DIR = Path(__file__).resolve().parent / "demo-day"
CLIP_SIZE = (640, 360)
FPS = 30

# (file, size, colour, label, capture time, category, description)
PHOTOS = [
    ("breakfast.jpg", (1200, 800), (200, 130, 40), "08:10", "2025-11-17T08:10:00",
     "Food", "Oatmeal with berries"),
    ("vitamins.png", (600, 900), (130, 60, 180), "09:00", "2025-11-17T09:00:00",
     "Supplements", "Vitamin D"),
    ("lunch.jpg", (800, 800), (60, 160, 60), "12:45", "2025-11-17T12:45:00",
     "Food", "Salad"),
]

# (file, colour, duration, capture time, category, description)
CLIPS = [
    ("stretch.mp4", (60, 60, 180), 3.0, "2025-11-17T07:30:00", "Workout", "Stretching"),
    ("run.mp4", (180, 60, 60), 12.0, "2025-11-17T18:00:00", "Workout", "Evening run"),
]


def _label(size, color, text) -> Image.Image:
    """Solid colour card with centred white text."""
    img = Image.new("RGB", size, color)
    draw = ImageDraw.Draw(img)
    font = load_font(max(24, size[1] // 8))
    bbox = draw.textbbox((0, 0), text, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.text(
        ((size[0] - tw) / 2 - bbox[0], (size[1] - th) / 2 - bbox[1]),
        text, fill=(255, 255, 255), font=font,
    )
    return img


def _write_clip(out: Path, color, duration: float) -> None:
    # Colour body for all but the last second, then the END card.
    body_dur = max(duration - 1.0, 0.5)
    body = ColorClip(size=CLIP_SIZE, color=color, duration=body_dur)
    end_card = np.array(_label(CLIP_SIZE, tuple(c // 3 for c in color), "END"))
    end_clip = ImageClip(end_card, duration=duration - body_dur).with_start(body_dur)
    final = CompositeVideoClip([body, end_clip], size=CLIP_SIZE)
    final.write_videofile(str(out), fps=FPS, logger=None)


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    entries = []

    for name, size, color, label, when, category, description in PHOTOS:
        out = OUTPUT_DIR / name
        if out.exists():
            print(f"  skip {name} (exists)")
        else:
            _label(size, color, label).save(out)
            print(f"  wrote {name} {size[0]}x{size[1]}")
        entries.append({
            "path": f"${{day}}/{name}",
            "captured_at": when,
            "category": category,
            "description": description,
        })

    for name, color, duration, when, category, description in CLIPS:
        out = OUTPUT_DIR / name
        if out.exists():
            print(f"  skip {name} (exists)")
        else:
            _write_clip(out, color, duration)
            print(f"  wrote {name} ({duration}s)")
        entries.append({
            "path": f"${{day}}/{name}",
            "captured_at": when,
            "category": category,
            "description": description,
        })

    manifest = {
        "title": "Monday, November 17",
        "order": "chronological",
        "paths": {"day": str(OUTPUT_DIR)},
        "entries": entries,
    }
    manifest_path = OUTPUT_DIR / "day.yaml"
    manifest_path.write_text(yaml.safe_dump(manifest, sort_keys=False))

    print(f"\nDone. {len(entries)} entries, manifest at {manifest_path}")


if __name__ == "__main__":
    main()
