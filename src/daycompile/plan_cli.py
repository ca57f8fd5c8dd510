"""CLI for previewing a day's timeline without encoding.

Probes every entry, applies the duration policy and prints where each
segment lands, plus the overlay layers drawn on top.

Usage:
    python -m daycompile.plan_cli --manifest day.yaml
"""

import argparse
import asyncio

from .engine import as_media_entry
from .manifest import load_day_manifest
from .media import Workspace
from .overlays import OverlayKind, with_overlays
from .timeline import NoUsableMediaError, build


async def _plan(manifest):
    media = [as_media_entry(e) for e in manifest.entries]
    with Workspace() as workspace:
        plan = await build(
            media, workspace, title=manifest.title, settings=manifest.settings,
        )
    return with_overlays(plan, manifest.settings)


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Print the timeline a day manifest compiles to.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to YAML day manifest",
    )
    args = parser.parse_args(args)

    manifest = load_day_manifest(args.manifest)
    try:
        plan = asyncio.run(_plan(manifest))
    except NoUsableMediaError as exc:
        print(str(exc))
        raise SystemExit(1)

    w, h = plan.render_size
    print(f"{plan.title or '(untitled)'} — {w}x{h}, {plan.frame_rate}fps")
    print(f"{len(plan.segments)} of {len(manifest.entries)} entries usable\n")
    for i, seg in enumerate(plan.segments):
        speed = f"x{seg.speed_factor:.2f}" if seg.speed_factor != 1.0 else ""
        rot = seg.fit_transform.rotation
        print(
            f"  [{i}] {seg.start_time:6.2f}s — {seg.end_time:6.2f}s  "
            f"{seg.kind.value:<5} {seg.source_size[0]}x{seg.source_size[1]} "
            f"rot={rot:<4} {speed}"
        )

    transitions = [
        layer for layer in plan.overlay_layers if layer.kind is OverlayKind.TRANSITION
    ]
    print(f"\nTitle fades in over [0, {plan.total_duration:.2f}s)")
    print(f"{len(transitions)} transitions:")
    for layer in transitions:
        print(f"  {layer.start:6.2f}s — {layer.end:6.2f}s")
    print(f"\nTotal: {plan.total_duration:.2f}s")


if __name__ == "__main__":
    main()
