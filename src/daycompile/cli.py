"""CLI for day compilation.

Reads a day manifest, compiles every entry into one portrait mp4 and
copies the result to --output.

Usage:
    # Compile a day
    python -m daycompile.cli --manifest day.yaml --output ~/Videos/monday.mp4

    # GPU encode
    python -m daycompile.cli --manifest day.yaml --output out.mp4 --gpu

    # Validate only (no decoding, no encoding)
    python -m daycompile.cli --manifest day.yaml --validate
"""

import argparse
import logging
import sys
import time
from dataclasses import replace

from .engine import compile_day_sync
from .export import Failure, deliver
from .manifest import load_day_manifest


def compile_manifest(
    manifest_path: str,
    output_path: str,
    codec: str | None = None,
    quiet: bool = False,
) -> int:
    """Compile a day manifest and deliver the artifact to output_path.

    Returns:
        Process exit code: 0 on success, 1 on a compilation failure.
    """
    manifest = load_day_manifest(manifest_path)
    settings = manifest.settings
    if codec is not None:
        settings = replace(settings, codec=codec)

    w, h = settings.render_size
    print(f"Compiling {len(manifest.entries)} entries: {manifest.title or '(untitled)'}")
    print(f"Resolution: {w}x{h}, {settings.frame_rate}fps, codec {settings.codec}")

    last_pct = -1

    def on_progress(frac: float) -> None:
        nonlocal last_pct
        pct = int(frac * 100)
        if not quiet and pct != last_pct:
            print(f"  [{pct:3d}%]", flush=True)
        last_pct = pct

    t0 = time.monotonic()
    result = compile_day_sync(
        manifest.entries, manifest.title, settings=settings, on_progress=on_progress,
    )
    elapsed = time.monotonic() - t0

    if isinstance(result, Failure):
        print(f"\nFailed: {result}", file=sys.stderr)
        return 1

    try:
        dest = deliver(result, output_path)
    finally:
        result.path.unlink(missing_ok=True)

    print(
        f"\nDone: {dest} — {len(result.timeline)} segments, "
        f"{result.total_duration:.1f}s video, {elapsed:.1f}s wall"
    )
    return 0


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Compile a day of photos and clips into one share video.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to YAML day manifest",
    )
    parser.add_argument(
        "--output",
        help="Output mp4 path or directory (required unless --validate)",
    )
    parser.add_argument(
        "--gpu", action="store_true",
        help="Use GPU encoding (h264_nvenc). Default is CPU (libx264).",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Don't print progress percentages",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log skipped entries and pipeline phases",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate manifest only — check paths, don't render",
    )
    args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.validate:
        manifest = load_day_manifest(args.manifest)
        print(f"Day manifest valid: {len(manifest.entries)} entries")
        for i, (entry, path) in enumerate(zip(manifest.entries, manifest.paths)):
            when = entry.captured_at.isoformat(timespec="minutes") if entry.captured_at else "-"
            print(f"  {i}: {entry.media_kind.value:<5} {when:<16} {entry.category.value:<11} {path}")
        print("All paths verified.")
        return

    if not args.output:
        parser.error("--output is required (unless using --validate)")

    code = compile_manifest(
        args.manifest, args.output,
        codec="h264_nvenc" if args.gpu else None,
        quiet=args.quiet,
    )
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
