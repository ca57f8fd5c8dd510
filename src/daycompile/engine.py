"""Orchestrator — build, decorate and export one day compilation."""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Callable, Iterable

from .export import ExportResult, Failure, FailureKind, export
from .media import LogEntry, MediaEntry, Workspace
from .overlays import with_overlays
from .timeline import (
    DEFAULT_SETTINGS,
    CompilationCancelled,
    NoUsableMediaError,
    ProgressTracker,
    RenderSettings,
    build,
)


logger = logging.getLogger(__name__)


def as_media_entry(entry: MediaEntry | LogEntry) -> MediaEntry:
    """Reduce a log entry to the two fields the compiler reads."""
    if isinstance(entry, LogEntry):
        return entry.to_media_entry()
    return entry


async def compile_day(
    entries: Iterable[MediaEntry | LogEntry],
    title: str = "",
    *,
    settings: RenderSettings = DEFAULT_SETTINGS,
    on_progress: Callable[[float], None] | None = None,
    cancel: threading.Event | None = None,
    output_dir: str | Path | None = None,
    work_dir: str | Path | None = None,
) -> ExportResult:
    """Compile an ordered list of entries into one portrait video.

    Each call is independent: it owns a fresh workspace and plan and
    keeps no state afterwards. The workspace is removed on every exit.

    Args:
        entries: Photos and clips in the order they should play.
        title: Date/title string faded in at the top.
        settings: Output recipe.
        on_progress: Receives a non-decreasing fraction in [0, 1].
        cancel: Set it to stop between entries, segments or frames.
        output_dir: Where the finished artifact is created.
        work_dir: Parent directory for intermediate files.

    Returns:
        Artifact, or Failure with a human-readable reason.
    """
    media = [as_media_entry(e) for e in entries]
    tracker = ProgressTracker(on_progress)
    tracker.report(0.0)

    with Workspace(work_dir) as workspace:
        try:
            plan = await build(
                media, workspace,
                title=title, settings=settings, progress=tracker, cancel=cancel,
            )
        except NoUsableMediaError as exc:
            logger.warning("%s", exc)
            return Failure(FailureKind.NO_USABLE_MEDIA, str(exc))
        except CompilationCancelled:
            return Failure(FailureKind.CANCELLED, "Compilation was cancelled")

        plan = with_overlays(plan, settings)
        return await export(
            plan, workspace,
            settings=settings, progress=tracker, cancel=cancel, output_dir=output_dir,
        )


def compile_day_sync(
    entries: Iterable[MediaEntry | LogEntry],
    title: str = "",
    **kwargs,
) -> ExportResult:
    """Blocking wrapper around compile_day for scripts and the CLI."""
    return asyncio.run(compile_day(entries, title, **kwargs))
