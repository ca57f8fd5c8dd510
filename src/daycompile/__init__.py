"""daycompile — turn a day of logged photos and clips into one share video.

Normalizes a mixed, ordered list of still images and video clips onto a
single portrait timeline (fixed-length stills, time-compressed long clips),
layers a fading date title and dip transitions on top, and encodes the
result to one H.264 mp4.
"""

from .engine import compile_day, compile_day_sync
from .export import Artifact, ExportResult, Failure, FailureKind, deliver
from .media import LogEntry, MediaEntry, MediaKind, WellnessCategory
from .timeline import CompositionPlan, RenderSettings

__all__ = [
    "Artifact",
    "CompositionPlan",
    "ExportResult",
    "Failure",
    "FailureKind",
    "LogEntry",
    "MediaEntry",
    "MediaKind",
    "RenderSettings",
    "WellnessCategory",
    "compile_day",
    "compile_day_sync",
    "deliver",
]
