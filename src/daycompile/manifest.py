"""Day manifest loader — which photos and clips make up a day.

Day manifest schema:
  title: "Monday, November 17"
  order: chronological        # or "as_listed" (default: chronological)
  paths:
    day: "/data/2025-11-17"
  video:                      # optional encode-stage overrides
    codec: libx264
    title_position: top-center
    title_color: "#FFFFFF"
  entries:
    - path: "${day}/breakfast.jpg"
      kind: image             # optional, inferred from the suffix
      captured_at: 2025-11-17T08:30:00
      category: Food
      description: "Oatmeal with berries"

The frame size, frame rate and duration policy are fixed by the recipe
and cannot be overridden here.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path

import yaml

from .common import parse_hex_color, resolve_path_vars
from .media import (
    ActivityClassifier,
    LogEntry,
    MediaEntry,
    MediaKind,
    WellnessCategory,
    order_chronologically,
)
from .timeline import DEFAULT_SETTINGS, RenderSettings


IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff"}
VIDEO_SUFFIXES = {".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi"}
VALID_ORDERS = {"chronological", "as_listed"}
VALID_TITLE_POSITIONS = {
    f"{v}-{h}" for v in ("top", "middle", "bottom") for h in ("left", "center", "right")
}
VIDEO_OVERRIDES = {"codec", "title_position", "title_color"}


@dataclass(frozen=True)
class DayManifest:
    title: str
    entries: tuple[LogEntry, ...]
    paths: tuple[Path, ...]
    settings: RenderSettings


def infer_kind(path: str | Path) -> MediaKind:
    """Guess image vs video from the file suffix."""
    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_SUFFIXES:
        return MediaKind.IMAGE
    if suffix in VIDEO_SUFFIXES:
        return MediaKind.VIDEO
    raise ValueError(
        f"Cannot infer media kind from '{suffix}'; set 'kind: image' or 'kind: video'"
    )


def _parse_timestamp(value, where: str) -> datetime | None:
    """Parse captured_at into a naive local datetime.

    Values with a UTC offset are converted to local time, so entries with
    and without an offset sort together.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"{where}: invalid captured_at {value!r}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_video_overrides(video: dict) -> RenderSettings:
    unknown = set(video) - VIDEO_OVERRIDES
    if unknown:
        raise ValueError(
            f"Day manifest: unsupported video settings {sorted(unknown)}. "
            f"Valid: {sorted(VIDEO_OVERRIDES)}"
        )

    overrides = {}
    if "codec" in video:
        overrides["codec"] = str(video["codec"])
    if "title_position" in video:
        pos = video["title_position"]
        if pos not in VALID_TITLE_POSITIONS:
            raise ValueError(
                f"Day manifest: invalid video.title_position '{pos}'. "
                f"Valid: {sorted(VALID_TITLE_POSITIONS)}"
            )
        overrides["title_position"] = pos
    if "title_color" in video:
        try:
            overrides["title_color"] = parse_hex_color(str(video["title_color"]))
        except ValueError as exc:
            raise ValueError(f"Day manifest: video.title_color: {exc}") from None
    return replace(DEFAULT_SETTINGS, **overrides)


def load_day_manifest(
    manifest_path: str | Path,
    classifier: ActivityClassifier | None = None,
) -> DayManifest:
    """Load, validate and normalize a day manifest.

    Processing pipeline:
      1. Parse YAML.
      2. Validate title, order and video overrides.
      3. Resolve ${path} variables in entry paths.
      4. Read each entry's bytes, infer kind, parse metadata.
      5. Ask the classifier (if any) for missing category/description.
      6. Order entries chronologically unless `order: as_listed`.

    Raises:
        ValueError: Missing/invalid fields.
        FileNotFoundError: One or more entry files are missing.
    """
    with open(manifest_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("Day manifest: top level must be a mapping")

    title = raw.get("title", "")
    if not isinstance(title, str):
        raise ValueError(f"Day manifest: title must be a string, got {title!r}")

    order = raw.get("order", "chronological")
    if order not in VALID_ORDERS:
        raise ValueError(
            f"Day manifest: invalid order '{order}'. Valid: {sorted(VALID_ORDERS)}"
        )

    settings = _parse_video_overrides(raw.get("video") or {})
    paths = raw.get("paths", {})

    raw_entries = raw.get("entries") or []
    if not isinstance(raw_entries, list):
        raise ValueError("Day manifest: entries must be a list")

    resolved = []
    for i, item in enumerate(raw_entries):
        if not isinstance(item, dict) or "path" not in item:
            raise ValueError(f"Entry {i}: missing required field 'path'")
        resolved.append((i, item, Path(resolve_path_vars(str(item["path"]), paths))))

    validate_entry_paths([p for _, _, p in resolved])

    loaded = []
    for i, item, path in resolved:
        where = f"Entry {i}"
        try:
            kind = (
                MediaKind.from_label(str(item["kind"])) if "kind" in item else infer_kind(path)
            )
        except ValueError as exc:
            raise ValueError(f"{where}: {exc}") from None
        payload = path.read_bytes()
        captured_at = _parse_timestamp(item.get("captured_at"), where)

        category = item.get("category")
        description = item.get("description")
        if classifier is not None and (category is None or description is None):
            result = classifier.classify(MediaEntry(kind=kind, payload=payload))
            category = category if category is not None else result.category.value
            description = description if description is not None else result.description

        try:
            parsed_category = (
                WellnessCategory.from_label(category) if category else WellnessCategory.FOOD
            )
        except ValueError as exc:
            raise ValueError(f"{where}: {exc}") from None

        loaded.append((
            LogEntry(
                media_kind=kind,
                media_bytes=payload,
                captured_at=captured_at,
                category=parsed_category,
                description=description or "",
            ),
            path,
        ))

    if order == "chronological":
        by_entry = {id(entry): path for entry, path in loaded}
        entries = order_chronologically([entry for entry, _ in loaded])
        entry_paths = [by_entry[id(entry)] for entry in entries]
    else:
        entries = [entry for entry, _ in loaded]
        entry_paths = [path for _, path in loaded]

    return DayManifest(
        title=title,
        entries=tuple(entries),
        paths=tuple(entry_paths),
        settings=settings,
    )


def validate_entry_paths(paths: list[Path]) -> None:
    """Check that every entry file exists on disk.

    Raises:
        FileNotFoundError: Lists all missing files.
    """
    missing = [p for p in paths if not Path(p).exists()]
    if missing:
        msg = f"Missing {len(missing)} entry file(s):\n"
        for p in missing:
            msg += f"  - {p}\n"
        raise FileNotFoundError(msg)
