"""Filename generation for stored artifacts and downloads."""
from __future__ import annotations

import re
import time
import uuid
from datetime import date
from pathlib import Path

TEMPLATE_NAMES: dict[str, str] = {
    "standard": "Standard_Report",
    "executive": "Executive_Summary",
    "detailed": "Detailed_Analysis",
}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\s\-_]")
_SEPARATORS = re.compile(r"[\s_]+")


def sanitize_filename_part(value: str | None, default: str = "Unknown") -> str:
    """Keep letters, digits, dashes and underscores; whitespace becomes ``_``."""
    if not value:
        return default
    cleaned = _UNSAFE_CHARS.sub("", value)
    cleaned = _SEPARATORS.sub("_", cleaned).strip("_-")
    return cleaned or default


def storage_filename(
    platform: str,
    template: str,
    project_name: str,
    extension: str = ".pdf",
    timestamp_ms: int | None = None,
    tag: str | None = None,
) -> str:
    """``platform-template-project-<epoch ms>-<tag><ext>``, lower-case.

    ``tag`` keeps same-millisecond renders apart; a random one is used when
    the caller has none.
    """
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    parts = [
        sanitize_filename_part(platform, "platform"),
        sanitize_filename_part(template, "report"),
        sanitize_filename_part(project_name, "project"),
    ]
    slug = "-".join(part.lower().replace("_", "-") for part in parts)
    unique = sanitize_filename_part(tag, "").lower() or uuid.uuid4().hex[:8]
    return f"{slug}-{stamp}-{unique}{extension}"


def storage_prefix(filename: str | None) -> str | None:
    """``platform-template-`` of a storage filename, or None for other names."""
    if not filename:
        return None
    parts = Path(filename).stem.split("-")
    if len(parts) < 3 or not all(parts[:2]):
        return None
    return f"{parts[0].lower()}-{parts[1].lower()}-"


def download_filename(
    title: str | None,
    template: str | None,
    on: date,
    extension: str = ".pdf",
) -> str:
    """Human-readable ``<Title>_<Template_Name>_<YYYY-MM-DD><ext>``."""
    template_name = TEMPLATE_NAMES.get(template or "", sanitize_filename_part(template, "Report"))
    return f"{sanitize_filename_part(title, 'Report')}_{template_name}_{on.isoformat()}{extension}"
