"""
Artifact resolver – find a job's output file for download.

Jobs written through LocalArtifactStore are found by job id directly.
Older records only carry a path hint (bare filename, relative or absolute
path) that may have been written from a different working directory, so
the resolver also probes the hint across every known storage root and, as a
last resort, searches those roots for a likely match.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from time import time
from typing import AsyncIterator
from uuid import UUID

from services.artifact_store import LocalArtifactStore
from services.filenames import storage_prefix

logger = logging.getLogger(__name__)

SERVICE_STORAGE_DIR: Path = Path(__file__).resolve().parent.parent / "storage"
STORAGE_ENV_VAR: str = "REPORT_STORAGE_DIR"
DEFAULT_CHUNK_SIZE: int = 64 * 1024

MEDIA_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".md": "text/markdown",
}


class ArtifactNotFound(LookupError):
    """No readable artifact for the job in any storage root."""

    def __init__(self, job_id: UUID | str, hint: str | None, roots_searched: int) -> None:
        self.job_id = str(job_id)
        self.hint = hint
        self.roots_searched = roots_searched
        super().__init__(
            f"Artifact for job {self.job_id} not found ({roots_searched} storage roots searched)"
        )

    def to_detail(self) -> dict[str, object]:
        """Diagnostics safe to return to clients (no directory names)."""
        return {
            "message": "Report file not found",
            "job_id": self.job_id,
            "stored_hint": Path(self.hint).name if self.hint else None,
            "roots_searched": self.roots_searched,
        }


class ArtifactCorrupt(ArtifactNotFound):
    """The stored artifact exists but is empty or not a regular file."""


@dataclass(frozen=True)
class ResolvedArtifact:
    path: Path
    size: int
    media_type: str


def default_storage_roots(primary: str | Path) -> list[Path]:
    """Primary dir, CWD, service-relative dir, env override, OS temp dir."""
    roots: list[Path] = [Path(primary), Path.cwd(), SERVICE_STORAGE_DIR]
    override = os.environ.get(STORAGE_ENV_VAR)
    if override:
        roots.append(Path(override))
    roots.append(Path(tempfile.gettempdir()))
    return roots


def media_type_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in MEDIA_TYPES:
        return MEDIA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _usable(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


class ArtifactResolver:
    """Locate artifacts by job id, then by path hint, then by search."""

    def __init__(
        self,
        roots: list[Path],
        extension: str = ".pdf",
        recency_minutes: int = 60,
        store: LocalArtifactStore | None = None,
    ) -> None:
        unique: list[Path] = []
        seen: set[Path] = set()
        for root in roots:
            resolved = Path(root).expanduser().resolve()
            if resolved not in seen:
                seen.add(resolved)
                unique.append(resolved)
        self.roots = unique
        self.extension = extension
        self.recency_minutes = recency_minutes
        self.store = store

    def candidates(self, hint: str) -> list[Path]:
        """Direct candidates for ``hint``, in probing order."""
        hint_path = Path(hint)
        found: list[Path] = []
        if hint_path.is_absolute():
            found.append(hint_path)
        else:
            found.extend(root / hint_path for root in self.roots)
        if hint_path.name and hint_path.name != hint:
            found.extend(root / hint_path.name for root in self.roots)
        return found

    def _search(self, job_id: str, extension: str, recent_prefix: str | None) -> Path | None:
        """Newest file with ``extension`` tagged with the job id, or recently
        written under the same ``platform-template-`` prefix as the hint."""
        suffix = job_id.replace("-", "")[-8:]
        cutoff = time() - self.recency_minutes * 60 if self.recency_minutes > 0 else None
        if recent_prefix is None:
            cutoff = None
        matches: list[tuple[float, Path]] = []
        for root in self.roots:
            if not root.is_dir():
                continue
            try:
                entries = list(root.iterdir())
            except OSError:
                logger.debug("Storage root not readable", extra={"root": str(root)})
                continue
            for path in entries:
                if path.suffix.lower() != extension or not _usable(path):
                    continue
                mtime = path.stat().st_mtime
                tagged = job_id in path.name or path.stem.endswith(suffix)
                recent = (
                    cutoff is not None
                    and mtime >= cutoff
                    and path.name.lower().startswith(recent_prefix)
                )
                if tagged or recent:
                    matches.append((mtime, path))
        if not matches:
            return None
        return max(matches, key=lambda match: match[0])[1]

    def resolve(self, job_id: UUID | str, hint: str | None) -> ResolvedArtifact:
        """Raises ArtifactNotFound / ArtifactCorrupt when nothing usable exists."""
        job_key = str(job_id)

        if self.store is not None:
            stored = self.store.get(job_key)
            if stored is not None:
                return ResolvedArtifact(stored, stored.stat().st_size, media_type_for(stored))

        corrupt = False
        if hint:
            for candidate in self.candidates(hint):
                if _usable(candidate):
                    logger.info("Resolved artifact from path hint", extra={"job_id": job_key})
                    return ResolvedArtifact(candidate, candidate.stat().st_size, media_type_for(candidate))
                if candidate.exists():
                    corrupt = True

        extension = Path(hint).suffix.lower() if hint and Path(hint).suffix else self.extension
        found = self._search(job_key, extension, storage_prefix(hint))
        if found is not None:
            logger.warning(
                "Artifact located by fallback search",
                extra={"job_id": job_key, "artifact": found.name},
            )
            return ResolvedArtifact(found, found.stat().st_size, media_type_for(found))

        error_cls = ArtifactCorrupt if corrupt else ArtifactNotFound
        raise error_cls(job_key, hint, len(self.roots))


async def stream_artifact(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield file chunks. An I/O error mid-stream is logged and ends the stream."""
    try:
        with path.open("rb") as handle:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk
    except OSError as exc:
        logger.error("Artifact stream interrupted: %s", exc, extra={"artifact": path.name})
