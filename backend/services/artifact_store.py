"""
Job-addressed artifact store.

Each job's artifact lives at ``<root>/<job_id>/<filename>``, so a download
only needs the job id. The original filename is kept for readability.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from uuid import UUID

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when an artifact cannot be written to the store."""


class LocalArtifactStore:
    """Artifacts on the local filesystem under a single root."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _job_dir(self, job_id: UUID | str) -> Path:
        return self.root / str(job_id)

    def put(self, job_id: UUID | str, source: str | Path) -> Path:
        """Move ``source`` into the store under ``job_id``; returns the stored path."""
        source_path = Path(source)
        if not source_path.is_file():
            raise StorageError(f"Rendered artifact not found: {source_path.name}")
        if source_path.stat().st_size == 0:
            raise StorageError(f"Rendered artifact is empty: {source_path.name}")

        target_dir = self._job_dir(job_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / source_path.name
        if source_path.resolve() != target.resolve():
            shutil.move(str(source_path), str(target))
        logger.info(
            "Stored artifact",
            extra={"job_id": str(job_id), "artifact": target.name, "bytes": target.stat().st_size},
        )
        return target

    def get(self, job_id: UUID | str) -> Path | None:
        """Newest non-empty file stored for ``job_id``, if any."""
        job_dir = self._job_dir(job_id)
        if not job_dir.is_dir():
            return None
        candidates = [
            path for path in job_dir.iterdir()
            if path.is_file() and path.stat().st_size > 0
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda path: path.stat().st_mtime)
