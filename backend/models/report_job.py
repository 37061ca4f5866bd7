"""
ReportJob model - one record per report generation request.

Lifecycle: queued -> processing -> completed | failed. Terminal rows are never
written again; every mutation goes through services.job_store, which issues
conditional UPDATEs instead of reloading and saving the row.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from config import to_iso8601
from models.database import Base


JOB_QUEUED: str = "queued"
JOB_PROCESSING: str = "processing"
JOB_COMPLETED: str = "completed"
JOB_FAILED: str = "failed"

TERMINAL_STATUSES: frozenset[str] = frozenset({JOB_COMPLETED, JOB_FAILED})


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ReportJob(Base):
    """Tracks an asynchronous report generation job."""

    __tablename__ = "report_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # 'jira', 'monday', 'trofos'
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    # 'standard', 'executive', 'detailed'
    template: Mapped[str] = mapped_column(String(50), nullable=False)

    # Status: 'queued', 'processing', 'completed', 'failed'
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JOB_QUEUED)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # projectId + include* flags; connection secrets are never stored here
    configuration: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Project name/status snapshot recorded once data has been normalized
    project_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_report_jobs_owner_created", "owner_id", "created_at"),
        Index("ix_report_jobs_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_status_dict(self) -> dict[str, Any]:
        """Compact status payload for polling clients."""
        result: dict[str, Any] = {
            "id": str(self.id),
            "status": self.status,
            "progress": self.progress,
        }
        if self.error:
            result["error"] = self.error
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "title": self.title,
            "platform": self.platform,
            "template": self.template,
            "status": self.status,
            "progress": self.progress,
            "configuration": self.configuration or {},
            "file_path": self.file_path,
            "error": self.error,
            "project_info": self.project_info,
            "created_at": to_iso8601(self.created_at),
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "updated_at": to_iso8601(self.updated_at),
        }
