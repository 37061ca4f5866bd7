"""
Report job persistence with atomic, status-conditional updates.

Every mutation is a single ``UPDATE ... WHERE id = :id AND status = ...``.
A write whose condition no longer holds (job already terminal, progress
would go backwards, another worker already claimed the job) matches zero
rows and returns False instead of clobbering the stored record.
"""
from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.report_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    JOB_QUEUED,
    ReportJob,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH: int = 2000


class ReportJobStore:
    """Owns all reads and writes of ``report_jobs`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _apply(self, statement: Any) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, job_id: UUID) -> ReportJob | None:
        async with self._session_factory() as session:
            return await session.get(ReportJob, job_id)

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[ReportJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReportJob)
                .where(ReportJob.owner_id == owner_id)
                .order_by(ReportJob.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ── Writes ───────────────────────────────────────────────────────────

    async def create(
        self,
        *,
        owner_id: str,
        title: str,
        platform: str,
        template: str,
        configuration: dict[str, Any],
    ) -> ReportJob:
        job = ReportJob(
            owner_id=owner_id,
            title=title,
            platform=platform,
            template=template,
            status=JOB_QUEUED,
            progress=0,
            configuration=configuration,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
        logger.info(
            "Report job queued",
            extra={"job_id": str(job.id), "platform": platform, "template": template},
        )
        return job

    async def try_start(self, job_id: UUID) -> bool:
        """queued -> processing compare-and-swap. Only one caller ever wins."""
        now = utcnow()
        return await self._apply(
            update(ReportJob)
            .where(ReportJob.id == job_id, ReportJob.status == JOB_QUEUED)
            .values(status=JOB_PROCESSING, progress=0, started_at=now, updated_at=now)
        )

    async def update_progress(self, job_id: UUID, progress: int) -> bool:
        """Raise progress of a processing job; never lowers it."""
        progress = max(0, min(100, int(progress)))
        return await self._apply(
            update(ReportJob)
            .where(
                ReportJob.id == job_id,
                ReportJob.status == JOB_PROCESSING,
                ReportJob.progress <= progress,
            )
            .values(progress=progress, updated_at=utcnow())
        )

    async def record_project_info(self, job_id: UUID, project_info: dict[str, Any]) -> bool:
        return await self._apply(
            update(ReportJob)
            .where(ReportJob.id == job_id, ReportJob.status == JOB_PROCESSING)
            .values(project_info=project_info, updated_at=utcnow())
        )

    async def complete(self, job_id: UUID, file_path: str) -> bool:
        now = utcnow()
        return await self._apply(
            update(ReportJob)
            .where(ReportJob.id == job_id, ReportJob.status == JOB_PROCESSING)
            .values(
                status=JOB_COMPLETED,
                progress=100,
                file_path=file_path,
                completed_at=now,
                updated_at=now,
            )
        )

    async def fail(self, job_id: UUID, error: str) -> bool:
        """Mark a non-terminal job failed. Progress stays at its last checkpoint."""
        now = utcnow()
        return await self._apply(
            update(ReportJob)
            .where(
                ReportJob.id == job_id,
                ReportJob.status.in_((JOB_QUEUED, JOB_PROCESSING)),
            )
            .values(
                status=JOB_FAILED,
                error=error[:MAX_ERROR_LENGTH],
                completed_at=now,
                updated_at=now,
            )
        )
