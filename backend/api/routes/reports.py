"""
Report job API routes.

Callers are identified by the ``X-User-Id`` header set by the upstream
gateway; jobs belonging to someone else are reported as not found.

Provides endpoints to:
- Create a report job (returns immediately, pipeline runs in the background)
- Poll job status / read the full job record
- Download the finished artifact (streamed)
- Cancel a running job
- Preview a project (fetch + normalize + analytics, no job)
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from config import settings
from connectors.base import ConnectionConfig
from connectors.errors import CriticalFetchExhausted, UpstreamError
from models.report_job import JOB_COMPLETED, ReportJob
from services.analytics import summarize
from services.artifact_resolver import ArtifactNotFound, ArtifactResolver, stream_artifact
from services.filenames import download_filename
from services.renderers import UnsupportedPlatformError
from services.report_content import TEMPLATES
from services.report_jobs import ReportJobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request models ───────────────────────────────────────────────────────


class ConnectionRequest(BaseModel):
    """Platform connection details for a single request. Never stored."""

    base_url: str
    api_key: str
    timeout: float = Field(default_factory=lambda: settings.FETCH_TIMEOUT_SECONDS, gt=0)
    retry_budget: int = Field(default_factory=lambda: settings.FETCH_MAX_ATTEMPTS, ge=1, le=10)

    def to_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            retry_budget=self.retry_budget,
        )


class CreateReportRequest(BaseModel):
    platform: Literal["jira", "monday", "trofos"]
    template: str = "standard"
    project_id: str = Field(min_length=1)
    title: Optional[str] = None
    include_metrics: bool = True
    include_team: bool = True
    include_sprints: bool = True
    include_tasks: bool = True
    connection: ConnectionRequest

    def job_configuration(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "include_metrics": self.include_metrics,
            "include_team": self.include_team,
            "include_sprints": self.include_sprints,
            "include_tasks": self.include_tasks,
        }


class PreviewRequest(BaseModel):
    platform: Literal["jira", "monday", "trofos"]
    project_id: str = Field(min_length=1)
    connection: ConnectionRequest


# ── Dependencies ─────────────────────────────────────────────────────────


def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_orchestrator(request: Request) -> ReportJobOrchestrator:
    return request.app.state.report_orchestrator


def get_resolver(request: Request) -> ArtifactResolver:
    return request.app.state.artifact_resolver


def _parse_job_id(job_id: str) -> UUID:
    try:
        return UUID(job_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid report ID format")


async def _load_owned_job(
    job_id: str, owner_id: str, orchestrator: ReportJobOrchestrator
) -> ReportJob:
    job = await orchestrator.get_job(_parse_job_id(job_id))
    if job is None or job.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="Report not found")
    return job


# ── Routes ───────────────────────────────────────────────────────────────


@router.post("", status_code=201)
async def create_report(
    body: CreateReportRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Queue a report job. The response does not wait for generation."""
    template = body.template.lower()
    if template not in TEMPLATES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported template '{body.template}'. Expected one of: {', '.join(TEMPLATES)}",
        )

    job = await orchestrator.create_job(
        owner_id=owner_id,
        platform=body.platform,
        template=template,
        configuration=body.job_configuration(),
        connection=body.connection.to_config(),
        title=body.title,
    )
    return job.to_dict()


@router.get("")
async def list_reports(
    limit: int = 50,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    jobs = await orchestrator.list_jobs(owner_id, limit=max(1, min(limit, 200)))
    return {"reports": [job.to_dict() for job in jobs], "total": len(jobs)}


@router.post("/preview")
async def preview_report(
    body: PreviewRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Fetch and normalize a project synchronously and return its analytics."""
    try:
        project = await orchestrator.preview(
            body.platform, body.project_id, body.connection.to_config()
        )
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (CriticalFetchExhausted, UpstreamError) as e:
        logger.warning(
            "Project preview failed",
            extra={"platform": body.platform, "project_id": body.project_id, "error": str(e)},
        )
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "project": project.summary(),
        "analytics": summarize(project).to_dict(),
        "data_quality": project.data_quality.model_dump(),
    }


@router.get("/{job_id}")
async def get_report(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    job = await _load_owned_job(job_id, owner_id, orchestrator)
    return job.to_dict()


@router.get("/{job_id}/status")
async def get_report_status(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    job = await _load_owned_job(job_id, owner_id, orchestrator)
    return job.to_status_dict()


@router.get("/{job_id}/download", response_model=None)
async def download_report(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
    resolver: ArtifactResolver = Depends(get_resolver),
) -> StreamingResponse:
    """Stream the finished artifact."""
    job = await _load_owned_job(job_id, owner_id, orchestrator)
    if job.status != JOB_COMPLETED:
        raise HTTPException(
            status_code=409,
            detail={"message": "Report is not ready", **job.to_status_dict()},
        )

    try:
        artifact = await asyncio.to_thread(resolver.resolve, job.id, job.file_path)
    except ArtifactNotFound as e:
        logger.error(
            "Report artifact missing",
            extra={"job_id": str(job.id), "roots_searched": e.roots_searched},
        )
        raise HTTPException(status_code=404, detail=e.to_detail())

    finished_on: date = (job.completed_at or job.created_at).date()
    filename = download_filename(job.title, job.template, finished_on, artifact.path.suffix)
    return StreamingResponse(
        stream_artifact(artifact.path),
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Report-Size": str(artifact.size),
        },
    )


@router.post("/{job_id}/cancel")
async def cancel_report(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ReportJobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    job = await _load_owned_job(job_id, owner_id, orchestrator)
    cancelled = await orchestrator.cancel_job(job.id)
    return {"id": str(job.id), "cancelled": cancelled}
