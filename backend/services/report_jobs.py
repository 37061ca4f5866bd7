"""
Report job orchestrator.

Owns the job lifecycle:
- create_job() persists a queued job and returns immediately
- a background asyncio task claims the job (queued -> processing CAS) and
  drives fetch -> normalize -> render -> store
- every stage runs under a deadline; any exception fails the job
- running jobs can be cancelled

Progress checkpoints: 0 claimed, 10 fetched, 30 normalized, 40-90 renderer
window, 100 completed. All collaborators are injected; nothing here is a
process-wide singleton.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

import httpx

from connectors.base import BasePlatformConnector, ConnectionConfig, build_http_client
from connectors.models import CanonicalProject, RawProjectBundle
from connectors.retry import RetryPolicy
from models.report_job import ReportJob
from services.artifact_store import LocalArtifactStore
from services.events import EventPublisher, InMemoryEventPublisher
from services.job_store import ReportJobStore
from services.normalizer import DataNormalizer
from services.renderers import ProgressCallback, RendererRegistry, UnsupportedPlatformError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[ConnectionConfig], httpx.AsyncClient]

PROGRESS_FETCHED: int = 10
PROGRESS_NORMALIZED: int = 30
RENDER_WINDOW_START: int = 40
RENDER_WINDOW_END: int = 90

CANCELLED_MESSAGE: str = "Cancelled"
DEFAULT_STAGE_TIMEOUT: float = 300.0


class StageTimeoutError(RuntimeError):
    """A pipeline stage ran past its deadline."""


def scale_render_progress(percent: float) -> int:
    """Map renderer progress 0-100 linearly onto the 40-90 job window."""
    bounded = max(0.0, min(100.0, float(percent)))
    return RENDER_WINDOW_START + round(bounded * (RENDER_WINDOW_END - RENDER_WINDOW_START) / 100)


class ReportJobOrchestrator:
    """Creates report jobs and runs their pipelines in the background."""

    def __init__(
        self,
        store: ReportJobStore,
        renderers: RendererRegistry,
        artifacts: LocalArtifactStore,
        connectors: dict[str, type[BasePlatformConnector]],
        client_factory: ClientFactory = build_http_client,
        events: EventPublisher | None = None,
        retry_policy: RetryPolicy | None = None,
        stage_timeout: float | None = DEFAULT_STAGE_TIMEOUT,
    ) -> None:
        self._store = store
        self._renderers = renderers
        self._artifacts = artifacts
        self._connectors = {slug.lower(): cls for slug, cls in connectors.items()}
        self._client_factory = client_factory
        self._events = events or InMemoryEventPublisher()
        self._retry_policy = retry_policy or RetryPolicy()
        self._stage_timeout = stage_timeout

        # Active pipeline tasks by job id
        self._running_tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def store(self) -> ReportJobStore:
        return self._store

    @property
    def platforms(self) -> list[str]:
        return sorted(self._connectors)

    # ── Job creation ─────────────────────────────────────────────────────

    async def create_job(
        self,
        *,
        owner_id: str,
        platform: str,
        template: str,
        configuration: dict[str, Any],
        connection: ConnectionConfig,
        title: str | None = None,
    ) -> ReportJob:
        """
        Persist a queued job and start its pipeline in the background.

        Returns as soon as the job row exists; the caller never waits on
        upstream fetches or rendering.
        """
        job = await self._store.create(
            owner_id=owner_id,
            title=title or f"{platform.title()} {template.title()} Report",
            platform=platform.lower(),
            template=template.lower(),
            configuration={**configuration, "connection": connection.public_dict()},
        )
        await self._events.publish(
            "report.queued", owner_id, {"job_id": str(job.id), "platform": job.platform}
        )

        job_key = str(job.id)
        task = asyncio.create_task(self.run_job(job.id, connection), name=f"report-job-{job_key}")
        self._running_tasks[job_key] = task
        task.add_done_callback(lambda _t, key=job_key: self._running_tasks.pop(key, None))
        return job

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def run_job(self, job_id: UUID, connection: ConnectionConfig) -> None:
        """Run the pipeline once. A job that cannot be claimed is left alone."""
        if not await self._store.try_start(job_id):
            logger.info("Report job already claimed or finished", extra={"job_id": str(job_id)})
            return

        job: ReportJob | None = None
        try:
            job = await self._store.get(job_id)
            if job is None:
                raise LookupError(f"Report job {job_id} disappeared after it was claimed")
            file_path = await self._execute(job, connection)
            completed = await self._store.complete(job_id, file_path)
        except asyncio.CancelledError:
            logger.info("Report job cancelled", extra={"job_id": str(job_id)})
            await self._store.fail(job_id, CANCELLED_MESSAGE)
            await self._publish_failure(job_id, job, CANCELLED_MESSAGE)
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.exception(
                "Report job failed",
                extra={
                    "job_id": str(job_id),
                    "platform": job.platform if job else None,
                    "template": job.template if job else None,
                },
            )
            await self._fail_quietly(job_id, message)
            await self._publish_failure(job_id, job, message)
            return

        if completed:
            logger.info("Report job completed", extra={"job_id": str(job_id)})
            await self._events.publish(
                "report.completed", job.owner_id, {"job_id": str(job_id), "platform": job.platform}
            )

    async def _fail_quietly(self, job_id: UUID, message: str) -> None:
        # The failure write can hit the same broken store that raised.
        try:
            await self._store.fail(job_id, message)
        except Exception:
            logger.exception("Could not mark report job failed", extra={"job_id": str(job_id)})

    async def _execute(self, job: ReportJob, connection: ConnectionConfig) -> str:
        connector_cls = self._connectors.get(job.platform)
        if connector_cls is None:
            raise UnsupportedPlatformError(f"Unsupported platform: {job.platform}")
        renderer = self._renderers.resolve(job.platform, job.template)

        configuration: dict[str, Any] = dict(job.configuration or {})
        project_id = str(configuration.get("project_id") or "").strip()
        if not project_id:
            raise ValueError("Job configuration is missing project_id")

        async with self._client_factory(connection) as client:
            connector = connector_cls(connection, client, policy=self._retry_policy)
            bundle: RawProjectBundle = await self._stage(
                "fetch",
                connector.fetch_bundle(
                    project_id,
                    include_sprints=configuration.get("include_sprints", True) is not False,
                    include_team=configuration.get("include_team", True) is not False,
                ),
            )
        await self._store.update_progress(job.id, PROGRESS_FETCHED)

        project = self.normalize(connector, bundle)
        await self._store.record_project_info(job.id, project.summary())
        await self._store.update_progress(job.id, PROGRESS_NORMALIZED)

        await self._store.update_progress(job.id, RENDER_WINDOW_START)
        configuration.setdefault("title", job.title)
        configuration["job_id"] = str(job.id)
        artifact_path: str = await self._stage(
            "render", renderer.render(project, configuration, self._render_progress(job.id))
        )

        stored = await asyncio.to_thread(self._artifacts.put, job.id, artifact_path)
        return str(stored)

    @staticmethod
    def normalize(connector: BasePlatformConnector, bundle: RawProjectBundle) -> CanonicalProject:
        normalizer = DataNormalizer(
            connector.meta.slug,
            display_name=connector.meta.name,
            default_status=connector.meta.default_project_status,
        )
        return normalizer.normalize(
            bundle.project,
            bundle.tasks,
            bundle.sprints,
            bundle.resources,
            platform_specific=connector.platform_details(bundle),
        )

    async def _stage(self, name: str, work: Awaitable[T]) -> T:
        if self._stage_timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, timeout=self._stage_timeout)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(
                f"Stage '{name}' exceeded its {self._stage_timeout:g}s deadline"
            ) from exc

    def _render_progress(self, job_id: UUID) -> ProgressCallback:
        async def report(percent: float) -> None:
            await self._store.update_progress(job_id, scale_render_progress(percent))

        return report

    async def _publish_failure(self, job_id: UUID, job: ReportJob | None, message: str) -> None:
        if job is None:
            return
        await self._events.publish(
            "report.failed",
            job.owner_id,
            {"job_id": str(job_id), "platform": job.platform, "error": message},
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_job(self, job_id: UUID) -> ReportJob | None:
        return await self._store.get(job_id)

    async def get_status(self, job_id: UUID) -> dict[str, Any] | None:
        job = await self._store.get(job_id)
        return job.to_status_dict() if job else None

    async def list_jobs(self, owner_id: str, limit: int = 50) -> list[ReportJob]:
        return await self._store.list_for_owner(owner_id, limit=limit)

    # ── Preview ──────────────────────────────────────────────────────────

    async def preview(
        self, platform: str, project_id: str, connection: ConnectionConfig
    ) -> CanonicalProject:
        """Fetch and normalize a project without creating a job."""
        connector_cls = self._connectors.get(platform.lower())
        if connector_cls is None:
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}")
        async with self._client_factory(connection) as client:
            connector = connector_cls(connection, client, policy=self._retry_policy)
            bundle = await self._stage("fetch", connector.fetch_bundle(project_id))
        return self.normalize(connector, bundle)

    # ── Control ──────────────────────────────────────────────────────────

    def is_running(self, job_id: UUID | str) -> bool:
        task = self._running_tasks.get(str(job_id))
        return task is not None and not task.done()

    async def cancel_job(self, job_id: UUID) -> bool:
        """
        Cancel a job. A running pipeline is interrupted; a job that is still
        queued is failed directly. Finished jobs are left untouched.
        """
        task = self._running_tasks.get(str(job_id))
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            # A task cancelled before its first step never reached its handler
            await self._store.fail(job_id, CANCELLED_MESSAGE)
            return True
        return await self._store.fail(job_id, CANCELLED_MESSAGE)

    async def wait_for(self, job_id: UUID | str) -> None:
        """Await a job's background task if it is still running."""
        task = self._running_tasks.get(str(job_id))
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every running pipeline (application shutdown)."""
        tasks = list(self._running_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
