"""
Base connector class that all platform connectors inherit from.

A connector knows a platform's endpoints, auth headers, and raw record
shapes. It never owns its HTTP client: the orchestrator builds one
``httpx.AsyncClient`` per job from the job's ConnectionConfig and hands it in.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from connectors.fetcher import EndpointFetcher
from connectors.models import RawProjectBundle
from connectors.registry import ConnectorMeta  # noqa: F401 - re-export for convenience
from connectors.retry import RetryPolicy

logger = logging.getLogger(__name__)

USER_AGENT: str = "PrismReports/1.0"


@dataclass(frozen=True)
class ConnectionConfig:
    """Per-job connection details supplied by the caller. Never persisted."""

    base_url: str
    api_key: str = field(repr=False)
    timeout: float = 10.0
    retry_budget: int = 3
    extra_headers: dict[str, str] = field(default_factory=dict)

    def public_dict(self) -> dict[str, Any]:
        """Connection details safe to store on a job record."""
        return {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "retry_budget": self.retry_budget,
        }


def build_http_client(config: ConnectionConfig) -> httpx.AsyncClient:
    """Default client factory: one pooled client per job."""
    return httpx.AsyncClient(
        base_url=config.base_url.rstrip("/"),
        timeout=config.timeout,
        headers={"User-Agent": USER_AGENT, **config.extra_headers},
    )


class BasePlatformConnector(ABC):
    """Abstract base class for project-management platform connectors.

    Subclasses set a class-level ``meta`` (:class:`ConnectorMeta`) and
    implement ``fetch_project``. Auxiliary fetches default to nothing.
    """

    meta: ConnectorMeta

    def __init__(
        self,
        config: ConnectionConfig,
        client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config
        base_policy = policy or RetryPolicy()
        self.fetcher = EndpointFetcher(
            client,
            base_policy.with_attempts(config.retry_budget),
            headers=self.auth_headers(),
        )

    @abstractmethod
    def auth_headers(self) -> dict[str, str]:
        """Headers attached to every request."""

    @abstractmethod
    async def fetch_project(self, project_id: str) -> dict[str, Any]:
        """Fetch the primary project record. Raises CriticalFetchExhausted."""

    async def fetch_tasks(self, project_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_sprints(self, project_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_team(self, project_id: str) -> list[dict[str, Any]]:
        return []

    def platform_details(self, bundle: RawProjectBundle) -> dict[str, Any]:
        """Platform-specific extras kept alongside the canonical project."""
        return {}

    async def fetch_bundle(
        self,
        project_id: str,
        include_sprints: bool = True,
        include_team: bool = True,
    ) -> RawProjectBundle:
        """
        Fetch everything needed for a report.

        The project record is fetched first so a missing project fails fast;
        the auxiliary resources are then fetched concurrently.
        """
        project = await self.fetch_project(project_id)

        async def _empty() -> list[dict[str, Any]]:
            return []

        tasks, sprints, resources = await asyncio.gather(
            self.fetch_tasks(project_id),
            self.fetch_sprints(project_id) if include_sprints else _empty(),
            self.fetch_team(project_id) if include_team else _empty(),
        )
        logger.info(
            "Fetched %s project bundle",
            self.meta.name,
            extra={
                "project_id": project_id,
                "tasks": len(tasks),
                "sprints": len(sprints),
                "resources": len(resources),
            },
        )
        return RawProjectBundle(
            project=project, tasks=tasks, sprints=sprints, resources=resources
        )
