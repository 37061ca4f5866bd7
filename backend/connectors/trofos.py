"""
TROFOS connector – projects, backlog, sprints and members via the external API.

TROFOS deployments disagree on where backlog items live: newer ones embed
them inside sprint records, older ones expose /backlog, /items or /backlogs.
Each resource is therefore fetched through an endpoint cascade.
"""
from __future__ import annotations

import logging
from typing import Any

from connectors.base import USER_AGENT, BasePlatformConnector
from connectors.fetcher import Endpoint, Resource
from connectors.models import RawProjectBundle
from connectors.registry import AuthType, ConnectorMeta

logger = logging.getLogger(__name__)

PROJECT = Resource(kind="project", critical=True)
BACKLOG = Resource(
    kind="backlog",
    collection_keys=("backlog_items", "backlogs", "backlog"),
    parent_keys=("sprints",),
)
SPRINTS = Resource(kind="sprints", collection_keys=("sprints", "iterations"))
TEAM = Resource(kind="team", collection_keys=("resources", "members", "users", "team"))

BACKLOG_PAGE_PARAMS: dict[str, Any] = {
    "pageNum": 1,
    "pageSize": 100,
    "sort": "priority",
    "direction": "DESC",
}


class TrofosConnector(BasePlatformConnector):
    """Connector for TROFOS – backlog-driven agile projects."""

    meta = ConnectorMeta(
        name="TROFOS",
        slug="trofos",
        auth_type=AuthType.API_KEY,
        entity_types=["projects", "backlog", "sprints", "resources"],
        default_project_status="active",
        description="TROFOS – agile backlog and sprint tracking",
    )

    def auth_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

    # ── Endpoint cascades ────────────────────────────────────────────────

    async def fetch_project(self, project_id: str) -> dict[str, Any]:
        return await self.fetcher.fetch_record(
            PROJECT,
            project_id,
            [
                Endpoint("/api/external/projects/{project_id}"),
                Endpoint("/v1/project/{project_id}"),
            ],
        )

    async def fetch_tasks(self, project_id: str) -> list[dict[str, Any]]:
        return await self.fetcher.fetch(
            BACKLOG,
            project_id,
            [
                Endpoint("/v1/project/{project_id}/sprint", embedded=True),
                Endpoint("/v1/project/{project_id}/backlog", params=BACKLOG_PAGE_PARAMS),
                Endpoint("/v1/project/{project_id}/items"),
                Endpoint("/v1/project/{project_id}/backlogs"),
            ],
        )

    async def fetch_sprints(self, project_id: str) -> list[dict[str, Any]]:
        return await self.fetcher.fetch(
            SPRINTS,
            project_id,
            [
                Endpoint("/v1/project/{project_id}/sprint"),
                Endpoint("/v1/project/{project_id}/sprints"),
                Endpoint("/v1/project/{project_id}/iterations"),
            ],
        )

    async def fetch_team(self, project_id: str) -> list[dict[str, Any]]:
        return await self.fetcher.fetch(
            TEAM,
            project_id,
            [
                Endpoint("/v1/project/{project_id}/members"),
                Endpoint("/v1/project/{project_id}/team"),
                Endpoint("/v1/project/{project_id}/resources"),
                Endpoint("/v1/project/{project_id}/users"),
            ],
        )

    def platform_details(self, bundle: RawProjectBundle) -> dict[str, Any]:
        total_points: float = 0
        for item in bundle.tasks:
            points = item.get("story_points", item.get("storyPoints"))
            if isinstance(points, (int, float)) and not isinstance(points, bool):
                total_points += points
        return {
            "sprintCount": len(bundle.sprints),
            "backlogItems": len(bundle.tasks),
            "totalStoryPoints": total_points,
            "visibility": bundle.project.get("visibility") or bundle.project.get("public"),
        }
