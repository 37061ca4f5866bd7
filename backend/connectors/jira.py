"""
Jira connector – project, issues, sprints and assignable users via REST.

Issues are flattened out of Jira's ``fields`` object into loose task records
the normalizer understands. Jira Cloud REST API docs:
https://developer.atlassian.com/cloud/jira/platform/rest/v3/
"""
from __future__ import annotations

import logging
from typing import Any

from connectors.base import BasePlatformConnector
from connectors.fetcher import Endpoint, Resource
from connectors.models import RawProjectBundle
from connectors.registry import AuthType, ConnectorMeta

logger = logging.getLogger(__name__)

# Jira Cloud's default "Story Points" custom field ids
STORY_POINT_FIELDS: tuple[str, ...] = ("customfield_10016", "customfield_10026", "customfield_10002")
SPRINT_FIELD: str = "customfield_10020"

ISSUE_FIELDS: str = ",".join(
    (
        "summary", "description", "status", "assignee", "priority", "labels",
        "created", "updated", "duedate", "issuetype", SPRINT_FIELD, *STORY_POINT_FIELDS,
    )
)

PROJECT = Resource(kind="project", critical=True)
ISSUES = Resource(kind="issues", collection_keys=("issues",))
BOARDS = Resource(kind="boards", collection_keys=("values",))
SPRINTS = Resource(kind="sprints", collection_keys=("values", "sprints"))
USERS = Resource(kind="team", collection_keys=("users", "values"))


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format tree into plain text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return " ".join(part for part in (adf_to_text(child) for child in node) if part)
    if isinstance(node, dict):
        if node.get("type") == "text":
            return str(node.get("text", ""))
        return adf_to_text(node.get("content"))
    return ""


def _story_points(fields: dict[str, Any]) -> Any:
    for key in STORY_POINT_FIELDS:
        value = fields.get(key)
        if value is not None:
            return value
    return None


def _sprint_id(fields: dict[str, Any]) -> Any:
    sprints = fields.get(SPRINT_FIELD)
    if isinstance(sprints, list) and sprints:
        latest = sprints[-1]
        if isinstance(latest, dict):
            return latest.get("id")
    return None


def flatten_issue(issue: dict[str, Any]) -> dict[str, Any]:
    """Jira issue -> loose task record."""
    fields: dict[str, Any] = issue.get("fields") or {}
    status = fields.get("status") or {}
    priority = fields.get("priority") or {}
    return {
        "id": issue.get("key") or issue.get("id"),
        "title": fields.get("summary"),
        "description": adf_to_text(fields.get("description")),
        "status": status.get("name") if isinstance(status, dict) else status,
        "assignee": fields.get("assignee"),
        "priority": priority.get("name") if isinstance(priority, dict) else priority,
        "story_points": _story_points(fields),
        "sprint_id": _sprint_id(fields),
        "labels": fields.get("labels") or [],
        "created_at": fields.get("created"),
        "updated_at": fields.get("updated"),
        "due_date": fields.get("duedate"),
        "issue_type": (fields.get("issuetype") or {}).get("name"),
    }


class JiraConnector(BasePlatformConnector):
    """Connector for Jira – projects and issues."""

    meta = ConnectorMeta(
        name="Jira",
        slug="jira",
        auth_type=AuthType.BEARER_TOKEN,
        entity_types=["projects", "issues", "sprints", "users"],
        default_project_status="active",
        description="Jira – project and issue tracking",
    )

    # ── REST helpers ─────────────────────────────────────────────────────

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def fetch_project(self, project_id: str) -> dict[str, Any]:
        project = await self.fetcher.fetch_record(
            PROJECT,
            project_id,
            [
                Endpoint("/rest/api/3/project/{project_id}"),
                Endpoint("/rest/api/2/project/{project_id}"),
            ],
        )
        flattened: dict[str, Any] = dict(project)
        flattened["description"] = adf_to_text(project.get("description"))
        if project.get("archived"):
            flattened["status"] = "archived"
        return flattened

    async def fetch_tasks(self, project_id: str) -> list[dict[str, Any]]:
        search_params: dict[str, Any] = {
            "jql": f"project = {project_id} ORDER BY created ASC",
            "fields": ISSUE_FIELDS,
        }
        issues = await self.fetcher.fetch(
            ISSUES,
            project_id,
            [
                Endpoint("/rest/api/3/search", params=search_params, page_size=100),
                Endpoint("/rest/api/2/search", params=search_params, page_size=100),
            ],
        )
        return [flatten_issue(issue) for issue in issues]

    async def fetch_sprints(self, project_id: str) -> list[dict[str, Any]]:
        boards = await self.fetcher.fetch(
            BOARDS,
            project_id,
            [Endpoint("/rest/agile/1.0/board", params={"projectKeyOrId": project_id})],
        )
        if not boards:
            return []

        board_id = str(boards[0].get("id"))
        sprints = await self.fetcher.fetch(
            SPRINTS,
            board_id,
            [Endpoint("/rest/agile/1.0/board/{project_id}/sprint", page_size=50)],
        )
        return [
            {
                "id": sprint.get("id"),
                "name": sprint.get("name"),
                "status": sprint.get("state"),
                "start_date": sprint.get("startDate"),
                "end_date": sprint.get("endDate") or sprint.get("completeDate"),
                "goal": sprint.get("goal"),
            }
            for sprint in sprints
        ]

    async def fetch_team(self, project_id: str) -> list[dict[str, Any]]:
        users = await self.fetcher.fetch(
            USERS,
            project_id,
            [
                Endpoint(
                    "/rest/api/3/user/assignable/search",
                    params={"project": project_id, "maxResults": 200},
                ),
            ],
        )
        return [
            {
                "id": user.get("accountId"),
                "name": user.get("displayName"),
                "email": user.get("emailAddress"),
                "role": "Developer",
            }
            for user in users
            if user.get("active", True)
        ]

    def platform_details(self, bundle: RawProjectBundle) -> dict[str, Any]:
        open_issues = sum(
            1
            for issue in bundle.tasks
            if str(issue.get("status") or "").lower() not in ("done", "closed", "resolved")
        )
        issue_types: dict[str, int] = {}
        for issue in bundle.tasks:
            issue_type = issue.get("issue_type") or "Unknown"
            issue_types[issue_type] = issue_types.get(issue_type, 0) + 1
        return {
            "key": bundle.project.get("key"),
            "issueCount": len(bundle.tasks),
            "openIssues": open_issues,
            "issueTypes": issue_types,
            "projectType": bundle.project.get("projectTypeKey"),
        }
