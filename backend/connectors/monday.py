"""
Monday.com connector – a board is the project, its items are the tasks.

Everything goes through the GraphQL endpoint, so each resource has its own
decoder that digs the board out of ``data.boards[0]``. Item column values
are flattened into loose task fields (status, priority, person, due date).
"""
from __future__ import annotations

import json
import logging
from typing import Any

from connectors.base import BasePlatformConnector
from connectors.decoders import (
    EMPTY_PAYLOAD,
    MALFORMED_PAYLOAD,
    DecodedPayload,
    PayloadShape,
    envelope_layers,
)
from connectors.fetcher import Endpoint, Resource
from connectors.models import RawProjectBundle
from connectors.registry import AuthType, ConnectorMeta

logger = logging.getLogger(__name__)

GRAPHQL_PATH: str = "/v2"
API_VERSION: str = "2024-01"

BOARD_QUERY: str = """
query ($ids: [ID!]) {
  boards(ids: $ids) {
    id name description state updated_at
    groups { id title color }
    columns { id title type }
  }
}
"""

ITEMS_PAGE_QUERY: str = """
query ($ids: [ID!]) {
  boards(ids: $ids) {
    items_page(limit: 500) {
      items {
        id name state created_at updated_at
        group { id title }
        column_values { id text value type column { title } }
      }
    }
  }
}
"""

# Pre-2023-10 API versions expose ``items`` directly on the board
LEGACY_ITEMS_QUERY: str = """
query ($ids: [ID!]) {
  boards(ids: $ids) {
    items {
      id name state created_at updated_at
      group { id title }
      column_values { id text value type column { title } }
    }
  }
}
"""

SUBSCRIBERS_QUERY: str = """
query ($ids: [ID!]) {
  boards(ids: $ids) {
    subscribers { id name email title }
  }
}
"""


def _first_board(payload: Any) -> dict[str, Any] | None:
    if isinstance(payload, dict) and payload.get("errors"):
        return None
    for layer in envelope_layers(payload):
        if isinstance(layer, dict) and isinstance(layer.get("boards"), list):
            boards = [board for board in layer["boards"] if isinstance(board, dict)]
            return boards[0] if boards else None
    return None


def decode_board(payload: Any) -> DecodedPayload:
    board = _first_board(payload)
    if board is None:
        return MALFORMED_PAYLOAD
    return DecodedPayload(PayloadShape.RECORD, record=board)


def _decode_board_list(payload: Any, *path: str) -> DecodedPayload:
    board = _first_board(payload)
    if board is None:
        return MALFORMED_PAYLOAD
    current: Any = board
    for key in path:
        current = current.get(key) if isinstance(current, dict) else None
    if not isinstance(current, list):
        return MALFORMED_PAYLOAD
    records = [value for value in current if isinstance(value, dict)]
    if not records:
        return EMPTY_PAYLOAD
    return DecodedPayload(PayloadShape.COLLECTION, items=records)


def decode_items(payload: Any) -> DecodedPayload:
    decoded = _decode_board_list(payload, "items_page", "items")
    if decoded.shape is PayloadShape.MALFORMED:
        return _decode_board_list(payload, "items")
    return decoded


def decode_subscribers(payload: Any) -> DecodedPayload:
    return _decode_board_list(payload, "subscribers")


PROJECT = Resource(kind="board", critical=True, decoder=decode_board)
ITEMS = Resource(kind="items", decoder=decode_items)
TEAM = Resource(kind="subscribers", decoder=decode_subscribers)


def _column_title(column_value: dict[str, Any]) -> str:
    column = column_value.get("column") or {}
    return str(column.get("title") or column_value.get("id") or "").lower()


def _find_column(
    column_values: list[dict[str, Any]],
    types: tuple[str, ...] = (),
    title_terms: tuple[str, ...] = (),
) -> dict[str, Any] | None:
    for column_value in column_values:
        if column_value.get("type") in types:
            return column_value
        title = _column_title(column_value)
        if any(term in title for term in title_terms):
            return column_value
    return None


def _person_reference(column_value: dict[str, Any] | None) -> Any:
    """First person id from a people column's JSON value."""
    if not column_value or not column_value.get("value"):
        return None
    try:
        data = json.loads(column_value["value"])
    except (TypeError, ValueError):
        logger.debug("Unparseable people column value", extra={"column": column_value.get("id")})
        return None
    people = data.get("personsAndTeams") if isinstance(data, dict) else None
    if isinstance(people, list) and people and isinstance(people[0], dict):
        return people[0].get("id")
    return None


def flatten_item(item: dict[str, Any]) -> dict[str, Any]:
    """Monday item -> loose task record."""
    column_values: list[dict[str, Any]] = [
        value for value in (item.get("column_values") or []) if isinstance(value, dict)
    ]
    status = _find_column(column_values, types=("status", "color"), title_terms=("status",))
    person = _find_column(column_values, types=("people", "multiple-person", "person"))
    priority = _find_column(column_values, title_terms=("priority",))
    due = _find_column(column_values, types=("date",), title_terms=("due",))
    points = _find_column(column_values, title_terms=("point", "estimate"))
    tags = _find_column(column_values, types=("tags",), title_terms=("tag", "label"))

    labels: list[str] = []
    if tags and tags.get("text"):
        labels = [tag.strip() for tag in str(tags["text"]).split(",") if tag.strip()]

    group = item.get("group") or {}
    return {
        "id": item.get("id"),
        "title": item.get("name"),
        "status": (status or {}).get("text") or item.get("state"),
        "assignee": (person or {}).get("text") or None,
        "assignee_id": _person_reference(person),
        "priority": (priority or {}).get("text"),
        "story_points": (points or {}).get("text"),
        "labels": labels,
        "group": group.get("title"),
        "due_date": (due or {}).get("text"),
        "created_at": item.get("created_at"),
        "updated_at": item.get("updated_at"),
    }


class MondayConnector(BasePlatformConnector):
    """Connector for Monday.com boards."""

    meta = ConnectorMeta(
        name="Monday",
        slug="monday",
        auth_type=AuthType.API_KEY,
        entity_types=["boards", "items", "subscribers"],
        default_project_status="active",
        description="Monday.com – work management boards",
    )

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.config.api_key,
            "API-Version": API_VERSION,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _graphql(query: str, board_id: str) -> Endpoint:
        return Endpoint(
            GRAPHQL_PATH,
            method="POST",
            json_body={"query": query, "variables": {"ids": [board_id]}},
        )

    async def fetch_project(self, project_id: str) -> dict[str, Any]:
        board = await self.fetcher.fetch_record(
            PROJECT, project_id, [self._graphql(BOARD_QUERY, project_id)]
        )
        flattened: dict[str, Any] = dict(board)
        flattened["status"] = board.get("state")
        return flattened

    async def fetch_tasks(self, project_id: str) -> list[dict[str, Any]]:
        items = await self.fetcher.fetch(
            ITEMS,
            project_id,
            [
                self._graphql(ITEMS_PAGE_QUERY, project_id),
                self._graphql(LEGACY_ITEMS_QUERY, project_id),
            ],
        )
        return [flatten_item(item) for item in items]

    async def fetch_team(self, project_id: str) -> list[dict[str, Any]]:
        return await self.fetcher.fetch(
            TEAM, project_id, [self._graphql(SUBSCRIBERS_QUERY, project_id)]
        )

    def platform_details(self, bundle: RawProjectBundle) -> dict[str, Any]:
        groups = bundle.project.get("groups") or []
        columns = bundle.project.get("columns") or []
        items_per_group: dict[str, int] = {}
        for item in bundle.tasks:
            group = item.get("group") or "Ungrouped"
            items_per_group[group] = items_per_group.get(group, 0) + 1
        return {
            "itemsCount": len(bundle.tasks),
            "boardState": bundle.project.get("state"),
            "groups": [group.get("title") for group in groups if isinstance(group, dict)],
            "columns": [column.get("title") for column in columns if isinstance(column, dict)],
            "itemsPerGroup": items_per_group,
        }
