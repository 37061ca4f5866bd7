"""
Canonical Pydantic models for normalized project data.

Connectors return raw platform records (RawProjectBundle); the normalizer
turns them into a CanonicalProject. Canonical models are frozen: a project
is rebuilt from fresh data, never patched in place. Every list field is
always present, even when the upstream payload had null in its place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Raw connector output
# ---------------------------------------------------------------------------


@dataclass
class RawProjectBundle:
    """Everything a connector fetched for one project, still platform-shaped."""

    project: dict[str, Any]
    tasks: list[dict[str, Any]] = field(default_factory=list)
    sprints: list[dict[str, Any]] = field(default_factory=list)
    resources: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SprintStatus(str, Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class TaskStatus(str, Enum):
    """Canonical status buckets. Unmapped raw statuses pass through as-is."""

    DONE = "Done"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    TODO = "To Do"


UNASSIGNED: str = "Unassigned"


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


class _Canonical(BaseModel):
    model_config = ConfigDict(frozen=True)


class CanonicalTask(_Canonical):
    """A task / issue / backlog item / board item."""

    id: str
    title: str
    description: str = ""
    status: str = TaskStatus.TODO.value
    assignee: str = UNASSIGNED
    priority: Priority = Priority.MEDIUM
    story_points: float | None = None
    sprint_ref: str | None = None
    labels: list[str] = Field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None
    due_date: datetime | None = None

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE.value


class CanonicalTeamMember(_Canonical):
    id: str
    name: str
    role: str = "Team Member"
    email: str | None = None
    task_count: int = 0


class CanonicalSprint(_Canonical):
    id: str
    name: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: SprintStatus = SprintStatus.PLANNING
    planned_points: float = 0
    completed_points: float = 0
    goal: str | None = None


class CanonicalMetric(_Canonical):
    name: str
    value: float | int | str
    type: str = "number"  # 'number', 'percentage', 'text'
    category: str = "general"


class DataQuality(_Canonical):
    completeness: int = 0
    accuracy: int = 0
    freshness: int = 0


class CanonicalProject(_Canonical):
    """Platform-agnostic project representation."""

    id: str
    name: str
    description: str = ""
    status: str = "active"
    platform: str
    tasks: list[CanonicalTask] = Field(default_factory=list)
    team: list[CanonicalTeamMember] = Field(default_factory=list)
    metrics: list[CanonicalMetric] = Field(default_factory=list)
    sprints: list[CanonicalSprint] = Field(default_factory=list)
    platform_specific: dict[str, Any] = Field(default_factory=dict)
    data_quality: DataQuality = Field(default_factory=DataQuality)
    last_updated: datetime
    unmapped_statuses: list[str] = Field(default_factory=list)

    @field_validator("tasks", "team", "metrics", "sprints", "unmapped_statuses", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("platform_specific", mode="before")
    @classmethod
    def _dict_or_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def metric(self, name: str) -> CanonicalMetric | None:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None

    def summary(self) -> dict[str, Any]:
        """Snapshot stored on the job record once data is normalized."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "platform": self.platform,
            "task_count": len(self.tasks),
            "team_size": len(self.team),
            "sprint_count": len(self.sprints),
        }
