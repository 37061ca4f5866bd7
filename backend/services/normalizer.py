"""
Data normalizer – raw platform records -> CanonicalProject.

Upstream payloads disagree on field names (``title``/``name``/``summary``),
casing (``storyPoints``/``story_points``) and nesting (assignee as an object,
a string, or an id into the member list). The normalizer reconciles them with
fixed alias tables and never raises on a missing or malformed scalar: every
field has a default.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from connectors.models import (
    UNASSIGNED,
    CanonicalMetric,
    CanonicalProject,
    CanonicalSprint,
    CanonicalTask,
    CanonicalTeamMember,
    DataQuality,
    Priority,
    SprintStatus,
    TaskStatus,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mapping tables
# ---------------------------------------------------------------------------

HIGH_PRIORITY_TERMS: tuple[str, ...] = ("high", "urgent", "critical")
LOW_PRIORITY_TERMS: tuple[str, ...] = ("low", "minor")

# Synonyms are stored normalized: lower case, separators collapsed to spaces
STATUS_SYNONYMS: dict[TaskStatus, tuple[str, ...]] = {
    TaskStatus.DONE: ("done", "completed", "complete", "finished", "closed", "resolved"),
    TaskStatus.IN_REVIEW: ("review", "in review", "code review", "testing", "qa", "verification"),
    TaskStatus.IN_PROGRESS: ("in progress", "doing", "active", "started", "working on it", "in development", "ongoing"),
    TaskStatus.TODO: ("todo", "to do", "backlog", "new", "open", "not started", "selected for development", "planned"),
}

SPRINT_STATUS_SYNONYMS: dict[SprintStatus, tuple[str, ...]] = {
    SprintStatus.ACTIVE: ("active", "current", "running", "in progress", "started"),
    SprintStatus.COMPLETED: ("completed", "complete", "done", "finished", "closed"),
}

PROJECT_STATUSES: frozenset[str] = frozenset(
    {"active", "private", "public", "archived", "completed", "on hold"}
)

ROLE_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("scrum", "master"), "Scrum Master"),
    (("owner", "product"), "Product Owner"),
    (("manager", "lead"), "Project Manager"),
    (("developer", "engineer"), "Developer"),
    (("designer",), "Designer"),
    (("tester", "qa"), "QA Engineer"),
    (("analyst",), "Business Analyst"),
)
DEFAULT_ROLE: str = "Team Member"

# ---------------------------------------------------------------------------
# Field aliases
# ---------------------------------------------------------------------------

PROJECT_ID_KEYS = ("id", "projectId", "project_id", "key")
PROJECT_NAME_KEYS = ("name", "title", "projectName", "project_name")
UPDATED_KEYS = ("updated_at", "updatedAt", "updated", "last_updated", "lastUpdated")
CREATED_KEYS = ("created_at", "createdAt", "created")

TASK_ID_KEYS = ("id", "key", "backlog_id", "itemId")
TASK_TITLE_KEYS = ("title", "name", "summary")
TASK_STATUS_KEYS = ("status", "state", "status_name")
STORY_POINT_KEYS = ("story_points", "storyPoints", "points", "estimate")
SPRINT_REF_KEYS = ("sprint_id", "sprintId", "sprint")
DUE_DATE_KEYS = ("due_date", "dueDate", "duedate", "deadline")

ASSIGNEE_KEYS = ("assignee", "assigned_to", "assignedTo", "owner")
ASSIGNEE_ID_KEYS = ("assignee_id", "assigneeId", "assigned_to_id", "user_id", "userId")
DISPLAY_NAME_KEYS = ("displayName", "display_name", "user_display_name")

RESOURCE_ID_KEYS = ("id", "user_id", "userId", "accountId", "account_id")
RESOURCE_NAME_KEYS = ("name", "displayName", "display_name", "user_display_name", "username")
RESOURCE_ROLE_KEYS = ("role", "position", "title", "role_name")

HASHTAG_RE = re.compile(r"#([A-Za-z0-9][\w-]*)")
BRACKET_RE = re.compile(r"\[([^\[\]]+)\]")

# Completeness weights (percent) for title, status and assignee presence
COMPLETENESS_WEIGHTS: dict[str, int] = {"title": 40, "status": 30, "assignee": 30}
LIVE_DATA_ACCURACY: int = 95


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _first(record: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _identifier(value: Any) -> str | None:
    """Ids compare as trimmed, lower-cased strings (``7``, ``"7"``, ``" 7 "``)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = _text(value)
    return text.lower() if text else None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_datetime(value: Any) -> datetime | None:
    """ISO strings (``Z`` suffix allowed) or epoch seconds/milliseconds -> aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        # Jira sends +0000 offsets without a colon
        raw = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", raw)
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _normalize_token(value: str) -> str:
    return re.sub(r"[\s_\-]+", " ", value.strip().lower())


# ---------------------------------------------------------------------------
# Public mapping functions
# ---------------------------------------------------------------------------


def map_priority(value: Any) -> Priority:
    """high/urgent/critical -> HIGH, low/minor -> LOW, anything else -> MEDIUM."""
    if isinstance(value, dict):
        value = _first(value, ("name", "label", "value"))
    text = _text(value)
    if text is None:
        return Priority.MEDIUM
    lowered = text.lower()
    if any(term in lowered for term in HIGH_PRIORITY_TERMS):
        return Priority.HIGH
    if any(term in lowered for term in LOW_PRIORITY_TERMS):
        return Priority.LOW
    return Priority.MEDIUM


def map_status(value: Any) -> tuple[str, bool]:
    """
    Bucket a raw status. Returns ``(status, mapped)``; unmapped values come
    back unchanged with ``mapped=False``. Exact synonym matches win over
    substring matches.
    """
    if isinstance(value, dict):
        value = _first(value, ("name", "label", "value", "text"))
    text = _text(value)
    if text is None:
        return TaskStatus.TODO.value, True

    token = _normalize_token(text)
    for bucket, synonyms in STATUS_SYNONYMS.items():
        if token in synonyms:
            return bucket.value, True
    for bucket, synonyms in STATUS_SYNONYMS.items():
        if any(synonym in token for synonym in synonyms):
            return bucket.value, True
    return text, False


def map_sprint_status(value: Any) -> SprintStatus:
    text = _text(value)
    if text is None:
        return SprintStatus.PLANNING
    token = _normalize_token(text)
    for status, synonyms in SPRINT_STATUS_SYNONYMS.items():
        if token in synonyms:
            return status
    return SprintStatus.PLANNING


def map_role(value: Any) -> str:
    text = _text(value)
    if text is None:
        return DEFAULT_ROLE
    lowered = text.lower()
    for terms, role in ROLE_RULES:
        if any(term in lowered for term in terms):
            return role
    return DEFAULT_ROLE


def extract_labels(explicit: Any, *texts: str | None) -> list[str]:
    """Explicit labels first, then ``#hashtags`` and ``[bracketed]`` tokens."""
    labels: list[str] = []
    if isinstance(explicit, list):
        for label in explicit:
            name = _text(label.get("name") if isinstance(label, dict) else label)
            if name:
                labels.append(name)
    elif isinstance(explicit, str):
        labels.extend(part.strip() for part in explicit.split(",") if part.strip())

    for text in texts:
        if not text:
            continue
        labels.extend(match.strip() for match in HASHTAG_RE.findall(text))
        labels.extend(match.strip() for match in BRACKET_RE.findall(text) if match.strip())

    seen: set[str] = set()
    unique: list[str] = []
    for label in labels:
        key = label.lower()
        if key not in seen:
            seen.add(key)
            unique.append(label)
    return unique


def completion_rate(tasks: list[CanonicalTask]) -> int:
    """Percentage of tasks bucketed Done; 0 for an empty list."""
    if not tasks:
        return 0
    done = sum(1 for task in tasks if task.is_done)
    return round(done / len(tasks) * 100)


def completeness_score(presence: list[dict[str, bool]]) -> int:
    """
    Weighted presence of title, status and assignee across tasks, capped at 100.

    ``presence`` holds one ``{"title": bool, "status": bool, "assignee": bool}``
    entry per task.
    """
    if not presence:
        return 0
    total = len(presence)
    score = sum(
        sum(1 for flags in presence if flags.get(field)) / total * weight
        for field, weight in COMPLETENESS_WEIGHTS.items()
    )
    return min(100, round(score))


def freshness_score(last_updated: datetime, now: datetime | None = None) -> int:
    age_days = ((now or _now()) - last_updated).total_seconds() / 86400
    if age_days < 1:
        return 100
    if age_days < 7:
        return 90
    if age_days < 30:
        return 80
    if age_days < 90:
        return 70
    return 60


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class _Roster:
    """Resource list indexed by normalized id and by lower-cased name."""

    def __init__(self, resources: list[dict[str, Any]]) -> None:
        self.members: list[dict[str, Any]] = []
        self._by_id: dict[str, dict[str, Any]] = {}
        self._by_name: dict[str, dict[str, Any]] = {}
        for raw in resources:
            if not isinstance(raw, dict):
                continue
            member = self._normalize(raw)
            self.members.append(member)
            for key in RESOURCE_ID_KEYS:
                ident = _identifier(raw.get(key))
                if ident and ident not in self._by_id:
                    self._by_id[ident] = member
            if member["name"]:
                self._by_name.setdefault(member["name"].lower(), member)

    @staticmethod
    def _normalize(raw: dict[str, Any]) -> dict[str, Any]:
        nested_user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
        name = _text(_first(raw, RESOURCE_NAME_KEYS)) or _text(_first(nested_user, RESOURCE_NAME_KEYS))
        return {
            "id": _text(_first(raw, RESOURCE_ID_KEYS)) or _text(_first(nested_user, RESOURCE_ID_KEYS)),
            "name": name,
            "role": map_role(_first(raw, RESOURCE_ROLE_KEYS)),
            "email": _text(_first(raw, ("email", "emailAddress"))) or _text(nested_user.get("email")),
        }

    def by_id(self, value: Any) -> dict[str, Any] | None:
        ident = _identifier(value)
        return self._by_id.get(ident) if ident else None

    def by_name(self, name: str) -> dict[str, Any] | None:
        return self._by_name.get(name.lower())


class DataNormalizer:
    """Normalize one platform's raw records into a CanonicalProject."""

    def __init__(
        self,
        platform: str,
        display_name: str | None = None,
        default_status: str = "active",
    ) -> None:
        self.platform = platform
        self.display_name = display_name or platform.capitalize()
        self.default_status = default_status

    # ── Tasks ────────────────────────────────────────────────────────────

    def resolve_assignee(self, raw: dict[str, Any], roster: _Roster) -> str:
        """Display-name object, plain string, ``name`` object, then id lookup."""
        values = [raw.get(key) for key in ASSIGNEE_KEYS if raw.get(key) is not None]

        for value in values:
            if isinstance(value, dict):
                name = _text(_first(value, DISPLAY_NAME_KEYS))
                if name:
                    return name
        for value in values:
            if isinstance(value, str) and value.strip():
                return value.strip()
        for value in values:
            if isinstance(value, dict):
                name = _text(value.get("name"))
                if name:
                    return name

        references: list[Any] = [raw.get(key) for key in ASSIGNEE_ID_KEYS]
        references.extend(
            value.get("id") if isinstance(value, dict) else value
            for value in values
            if not isinstance(value, str)
        )
        for reference in references:
            member = roster.by_id(reference)
            if member and member["name"]:
                return member["name"]
        return UNASSIGNED

    def normalize_task(
        self, raw: dict[str, Any], index: int, roster: _Roster, unmapped: list[str]
    ) -> CanonicalTask:
        title = _text(_first(raw, TASK_TITLE_KEYS)) or "Untitled Item"
        description = _text(raw.get("description")) or ""
        status, mapped = map_status(_first(raw, TASK_STATUS_KEYS))
        if not mapped and status not in unmapped:
            logger.info(
                "Unmapped task status passed through",
                extra={"platform": self.platform, "status": status},
            )
            unmapped.append(status)

        sprint_ref = _first(raw, SPRINT_REF_KEYS)
        if isinstance(sprint_ref, dict):
            sprint_ref = sprint_ref.get("id")

        return CanonicalTask(
            id=_text(_first(raw, TASK_ID_KEYS)) or f"{self.platform}-task-{index + 1}",
            title=title,
            description=description,
            status=status,
            assignee=self.resolve_assignee(raw, roster),
            priority=map_priority(raw.get("priority")),
            story_points=_number(_first(raw, STORY_POINT_KEYS)),
            sprint_ref=_text(sprint_ref),
            labels=extract_labels(raw.get("labels") or raw.get("tags"), description, title),
            created=parse_datetime(_first(raw, CREATED_KEYS)),
            updated=parse_datetime(_first(raw, UPDATED_KEYS)),
            due_date=parse_datetime(_first(raw, DUE_DATE_KEYS)),
        )

    # ── Team ─────────────────────────────────────────────────────────────

    def build_team(self, tasks: list[CanonicalTask], roster: _Roster) -> list[CanonicalTeamMember]:
        """Derive the roster from task assignees, deduplicated by display name."""
        counts: dict[str, int] = {}
        for task in tasks:
            if task.assignee == UNASSIGNED:
                continue
            counts[task.assignee] = counts.get(task.assignee, 0) + 1

        team: list[CanonicalTeamMember] = []
        for name, task_count in counts.items():
            known = roster.by_name(name) or {}
            slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "member"
            team.append(
                CanonicalTeamMember(
                    id=known.get("id") or f"member-{slug}",
                    name=name,
                    role=known.get("role") or DEFAULT_ROLE,
                    email=known.get("email"),
                    task_count=task_count,
                )
            )
        return team

    # ── Sprints ──────────────────────────────────────────────────────────

    def normalize_sprint(
        self, raw: dict[str, Any], index: int, tasks: list[CanonicalTask]
    ) -> CanonicalSprint:
        sprint_id = _text(_first(raw, ("id", "sprintId", "sprint_id"))) or f"sprint-{index + 1}"
        sprint_tasks = [task for task in tasks if task.sprint_ref == sprint_id]
        if sprint_tasks:
            planned = sum(task.story_points or 0 for task in sprint_tasks)
            completed = sum(task.story_points or 0 for task in sprint_tasks if task.is_done)
        else:
            planned = _number(_first(raw, ("planned_points", "plannedPoints"))) or 0
            completed = _number(_first(raw, ("completed_points", "completedPoints", "velocity"))) or 0

        return CanonicalSprint(
            id=sprint_id,
            name=_text(_first(raw, ("name", "title"))) or f"Sprint {index + 1}",
            start_date=parse_datetime(_first(raw, ("start_date", "startDate", "startedAt"))),
            end_date=parse_datetime(_first(raw, ("end_date", "endDate", "completeDate"))),
            status=map_sprint_status(_first(raw, ("status", "state"))),
            planned_points=planned,
            completed_points=completed,
            goal=_text(_first(raw, ("goal", "objective"))),
        )

    # ── Metrics ──────────────────────────────────────────────────────────

    def build_metrics(
        self,
        status: str,
        tasks: list[CanonicalTask],
        sprints: list[CanonicalSprint],
        rate: int,
    ) -> list[CanonicalMetric]:
        metrics: list[CanonicalMetric] = [
            CanonicalMetric(name="Total Tasks", value=len(tasks), category="overview"),
            CanonicalMetric(name="Total Sprints", value=len(sprints), category="overview"),
            CanonicalMetric(name="Project Status", value=status, type="text", category="overview"),
        ]
        for bucket in TaskStatus:
            count = sum(1 for task in tasks if task.status == bucket.value)
            metrics.append(CanonicalMetric(name=f"Status: {bucket.value}", value=count, category="status"))
        for priority in Priority:
            count = sum(1 for task in tasks if task.priority is priority)
            metrics.append(CanonicalMetric(name=f"Priority: {priority.value}", value=count, category="priority"))

        total_points = sum(task.story_points or 0 for task in tasks)
        metrics.append(CanonicalMetric(name="Total Story Points", value=total_points, category="velocity"))

        completed_sprints = [sprint for sprint in sprints if sprint.status is SprintStatus.COMPLETED]
        if completed_sprints:
            average = sum(sprint.completed_points for sprint in completed_sprints) / len(completed_sprints)
            metrics.append(
                CanonicalMetric(name="Average Velocity", value=round(average, 1), category="velocity")
            )
        metrics.append(
            CanonicalMetric(name="Completion Rate", value=rate, type="percentage", category="progress")
        )
        return metrics

    # ── Entry point ──────────────────────────────────────────────────────

    def _project_status(self, raw_project: dict[str, Any]) -> str:
        raw_status = _text(_first(raw_project, ("status", "state")))
        if raw_status and raw_status.lower() in PROJECT_STATUSES:
            return raw_status.lower()
        return self.default_status

    def normalize(
        self,
        raw_project: Any,
        raw_tasks: Any = None,
        raw_sprints: Any = None,
        raw_resources: Any = None,
        platform_specific: dict[str, Any] | None = None,
    ) -> CanonicalProject:
        """Build a CanonicalProject. Never raises on missing or malformed scalars."""
        project: dict[str, Any] = raw_project if isinstance(raw_project, dict) else {}
        task_records = [raw for raw in (raw_tasks or []) if isinstance(raw, dict)] if isinstance(raw_tasks, list) else []
        sprint_records = [raw for raw in (raw_sprints or []) if isinstance(raw, dict)] if isinstance(raw_sprints, list) else []
        resource_records = raw_resources if isinstance(raw_resources, list) else []

        roster = _Roster(resource_records)
        unmapped: list[str] = []
        tasks = [
            self.normalize_task(raw, index, roster, unmapped)
            for index, raw in enumerate(task_records)
        ]
        sprints = [
            self.normalize_sprint(raw, index, tasks)
            for index, raw in enumerate(sprint_records)
        ]
        presence = [
            {
                "title": _text(_first(raw, TASK_TITLE_KEYS)) is not None,
                "status": _first(raw, TASK_STATUS_KEYS) is not None,
                "assignee": task.assignee != UNASSIGNED,
            }
            for raw, task in zip(task_records, tasks)
        ]
        team = self.build_team(tasks, roster)
        status = self._project_status(project)
        rate = completion_rate(tasks)

        last_updated = parse_datetime(_first(project, UPDATED_KEYS))
        if last_updated is None:
            task_updates = [task.updated for task in tasks if task.updated]
            last_updated = max(task_updates) if task_updates else _now()

        project_id = _text(_first(project, PROJECT_ID_KEYS)) or f"{self.platform}-project-{uuid.uuid4().hex[:8]}"

        return CanonicalProject(
            id=project_id,
            name=_text(_first(project, PROJECT_NAME_KEYS)) or f"Unnamed {self.display_name} Project",
            description=_text(project.get("description")) or "",
            status=status,
            platform=self.platform,
            tasks=tasks,
            team=team,
            metrics=self.build_metrics(status, tasks, sprints, rate),
            sprints=sprints,
            platform_specific=platform_specific or {},
            data_quality=DataQuality(
                completeness=completeness_score(presence),
                accuracy=LIVE_DATA_ACCURACY,
                freshness=freshness_score(last_updated),
            ),
            last_updated=last_updated,
            unmapped_statuses=unmapped,
        )
