from datetime import datetime, timedelta, timezone

from connectors.models import UNASSIGNED, Priority, SprintStatus, TaskStatus
from services.normalizer import (
    DataNormalizer,
    completeness_score,
    extract_labels,
    freshness_score,
    map_priority,
    map_status,
    parse_datetime,
)


def _normalizer() -> DataNormalizer:
    return DataNormalizer("trofos", display_name="TROFOS")


def test_empty_input_produces_defaults() -> None:
    project = _normalizer().normalize(None, None, None, None)

    assert project.name == "Unnamed TROFOS Project"
    assert project.id.startswith("trofos-project-")
    assert project.status == "active"
    assert project.tasks == []
    assert project.team == []
    assert project.sprints == []
    assert project.data_quality.completeness == 0
    assert project.data_quality.accuracy == 95
    assert project.metric("Completion Rate").value == 0


def test_priority_mapping() -> None:
    assert map_priority("Urgent") is Priority.HIGH
    assert map_priority("Critical") is Priority.HIGH
    assert map_priority({"name": "Minor"}) is Priority.LOW
    assert map_priority("whatever") is Priority.MEDIUM
    assert map_priority(None) is Priority.MEDIUM


def test_status_mapping_prefers_exact_synonyms() -> None:
    assert map_status("Completed") == (TaskStatus.DONE.value, True)
    assert map_status("code_review") == (TaskStatus.IN_REVIEW.value, True)
    assert map_status("Working on it") == (TaskStatus.IN_PROGRESS.value, True)
    assert map_status(None) == (TaskStatus.TODO.value, True)
    assert map_status("Blocked") == ("Blocked", False)


def test_unmapped_statuses_pass_through_and_are_reported() -> None:
    project = _normalizer().normalize(
        {"id": 1, "name": "Apollo"},
        [{"id": 1, "title": "A", "status": "Blocked"}, {"id": 2, "title": "B", "status": "Blocked"}],
    )

    assert [task.status for task in project.tasks] == ["Blocked", "Blocked"]
    assert project.unmapped_statuses == ["Blocked"]


def test_assignee_resolution_order() -> None:
    resources = [{"user_id": 7, "name": "Ada Lovelace", "role": "Senior Engineer"}]
    tasks = [
        {"id": 1, "title": "display", "assignee": {"displayName": "Grace"}, "assignee_id": 7},
        {"id": 2, "title": "string", "assignee": "Linus"},
        {"id": 3, "title": "name object", "assignee": {"name": "Ken"}},
        {"id": 4, "title": "by id", "assignee_id": "7"},
        {"id": 5, "title": "by numeric float id", "assignee_id": 7.0},
        {"id": 6, "title": "unknown", "assignee_id": 99},
    ]

    project = _normalizer().normalize({"id": 1}, tasks, [], resources)

    assert [task.assignee for task in project.tasks] == [
        "Grace",
        "Linus",
        "Ken",
        "Ada Lovelace",
        "Ada Lovelace",
        UNASSIGNED,
    ]


def test_team_is_derived_from_assignees_and_enriched_from_resources() -> None:
    resources = [{"user_id": 7, "name": "Ada", "role": "Scrum Master", "email": "ada@example.com"}]
    tasks = [
        {"id": 1, "title": "a", "assignee_id": 7},
        {"id": 2, "title": "b", "assignee": "Ada"},
        {"id": 3, "title": "c", "assignee": "Bob Smith"},
        {"id": 4, "title": "d"},
    ]

    project = _normalizer().normalize({"id": 1}, tasks, [], resources)
    team = {member.name: member for member in project.team}

    assert set(team) == {"Ada", "Bob Smith"}
    assert team["Ada"].task_count == 2
    assert team["Ada"].role == "Scrum Master"
    assert team["Ada"].email == "ada@example.com"
    assert team["Bob Smith"].id == "member-bob-smith"
    assert team["Bob Smith"].role == "Team Member"


def test_completion_rate_and_sprint_points_from_tasks() -> None:
    tasks = [
        {"id": 1, "title": "a", "status": "done", "story_points": 3, "sprint_id": 10},
        {"id": 2, "title": "b", "status": "todo", "story_points": "5", "sprint_id": 10},
        {"id": 3, "title": "c", "status": "closed"},
        {"id": 4, "title": "d", "status": "doing"},
    ]
    sprints = [
        {"id": 10, "name": "S1", "status": "closed"},
        {"id": 11, "name": "S2", "status": "active", "planned_points": 8, "completed_points": 2},
    ]

    project = _normalizer().normalize({"id": 1, "name": "Apollo"}, tasks, sprints)

    assert project.metric("Completion Rate").value == 50
    s1, s2 = project.sprints
    assert (s1.status, s1.planned_points, s1.completed_points) == (SprintStatus.COMPLETED, 8, 3)
    assert (s2.status, s2.planned_points, s2.completed_points) == (SprintStatus.ACTIVE, 8, 2)
    assert project.metric("Total Story Points").value == 8
    assert project.metric("Average Velocity").value == 3


def test_completeness_weights_raw_field_presence() -> None:
    assert completeness_score([]) == 0
    assert completeness_score([{"title": True, "status": True, "assignee": True}]) == 100
    assert completeness_score(
        [
            {"title": True, "status": False, "assignee": False},
            {"title": True, "status": True, "assignee": False},
        ]
    ) == 55


def test_freshness_buckets() -> None:
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)

    assert freshness_score(now - timedelta(hours=2), now) == 100
    assert freshness_score(now - timedelta(days=3), now) == 90
    assert freshness_score(now - timedelta(days=10), now) == 80
    assert freshness_score(now - timedelta(days=45), now) == 70
    assert freshness_score(now - timedelta(days=400), now) == 60


def test_parse_datetime_accepts_iso_jira_and_epoch_values() -> None:
    expected = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    assert parse_datetime("2026-01-02T03:04:05Z") == expected
    assert parse_datetime("2026-01-02T03:04:05.000+0000") == expected
    assert parse_datetime(int(expected.timestamp() * 1000)) == expected
    assert parse_datetime("not a date") is None
    assert parse_datetime(True) is None


def test_labels_combine_explicit_hashtags_and_brackets() -> None:
    labels = extract_labels(["backend", {"name": "Backend"}], "Fix #auth flow [urgent]", None)

    assert labels == ["backend", "auth", "urgent"]


def test_known_project_status_is_kept() -> None:
    project = DataNormalizer("jira").normalize({"id": "1", "status": "Archived"})

    assert project.status == "archived"
    assert project.name == "Unnamed Jira Project"
