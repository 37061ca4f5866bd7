"""
Shared analytics helpers over a CanonicalProject.

Pure functions, no I/O. Used by the report renderers and by the project
preview endpoint.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from connectors.models import (
    UNASSIGNED,
    CanonicalProject,
    CanonicalTask,
    Priority,
    SprintStatus,
    TaskStatus,
)
from services.normalizer import completion_rate

STALE_AFTER_DAYS: int = 14
MAX_UTILIZATION: int = 150
CRITICAL_PATH_LENGTH: int = 3

PRIORITY_ORDER: dict[Priority, int] = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass(frozen=True)
class WorkloadEntry:
    name: str
    task_count: int
    completed: int
    utilization: int
    status: str  # 'overloaded', 'balanced', 'underutilized'


@dataclass(frozen=True)
class RiskAssessment:
    level: str  # 'low', 'medium', 'high'
    blocked: int
    overdue: int
    stale: int
    factors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectAnalytics:
    completion_rate: int
    status_distribution: dict[str, int]
    priority_breakdown: dict[str, int]
    workload: list[WorkloadEntry]
    team_efficiency: int
    quality_score: int
    collaboration_score: int
    sprint_adherence: int
    velocity_trend: list[float]
    risk: RiskAssessment
    recommended_actions: list[str]
    critical_path: list[str]
    recommended_template: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole else 0.0


def status_distribution(project: CanonicalProject) -> dict[str, int]:
    """Task counts per status, canonical buckets first (always present)."""
    counts: dict[str, int] = {bucket.value: 0 for bucket in TaskStatus}
    for task in project.tasks:
        counts[task.status] = counts.get(task.status, 0) + 1
    return counts


def priority_breakdown(project: CanonicalProject) -> dict[str, int]:
    counts: dict[str, int] = {priority.value: 0 for priority in Priority}
    for task in project.tasks:
        counts[task.priority.value] += 1
    return counts


def assignment_coverage(project: CanonicalProject) -> float:
    assigned = sum(1 for task in project.tasks if task.assignee != UNASSIGNED)
    return _percent(assigned, len(project.tasks))


def sprint_adherence(project: CanonicalProject) -> int:
    """Completed vs planned points over finished sprints; falls back to completion rate."""
    finished = [sprint for sprint in project.sprints if sprint.status is SprintStatus.COMPLETED]
    planned = sum(sprint.planned_points for sprint in finished)
    if not planned:
        return completion_rate(project.tasks)
    completed = sum(sprint.completed_points for sprint in finished)
    return min(100, round(_percent(completed, planned)))


def velocity_trend(project: CanonicalProject) -> list[float]:
    """Completed points of finished sprints in start-date order."""
    finished = [sprint for sprint in project.sprints if sprint.status is SprintStatus.COMPLETED]
    finished.sort(key=lambda sprint: sprint.start_date or datetime.min.replace(tzinfo=timezone.utc))
    return [sprint.completed_points for sprint in finished]


def workload_distribution(project: CanonicalProject) -> list[WorkloadEntry]:
    """Per-member load relative to the team average, capped at 150%."""
    if not project.team:
        return []
    average = sum(member.task_count for member in project.team) / len(project.team)
    entries: list[WorkloadEntry] = []
    for member in project.team:
        utilization = min(MAX_UTILIZATION, round(_percent(member.task_count, average)))
        if utilization > 120:
            status = "overloaded"
        elif utilization < 60:
            status = "underutilized"
        else:
            status = "balanced"
        completed = sum(
            1 for task in project.tasks if task.assignee == member.name and task.is_done
        )
        entries.append(
            WorkloadEntry(
                name=member.name,
                task_count=member.task_count,
                completed=completed,
                utilization=utilization,
                status=status,
            )
        )
    return entries


def team_efficiency(project: CanonicalProject) -> int:
    """30% completion, 50% sprint adherence, 20% assignment coverage."""
    score = (
        completion_rate(project.tasks) * 0.3
        + sprint_adherence(project) * 0.5
        + assignment_coverage(project) * 0.2
    )
    return round(score)


def _is_blocked(task: CanonicalTask) -> bool:
    if "block" in task.status.lower():
        return True
    return any("block" in label.lower() for label in task.labels)


def _is_overdue(task: CanonicalTask, now: datetime) -> bool:
    return not task.is_done and task.due_date is not None and task.due_date < now


def _is_stale(task: CanonicalTask, now: datetime) -> bool:
    if task.is_done or task.updated is None:
        return False
    return now - task.updated > timedelta(days=STALE_AFTER_DAYS)


def quality_score(project: CanonicalProject) -> int:
    """30% data completeness, 40% unblocked share, 30% data freshness."""
    blocked = sum(1 for task in project.tasks if _is_blocked(task))
    unblocked = 100 - _percent(blocked, len(project.tasks))
    score = (
        project.data_quality.completeness * 0.3
        + unblocked * 0.4
        + project.data_quality.freshness * 0.3
    )
    return round(score)


def collaboration_score(project: CanonicalProject, workload: list[WorkloadEntry] | None = None) -> int:
    """60% workload balance, 40% assignment coverage."""
    entries = workload if workload is not None else workload_distribution(project)
    if entries:
        balanced = sum(1 for entry in entries if entry.status == "balanced")
        balance = _percent(balanced, len(entries))
    else:
        balance = 0.0
    return round(balance * 0.6 + assignment_coverage(project) * 0.4)


def assess_risk(project: CanonicalProject, now: datetime | None = None) -> RiskAssessment:
    """
    High when >10% of tasks are blocked, >20% overdue, or sprint adherence
    is under 50; medium at 5%, 10% and 75 respectively.
    """
    now = now or _now()
    total = len(project.tasks)
    blocked = sum(1 for task in project.tasks if _is_blocked(task))
    overdue = sum(1 for task in project.tasks if _is_overdue(task, now))
    stale = sum(1 for task in project.tasks if _is_stale(task, now))
    adherence = sprint_adherence(project) if project.sprints else 100

    blocked_pct = _percent(blocked, total)
    overdue_pct = _percent(overdue, total)

    factors: list[str] = []
    if blocked_pct > 5:
        factors.append(f"{blocked} blocked task(s)")
    if overdue_pct > 10:
        factors.append(f"{overdue} overdue task(s)")
    if adherence < 75:
        factors.append(f"sprint adherence at {adherence}%")
    if stale:
        factors.append(f"{stale} task(s) without updates for {STALE_AFTER_DAYS}+ days")

    if blocked_pct > 10 or overdue_pct > 20 or adherence < 50:
        level = "high"
    elif blocked_pct > 5 or overdue_pct > 10 or adherence < 75:
        level = "medium"
    else:
        level = "low"
    return RiskAssessment(level=level, blocked=blocked, overdue=overdue, stale=stale, factors=factors)


def critical_path(project: CanonicalProject) -> list[str]:
    """First few unfinished tasks, highest priority first."""
    open_tasks = [task for task in project.tasks if not task.is_done]
    open_tasks.sort(key=lambda task: PRIORITY_ORDER[task.priority])
    return [task.title for task in open_tasks[:CRITICAL_PATH_LENGTH]]


def recommended_actions(
    project: CanonicalProject,
    risk: RiskAssessment,
    workload: list[WorkloadEntry],
) -> list[str]:
    actions: list[str] = []
    if risk.blocked:
        actions.append("Resolve blocked tasks before starting new work")
    if risk.overdue:
        actions.append("Re-plan or re-scope overdue tasks")
    overloaded = [entry.name for entry in workload if entry.status == "overloaded"]
    if overloaded:
        actions.append(f"Rebalance workload away from {', '.join(overloaded)}")
    unassigned = sum(1 for task in project.tasks if task.assignee == UNASSIGNED)
    if unassigned:
        actions.append(f"Assign owners to {unassigned} unassigned task(s)")
    if project.data_quality.freshness < 80:
        actions.append("Refresh project data; the latest update is over a week old")
    if not actions:
        actions.append("Maintain current pace; no blocking issues detected")
    return actions


def recommended_template(project: CanonicalProject) -> str:
    """Small projects get the executive summary, large ones the detailed analysis."""
    task_count = len(project.tasks)
    if task_count < 10:
        return "executive"
    if task_count > 50:
        return "detailed"
    return "standard"


def summarize(project: CanonicalProject, now: datetime | None = None) -> ProjectAnalytics:
    workload = workload_distribution(project)
    risk = assess_risk(project, now=now)
    return ProjectAnalytics(
        completion_rate=completion_rate(project.tasks),
        status_distribution=status_distribution(project),
        priority_breakdown=priority_breakdown(project),
        workload=workload,
        team_efficiency=team_efficiency(project),
        quality_score=quality_score(project),
        collaboration_score=collaboration_score(project, workload),
        sprint_adherence=sprint_adherence(project),
        velocity_trend=velocity_trend(project),
        risk=risk,
        recommended_actions=recommended_actions(project, risk, workload),
        critical_path=critical_path(project),
        recommended_template=recommended_template(project),
    )
