"""
Report markdown builder.

Three templates share the same section builders:

- executive: headline KPIs, risk, recommended actions
- standard:  executive + status/priority breakdown, team, sprints
- detailed:  standard + full task table, data quality, platform details

Section inclusion can be narrowed further through the job configuration
(``include_team``, ``include_sprints``, ``include_tasks``, ``include_metrics``).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from connectors.models import CanonicalProject
from services.analytics import ProjectAnalytics
from services.filenames import TEMPLATE_NAMES

TEMPLATES: tuple[str, ...] = ("standard", "executive", "detailed")
MAX_TASK_ROWS: int = 200


def _cell(value: Any) -> str:
    text = "" if value is None else str(value)
    return text.replace("|", "\\|").replace("\n", " ")


def _table(headers: list[str], rows: list[list[Any]]) -> str:
    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    lines.extend("| " + " | ".join(_cell(value) for value in row) + " |" for row in rows)
    return "\n".join(lines)


def _date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "n/a"


# ── Sections ─────────────────────────────────────────────────────────────


def header_section(project: CanonicalProject, template: str, title: str | None) -> str:
    template_label = TEMPLATE_NAMES.get(template, template).replace("_", " ")
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    lines = [
        f"# {title or project.name}",
        "",
        f"**{template_label}** for *{project.name}* ({project.platform.upper()}) generated {generated}",
        "",
    ]
    if project.description:
        lines += [f"> {project.description}", ""]
    return "\n".join(lines)


def summary_section(project: CanonicalProject, analytics: ProjectAnalytics) -> str:
    rows = [
        ["Project status", project.status.title()],
        ["Tasks", len(project.tasks)],
        ["Completion", f"{analytics.completion_rate}%"],
        ["Team members", len(project.team)],
        ["Team efficiency", f"{analytics.team_efficiency}%"],
        ["Quality score", f"{analytics.quality_score}%"],
        ["Risk level", analytics.risk.level.upper()],
    ]
    return "## Executive Summary\n\n" + _table(["Indicator", "Value"], rows) + "\n"


def risk_section(analytics: ProjectAnalytics) -> str:
    lines = ["## Risks & Recommendations", ""]
    if analytics.risk.factors:
        lines += [f"- {factor}" for factor in analytics.risk.factors]
    else:
        lines.append("- No significant risk factors detected")
    lines += ["", "### Recommended actions", ""]
    lines += [f"{index}. {action}" for index, action in enumerate(analytics.recommended_actions, 1)]
    if analytics.critical_path:
        lines += ["", "### Critical path", ""]
        lines += [f"- {title}" for title in analytics.critical_path]
    return "\n".join(lines) + "\n"


def breakdown_section(analytics: ProjectAnalytics) -> str:
    status_rows = [[status, count] for status, count in analytics.status_distribution.items()]
    priority_rows = [[priority.title(), count] for priority, count in analytics.priority_breakdown.items()]
    return (
        "## Progress Breakdown\n\n### By status\n\n"
        + _table(["Status", "Tasks"], status_rows)
        + "\n\n### By priority\n\n"
        + _table(["Priority", "Tasks"], priority_rows)
        + "\n"
    )


def team_section(project: CanonicalProject, analytics: ProjectAnalytics) -> str:
    if not project.team:
        return "## Team\n\nNo assigned team members were found.\n"
    roles = {member.name: member.role for member in project.team}
    rows = [
        [entry.name, roles.get(entry.name, ""), entry.task_count, entry.completed, f"{entry.utilization}%", entry.status]
        for entry in analytics.workload
    ]
    return (
        "## Team Workload\n\n"
        + _table(["Member", "Role", "Tasks", "Done", "Load", "Status"], rows)
        + f"\n\nCollaboration score: **{analytics.collaboration_score}%**\n"
    )


def sprint_section(project: CanonicalProject, analytics: ProjectAnalytics) -> str:
    if not project.sprints:
        return ""
    rows = [
        [
            sprint.name,
            sprint.status.value.title(),
            _date(sprint.start_date),
            _date(sprint.end_date),
            sprint.planned_points,
            sprint.completed_points,
        ]
        for sprint in project.sprints
    ]
    lines = [
        "## Sprints",
        "",
        _table(["Sprint", "Status", "Start", "End", "Planned", "Completed"], rows),
        "",
        f"Sprint adherence: **{analytics.sprint_adherence}%**",
    ]
    if analytics.velocity_trend:
        trend = " → ".join(f"{points:g}" for points in analytics.velocity_trend)
        lines += ["", f"Velocity trend: {trend}"]
    return "\n".join(lines) + "\n"


def board_section(project: CanonicalProject) -> str:
    groups: dict[str, int] = project.platform_specific.get("itemsPerGroup") or {}
    if not groups:
        return ""
    rows = [[group, count] for group, count in groups.items()]
    return "## Board Groups\n\n" + _table(["Group", "Items"], rows) + "\n"


def task_section(project: CanonicalProject) -> str:
    if not project.tasks:
        return "## Tasks\n\nNo tasks were returned by the platform.\n"
    rows = [
        [task.id, task.title, task.status, task.priority.value.title(), task.assignee, task.story_points or ""]
        for task in project.tasks[:MAX_TASK_ROWS]
    ]
    text = "## Tasks\n\n" + _table(["ID", "Title", "Status", "Priority", "Assignee", "Points"], rows) + "\n"
    if len(project.tasks) > MAX_TASK_ROWS:
        text += f"\n*{len(project.tasks) - MAX_TASK_ROWS} more tasks not shown.*\n"
    return text


def metrics_section(project: CanonicalProject) -> str:
    rows = [
        [metric.name, f"{metric.value}%" if metric.type == "percentage" else metric.value, metric.category]
        for metric in project.metrics
    ]
    return "## Metrics\n\n" + _table(["Metric", "Value", "Category"], rows) + "\n"


def data_quality_section(project: CanonicalProject) -> str:
    quality = project.data_quality
    lines = [
        "## Data Quality",
        "",
        _table(
            ["Completeness", "Accuracy", "Freshness", "Last updated"],
            [[f"{quality.completeness}%", f"{quality.accuracy}%", f"{quality.freshness}%", _date(project.last_updated)]],
        ),
    ]
    if project.unmapped_statuses:
        lines += ["", "Unrecognized statuses: " + ", ".join(project.unmapped_statuses)]
    return "\n".join(lines) + "\n"


def platform_section(project: CanonicalProject) -> str:
    scalars = {
        key: value
        for key, value in project.platform_specific.items()
        if isinstance(value, (str, int, float)) and not isinstance(value, bool)
    }
    if not scalars:
        return ""
    rows = [[key, value] for key, value in scalars.items()]
    return f"## {project.platform.title()} Details\n\n" + _table(["Field", "Value"], rows) + "\n"


# ── Templates ────────────────────────────────────────────────────────────


def _flag(configuration: dict[str, Any], name: str) -> bool:
    return configuration.get(name, True) is not False


def build_report_markdown(
    project: CanonicalProject,
    analytics: ProjectAnalytics,
    template: str,
    configuration: dict[str, Any] | None = None,
) -> str:
    """Assemble the report markdown for ``template``."""
    if template not in TEMPLATES:
        raise ValueError(f"Unsupported template: {template}")
    configuration = configuration or {}

    sections: list[str] = [
        header_section(project, template, configuration.get("title")),
        summary_section(project, analytics),
        risk_section(analytics),
    ]
    if template in ("standard", "detailed"):
        optional: list[tuple[str, Callable[[], str]]] = [
            ("include_metrics", lambda: breakdown_section(analytics)),
            ("include_team", lambda: team_section(project, analytics)),
            ("include_sprints", lambda: sprint_section(project, analytics)),
            ("include_sprints", lambda: board_section(project)),
        ]
        sections += [build() for flag, build in optional if _flag(configuration, flag)]
    if template == "detailed":
        if _flag(configuration, "include_tasks"):
            sections.append(task_section(project))
        if _flag(configuration, "include_metrics"):
            sections.append(metrics_section(project))
        sections.append(data_quality_section(project))
        sections.append(platform_section(project))

    return "\n".join(section for section in sections if section)
