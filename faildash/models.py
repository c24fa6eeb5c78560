"""Data records shared by the dashboard: pipelines, failures, tickets and statistics."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any

PLATFORM_JENKINS = "jenkins"
PLATFORM_GITHUB = "github"

# The value a timestamp holds before anything was assigned to it.
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})\Z"
)


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339 with second precision; naive values are local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    offset = value.utcoffset() or timedelta(0)
    stamp = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    total = int(offset.total_seconds())
    if total == 0:
        return stamp + "Z"
    sign = "+" if total > 0 else "-"
    minutes = abs(total) // 60
    return f"{stamp}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(text: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware datetime, or return None if it is not one."""
    if not isinstance(text, str):
        return None
    match = _RFC3339.match(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            return None
        delta = timedelta(hours=hours, minutes=minutes)
        tz = timezone(delta if zone[0] == "+" else -delta)
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micro, tzinfo=tz,
        )
    except ValueError:
        return None


_DEFAULTS: dict[str, Any] = {
    "str": "",
    "int": 0,
    "float": 0.0,
    "time": ZERO_TIME,
    "opttime": None,
    "optint": None,
}
_FACTORIES = {"strlist": list, "floatmap": dict, "intmap": dict}


def _json(key: str, kind: str) -> Any:
    meta = {"json": key, "kind": kind}
    if kind in _FACTORIES:
        return field(default_factory=_FACTORIES[kind], metadata=meta)
    return field(default=_DEFAULTS[kind], metadata=meta)


def _encode_value(kind: str, value: Any) -> Any:
    if kind == "strlist":
        return list(value)
    if kind == "time":
        return format_time(value)
    if kind == "opttime":
        return None if value is None else format_time(value)
    if kind in ("floatmap", "intmap"):
        return dict(value)
    return value


def _to_dict(obj: Any) -> dict[str, Any]:
    return {
        f.metadata["json"]: _encode_value(f.metadata["kind"], getattr(obj, f.name))
        for f in fields(obj)
    }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_value(kind: str, key: str, value: Any) -> Any:
    if kind == "str" and isinstance(value, str):
        return value
    if kind in ("int", "optint") and _is_int(value):
        return value
    if kind == "float" and _is_number(value):
        return float(value)
    if kind == "strlist" and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    if kind in ("time", "opttime"):
        parsed = parse_time(value)
        if parsed is not None:
            return parsed
    if kind == "floatmap" and isinstance(value, dict) and all(
        isinstance(k, str) and _is_number(v) for k, v in value.items()
    ):
        return {k: float(v) for k, v in value.items()}
    if kind == "intmap" and isinstance(value, dict) and all(
        isinstance(k, str) and _is_int(v) for k, v in value.items()
    ):
        return dict(value)
    raise ValueError(f"invalid value for field {key!r}: {value!r}")


def _lookup(data: dict[str, Any], key: str) -> tuple[bool, Any]:
    if key in data:
        return True, data[key]
    folded = key.casefold()
    for name, value in data.items():
        if isinstance(name, str) and name.casefold() == folded:
            return True, value
    return False, None


def _from_dict(cls: type, data: Any) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object for {cls.__name__}, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = f.metadata["json"]
        found, value = _lookup(data, key)
        # A JSON null leaves the field at its default.
        if found and value is not None:
            kwargs[f.name] = _decode_value(f.metadata["kind"], key, value)
    return cls(**kwargs)


@dataclass
class Pipeline:
    """A monitored CI/CD pipeline or workflow."""

    id: int = _json("id", "int")
    platform: str = _json("platform", "str")
    pipeline_name: str = _json("pipelineName", "str")
    repository: str = _json("repository", "str")
    last_status: str = _json("lastStatus", "str")
    last_build_at: datetime | None = _json("lastBuildAt", "opttime")

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Pipeline:
        return _from_dict(cls, data)


@dataclass
class Failure:
    """A single analysed build failure from either platform."""

    id: int = _json("id", "int")
    analysis_id: str = _json("analysisId", "str")
    platform: str = _json("platform", "str")
    pipeline_id: int = _json("pipelineId", "int")
    build_identifier: str = _json("buildIdentifier", "str")
    build_url: str = _json("buildUrl", "str")

    job_name: str = _json("jobName", "str")
    build_number: int = _json("buildNumber", "int")
    branch: str = _json("branch", "str")
    commit_hash: str = _json("commitHash", "str")
    failed_stage: str = _json("failedStage", "str")

    owner: str = _json("owner", "str")
    repo: str = _json("repo", "str")
    workflow: str = _json("workflow", "str")
    run_id: int = _json("runId", "int")
    run_number: int = _json("runNumber", "int")
    actor: str = _json("actor", "str")
    sha: str = _json("sha", "str")
    ref: str = _json("ref", "str")
    failed_step: str = _json("failedStep", "str")
    failed_job: str = _json("failedJob", "str")

    status: str = _json("status", "str")
    category: str = _json("category", "str")
    root_cause_summary: str = _json("rootCauseSummary", "str")
    root_cause_details: str = _json("rootCauseDetails", "str")
    responsible_team: str = _json("responsibleTeam", "str")
    team_email: str = _json("teamEmail", "str")
    confidence: str = _json("confidence", "str")
    evidence: list[str] = _json("evidence", "strlist")
    next_steps: list[str] = _json("nextSteps", "strlist")
    error_messages: list[str] = _json("errorMessages", "strlist")
    analysis_time_ms: int = _json("analysisTimeMs", "int")

    jira_ticket_key: str = _json("jiraTicketKey", "str")
    jira_ticket_url: str = _json("jiraTicketUrl", "str")
    github_issue_url: str = _json("githubIssueUrl", "str")

    failed_at: datetime = _json("failedAt", "time")
    resolved_at: datetime | None = _json("resolvedAt", "opttime")
    mttr_seconds: int | None = _json("mttrSeconds", "optint")

    developer: str = _json("developer", "str")

    created_at: datetime = _json("createdAt", "time")
    updated_at: datetime = _json("updatedAt", "time")

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Failure:
        return _from_dict(cls, data)


@dataclass
class JiraTicket:
    """A Jira ticket created for a failure, tracked until it is closed."""

    id: int = _json("id", "int")
    failure_id: int = _json("failureId", "int")
    ticket_key: str = _json("ticketKey", "str")
    ticket_url: str = _json("ticketUrl", "str")
    summary: str = _json("summary", "str")
    status: str = _json("status", "str")
    assignee: str = _json("assignee", "str")
    created_at: datetime = _json("createdAt", "time")
    updated_at: datetime = _json("updatedAt", "time")

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> JiraTicket:
        return _from_dict(cls, data)


@dataclass
class IngestJenkinsPayload:
    """The analysis result posted by the Jenkins plugin."""

    analysis_id: str = _json("analysisId", "str")
    job_name: str = _json("jobName", "str")
    build_number: int = _json("buildNumber", "int")
    build_url: str = _json("buildUrl", "str")
    repository: str = _json("repository", "str")
    branch: str = _json("branch", "str")
    commit_hash: str = _json("commitHash", "str")
    failed_stage: str = _json("failedStage", "str")
    status: str = _json("status", "str")
    category: str = _json("category", "str")
    root_cause_summary: str = _json("rootCauseSummary", "str")
    root_cause_details: str = _json("rootCauseDetails", "str")
    responsible_team: str = _json("responsibleTeam", "str")
    team_email: str = _json("teamEmail", "str")
    confidence: str = _json("confidence", "str")
    evidence: list[str] = _json("evidence", "strlist")
    next_steps: list[str] = _json("nextSteps", "strlist")
    error_messages: list[str] = _json("errorMessages", "strlist")
    analysis_time_ms: int = _json("analysisTimeMs", "int")
    jira_ticket_key: str = _json("jiraTicketKey", "str")
    jira_ticket_url: str = _json("jiraTicketUrl", "str")
    developer: str = _json("developer", "str")

    @classmethod
    def from_dict(cls, data: Any) -> IngestJenkinsPayload:
        return _from_dict(cls, data)


@dataclass
class IngestGithubPayload:
    """The analysis result posted by the GitHub Action."""

    analysis_id: str = _json("analysisId", "str")
    owner: str = _json("owner", "str")
    repo: str = _json("repo", "str")
    workflow: str = _json("workflow", "str")
    run_id: int = _json("runId", "int")
    run_number: int = _json("runNumber", "int")
    actor: str = _json("actor", "str")
    sha: str = _json("sha", "str")
    ref: str = _json("ref", "str")
    failed_step: str = _json("failedStep", "str")
    failed_job: str = _json("failedJob", "str")
    status: str = _json("status", "str")
    category: str = _json("category", "str")
    root_cause_summary: str = _json("rootCauseSummary", "str")
    root_cause_details: str = _json("rootCauseDetails", "str")
    responsible_team: str = _json("responsibleTeam", "str")
    team_email: str = _json("teamEmail", "str")
    confidence: str = _json("confidence", "str")
    evidence: list[str] = _json("evidence", "strlist")
    next_steps: list[str] = _json("nextSteps", "strlist")
    error_messages: list[str] = _json("errorMessages", "strlist")
    analysis_time_ms: int = _json("analysisTimeMs", "int")
    jira_ticket_key: str = _json("jiraTicketKey", "str")
    jira_ticket_url: str = _json("jiraTicketUrl", "str")
    github_issue_url: str = _json("githubIssueUrl", "str")

    @classmethod
    def from_dict(cls, data: Any) -> IngestGithubPayload:
        return _from_dict(cls, data)


@dataclass
class MTTRStats:
    """Mean-time-to-recovery statistics."""

    overall_avg_seconds: float = _json("overallAvgSeconds", "float")
    avg_7day_seconds: float = _json("avg7DaySeconds", "float")
    avg_30day_seconds: float = _json("avg30DaySeconds", "float")
    by_team: dict[str, float] = _json("byTeam", "floatmap")
    by_category: dict[str, float] = _json("byCategory", "floatmap")
    total_resolved: int = _json("totalResolved", "int")
    total_unresolved: int = _json("totalUnresolved", "int")

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> MTTRStats:
        return _from_dict(cls, data)


@dataclass
class DashboardData:
    """Everything the dashboard page shows, in one record."""

    pipelines: list[Pipeline] = field(default_factory=list)
    failures: list[Failure] = field(default_factory=list)
    team_distribution: dict[str, int] = field(default_factory=dict)
    category_distribution: dict[str, int] = field(default_factory=dict)
    mttr_stats: MTTRStats = field(default_factory=MTTRStats)
    pending_jira: list[JiraTicket] = field(default_factory=list)
    total_failures: int = 0
    jenkins_count: int = 0
    github_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipelines": [p.to_dict() for p in self.pipelines],
            "failures": [f.to_dict() for f in self.failures],
            "teamDistribution": dict(self.team_distribution),
            "categoryDistribution": dict(self.category_distribution),
            "mttrStats": self.mttr_stats.to_dict(),
            "pendingJira": [t.to_dict() for t in self.pending_jira],
            "totalFailures": self.total_failures,
            "jenkinsCount": self.jenkins_count,
            "githubCount": self.github_count,
        }