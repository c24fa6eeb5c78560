"""HTTP handlers for the dashboard's JSON API and for ingesting analysis results."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from werkzeug.wrappers import Request, Response

from .database import Database, DatabaseError
from .models import (
    PLATFORM_GITHUB,
    PLATFORM_JENKINS,
    DashboardData,
    Failure,
    IngestGithubPayload,
    IngestJenkinsPayload,
    JiraTicket,
    MTTRStats,
    Pipeline,
)
from .mttr import MTTRCalculator

log = logging.getLogger(__name__)

_RESOLVE_PREFIX = "/api/failures/"
_RESOLVE_SUFFIX = "/resolve"
_DEFAULT_LIMIT = 50
_DASHBOARD_LIMIT = 100

_INTEGER = re.compile(r"[+-]?\d+\Z")
_JSON_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)
_DECODER = json.JSONDecoder()

T = TypeVar("T")


def _json_response(value: Any) -> Response:
    """Encode a value compactly with HTML-sensitive characters escaped, newline-terminated."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":")).translate(_JSON_ESCAPES)
    return Response(text + "\n", status=200, content_type="application/json")


def _error_response(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _method_not_allowed() -> Response:
    return _error_response("method not allowed", 405)


def _parse_int(text: str | None) -> int:
    """Parse a decimal integer; anything else counts as zero."""
    if text is None or not _INTEGER.match(text):
        return 0
    return int(text)


def _decode_payload(request: Request, cls: Callable[..., T]) -> T:
    """Decode the first JSON value of the request body into a payload record."""
    text = request.get_data().decode("utf-8", errors="replace").lstrip(" \t\r\n")
    try:
        value, _ = _DECODER.raw_decode(text)
    except json.JSONDecodeError as exc:
        raise ValueError(str(exc)) from exc
    if value is None:
        value = {}
    return cls.from_dict(value)  # type: ignore[attr-defined]


class APIHandler:
    """Serves the read-only JSON endpoints of the dashboard."""

    def __init__(self, db: Database, calculator: MTTRCalculator) -> None:
        self._db = db
        self._mttr = calculator

    def _or_default(self, fetch: Callable[[], T], default: T) -> T:
        try:
            return fetch()
        except DatabaseError:
            return default

    def dashboard(self, request: Request) -> Response:
        """GET /api/dashboard: everything the dashboard shows; failing queries yield empty parts."""
        jenkins, github = self._or_default(self._db.count_by_platform, (0, 0))
        data = DashboardData(
            pipelines=self._or_default(self._db.list_pipelines, list[Pipeline]()),
            failures=self._or_default(
                lambda: self._db.list_failures(_DASHBOARD_LIMIT, 0, "", "", ""),
                list[Failure](),
            ),
            team_distribution=self._or_default(self._db.team_distribution, {}),
            category_distribution=self._or_default(self._db.category_distribution, {}),
            mttr_stats=self._mttr.calculate(),
            pending_jira=self._or_default(
                self._db.list_pending_jira_tickets, list[JiraTicket]()
            ),
            total_failures=self._or_default(self._db.total_failures, 0),
            jenkins_count=jenkins,
            github_count=github,
        )
        return _json_response(data.to_dict())

    def failures(self, request: Request) -> Response:
        """GET /api/failures: failures filtered by platform, team and category, paginated."""
        args = request.args
        limit = _parse_int(args.get("limit"))
        if limit <= 0:
            limit = _DEFAULT_LIMIT
        offset = _parse_int(args.get("offset"))
        try:
            failures = self._db.list_failures(
                limit,
                offset,
                args.get("platform", ""),
                args.get("team", ""),
                args.get("category", ""),
            )
        except DatabaseError as exc:
            return _error_response(str(exc), 500)
        return _json_response([f.to_dict() for f in failures])

    def mttr(self, request: Request) -> Response:
        """GET /api/mttr: live MTTR statistics."""
        stats: MTTRStats = self._mttr.calculate()
        return _json_response(stats.to_dict())

    def pipelines(self, request: Request) -> Response:
        """GET /api/pipelines: all known pipelines."""
        try:
            pipelines = self._db.list_pipelines()
        except DatabaseError as exc:
            return _error_response(str(exc), 500)
        return _json_response([p.to_dict() for p in pipelines])

    def pending_jira(self, request: Request) -> Response:
        """GET /api/jira/pending: Jira tickets that are still open."""
        try:
            tickets = self._db.list_pending_jira_tickets()
        except DatabaseError as exc:
            return _error_response(str(exc), 500)
        return _json_response([t.to_dict() for t in tickets])


class IngestHandler:
    """Accepts analysis results posted by CI integrations and records resolutions."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now) -> None:
        self._db = db
        self._clock = clock

    def _upsert_pipeline(self, pipeline: Pipeline) -> int:
        try:
            return self._db.upsert_pipeline(pipeline)
        except DatabaseError as exc:
            log.warning("upsert pipeline: %s", exc)
            return 0

    def _track_jira(self, analysis_id: str, key: str, url: str, summary: str, team: str) -> None:
        try:
            failure_id = self._db.get_failure_id_by_analysis(analysis_id)
        except DatabaseError:
            failure_id = 0
        try:
            self._db.upsert_jira_ticket(
                JiraTicket(
                    failure_id=failure_id,
                    ticket_key=key,
                    ticket_url=url,
                    summary=summary,
                    status="Open",
                    assignee=team,
                )
            )
        except DatabaseError as exc:
            log.warning("upsert jira ticket: %s", exc)

    def _store(self, failure: Failure, payload: IngestJenkinsPayload | IngestGithubPayload) -> Response:
        try:
            self._db.insert_failure(failure)
        except DatabaseError as exc:
            log.warning("insert failure: %s", exc)
            return _error_response("failed to store failure", 500)
        if payload.jira_ticket_key:
            self._track_jira(
                payload.analysis_id,
                payload.jira_ticket_key,
                payload.jira_ticket_url,
                payload.root_cause_summary,
                payload.responsible_team,
            )
        return _json_response({"analysisId": payload.analysis_id, "status": "ok"})

    def ingest_jenkins(self, request: Request) -> Response:
        """POST /api/ingest/jenkins: store a Jenkins failure analysis."""
        if request.method != "POST":
            return _method_not_allowed()
        try:
            p = _decode_payload(request, IngestJenkinsPayload)
        except ValueError as exc:
            return _error_response(f"invalid JSON: {exc}", 400)

        now = self._clock()
        pipeline_id = self._upsert_pipeline(
            Pipeline(
                platform=PLATFORM_JENKINS,
                pipeline_name=p.job_name or "unknown",
                repository=p.repository,
                last_status="failure",
                last_build_at=now,
            )
        )
        failure = Failure(
            analysis_id=p.analysis_id,
            platform=PLATFORM_JENKINS,
            pipeline_id=pipeline_id,
            build_identifier=f"{p.job_name} #{p.build_number}",
            build_url=p.build_url,
            job_name=p.job_name,
            build_number=p.build_number,
            branch=p.branch,
            commit_hash=p.commit_hash,
            failed_stage=p.failed_stage,
            status=p.status,
            category=p.category,
            root_cause_summary=p.root_cause_summary,
            root_cause_details=p.root_cause_details,
            responsible_team=p.responsible_team,
            team_email=p.team_email,
            confidence=p.confidence,
            evidence=p.evidence,
            next_steps=p.next_steps,
            error_messages=p.error_messages,
            analysis_time_ms=p.analysis_time_ms,
            jira_ticket_key=p.jira_ticket_key,
            jira_ticket_url=p.jira_ticket_url,
            failed_at=now,
            developer=p.developer or "unknown",
        )
        return self._store(failure, p)

    def ingest_github(self, request: Request) -> Response:
        """POST /api/ingest/github: store a GitHub Actions failure analysis."""
        if request.method != "POST":
            return _method_not_allowed()
        try:
            p = _decode_payload(request, IngestGithubPayload)
        except ValueError as exc:
            return _error_response(f"invalid JSON: {exc}", 400)

        now = self._clock()
        repository = f"{p.owner}/{p.repo}"
        pipeline_id = self._upsert_pipeline(
            Pipeline(
                platform=PLATFORM_GITHUB,
                pipeline_name=p.workflow or repository,
                repository=repository,
                last_status="failure",
                last_build_at=now,
            )
        )
        failure = Failure(
            analysis_id=p.analysis_id,
            platform=PLATFORM_GITHUB,
            pipeline_id=pipeline_id,
            build_identifier=f"{repository} #{p.run_number}",
            build_url=f"https://github.com/{repository}/actions/runs/{p.run_id}",
            owner=p.owner,
            repo=p.repo,
            workflow=p.workflow,
            run_id=p.run_id,
            run_number=p.run_number,
            actor=p.actor,
            sha=p.sha,
            ref=p.ref,
            failed_step=p.failed_step,
            failed_job=p.failed_job,
            status=p.status,
            category=p.category,
            root_cause_summary=p.root_cause_summary,
            root_cause_details=p.root_cause_details,
            responsible_team=p.responsible_team,
            team_email=p.team_email,
            confidence=p.confidence,
            evidence=p.evidence,
            next_steps=p.next_steps,
            error_messages=p.error_messages,
            analysis_time_ms=p.analysis_time_ms,
            jira_ticket_key=p.jira_ticket_key,
            jira_ticket_url=p.jira_ticket_url,
            github_issue_url=p.github_issue_url,
            failed_at=now,
            developer=p.actor or "unknown",
        )
        return self._store(failure, p)

    def resolve_failure(self, request: Request) -> Response:
        """POST /api/failures/{id}/resolve: mark a failure resolved now."""
        if request.method != "POST":
            return _method_not_allowed()
        path = request.path
        if path.startswith(_RESOLVE_PREFIX):
            path = path[len(_RESOLVE_PREFIX):]
        if path.endswith(_RESOLVE_SUFFIX):
            path = path[: -len(_RESOLVE_SUFFIX)]
        analysis_id = path
        if not analysis_id:
            return _error_response("missing analysis ID", 400)
        try:
            self._db.resolve_failure(analysis_id, self._clock())
        except DatabaseError as exc:
            return _error_response(f"failed to resolve: {exc}", 500)
        return _json_response({"analysisId": analysis_id, "status": "resolved"})