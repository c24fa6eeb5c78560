"""Polls a directory for JSON analysis results and stores them as failures."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .database import Database, DatabaseError
from .models import Failure

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10.0
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass
class _FileResult:
    analysis_id: str = ""
    status: str = ""
    category: str = ""
    root_cause_summary: str = ""
    root_cause_details: str = ""
    responsible_team: str = ""
    team_email: str = ""
    confidence: str = ""
    evidence: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    analysis_time_ms: int = 0
    jira_ticket_key: str = ""
    jira_ticket_url: str = ""
    github_issue_url: str = ""

    # snake_case spellings written by the Jenkins plugin
    analysis_id_snake: str = ""
    root_cause_summary_snake: str = ""
    root_cause_details_snake: str = ""
    responsible_team_snake: str = ""
    team_email_snake: str = ""
    error_messages_snake: list[str] = field(default_factory=list)
    next_steps_snake: list[str] = field(default_factory=list)
    jira_ticket_key_snake: str = ""


_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("analysis_id", "analysisId", "str"),
    ("status", "status", "str"),
    ("category", "category", "str"),
    ("root_cause_summary", "rootCauseSummary", "str"),
    ("root_cause_details", "rootCauseDetails", "str"),
    ("responsible_team", "responsibleTeam", "str"),
    ("team_email", "teamEmail", "str"),
    ("confidence", "confidence", "str"),
    ("evidence", "evidence", "list"),
    ("next_steps", "nextSteps", "list"),
    ("error_messages", "errorMessages", "list"),
    ("analysis_time_ms", "analysisTimeMs", "int"),
    ("jira_ticket_key", "jiraTicketKey", "str"),
    ("jira_ticket_url", "jiraTicketUrl", "str"),
    ("github_issue_url", "githubIssueUrl", "str"),
    ("analysis_id_snake", "analysis_id", "str"),
    ("root_cause_summary_snake", "root_cause_summary", "str"),
    ("root_cause_details_snake", "root_cause_details", "str"),
    ("responsible_team_snake", "responsible_team", "str"),
    ("team_email_snake", "team_email", "str"),
    ("error_messages_snake", "error_messages", "list"),
    ("next_steps_snake", "next_steps", "list"),
    ("jira_ticket_key_snake", "jira_ticket_key", "str"),
)
_BY_KEY = {key: (attr, kind) for attr, key, kind in _FIELDS}
_BY_FOLDED: dict[str, tuple[str, str]] = {}
for _attr, _key, _kind in _FIELDS:
    _BY_FOLDED.setdefault(_key.casefold(), (_attr, _kind))


def _check(kind: str, key: str, value: Any) -> Any:
    if kind == "str" and isinstance(value, str):
        return value
    if kind == "list" and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    if (
        kind == "int"
        and isinstance(value, int)
        and not isinstance(value, bool)
        and _INT64_MIN <= value <= _INT64_MAX
    ):
        return value
    raise ValueError(f"invalid value for field {key!r}: {value!r}")


def _decode_result(text: str) -> _FileResult:
    """Decode one analysis result; keys match exactly first, then ignoring case."""
    data = json.loads(text)
    if data is None:
        return _FileResult()
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    values: dict[str, Any] = {}
    for key, value in data.items():
        target = _BY_KEY.get(key) or _BY_FOLDED.get(key.casefold())
        if target is None or value is None:
            continue
        attr, kind = target
        values[attr] = _check(kind, key, value)
    return _FileResult(**values)


def _coalesce(first: Any, second: Any) -> Any:
    return first if first else second


class FileImporter:
    """Stores every new ``*.json`` analysis result found in a directory.

    Each file is handled once by name; files that cannot be decoded or carry
    no analysis id are remembered and not read again.
    """

    def __init__(
        self,
        db: Database,
        directory: str | os.PathLike[str],
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._db = db
        self._dir = Path(directory)
        self._interval = interval
        self._clock = clock
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> FileImporter:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Scan now, then again every interval in a background thread until stopped."""
        if self._thread is not None:
            raise RuntimeError("file importer already started")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="file-importer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and wait for a scan in progress to finish."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()

    def _run(self) -> None:
        self.scan()
        while not self._stop.wait(self._interval):
            self.scan()

    def scan(self) -> None:
        """Ingest every JSON file in the directory that has not been handled yet."""
        with self._lock:
            for path in sorted(self._dir.glob("*.json")):
                self._import(path)

    def _import(self, path: Path) -> None:
        name = path.name
        if name in self._seen:
            return
        try:
            raw = path.read_bytes()
        except OSError:
            return

        try:
            result = _decode_result(raw.decode("utf-8", errors="replace"))
        except ValueError as exc:
            log.warning("file importer: skipping %s: %s", name, exc)
            self._seen.add(name)
            return

        analysis_id = _coalesce(result.analysis_id, result.analysis_id_snake)
        if not analysis_id:
            self._seen.add(name)
            return

        failure = Failure(
            analysis_id=analysis_id,
            platform="unknown",
            build_identifier=name,
            status=result.status,
            category=result.category,
            root_cause_summary=_coalesce(result.root_cause_summary, result.root_cause_summary_snake),
            root_cause_details=_coalesce(result.root_cause_details, result.root_cause_details_snake),
            responsible_team=_coalesce(result.responsible_team, result.responsible_team_snake),
            team_email=_coalesce(result.team_email, result.team_email_snake),
            confidence=result.confidence,
            evidence=result.evidence,
            next_steps=_coalesce(result.next_steps, result.next_steps_snake),
            error_messages=_coalesce(result.error_messages, result.error_messages_snake),
            analysis_time_ms=result.analysis_time_ms,
            jira_ticket_key=_coalesce(result.jira_ticket_key, result.jira_ticket_key_snake),
            jira_ticket_url=result.jira_ticket_url,
            github_issue_url=result.github_issue_url,
            failed_at=self._clock(),
        )
        try:
            self._db.insert_failure(failure)
        except DatabaseError as exc:
            log.warning("file importer: insert %s: %s", name, exc)
        else:
            log.info("file importer: ingested %s (analysis: %s)", name, analysis_id)
        self._seen.add(name)