"""SQLite storage for pipelines, failures and Jira tickets."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from .models import (
    ZERO_TIME,
    Failure,
    JiraTicket,
    Pipeline,
    format_time,
    parse_time,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pipelines (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    platform      TEXT NOT NULL,
    pipeline_name TEXT NOT NULL,
    repository    TEXT NOT NULL DEFAULT '',
    last_status   TEXT NOT NULL DEFAULT 'unknown',
    last_build_at TEXT,
    UNIQUE(platform, pipeline_name)
);

CREATE TABLE IF NOT EXISTS failures (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    analysis_id       TEXT NOT NULL UNIQUE,
    platform          TEXT NOT NULL,
    pipeline_id       INTEGER REFERENCES pipelines(id),
    build_identifier  TEXT NOT NULL DEFAULT '',
    build_url         TEXT NOT NULL DEFAULT '',
    job_name          TEXT NOT NULL DEFAULT '',
    build_number      INTEGER NOT NULL DEFAULT 0,
    branch            TEXT NOT NULL DEFAULT '',
    commit_hash       TEXT NOT NULL DEFAULT '',
    failed_stage      TEXT NOT NULL DEFAULT '',
    owner             TEXT NOT NULL DEFAULT '',
    repo              TEXT NOT NULL DEFAULT '',
    workflow          TEXT NOT NULL DEFAULT '',
    run_id            INTEGER NOT NULL DEFAULT 0,
    run_number        INTEGER NOT NULL DEFAULT 0,
    actor             TEXT NOT NULL DEFAULT '',
    sha               TEXT NOT NULL DEFAULT '',
    ref               TEXT NOT NULL DEFAULT '',
    failed_step       TEXT NOT NULL DEFAULT '',
    failed_job        TEXT NOT NULL DEFAULT '',
    status            TEXT NOT NULL DEFAULT 'completed',
    category          TEXT NOT NULL DEFAULT '',
    root_cause_summary TEXT NOT NULL DEFAULT '',
    root_cause_details TEXT NOT NULL DEFAULT '',
    responsible_team  TEXT NOT NULL DEFAULT '',
    team_email        TEXT NOT NULL DEFAULT '',
    confidence        TEXT NOT NULL DEFAULT '',
    evidence          TEXT NOT NULL DEFAULT '[]',
    next_steps        TEXT NOT NULL DEFAULT '[]',
    error_messages    TEXT NOT NULL DEFAULT '[]',
    analysis_time_ms  INTEGER NOT NULL DEFAULT 0,
    jira_ticket_key   TEXT NOT NULL DEFAULT '',
    jira_ticket_url   TEXT NOT NULL DEFAULT '',
    github_issue_url  TEXT NOT NULL DEFAULT '',
    failed_at         TEXT NOT NULL,
    resolved_at       TEXT,
    mttr_seconds      INTEGER,
    developer         TEXT NOT NULL DEFAULT '',
    created_at        TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at        TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_failures_platform ON failures(platform);
CREATE INDEX IF NOT EXISTS idx_failures_team ON failures(responsible_team);
CREATE INDEX IF NOT EXISTS idx_failures_category ON failures(category);
CREATE INDEX IF NOT EXISTS idx_failures_failed_at ON failures(failed_at);

CREATE TABLE IF NOT EXISTS jira_tickets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    failure_id      INTEGER REFERENCES failures(id),
    ticket_key      TEXT NOT NULL UNIQUE,
    ticket_url      TEXT NOT NULL DEFAULT '',
    summary         TEXT NOT NULL DEFAULT '',
    status          TEXT NOT NULL DEFAULT 'Open',
    assignee        TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# Column names match the attribute names of Failure one to one.
_FAILURE_INSERT_COLUMNS: tuple[str, ...] = (
    "analysis_id", "platform", "pipeline_id", "build_identifier", "build_url",
    "job_name", "build_number", "branch", "commit_hash", "failed_stage",
    "owner", "repo", "workflow", "run_id", "run_number", "actor", "sha", "ref",
    "failed_step", "failed_job",
    "status", "category", "root_cause_summary", "root_cause_details",
    "responsible_team", "team_email", "confidence",
    "evidence", "next_steps", "error_messages", "analysis_time_ms",
    "jira_ticket_key", "jira_ticket_url", "github_issue_url",
    "failed_at", "resolved_at", "mttr_seconds", "developer",
)
_FAILURE_SELECT_COLUMNS: tuple[str, ...] = (
    ("id",) + _FAILURE_INSERT_COLUMNS + ("created_at", "updated_at")
)
_LIST_COLUMNS = frozenset({"evidence", "next_steps", "error_messages"})
_TIME_COLUMNS = frozenset({"failed_at", "created_at", "updated_at"})

_PENDING_EXCLUDED = ("Resolved", "Closed", "Done")


def _encode_list(values: Sequence[str]) -> str:
    return json.dumps(list(values), separators=(",", ":"))


def _decode_list(text: Any) -> list[str]:
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return []
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    return []


def _time_or_zero(text: Any) -> datetime:
    return parse_time(text) or ZERO_TIME


def _failure_params(failure: Failure) -> tuple[Any, ...]:
    params: list[Any] = []
    for column in _FAILURE_INSERT_COLUMNS:
        value = getattr(failure, column)
        if column in _LIST_COLUMNS:
            value = _encode_list(value)
        elif column == "failed_at":
            value = format_time(value)
        elif column == "resolved_at":
            value = None if value is None else format_time(value)
        params.append(value)
    return tuple(params)


def _failure_from_row(row: Sequence[Any]) -> Failure:
    values = dict(zip(_FAILURE_SELECT_COLUMNS, row))
    for column in _LIST_COLUMNS:
        values[column] = _decode_list(values[column])
    for column in _TIME_COLUMNS:
        values[column] = _time_or_zero(values[column])
    if values["resolved_at"] is not None:
        values["resolved_at"] = _time_or_zero(values["resolved_at"])
    if values["pipeline_id"] is None:
        values["pipeline_id"] = 0
    return Failure(**values)


class DatabaseError(Exception):
    """Raised when the database cannot be opened or a statement fails."""


class Database:
    """A SQLite database holding pipelines, failures and Jira tickets.

    Opening it creates the tables if they are missing. The object can be
    shared between threads; statements are serialised by a lock.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        try:
            conn = sqlite3.connect(
                os.fspath(path), check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise DatabaseError(f"open database: {exc}") from exc
        try:
            conn.execute("PRAGMA busy_timeout = 5000")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            conn.close()
            raise DatabaseError(f"migrate: {exc}") from exc
        self._conn = conn
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        """The underlying SQLite connection."""
        return self._conn

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise DatabaseError(str(exc)) from exc

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        with self._connection() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> tuple[Any, ...] | None:
        with self._connection() as conn:
            return conn.execute(sql, tuple(params)).fetchone()

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        with self._connection() as conn:
            conn.execute(sql, tuple(params))

    # Pipelines

    def upsert_pipeline(self, pipeline: Pipeline) -> int:
        """Insert or update a pipeline keyed by platform and name; return its row id."""
        build_at = (
            None if pipeline.last_build_at is None else format_time(pipeline.last_build_at)
        )
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO pipelines (platform, pipeline_name, repository, last_status, last_build_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(platform, pipeline_name) DO UPDATE SET
                    last_status = excluded.last_status,
                    last_build_at = excluded.last_build_at,
                    repository = excluded.repository
                """,
                (
                    pipeline.platform,
                    pipeline.pipeline_name,
                    pipeline.repository,
                    pipeline.last_status,
                    build_at,
                ),
            )
            row = conn.execute(
                "SELECT id FROM pipelines WHERE platform=? AND pipeline_name=?",
                (pipeline.platform, pipeline.pipeline_name),
            ).fetchone()
        return 0 if row is None else int(row[0])

    def list_pipelines(self) -> list[Pipeline]:
        """Return every pipeline, most recently built first."""
        rows = self._fetchall(
            "SELECT id, platform, pipeline_name, repository, last_status, last_build_at "
            "FROM pipelines ORDER BY last_build_at DESC"
        )
        return [
            Pipeline(
                id=row_id,
                platform=platform,
                pipeline_name=name,
                repository=repository,
                last_status=status,
                last_build_at=None if build_at is None else _time_or_zero(build_at),
            )
            for row_id, platform, name, repository, status, build_at in rows
        ]

    # Failures

    def insert_failure(self, failure: Failure) -> None:
        """Store a failure; one whose analysis id is already stored is ignored."""
        placeholders = ",".join("?" for _ in _FAILURE_INSERT_COLUMNS)
        self._execute(
            f"INSERT OR IGNORE INTO failures ({', '.join(_FAILURE_INSERT_COLUMNS)}) "
            f"VALUES ({placeholders})",
            _failure_params(failure),
        )

    def list_failures(
        self,
        limit: int,
        offset: int = 0,
        platform: str = "",
        team: str = "",
        category: str = "",
    ) -> list[Failure]:
        """Return failures, newest first, optionally filtered; empty filters match all."""
        sql = f"SELECT {', '.join(_FAILURE_SELECT_COLUMNS)} FROM failures WHERE 1=1"
        params: list[Any] = []
        for column, value in (
            ("platform", platform),
            ("responsible_team", team),
            ("category", category),
        ):
            if value:
                sql += f" AND {column}=?"
                params.append(value)
        sql += " ORDER BY failed_at DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        return [_failure_from_row(row) for row in self._fetchall(sql, params)]

    def resolve_failure(self, analysis_id: str, resolved_at: datetime) -> None:
        """Mark an unresolved failure as resolved and record its time to recovery."""
        stamp = format_time(resolved_at)
        self._execute(
            """
            UPDATE failures SET
                resolved_at = ?,
                mttr_seconds = CAST((julianday(?) - julianday(failed_at)) * 86400 AS INTEGER),
                updated_at = datetime('now')
            WHERE analysis_id = ? AND resolved_at IS NULL
            """,
            (stamp, stamp, analysis_id),
        )

    def team_distribution(self) -> dict[str, int]:
        """Return the number of failures per responsible team, largest first."""
        rows = self._fetchall(
            "SELECT responsible_team, COUNT(*) FROM failures WHERE responsible_team != '' "
            "GROUP BY responsible_team ORDER BY COUNT(*) DESC"
        )
        return {team: int(count) for team, count in rows}

    def category_distribution(self) -> dict[str, int]:
        """Return the number of failures per category, largest first."""
        rows = self._fetchall(
            "SELECT category, COUNT(*) FROM failures WHERE category != '' "
            "GROUP BY category ORDER BY COUNT(*) DESC"
        )
        return {category: int(count) for category, count in rows}

    def count_by_platform(self) -> tuple[int, int]:
        """Return the number of Jenkins failures and of GitHub failures."""
        row = self._fetchone(
            "SELECT COALESCE(SUM(CASE WHEN platform='jenkins' THEN 1 ELSE 0 END),0), "
            "COALESCE(SUM(CASE WHEN platform='github' THEN 1 ELSE 0 END),0) FROM failures"
        )
        if row is None:
            return 0, 0
        return int(row[0]), int(row[1])

    def total_failures(self) -> int:
        """Return the number of stored failures."""
        row = self._fetchone("SELECT COUNT(*) FROM failures")
        return 0 if row is None else int(row[0])

    def get_failure_id_by_analysis(self, analysis_id: str) -> int:
        """Return the row id of the failure with this analysis id."""
        row = self._fetchone("SELECT id FROM failures WHERE analysis_id=?", (analysis_id,))
        if row is None:
            raise DatabaseError(f"no failure with analysis id {analysis_id!r}")
        return int(row[0])

    def distinct_teams(self) -> list[str]:
        """Return the names of all responsible teams, sorted."""
        rows = self._fetchall(
            "SELECT DISTINCT responsible_team FROM failures WHERE responsible_team != '' "
            "ORDER BY responsible_team"
        )
        return [team for (team,) in rows]

    def distinct_categories(self) -> list[str]:
        """Return the names of all failure categories, sorted."""
        rows = self._fetchall(
            "SELECT DISTINCT category FROM failures WHERE category != '' ORDER BY category"
        )
        return [category for (category,) in rows]

    # Jira tickets

    def upsert_jira_ticket(self, ticket: JiraTicket) -> None:
        """Insert a ticket, or update the status and assignee of one with the same key."""
        self._execute(
            """
            INSERT INTO jira_tickets (failure_id, ticket_key, ticket_url, summary, status, assignee)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(ticket_key) DO UPDATE SET
                status = excluded.status,
                assignee = excluded.assignee,
                updated_at = datetime('now')
            """,
            (
                ticket.failure_id,
                ticket.ticket_key,
                ticket.ticket_url,
                ticket.summary,
                ticket.status,
                ticket.assignee,
            ),
        )

    def list_pending_jira_tickets(self) -> list[JiraTicket]:
        """Return the tickets that are not resolved, closed or done, newest first."""
        placeholders = ", ".join("?" for _ in _PENDING_EXCLUDED)
        rows = self._fetchall(
            "SELECT id, failure_id, ticket_key, ticket_url, summary, status, assignee, "
            "created_at, updated_at FROM jira_tickets "
            f"WHERE status NOT IN ({placeholders}) ORDER BY created_at DESC",
            _PENDING_EXCLUDED,
        )
        return [
            JiraTicket(
                id=row_id,
                failure_id=failure_id or 0,
                ticket_key=key,
                ticket_url=url,
                summary=summary,
                status=status,
                assignee=assignee,
                created_at=_time_or_zero(created_at),
                updated_at=_time_or_zero(updated_at),
            )
            for row_id, failure_id, key, url, summary, status, assignee, created_at, updated_at
            in rows
        ]