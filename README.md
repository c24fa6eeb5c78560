# faildash

faildash collects analysed CI/CD build failures from Jenkins and GitHub
Actions, stores them in SQLite and serves them as a JSON API. It keeps
track of the pipelines that failed, the Jira tickets raised for each
failure, and live mean-time-to-recovery (MTTR) figures: overall, over
rolling 7 and 30 day windows, per team and per category.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
faildash --addr :8080 --db faildash.db
```

Options (each may also be written with a single dash, e.g. `-addr`):

- `--addr` — address to listen on, `host:port` (default `:8080`, all
  interfaces)
- `--db` — path of the SQLite database (default `mcp-dashboard.db`); the
  tables are created when missing
- `--import-dir` — a directory to watch for JSON analysis results
  (optional). When the option is not given, the `MCP_IMPORT_DIR`
  environment variable is used if it is set.

The watched directory is scanned straight away and then every ten
seconds. Each `*.json` file is handled once, by name. A file holding an
`analysisId` (or `analysis_id`) is stored as a failure with platform
`unknown` and the file name as its build identifier; files that cannot
be decoded or have no analysis id are skipped and not read again. Both
camelCase and snake_case field names are accepted.

## HTTP API

| Method | Path | Purpose |
| ------ | ---- | ------- |
| GET  | `/api/dashboard` | pipelines, latest 100 failures, team and category distributions, MTTR, pending Jira tickets and counts |
| GET  | `/api/failures` | failures, newest first, filtered by `platform`, `team`, `category`; paged by `limit` (default 50) and `offset` |
| GET  | `/api/mttr` | MTTR statistics |
| GET  | `/api/pipelines` | all known pipelines, most recently built first |
| GET  | `/api/jira/pending` | Jira tickets not yet `Resolved`, `Closed` or `Done` |
| POST | `/api/ingest/jenkins` | store a Jenkins analysis result |
| POST | `/api/ingest/github` | store a GitHub Actions analysis result |
| POST | `/api/failures/{analysisId}/resolve` | mark a failure resolved now and record its MTTR |

The ingest and resolve endpoints answer other methods with 405, and a
body that is not valid JSON with 400. Timestamps are RFC 3339 with
second precision.

A Jenkins result looks like this:

```json
{
  "analysisId": "j-001",
  "jobName": "my-pipeline",
  "buildNumber": 42,
  "category": "CodeChange",
  "rootCauseSummary": "Compilation error in Service.java",
  "responsibleTeam": "Backend",
  "jiraTicketKey": "PROJ-123",
  "jiraTicketUrl": "https://jira.example.com/browse/PROJ-123",
  "developer": "dev1"
}
```

A GitHub result carries `owner`, `repo`, `workflow`, `runId`,
`runNumber`, `actor`, `sha` and `ref` in place of the Jenkins build
fields. A missing job name files the failure under the pipeline
`unknown`; a missing developer (or actor) is stored as `unknown`.
Sending the same `analysisId` twice stores it only once. When a result
names a Jira ticket, the ticket is tracked as `Open`.

## Using it from Python

```python
from faildash.app import create_app
from faildash.database import Database
from faildash.mttr import MTTRCalculator

with Database("faildash.db") as db:
    stats = MTTRCalculator(db.conn).calculate()
    print(stats.to_dict())
    print(db.count_by_platform(), db.distinct_teams())

    app = create_app(db)  # a WSGI application
```

- `faildash.database.Database` — storage: `upsert_pipeline`,
  `list_pipelines`, `insert_failure`, `list_failures`,
  `resolve_failure`, `team_distribution`, `category_distribution`,
  `count_by_platform`, `total_failures`, `upsert_jira_ticket`,
  `list_pending_jira_tickets`, `get_failure_id_by_analysis`,
  `distinct_teams`, `distinct_categories`. Failing statements raise
  `DatabaseError`.
- `faildash.models` — the records (`Pipeline`, `Failure`, `JiraTicket`,
  `MTTRStats`, `DashboardData`, the two ingest payloads) with
  `to_dict`/`from_dict` in the API's JSON shape, and `format_time` /
  `parse_time` for RFC 3339 timestamps.
- `faildash.importer.FileImporter(db, directory)` — the directory
  watcher; `start()`/`stop()` or use it as a context manager, or call
  `scan()` once.
- `faildash.handlers.APIHandler` and `IngestHandler` — the endpoint
  handlers, taking and returning werkzeug requests and responses.

## What it does not do

There is no HTML dashboard page: the server answers only the JSON
endpoints above, and `/` returns 404. Jira ticket statuses are not read
from Jira; a ticket leaves the pending list only when its status is
updated through `Database.upsert_jira_ticket`.