from datetime import datetime, timedelta, timezone

import pytest

from faildash.database import Database, DatabaseError
from faildash.models import Failure, JiraTicket, Pipeline


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


def _now():
    return datetime.now(timezone.utc)


def test_upsert_and_list_pipelines(db):
    now = _now()
    pipeline_id = db.upsert_pipeline(
        Pipeline(
            platform="jenkins",
            pipeline_name="build-job",
            repository="org/repo",
            last_status="failure",
            last_build_at=now,
        )
    )
    assert pipeline_id != 0

    pipelines = db.list_pipelines()
    assert len(pipelines) == 1
    assert pipelines[0].pipeline_name == "build-job"
    assert pipelines[0].repository == "org/repo"
    assert pipelines[0].last_build_at == now.replace(microsecond=0)


def test_upsert_pipeline_updates_existing_row(db):
    first = db.upsert_pipeline(
        Pipeline(platform="github", pipeline_name="CI", repository="a/b", last_status="failure")
    )
    second = db.upsert_pipeline(
        Pipeline(platform="github", pipeline_name="CI", repository="c/d", last_status="success")
    )
    assert first == second
    pipelines = db.list_pipelines()
    assert len(pipelines) == 1
    assert pipelines[0].repository == "c/d"
    assert pipelines[0].last_status == "success"
    assert pipelines[0].last_build_at is None


def test_insert_and_list_failures(db):
    db.insert_failure(
        Failure(
            analysis_id="test-001",
            platform="github",
            build_identifier="org/repo #42",
            category="CodeChange",
            root_cause_summary="Test failure in auth module",
            responsible_team="backend",
            developer="dev1",
            failed_at=_now(),
            evidence=["log line 1"],
            next_steps=["fix test"],
            error_messages=["assertion failed"],
        )
    )
    failures = db.list_failures(10, 0, "", "", "")
    assert len(failures) == 1
    assert failures[0].category == "CodeChange"
    assert failures[0].developer == "dev1"
    assert failures[0].evidence == ["log line 1"]
    assert failures[0].next_steps == ["fix test"]
    assert failures[0].error_messages == ["assertion failed"]
    assert failures[0].resolved_at is None
    assert failures[0].mttr_seconds is None


def test_insert_failure_ignores_duplicate_analysis_id(db):
    db.insert_failure(Failure(analysis_id="dup", platform="jenkins", category="A", failed_at=_now()))
    db.insert_failure(Failure(analysis_id="dup", platform="jenkins", category="B", failed_at=_now()))
    failures = db.list_failures(10)
    assert [f.category for f in failures] == ["A"]


def test_list_failures_with_filters(db):
    for failure in (
        Failure(analysis_id="f1", platform="jenkins", category="CodeChange",
                responsible_team="frontend", failed_at=_now()),
        Failure(analysis_id="f2", platform="github", category="Infrastructure",
                responsible_team="backend", failed_at=_now()),
        Failure(analysis_id="f3", platform="github", category="CodeChange",
                responsible_team="backend", failed_at=_now()),
    ):
        db.insert_failure(failure)

    assert len(db.list_failures(10, 0, "github", "", "")) == 2
    assert len(db.list_failures(10, 0, "", "backend", "")) == 2
    assert len(db.list_failures(10, 0, "", "", "CodeChange")) == 2
    assert [f.analysis_id for f in db.list_failures(10, 0, "github", "backend", "CodeChange")] == ["f3"]


def test_list_failures_orders_newest_first_and_pages(db):
    base = _now()
    for i in range(5):
        db.insert_failure(
            Failure(analysis_id=f"p{i}", platform="jenkins", failed_at=base + timedelta(minutes=i))
        )
    assert [f.analysis_id for f in db.list_failures(2)] == ["p4", "p3"]
    assert [f.analysis_id for f in db.list_failures(2, 2)] == ["p2", "p1"]


def test_resolve_failure(db):
    db.insert_failure(
        Failure(analysis_id="resolve-001", platform="jenkins", failed_at=_now() - timedelta(hours=1))
    )
    db.resolve_failure("resolve-001", _now())

    failures = db.list_failures(10, 0, "", "", "")
    assert len(failures) == 1
    assert failures[0].resolved_at is not None
    assert failures[0].mttr_seconds is not None
    assert 3590 <= failures[0].mttr_seconds <= 3610


def test_resolve_failure_only_once(db):
    failed = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    db.insert_failure(Failure(analysis_id="once", platform="jenkins", failed_at=failed))
    db.resolve_failure("once", failed + timedelta(minutes=10))
    db.resolve_failure("once", failed + timedelta(hours=5))
    failure = db.list_failures(10)[0]
    assert failure.mttr_seconds == 600
    assert failure.resolved_at == failed + timedelta(minutes=10)


def test_team_and_category_distribution(db):
    for failure in (
        Failure(analysis_id="d1", platform="jenkins", category="CodeChange",
                responsible_team="frontend", failed_at=_now()),
        Failure(analysis_id="d2", platform="github", category="Infrastructure",
                responsible_team="backend", failed_at=_now()),
        Failure(analysis_id="d3", platform="github", category="CodeChange",
                responsible_team="frontend", failed_at=_now()),
    ):
        db.insert_failure(failure)

    team_dist = db.team_distribution()
    assert team_dist["frontend"] == 2
    assert team_dist["backend"] == 1
    assert list(team_dist) == ["frontend", "backend"]

    cat_dist = db.category_distribution()
    assert cat_dist["CodeChange"] == 2
    assert cat_dist["Infrastructure"] == 1


def test_distribution_skips_empty_names(db):
    db.insert_failure(Failure(analysis_id="e1", platform="jenkins", failed_at=_now()))
    assert db.team_distribution() == {}
    assert db.category_distribution() == {}


def test_jira_tickets(db):
    db.insert_failure(Failure(analysis_id="jira-001", platform="jenkins", failed_at=_now()))
    failure_id = db.get_failure_id_by_analysis("jira-001")

    db.upsert_jira_ticket(
        JiraTicket(
            failure_id=failure_id,
            ticket_key="PROJ-123",
            ticket_url="https://jira.example.com/browse/PROJ-123",
            summary="Build failure in auth",
            status="Open",
            assignee="backend",
        )
    )
    tickets = db.list_pending_jira_tickets()
    assert len(tickets) == 1
    assert tickets[0].ticket_key == "PROJ-123"
    assert tickets[0].failure_id == failure_id

    db.upsert_jira_ticket(
        JiraTicket(failure_id=failure_id, ticket_key="PROJ-123", status="Resolved")
    )
    assert db.list_pending_jira_tickets() == []


def test_jira_upsert_keeps_url_and_summary(db):
    db.upsert_jira_ticket(
        JiraTicket(ticket_key="OPS-1", ticket_url="https://jira.example.com/OPS-1",
                   summary="first", status="Open", assignee="a")
    )
    db.upsert_jira_ticket(
        JiraTicket(ticket_key="OPS-1", ticket_url="other", summary="second",
                   status="In Progress", assignee="b")
    )
    (ticket,) = db.list_pending_jira_tickets()
    assert ticket.summary == "first"
    assert ticket.ticket_url == "https://jira.example.com/OPS-1"
    assert ticket.status == "In Progress"
    assert ticket.assignee == "b"


def test_count_by_platform(db):
    db.insert_failure(Failure(analysis_id="c1", platform="jenkins", failed_at=_now()))
    db.insert_failure(Failure(analysis_id="c2", platform="github", failed_at=_now()))
    db.insert_failure(Failure(analysis_id="c3", platform="github", failed_at=_now()))

    assert db.count_by_platform() == (1, 2)
    assert db.total_failures() == 3


def test_count_by_platform_empty(db):
    assert db.count_by_platform() == (0, 0)
    assert db.total_failures() == 0


def test_get_failure_id_missing_raises(db):
    with pytest.raises(DatabaseError):
        db.get_failure_id_by_analysis("nope")


def test_distinct_teams_and_categories(db):
    for i, (team, category) in enumerate(
        [("zeta", "Infra"), ("alpha", "Code"), ("zeta", "Code"), ("", "")]
    ):
        db.insert_failure(
            Failure(analysis_id=f"x{i}", platform="jenkins", responsible_team=team,
                    category=category, failed_at=_now())
        )
    assert db.distinct_teams() == ["alpha", "zeta"]
    assert db.distinct_categories() == ["Code", "Infra"]


def test_data_survives_reopen(tmp_path):
    path = tmp_path / "persist.db"
    with Database(path) as first:
        first.insert_failure(Failure(analysis_id="keep", platform="github", failed_at=_now()))
    with Database(path) as second:
        assert [f.analysis_id for f in second.list_failures(10)] == ["keep"]


def test_open_in_missing_directory_raises(tmp_path):
    with pytest.raises(DatabaseError):
        Database(tmp_path / "missing" / "dir" / "x.db")