from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2 import errors

from harvester.domain.entities import CommitDetail, CrawlResult, PullDetail, RecordKind
from harvester.domain.errors import StoreError
from harvester.infrastructure.postgres_storage import PostgresIngestStore


@pytest.fixture
def db():
    cur = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    pool = MagicMock()
    pool.getconn.return_value = conn
    return pool, conn, cur


def _sql(cur, call=-1):
    return " ".join(cur.execute.call_args_list[call].args[0].split())


def test_find_returns_id_as_string(db):
    pool, conn, cur = db
    cur.fetchone.return_value = ("8c9e-uuid",)

    assert PostgresIngestStore(pool).find(RecordKind.COMMIT, "acme", "app", "abc") == "8c9e-uuid"
    assert _sql(cur) == "SELECT id FROM commits WHERE org = %s AND repo = %s AND sha = %s"
    assert cur.execute.call_args.args[1] == ("acme", "app", "abc")
    conn.commit.assert_called_once()
    pool.putconn.assert_called_once_with(conn)


def test_discover_inserts_when_missing(db):
    pool, conn, cur = db
    cur.fetchone.side_effect = [None, ("new-id",)]

    assert PostgresIngestStore(pool).discover(RecordKind.PULL, "acme", "app", 7) == "new-id"
    assert _sql(cur) == "INSERT INTO pulls (org, repo, number) VALUES (%s, %s, %s) RETURNING id"


def test_discover_existing_record_is_not_inserted(db):
    pool, conn, cur = db
    cur.fetchone.return_value = ("old-id",)

    assert PostgresIngestStore(pool).discover(RecordKind.COMMIT, "acme", "app", "abc") is None
    assert cur.execute.call_count == 1


def test_discover_lost_race_is_benign(db):
    pool, conn, cur = db
    cur.fetchone.return_value = None
    cur.execute.side_effect = [None, errors.UniqueViolation("duplicate key")]

    assert PostgresIngestStore(pool).discover(RecordKind.COMMIT, "acme", "app", "abc") is None
    conn.rollback.assert_called_once()
    assert pool.putconn.call_count == 2


def test_other_database_errors_become_store_errors(db):
    pool, conn, cur = db
    cur.execute.side_effect = psycopg2.OperationalError("server closed the connection")

    with pytest.raises(StoreError, match="server closed"):
        PostgresIngestStore(pool).ignored_repos("acme")
    conn.rollback.assert_called_once()
    pool.putconn.assert_called_once_with(conn)


def test_enrich_commit_matches_id_and_natural_key(db):
    pool, conn, cur = db
    cur.rowcount = 1
    when = datetime(2024, 1, 1, tzinfo=timezone.utc)
    detail = CommitDetail(email="dev@acme.io", date=when, message="fix", additions=1, deletions=2, total=3)

    assert PostgresIngestStore(pool).enrich(RecordKind.COMMIT, "id-1", "acme", "app", "abc", detail) is True
    assert "WHERE id = %s AND org = %s AND repo = %s AND sha = %s" in _sql(cur)
    assert cur.execute.call_args.args[1] == ("dev@acme.io", when, "fix", 1, 2, 3, "id-1", "acme", "app", "abc")


def test_enrich_pull_without_matching_row(db):
    pool, conn, cur = db
    cur.rowcount = 0
    detail = PullDetail(title="t", comments=0, commits=1, additions=2, deletions=3, changed_files=4)

    assert PostgresIngestStore(pool).enrich(RecordKind.PULL, "id-1", "acme", "app", 5, detail) is False
    assert "UPDATE pulls" in _sql(cur)
    assert cur.execute.call_args.args[1] == ("t", 0, 1, 2, 3, 4, "id-1", "acme", "app", 5)


def test_pending_first_batch_and_continuation(db):
    pool, conn, cur = db
    cur.fetchall.return_value = [("id-1", "acme", "app", "abc")]
    store = PostgresIngestStore(pool)

    records = store.pending(RecordKind.COMMIT, "acme", 50)
    assert [r.sha for r in records] == ["abc"]
    assert _sql(cur) == "SELECT id, org, repo, sha FROM commits WHERE org = %s AND email IS NULL ORDER BY id LIMIT %s"
    assert cur.execute.call_args.args[1] == ("acme", 50)

    cur.fetchall.return_value = [("id-9", "acme", "app", 4)]
    records = store.pending(RecordKind.PULL, "acme", 50, after="id-1")
    assert records[0].number == 4
    assert "title IS NULL AND id > %s ORDER BY id" in _sql(cur)
    assert cur.execute.call_args.args[1] == ("acme", "id-1", 50)


def test_ignored_repos(db):
    pool, conn, cur = db
    cur.fetchall.return_value = [("legacy",), ("otp",)]
    assert PostgresIngestStore(pool).ignored_repos("acme") == {"legacy", "otp"}


def test_run_audit_rows(db):
    pool, conn, cur = db
    cur.fetchone.return_value = (12,)
    store = PostgresIngestStore(pool)

    assert store.create_run("acme") == 12
    store.finish_run(12, CrawlResult(run_id=12, status="success", elapsed_secs=1.0, discovered=4, enriched=3))

    assert "UPDATE crawl_runs" in _sql(cur)
    assert cur.execute.call_args.args[1] == ("success", 4, 3, None, 12)
