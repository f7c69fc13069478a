from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2 import errors
from psycopg2.pool import ThreadedConnectionPool

from harvester.domain.entities import CommitDetail, CommitRecord, CrawlResult, PullRecord, RecordKind
from harvester.domain.errors import StoreError
from harvester.domain.interfaces import Detail, IIngestStore, Record

log = logging.getLogger(__name__)

ENRICH_SQL = {
    RecordKind.COMMIT: """
        UPDATE commits
        SET email = %s,
            date  = %s,
            msg   = %s,
            adds  = %s,
            dels  = %s,
            total = %s
        WHERE id = %s AND org = %s AND repo = %s AND sha = %s
    """,
    RecordKind.PULL: """
        UPDATE pulls
        SET title         = %s,
            comments      = %s,
            commits       = %s,
            adds          = %s,
            dels          = %s,
            changed_files = %s
        WHERE id = %s AND org = %s AND repo = %s AND number = %s
    """,
}


def _detail_values(detail: Detail) -> tuple:
    if isinstance(detail, CommitDetail):
        return (detail.email, detail.date, detail.message, detail.additions, detail.deletions, detail.total)
    return (detail.title, detail.comments, detail.commits, detail.additions, detail.deletions, detail.changed_files)


class PostgresIngestStore(IIngestStore):
    """
    Concrete implementation of IIngestStore using PostgreSQL.

    Receives an already-open psycopg2 ThreadedConnectionPool (injected).
    Every call borrows one connection for one transaction and hands it
    back, so worker threads never share a connection.

    The unique indexes on (org, repo, sha) and (org, repo, number) are
    what actually prevents duplicates; the lookup before the insert only
    saves a failed INSERT in the common case.
    """

    def __init__(self, pool: ThreadedConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator:
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except errors.UniqueViolation:
            conn.rollback()
            raise
        except psycopg2.Error as exc:
            conn.rollback()
            raise StoreError(str(exc).strip()) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def find(self, kind: RecordKind, org: str, repo: str, key: str | int) -> str | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT id FROM {kind.table} WHERE org = %s AND repo = %s AND {kind.key_column} = %s",
                (org, repo, key),
            )
            row = cur.fetchone()
        return str(row[0]) if row else None

    def discover(self, kind: RecordKind, org: str, repo: str, key: str | int) -> str | None:
        """
        Find-or-create by natural key.

        Losing the insert race to another worker raises UniqueViolation,
        which is the expected outcome of overlapping listing pages and is
        reported as "already there".
        """
        if self.find(kind, org, repo, key) is not None:
            return None

        try:
            with self._cursor() as cur:
                cur.execute(
                    f"INSERT INTO {kind.table} (org, repo, {kind.key_column}) VALUES (%s, %s, %s) RETURNING id",
                    (org, repo, key),
                )
                record_id = cur.fetchone()[0]
        except errors.UniqueViolation:
            log.debug("Lost discovery race | %s %s/%s %s", kind.table, org, repo, key)
            return None

        log.debug("Discovered %s %s/%s %s -> %s", kind.table, org, repo, key, record_id)
        return str(record_id)

    def enrich(self, kind: RecordKind, record_id: str, org: str, repo: str, key: str | int, detail: Detail) -> bool:
        with self._cursor() as cur:
            cur.execute(ENRICH_SQL[kind], _detail_values(detail) + (record_id, org, repo, key))
            matched = cur.rowcount == 1
        if not matched:
            log.warning("No %s row matched id=%s org=%s repo=%s key=%s", kind.table, record_id, org, repo, key)
        return matched

    def pending(self, kind: RecordKind, org: str, limit: int, after: str | None = None) -> list[Record]:
        """
        Records whose enrichment is still unset, in id order.

        `after` continues a sweep from the last id of the previous batch.
        """
        query = f"SELECT id, org, repo, {kind.key_column} FROM {kind.table} WHERE org = %s AND {kind.marker_column} IS NULL"
        params: tuple = (org,)
        if after is not None:
            query += " AND id > %s"
            params += (after,)
        query += " ORDER BY id LIMIT %s"
        params += (limit,)

        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        if kind is RecordKind.COMMIT:
            return [CommitRecord(id=str(r[0]), org=r[1], repo=r[2], sha=r[3]) for r in rows]
        return [PullRecord(id=str(r[0]), org=r[1], repo=r[2], number=int(r[3])) for r in rows]

    def ignored_repos(self, org: str) -> set[str]:
        with self._cursor() as cur:
            cur.execute("SELECT repo FROM ignores WHERE org = %s", (org,))
            return {row[0] for row in cur.fetchall()}

    def create_run(self, org: str) -> int:
        """
        Create a crawl_runs row when the crawl starts.
        Returns the new run ID so we can update it when finished.
        """
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO crawl_runs (org, started_at, status)
                VALUES (%s, NOW(), 'running')
                RETURNING id
                """,
                (org,),
            )
            run_id = cur.fetchone()[0]
        log.debug("Created crawl run #%d", run_id)
        return run_id

    def finish_run(self, run_id: int, result: CrawlResult) -> None:
        """
        Update the crawl_runs row with final stats.
        Called on success, cancellation and failure alike.
        """
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE crawl_runs
                SET finished_at = NOW(),
                    status      = %s,
                    discovered  = %s,
                    enriched    = %s,
                    error_msg   = %s
                WHERE id = %s
                """,
                (result.status, result.discovered, result.enriched, result.error_message, run_id),
            )
        log.debug("Finished crawl run #%d | status=%s", run_id, result.status)
