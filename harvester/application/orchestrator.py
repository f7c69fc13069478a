from __future__ import annotations

import logging
from typing import Any, Callable

from harvester.domain.entities import CommitRecord, RecordKind
from harvester.domain.errors import DecodeError
from harvester.domain.interfaces import Record
from harvester.infrastructure.github_client import (
    parse_commit_detail,
    parse_pull_detail,
    parse_pull_numbers,
    parse_repos,
    parse_shas,
)
from .context import CrawlContext
from .repo_filter import RepoFilter
from .tasks import (
    DISCOVERY_TASKS,
    FetchCommitDetail,
    FetchPullDetail,
    ListCommits,
    ListPulls,
    ListRepos,
    PollEnrichment,
    Task,
)

log = logging.getLogger(__name__)


class TaskExecutor:
    """
    Runs one task on the calling worker thread.

    All dependencies come through the CrawlContext, so in tests you can
    build one around an in-memory store and a fetcher serving canned
    pages, call the executor on a task and look at what it queued.

    Drivers (ListRepos, PollEnrichment) always decide their successor,
    even when their pass blew up: a driver that silently died would
    leave a one-shot run waiting forever for the queue to close.
    """

    def __init__(self, ctx: CrawlContext) -> None:
        self._ctx = ctx
        self._handlers: dict[type, Callable[[Any], None]] = {
            ListRepos:         self._list_repos,
            ListCommits:       self._list_commits,
            ListPulls:         self._list_pulls,
            FetchCommitDetail: self._fetch_commit_detail,
            FetchPullDetail:   self._fetch_pull_detail,
            PollEnrichment:    self._poll_enrichment,
        }

    def __call__(self, task: Task) -> None:
        handler = self._handlers.get(type(task))
        if handler is None:
            raise TypeError(f"no handler for task {task!r}")
        self._ctx.stats.incr("tasks_run")
        try:
            handler(task)
        finally:
            if isinstance(task, DISCOVERY_TASKS):
                self._ctx.discovery_done()

    def on_failure(self, task: Task, exc: BaseException) -> None:
        self._ctx.stats.incr("tasks_failed")

    # drivers

    def _requeue(self, task: Task, successor: Task, cool_down: bool) -> None:
        """Queue the driver's next step, or retire the driver if the crawl is stopping."""
        ctx = self._ctx
        if ctx.cancelled:
            ctx.driver_finished(task)
            return
        if cool_down:
            log.info("Nothing new, sleeping %ds before %r", ctx.config.delay, successor)
            if ctx.sleep(ctx.config.delay):
                ctx.driver_finished(task)
                return
        if not ctx.submit(successor):
            ctx.driver_finished(task)

    def _list_repos(self, task: ListRepos) -> None:
        ctx     = self._ctx
        started = ctx.now()
        queued  = 0

        try:
            ignored = set(ctx.config.ignore) | ctx.store.ignored_repos(ctx.org)
            repo_filter = RepoFilter(ignored, since=ctx.config.since_at, watermark=ctx.watermark.current())
            log.info("Listing repos | org=%s bound=%s ignored=%d", ctx.org, repo_filter.bound, len(ignored))

            def on_page(body: Any) -> None:
                nonlocal queued
                repos = parse_repos(body)
                for repo in repo_filter.filter_fresh(repos):
                    log.info("Queueing repo %s/%s | pushed=%s", ctx.org, repo.name, repo.pushed_at)
                    ctx.submit(ListCommits(repo.name))
                    if ctx.config.pulls:
                        ctx.submit(ListPulls(repo.name))
                    queued += 1

            walk = ctx.fetcher.fetch(ctx.endpoints.repos(), on_page)
            # a cut-short listing may have hidden repos pushed before `started`
            if walk.complete and not ctx.cancelled:
                ctx.watermark.advance(started)
            else:
                log.warning("Repo listing incomplete, watermark stays at %s | org=%s", ctx.watermark.current(), ctx.org)
            log.info("Repo pass done | org=%s pages=%d queued=%d", ctx.org, walk.pages, queued)
        finally:
            if ctx.config.loop:
                self._requeue(task, task, cool_down=queued == 0)
            else:
                ctx.driver_finished(task)

    def _poll_enrichment(self, task: PollEnrichment) -> None:
        ctx     = self._ctx
        records: list[Record] = []

        try:
            records = ctx.store.pending(task.kind, ctx.org, ctx.config.limit, after=task.after)
            log.info("Pending %s | found=%d after=%s", task.kind.table, len(records), task.after)
            for record in records:
                ctx.submit(detail_task(record))
        finally:
            if records:
                # found something... look for more right away
                self._requeue(task, PollEnrichment(task.kind, after=records[-1].id, catch_up=task.catch_up), cool_down=False)
            elif ctx.config.loop or task.catch_up:
                # discovery may have added rows behind the cursor: sweep again
                fresh = PollEnrichment(task.kind, catch_up=ctx.discovering)
                self._requeue(task, fresh, cool_down=ctx.config.loop or ctx.discovering)
            else:
                log.info("Enrichment sweep done | %s", task.kind.table)
                ctx.driver_finished(task)

    # discovery

    def _discovered(self, kind: RecordKind, repo: str, key: str | int) -> None:
        ctx = self._ctx
        record_id = ctx.store.discover(kind, ctx.org, repo, key)
        if record_id is None:
            return
        ctx.stats.incr("discovered")
        log.debug("New %s %s/%s %s id=%s", kind.table, ctx.org, repo, key, record_id)
        if ctx.config.enrich_on_discovery:
            if kind is RecordKind.COMMIT:
                ctx.submit(FetchCommitDetail(repo, key, record_id))
            else:
                ctx.submit(FetchPullDetail(repo, key, record_id))

    def _list_commits(self, task: ListCommits) -> None:
        def on_page(body: Any) -> None:
            shas = parse_shas(body)
            log.info("Commits page | org=%s repo=%s shas=%d", self._ctx.org, task.repo, len(shas))
            for sha in shas:
                self._discovered(RecordKind.COMMIT, task.repo, sha)

        self._ctx.fetcher.fetch(self._ctx.endpoints.commits(task.repo), on_page)

    def _list_pulls(self, task: ListPulls) -> None:
        def on_page(body: Any) -> None:
            numbers = parse_pull_numbers(body)
            log.info("Pulls page | org=%s repo=%s pulls=%d", self._ctx.org, task.repo, len(numbers))
            for number in numbers:
                self._discovered(RecordKind.PULL, task.repo, number)

        self._ctx.fetcher.fetch(self._ctx.endpoints.pulls(task.repo), on_page)

    # enrichment

    def _fetch_commit_detail(self, task: FetchCommitDetail) -> None:
        ctx = self._ctx

        def on_page(body: Any) -> None:
            try:
                detail = parse_commit_detail(body)
            except DecodeError as exc:
                log.warning("Bad commit detail: %s | org=%s repo=%s sha=%s id=%s",
                            exc, ctx.org, task.repo, task.sha, task.record_id)
                raise
            log.info("Enriching commit | org=%s repo=%s sha=%s id=%s", ctx.org, task.repo, task.sha, task.record_id)
            if ctx.store.enrich(RecordKind.COMMIT, task.record_id, ctx.org, task.repo, task.sha, detail):
                ctx.stats.incr("enriched")

        ctx.fetcher.fetch(ctx.endpoints.commit(task.repo, task.sha), on_page, follow=False)

    def _fetch_pull_detail(self, task: FetchPullDetail) -> None:
        ctx = self._ctx

        def on_page(body: Any) -> None:
            try:
                detail = parse_pull_detail(body)
            except DecodeError as exc:
                log.warning("Bad pull request detail: %s | org=%s repo=%s number=%s id=%s",
                            exc, ctx.org, task.repo, task.number, task.record_id)
                raise
            log.info("Enriching pull | org=%s repo=%s number=%s id=%s", ctx.org, task.repo, task.number, task.record_id)
            if ctx.store.enrich(RecordKind.PULL, task.record_id, ctx.org, task.repo, task.number, detail):
                ctx.stats.incr("enriched")

        ctx.fetcher.fetch(ctx.endpoints.pull(task.repo, task.number), on_page, follow=False)


def detail_task(record: Record) -> Task:
    """The detail fetch that fills in a pending record."""
    if isinstance(record, CommitRecord):
        return FetchCommitDetail(record.repo, record.sha, record.id)
    return FetchPullDetail(record.repo, record.number, record.id)
