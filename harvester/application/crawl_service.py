from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from harvester.config import CrawlerConfig
from harvester.domain.entities import CrawlResult, RecordKind
from harvester.domain.interfaces import IIngestStore, IPageFetcher
from .context import CrawlContext, CrawlStats
from .orchestrator import TaskExecutor
from .repo_filter import Watermark
from .tasks import ListRepos, PollEnrichment
from .worker_pool import WorkerPool

log = logging.getLogger(__name__)


class CrawlApplicationService:
    """
    The top-level use case: harvest one organization into the store.

    Receives all dependencies via constructor injection.
    Knows the order of the phases and how many workers run them, but not
    how a page is fetched or a row is written.
    """

    def __init__(
        self,
        config: CrawlerConfig,
        fetcher: IPageFetcher,
        storage: IIngestStore,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        self._config    = config
        self._fetcher   = fetcher
        self._storage   = storage
        self._cancel    = cancel or threading.Event()
        self._watermark = Watermark()
        self._stats     = CrawlStats()
        self._lock      = threading.Lock()
        self._active: CrawlContext | None = None

    def cancel(self) -> None:
        """Ask the running phase to stop; safe to call from a signal handler thread."""
        self._cancel.set()
        with self._lock:
            active = self._active
        if active is not None:
            active.request_cancel()

    def _kinds(self) -> list[RecordKind]:
        return [RecordKind.COMMIT, RecordKind.PULL] if self._config.pulls else [RecordKind.COMMIT]

    def _phases(self) -> list[tuple[str, Callable[[CrawlContext], None]]]:
        cfg = self._config
        if cfg.discover and cfg.enrich and cfg.ordering == "interleaved":
            return [("discover+enrich", self._seed_both)]
        phases = []
        if cfg.discover:
            phases.append(("discover", self._seed_discovery))
        if cfg.enrich:
            phases.append(("enrich", self._seed_enrichment))
        return phases

    def _seed_discovery(self, ctx: CrawlContext) -> None:
        ctx.register_driver(ListRepos())

    def _seed_enrichment(self, ctx: CrawlContext) -> None:
        for kind in self._kinds():
            ctx.register_driver(PollEnrichment(kind, catch_up=ctx.discovering))

    def _seed_both(self, ctx: CrawlContext) -> None:
        self._seed_discovery(ctx)
        self._seed_enrichment(ctx)

    def _run_phase(self, name: str, seed: Callable[[CrawlContext], None]) -> None:
        """Start a fresh queue and pool, seed its drivers and wait until it drains."""
        ctx = CrawlContext(
            self._config,
            self._storage,
            self._fetcher,
            cancel    = self._cancel,
            watermark = self._watermark,
            stats     = self._stats,
        )
        executor = TaskExecutor(ctx)
        pool = WorkerPool(ctx.queue, executor, self._config.scale, on_failure=executor.on_failure)

        with self._lock:
            self._active = ctx
        log.info("Phase %s | org=%s workers=%d loop=%s", name, self._config.org, self._config.scale, self._config.loop)
        try:
            # seed before starting: a fast driver must not close the queue on the next one
            seed(ctx)
            pool.start()
            if self._cancel.is_set():
                ctx.request_cancel()
            pool.join()
        finally:
            with self._lock:
                self._active = None

    def execute(self) -> CrawlResult:
        """
        Run every configured phase to completion (or until cancelled).
        Returns a CrawlResult describing what happened.
        """
        started_at = time.monotonic()
        run_id     = self._storage.create_run(self._config.org)
        status     = "success"
        error      = None

        log.info("CrawlApplicationService | run #%d | org: %s", run_id, self._config.org)

        try:
            for name, seed in self._phases():
                if self._cancel.is_set():
                    break
                self._run_phase(name, seed)
            if self._cancel.is_set():
                status = "cancelled"
        except Exception as exc:
            log.error("Crawl failed: %s", exc, exc_info=True)
            status, error = "failed", str(exc)

        counts = self._stats.snapshot()
        result = CrawlResult(
            run_id        = run_id,
            status        = status,
            elapsed_secs  = time.monotonic() - started_at,
            discovered    = counts["discovered"],
            enriched      = counts["enriched"],
            tasks_run     = counts["tasks_run"],
            tasks_failed  = counts["tasks_failed"],
            error_message = error,
        )
        self._storage.finish_run(run_id, result)
        log.info(
            "Crawl %s | discovered=%d enriched=%d tasks=%d failed=%d | %.0fs",
            result.status, result.discovered, result.enriched, result.tasks_run, result.tasks_failed, result.elapsed_secs,
        )
        return result
