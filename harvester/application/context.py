from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from harvester.config import CrawlerConfig
from harvester.domain.errors import QueueClosedError
from harvester.domain.interfaces import IIngestStore, IPageFetcher
from .endpoints import GitHubEndpoints
from .repo_filter import Watermark
from .task_queue import TaskQueue
from .tasks import DISCOVERY_TASKS, Task

log = logging.getLogger(__name__)


class CrawlStats:
    """Counters bumped from every worker thread."""

    FIELDS = ("discovered", "enriched", "tasks_run", "tasks_failed")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(self.FIELDS, 0)

    def incr(self, name: str, by: int = 1) -> None:
        with self._lock:
            self._counts[name] += by

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)


class CrawlContext:
    """
    Mutable state shared by every task of one worker pool.

    The config is immutable; everything that changes while the crawl
    runs (the queue, the watermark, counters, the number of drivers
    still alive, the cancel signal) lives here and is passed explicitly
    to the executor instead of sitting in module globals.
    """

    def __init__(
        self,
        config: CrawlerConfig,
        store: IIngestStore,
        fetcher: IPageFetcher,
        *,
        queue: TaskQueue | None = None,
        cancel: threading.Event | None = None,
        watermark: Watermark | None = None,
        stats: CrawlStats | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config    = config
        self.store     = store
        self.fetcher   = fetcher
        self.endpoints = GitHubEndpoints(config)
        self.queue     = queue if queue is not None else TaskQueue()
        self.cancel    = cancel or threading.Event()
        self.watermark = watermark or Watermark()
        self.stats     = stats or CrawlStats()
        self._clock    = clock or (lambda: datetime.now(tz=timezone.utc))
        self._drivers   = 0
        self._discovery = 0
        self._lock      = threading.Lock()

    @property
    def org(self) -> str:
        return self.config.org

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def now(self) -> datetime:
        return self._clock()

    @property
    def discovering(self) -> bool:
        """Whether any listing task is queued or running."""
        with self._lock:
            return self._discovery > 0

    def submit(self, task: Task) -> bool:
        """Enqueue a task; returns False if the crawl was cancelled or the queue shut down."""
        if self.cancelled:
            log.debug("Cancelled, not queueing %r", task)
            return False
        is_discovery = isinstance(task, DISCOVERY_TASKS)
        if is_discovery:
            with self._lock:
                self._discovery += 1
        try:
            self.queue.put(task)
        except QueueClosedError:
            log.warning("Queue closed, dropping %r", task)
            if is_discovery:
                self.discovery_done()
            return False
        return True

    def discovery_done(self) -> None:
        with self._lock:
            self._discovery -= 1

    def register_driver(self, task: Task) -> None:
        """Seed a driver task; the queue closes when the last driver finishes."""
        with self._lock:
            self._drivers += 1
        self.submit(task)

    def driver_finished(self, task: Task) -> None:
        with self._lock:
            self._drivers -= 1
            remaining = self._drivers
        log.info("Driver done: %r | %d drivers left", task, remaining)
        if remaining <= 0:
            self.queue.close()

    def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`; returns True if the crawl was cancelled meanwhile."""
        return self.cancel.wait(seconds)

    def request_cancel(self) -> None:
        """Stop requeueing drivers and drop whatever is still waiting in the queue."""
        if not self.cancel.is_set():
            log.info("Cancelling crawl …")
        self.cancel.set()
        self.queue.close(discard=True)
