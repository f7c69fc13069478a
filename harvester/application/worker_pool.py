from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .task_queue import TaskQueue

log = logging.getLogger(__name__)


class WorkerPool:
    """
    A fixed number of threads draining one TaskQueue.

    Every pipeline stage shares these workers, so a repository listing
    that fans out into hundreds of detail fetches is spread over the
    whole pool. A failing task is logged and counted; the worker moves
    on to the next one. Workers exit only when the queue is closed and
    drained.
    """

    def __init__(self, queue: TaskQueue, execute: Callable[[Any], None], scale: int,
                 on_failure: Callable[[Any, BaseException], None] | None = None) -> None:
        self._queue      = queue
        self._execute    = execute
        self._scale      = scale
        self._on_failure = on_failure
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        log.info("Starting %d workers", self._scale)
        for i in range(self._scale):
            thread = threading.Thread(target=self._work, name=f"worker-{i + 1}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    @property
    def alive(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())

    def _work(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                break
            try:
                self._execute(task)
            except Exception as exc:
                log.exception("Task failed: %r", task)
                if self._on_failure:
                    self._on_failure(task, exc)
            finally:
                self._queue.task_done()
        log.debug("Worker exiting")
