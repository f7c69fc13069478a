from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any

from harvester.domain.errors import QueueClosedError

log = logging.getLogger(__name__)


class TaskQueue:
    """
    Unbounded FIFO shared by every producer and every worker.

    Like queue.Queue it counts unfinished tasks: `get` hands one out and
    `task_done` marks it finished. Closing is graceful. After `close()`
    the queue keeps serving tasks, and a task that is still running may
    enqueue follow-ups. `get` returns None only once nothing is queued
    and nothing is running; from then on `put` raises QueueClosedError.
    """

    def __init__(self) -> None:
        self._items: deque = deque()
        self._cond = threading.Condition()
        self._unfinished = 0
        self._closing = False
        self._closed = False

    def put(self, task: Any) -> None:
        with self._cond:
            if self._closed:
                raise QueueClosedError(f"queue closed, dropping {task!r}")
            self._items.append(task)
            self._unfinished += 1
            self._cond.notify()

    def get(self) -> Any | None:
        """Block until a task is available; None means the queue is closed and drained."""
        with self._cond:
            while not self._items:
                if self._closing and self._unfinished == 0:
                    self._closed = True
                    return None
                self._cond.wait()
            return self._items.popleft()

    def task_done(self) -> None:
        with self._cond:
            if self._unfinished <= 0:
                raise ValueError("task_done() called too many times")
            self._unfinished -= 1
            if self._unfinished == 0:
                self._cond.notify_all()

    def close(self, discard: bool = False) -> None:
        """
        Stop the queue once it drains.

        With `discard` the tasks still waiting are dropped, so workers
        exit as soon as their current task returns.
        """
        with self._cond:
            if discard and self._items:
                log.info("Discarding %d queued tasks", len(self._items))
                self._unfinished -= len(self._items)
                self._items.clear()
            self._closing = True
            if self._unfinished == 0:
                self._closed = True
            self._cond.notify_all()

    def pending(self) -> list:
        """Snapshot of the tasks waiting to be picked up, oldest first."""
        with self._cond:
            return list(self._items)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
