from __future__ import annotations
import logging
import threading
from datetime import datetime

from harvester.domain.entities import Repository

log = logging.getLogger(__name__)


class Watermark:
    """
    Start time of the last completed repository pass.

    A repo not pushed since then has nothing new to list. The lock makes
    the value safe to read from one worker while another advances it.
    """

    def __init__(self, initial: datetime | None = None) -> None:
        self._value = initial
        self._lock  = threading.Lock()

    def current(self) -> datetime | None:
        with self._lock:
            return self._value

    def advance(self, to: datetime) -> None:
        with self._lock:
            if self._value is None or to > self._value:
                log.info("Watermark advanced | %s -> %s", self._value, to.isoformat())
                self._value = to


class RepoFilter:
    """
    Decides which listed repositories get commit/pull listing tasks.

    Built once per repository pass from the ignore set and the active
    bound: the later of the watermark and the configured `since`.
    """

    def __init__(self, ignored: set[str] | frozenset[str], since: datetime | None = None,
                 watermark: datetime | None = None) -> None:
        self._ignored = frozenset(ignored)
        bounds = [b for b in (since, watermark) if b is not None]
        self._bound = max(bounds) if bounds else None

    @property
    def bound(self) -> datetime | None:
        return self._bound

    def keep(self, repo: Repository) -> bool:
        if repo.name in self._ignored:
            log.debug("Skipping ignored repo %s", repo.name)
            return False
        if self._bound is not None and repo.pushed_at is not None and repo.pushed_at < self._bound:
            log.debug("Skipping unchanged repo %s | pushed=%s bound=%s", repo.name, repo.pushed_at, self._bound)
            return False
        return True

    def filter_fresh(self, repos: list[Repository]) -> list[Repository]:
        """Return only repos that are not ignored and changed since the bound."""
        return [r for r in repos if self.keep(r)]
