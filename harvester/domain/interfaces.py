"""
Domain Layer — Interfaces (Abstract Contracts)
-----------------------------------------------
These are ABSTRACT definitions of what the infrastructure must provide.
The domain layer defines the shape; the infrastructure layer implements it.

The application layer (task executor, crawl service) only ever talks to
these contracts, so tests can hand it an in-memory store or a fetcher
backed by a mock transport without touching GitHub or PostgreSQL.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Union

from .entities import CommitDetail, CommitRecord, CrawlResult, PullDetail, PullRecord, RecordKind, WalkResult

PageHandler = Callable[[Any], None]
Record      = Union[CommitRecord, PullRecord]
Detail      = Union[CommitDetail, PullDetail]


class IPageFetcher(ABC):
    """
    Contract for walking one paginated GitHub resource.
    """

    @abstractmethod
    def fetch(self, url: str | None, on_page: PageHandler, *, follow: bool = True) -> WalkResult:
        """
        Fetch `url` and, when `follow` is set, every page linked from it
        with rel="next".

        Each decoded page body is handed to `on_page`. A throttled or
        failed request is retried on the same URL, never skipped.

        Returns how many pages were handed to `on_page` and whether the
        walk ran to the last page without skipping any.
        """
        ...


class IIngestStore(ABC):
    """
    Contract that any storage backend must fulfil.

    Records are keyed by (org, repo, sha) for commits and
    (org, repo, number) for pull requests; the backend's uniqueness
    constraint is the authoritative guard against duplicates.
    """

    @abstractmethod
    def find(self, kind: RecordKind, org: str, repo: str, key: str | int) -> str | None:
        """Return the id of the record with this natural key, if any."""
        ...

    @abstractmethod
    def discover(self, kind: RecordKind, org: str, repo: str, key: str | int) -> str | None:
        """
        Create the record with enrichment fields unset unless it exists.

        Returns the new id when this call created the row, None when the
        row was already there (including losing a concurrent insert race).
        """
        ...

    @abstractmethod
    def enrich(self, kind: RecordKind, record_id: str, org: str, repo: str, key: str | int, detail: Detail) -> bool:
        """
        Write the enrichment fields of one record.

        Only the row matching both the id and the natural key is touched.
        Returns whether such a row existed.
        """
        ...

    @abstractmethod
    def pending(self, kind: RecordKind, org: str, limit: int, after: str | None = None) -> list[Record]:
        """Return up to `limit` records still missing enrichment, ordered by id."""
        ...

    @abstractmethod
    def ignored_repos(self, org: str) -> set[str]:
        """Return the names of repositories excluded from discovery."""
        ...

    @abstractmethod
    def create_run(self, org: str) -> int:
        """Create a crawl run audit record. Returns the run ID."""
        ...

    @abstractmethod
    def finish_run(self, run_id: int, result: CrawlResult) -> None:
        """Mark a crawl run as complete with final stats."""
        ...
