"""Shared fixtures: an in-memory store and a GitHub fake served over httpx.MockTransport."""

from __future__ import annotations

import itertools
import threading
from typing import Any, Callable

import httpx
import pytest

from harvester.config import CrawlerConfig
from harvester.domain.entities import CommitDetail, CommitRecord, CrawlResult, PullRecord, RecordKind
from harvester.domain.interfaces import IIngestStore
from harvester.infrastructure.github_client import GitHubPageFetcher
from harvester.infrastructure.rate_governor import RateGovernor

API = "https://api.github.com"


class InMemoryStore(IIngestStore):
    """Thread-safe IIngestStore keeping rows in dicts; ids sort in creation order."""

    def __init__(self, ignored: set[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._ids  = itertools.count(1)
        self.rows: dict[RecordKind, dict[tuple, dict[str, Any]]] = {kind: {} for kind in RecordKind}
        self.ignored = set(ignored or ())
        self.runs: dict[int, CrawlResult | None] = {}
        self.discover_calls = 0

    def find(self, kind, org, repo, key):
        with self._lock:
            row = self.rows[kind].get((org, repo, key))
            return row["id"] if row else None

    def discover(self, kind, org, repo, key):
        with self._lock:
            self.discover_calls += 1
            if (org, repo, key) in self.rows[kind]:
                return None
            record_id = f"{next(self._ids):08d}"
            self.rows[kind][(org, repo, key)] = {"id": record_id, "detail": None}
            return record_id

    def enrich(self, kind, record_id, org, repo, key, detail):
        with self._lock:
            row = self.rows[kind].get((org, repo, key))
            if row is None or row["id"] != record_id:
                return False
            row["detail"] = detail
            return True

    def pending(self, kind, org, limit, after=None):
        with self._lock:
            found = sorted(
                (row["id"], repo, key)
                for (row_org, repo, key), row in self.rows[kind].items()
                if row_org == org and self._unset(row) and (after is None or row["id"] > after)
            )[:limit]
        if kind is RecordKind.COMMIT:
            return [CommitRecord(id=i, org=org, repo=r, sha=k) for i, r, k in found]
        return [PullRecord(id=i, org=org, repo=r, number=k) for i, r, k in found]

    @staticmethod
    def _unset(row) -> bool:
        detail = row["detail"]
        if detail is None:
            return True
        marker = detail.email if isinstance(detail, CommitDetail) else detail.title
        return marker is None

    def ignored_repos(self, org):
        return set(self.ignored)

    def create_run(self, org):
        with self._lock:
            run_id = len(self.runs) + 1
            self.runs[run_id] = None
            return run_id

    def finish_run(self, run_id, result):
        self.runs[run_id] = result

    # helpers for assertions

    def keys(self, kind: RecordKind) -> set[tuple]:
        with self._lock:
            return set(self.rows[kind])

    def detail(self, kind: RecordKind, org: str, repo: str, key) -> Any:
        with self._lock:
            return self.rows[kind][(org, repo, key)]["detail"]


def make_config(**overrides) -> CrawlerConfig:
    values = dict(org="acme", token="secret", scale=3, delay=0, preflight_rate_check=False, api_url=API)
    values.update(overrides)
    return CrawlerConfig(**values)


class FakeGitHub:
    """
    Routes requests by URL path to canned pages.

    A route holds a list of pages; page N links to page N+1 with rel="next".
    Every request is recorded for assertions.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.statuses: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def pages(self, path: str, *pages: Any) -> None:
        self.routes[path] = list(pages)

    def status(self, path: str, code: int) -> None:
        self.statuses[path] = code

    def hits(self, path: str) -> int:
        with self._lock:
            return sum(1 for r in self.requests if r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        path = request.url.path
        if path in self.statuses:
            return httpx.Response(self.statuses[path], json={"message": "nope"})
        if path not in self.routes:
            return httpx.Response(404, json={"message": "Not Found"})

        pages = self.routes[path]
        page  = int(request.url.params.get("page", "1"))
        headers = {}
        if page < len(pages):
            headers["Link"] = f'<{API}{path}?page={page + 1}>; rel="next", <{API}{path}?page={len(pages)}>; rel="last"'
        return httpx.Response(200, json=pages[page - 1], headers=headers)


def make_fetcher(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> GitHubPageFetcher:
    client   = httpx.Client(transport=httpx.MockTransport(handler))
    governor = RateGovernor(client, API, {}, preflight=False, sleep=lambda s: None)
    return GitHubPageFetcher("secret", client, governor, sleep=lambda s: None, **kwargs)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()
