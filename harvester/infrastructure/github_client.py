from __future__ import annotations

import logging
import threading
from typing import Any, Callable

import httpx

from harvester.config import parse_timestamp
from harvester.domain.entities import CommitDetail, PullDetail, Repository, WalkResult
from harvester.domain.errors import DecodeError
from harvester.domain.interfaces import IPageFetcher, PageHandler
from .etag_cache import EtagCache
from .pagination import next_url
from .rate_governor import RateGovernor

log = logging.getLogger(__name__)

MAX_BACKOFF = 60
MAX_LOGGED_BODY = 300


class GitHubPageFetcher(IPageFetcher):
    """
    Concrete implementation of IPageFetcher for GitHub's REST API.

    The constructor receives an httpx.Client (injected) rather than
    creating one internally, so tests can hand in a client backed by
    httpx.MockTransport. The client is shared by every worker thread.
    """

    def __init__(
        self,
        token: str,
        client: httpx.Client,
        governor: RateGovernor,
        etags: EtagCache | None = None,
        *,
        cancel: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._client   = client
        self._governor = governor
        self._etags    = etags
        self._cancel   = cancel or threading.Event()
        self._sleep    = sleep or self._cancel.wait
        self._headers  = auth_headers(token)

    def fetch(self, url: str | None, on_page: PageHandler, *, follow: bool = True) -> WalkResult:
        """
        Walk `url` and its rel="next" successors, handing each body to `on_page`.

        Throttled requests and transport failures retry the same URL.
        304 skips the body but keeps paginating; any other non-2xx ends
        the walk. Single-item endpoints pass follow=False: a large commit
        links further pages of its file list, which carry nothing new.
        Returns the pages handed to `on_page` and whether the walk was
        complete: a skipped page, an error status or a cancel leaves it
        incomplete.
        """
        delivered = 0
        attempt   = 0
        skipped   = False

        while url and not self._cancel.is_set():
            if self._governor.check():
                continue

            headers = dict(self._headers)
            etag = self._etags.get(url) if self._etags is not None else None
            if etag:
                headers["If-None-Match"] = etag

            log.debug("GET %s", url)
            try:
                response = self._client.get(url, headers=headers)
            except httpx.TransportError as exc:
                wait = min(MAX_BACKOFF, 2 ** attempt)
                attempt += 1
                log.warning("Request error (attempt %d) for %s: %s — retrying in %ds", attempt, url, exc, wait)
                self._sleep(wait)
                continue
            attempt = 0

            # yes, check the quota again: the pre-flight read can be stale
            if self._governor.inspect(response.headers, response.status_code):
                continue

            if response.status_code == 304:
                log.debug("Not modified: %s", url)
                url = next_url(response.headers) if follow else None
                continue

            if not response.is_success:
                # 409 is an empty repository, 404 a vanished one
                log.warning(
                    "HTTP %d for %s — giving up on this resource: %s",
                    response.status_code, url, response.text[:MAX_LOGGED_BODY],
                )
                return WalkResult(delivered, complete=False)

            try:
                body = response.json()
            except ValueError as exc:
                log.warning("Skipping undecodable page %s: %s", url, exc)
                skipped = True
            else:
                delivered += 1
                try:
                    on_page(body)
                except DecodeError as exc:
                    log.warning("Skipping unexpected page %s: %s", url, exc)
                    skipped = True
                else:
                    if self._etags is not None:
                        self._etags.put(url, response.headers.get("ETag"))

            url = next_url(response.headers) if follow else None

        return WalkResult(delivered, complete=not (skipped or url))


def auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"token {token}",
        "Accept":        "application/vnd.github+json",
    }


# Anti-Corruption Layer
#
# GitHub sends:                       We keep:
#   repo "pushed_at"               →  Repository.pushed_at (datetime)
#   commit "commit.author.email"   →  CommitDetail.email
#   pull "changed_files"           →  PullDetail.changed_files
#
# If GitHub renames a field, fix it HERE only - nowhere else.

def _expect_list(body: Any, what: str) -> list:
    if not isinstance(body, list):
        raise DecodeError(f"expected a list of {what}, got {type(body).__name__}")
    return body


def _expect_dict(body: Any, what: str) -> dict:
    if not isinstance(body, dict):
        raise DecodeError(f"expected a {what} object, got {type(body).__name__}")
    return body


def parse_repos(body: Any) -> list[Repository]:
    repos = []
    for node in _expect_list(body, "repositories"):
        try:
            repos.append(Repository(name=node["name"], pushed_at=parse_timestamp(node.get("pushed_at"))))
        except (KeyError, TypeError) as exc:
            log.debug("Skipping malformed repository node %r: %s", node, exc)
    return repos


def parse_shas(body: Any) -> list[str]:
    shas = []
    for node in _expect_list(body, "commits"):
        try:
            shas.append(node["sha"])
        except (KeyError, TypeError) as exc:
            log.debug("Skipping malformed commit node %r: %s", node, exc)
    return shas


def parse_pull_numbers(body: Any) -> list[int]:
    numbers = []
    for node in _expect_list(body, "pull requests"):
        try:
            numbers.append(int(node["number"]))
        except (KeyError, TypeError, ValueError) as exc:
            log.debug("Skipping malformed pull request node %r: %s", node, exc)
    return numbers


def parse_commit_detail(body: Any) -> CommitDetail:
    node = _expect_dict(body, "commit")
    try:
        commit = node["commit"]
        author = commit.get("author") or {}
        stats  = node.get("stats") or {}
        return CommitDetail(
            email     = author.get("email") or "",
            date      = parse_timestamp(author.get("date")),
            message   = commit.get("message"),
            additions = int(stats.get("additions", 0)),
            deletions = int(stats.get("deletions", 0)),
            total     = int(stats.get("total", 0)),
        )
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise DecodeError(f"malformed commit detail: {exc}") from exc


def parse_pull_detail(body: Any) -> PullDetail:
    node = _expect_dict(body, "pull request")
    try:
        return PullDetail(
            title         = node["title"] or "",
            comments      = int(node.get("comments", 0)),
            commits       = int(node.get("commits", 0)),
            additions     = int(node.get("additions", 0)),
            deletions     = int(node.get("deletions", 0)),
            changed_files = int(node.get("changed_files", 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed pull request detail: {exc}") from exc
