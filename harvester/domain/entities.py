from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RecordKind(Enum):
    """
    The two kinds of records the harvester discovers and enriches.

    Each kind carries the table it lives in, the column holding the
    second half of its natural key (org, repo, <key>) and the enrichment
    column that stays NULL until the detail fetch has written it back.
    """
    COMMIT = ("commits", "sha", "email")
    PULL   = ("pulls", "number", "title")

    def __init__(self, table: str, key_column: str, marker_column: str) -> None:
        self.table         = table
        self.key_column    = key_column
        self.marker_column = marker_column


@dataclass(frozen=True)
class Repository:
    """
    A repository as seen on an organization listing page.

    Never persisted: only used to decide whether the repo needs crawling.
    """
    name:      str
    pushed_at: datetime | None


@dataclass(frozen=True)
class CommitRecord:
    id:   str
    org:  str
    repo: str
    sha:  str

    @property
    def key(self) -> str:
        return self.sha


@dataclass(frozen=True)
class PullRecord:
    id:     str
    org:    str
    repo:   str
    number: int

    @property
    def key(self) -> int:
        return self.number


@dataclass(frozen=True)
class CommitDetail:
    """Enrichment fields of a commit, written back in a single update."""
    email:     str | None
    date:      datetime | None
    message:   str | None
    additions: int
    deletions: int
    total:     int


@dataclass(frozen=True)
class PullDetail:
    """Enrichment fields of a pull request, written back in a single update."""
    title:         str | None
    comments:      int
    commits:       int
    additions:     int
    deletions:     int
    changed_files: int


@dataclass(frozen=True)
class CrawlResult:
    """
    Immutable value object summarising a completed crawl run.
    Returned by the application service when crawling finishes.
    """
    run_id:        int
    status:        str
    elapsed_secs:  float
    discovered:    int = 0
    enriched:      int = 0
    tasks_run:     int = 0
    tasks_failed:  int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class WalkResult:
    """
    What one paginated walk delivered.

    `complete` is True only when the walk reached a response without a
    rel="next" link and handed every page on the way to its handler.
    """
    pages:    int
    complete: bool
