"""
Units of work handed to the worker pool.

Each task is a small frozen value naming what to do and the inputs it
needs; the executor maps the task's type to a handler. Being values,
tasks can be logged, compared and inspected in a queue snapshot.

Fan-out:
    ListRepos ──► ListCommits(repo) ──► (FetchCommitDetail when enriching on discovery)
              └─► ListPulls(repo)   ──► (FetchPullDetail   when enriching on discovery)
    PollEnrichment(kind) ──► FetchCommitDetail / FetchPullDetail, PollEnrichment(kind, after)

ListRepos and PollEnrichment are drivers: they re-enqueue themselves in
loop mode and finish the run in one-shot mode.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Union

from harvester.domain.entities import RecordKind


@dataclass(frozen=True)
class ListRepos:
    pass


@dataclass(frozen=True)
class ListCommits:
    repo: str


@dataclass(frozen=True)
class ListPulls:
    repo: str


@dataclass(frozen=True)
class FetchCommitDetail:
    repo:      str
    sha:       str
    record_id: str


@dataclass(frozen=True)
class FetchPullDetail:
    repo:      str
    number:    int
    record_id: str


@dataclass(frozen=True)
class PollEnrichment:
    """
    One batch of a sweep over records missing enrichment.

    `after` is the last id of the previous batch (None starts a sweep).
    `catch_up` marks a sweep that began while discovery was still
    running, so records may have been created behind its cursor.
    """
    kind:     RecordKind
    after:    str | None = None
    catch_up: bool = False


Task = Union[ListRepos, ListCommits, ListPulls, FetchCommitDetail, FetchPullDetail, PollEnrichment]

DISCOVERY_TASKS = (ListRepos, ListCommits, ListPulls)
