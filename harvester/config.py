"""Configuration for the organization harvester."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Sequence

ORDERINGS        = ("interleaved", "sequential")
THROTTLE_POLICIES = ("reset", "delay")


class ConfigError(Exception):
    """Raised for missing or contradictory configuration. Fatal to the process."""
    pass


@dataclass(frozen=True)
class CrawlerConfig:
    """Everything a crawl run needs to know, fixed for the run's lifetime.

    Attributes:
        org: GitHub organization whose repositories are harvested.
        token: OAuth token sent as `Authorization: token <token>`.
        database_url: PostgreSQL DSN.
        scale: Number of worker threads.
        limit: Row limit of one pending-enrichment query.
        delay: Cool-down in seconds between empty polls / throttled retries.
        since: Only harvest commits (and repos pushed) at or after this ISO-8601 time.
        until: Only harvest commits before this ISO-8601 time.
        loop: Keep polling forever instead of stopping once the work is drained.
        discover: Run the discovery drivers (repo -> commits/pulls listing).
        enrich: Run the enrichment drivers (pending records -> detail fetch).
        pulls: Also harvest pull requests, not only commits.
        ordering: "interleaved" runs discovery and enrichment in one pool,
            "sequential" finishes discovery before enrichment starts.
        enrich_on_discovery: Queue the detail fetch as soon as a record is created.
        ignore: Repository names never crawled, merged with the `ignores` table.
        use_etags: Send If-None-Match for URLs seen before.
        preflight_rate_check: Ask /rate_limit before every request.
        throttle_policy: "reset" sleeps until the quota resets, "delay" sleeps `delay`.
        per_page: Page size requested from list endpoints.
        api_url: GitHub REST API root.
        request_timeout: Per-request timeout in seconds.
    """

    org:                  str
    token:                str
    database_url:         str = ""
    scale:                int = 5
    limit:                int = 1000
    delay:                int = 15
    since:                str | None = None
    until:                str | None = None
    loop:                 bool = False
    discover:             bool = True
    enrich:               bool = True
    pulls:                bool = True
    ordering:             str = "interleaved"
    enrich_on_discovery:  bool = False
    ignore:               frozenset[str] = field(default_factory=frozenset)
    use_etags:            bool = True
    preflight_rate_check: bool = True
    throttle_policy:      str = "reset"
    per_page:             int = 100
    api_url:              str = "https://api.github.com"
    request_timeout:      float = 30.0

    def __post_init__(self):
        """Reject values the crawl cannot run with."""
        if not self.org:
            raise ConfigError("organization name is required")
        if not self.token:
            raise ConfigError("auth token is required")
        if self.scale < 1:
            raise ConfigError(f"scale must be at least 1, got {self.scale}")
        if self.limit < 1:
            raise ConfigError(f"limit must be at least 1, got {self.limit}")
        if self.delay < 0:
            raise ConfigError(f"delay must not be negative, got {self.delay}")
        if not 1 <= self.per_page <= 100:
            raise ConfigError(f"per_page must be between 1 and 100, got {self.per_page}")
        if self.ordering not in ORDERINGS:
            raise ConfigError(f"ordering must be one of {ORDERINGS}, got {self.ordering!r}")
        if self.throttle_policy not in THROTTLE_POLICIES:
            raise ConfigError(f"throttle_policy must be one of {THROTTLE_POLICIES}, got {self.throttle_policy!r}")
        if not (self.discover or self.enrich):
            raise ConfigError("nothing to do: both discovery and enrichment are disabled")
        if self.loop and self.ordering == "sequential" and self.discover and self.enrich:
            raise ConfigError("sequential ordering never reaches enrichment in loop mode")
        for name in ("since", "until"):
            value = getattr(self, name)
            if value is not None and parse_timestamp(value) is None:
                raise ConfigError(f"{name} is not an ISO-8601 timestamp: {value!r}")

    @property
    def since_at(self) -> datetime | None:
        return parse_timestamp(self.since)


def parse_timestamp(value: str | None) -> datetime | None:
    """Convert GitHub's ISO datetime string to Python datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # naive bounds are taken as UTC so they compare with GitHub timestamps
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def split_ignores(value: str | None) -> frozenset[str]:
    return frozenset(name.strip() for name in (value or "").split(",") if name.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Harvest commit and pull request metadata of a GitHub organization into PostgreSQL"
    )
    phase = parser.add_mutually_exclusive_group()
    phase.add_argument("--discover-only", action="store_true", help="Only list repos and record new commits/pulls")
    phase.add_argument("--enrich-only",   action="store_true", help="Only fill in metadata of recorded commits/pulls")
    parser.add_argument("--loop",   action="store_true", help="Keep polling instead of exiting when drained")
    parser.add_argument("--limit",  type=int, default=1000, help="Query limit for pending records (default: 1000)")
    parser.add_argument("--scale",  type=int, default=5, help="Number of workers (default: 5)")
    parser.add_argument("--delay",  type=int, default=15, help="Cool-down in seconds (default: 15)")
    parser.add_argument("--since",  default=None, help="Since timestamp (ISO-8601)")
    parser.add_argument("--until",  default=None, help="Until timestamp (ISO-8601)")
    parser.add_argument("--ordering", choices=ORDERINGS, default="interleaved",
                        help="Run enrichment alongside discovery or after it (default: interleaved)")
    parser.add_argument("--enrich-on-discovery", action="store_true",
                        help="Fetch details right after a record is discovered")
    parser.add_argument("--no-pulls",     action="store_true", help="Skip pull requests")
    parser.add_argument("--no-etags",     action="store_true", help="Do not send conditional requests")
    parser.add_argument("--no-preflight", action="store_true", help="Skip the /rate_limit check before each request")
    parser.add_argument("--throttle-policy", choices=THROTTLE_POLICIES, default="reset",
                        help="Sleep until quota reset or for --delay seconds (default: reset)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
    return parser


def _require(environ: Mapping[str, str], *keys: str) -> str:
    for key in keys:
        value = environ.get(key)
        if value:
            return value
    raise ConfigError(f"{' or '.join(keys)} environment variable is required")


def load_config(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> tuple[CrawlerConfig, str]:
    """
    Build the crawl configuration from command-line flags and the environment.

    Returns the config and the requested log level name.
    Raises ConfigError with a readable message when anything is missing.
    """
    environ = os.environ if environ is None else environ
    args    = build_parser().parse_args(argv)

    config = CrawlerConfig(
        org                  = _require(environ, "ORG"),
        token                = _require(environ, "OAUTH_TOKEN", "GITHUB_TOKEN"),
        database_url         = _require(environ, "DATABASE_URL"),
        scale                = args.scale,
        limit                = args.limit,
        delay                = args.delay,
        since                = args.since,
        until                = args.until,
        loop                 = args.loop,
        discover             = not args.enrich_only,
        enrich               = not args.discover_only,
        pulls                = not args.no_pulls,
        ordering             = args.ordering,
        enrich_on_discovery  = args.enrich_on_discovery,
        ignore               = split_ignores(environ.get("IGNORE_REPOS")),
        use_etags            = not args.no_etags,
        preflight_rate_check = not args.no_preflight,
        throttle_policy      = args.throttle_policy,
    )
    log_level = (args.log_level or environ.get("LOG_LEVEL") or "INFO").upper()
    return config, log_level
