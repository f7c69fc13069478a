"""
main.py — Dependency Wiring (Composition Root)
------------------------------------------------
Wires the harvester together and runs one crawl.

No business logic lives here. This module:
  1. Reads configuration from flags and environment variables
  2. Creates the concrete HTTP client, connection pool and cache
  3. Injects them into the classes that need them
  4. Calls the top-level use case (CrawlApplicationService.execute)
  5. Reports the result and exits

Dependency graph:
                          main.py  (wires everything)
                             │
               ┌─────────────┼────────────────┐
               ▼             ▼                ▼
    CrawlApplicationService  │      PostgresIngestStore
               │             │        (ThreadedConnectionPool)
               ▼             ▼
     WorkerPool + TaskExecutor   GitHubPageFetcher
                                   │          │
                                   ▼          ▼
                             RateGovernor  EtagCache
"""

from __future__ import annotations

import logging
import signal
import sys
import threading

import httpx
from psycopg2.pool import ThreadedConnectionPool

# Application layer
from harvester.application.crawl_service import CrawlApplicationService
from harvester.config import ConfigError, CrawlerConfig, load_config

# Infrastructure layer
from harvester.infrastructure.etag_cache import EtagCache
from harvester.infrastructure.github_client import GitHubPageFetcher, auth_headers
from harvester.infrastructure.postgres_storage import PostgresIngestStore
from harvester.infrastructure.rate_governor import RateGovernor

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s — %(message)s"


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level   = getattr(logging, level, logging.INFO),
        format  = LOG_FORMAT,
        datefmt = "%H:%M:%S",
    )
    # one line per request from httpx drowns the crawl's own progress
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Dependency wiring
# ---------------------------------------------------------------------------

def build_and_run(config: CrawlerConfig) -> int:
    """
    Wires all dependencies together and executes the crawl use case.
    Returns the process exit code.
    """
    cancel = threading.Event()
    # each worker and the main thread keep a connection open for the whole run
    pool   = ThreadedConnectionPool(config.scale + 1, config.scale + 1, config.database_url)
    client = httpx.Client(timeout=config.request_timeout)

    try:
        # --- Wire the dependency graph bottom-up ---
        governor = RateGovernor(
            client    = client,
            api_url   = config.api_url,
            headers   = auth_headers(config.token),
            policy    = config.throttle_policy,
            delay     = config.delay,
            preflight = config.preflight_rate_check,
            cancel    = cancel,
        )
        fetcher = GitHubPageFetcher(
            token    = config.token,
            client   = client,       # injected, the fetcher never creates one
            governor = governor,
            etags    = EtagCache() if config.use_etags else None,
            cancel   = cancel,
        )
        storage = PostgresIngestStore(
            pool = pool,             # injected, storage never opens connections
        )
        crawl_service = CrawlApplicationService(
            config  = config,
            fetcher = fetcher,
            storage = storage,
            cancel  = cancel,
        )

        def on_signal(signum, frame):
            log.warning("Received %s, shutting down …", signal.Signals(signum).name)
            crawl_service.cancel()

        signal.signal(signal.SIGINT, on_signal)
        signal.signal(signal.SIGTERM, on_signal)

        # --- Execute ---
        result = crawl_service.execute()

        # --- Report ---
        if result.status == "failed":
            log.error(
                "❌ Failed | run_id=%d | discovered=%d enriched=%d before failure | error: %s",
                result.run_id,
                result.discovered,
                result.enriched,
                result.error_message,
            )
            return 1

        log.info(
            "✅ %s | discovered=%d enriched=%d | %.0fs | run_id=%d",
            result.status.capitalize(),
            result.discovered,
            result.enriched,
            result.elapsed_secs,
            result.run_id,
        )
        return 0

    finally:
        # Always clean up connections, even if an exception occurred
        client.close()
        pool.closeall()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    try:
        config, log_level = load_config(argv)
    except ConfigError as exc:
        configure_logging("INFO")
        log.error("%s", exc)
        return 1

    configure_logging(log_level)
    return build_and_run(config)


if __name__ == "__main__":
    sys.exit(main())
