import signal
from unittest.mock import MagicMock

import pytest

import main
from harvester.domain.entities import CrawlResult


@pytest.fixture
def env(monkeypatch):
    for key in ("ORG", "OAUTH_TOKEN", "GITHUB_TOKEN", "DATABASE_URL", "IGNORE_REPOS", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ORG", "acme")
    monkeypatch.setenv("OAUTH_TOKEN", "secret")
    monkeypatch.setenv("DATABASE_URL", "postgres://localhost/harvest")


@pytest.fixture
def wiring(monkeypatch):
    pool = MagicMock()
    service = MagicMock()
    monkeypatch.setattr(main, "ThreadedConnectionPool", MagicMock(return_value=pool))
    monkeypatch.setattr(main, "CrawlApplicationService", MagicMock(return_value=service))
    monkeypatch.setattr(main, "configure_logging", lambda level: None)
    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield pool, service
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def test_missing_config_exits_with_error(monkeypatch):
    monkeypatch.delenv("ORG", raising=False)
    monkeypatch.setattr(main, "configure_logging", lambda level: None)
    assert main.main([]) == 1


def test_successful_run_exits_zero_and_closes_pool(env, wiring):
    pool, service = wiring
    service.execute.return_value = CrawlResult(run_id=1, status="success", elapsed_secs=2.0, discovered=3, enriched=3)

    assert main.main(["--scale", "4"]) == 0
    main.ThreadedConnectionPool.assert_called_once_with(5, 5, "postgres://localhost/harvest")
    pool.closeall.assert_called_once()


def test_failed_run_exits_one(env, wiring):
    pool, service = wiring
    service.execute.return_value = CrawlResult(run_id=1, status="failed", elapsed_secs=0.1, error_message="boom")

    assert main.main([]) == 1
    pool.closeall.assert_called_once()


def test_signal_cancels_the_crawl(env, wiring):
    pool, service = wiring

    def execute():
        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        return CrawlResult(run_id=1, status="cancelled", elapsed_secs=0.1)

    service.execute.side_effect = execute

    assert main.main([]) == 0
    service.cancel.assert_called_once()
