"""
GitHub quota handling.

GitHub reports the core quota on every response:
  X-RateLimit-Remaining  calls left in the current window
  X-RateLimit-Reset      epoch seconds when the window resets
and asks for a pause with Retry-After on secondary (abuse) limits.

Remaining can stay at 0 for a while after the reset time has passed, so
the quota is read twice per request: once from a dedicated /rate_limit
call before the request and once from the request's own headers.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Mapping

import httpx

log = logging.getLogger(__name__)


def _header_int(headers: Mapping[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        log.debug("Ignoring unparsable %s header: %r", name, value)
        return None


class RateGovernor:
    """
    Decides whether a request must be retried later and sleeps if so.

    `check()` and `inspect()` return True when the caller was throttled:
    the governor has already waited, and the caller should re-issue the
    very same request.
    """

    def __init__(
        self,
        client: httpx.Client,
        api_url: str,
        headers: Mapping[str, str],
        *,
        policy: str = "reset",
        delay: float = 15,
        preflight: bool = True,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._client    = client
        self._url       = f"{api_url.rstrip('/')}/rate_limit"
        self._headers   = dict(headers)
        self._policy    = policy
        self._delay     = delay
        self._preflight = preflight
        self._cancel    = cancel or threading.Event()
        self._clock     = clock
        self._sleep     = sleep or self._cancel.wait

    def check(self) -> bool:
        """Pre-flight quota check against the dedicated /rate_limit endpoint."""
        if not self._preflight:
            return False
        try:
            response = self._client.get(self._url, headers=self._headers)
        except httpx.TransportError as exc:
            # the real request will hit the same failure and back off there
            log.warning("Rate limit pre-flight failed: %s", exc)
            return False
        return self.inspect(response.headers, response.status_code)

    def inspect(self, headers: Mapping[str, str], status_code: int = 200) -> bool:
        """Read the quota headers of a response; wait and return True when exhausted."""
        remaining = _header_int(headers, "X-RateLimit-Remaining")
        reset     = _header_int(headers, "X-RateLimit-Reset")

        if remaining is not None:
            log.debug("remaining=%d reset=%s", remaining, reset)

        if remaining == 0:
            self._wait(self._seconds_until(reset), f"quota exhausted (reset={reset})")
            return True

        if status_code in (403, 429):
            retry_after = _header_int(headers, "Retry-After")
            if retry_after is not None:
                self._wait(max(0, retry_after), f"secondary rate limit (HTTP {status_code})")
                return True

        return False

    def _seconds_until(self, reset: int | None) -> float:
        if self._policy == "delay" or reset is None:
            return self._delay
        wait = reset - self._clock()
        if wait <= 0:
            # reset already passed but remaining still reads 0
            return self._delay
        return wait

    def _wait(self, seconds: float, reason: str) -> None:
        log.info("Rate limited: %s — sleeping %.1fs …", reason, seconds)
        self._sleep(seconds)
