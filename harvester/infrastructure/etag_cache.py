from __future__ import annotations

import logging
import threading

log = logging.getLogger(__name__)

MAX_ETAG_CACHE_SIZE = 10_000


class EtagCache:
    """
    URL -> ETag map shared by every worker thread.

    Each logical resource is walked by one task chain, so two writers for
    the same URL should not happen; the lock still keeps the dict itself
    consistent when many URLs are written at once.
    """

    def __init__(self, max_size: int = MAX_ETAG_CACHE_SIZE) -> None:
        self._max_size = max_size
        self._etags: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> str | None:
        with self._lock:
            return self._etags.get(url)

    def put(self, url: str, etag: str | None) -> None:
        if not etag:
            return
        with self._lock:
            if url not in self._etags and len(self._etags) >= self._max_size:
                # dicts keep insertion order: drop the oldest quarter
                for key in list(self._etags)[: max(1, self._max_size // 4)]:
                    del self._etags[key]
                log.debug("ETag cache full, evicted oldest entries | size=%d", len(self._etags))
            self._etags[url] = etag

    def __len__(self) -> int:
        with self._lock:
            return len(self._etags)
