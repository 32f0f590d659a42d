"""Per-client sliding-window rate limiting for the public endpoints."""

from __future__ import annotations

import logging
import time
from collections import deque

from starlette.requests import HTTPConnection

from glassflow.config import get_settings
from glassflow.errors import RateLimitedError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows ``limit`` hits per client within any rolling ``window_seconds``."""

    def __init__(self, limit: int, window_seconds: int = 3600, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_purge = clock()

    @property
    def tracked_clients(self) -> int:
        return len(self._hits)

    def _prune(self, hits: deque[float], now: float) -> None:
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

    def _purge_idle(self, now: float) -> None:
        """Forget clients with no hits left in the window."""
        for client in list(self._hits):
            hits = self._hits[client]
            self._prune(hits, now)
            if not hits:
                del self._hits[client]
        self._last_purge = now

    def check(self, client: str) -> None:
        now = self._clock()
        if now - self._last_purge >= self.window_seconds:
            self._purge_idle(now)
        hits = self._hits.setdefault(client, deque())
        self._prune(hits, now)
        if len(hits) >= self.limit:
            retry_after = max(1, int(hits[0] + self.window_seconds - now))
            logger.warning("Rate limit hit for %s (%d/%ds)", client, self.limit, self.window_seconds)
            raise RateLimitedError(retry_after=retry_after)
        hits.append(now)

    def reset(self) -> None:
        self._hits.clear()


def client_ip(conn: HTTPConnection) -> str:
    """First X-Forwarded-For entry, then CF-Connecting-IP, then the socket peer."""
    forwarded = conn.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    cf = conn.headers.get("cf-connecting-ip", "").strip()
    if cf:
        return cf
    return conn.client.host if conn.client else "unknown"


_cfg = get_settings().rate_limit

mutation_limiter = RateLimiter(_cfg.mutation_limit, _cfg.window_seconds)
lookup_limiter = RateLimiter(_cfg.lookup_limit, _cfg.window_seconds)
