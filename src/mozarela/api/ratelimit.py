"""Per-client request limits: one for every route, a stricter one for admin
routes, and a login limiter that only counts failed attempts."""

import logging
import math
import threading
import time
from collections import defaultdict, deque

from fastapi import Request

from mozarela.config import settings
from mozarela.exceptions import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter keyed by an arbitrary string."""

    def __init__(self, limit: int, window_seconds: float):
        self.limit = limit
        self.window_seconds = window_seconds
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune(self, events: deque, now: float) -> None:
        threshold = now - self.window_seconds
        while events and events[0] <= threshold:
            events.popleft()

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` unless it is already over the limit."""
        now = time.time()
        with self._lock:
            events = self._events[key]
            self._prune(events, now)
            if len(events) >= self.limit:
                return False
            events.append(now)
            return True

    def retry_after(self, key: str) -> float:
        now = time.time()
        with self._lock:
            events = self._events.get(key)
            if not events:
                return 0.0
            self._prune(events, now)
            if len(events) < self.limit:
                return 0.0
            return max(0.0, self.window_seconds - (now - events[0]))

    def forget_last(self, key: str) -> None:
        """Take back the most recent hit, e.g. for a login that succeeded."""
        with self._lock:
            events = self._events.get(key)
            if events:
                events.pop()

    def reset(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def check(self, key: str, message: str) -> None:
        """Raise RateLimited (with a retry hint) when ``key`` is over the limit."""
        if self.allow(key):
            return
        retry_after = math.ceil(self.retry_after(key))
        logger.warning("Rate limit hit for %s (%d/%ss)", key, self.limit, self.window_seconds)
        raise RateLimited(message, {"retry_after": retry_after})


request_limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds)
admin_limiter = RateLimiter(settings.admin_rate_limit_max, settings.admin_rate_limit_window_seconds)
login_limiter = RateLimiter(settings.login_rate_limit_max, settings.login_rate_limit_window_seconds)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


async def limit_requests(request: Request) -> None:
    """App-wide dependency."""
    request_limiter.check(client_ip(request), "Too many requests, please try again later")


async def limit_admin(request: Request) -> None:
    """Runs ahead of the session lookup on every admin route."""
    admin_limiter.check(client_ip(request), "Too many requests from this IP, please try again later")
