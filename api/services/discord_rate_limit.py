"""Discord per-route rate-limit bucket tracking.

Discord limits by route and application, not by caller, so one store is
shared by every executor in the process. State is advisory: it is rebuilt
from response headers and never reconciled with Discord.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_AFTER_HEADER = "X-RateLimit-Reset-After"


@dataclass(frozen=True)
class RateLimitBucket:
    """Snapshot of one route's budget."""

    remaining: int
    reset_at: float

    def wait_time(self, now: float) -> float:
        """Seconds a caller must wait before dispatching, 0.0 if none."""
        if self.remaining <= 0 and self.reset_at > now:
            return self.reset_at - now
        return 0.0


def bucket_key_for(route: str) -> str:
    """Map a request path to its bucket key.

    Webhook-token routes (``/webhooks/{id}/{token}``) drop the token so the
    secret never lands in the store or in log lines.
    """
    path = route.split("?", 1)[0]
    parts = path.strip("/").split("/")
    if len(parts) >= 3 and parts[0] == "webhooks":
        return f"/webhooks/{parts[1]}"
    return path


class RateLimitBucketStore:
    """Thread-safe route -> bucket map.

    Backed by a TTLCache so routes that go quiet are forgotten instead of
    growing the map without bound.
    """

    def __init__(
        self,
        maxsize: int = 1024,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._buckets: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=clock)
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> RateLimitBucket | None:
        with self._lock:
            return self._buckets.get(key)

    def set(self, key: str, bucket: RateLimitBucket) -> None:
        with self._lock:
            self._buckets[key] = bucket

    def wait_time(self, key: str) -> float:
        bucket = self.get(key)
        if bucket is None:
            return 0.0
        return bucket.wait_time(self._clock())

    def update_from_headers(self, key: str, headers: Mapping[str, str]) -> RateLimitBucket | None:
        """Record the budget advertised by a response. Ignores partial headers."""
        remaining_raw = headers.get(REMAINING_HEADER)
        reset_after_raw = headers.get(RESET_AFTER_HEADER)
        if remaining_raw is None or reset_after_raw is None:
            return None
        try:
            remaining = int(remaining_raw)
            reset_after = float(reset_after_raw)
        except ValueError:
            logger.debug(f"Ignoring malformed rate-limit headers on {key}")
            return None

        bucket = RateLimitBucket(remaining=remaining, reset_at=self._clock() + reset_after)
        self.set(key, bucket)
        return bucket

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
