"""Per-IP request counting in fixed minute windows. Observe-only: nothing is ever blocked."""

import logging
import threading
import time

from apscheduler.schedulers.background import BackgroundScheduler

from loginsight.models import RequestContext

logger = logging.getLogger(__name__)


class RateWindowCounter:
    """Counts hits per (identifier, window bucket) with thread-safe access.

    ``bucket = floor(epoch_millis / window_millis)``. Entries whose bucket
    started more than ``retention_seconds`` ago are dropped by ``sweep()``,
    which a background job calls every ``sweep_interval_seconds``.
    """

    def __init__(self, window_seconds: int = 60, retention_seconds: int = 300,
                 sweep_interval_seconds: int = 60, time_func=None):
        self._window_ms = window_seconds * 1000
        self._retention_ms = retention_seconds * 1000
        self._sweep_interval = sweep_interval_seconds
        self._time_func = time_func or time.time
        self._counts: dict[tuple[str, int], int] = {}
        self._lock = threading.Lock()
        self._scheduler = None

    def _now_ms(self) -> int:
        return int(self._time_func() * 1000)

    def bucket_for(self, now_ms: int) -> int:
        return now_ms // self._window_ms

    def hit(self, identifier: str) -> int:
        """Count one request for identifier in the current window. Returns the new count."""
        key = (identifier, self.bucket_for(self._now_ms()))
        with self._lock:
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
            return count

    def count(self, identifier: str, bucket: int | None = None) -> int:
        if bucket is None:
            bucket = self.bucket_for(self._now_ms())
        with self._lock:
            return self._counts.get((identifier, bucket), 0)

    def sweep(self) -> int:
        """Drop entries whose bucket is older than the retention window. Returns how many."""
        now_ms = self._now_ms()
        with self._lock:
            expired = [
                key for key in self._counts
                if now_ms - key[1] * self._window_ms > self._retention_ms
            ]
            for key in expired:
                del self._counts[key]
        if expired:
            logger.debug("Evicted %d rate window(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def start_eviction(self):
        """Run sweep() on a background scheduler until stop_eviction()."""
        if self._scheduler is not None:
            return
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(self.sweep, "interval", seconds=self._sweep_interval)
        self._scheduler.start()
        logger.info("Rate window eviction every %ds", self._sweep_interval)

    def stop_eviction(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None


class RateLimitMonitor:
    """Emits "Rate Limit Exceeded" once a client's count in the current window passes the limit."""

    def __init__(self, emitter, counter: RateWindowCounter, max_requests: int = 100):
        self._emitter = emitter
        self._counter = counter
        self._max_requests = max_requests

    def on_request(self, ctx: RequestContext):
        count = self._counter.hit(ctx.ip)
        if count > self._max_requests:
            self._emitter.emit(
                "warn",
                "Rate Limit Exceeded",
                ip=ctx.ip,
                count=count,
                endpoint=ctx.url,
                method=ctx.method,
                userAgent=ctx.user_agent,
                security="rate_limit_violation",
            )
