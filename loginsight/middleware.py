"""Request observers and the chain that runs them.

Observers see a request twice at most: ``on_request(ctx)`` when it arrives and
``on_response(ctx, status_code, duration_ms)`` once it completes. They only
emit events; the chain makes sure an observer failure can never reach the
request being served.
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from loginsight.config import Config
from loginsight.models import RequestContext
from loginsight.rate_limiter import RateLimitMonitor, RateWindowCounter
from loginsight.security import SecurityScanner

logger = logging.getLogger(__name__)


def format_duration(duration_ms: float) -> str:
    return f"{int(round(duration_ms))}ms"


class PerformanceMonitor:
    """Classifies each completed request as slow (> threshold) or normal."""

    def __init__(self, emitter, slow_threshold_ms: int = 1000):
        self._emitter = emitter
        self._slow_threshold_ms = slow_threshold_ms

    def is_slow(self, duration_ms: float) -> bool:
        return duration_ms > self._slow_threshold_ms

    def on_response(self, ctx: RequestContext, status_code: int, duration_ms: float):
        if self.is_slow(duration_ms):
            self._emitter.emit(
                "warn",
                "Slow Response Detected",
                method=ctx.method,
                url=ctx.url,
                responseTime=format_duration(duration_ms),
                userId=ctx.user_id,
                statusCode=status_code,
                userAgent=ctx.user_agent,
                performance="slow",
            )
        else:
            self._emitter.emit(
                "info",
                "Performance Metric",
                method=ctx.method,
                url=ctx.url,
                responseTime=format_duration(duration_ms),
                userId=ctx.user_id,
                statusCode=status_code,
            )


class RequestLogger:
    """Writes the access record ("HTTP Request") the daily analysis is built on."""

    def __init__(self, emitter):
        self._emitter = emitter

    def on_response(self, ctx: RequestContext, status_code: int, duration_ms: float):
        fields = dict(
            method=ctx.method,
            url=ctx.url,
            statusCode=status_code,
            responseTime=format_duration(duration_ms),
            userAgent=ctx.user_agent,
            ip=ctx.ip,
            userId=ctx.user_id or "anonymous",
        )
        if status_code >= 400:
            self._emitter.emit("warn", "HTTP Request Error", **fields)
        else:
            self._emitter.emit("info", "HTTP Request", **fields)


class ApiVersionMonitor:
    def __init__(self, emitter, deprecated_endpoints=(), header: str = "API-Version",
                 default_version: str = "1.0"):
        self._emitter = emitter
        self._deprecated = frozenset(deprecated_endpoints)
        self._header = header
        self._default_version = default_version

    def on_request(self, ctx: RequestContext):
        version = ctx.header(self._header) or self._default_version
        self._emitter.emit(
            "info",
            "API Version Usage",
            version=version,
            endpoint=ctx.url,
            method=ctx.method,
            userAgent=ctx.user_agent,
            userId=ctx.user_id,
        )
        if ctx.url in self._deprecated:
            self._emitter.emit(
                "warn",
                "Deprecated API Usage",
                endpoint=ctx.url,
                version=version,
                userAgent=ctx.user_agent,
                userId=ctx.user_id,
                deprecation="deprecated_endpoint",
            )


@dataclass(frozen=True)
class EnrichedError:
    error: BaseException
    context: Mapping[str, Any] = field(default_factory=dict)

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    def to_dict(self) -> dict:
        return {
            "message": str(self.error),
            "errorType": self.error_type,
            "context": dict(self.context),
        }


def enrich_error(error: BaseException, ctx: RequestContext, now: datetime | None = None) -> EnrichedError:
    """Pair an error with the request it happened in. Does no I/O and leaves error untouched."""
    now = now or datetime.now(timezone.utc)
    context = {
        "method": ctx.method,
        "url": ctx.url,
        "userId": ctx.user_id,
        "sessionId": ctx.session_id,
        "ip": ctx.ip,
        "userAgent": ctx.user_agent,
        "timestamp": now.isoformat(),
        "headers": dict(ctx.headers),
        "body": ctx.body if ctx.method.upper() != "GET" else None,
        "query": dict(ctx.query),
    }
    return EnrichedError(error=error, context=context)


class InstrumentationChain:
    """Runs observers in order; an exception in one is logged and the rest still run."""

    def __init__(self, emitter, observers=()):
        self._emitter = emitter
        self._observers = list(observers)

    @property
    def observers(self) -> list:
        return list(self._observers)

    def add(self, observer):
        self._observers.append(observer)

    def _call(self, observer, hook: str, *args):
        method = getattr(observer, hook, None)
        if method is None:
            return
        try:
            method(*args)
        except Exception:
            logger.exception("Observer %s.%s failed", type(observer).__name__, hook)

    def on_request(self, ctx: RequestContext):
        for observer in self._observers:
            self._call(observer, "on_request", ctx)

    def on_response(self, ctx: RequestContext, status_code: int, duration_ms: float):
        for observer in self._observers:
            self._call(observer, "on_response", ctx, status_code, duration_ms)

    def on_error(self, error: BaseException, ctx: RequestContext) -> EnrichedError | None:
        try:
            enriched = enrich_error(error, ctx)
            self._emitter.emit(
                "error",
                "Application Error",
                error=f"{enriched.error_type}: {error}",
                errorType=enriched.error_type,
                stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
                context=dict(enriched.context),
            )
            return enriched
        except Exception:
            logger.exception("Error enrichment failed")
            return None


def build_chain(config: Config, emitter, counter: RateWindowCounter) -> InstrumentationChain:
    """The default observer set, in the order they run.

    The caller owns ``counter`` and its eviction job (see ``RateWindowCounter.start_eviction``).
    """
    return InstrumentationChain(emitter, [
        PerformanceMonitor(emitter, config.slow_response_ms),
        RequestLogger(emitter),
        RateLimitMonitor(emitter, counter, config.rate_limit_max_requests),
        SecurityScanner(emitter),
        ApiVersionMonitor(emitter, config.deprecated_endpoints),
    ])
