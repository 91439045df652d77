"""Flask binding: turns the request lifecycle into chain calls.

``before_request`` runs the arrival observers, ``after_request`` is the
response completion hook (called once with the final status and duration) and
``got_request_exception`` feeds unhandled errors to the error enricher. The
response object is returned untouched.
"""

import logging
import time
from dataclasses import replace

from flask import Flask, current_app, g, got_request_exception, request

from loginsight.middleware import InstrumentationChain
from loginsight.models import RequestContext

logger = logging.getLogger(__name__)

EXTENSION_KEY = "loginsight"


def _original_url() -> str:
    query_string = request.query_string.decode("utf-8", "replace")
    return f"{request.path}?{query_string}" if query_string else request.path


def _request_body():
    if request.method == "GET":
        return None
    body = request.get_json(silent=True)
    if body is None and request.form:
        body = request.form.to_dict()
    return body


def build_request_context(session_cookie: str = "session") -> RequestContext:
    """Snapshot the active Flask request as a RequestContext."""
    return RequestContext(
        method=request.method,
        url=_original_url(),
        headers=dict(request.headers),
        body=_request_body(),
        query=request.args.to_dict(),
        ip=request.remote_addr or "",
        user_id=g.get("user_id"),
        session_id=request.cookies.get(session_cookie),
    )


class Instrumentation:
    def __init__(self, chain: InstrumentationChain, app: Flask | None = None, time_func=None):
        self._chain = chain
        self._time_func = time_func or time.perf_counter
        if app is not None:
            self.init_app(app)

    @property
    def chain(self) -> InstrumentationChain:
        return self._chain

    def init_app(self, app: Flask):
        app.before_request(self._before_request)
        app.after_request(self._after_request)
        got_request_exception.connect(self._on_exception, app, weak=False)
        app.extensions[EXTENSION_KEY] = self

    def _context(self) -> RequestContext | None:
        try:
            cookie = current_app.config.get("SESSION_COOKIE_NAME", "session")
            ctx = g.get("_loginsight_ctx") or build_request_context(cookie)
            # Routes may authenticate after arrival; pick up the user id late
            user_id = g.get("user_id")
            if user_id is not None and ctx.user_id != user_id:
                ctx = replace(ctx, user_id=str(user_id))
            return ctx
        except Exception:
            logger.exception("Could not build request context")
            return None

    def _before_request(self):
        g._loginsight_start = self._time_func()
        ctx = self._context()
        if ctx is None:
            return None
        g._loginsight_ctx = ctx
        self._chain.on_request(ctx)
        return None

    def _after_request(self, response):
        ctx = self._context()
        if ctx is not None:
            start = g.get("_loginsight_start", self._time_func())
            duration_ms = (self._time_func() - start) * 1000
            self._chain.on_response(ctx, response.status_code, duration_ms)
        return response

    def _on_exception(self, sender, exception, **extra):
        ctx = self._context()
        if ctx is not None:
            self._chain.on_error(exception, ctx)
