"""Signature-based scanning of request url, body and query for known attack patterns."""

import json
import re
from dataclasses import dataclass

from loginsight.models import RequestContext


@dataclass(frozen=True)
class SecurityPattern:
    regex: re.Pattern
    category: str


# Evaluated in this order; the first match is the one reported.
SUSPICIOUS_PATTERNS = (
    SecurityPattern(re.compile(r"\.\./"), "path_traversal"),
    SecurityPattern(re.compile(r"<script>", re.IGNORECASE), "xss_script_tag"),
    SecurityPattern(re.compile(r"union\s+select", re.IGNORECASE), "sql_injection"),
    SecurityPattern(re.compile(r"alert\(", re.IGNORECASE), "javascript_injection"),
    SecurityPattern(re.compile(r"document\.cookie", re.IGNORECASE), "cookie_theft"),
)


def _serialize(value) -> str:
    return json.dumps(value if value is not None else {}, default=str)


def find_threat(url: str, body=None, query=None,
                patterns=SUSPICIOUS_PATTERNS) -> SecurityPattern | None:
    """Return the first pattern matching url, serialized body or serialized query."""
    surfaces = (url or "", _serialize(body), _serialize(query))
    for pattern in patterns:
        if any(pattern.regex.search(text) for text in surfaces):
            return pattern
    return None


class SecurityScanner:
    """Emits one "Security Threat Detected" event per suspicious request. Never blocks."""

    def __init__(self, emitter, patterns=SUSPICIOUS_PATTERNS):
        self._emitter = emitter
        self._patterns = patterns

    def on_request(self, ctx: RequestContext):
        match = find_threat(ctx.url, ctx.body, ctx.query, self._patterns)
        if match is None:
            return
        self._emitter.emit(
            "error",
            "Security Threat Detected",
            type="suspicious_pattern",
            ip=ctx.ip,
            method=ctx.method,
            url=ctx.url,
            body=ctx.body,
            query=dict(ctx.query) if ctx.query else {},
            userAgent=ctx.user_agent,
            pattern=match.regex.pattern,
            category=match.category,
            security="threat_detected",
        )
