"""Value types shared by the emitter, the instrumentation chain and the analyzer."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

RESERVED_KEYS = ("timestamp", "level", "message")


@dataclass(frozen=True)
class LogEvent:
    timestamp: str       # "YYYY-MM-DD HH:MM:SS" or ISO 8601
    level: str           # error, warn, info, debug
    message: str         # event type discriminator, e.g. "HTTP Request"
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so the caller's dict can't change the event
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def get(self, key: str, default=None):
        return self.fields.get(key, default)

    def to_dict(self) -> dict:
        """Flatten into the wire shape: reserved keys first, then fields."""
        record = {
            "timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
        }
        for key, value in self.fields.items():
            if key not in RESERVED_KEYS:
                record[key] = value
        return record

    @classmethod
    def from_dict(cls, record: dict) -> "LogEvent":
        extra = {k: v for k, v in record.items() if k not in RESERVED_KEYS}
        return cls(
            timestamp=str(record.get("timestamp", "")),
            level=record["level"],
            message=record["message"],
            fields=extra,
        )


@dataclass(frozen=True)
class RequestContext:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    query: Mapping[str, Any] = field(default_factory=dict)
    ip: str = ""
    user_id: str | None = None
    session_id: str | None = None

    def header(self, name: str, default=None):
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default

    @property
    def user_agent(self) -> str | None:
        return self.header("User-Agent")


@dataclass
class DailyMetrics:
    total_requests: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    debug_count: int = 0
    response_time_count: int = 0
    avg_response_time: float = 0.0
    slow_requests: int = 0
    logins: int = 0
    login_failures: int = 0
    registrations: int = 0
    security_events: int = 0
    performance_issues: int = 0
    top_endpoints: dict[str, int] = field(default_factory=dict)
    error_types: dict[str, int] = field(default_factory=dict)
    parsed_lines: int = 0
    skipped_lines: int = 0

    @property
    def level_counts(self) -> dict[str, int]:
        return {
            "error": self.error_count,
            "warn": self.warning_count,
            "info": self.info_count,
            "debug": self.debug_count,
        }

    @property
    def auth_attempts(self) -> int:
        return self.logins + self.login_failures

    def to_dict(self) -> dict:
        return {
            "totalRequests": self.total_requests,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "infoCount": self.info_count,
            "debugCount": self.debug_count,
            "avgResponseTime": self.avg_response_time,
            "responseTimeCount": self.response_time_count,
            "slowRequests": self.slow_requests,
            "authenticationEvents": {
                "logins": self.logins,
                "loginFailures": self.login_failures,
                "registrations": self.registrations,
            },
            "topEndpoints": dict(self.top_endpoints),
            "errorTypes": dict(self.error_types),
            "securityEvents": self.security_events,
            "performanceIssues": self.performance_issues,
            "parsedLines": self.parsed_lines,
            "skippedLines": self.skipped_lines,
        }


@dataclass(frozen=True)
class HealthScore:
    score: int
    status: str          # Critical, Warning, Good, Excellent
    deductions: tuple = ()

    def __str__(self) -> str:
        return f"Health Score: {self.score}/100 ({self.status})"

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "status": self.status,
            "deductions": [{"reason": r, "points": p} for r, p in self.deductions],
        }
