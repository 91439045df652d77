"""Daily log analysis: one pass over a day's event stream into DailyMetrics and a HealthScore."""

import json
import logging
import time
from collections import Counter
from datetime import date, datetime, timezone
from typing import Iterable

import jsonschema

from loginsight.config import EVENT_LEVELS
from loginsight.models import DailyMetrics, HealthScore
from loginsight.rotation import DATE_FORMAT, day_files

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 2000
DEADLINE_CHECK_EVERY = 1000

EVENT_SCHEMA = {
    "type": "object",
    "required": ["level", "message"],
    "properties": {
        "level": {"enum": list(EVENT_LEVELS)},
        "message": {"type": "string"},
    },
}

_event_validator = jsonschema.Draft202012Validator(EVENT_SCHEMA)

AUTH_EVENTS = {
    "login_success": "logins",
    "login_failed": "login_failures",
    "user_registered": "registrations",
}


class LogFileNotFoundError(FileNotFoundError):
    """No event file exists for the requested day."""


class AnalysisTimeoutError(RuntimeError):
    """The analysis pass ran past its deadline."""


def parse_event_line(line: str) -> dict | None:
    """Decode one line into an event record, or None if it is not a valid event."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        record = json.loads(stripped)
    except ValueError:
        return None
    if not _event_validator.is_valid(record):
        return None
    return record


def parse_response_time(value) -> float | None:
    """Accept 123, 123.4, "123ms" or "123"; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("ms"):
            text = text[:-2].strip()
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if number != number or number < 0:  # NaN or negative
        return None
    return number


def error_signature(record: dict) -> str:
    """Text before the first colon of the error field, else the message."""
    error = record.get("error")
    if error:
        prefix = str(error).split(":", 1)[0]
        if prefix:
            return prefix
    return record["message"]


def analyze_lines(lines: Iterable[str], slow_request_ms: float = SLOW_REQUEST_MS,
                  deadline: float | None = None, time_func=time.monotonic) -> DailyMetrics:
    """Aggregate an event stream. Invalid lines are counted as skipped and otherwise ignored.

    ``deadline`` is an absolute ``time_func()`` value after which the pass aborts
    with AnalysisTimeoutError.
    """
    metrics = DailyMetrics()
    endpoints = Counter()
    error_types = Counter()
    response_total = 0.0

    for index, line in enumerate(lines):
        if deadline is not None and index % DEADLINE_CHECK_EVERY == 0 and time_func() > deadline:
            raise AnalysisTimeoutError(f"Analysis exceeded its deadline after {index} lines")

        if not line.strip():
            continue
        record = parse_event_line(line)
        if record is None:
            metrics.skipped_lines += 1
            continue
        metrics.parsed_lines += 1

        level = record["level"]
        message = record["message"]

        if level == "error":
            metrics.error_count += 1
            if record.get("error") or "Error" in message:
                error_types[error_signature(record)] += 1
        elif level == "warn":
            metrics.warning_count += 1
        elif level == "info":
            metrics.info_count += 1
        else:
            metrics.debug_count += 1

        if message == "HTTP Request":
            metrics.total_requests += 1
            endpoints[str(record.get("url"))] += 1
            response_time = parse_response_time(record.get("responseTime"))
            if response_time is not None:
                metrics.response_time_count += 1
                response_total += response_time
                if response_time > slow_request_ms:
                    metrics.slow_requests += 1

        if message == "Authentication Event":
            counter = AUTH_EVENTS.get(record.get("event"))
            if counter is not None:
                setattr(metrics, counter, getattr(metrics, counter) + 1)

        if record.get("security"):
            metrics.security_events += 1

        if record.get("performance") == "slow" or record.get("warning") == "slow_response":
            metrics.performance_issues += 1

    if metrics.response_time_count:
        metrics.avg_response_time = round(response_total / metrics.response_time_count, 2)
    metrics.top_endpoints = dict(sorted(endpoints.items(), key=lambda kv: (-kv[1], kv[0])))
    metrics.error_types = dict(sorted(error_types.items(), key=lambda kv: (-kv[1], kv[0])))
    return metrics


def percentage(part: float, whole: float) -> float:
    """part / whole as a percentage; 0.0 when whole is zero."""
    if not whole:
        return 0.0
    return part / whole * 100


def health_status(score: int) -> str:
    if score < 50:
        return "Critical"
    if score < 70:
        return "Warning"
    if score < 85:
        return "Good"
    return "Excellent"


def calculate_health_score(metrics: DailyMetrics) -> HealthScore:
    deductions = []

    error_rate = percentage(metrics.error_count, metrics.total_requests)
    if error_rate > 5:
        deductions.append(("error rate above 5%", 30))
    elif error_rate > 1:
        deductions.append(("error rate above 1%", 10))

    slow_rate = percentage(metrics.slow_requests, metrics.total_requests)
    if slow_rate > 10:
        deductions.append(("slow request rate above 10%", 20))
    elif slow_rate > 5:
        deductions.append(("slow request rate above 5%", 10))

    if metrics.security_events > 0:
        deductions.append(("security events recorded", 15))

    auth_failure_rate = percentage(metrics.login_failures, metrics.auth_attempts)
    if auth_failure_rate > 20:
        deductions.append(("auth failure rate above 20%", 15))
    elif auth_failure_rate > 10:
        deductions.append(("auth failure rate above 10%", 5))

    score = 100 - sum(points for _, points in deductions)
    score = max(0, min(100, score))
    return HealthScore(score=score, status=health_status(score), deductions=tuple(deductions))


def parse_day(value) -> date:
    """Accept a date, a datetime or a "YYYY-MM-DD" string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), DATE_FORMAT).date()


class LogAnalyzer:
    """Reads ``<service>-YYYY-MM-DD.log`` (and its size-overflow parts) from log_dir."""

    def __init__(self, log_dir: str, service: str, slow_request_ms: float = SLOW_REQUEST_MS,
                 deadline_seconds: float = 0, time_func=None):
        self._log_dir = log_dir
        self._service = service
        self._slow_request_ms = slow_request_ms
        self._deadline_seconds = deadline_seconds
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return self._time_func().date()

    def files_for(self, day) -> list[str]:
        day = parse_day(day)
        paths = day_files(self._log_dir, self._service, day)
        if not paths:
            raise LogFileNotFoundError(f"Log file not found for date: {day.strftime(DATE_FORMAT)}")
        return paths

    def _read_lines(self, paths: list[str]):
        for path in paths:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                yield from f

    def parse_logs_for_date(self, day=None) -> DailyMetrics:
        day = parse_day(day) if day is not None else self.today()
        paths = self.files_for(day)
        logger.info("Analyzing %d file(s) for %s", len(paths), day)

        deadline = None
        if self._deadline_seconds and self._deadline_seconds > 0:
            deadline = time.monotonic() + self._deadline_seconds

        metrics = analyze_lines(
            self._read_lines(paths), self._slow_request_ms, deadline=deadline,
        )
        if metrics.skipped_lines:
            logger.debug("Skipped %d invalid line(s) for %s", metrics.skipped_lines, day)
        return metrics

    def generate_daily_report(self, day=None, output: str = "text") -> str:
        from loginsight.report import render_json, render_text

        day = parse_day(day) if day is not None else self.today()
        metrics = self.parse_logs_for_date(day)
        health = calculate_health_score(metrics)
        if output == "json":
            return render_json(day, metrics, health)
        return render_text(day, metrics, health)
