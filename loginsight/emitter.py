"""Structured event emitter: JSON lines into a general stream and an error-only stream."""

import json
import logging
import traceback
from datetime import datetime, timezone

from loginsight.config import Config, ERROR_STREAM_PREFIX, EVENT_LEVELS
from loginsight.models import LogEvent
from loginsight.rotation import DailyRotatingWriter

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Lower value = more severe
SEVERITY = {level: rank for rank, level in enumerate(EVENT_LEVELS)}

_CONSOLE_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def serialize_event(event: LogEvent) -> str:
    """One JSON object, no trailing newline. Unknown types fall back to str()."""
    return json.dumps(event.to_dict(), default=str)


class EventEmitter:
    """Process-wide append-only sink for LogEvents.

    Every event at or above ``config.min_level`` goes to ``<service>-YYYY-MM-DD.log``;
    error events also go to ``error-YYYY-MM-DD.log``. Each stream rotates daily,
    caps file size and keeps its own retention window.
    """

    def __init__(self, config: Config, time_func=None):
        self._config = config
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._min_rank = SEVERITY[config.min_level]
        self._default_fields = {
            "service": config.service_name,
            "environment": config.environment,
        }
        self._general = DailyRotatingWriter(
            config.log_dir, config.service_name, config.max_file_size_bytes,
            config.general_retention_days, self._time_func,
        )
        self._errors = DailyRotatingWriter(
            config.log_dir, ERROR_STREAM_PREFIX, config.max_file_size_bytes,
            config.error_retention_days, self._time_func,
        )
        self._console = None
        if config.console_output and not config.is_production:
            self._console = logging.getLogger("loginsight.events")

    def emit(self, level: str, message: str, **fields) -> LogEvent | None:
        """Record one event. Returns the event, or None when filtered by min_level."""
        if level not in SEVERITY:
            raise ValueError(f"Unknown event level: {level}")
        if SEVERITY[level] > self._min_rank:
            return None

        merged = dict(self._default_fields)
        merged.update({k: v for k, v in fields.items() if v is not None})
        event = LogEvent(
            timestamp=self._time_func().strftime(TIMESTAMP_FORMAT),
            level=level,
            message=message,
            fields=merged,
        )
        line = serialize_event(event)

        self._general.write(line)
        if level == "error":
            self._errors.write(line)

        if self._console is not None:
            extra = {k: v for k, v in event.fields.items() if k not in self._default_fields}
            self._console.log(
                _CONSOLE_LEVELS[level], "%s %s", message,
                json.dumps(extra, default=str) if extra else "",
            )
        return event

    def error(self, message: str, **fields):
        return self.emit("error", message, **fields)

    def warn(self, message: str, **fields):
        return self.emit("warn", message, **fields)

    def info(self, message: str, **fields):
        return self.emit("info", message, **fields)

    def debug(self, message: str, **fields):
        return self.emit("debug", message, **fields)

    # Helpers for the event types the analyzer understands

    def log_error(self, error: BaseException, **context):
        return self.error(
            "Application Error",
            error=f"{type(error).__name__}: {error}",
            stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            **context,
        )

    def log_auth(self, event: str, user_id=None, **details):
        return self.info(
            "Authentication Event",
            event=event,
            userId=user_id,
            **details,
        )

    def log_database(self, operation: str, collection: str, **details):
        return self.info("Database Operation", operation=operation, collection=collection, **details)

    def purge(self) -> list[str]:
        """Apply both retention windows now. Returns deleted filenames."""
        return self._general.purge() + self._errors.purge()

    @property
    def general_path(self) -> str:
        return self._general.current_path

    @property
    def error_path(self) -> str:
        return self._errors.current_path

    def close(self):
        self._general.close()
        self._errors.close()
