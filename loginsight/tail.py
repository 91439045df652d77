"""Real-time tail monitor: delivers the newest event in today's file to one callback.

The day's stream may span several files once the size cap is hit
(``<service>-YYYY-MM-DD.log``, ``.log.1``, ``.log.2`` ...). The monitor
follows whichever part is newest.
"""

import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from loginsight.analyzer import parse_event_line
from loginsight.models import LogEvent
from loginsight.rotation import day_filename, day_files, parse_day_filename

logger = logging.getLogger(__name__)


class FileChangeWatcher(ABC):
    """Calls on_change() whenever the watched file or one of its overflow parts may have changed."""

    @abstractmethod
    def start(self, path: str, on_change: Callable[[], None]) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class _DayFileHandler(FileSystemEventHandler):
    """Matches the base file and its ``.N`` overflow parts."""

    def __init__(self, path: str, on_change: Callable[[], None]):
        super().__init__()
        self._pattern = re.compile(re.escape(os.path.abspath(path)) + r"(?:\.\d+)?$")
        self._on_change = on_change

    def _matches(self, event) -> bool:
        return not event.is_directory and self._pattern.match(os.path.abspath(event.src_path)) is not None

    def on_modified(self, event):
        if self._matches(event):
            self._on_change()

    def on_created(self, event):
        if self._matches(event):
            self._on_change()


class WatchdogFileWatcher(FileChangeWatcher):
    """watchdog-backed watcher: native OS notifications, or stat polling when use_polling is set."""

    def __init__(self, use_polling: bool = False, poll_interval: float = 1.0):
        self._use_polling = use_polling
        self._poll_interval = poll_interval
        self._observer = None

    def start(self, path: str, on_change: Callable[[], None]) -> None:
        if self._observer is not None:
            raise RuntimeError("Watcher already started")
        if self._use_polling:
            observer = PollingObserver(timeout=self._poll_interval)
        else:
            observer = Observer()
        directory = os.path.dirname(os.path.abspath(path))
        observer.schedule(_DayFileHandler(path, on_change), directory, recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None


def complete_prefix(content: str) -> str:
    """Everything up to and including the last newline."""
    return content[:content.rfind("\n") + 1]


def last_complete_line(content: str) -> str | None:
    """The last non-blank newline-terminated line; a trailing partial line is ignored."""
    for line in reversed(complete_prefix(content).splitlines()):
        if line.strip():
            return line
    return None


class TailMonitor:
    """Single-subscriber tail of the ``<service>`` stream for the day it was started on."""

    def __init__(self, log_dir: str, service: str, callback: Callable[[LogEvent], None],
                 watcher: FileChangeWatcher | None = None, time_func=None):
        self._log_dir = log_dir
        self._service = service
        self._callback = callback
        self._watcher = watcher or WatchdogFileWatcher()
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        # (part, length of that part's complete-line prefix) already looked at
        self._position = (0, 0)
        self._day = None
        self._running = False

    @property
    def day(self):
        if self._day is None:
            self._day = self._time_func().date()
        return self._day

    @property
    def path(self) -> str:
        """Base file of the day; overflow parts live beside it."""
        return os.path.join(self._log_dir, day_filename(self._service, self.day))

    @property
    def active_path(self) -> str:
        """The newest part of the day's stream, the one currently being appended to."""
        parts = self._parts()
        return parts[-1][1] if parts else self.path

    @property
    def running(self) -> bool:
        return self._running

    def _parts(self) -> list[tuple[int, str]]:
        parts = []
        for path in day_files(self._log_dir, self._service, self.day):
            parsed = parse_day_filename(os.path.basename(path), self._service)
            parts.append((parsed[1], path))
        return parts

    def _read(self, path: str) -> str:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return ""

    def _end(self, parts) -> tuple[tuple[int, int], str]:
        last_part, last_path = parts[-1]
        content = self._read(last_path)
        return (last_part, len(complete_prefix(content))), content

    def start(self):
        if self._running:
            return
        os.makedirs(self._log_dir, exist_ok=True)
        # Only entries appended from now on are delivered
        parts = self._parts()
        self._position = self._end(parts)[0] if parts else (0, 0)
        self._watcher.start(self.path, self.check)
        self._running = True
        logger.info("Monitoring logs: %s", self.active_path)

    def stop(self):
        if not self._running:
            return
        self._watcher.stop()
        self._running = False
        logger.info("Stopped monitoring %s", self.path)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def _newest_unseen_line(self, parts, last_content: str) -> str | None:
        seen_part, seen_length = self._position
        last_part = parts[-1][0]
        for part, path in reversed(parts):
            if part < seen_part:
                break
            content = last_content if part == last_part else self._read(path)
            unseen = complete_prefix(content)
            if part == seen_part:
                unseen = unseen[seen_length:]
            line = last_complete_line(unseen)
            if line is not None:
                return line
        return None

    def check(self) -> LogEvent | None:
        """Deliver the newest complete event if one was appended. Returns the delivered event."""
        with self._lock:
            parts = self._parts()
            if not parts:
                return None
            end, last_content = self._end(parts)
            if end < self._position:
                # Truncated or replaced; start over on the newest part
                self._position = (end[0], 0)
            if end == self._position:
                return None
            line = self._newest_unseen_line(parts, last_content)
            self._position = end

        if line is None:
            return None
        record = parse_event_line(line)
        if record is None:
            return None
        event = LogEvent.from_dict(record)

        try:
            self._callback(event)
        except Exception:
            logger.exception("Tail monitor callback failed")
        return event
