"""Append-only daily log files with a size cap per file and age-based retention."""

import logging
import os
import re
import threading
from datetime import date, datetime, timedelta, timezone

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_filename(prefix: str, day: date) -> str:
    """Base file for one calendar day, e.g. ``loginsight-2025-01-15.log``."""
    return f"{prefix}-{day.strftime(DATE_FORMAT)}.log"


def _name_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log(?:\.(\d+))?$")


def parse_day_filename(filename: str, prefix: str) -> tuple[date, int] | None:
    """Return (day, part) for a daily file name, or None if it doesn't belong to prefix.

    The base file is part 0; size overflow files ``<base>.1``, ``<base>.2`` follow.
    """
    match = _name_pattern(prefix).match(filename)
    if not match:
        return None
    try:
        day = datetime.strptime(match.group(1), DATE_FORMAT).date()
    except ValueError:
        return None
    part = int(match.group(2)) if match.group(2) else 0
    return day, part


def day_files(log_dir: str, prefix: str, day: date) -> list[str]:
    """All files holding one day's stream, in write order (base file first)."""
    if not os.path.isdir(log_dir):
        return []
    parts = []
    for name in os.listdir(log_dir):
        parsed = parse_day_filename(name, prefix)
        if parsed is not None and parsed[0] == day:
            parts.append((parsed[1], name))
    parts.sort()
    return [os.path.join(log_dir, name) for _, name in parts]


def enforce_retention(log_dir: str, prefix: str, retention_days: int, time_func=None) -> list[str]:
    """Delete daily files older than retention_days. Returns list of deleted filenames."""
    now = (time_func or _utcnow)()
    cutoff = now.date() - timedelta(days=retention_days)
    deleted = []

    if not os.path.isdir(log_dir):
        return deleted

    for name in sorted(os.listdir(log_dir)):
        parsed = parse_day_filename(name, prefix)
        if parsed is None:
            continue
        if parsed[0] < cutoff:
            try:
                os.remove(os.path.join(log_dir, name))
            except FileNotFoundError:
                continue
            deleted.append(name)
    return deleted


class DailyRotatingWriter:
    """Thread-safe line writer that starts a new file each day and when a file fills up."""

    def __init__(self, log_dir: str, prefix: str, max_file_size_bytes: int,
                 retention_days: int, time_func=None):
        self._log_dir = log_dir
        self._prefix = prefix
        self._max_size = max_file_size_bytes
        self._retention_days = retention_days
        self._time_func = time_func or _utcnow
        self._lock = threading.Lock()
        self._file = None
        self._day = None
        self._part = 0
        os.makedirs(log_dir, exist_ok=True)
        self.purge()
        self._open_day(self._time_func().date())

    @property
    def current_path(self) -> str:
        base = os.path.join(self._log_dir, day_filename(self._prefix, self._day))
        return base if self._part == 0 else f"{base}.{self._part}"

    def _open_day(self, day: date):
        self._close()
        self._day = day
        existing = day_files(self._log_dir, self._prefix, day)
        self._part = 0
        if existing:
            last = parse_day_filename(os.path.basename(existing[-1]), self._prefix)
            self._part = last[1]
        self._open()
        if self._is_full():
            self._advance_part()

    def _open(self):
        self._file = open(self.current_path, "a", encoding="utf-8")

    def _close(self):
        if self._file and not self._file.closed:
            self._file.close()

    def _is_full(self) -> bool:
        try:
            return os.path.getsize(self.current_path) >= self._max_size
        except OSError:
            return False

    def _advance_part(self):
        self._close()
        self._part += 1
        self._open()
        logger.info("Size cap reached, continuing in %s", self.current_path)

    def write(self, line: str) -> None:
        """Append one line, rolling over on a new day or a full file."""
        with self._lock:
            today = self._time_func().date()
            if today != self._day:
                self._open_day(today)
                deleted = enforce_retention(
                    self._log_dir, self._prefix, self._retention_days, self._time_func
                )
                if deleted:
                    logger.info("Purged %d file(s): %s", len(deleted), ", ".join(deleted))

            self._file.write(line if line.endswith("\n") else line + "\n")
            self._file.flush()

            if self._is_full():
                self._advance_part()

    def purge(self) -> list[str]:
        return enforce_retention(self._log_dir, self._prefix, self._retention_days, self._time_func)

    def close(self):
        with self._lock:
            self._close()
