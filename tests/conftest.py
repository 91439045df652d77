from datetime import datetime, timezone

import pytest

from loginsight.config import Config
from loginsight.models import RequestContext


class RecordingEmitter:
    """Stands in for EventEmitter; keeps (level, message, fields) tuples."""

    def __init__(self):
        self.events = []

    def emit(self, level, message, **fields):
        self.events.append((level, message, fields))

    def messages(self):
        return [message for _, message, _ in self.events]

    def find(self, message):
        return [e for e in self.events if e[1] == message]


@pytest.fixture
def recorder():
    return RecordingEmitter()


@pytest.fixture
def config(tmp_path):
    return Config(
        log_dir=str(tmp_path / "logs"),
        service_name="testsvc",
        console_output=False,
    )


@pytest.fixture
def fixed_now():
    return datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_ctx():
    def _make(method="GET", url="/api/recipes", body=None, query=None, ip="10.0.0.1",
              headers=None, user_id=None, session_id=None):
        return RequestContext(
            method=method,
            url=url,
            headers=headers if headers is not None else {"User-Agent": "pytest-agent"},
            body=body,
            query=query or {},
            ip=ip,
            user_id=user_id,
            session_id=session_id,
        )
    return _make

