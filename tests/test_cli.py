"""Tests for the command-line entry point."""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from loginsight.cli import build_parser, describe_event, main
from loginsight.models import LogEvent


@pytest.fixture
def log_dir(tmp_path, monkeypatch):
    path = tmp_path / "logs"
    path.mkdir()
    monkeypatch.setenv("LOG_DIR", str(path))
    monkeypatch.setenv("SERVICE_NAME", "svc")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    return path


def write_lines(path, records):
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


def event(level="info", message="x", **fields):
    return LogEvent(timestamp="2025-01-15 10:00:00", level=level, message=message, fields=fields)


class TestParser:
    def test_report_defaults(self):
        args = build_parser().parse_args(["report"])
        assert args.command == "report"
        assert args.date is None
        assert args.output == "text"

    def test_report_options(self):
        args = build_parser().parse_args(["--verbose", "report", "--date", "2025-01-15", "--output", "json"])
        assert args.verbose
        assert (args.date, args.output) == ("2025-01-15", "json")

    def test_serve_options(self):
        args = build_parser().parse_args(["serve", "--port", "8080"])
        assert (args.host, args.port) == ("127.0.0.1", 8080)

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_bad_output_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["report", "--output", "xml"])


class TestDescribeEvent:
    def test_error(self):
        assert describe_event(event("error", "Application Error")) == "NEW ERROR: Application Error"

    def test_security(self):
        line = describe_event(event("warn", "Rate Limit Exceeded", security="rate_limit_violation", ip="9.9.9.9"))
        assert line == "SECURITY EVENT: Rate Limit Exceeded 9.9.9.9"

    def test_security_threat_reported_as_error(self):
        line = describe_event(event("error", "Security Threat Detected", security="threat_detected"))
        assert line.startswith("NEW ERROR")

    def test_slow(self):
        line = describe_event(event("warn", "Slow Response Detected", performance="slow",
                                    url="/api/recipes", responseTime="1500ms"))
        assert line == "SLOW REQUEST: /api/recipes 1500ms"

    def test_ordinary_event_ignored(self):
        assert describe_event(event("info", "HTTP Request")) is None


class TestReportCommand:
    def test_text_report(self, log_dir, capsys):
        write_lines(log_dir / "svc-2025-01-15.log", [
            {"level": "info", "message": "HTTP Request", "url": "/a", "responseTime": "10ms"},
        ])
        assert main(["report", "--date", "2025-01-15"]) == 0
        out = capsys.readouterr().out
        assert "# Daily Log Report - 2025-01-15" in out
        assert "- **/a**: 1 requests" in out

    def test_json_report(self, log_dir, capsys):
        write_lines(log_dir / "svc-2025-01-15.log", [
            {"level": "error", "message": "Application Error", "error": "KeyError: 'id'"},
        ])
        assert main(["report", "--date", "2025-01-15", "--output", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["metrics"]["errorTypes"] == {"KeyError": 1}

    def test_missing_day(self, log_dir, capsys):
        assert main(["report", "--date", "2001-01-01"]) == 1
        assert "Log file not found for date: 2001-01-01" in capsys.readouterr().err

    def test_invalid_date(self, log_dir, capsys):
        assert main(["report", "--date", "01/15/2025"]) == 1
        assert "invalid date" in capsys.readouterr().err


class TestPurgeCommand:
    def test_purges_expired_files(self, log_dir, capsys):
        today = datetime.now(timezone.utc).date()
        old = (today - timedelta(days=30)).strftime("%Y-%m-%d")
        recent = today.strftime("%Y-%m-%d")
        for name in (f"svc-{old}.log", f"svc-{recent}.log", f"error-{old}.log", "notes.txt"):
            (log_dir / name).write_text("")

        assert main(["purge"]) == 0

        remaining = sorted(os.listdir(log_dir))
        assert remaining == sorted([f"svc-{recent}.log", "notes.txt"])
        out = capsys.readouterr().out
        assert f"deleted svc-{old}.log" in out
        assert f"deleted error-{old}.log" in out
