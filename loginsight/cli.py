"""loginsight: daily log reports, live tail monitoring and an instrumented demo server."""

import logging
import signal
import sys
import time
from argparse import ArgumentParser

from loginsight.analyzer import AnalysisTimeoutError, LogAnalyzer, LogFileNotFoundError
from loginsight.config import load_config
from loginsight.models import LogEvent

logger = logging.getLogger(__name__)

_running = True


def _signal_handler(sig, _frame):
    global _running
    logger.info("Shutdown signal received (signal %d), stopping...", sig)
    _running = False


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="loginsight",
        description="Analyze and monitor structured request logs.",
    )
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Debug-level operational logging")
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Print the daily report for one day")
    report.add_argument("--date", help="Day to analyze (YYYY-MM-DD, default: today UTC)")
    report.add_argument(
        "--output",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    monitor = sub.add_parser("monitor", help="Follow today's log and print notable events")
    monitor.add_argument(
        "--polling",
        action="store_true",
        help="Poll the file instead of using OS change notifications",
    )

    serve = sub.add_parser("serve", help="Run the instrumented report server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)

    sub.add_parser("purge", help="Delete log files past their retention window")
    return parser


def describe_event(event: LogEvent) -> str | None:
    """One console line for events worth surfacing, None for the rest."""
    if event.level == "error":
        return f"NEW ERROR: {event.message}"
    if event.get("security"):
        return f"SECURITY EVENT: {event.message} {event.get('ip', '')}".rstrip()
    if event.get("performance") == "slow":
        return f"SLOW REQUEST: {event.get('url')} {event.get('responseTime')}"
    return None


def _print_notable(event: LogEvent):
    line = describe_event(event)
    if line:
        print(line, flush=True)


def run_report(config, args) -> int:
    analyzer = LogAnalyzer(
        config.log_dir, config.service_name,
        slow_request_ms=config.slow_request_ms,
        deadline_seconds=config.analysis_deadline_seconds,
    )
    try:
        print(analyzer.generate_daily_report(args.date, output=args.output))
    except LogFileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except AnalysisTimeoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ValueError:
        print(f"Error: invalid date {args.date!r}, expected YYYY-MM-DD", file=sys.stderr)
        return 1
    return 0


def run_monitor(config, args) -> int:
    from loginsight.tail import TailMonitor, WatchdogFileWatcher

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    monitor = TailMonitor(
        config.log_dir, config.service_name, _print_notable,
        watcher=WatchdogFileWatcher(use_polling=args.polling),
    )
    with monitor:
        while _running:
            time.sleep(1)
    return 0


def run_serve(config, args) -> int:
    from loginsight.app import create_app

    app = create_app(config)
    logger.info("Serving on %s:%d (logs in %s)", args.host, args.port, config.log_dir)
    app.run(host=args.host, port=args.port, use_reloader=False)
    return 0


def run_purge(config, args) -> int:
    from loginsight.emitter import ERROR_STREAM_PREFIX
    from loginsight.rotation import enforce_retention

    deleted = enforce_retention(config.log_dir, config.service_name, config.general_retention_days)
    deleted += enforce_retention(config.log_dir, ERROR_STREAM_PREFIX, config.error_retention_days)
    for name in deleted:
        print(f"deleted {name}")
    logger.info("Purged %d file(s)", len(deleted))
    return 0


COMMANDS = {
    "report": run_report,
    "monitor": run_monitor,
    "serve": run_serve,
    "purge": run_purge,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [loginsight] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    config = load_config(args.config)
    return COMMANDS[args.command](config, args)

