"""Flask report server: instrumented app factory with health and daily report endpoints."""

import atexit

from flask import Flask, jsonify

from loginsight.analyzer import (
    AnalysisTimeoutError,
    LogAnalyzer,
    LogFileNotFoundError,
    calculate_health_score,
    parse_day,
)
from loginsight.config import Config, load_config
from loginsight.emitter import EventEmitter
from loginsight.flask_binding import Instrumentation
from loginsight.middleware import build_chain
from loginsight.rate_limiter import RateWindowCounter
from loginsight.report import report_dict


def create_app(config: Config | None = None, start_eviction: bool = True):
    """Flask application factory with request instrumentation bound."""
    app = Flask(__name__)

    if config is None:
        config = load_config()

    emitter = EventEmitter(config)
    counter = RateWindowCounter(
        window_seconds=config.rate_limit_window_seconds,
        retention_seconds=config.rate_limit_retention_seconds,
        sweep_interval_seconds=config.rate_limit_sweep_seconds,
    )
    chain = build_chain(config, emitter, counter)
    Instrumentation(chain, app)
    analyzer = LogAnalyzer(
        config.log_dir, config.service_name,
        slow_request_ms=config.slow_request_ms,
        deadline_seconds=config.analysis_deadline_seconds,
    )

    # Store components on app for access in tests
    app.config["components"] = {
        "config": config,
        "emitter": emitter,
        "counter": counter,
        "chain": chain,
        "analyzer": analyzer,
    }

    if start_eviction:
        counter.start_eviction()
        atexit.register(counter.stop_eviction)

    # --- Routes ---

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "service": config.service_name,
            "rate_windows": len(counter),
        })

    @app.route("/api/reports/<day>")
    def daily_report(day):
        try:
            parsed = parse_day(day)
        except ValueError:
            return jsonify({"status": "invalid", "error": "date must be YYYY-MM-DD"}), 400
        try:
            metrics = analyzer.parse_logs_for_date(parsed)
        except LogFileNotFoundError as e:
            return jsonify({"status": "not_found", "error": str(e)}), 404
        except AnalysisTimeoutError as e:
            return jsonify({"status": "timeout", "error": str(e)}), 503
        return jsonify(report_dict(parsed, metrics, calculate_health_score(metrics)))

    return app
