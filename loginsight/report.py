"""Daily report rendering: markdown text and JSON."""

import json
from datetime import date, datetime, timezone

from loginsight.analyzer import percentage
from loginsight.models import DailyMetrics, HealthScore

TOP_ENDPOINTS = 10


def top_endpoints(metrics: DailyMetrics, limit: int = TOP_ENDPOINTS) -> list[tuple[str, int]]:
    ranked = sorted(metrics.top_endpoints.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:limit]


def render_text(day: date, metrics: DailyMetrics, health: HealthScore,
                generated_at: datetime | None = None) -> str:
    """Human-readable daily report."""
    generated_at = generated_at or datetime.now(timezone.utc)
    error_rate = percentage(metrics.error_count, metrics.total_requests)
    login_success = percentage(metrics.logins, metrics.auth_attempts)

    lines = [f"# Daily Log Report - {day.isoformat()}", ""]

    lines.append("## Overview Metrics")
    lines.append(f"- **Total Requests**: {metrics.total_requests}")
    lines.append(f"- **Error Count**: {metrics.error_count} ({error_rate:.2f}%)")
    lines.append(f"- **Warning Count**: {metrics.warning_count}")
    lines.append(f"- **Average Response Time**: {metrics.avg_response_time:.2f}ms")
    lines.append(f"- **Slow Requests**: {metrics.slow_requests}")
    lines.append("")

    lines.append("## Authentication Events")
    lines.append(f"- **Successful Logins**: {metrics.logins}")
    lines.append(f"- **Failed Logins**: {metrics.login_failures}")
    lines.append(f"- **New Registrations**: {metrics.registrations}")
    lines.append(f"- **Login Success Rate**: {login_success:.2f}%")
    lines.append("")

    lines.append("## Top Endpoints")
    ranked = top_endpoints(metrics)
    if ranked:
        for endpoint, count in ranked:
            lines.append(f"- **{endpoint}**: {count} requests")
    else:
        lines.append("- No requests recorded.")
    lines.append("")

    lines.append("## Error Types")
    if metrics.error_types:
        for error, count in sorted(metrics.error_types.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"- **{error}**: {count} occurrences")
    else:
        lines.append("- No errors recorded.")
    lines.append("")

    lines.append("## Security & Performance")
    lines.append(f"- **Security Events**: {metrics.security_events}")
    lines.append(f"- **Performance Issues**: {metrics.performance_issues}")
    lines.append("")

    lines.append("## Health Score")
    lines.append(f"**Health Score: {health.score}/100** ({health.status})")
    for reason, points in health.deductions:
        lines.append(f"- -{points}: {reason}")
    lines.append("")

    lines.append("---")
    lines.append(f"*Generated on {generated_at.isoformat()}*")
    return "\n".join(lines)


def report_dict(day: date, metrics: DailyMetrics, health: HealthScore) -> dict:
    return {
        "date": day.isoformat(),
        "metrics": metrics.to_dict(),
        "errorRate": round(percentage(metrics.error_count, metrics.total_requests), 2),
        "loginSuccessRate": round(percentage(metrics.logins, metrics.auth_attempts), 2),
        "topEndpoints": [
            {"endpoint": endpoint, "count": count} for endpoint, count in top_endpoints(metrics)
        ],
        "health": health.to_dict(),
    }


def render_json(day: date, metrics: DailyMetrics, health: HealthScore) -> str:
    return json.dumps(report_dict(day, metrics, health), indent=2)
