"""Tests for the request observers, the error enricher and the chain."""

from datetime import datetime, timezone

import pytest

from loginsight.config import Config
from loginsight.middleware import (
    ApiVersionMonitor,
    EnrichedError,
    InstrumentationChain,
    PerformanceMonitor,
    RequestLogger,
    build_chain,
    enrich_error,
    format_duration,
)
from loginsight.rate_limiter import RateLimitMonitor, RateWindowCounter
from loginsight.security import SecurityScanner


class TestPerformanceMonitor:
    @pytest.mark.parametrize("duration,slow", [
        (0, False), (999.9, False), (1000, False), (1000.1, True), (5000, True),
    ])
    def test_slow_iff_over_one_second(self, recorder, duration, slow):
        assert PerformanceMonitor(recorder).is_slow(duration) is slow

    def test_slow_response_event(self, recorder, make_ctx):
        PerformanceMonitor(recorder).on_response(make_ctx(user_id="u1"), 200, 1500)
        level, message, fields = recorder.events[0]
        assert (level, message) == ("warn", "Slow Response Detected")
        assert fields["responseTime"] == "1500ms"
        assert fields["performance"] == "slow"
        assert fields["userId"] == "u1"
        assert fields["statusCode"] == 200
        assert fields["userAgent"] == "pytest-agent"

    def test_normal_response_event(self, recorder, make_ctx):
        PerformanceMonitor(recorder).on_response(make_ctx(), 201, 12.4)
        level, message, fields = recorder.events[0]
        assert (level, message) == ("info", "Performance Metric")
        assert fields["responseTime"] == "12ms"
        assert "performance" not in fields

    def test_custom_threshold(self, recorder):
        assert PerformanceMonitor(recorder, slow_threshold_ms=50).is_slow(51) is True


class TestRequestLogger:
    def test_success_is_http_request(self, recorder, make_ctx):
        RequestLogger(recorder).on_response(make_ctx(url="/api/recipes?page=2"), 200, 30)
        level, message, fields = recorder.events[0]
        assert (level, message) == ("info", "HTTP Request")
        assert fields["url"] == "/api/recipes?page=2"
        assert fields["responseTime"] == "30ms"
        assert fields["userId"] == "anonymous"
        assert fields["ip"] == "10.0.0.1"

    def test_client_error_is_warning(self, recorder, make_ctx):
        RequestLogger(recorder).on_response(make_ctx(user_id="u7"), 404, 3)
        level, message, fields = recorder.events[0]
        assert (level, message) == ("warn", "HTTP Request Error")
        assert fields["userId"] == "u7"


class TestApiVersionMonitor:
    def test_default_version(self, recorder, make_ctx):
        ApiVersionMonitor(recorder).on_request(make_ctx())
        assert recorder.events == [("info", "API Version Usage", {
            "version": "1.0",
            "endpoint": "/api/recipes",
            "method": "GET",
            "userAgent": "pytest-agent",
            "userId": None,
        })]

    def test_header_version(self, recorder, make_ctx):
        ApiVersionMonitor(recorder).on_request(make_ctx(headers={"api-version": "2.1"}))
        assert recorder.events[0][2]["version"] == "2.1"

    def test_deprecated_endpoint(self, recorder, make_ctx):
        monitor = ApiVersionMonitor(recorder, deprecated_endpoints=("/api/auth/legacy-login",))
        monitor.on_request(make_ctx(url="/api/auth/legacy-login"))
        assert recorder.messages() == ["API Version Usage", "Deprecated API Usage"]
        assert recorder.events[1][0] == "warn"
        assert recorder.events[1][2]["deprecation"] == "deprecated_endpoint"

    def test_non_deprecated_endpoint(self, recorder, make_ctx):
        monitor = ApiVersionMonitor(recorder, deprecated_endpoints=("/api/auth/legacy-login",))
        monitor.on_request(make_ctx(url="/api/auth/login"))
        assert recorder.messages() == ["API Version Usage"]


class TestEnrichError:
    NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def test_context_fields(self, make_ctx):
        error = ValueError("bad input")
        ctx = make_ctx(method="POST", url="/api/recipes", body={"title": "x"},
                       query={"a": "1"}, user_id="u1", session_id="s1")
        enriched = enrich_error(error, ctx, now=self.NOW)

        assert isinstance(enriched, EnrichedError)
        assert enriched.error is error
        assert enriched.context == {
            "method": "POST",
            "url": "/api/recipes",
            "userId": "u1",
            "sessionId": "s1",
            "ip": "10.0.0.1",
            "userAgent": "pytest-agent",
            "timestamp": "2025-01-15T12:00:00+00:00",
            "headers": {"User-Agent": "pytest-agent"},
            "body": {"title": "x"},
            "query": {"a": "1"},
        }

    def test_body_omitted_for_get(self, make_ctx):
        enriched = enrich_error(RuntimeError(), make_ctx(body={"x": 1}), now=self.NOW)
        assert enriched.context["body"] is None

    def test_original_error_untouched(self, make_ctx):
        error = RuntimeError("boom")
        before = dict(vars(error))
        enrich_error(error, make_ctx(), now=self.NOW)
        assert vars(error) == before
        assert not hasattr(error, "context")

    def test_to_dict(self, make_ctx):
        d = enrich_error(KeyError("k"), make_ctx(), now=self.NOW).to_dict()
        assert d["errorType"] == "KeyError"
        assert d["context"]["url"] == "/api/recipes"


class Exploding:
    def on_request(self, ctx):
        raise RuntimeError("observer bug")

    def on_response(self, ctx, status_code, duration_ms):
        raise RuntimeError("observer bug")


class TestInstrumentationChain:
    def test_failing_observer_is_isolated(self, recorder, make_ctx, caplog):
        chain = InstrumentationChain(recorder, [Exploding(), RequestLogger(recorder)])
        chain.on_request(make_ctx())
        chain.on_response(make_ctx(), 200, 5)
        assert recorder.messages() == ["HTTP Request"]
        assert "Observer Exploding.on_request failed" in caplog.text

    def test_observers_without_hook_are_skipped(self, recorder, make_ctx):
        chain = InstrumentationChain(recorder, [RequestLogger(recorder)])
        chain.on_request(make_ctx())
        assert recorder.events == []

    def test_on_error_emits_application_error(self, recorder, make_ctx):
        chain = InstrumentationChain(recorder)
        try:
            raise ValueError("Recipe not found: 42")
        except ValueError as e:
            enriched = chain.on_error(e, make_ctx(method="DELETE", url="/api/recipes/42"))

        assert enriched.context["url"] == "/api/recipes/42"
        level, message, fields = recorder.events[0]
        assert (level, message) == ("error", "Application Error")
        assert fields["error"] == "ValueError: Recipe not found: 42"
        assert fields["errorType"] == "ValueError"
        assert fields["context"]["method"] == "DELETE"
        assert "Traceback" in fields["stack"]

    def test_on_error_never_raises(self, make_ctx):
        class BrokenEmitter:
            def emit(self, *args, **kwargs):
                raise OSError("disk full")

        chain = InstrumentationChain(BrokenEmitter())
        assert chain.on_error(ValueError("x"), make_ctx()) is None


class TestBuildChain:
    def test_default_observers_in_order(self, recorder):
        chain = build_chain(Config(), recorder, RateWindowCounter())
        assert [type(o) for o in chain.observers] == [
            PerformanceMonitor, RequestLogger, RateLimitMonitor, SecurityScanner, ApiVersionMonitor,
        ]

    def test_full_request(self, recorder, make_ctx):
        chain = build_chain(Config(), recorder, RateWindowCounter())
        ctx = make_ctx(url="/api/auth/legacy-login")
        chain.on_request(ctx)
        chain.on_response(ctx, 200, 20)
        assert recorder.messages() == [
            "API Version Usage", "Deprecated API Usage", "Performance Metric", "HTTP Request",
        ]

    def test_counter_is_required(self, recorder):
        with pytest.raises(TypeError):
            build_chain(Config(), recorder)

    def test_requests_land_in_the_given_counter_and_are_swept(self, recorder, make_ctx):
        fake_time = [1_000 * 60.0]
        counter = RateWindowCounter(time_func=lambda: fake_time[0])
        chain = build_chain(Config(), recorder, counter)
        chain.on_request(make_ctx(ip="10.9.9.9"))
        assert counter.count("10.9.9.9") == 1

        fake_time[0] += 301
        assert counter.sweep() == 1
        assert len(counter) == 0


def test_format_duration():
    assert format_duration(0) == "0ms"
    assert format_duration(1234.6) == "1235ms"
