"""
Integration tests for the governance middleware through a FastAPI app.

Log files are only read after the TestClient block exits: shutdown drains
the pending appends.
"""

import json
import logging
from typing import List

from fastapi import FastAPI
from fastapi.testclient import TestClient

from reqguard.config import CacheSettings, MonitorSettings, RateLimitSettings, Settings
from reqguard.core.governance import GovernanceCore
from reqguard.main import create_app, install_governance

UA = {"user-agent": "pytest-client"}


def client_for(app: FastAPI) -> TestClient:
    return TestClient(app, raise_server_exceptions=False, headers=UA)


def read_lines(path) -> List[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestRateLimitDetection:
    """Over-limit requests are flagged but still served by default."""

    def test_101st_request_is_flagged(self, app: FastAPI, governance: GovernanceCore, stream_path) -> None:
        with client_for(app) as client:
            statuses = [client.get("/items").status_code for _ in range(101)]

        assert statuses == [200] * 101
        assert app.state.handler_calls["items"] == 101

        records = read_lines(stream_path("security"))
        assert len(records) == 1
        assert records[0]["issues"] == ["RATE_LIMIT_EXCEEDED"]
        assert records[0]["severity"] == "MEDIUM"
        assert governance.aggregator.metrics.security_flag_count == 1

    def test_block_mode_rejects_with_retry_after(self, log_dir, clock, sampler) -> None:
        settings = Settings(
            monitor=MonitorSettings(log_dir=log_dir),
            rate_limit=RateLimitSettings(max_requests=2, window_seconds=60, block=True),
        )
        governance = GovernanceCore(settings, clock=clock, sampler=sampler)
        app = create_app(settings, governance)
        calls = []

        @app.get("/items")
        async def list_items() -> dict:
            calls.append(1)
            return {"items": []}

        with client_for(app) as client:
            assert client.get("/items").status_code == 200
            assert client.get("/items").status_code == 200
            response = client.get("/items")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["message"] == "Too many requests from this IP, please try again later"
        assert len(calls) == 2

        m = governance.aggregator.metrics
        assert (m.request_count, m.error_count) == (3, 1)


class TestSecurityScenarios:
    """Injection and header heuristics end to end."""

    def test_sql_injection_logged_with_warning(self, app: FastAPI, stream_path, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            with client_for(app) as client:
                response = client.get("/items?id=1;%20DROP%20TABLE%20users")

        assert response.status_code == 200
        record = read_lines(stream_path("security"))[0]
        assert "SQL_INJECTION_ATTEMPT" in record["issues"]
        assert record["severity"] == "HIGH"
        assert "DROP" in record["path"]
        assert record["userAgent"] == "pytest-client"
        assert "SECURITY ALERT" in caplog.text

    def test_empty_user_agent(self, app: FastAPI, stream_path) -> None:
        with client_for(app) as client:
            client.get("/items", headers={"User-Agent": ""})

        record = read_lines(stream_path("security"))[0]
        assert record["issues"] == ["NO_USER_AGENT"]
        assert record["userAgent"] is None


class TestPerformanceAlerts:
    """Slow and failing requests."""

    def test_slow_request(self, app: FastAPI, governance: GovernanceCore, stream_path) -> None:
        with client_for(app) as client:
            assert client.get("/slow").status_code == 200

        assert governance.aggregator.metrics.slow_request_count == 1
        alert = read_lines(stream_path("alerts"))[0]
        assert alert["type"] == "PERFORMANCE"
        assert alert["details"] == ["Slow API: 450ms"]

        perf = read_lines(stream_path("performance"))[0]
        assert perf["duration"] == 450.0
        assert perf["path"] == "/slow"

    def test_handler_exception_counted_once_as_500(
        self, app: FastAPI, governance: GovernanceCore, stream_path
    ) -> None:
        with client_for(app) as client:
            response = client.get("/boom")

        assert response.status_code == 500
        assert response.json()["message"] == "Something went wrong!"

        m = governance.aggregator.metrics
        assert (m.request_count, m.error_count) == (1, 1)
        perf = read_lines(stream_path("performance"))
        assert [r["status"] for r in perf] == [500]
        assert read_lines(stream_path("alerts"))[0]["details"] == ["Server Error: 500"]

    def test_client_error_counts_as_error(self, test_client: TestClient, governance: GovernanceCore) -> None:
        assert test_client.get("/missing").status_code == 404

        payload = test_client.get("/metrics").json()
        assert payload["requests"] == 1
        assert payload["errors"] == 1
        assert payload["errorRate"] == 100.0


class TestResponseCaching:
    """Cached GET responses and write invalidation."""

    def test_second_get_is_served_from_cache(self, app: FastAPI, governance: GovernanceCore) -> None:
        with client_for(app) as client:
            first = client.get("/vendors")
            second = client.get("/vendors")

        assert first.status_code == second.status_code == 200
        assert second.content == first.content
        assert second.json() == {"vendors": ["alpha", "beta"], "call": 1}
        assert second.headers["content-type"] == "application/json"
        assert app.state.handler_calls["vendors"] == 1

        m = governance.aggregator.metrics
        assert m.request_count == 2
        assert (m.cache_hit_count, m.cache_miss_count) == (1, 1)

    def test_query_string_is_part_of_key(self, test_client: TestClient, app: FastAPI) -> None:
        test_client.get("/vendors?page=1")
        test_client.get("/vendors?page=2")
        assert app.state.handler_calls["vendors"] == 2

    def test_expired_entry_is_refetched(self, test_client: TestClient, app: FastAPI, clock) -> None:
        test_client.get("/vendors")
        clock.advance(300)
        assert test_client.get("/vendors").json()["call"] == 2

    def test_uncached_paths_always_hit_handler(self, test_client: TestClient, app: FastAPI) -> None:
        test_client.get("/items")
        test_client.get("/items")
        assert app.state.handler_calls["items"] == 2

    def test_write_invalidates_cached_reads(self, test_client: TestClient, app: FastAPI) -> None:
        test_client.get("/vendors")
        assert test_client.post("/vendors").status_code == 200
        assert test_client.get("/vendors").json()["call"] == 2


class TestHealthAndMetricsEndpoints:
    """Health, JSON metrics and Prometheus exposition."""

    def test_liveness(self, test_client: TestClient) -> None:
        response = test_client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_detailed_health(self, test_client: TestClient) -> None:
        test_client.get("/items")
        payload = test_client.get("/health-detailed").json()

        assert payload["status"] == "HEALTHY"
        assert payload["requests"] == 1
        assert payload["errors"] == 0
        assert payload["system"]["memory"]["percentage"] == 40
        assert "timestamp" in payload

    def test_detailed_health_reports_critical(self, test_client: TestClient) -> None:
        test_client.get("/boom")
        payload = test_client.get("/health-detailed").json()
        assert payload["status"] == "CRITICAL"
        assert payload["errorRate"] == 100.0

    def test_prometheus(self, test_client: TestClient) -> None:
        test_client.get("/items")
        response = test_client.get("/metrics/prometheus")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'reqguard_http_requests_total{method="GET",status_code="200"} 1.0' in response.text

    def test_install_on_existing_app(self, governance: GovernanceCore) -> None:
        app = FastAPI()

        @app.get("/ping")
        async def ping() -> dict:
            return {"pong": True}

        assert install_governance(app, governance=governance) is governance
        with client_for(app) as client:
            assert client.get("/ping").status_code == 200
            assert client.get("/metrics").json()["requests"] == 1

    def test_health_without_core(self) -> None:
        from reqguard.api import health_router

        app = FastAPI()
        app.include_router(health_router)
        with TestClient(app) as client:
            response = client.get("/health-detailed")

        assert response.status_code == 503
        assert response.json()["status"] == "UNKNOWN"


class TestAccessLog:
    """The api-YYYY-MM-DD.log stream."""

    def test_access_line_per_request(self, app: FastAPI, stream_path) -> None:
        with client_for(app) as client:
            response = client.get("/items")

        record = read_lines(stream_path("api"))[0]
        assert record["method"] == "GET"
        assert record["status"] == 200
        assert record["size"] == len(response.content)
        assert record["ua"] == "pytest-client"
        assert record["ip"] == "testclient"
        assert "ts" in record

    def test_access_log_can_be_disabled(self, log_dir, clock, sampler, stream_path) -> None:
        settings = Settings(monitor=MonitorSettings(log_dir=log_dir, access_log_enabled=False),
                            cache=CacheSettings(enabled=False))
        app = create_app(settings, GovernanceCore(settings, clock=clock, sampler=sampler))
        with client_for(app) as client:
            client.get("/healthz")

        assert stream_path("performance").exists()
        assert not stream_path("api").exists()
