"""
Health metrics aggregation.

Running process-wide counters with derived rates, mirrored into Prometheus
collectors for scraping. Each aggregator owns its own CollectorRegistry so
isolated instances can coexist (tests, multiple apps in one process).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, Info

from .clock import Clock, SystemSample

logger = structlog.get_logger(__name__)

CRITICAL_ERROR_RATE_PCT = 10.0
CRITICAL_MEMORY_PCT = 90.0
WARNING_SLOW_RATE_PCT = 20.0
WARNING_MEMORY_PCT = 80.0


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass
class HealthMetrics:
    """Counters only ever increase for the life of the process."""
    request_count: int = 0
    error_count: int = 0
    slow_request_count: int = 0
    security_flag_count: int = 0
    cache_hit_count: int = 0
    cache_miss_count: int = 0
    start_time: float = 0.0


@dataclass(frozen=True)
class HealthSummary:
    uptime_seconds: int
    requests: int
    errors: int
    error_rate_pct: float
    slow_requests: int
    slow_rate_pct: float
    security_flags: int
    cache_hits: int
    cache_misses: int
    system: SystemSample

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime": self.uptime_seconds,
            "requests": self.requests,
            "errors": self.errors,
            "errorRate": self.error_rate_pct,
            "slowRequests": self.slow_requests,
            "slowRate": self.slow_rate_pct,
            "securityFlags": self.security_flags,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "system": self.system.to_dict(),
        }


def rate_pct(part: int, total: int) -> float:
    """Percentage rounded to two decimals; 0 when nothing was counted."""
    if total == 0:
        return 0.0
    return round(100 * part / total, 2)


class MetricsAggregator:
    """
    Running request counters for health reporting.

    ``record`` is called exactly once per completed request by the
    instrumentation wrapper.
    """

    def __init__(
        self,
        max_response_time_ms: float = 300.0,
        max_error_rate_pct: float = 5.0,
        clock: Optional[Clock] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.clock = clock or Clock()
        self.max_response_time_ms = max_response_time_ms
        self.max_error_rate_pct = max_error_rate_pct
        self.metrics = HealthMetrics(start_time=self.clock.now())
        self.registry = registry or CollectorRegistry()

        self.service_info = Info(
            "reqguard_service",
            "Request governance layer information",
            registry=self.registry,
        )
        self.service_info.info({"version": "0.1.0", "service": "reqguard"})

        self.requests_total = Counter(
            "reqguard_http_requests_total",
            "Total completed HTTP requests",
            ["method", "status_code"],
            registry=self.registry,
        )

        self.request_duration = Histogram(
            "reqguard_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "reqguard_http_errors_total",
            "Completed requests with status >= 400",
            registry=self.registry,
        )

        self.slow_requests_total = Counter(
            "reqguard_slow_requests_total",
            "Completed requests slower than the response time threshold",
            registry=self.registry,
        )

        self.security_flags_total = Counter(
            "reqguard_security_flags_total",
            "Security issue tags raised by the scanner",
            ["tag"],
            registry=self.registry,
        )

        self.cache_lookups_total = Counter(
            "reqguard_cache_lookups_total",
            "Response cache lookups",
            ["result"],
            registry=self.registry,
        )

    def record(self, status_code: int, duration_ms: float, method: str = "GET") -> None:
        """Record one completed request."""
        self.metrics.request_count += 1
        self.requests_total.labels(method=method, status_code=str(status_code)).inc()
        self.request_duration.labels(method=method).observe(duration_ms / 1000)

        if status_code >= 400:
            self.metrics.error_count += 1
            self.errors_total.inc()

        if duration_ms > self.max_response_time_ms:
            self.metrics.slow_request_count += 1
            self.slow_requests_total.inc()

    def record_security_flag(self, tags: Iterable[str]) -> None:
        """Count one flagged request; each tag is exported separately."""
        self.metrics.security_flag_count += 1
        for tag in tags:
            self.security_flags_total.labels(tag=str(getattr(tag, "value", tag))).inc()

    def record_cache_lookup(self, hit: bool) -> None:
        if hit:
            self.metrics.cache_hit_count += 1
        else:
            self.metrics.cache_miss_count += 1
        self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    def summary(self, system: SystemSample) -> HealthSummary:
        m = self.metrics
        return HealthSummary(
            uptime_seconds=round(self.clock.now() - m.start_time),
            requests=m.request_count,
            errors=m.error_count,
            error_rate_pct=rate_pct(m.error_count, m.request_count),
            slow_requests=m.slow_request_count,
            slow_rate_pct=rate_pct(m.slow_request_count, m.request_count),
            security_flags=m.security_flag_count,
            cache_hits=m.cache_hit_count,
            cache_misses=m.cache_miss_count,
            system=system,
        )

    def health_status(self, summary: HealthSummary) -> HealthStatus:
        memory_pct = summary.system.memory.percentage

        if summary.error_rate_pct > CRITICAL_ERROR_RATE_PCT or memory_pct > CRITICAL_MEMORY_PCT:
            return HealthStatus.CRITICAL
        if (
            summary.error_rate_pct > self.max_error_rate_pct
            or summary.slow_rate_pct > WARNING_SLOW_RATE_PCT
            or memory_pct > WARNING_MEMORY_PCT
        ):
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY
