"""
Request governance core.

Owns every piece of shared per-process state (rate limit records, response
cache, health counters) and drives each request through
STARTED -> CLASSIFIED -> COMPLETED. Built once at startup and handed to the
middleware and the health endpoints.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

import structlog
from prometheus_client import CollectorRegistry

from ..config import Settings
from ..models.records import AccessRecord, AlertRecord, PerformanceRecord, SecurityRecord
from .alerts import AlertEvaluator, AlertThresholds
from .cache import CachedResponse, ResponseCache, make_key
from .clock import Clock, SystemSampler
from .exceptions import ConfigurationError, RateLimitError
from .log_writer import LogWriter
from .metrics import MetricsAggregator
from .rate_limiter import FixedWindowRateLimiter
from .scanner import (
    ClassificationResult,
    IssueTag,
    RequestContext,
    SecurityScanner,
    parse_content_length,
)

logger = structlog.get_logger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class RequestPhase(str, Enum):
    STARTED = "STARTED"
    CLASSIFIED = "CLASSIFIED"
    COMPLETED = "COMPLETED"


@dataclass
class RequestTrace:
    """Mutable per-request bookkeeping owned by the wrapper."""
    context: RequestContext
    timestamp: datetime
    phase: RequestPhase = RequestPhase.STARTED
    classification: ClassificationResult = field(default_factory=ClassificationResult)
    cache_key: Optional[str] = None
    cache_hit: bool = False
    status_code: int = 0
    bytes_sent: int = 0
    duration_ms: float = 0.0
    alerts: Tuple[str, ...] = ()


class GovernanceCore:
    """
    Per-process request governance.

    Components are wired from settings; a clock, sampler and Prometheus
    registry can be injected for tests.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        sampler: Optional[SystemSampler] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or Clock()

        if settings.cache.enabled and any(not p.startswith("/") for p in settings.cache.path_prefixes):
            raise ConfigurationError(
                "Cache path prefixes must start with '/'",
                details={"path_prefixes": settings.cache.path_prefixes},
            )

        self.thresholds = AlertThresholds.from_settings(settings.monitor, settings.rate_limit)
        self.sampler = sampler or SystemSampler(
            clock=self.clock,
            memory_limit_mb=settings.monitor.memory_limit_mb,
        )
        self.rate_limiter = FixedWindowRateLimiter(
            max_requests=self.thresholds.max_rate_limit_count,
            window_seconds=settings.rate_limit.window_seconds,
            clock=self.clock,
            max_entries=settings.rate_limit.max_entries,
        )
        self.scanner = SecurityScanner(self.rate_limiter)
        self.cache = ResponseCache(
            ttl_seconds=settings.cache.ttl_seconds,
            clock=self.clock,
            max_entries=settings.cache.max_entries,
        )
        self.aggregator = MetricsAggregator(
            max_response_time_ms=self.thresholds.max_response_time_ms,
            max_error_rate_pct=self.thresholds.max_error_rate_pct,
            clock=self.clock,
            registry=registry,
        )
        self.alert_evaluator = AlertEvaluator(self.thresholds)
        self.log_writer = LogWriter(settings.monitor.log_dir)

        logger.info(
            "Governance core initialized",
            log_dir=str(settings.monitor.log_dir),
            rate_limit=self.thresholds.max_rate_limit_count,
            rate_window_seconds=settings.rate_limit.window_seconds,
            cache_ttl_seconds=settings.cache.ttl_seconds,
            cache_prefixes=settings.cache.path_prefixes,
        )

    def build_context(
        self,
        method: str,
        path: str,
        client_ip: str,
        headers: Iterable[Tuple[str, str]] = (),
        query_string: str = "",
    ) -> RequestContext:
        """Capture the start of a request."""
        header_map = {name.lower(): value for name, value in headers}
        return RequestContext(
            method=method.upper(),
            path=path,
            client_ip=client_ip,
            headers=header_map,
            query_string=query_string,
            body_size_bytes=parse_content_length(header_map),
            start_time=self.clock.now(),
            started_monotonic=self.clock.monotonic(),
        )

    def begin(self, ctx: RequestContext) -> RequestTrace:
        """STARTED -> CLASSIFIED: run the scanner (and through it the rate limiter)."""
        trace = RequestTrace(
            context=ctx,
            timestamp=datetime.fromtimestamp(ctx.start_time, tz=timezone.utc),
        )
        trace.classification = self.scanner.classify(ctx)
        trace.phase = RequestPhase.CLASSIFIED

        if self.is_cacheable(trace):
            trace.cache_key = make_key(ctx.method, ctx.path, ctx.query_string)
        return trace

    def should_block(self, trace: RequestTrace) -> bool:
        return self.settings.rate_limit.block and IssueTag.RATE_LIMIT_EXCEEDED in trace.classification

    def rate_limit_error(self, trace: RequestTrace) -> RateLimitError:
        return RateLimitError(retry_after=self.rate_limiter.retry_after(trace.context.client_ip))

    def is_cacheable(self, trace: RequestTrace) -> bool:
        cache_settings = self.settings.cache
        if not cache_settings.enabled or trace.context.method != "GET":
            return False
        return any(trace.context.path.startswith(prefix) for prefix in cache_settings.path_prefixes)

    def lookup_cache(self, trace: RequestTrace) -> Optional[CachedResponse]:
        """Fresh cached payload for a cacheable request, counting the lookup."""
        if trace.cache_key is None:
            return None
        cached = self.cache.get(trace.cache_key)
        trace.cache_hit = cached is not None
        self.aggregator.record_cache_lookup(trace.cache_hit)
        return cached

    def store_response(self, trace: RequestTrace, payload: CachedResponse) -> None:
        """Populate the cache; only status 200 responses are kept."""
        if trace.cache_key is None or payload.status_code != 200:
            return
        self.cache.put(trace.cache_key, payload)

    def complete(self, trace: RequestTrace, status_code: int, bytes_sent: int) -> None:
        """
        CLASSIFIED -> COMPLETED: record metrics and emit log records.

        Safe to call more than once; only the first call has any effect.
        """
        if trace.phase is RequestPhase.COMPLETED:
            return
        trace.phase = RequestPhase.COMPLETED

        ctx = trace.context
        trace.status_code = status_code
        trace.bytes_sent = bytes_sent
        # thresholds compare the unrounded value; records carry one decimal
        elapsed_ms = (self.clock.monotonic() - ctx.started_monotonic) * 1000
        trace.duration_ms = round(elapsed_ms, 1)

        self.aggregator.record(status_code, elapsed_ms, method=ctx.method)
        if trace.classification.flagged:
            self.aggregator.record_security_flag(trace.classification.tags)

        if (
            self.settings.cache.enabled
            and self.settings.cache.invalidate_on_write
            and ctx.method in WRITE_METHODS
            and 200 <= status_code < 300
        ):
            self.cache.invalidate(ctx.path)

        system = self.sampler.sample()
        path = ctx.url

        self.log_writer.emit(PerformanceRecord(
            timestamp=trace.timestamp,
            method=ctx.method,
            path=path,
            status=status_code,
            duration=trace.duration_ms,
            memory=system.memory.percentage,
            cpu=system.cpu,
        ))

        if trace.classification.flagged:
            self.log_writer.emit(SecurityRecord(
                timestamp=trace.timestamp,
                method=ctx.method,
                path=path,
                ip=ctx.client_ip,
                user_agent=ctx.user_agent,
                issues=[tag.value for tag in trace.classification.tags],
                severity=trace.classification.severity.value,
            ))

        trace.alerts = tuple(self.alert_evaluator.evaluate(status_code, elapsed_ms, system))
        if trace.alerts:
            self.log_writer.emit(AlertRecord(
                timestamp=trace.timestamp,
                details=list(trace.alerts),
            ))

        if self.settings.monitor.access_log_enabled:
            self.log_writer.emit(AccessRecord(
                timestamp=trace.timestamp,
                method=ctx.method,
                path=path,
                status=status_code,
                ms=trace.duration_ms,
                size=bytes_sent,
                ip=ctx.client_ip,
                ua=ctx.user_agent,
            ))

    def health_check(self) -> Dict[str, Any]:
        """Detailed health payload."""
        summary = self.aggregator.summary(self.sampler.sample())
        return {
            "status": self.aggregator.health_status(summary).value,
            "timestamp": self.clock.utcnow().isoformat(),
            **summary.to_dict(),
        }

    def metrics_summary(self) -> Dict[str, Any]:
        """Counters and rates only."""
        return self.aggregator.summary(self.sampler.sample()).to_dict()

    async def shutdown(self) -> None:
        await self.log_writer.drain()
        logger.info(
            "Governance core stopped",
            requests=self.aggregator.metrics.request_count,
            failed_log_writes=self.log_writer.failed_writes,
        )
