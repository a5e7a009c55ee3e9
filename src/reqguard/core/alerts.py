"""
Alert threshold evaluation.
"""

from dataclasses import dataclass
from typing import List

from ..config import MonitorSettings, RateLimitSettings
from .clock import SystemSample


@dataclass(frozen=True)
class AlertThresholds:
    """Static alerting configuration, fixed at startup."""
    max_response_time_ms: float = 300.0
    max_memory_pct: float = 80.0
    max_cpu_load: float = 85.0
    max_error_rate_pct: float = 5.0
    max_rate_limit_count: int = 100

    @classmethod
    def from_settings(cls, monitor: MonitorSettings, rate_limit: RateLimitSettings) -> "AlertThresholds":
        return cls(
            max_response_time_ms=monitor.max_response_time_ms,
            max_memory_pct=monitor.max_memory_pct,
            max_cpu_load=monitor.max_cpu_load,
            max_error_rate_pct=monitor.max_error_rate_pct,
            max_rate_limit_count=rate_limit.max_requests,
        )


def format_number(value: float) -> str:
    """Round to one decimal and drop a trailing ``.0`` (450.0 -> "450")."""
    rounded = round(value, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)


class AlertEvaluator:
    """Decides whether a completed request should raise an alert."""

    def __init__(self, thresholds: AlertThresholds) -> None:
        self.thresholds = thresholds

    def evaluate(self, status_code: int, duration_ms: float, system: SystemSample) -> List[str]:
        """
        Return the triggering reasons; an empty list means no alert.
        """
        reasons: List[str] = []
        t = self.thresholds

        if duration_ms > t.max_response_time_ms:
            reasons.append(f"Slow API: {format_number(duration_ms)}ms")
        if system.memory.percentage > t.max_memory_pct:
            reasons.append(f"High Memory: {format_number(system.memory.percentage)}%")
        if system.cpu > t.max_cpu_load:
            reasons.append(f"High CPU: {format_number(system.cpu)}")
        if status_code >= 500:
            reasons.append(f"Server Error: {status_code}")

        return reasons

    def should_alert(self, status_code: int, duration_ms: float, system: SystemSample) -> bool:
        return bool(self.evaluate(status_code, duration_ms, system))
