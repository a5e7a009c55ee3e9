"""
Per-client fixed-window rate limiter.

A counter per client IP that resets at fixed window boundaries. Bursts that
straddle a boundary are under-counted compared to a true sliding log, which
is fine for abuse detection and not meant for strict quota enforcement.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

import structlog

from .clock import Clock

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitRecord:
    """Request count for one client within the current window."""
    count: int
    window_reset_at: float


class FixedWindowRateLimiter:
    """
    Per-IP fixed-window counter.

    Records are created lazily and never removed unless ``max_entries`` is
    set, in which case the least recently reset record is evicted first.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Optional[Clock] = None,
        max_entries: Optional[int] = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or Clock()
        self.max_entries = max_entries
        self.records: "OrderedDict[str, RateLimitRecord]" = OrderedDict()

    def check(self, client_ip: str) -> bool:
        """
        Count one request from ``client_ip``.

        Returns True when the client is over its budget for the current window.
        """
        now = self.clock.now()
        record = self.records.get(client_ip)

        if record is None:
            self.records[client_ip] = RateLimitRecord(count=1, window_reset_at=now + self.window_seconds)
            self._evict()
            return False

        if now >= record.window_reset_at:
            record.count = 1
            record.window_reset_at = now + self.window_seconds
            self.records.move_to_end(client_ip)
            return False

        record.count += 1
        over_limit = record.count > self.max_requests
        if over_limit and record.count == self.max_requests + 1:
            logger.warning(
                "Client exceeded rate limit",
                client_ip=client_ip,
                limit=self.max_requests,
                window_seconds=self.window_seconds,
            )
        return over_limit

    def get_record(self, client_ip: str) -> Optional[RateLimitRecord]:
        return self.records.get(client_ip)

    def retry_after(self, client_ip: str) -> int:
        """Get suggested retry-after time in seconds."""
        record = self.records.get(client_ip)
        if record is None:
            return 1
        return max(1, math.ceil(record.window_reset_at - self.clock.now()))

    def reset(self) -> None:
        """Forget every client."""
        self.records.clear()

    def _evict(self) -> None:
        if self.max_entries is None:
            return
        while len(self.records) > self.max_entries:
            evicted_ip, _ = self.records.popitem(last=False)
            logger.debug("Evicted rate limit record", client_ip=evicted_ip)

    def __len__(self) -> int:
        return len(self.records)
