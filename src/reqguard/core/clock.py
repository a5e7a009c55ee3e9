"""
Clock and system resource sampler.

Everything time-dependent in the core reads time through a Clock so tests
can drive it deterministically.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)


class Clock:
    """Wall and monotonic time source."""

    def now(self) -> float:
        """Current wall time in epoch seconds."""
        return time.time()

    def monotonic(self) -> float:
        """Monotonic seconds for measuring durations."""
        return time.perf_counter()

    def utcnow(self) -> datetime:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc)


@dataclass(frozen=True)
class MemorySample:
    used_mb: int
    total_mb: int
    percentage: float


@dataclass(frozen=True)
class SystemSample:
    """Point-in-time process resource usage."""
    memory: MemorySample
    cpu: float  # one-minute load average
    uptime: int  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": {
                "used": self.memory.used_mb,
                "total": self.memory.total_mb,
                "percentage": self.memory.percentage,
            },
            "cpu": self.cpu,
            "uptime": self.uptime,
        }


# cgroup v2 first, then v1
CGROUP_MEMORY_LIMIT_FILES = (
    Path("/sys/fs/cgroup/memory.max"),
    Path("/sys/fs/cgroup/memory/memory.limit_in_bytes"),
)

# cgroup v1 reports "no limit" as a huge page-aligned number
UNLIMITED_THRESHOLD = 1 << 60


def read_cgroup_memory_limit(paths: Iterable[Path] = CGROUP_MEMORY_LIMIT_FILES) -> Optional[int]:
    """Container memory limit in bytes, or None when unset or unreadable."""
    for path in paths:
        try:
            raw = path.read_text().strip()
        except OSError:
            continue
        if raw == "max":
            return None
        try:
            limit = int(raw)
        except ValueError:
            continue
        if 0 < limit < UNLIMITED_THRESHOLD:
            return limit
        return None
    return None


class SystemSampler:
    """
    Samples process memory and host load via psutil.

    Memory percentage is the process resident set size relative to its
    memory budget: ``memory_limit_mb`` when configured, else the container
    (cgroup) limit, else total physical memory. Without an explicit or
    container limit the percentage stays low for a typical process and the
    memory-driven alerts and health states rarely trigger. Load is the
    one-minute load average.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        start_time: Optional[float] = None,
        memory_limit_mb: Optional[float] = None,
    ) -> None:
        self.clock = clock or Clock()
        self.start_time = start_time if start_time is not None else self.clock.now()
        self._process = psutil.Process()

        if memory_limit_mb is not None:
            self.memory_limit = int(memory_limit_mb * 1024 * 1024)
            self.limit_source = "configured"
        else:
            cgroup_limit = read_cgroup_memory_limit()
            if cgroup_limit is not None:
                self.memory_limit = cgroup_limit
                self.limit_source = "cgroup"
            else:
                self.memory_limit = psutil.virtual_memory().total
                self.limit_source = "host"

        logger.debug(
            "System sampler memory budget",
            limit_mb=round(self.memory_limit / 1024 / 1024),
            source=self.limit_source,
        )

    def sample(self) -> SystemSample:
        """Take a resource sample."""
        rss = self._process.memory_info().rss
        total = self.memory_limit
        percentage = round(rss / total * 100) if total else 0

        try:
            load_1m = psutil.getloadavg()[0]
        except (AttributeError, OSError) as e:
            logger.debug("Load average unavailable", error=str(e))
            load_1m = 0.0

        return SystemSample(
            memory=MemorySample(
                used_mb=round(rss / 1024 / 1024),
                total_mb=round(total / 1024 / 1024),
                percentage=percentage,
            ),
            cpu=round(load_1m, 2),
            uptime=round(self.clock.now() - self.start_time),
        )
