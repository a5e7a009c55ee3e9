"""
In-memory TTL response cache.

Keyed by ``METHOD:/path?query``. Expired entries count as misses but stay in
memory until overwritten or invalidated.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from .clock import Clock

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CachedResponse:
    """Response body plus the headers needed to replay it."""
    body: bytes
    status_code: int = 200
    headers: Tuple[Tuple[bytes, bytes], ...] = field(default_factory=tuple)


@dataclass
class CacheEntry:
    payload: CachedResponse
    stored_at: float


def make_key(method: str, path: str, query_string: str = "") -> str:
    url = f"{path}?{query_string}" if query_string else path
    return f"{method.upper()}:{url}"


class ResponseCache:
    """
    TTL cache for successful responses.

    Only the caller decides what is cacheable; ``put`` stores unconditionally.
    With ``max_entries`` set the oldest stored key is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
        max_entries: Optional[int] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock or Clock()
        self.max_entries = max_entries
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, key: str) -> Optional[CachedResponse]:
        """Return the cached payload if still fresh, else None."""
        entry = self.entries.get(key)
        if entry is None:
            return None
        if self.clock.now() - entry.stored_at < self.ttl_seconds:
            logger.debug("Cache hit", key=key)
            return entry.payload
        return None

    def put(self, key: str, payload: CachedResponse) -> None:
        self.entries[key] = CacheEntry(payload=payload, stored_at=self.clock.now())
        self.entries.move_to_end(key)
        logger.debug("Cached response", key=key, size_bytes=len(payload.body))

        if self.max_entries is not None:
            while len(self.entries) > self.max_entries:
                evicted, _ = self.entries.popitem(last=False)
                logger.debug("Evicted cache entry", key=evicted)

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Remove cached entries.

        With no pattern every entry is dropped; otherwise every key containing
        ``pattern`` as a substring. Returns the number of entries removed.
        """
        if pattern:
            matching: List[str] = [key for key in self.entries if pattern in key]
            for key in matching:
                del self.entries[key]
            removed = len(matching)
        else:
            removed = len(self.entries)
            self.entries.clear()

        logger.info("Cache cleared", pattern=pattern or "all", removed=removed)
        return removed

    def keys(self) -> List[str]:
        return list(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries
