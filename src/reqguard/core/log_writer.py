"""
Date-partitioned structured log writer.

Each record kind goes to its own append-only NDJSON stream, one file per
UTC calendar day: ``{stream}-YYYY-MM-DD.log``. Appends run as background
tasks and never block the request that produced them.
"""

import asyncio
from pathlib import Path
from typing import Optional, Set

import structlog
from aiofiles import open as aio_open

from ..models.records import AlertRecord, LogRecord, SecurityRecord
from .exceptions import LogWriteError

logger = structlog.get_logger(__name__)


class LogWriter:
    """
    Fire-and-forget appender for performance, security, alert and access records.

    Filesystem errors are reported through the logger and otherwise ignored.
    """

    def __init__(self, log_dir: Path) -> None:
        self.log_dir = Path(log_dir)
        self._pending: Set["asyncio.Task[None]"] = set()
        self._dir_ready = False
        self.failed_writes = 0

    def path_for(self, record: LogRecord) -> Path:
        """Stream file for the record's calendar date."""
        return self.log_dir / f"{record.stream}-{record.timestamp.date().isoformat()}.log"

    def emit(self, record: LogRecord) -> None:
        """
        Schedule an append of ``record`` and surface console warnings.

        Must be called from a running event loop.
        """
        self._warn(record)

        task = asyncio.get_running_loop().create_task(self._append(record))
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _warn(self, record: LogRecord) -> None:
        if isinstance(record, SecurityRecord) and record.severity == "HIGH":
            logger.warning(
                "SECURITY ALERT",
                method=record.method,
                path=record.path,
                ip=record.ip,
                user_agent=record.user_agent,
                issues=record.issues,
                severity=record.severity,
            )
        elif isinstance(record, AlertRecord):
            for reason in record.details:
                logger.warning("PERFORMANCE ALERT", reason=reason, type=record.type)

    def _ensure_log_dir(self) -> None:
        if self._dir_ready:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LogWriteError(
                "Error creating log directory",
                details={"path": str(self.log_dir), "error": str(e)},
            ) from e
        self._dir_ready = True

    async def _append(self, record: LogRecord) -> None:
        self._ensure_log_dir()
        path = self.path_for(record)
        line = record.to_line()
        try:
            async with aio_open(path, "a", encoding="utf-8") as f:
                await f.write(line)
        except OSError as e:
            raise LogWriteError(
                "Error appending log record",
                details={"path": str(path), "stream": record.stream, "error": str(e)},
            ) from e

    def _on_done(self, task: "asyncio.Task[None]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed_writes += 1
            logger.error(
                "Health monitor logging error",
                error=str(exc),
                error_type=type(exc).__name__,
                details=getattr(exc, "details", {}),
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every scheduled append to finish."""
        if not self._pending:
            return
        await asyncio.wait(set(self._pending), timeout=timeout)
        # let done callbacks run
        await asyncio.sleep(0)
