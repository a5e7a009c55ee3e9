"""
Pydantic data models package.

Contains the structured log record shapes written to each log stream.
"""

from .records import AccessRecord, AlertRecord, LogRecord, PerformanceRecord, SecurityRecord

__all__ = [
    "LogRecord",
    "PerformanceRecord",
    "SecurityRecord",
    "AlertRecord",
    "AccessRecord",
]
