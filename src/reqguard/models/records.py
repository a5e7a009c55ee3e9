"""
Structured log record models.

One model per log stream. Records are immutable and serialized as a single
JSON line each; ``stream`` selects the target file prefix.
"""

from datetime import datetime
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LogRecord(BaseModel):
    """Base for every record appended to a date-partitioned stream."""

    stream: ClassVar[str] = ""

    timestamp: datetime = Field(description="UTC time the request started")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True) + "\n"


class PerformanceRecord(LogRecord):
    """One line per completed request."""

    stream: ClassVar[str] = "performance"

    method: str
    path: str
    status: int
    duration: float = Field(description="Milliseconds, one decimal")
    memory: float = Field(description="Process memory percentage")
    cpu: float = Field(description="One-minute load average")


class SecurityRecord(LogRecord):
    """One line per request with a non-empty classification."""

    stream: ClassVar[str] = "security"

    method: str
    path: str
    ip: str
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    issues: List[str]
    severity: str


class AlertRecord(LogRecord):
    """One line whenever an alert condition holds."""

    stream: ClassVar[str] = "alerts"

    type: str = "PERFORMANCE"
    details: List[str] = Field(description="Triggering reasons")


class AccessRecord(LogRecord):
    """Per-request access log line with response size."""

    stream: ClassVar[str] = "api"

    timestamp: datetime = Field(alias="ts")
    method: str
    path: str
    status: int
    ms: float
    size: int = Field(description="Response body bytes")
    ip: str
    ua: Optional[str] = None
