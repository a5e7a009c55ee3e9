"""
Security heuristic scanner.

Classifies a single request into zero or more issue tags. The rule set is a
fixed table of (tag, predicate) pairs evaluated in order; every rule runs so
several tags can co-occur.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, unquote

from .rate_limiter import FixedWindowRateLimiter

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB

SUSPICIOUS_URL_PATTERN = re.compile(r"(\.\./|/\.\.|<script|javascript:|data:)", re.IGNORECASE)
SQL_KEYWORD_PATTERN = re.compile(r"(union|select|insert|delete|drop|exec)", re.IGNORECASE)
XSS_PATTERN = re.compile(r"(<script|javascript:|onload|onerror)", re.IGNORECASE)


class IssueTag(str, Enum):
    SUSPICIOUS_URL = "SUSPICIOUS_URL"
    SQL_INJECTION_ATTEMPT = "SQL_INJECTION_ATTEMPT"
    XSS_ATTEMPT = "XSS_ATTEMPT"
    LARGE_PAYLOAD = "LARGE_PAYLOAD"
    NO_USER_AGENT = "NO_USER_AGENT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


HIGH_SEVERITY_TAGS = frozenset({
    IssueTag.SQL_INJECTION_ATTEMPT,
    IssueTag.XSS_ATTEMPT,
    IssueTag.LARGE_PAYLOAD,
})


@dataclass(frozen=True)
class RequestContext:
    """Read-only view of an inbound request."""
    method: str
    path: str
    client_ip: str
    headers: Mapping[str, str] = field(default_factory=dict)  # lower-cased names
    query_string: str = ""
    body_size_bytes: int = 0
    start_time: float = 0.0
    started_monotonic: float = 0.0

    @property
    def user_agent(self) -> Optional[str]:
        return self.headers.get("user-agent") or None

    @property
    def url(self) -> str:
        """Path plus query string as the client sent it."""
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @property
    def query_params(self) -> Dict[str, Union[str, List[str]]]:
        """Decoded query; a repeated key maps to the list of all its values."""
        params: Dict[str, Union[str, List[str]]] = {}
        for key, value in parse_qsl(self.query_string, keep_blank_values=True):
            existing = params.get(key)
            if existing is None:
                params[key] = value
            elif isinstance(existing, list):
                existing.append(value)
            else:
                params[key] = [existing, value]
        return params


@dataclass(frozen=True)
class ClassificationResult:
    """Ordered issue tags for one request."""
    tags: Tuple[IssueTag, ...] = ()

    @property
    def severity(self) -> Optional[Severity]:
        if not self.tags:
            return None
        if any(tag in HIGH_SEVERITY_TAGS for tag in self.tags):
            return Severity.HIGH
        return Severity.MEDIUM

    @property
    def flagged(self) -> bool:
        return bool(self.tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self.tags


def parse_content_length(headers: Mapping[str, str]) -> int:
    """Content-Length header as an int; 0 when absent or unparseable."""
    raw = headers.get("content-length")
    if raw is None:
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        return 0


def declared_content_length(ctx: RequestContext) -> int:
    if "content-length" in ctx.headers:
        return parse_content_length(ctx.headers)
    return ctx.body_size_bytes


def _decoded_url(ctx: RequestContext) -> str:
    return unquote(ctx.url)


def is_suspicious_url(ctx: RequestContext) -> bool:
    return bool(SUSPICIOUS_URL_PATTERN.search(_decoded_url(ctx)))


def has_sql_keywords(ctx: RequestContext) -> bool:
    # Crude substring match; good enough for alerting, never for blocking
    return bool(SQL_KEYWORD_PATTERN.search(_decoded_url(ctx)))


def has_xss_markers(ctx: RequestContext) -> bool:
    serialized = json.dumps(ctx.query_params)
    return bool(XSS_PATTERN.search(serialized))


def is_large_payload(ctx: RequestContext) -> bool:
    return declared_content_length(ctx) > MAX_PAYLOAD_BYTES


def lacks_user_agent(ctx: RequestContext) -> bool:
    return ctx.user_agent is None


Rule = Tuple[IssueTag, Callable[[RequestContext], bool]]

STATIC_RULES: List[Rule] = [
    (IssueTag.SUSPICIOUS_URL, is_suspicious_url),
    (IssueTag.SQL_INJECTION_ATTEMPT, has_sql_keywords),
    (IssueTag.XSS_ATTEMPT, has_xss_markers),
    (IssueTag.LARGE_PAYLOAD, is_large_payload),
    (IssueTag.NO_USER_AGENT, lacks_user_agent),
]


class SecurityScanner:
    """
    Runs the rule table against a request context.

    The rate limiter is consulted as the last rule, so each classification
    counts exactly one request against the client's window.
    """

    def __init__(self, rate_limiter: FixedWindowRateLimiter) -> None:
        self.rate_limiter = rate_limiter
        self.rules: List[Rule] = STATIC_RULES + [
            (IssueTag.RATE_LIMIT_EXCEEDED, self._is_rate_limited),
        ]

    def _is_rate_limited(self, ctx: RequestContext) -> bool:
        return self.rate_limiter.check(ctx.client_ip)

    def classify(self, ctx: RequestContext) -> ClassificationResult:
        tags = [tag for tag, predicate in self.rules if predicate(ctx)]
        return ClassificationResult(tags=tuple(tags))
