"""
reqguard - Request governance layer for ASGI services

Wraps every inbound HTTP request: times it, flags security anomalies,
tracks a per-client fixed-window rate limit, serves a short-lived response
cache, aggregates health metrics and writes date-partitioned structured
logs with threshold-triggered alerts.
"""

__version__ = "0.1.0"

from .core.governance import GovernanceCore
from .main import create_app, install_governance

__all__ = ["GovernanceCore", "create_app", "install_governance"]
