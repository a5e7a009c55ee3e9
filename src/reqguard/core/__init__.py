"""
Core request governance components.

This package contains the per-request pipeline components:
- Clock and system sampler
- Security heuristic scanner
- Fixed-window rate limiter
- TTL response cache
- Health metrics aggregation
- Alert evaluation and log stream writer
- Instrumentation middleware
"""
