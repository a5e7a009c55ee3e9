"""
Pytest configuration and shared fixtures.

Contains a controllable clock, a fixed system sampler and app/client
fixtures wired to a temporary log directory.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from reqguard.config import CacheSettings, MonitorSettings, RateLimitSettings, Settings
from reqguard.core.clock import Clock, MemorySample, SystemSample
from reqguard.core.governance import GovernanceCore
from reqguard.main import configure_logging, create_app

START_EPOCH = 1_760_000_000.0  # 2025-10-09T08:53:20Z


class FakeClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = START_EPOCH) -> None:
        self.current = start
        self.mono = 0.0

    def now(self) -> float:
        return self.current

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.current += seconds
        self.mono += seconds


class FakeSampler:
    """Sampler returning a fixed, editable resource sample."""

    def __init__(self, memory_pct: float = 40, cpu: float = 0.5) -> None:
        self.memory_pct = memory_pct
        self.cpu = cpu

    def sample(self) -> SystemSample:
        return SystemSample(
            memory=MemorySample(used_mb=100, total_mb=250, percentage=self.memory_pct),
            cpu=self.cpu,
            uptime=0,
        )


@pytest.fixture(scope="session", autouse=True)
def structured_logging() -> None:
    """Route structlog through stdlib logging so caplog sees warnings."""
    configure_logging("DEBUG")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    # not created up front: the writer creates it on first use
    return tmp_path / "logs"


@pytest.fixture
def stream_path(log_dir: Path, clock: FakeClock) -> Callable[[str], Path]:
    """Path of a stream's file for the clock's current UTC date."""

    def _path(stream: str) -> Path:
        day = datetime.fromtimestamp(clock.now(), tz=timezone.utc).date().isoformat()
        return log_dir / f"{stream}-{day}.log"

    return _path


@pytest.fixture
def settings(log_dir: Path) -> Settings:
    """Test settings with caching on for /vendors and /cached."""
    return Settings(
        log_level="DEBUG",
        monitor=MonitorSettings(log_dir=log_dir),
        rate_limit=RateLimitSettings(window_seconds=60, max_requests=100),
        cache=CacheSettings(ttl_seconds=300, path_prefixes=["/vendors", "/cached"]),
    )


@pytest.fixture
def governance(settings: Settings, clock: FakeClock, sampler: FakeSampler) -> GovernanceCore:
    return GovernanceCore(settings, clock=clock, sampler=sampler)


@pytest.fixture
def app(settings: Settings, governance: GovernanceCore) -> FastAPI:
    """Service app with a few downstream routes standing in for business handlers."""
    app = create_app(settings, governance)
    app.state.handler_calls = {}

    def _count(name: str) -> None:
        app.state.handler_calls[name] = app.state.handler_calls.get(name, 0) + 1

    @app.get("/vendors")
    async def list_vendors() -> dict:
        _count("vendors")
        return {"vendors": ["alpha", "beta"], "call": app.state.handler_calls["vendors"]}

    @app.post("/vendors")
    async def create_vendor() -> dict:
        _count("create_vendor")
        return {"created": True}

    @app.get("/items")
    async def list_items() -> dict:
        _count("items")
        return {"items": []}

    @app.get("/slow")
    async def slow() -> dict:
        governance.clock.advance(0.45)
        return {"slow": True}

    @app.get("/missing")
    async def missing() -> dict:
        raise HTTPException(status_code=404, detail="not found")

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("handler exploded")

    return app


@pytest.fixture
def test_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """FastAPI test client; leaving the block drains pending log writes."""
    with TestClient(app, raise_server_exceptions=False, headers={"user-agent": "pytest-client"}) as client:
        yield client
