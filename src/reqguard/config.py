"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml providing defaults underneath the environment.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/reqguard
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class MonitorSettings(BaseSettings):
    """Health monitor, alerting and log stream configuration."""

    log_dir: Path = Field(default=Path("./logs"), description="Directory for date-partitioned log streams")
    max_response_time_ms: float = Field(default=300.0, description="Slow request threshold (ms)")
    max_memory_pct: float = Field(default=80.0, description="Memory usage alert threshold (%)")
    max_cpu_load: float = Field(default=85.0, description="One-minute load average alert threshold")
    max_error_rate_pct: float = Field(default=5.0, description="Error rate warning threshold (%)")
    access_log_enabled: bool = Field(default=True, description="Write the per-request api-*.log stream")
    memory_limit_mb: Optional[float] = Field(
        default=None,
        gt=0,
        description="Memory budget for the memory percentage; container limit or host RAM when unset",
    )

    @field_validator("log_dir", mode="before")
    def coerce_log_dir(cls, v: Any) -> Path:
        """Accept plain strings from env vars and YAML."""
        return Path(v)

    class Config:
        env_prefix = "REQGUARD_MONITOR_"


class RateLimitSettings(BaseSettings):
    """Per-client fixed-window rate limit configuration."""

    window_seconds: float = Field(default=60.0, gt=0, description="Window length in seconds")
    max_requests: int = Field(default=100, gt=0, description="Requests allowed per client per window")
    block: bool = Field(default=False, description="Reject over-limit requests with 429 instead of only flagging")
    max_entries: Optional[int] = Field(
        default=None,
        gt=0,
        description="Cap on tracked client IPs (oldest evicted first); unbounded when unset",
    )

    class Config:
        env_prefix = "REQGUARD_RATE_LIMIT_"


class CacheSettings(BaseSettings):
    """TTL response cache configuration."""

    enabled: bool = Field(default=True, description="Serve and populate the response cache")
    ttl_seconds: float = Field(default=300.0, gt=0, description="Freshness window (5 minutes)")
    path_prefixes: List[str] = Field(
        default_factory=list,
        description="Cacheable GET path prefixes; empty disables caching for every path",
    )
    invalidate_on_write: bool = Field(
        default=True,
        description="Drop cached keys containing the path of a successful POST/PUT/PATCH/DELETE",
    )
    max_entries: Optional[int] = Field(
        default=None,
        gt=0,
        description="Cap on cached keys (oldest evicted first); unbounded when unset",
    )

    @field_validator("path_prefixes", mode="before")
    def parse_path_prefixes(cls, v: Any) -> List[str]:
        """Parse prefixes from a comma separated string if needed."""
        if isinstance(v, str):
            if v.strip().startswith("["):
                import json
                try:
                    parsed = json.loads(v)
                    return [str(p) for p in parsed] if isinstance(parsed, list) else []
                except json.JSONDecodeError:
                    return []
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    class Config:
        env_prefix = "REQGUARD_CACHE_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    class Config:
        env_prefix = "REQGUARD_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "REQGUARD_HOST",
        ("server", "port"): "REQGUARD_PORT",
        ("server", "debug"): "REQGUARD_DEBUG",
        ("server", "log_level"): "REQGUARD_LOG_LEVEL",
        ("monitor", "log_dir"): "REQGUARD_MONITOR_LOG_DIR",
        ("monitor", "max_response_time_ms"): "REQGUARD_MONITOR_MAX_RESPONSE_TIME_MS",
        ("monitor", "max_memory_pct"): "REQGUARD_MONITOR_MAX_MEMORY_PCT",
        ("monitor", "max_cpu_load"): "REQGUARD_MONITOR_MAX_CPU_LOAD",
        ("monitor", "max_error_rate_pct"): "REQGUARD_MONITOR_MAX_ERROR_RATE_PCT",
        ("monitor", "access_log_enabled"): "REQGUARD_MONITOR_ACCESS_LOG_ENABLED",
        ("monitor", "memory_limit_mb"): "REQGUARD_MONITOR_MEMORY_LIMIT_MB",
        ("rate_limit", "window_seconds"): "REQGUARD_RATE_LIMIT_WINDOW_SECONDS",
        ("rate_limit", "max_requests"): "REQGUARD_RATE_LIMIT_MAX_REQUESTS",
        ("rate_limit", "block"): "REQGUARD_RATE_LIMIT_BLOCK",
        ("rate_limit", "max_entries"): "REQGUARD_RATE_LIMIT_MAX_ENTRIES",
        ("cache", "enabled"): "REQGUARD_CACHE_ENABLED",
        ("cache", "ttl_seconds"): "REQGUARD_CACHE_TTL_SECONDS",
        ("cache", "invalidate_on_write"): "REQGUARD_CACHE_INVALIDATE_ON_WRITE",
        ("cache", "max_entries"): "REQGUARD_CACHE_MAX_ENTRIES",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value).lower() if isinstance(value, bool) else str(value)

    # Lists go through as JSON
    if "REQGUARD_CACHE_PATH_PREFIXES" not in os.environ:
        prefixes = (config_data.get("cache") or {}).get("path_prefixes")
        if prefixes:
            import json
            os.environ["REQGUARD_CACHE_PATH_PREFIXES"] = json.dumps(prefixes)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
