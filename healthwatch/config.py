"""Configuration management for the health monitor."""

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from . import __version__
from .models import TARGET_DATABASE, TARGET_HTTP, Target


class TargetConfig(BaseModel):
    """A service probed on the health cadence."""
    id: str = Field(description="Stable target identifier")
    name: str = Field(description="Display name")
    endpoint: str = Field(
        default="", description="URL for HTTP targets; database path for the relational store (empty: use db_path)"
    )
    kind: str = Field(default=TARGET_HTTP, description="'http' or 'database'")

    @field_validator("kind")
    @classmethod
    def _check_kind(cls, value: str) -> str:
        if value not in (TARGET_HTTP, TARGET_DATABASE):
            raise ValueError(f"unsupported target kind: {value}")
        return value

    @model_validator(mode="after")
    def _check_endpoint(self) -> "TargetConfig":
        if self.kind == TARGET_HTTP and not self.endpoint.startswith(("http://", "https://")):
            raise ValueError(f"target {self.id} endpoint must be an http(s) URL")
        return self

    def to_target(self) -> Target:
        return Target(id=self.id, display_name=self.name, endpoint=self.endpoint, kind=self.kind)


class ConnectivityConfig(BaseModel):
    """External messaging-channel connectivity feed."""
    status_url: str = Field(default="http://localhost:3002/status", description="Backend status endpoint")
    timeout: float = Field(default=10.0, gt=0, description="Fetch timeout in seconds")


def _default_targets() -> List[TargetConfig]:
    return [
        TargetConfig(id="api", name="API REST", endpoint="http://localhost:3001/api/v1/monitoring/health"),
        TargetConfig(id="backend", name="Messaging Backend", endpoint="http://localhost:3002/status"),
        TargetConfig(id="frontend", name="Frontend", endpoint="http://localhost:8080"),
        TargetConfig(id="database", name="Database", kind=TARGET_DATABASE),
    ]


class MonitoringConfig(BaseModel):
    """Main configuration for the health monitor."""

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="'console' or 'json'")

    # Storage
    db_path: str = Field(default="data/healthwatch.db", description="SQLite database path")

    # Cadences (seconds)
    health_check_interval: int = Field(default=30, gt=0, description="Service probe cadence")
    connectivity_check_interval: int = Field(default=15, gt=0, description="Tenant connectivity cadence")
    uptime_snapshot_interval: int = Field(default=300, gt=0, description="Tenant uptime snapshot cadence")

    # Probing and alerting
    probe_timeout: float = Field(default=10.0, gt=0, description="Hard timeout per probe in seconds")
    alert_threshold: int = Field(default=3, gt=0, description="Consecutive failures before alerting")
    repeat_alerts: bool = Field(default=True, description="Alert on every failing tick past the threshold")
    history_size: int = Field(default=100, gt=0, description="Results kept per target")
    user_agent: str = Field(default=f"healthwatch/{__version__}", description="User-Agent for HTTP probes")

    # Retention
    retention_days: int = Field(default=90, gt=0, description="Days of uptime records kept by prune")

    targets: List[TargetConfig] = Field(default_factory=_default_targets)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)

    @field_validator("targets")
    @classmethod
    def _unique_targets(cls, value: List[TargetConfig]) -> List[TargetConfig]:
        seen = set()
        for target in value:
            if target.id in seen:
                raise ValueError(f"duplicate target id: {target.id}")
            seen.add(target.id)
        return value

    @model_validator(mode="after")
    def _database_targets_follow_db_path(self) -> "MonitoringConfig":
        # A database target without an explicit endpoint probes the store this process writes to.
        for target in self.targets:
            if target.kind == TARGET_DATABASE and not target.endpoint:
                target.endpoint = self.db_path
        return self

    def build_targets(self) -> List[Target]:
        return [t.to_target() for t in self.targets]


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return float(str(raw).strip())
    except ValueError:
        return None


def load_config(config_path: Optional[str] = None) -> MonitoringConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("HEALTHWATCH_CONFIG", "config/healthwatch.yaml")

    config_data = {}

    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    env_overrides = {
        "db_path": os.getenv("HEALTHWATCH_DB_PATH"),
        "log_level": os.getenv("LOG_LEVEL"),
        "log_format": os.getenv("HEALTHWATCH_LOG_FORMAT"),
        "health_check_interval": _env_int("HEALTHWATCH_HEALTH_INTERVAL"),
        "connectivity_check_interval": _env_int("HEALTHWATCH_CONNECTIVITY_INTERVAL"),
        "uptime_snapshot_interval": _env_int("HEALTHWATCH_UPTIME_INTERVAL"),
        "alert_threshold": _env_int("HEALTHWATCH_ALERT_THRESHOLD"),
        "probe_timeout": _env_float("HEALTHWATCH_PROBE_TIMEOUT"),
        "retention_days": _env_int("HEALTHWATCH_RETENTION_DAYS"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            config_data[key] = value

    status_url = os.getenv("HEALTHWATCH_CONNECTIVITY_URL")
    if status_url:
        connectivity = dict(config_data.get("connectivity") or {})
        connectivity["status_url"] = status_url
        config_data["connectivity"] = connectivity

    return MonitoringConfig(**config_data)
