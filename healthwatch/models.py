from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"
STATUS_OFFLINE = "offline"
CHECK_STATUSES = (STATUS_HEALTHY, STATUS_UNHEALTHY, STATUS_OFFLINE)

UPTIME_UP = "up"
UPTIME_DOWN = "down"
UPTIME_STATUSES = (UPTIME_UP, UPTIME_DOWN)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"
SEVERITIES = (SEVERITY_INFO, SEVERITY_WARNING, SEVERITY_CRITICAL)

ALERT_SERVICE_DOWN = "service_down"
ALERT_CHANNEL_DISCONNECTED = "external_channel_disconnected"

TENANT_ACTIVE = "active"
TENANT_STATUSES = ("active", "inactive", "suspended")

TARGET_HTTP = "http"
TARGET_DATABASE = "database"

EXTERNAL_CHANNEL = "external-channel"


def iso_ts(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Target:
    id: str
    display_name: str
    endpoint: str
    kind: str = TARGET_HTTP


@dataclass(frozen=True)
class CheckResult:
    timestamp: float
    status: str
    response_time_ms: float
    http_status_code: int | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.status not in CHECK_STATUSES:
            raise ValueError(f"Invalid check status {self.status!r}")

    @property
    def healthy(self) -> bool:
        return self.status == STATUS_HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": iso_ts(self.timestamp),
            "status": self.status,
            "response_time_ms": self.response_time_ms,
            "http_status_code": self.http_status_code,
            "error": self.error,
        }


@dataclass
class Alert:
    type: str
    message: str
    severity: str
    timestamp: float
    service_id: str | None = None
    tenant_id: str | None = None
    id: str = field(default_factory=new_id)
    acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: float | None = None

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ValueError(f"Invalid alert severity {self.severity!r}")
        # An alert concerns a service, a tenant, or the whole system; never both.
        if self.service_id is not None and self.tenant_id is not None:
            raise ValueError("Alert cannot reference both a service and a tenant")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "service_id": self.service_id,
            "tenant_id": self.tenant_id,
            "message": self.message,
            "severity": self.severity,
            "timestamp": iso_ts(self.timestamp),
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": iso_ts(self.acknowledged_at),
        }


@dataclass(frozen=True)
class UptimeRecord:
    tenant_id: str
    service_type: str
    status: str
    timestamp: float

    def __post_init__(self) -> None:
        if self.status not in UPTIME_STATUSES:
            raise ValueError(f"Invalid uptime status {self.status!r}")


@dataclass(frozen=True)
class Tenant:
    id: str
    company_name: str
    status: str
    connectivity_flag: bool
