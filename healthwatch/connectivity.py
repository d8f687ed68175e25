"""External channel connectivity feed and tenant flag reconciliation."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from .alerts import AlertStore
from .errors import PersistenceFailure, UpstreamUnavailable
from .models import ALERT_CHANNEL_DISCONNECTED, SEVERITY_WARNING, Alert
from .tenants import TenantDirectory


logger = structlog.get_logger(__name__)


class InstanceState(BaseModel):
    """Observed state of one tenant's channel connection."""
    connected: bool
    authenticated: bool

    @property
    def is_healthy(self) -> bool:
        return self.connected and self.authenticated


class ConnectivitySnapshot(BaseModel):
    """Validated tenant_id -> InstanceState map. Tenants absent from the map are not reported on."""
    instances: Dict[str, InstanceState] = {}

    @classmethod
    def from_payload(cls, payload: Any) -> "ConnectivitySnapshot":
        """Build a snapshot from the backend status payload, dropping malformed instance entries.

        Raises:
            UpstreamUnavailable: the payload is not a JSON object.
        """
        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"status payload must be an object, got {type(payload).__name__}")
        raw_instances = payload.get("instances") or {}
        if not isinstance(raw_instances, dict):
            raise UpstreamUnavailable("status payload 'instances' must be an object")

        instances: Dict[str, InstanceState] = {}
        for tenant_id, raw in raw_instances.items():
            try:
                instances[str(tenant_id)] = InstanceState.model_validate(raw)
            except ValidationError as e:
                logger.warning("Dropping malformed instance entry", tenant_id=str(tenant_id), errors=e.error_count())
        return cls(instances=instances)


ConnectivityProvider = Callable[[], Awaitable[ConnectivitySnapshot]]


class HttpConnectivityProvider:
    """Reads the messaging backend's /status endpoint."""

    def __init__(self, client: httpx.AsyncClient, status_url: str, timeout: float = 10.0):
        self.client = client
        self.status_url = status_url
        self.timeout = float(timeout)

    async def __call__(self) -> ConnectivitySnapshot:
        try:
            resp = await self.client.get(self.status_url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise UpstreamUnavailable(f"HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"invalid JSON: {e}") from e
        return ConnectivitySnapshot.from_payload(payload)


class ConnectivityCorrelator:
    """Reconciles each tenant's cached connectivity flag against the observed feed."""

    def __init__(self, provider: ConnectivityProvider, tenants: TenantDirectory, alerts: AlertStore):
        self.provider = provider
        self.tenants = tenants
        self.alerts = alerts

    async def run_once(self, now_ts: Optional[float] = None) -> Dict[str, int]:
        """Run one correlation tick.

        Returns a summary with checked/updated/alerts/skipped counts. A provider failure skips the
        whole tick; a failure on one tenant is logged and does not stop the others.
        """
        summary = {"checked": 0, "updated": 0, "alerts": 0, "skipped": 0}
        try:
            snapshot = await self.provider()
        except UpstreamUnavailable as e:
            logger.warning("Connectivity feed unavailable, skipping tick", error=str(e))
            return summary
        except Exception as e:
            logger.error("Connectivity feed failed, skipping tick", error=str(e), error_type=type(e).__name__)
            return summary

        ts = time.time() if now_ts is None else float(now_ts)
        for tenant_id, state in snapshot.instances.items():
            try:
                outcome = await asyncio.to_thread(self._reconcile, tenant_id, state, ts)
            except Exception as e:
                logger.error("Tenant reconciliation failed", tenant_id=tenant_id, error=str(e))
                summary["skipped"] += 1
                continue
            if outcome is None:
                summary["skipped"] += 1
                continue
            summary["checked"] += 1
            alerted, updated = outcome
            summary["alerts"] += int(alerted)
            summary["updated"] += int(updated)

        logger.debug("Connectivity tick done", **summary)
        return summary

    def _reconcile(self, tenant_id: str, state: InstanceState, ts: float):
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            return None

        is_healthy = state.is_healthy
        alerted = False
        if tenant.connectivity_flag and not is_healthy:
            alert = Alert(
                type=ALERT_CHANNEL_DISCONNECTED,
                tenant_id=tenant.id,
                message=f"Messaging channel of tenant {tenant.id} ({tenant.company_name}) disconnected",
                severity=SEVERITY_WARNING,
                timestamp=ts,
            )
            try:
                self.alerts.record(alert)
                alerted = True
            except PersistenceFailure as e:
                # The flag below must still be corrected.
                logger.error("Failed to persist alert", alert_id=alert.id, tenant_id=tenant.id, error=str(e))

        updated = False
        if tenant.connectivity_flag != is_healthy:
            updated = self.tenants.set_connectivity_flag(tenant.id, is_healthy)
            logger.info("Tenant connectivity changed", tenant_id=tenant.id, connected=is_healthy)
        return alerted, updated
