"""Facade wiring the scheduler, stores and aggregators together."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog

from . import db as dbm
from .alerts import AlertStore
from .config import MonitoringConfig
from .connectivity import ConnectivityCorrelator, ConnectivityProvider, HttpConnectivityProvider
from .detector import AlertThresholdDetector
from .errors import NotFound
from .history import HistoryStore, compute_availability
from .models import EXTERNAL_CHANNEL, CheckResult, Target, iso_ts
from .probe import Prober
from .scheduler import HealthCheckScheduler
from .tenants import TenantDirectory
from .uptime import UptimeAggregator


logger = structlog.get_logger(__name__)


class MonitoringService:
    """Entry point used by the API/CLI layer: lifecycle control plus status and uptime queries."""

    def __init__(
        self,
        config: MonitoringConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        connectivity_provider: Optional[ConnectivityProvider] = None,
        targets: Optional[List[Target]] = None,
        prober: Optional[Prober] = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()

        dbm.ensure_schema(config.db_path)
        self.tenants = TenantDirectory(config.db_path)
        self.alerts = AlertStore(config.db_path)
        self.history = HistoryStore(capacity=config.history_size)
        self.uptime = UptimeAggregator(config.db_path, self.tenants, retention_days=config.retention_days)

        provider = connectivity_provider or HttpConnectivityProvider(
            self.http_client, config.connectivity.status_url, timeout=config.connectivity.timeout
        )
        self.correlator = ConnectivityCorrelator(provider, self.tenants, self.alerts)

        self.scheduler = HealthCheckScheduler(
            targets if targets is not None else config.build_targets(),
            prober
            or Prober(self.http_client, timeout_seconds=config.probe_timeout, user_agent=config.user_agent),
            self.history,
            AlertThresholdDetector(config.alert_threshold, repeat_alerts=config.repeat_alerts),
            self.alerts,
            db_path=config.db_path,
            correlator=self.correlator,
            uptime=self.uptime,
            health_interval=config.health_check_interval,
            connectivity_interval=config.connectivity_check_interval,
            uptime_interval=config.uptime_snapshot_interval,
        )

    # --- lifecycle ---

    async def start(self):
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()

    async def aclose(self):
        await self.stop()
        if self._owns_client:
            await self.http_client.aclose()
        logger.info("Monitoring service closed")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    # --- service health ---

    async def run_health_check(self) -> Dict[str, CheckResult]:
        """Run one health tick now, outside the cadence."""
        return await self.scheduler.run_health_check()

    def get_current_status(self) -> Dict[str, Dict[str, Any]]:
        status: Dict[str, Dict[str, Any]] = {}
        for target in self.scheduler.targets:
            items = self.history.get(target.id)
            last = items[-1] if items else None
            _total, _ok, pct = compute_availability(items)
            status[target.id] = {
                "name": target.display_name,
                "endpoint": target.endpoint,
                "status": last.status if last else "unknown",
                "last_check": iso_ts(last.timestamp) if last else None,
                "response_time_ms": last.response_time_ms if last else None,
                "error": last.error if last else None,
                "uptime": round(pct, 2) if pct is not None else None,
            }
        return status

    def get_service_history(self, target_id: str, limit: int = 50) -> List[CheckResult]:
        if self.scheduler.target(target_id) is None:
            raise NotFound("target", target_id)
        return self.history.recent(target_id, int(limit))

    # --- alerts ---

    def get_recent_alerts(self, limit: int = 20):
        return self.alerts.list_recent(limit)

    def acknowledge_alert(self, alert_id: str, user_id: str):
        return self.alerts.acknowledge(alert_id, user_id)

    def count_unacknowledged_alerts(self) -> int:
        return self.alerts.count_unacknowledged()

    # --- tenant uptime ---

    def calculate_uptime(self, tenant_id: str, window: str = "24h") -> Dict[str, Any]:
        return self.uptime.calculate_uptime(tenant_id, window)

    def get_uptime_history(self, tenant_id: str, days: int = 30) -> List[Dict[str, Any]]:
        return self.uptime.get_uptime_history(tenant_id, days)

    def get_all_tenants_uptime(self, window: str = "24h") -> List[Dict[str, Any]]:
        return self.uptime.get_all_tenants_uptime(window)

    def generate_uptime_report(self, tenant_id: str, period: str = "30d") -> Dict[str, Any]:
        return self.uptime.generate_report(tenant_id, period)

    def get_system_metrics(self, window: str = "24h") -> Dict[str, Any]:
        return self.uptime.get_system_metrics(window)

    def record_uptime_event(self, tenant_id: str, status: str, service_type: str = EXTERNAL_CHANNEL):
        return self.uptime.record_event(tenant_id, status, service_type=service_type)

    def prune_uptime_records(self, days_to_keep: Optional[int] = None) -> int:
        return self.uptime.prune(days_to_keep)

    # --- dashboard ---

    async def get_dashboard(self) -> Dict[str, Any]:
        """Consolidated view: services, recent alerts, system metrics and tenant uptime."""
        recent, unacknowledged, metrics, tenants = await asyncio.gather(
            asyncio.to_thread(self.alerts.list_recent, 10),
            asyncio.to_thread(self.alerts.count_unacknowledged),
            asyncio.to_thread(self.uptime.get_system_metrics, "24h"),
            asyncio.to_thread(self.uptime.get_all_tenants_uptime, "24h"),
        )
        return {
            "services": self.get_current_status(),
            "alerts": {
                "recent": [a.to_dict() for a in recent],
                "unacknowledged": unacknowledged,
            },
            "uptime": metrics,
            "tenants": {
                "list": tenants,
                "healthy": sum(1 for t in tenants if t["status"] == "healthy"),
                "total": len(tenants),
            },
        }
