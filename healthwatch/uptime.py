"""Per-tenant uptime recording and reporting."""

import time
from typing import Any, Dict, List, Optional

import structlog

from . import db as dbm
from .errors import NotFound, PersistenceFailure
from .models import EXTERNAL_CHANNEL, UPTIME_DOWN, UPTIME_UP, UptimeRecord, iso_ts
from .tenants import TenantDirectory


logger = structlog.get_logger(__name__)

DAY_SECONDS = 24 * 3600

WINDOWS: Dict[str, int] = {
    "24h": DAY_SECONDS,
    "7d": 7 * DAY_SECONDS,
    "30d": 30 * DAY_SECONDS,
}

HEALTHY_UPTIME_PERCENT = 95.0
PROBLEMATIC_TENANTS_LIMIT = 5
RECENT_INCIDENTS_LIMIT = 10


def window_seconds(window: str) -> int:
    try:
        return WINDOWS[window]
    except KeyError:
        raise ValueError(f"Unknown uptime window {window!r}; expected one of {', '.join(WINDOWS)}") from None


def uptime_percentage(total: int, up: int) -> float:
    """Share of up records, 2 decimals.

    No records in the window counts as 100%.
    """
    if total <= 0:
        return 100.0
    return round((up / float(total)) * 100.0, 2)


class UptimeAggregator:
    """Snapshots tenant connectivity flags into uptime_records and computes windowed reports."""

    def __init__(self, db_path: str, tenants: TenantDirectory, *, retention_days: int = 90):
        self.db_path = db_path
        self.tenants = tenants
        self.retention_days = int(retention_days)

    def _now(self, now_ts: Optional[float]) -> float:
        return time.time() if now_ts is None else float(now_ts)

    # --- recording ---

    def record_event(
        self,
        tenant_id: str,
        status: str,
        service_type: str = EXTERNAL_CHANNEL,
        ts: Optional[float] = None,
    ) -> UptimeRecord:
        record = UptimeRecord(tenant_id=str(tenant_id), service_type=service_type, status=status, timestamp=self._now(ts))
        dbm.insert_uptime_record(self.db_path, record)
        return record

    def record_snapshot(self, now_ts: Optional[float] = None) -> int:
        """Write one record per active tenant from its cached connectivity flag. Returns records written."""
        ts = self._now(now_ts)
        try:
            tenants = self.tenants.list_active()
        except PersistenceFailure as e:
            logger.error("Failed to list active tenants", error=str(e))
            return 0

        written = 0
        for tenant in tenants:
            status = UPTIME_UP if tenant.connectivity_flag else UPTIME_DOWN
            try:
                self.record_event(tenant.id, status, ts=ts)
                written += 1
            except PersistenceFailure as e:
                logger.error("Failed to record uptime", tenant_id=tenant.id, error=str(e))
        logger.debug("Uptime snapshot recorded", tenants=len(tenants), written=written)
        return written

    # --- reporting ---

    def calculate_uptime(self, tenant_id: str, window: str = "24h", now_ts: Optional[float] = None) -> Dict[str, Any]:
        since = self._now(now_ts) - window_seconds(window)
        total, up = dbm.uptime_counts(self.db_path, since_ts=since, tenant_id=str(tenant_id))
        return {
            "percentage": uptime_percentage(total, up),
            "total_checks": total,
            "up_checks": up,
            "down_checks": total - up,
        }

    def get_uptime_history(self, tenant_id: str, days: int = 30, now_ts: Optional[float] = None) -> List[Dict[str, Any]]:
        """Per UTC calendar day buckets, oldest first."""
        since = self._now(now_ts) - int(days) * DAY_SECONDS
        buckets = dbm.uptime_by_day(self.db_path, tenant_id=str(tenant_id), since_ts=since)
        return [
            {
                "date": b["day"],
                "uptime": uptime_percentage(b["total"], b["up"]),
                "total_checks": b["total"],
                "up_checks": b["up"],
                "down_checks": b["total"] - b["up"],
            }
            for b in buckets
        ]

    def get_all_tenants_uptime(self, window: str = "24h", now_ts: Optional[float] = None) -> List[Dict[str, Any]]:
        """Active tenants, worst uptime first."""
        results = []
        for tenant in self.tenants.list_active():
            uptime = self.calculate_uptime(tenant.id, window, now_ts=now_ts)
            results.append(
                {
                    "tenant_id": tenant.id,
                    "company_name": tenant.company_name,
                    "uptime": uptime["percentage"],
                    "total_checks": uptime["total_checks"],
                    "status": "healthy" if uptime["percentage"] >= HEALTHY_UPTIME_PERCENT else "degraded",
                }
            )
        results.sort(key=lambda r: r["uptime"])
        return results

    def get_system_metrics(self, window: str = "24h", now_ts: Optional[float] = None) -> Dict[str, Any]:
        now = self._now(now_ts)
        total, up = dbm.uptime_counts(self.db_path, since_ts=now - window_seconds(window))
        incidents = dbm.down_counts_by_day(self.db_path, since_ts=now - 7 * DAY_SECONDS)
        problematic = dbm.top_down_tenants(self.db_path, since_ts=now - DAY_SECONDS, limit=PROBLEMATIC_TENANTS_LIMIT)
        return {
            "window": window,
            "system_uptime": uptime_percentage(total, up),
            "total_checks": total,
            "active_tenants": self.tenants.count_active(),
            "weekly_incidents": [{"date": i["day"], "incident_count": i["count"]} for i in incidents],
            "problematic_tenants": problematic,
        }

    def generate_report(self, tenant_id: str, period: str = "30d", now_ts: Optional[float] = None) -> Dict[str, Any]:
        """Uptime, daily history and the 10 most recent down records for one tenant.

        Raises:
            NotFound: unknown tenant.
        """
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            raise NotFound("tenant", tenant_id)

        now = self._now(now_ts)
        days = 30 if period == "30d" else 7
        uptime = self.calculate_uptime(tenant.id, period, now_ts=now)
        history = self.get_uptime_history(tenant.id, days, now_ts=now)
        incidents = dbm.recent_down_records(
            self.db_path, tenant_id=tenant.id, since_ts=now - window_seconds(period), limit=RECENT_INCIDENTS_LIMIT
        )
        return {
            "tenant": {"id": tenant.id, "company_name": tenant.company_name},
            "period": period,
            "uptime": uptime,
            "history": history,
            "recent_incidents": [{"timestamp": iso_ts(r.timestamp), "status": r.status} for r in incidents],
        }

    # --- retention ---

    def prune(self, days_to_keep: Optional[int] = None, now_ts: Optional[float] = None) -> int:
        """Delete uptime records and persisted check results older than the cutoff.

        Returns the number of uptime records removed.
        """
        days = self.retention_days if days_to_keep is None else int(days_to_keep)
        if days <= 0:
            raise ValueError("days_to_keep must be positive")
        cutoff = self._now(now_ts) - days * DAY_SECONDS
        deleted = dbm.delete_uptime_before(self.db_path, before_ts=cutoff)
        checks_deleted = dbm.delete_check_results_before(self.db_path, before_ts=cutoff)
        logger.info("Pruned uptime records", deleted=deleted, check_results_deleted=checks_deleted, days_to_keep=days)
        return deleted
