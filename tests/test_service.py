from __future__ import annotations

from pathlib import Path

import pytest

from healthwatch.config import MonitoringConfig
from healthwatch.connectivity import ConnectivitySnapshot
from healthwatch.errors import NotFound
from healthwatch.models import CheckResult, Target, Tenant
from healthwatch.service import MonitoringService


API = Target(id="api", display_name="API", endpoint="http://api.test/health")


class FlippingProber:
    def __init__(self, statuses: list[str]):
        self.statuses = list(statuses)
        self.ts = 1_700_000_000.0

    async def probe(self, target: Target) -> CheckResult:
        self.ts += 30.0
        status = self.statuses.pop(0) if self.statuses else "healthy"
        return CheckResult(timestamp=self.ts, status=status, response_time_ms=12.5)


async def _empty_feed() -> ConnectivitySnapshot:
    return ConnectivitySnapshot()


def _service(tmp_path: Path, statuses: list[str]) -> MonitoringService:
    config = MonitoringConfig(db_path=str(tmp_path / "svc.db"))
    return MonitoringService(
        config,
        targets=[API],
        prober=FlippingProber(statuses),
        connectivity_provider=_empty_feed,
    )


@pytest.mark.asyncio
async def test_status_is_unknown_before_first_tick(tmp_path: Path) -> None:
    service = _service(tmp_path, [])
    try:
        status = service.get_current_status()
        assert status["api"]["status"] == "unknown"
        assert status["api"]["uptime"] is None
        assert status["api"]["last_check"] is None
    finally:
        await service.aclose()


@pytest.mark.asyncio
async def test_status_and_history_after_ticks(tmp_path: Path) -> None:
    service = _service(tmp_path, ["healthy", "unhealthy", "healthy", "offline"])
    try:
        for _ in range(4):
            await service.run_health_check()

        status = service.get_current_status()["api"]
        assert status["status"] == "offline"
        assert status["uptime"] == 50.0
        assert status["response_time_ms"] == 12.5
        assert status["name"] == "API"

        history = service.get_service_history("api", limit=2)
        assert [r.status for r in history] == ["healthy", "offline"]

        with pytest.raises(NotFound):
            service.get_service_history("nope")
    finally:
        await service.aclose()


@pytest.mark.asyncio
async def test_alert_acknowledgement_through_service(tmp_path: Path) -> None:
    service = _service(tmp_path, ["offline"] * 3)
    try:
        for _ in range(3):
            await service.run_health_check()

        assert service.count_unacknowledged_alerts() == 1
        alert = service.get_recent_alerts()[0]
        acked = service.acknowledge_alert(alert.id, "ops-1")
        assert acked.acknowledged is True
        assert acked.acknowledged_by == "ops-1"
        assert service.count_unacknowledged_alerts() == 0

        with pytest.raises(NotFound):
            service.acknowledge_alert("missing", "ops-1")
    finally:
        await service.aclose()


@pytest.mark.asyncio
async def test_dashboard_bundle(tmp_path: Path) -> None:
    service = _service(tmp_path, ["healthy"])
    try:
        service.tenants.save(Tenant(id="t1", company_name="Acme", status="active", connectivity_flag=True))
        service.record_uptime_event("t1", "up")
        service.record_uptime_event("t1", "down")
        await service.run_health_check()

        dash = await service.get_dashboard()

        assert dash["services"]["api"]["status"] == "healthy"
        assert dash["alerts"] == {"recent": [], "unacknowledged": 0}
        assert dash["uptime"]["active_tenants"] == 1
        assert dash["uptime"]["system_uptime"] == 50.0
        assert dash["tenants"]["total"] == 1
        assert dash["tenants"]["healthy"] == 0
        assert dash["tenants"]["list"][0]["tenant_id"] == "t1"
    finally:
        await service.aclose()


@pytest.mark.asyncio
async def test_start_stop_lifecycle(tmp_path: Path) -> None:
    service = _service(tmp_path, [])
    await service.start()
    assert service.running is True
    await service.aclose()
    assert service.running is False
