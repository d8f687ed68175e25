from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from healthwatch.config import MonitoringConfig, TargetConfig, load_config
from healthwatch.service import MonitoringService


ENV_VARS = (
    "HEALTHWATCH_CONFIG",
    "HEALTHWATCH_DB_PATH",
    "LOG_LEVEL",
    "HEALTHWATCH_LOG_FORMAT",
    "HEALTHWATCH_HEALTH_INTERVAL",
    "HEALTHWATCH_CONNECTIVITY_INTERVAL",
    "HEALTHWATCH_UPTIME_INTERVAL",
    "HEALTHWATCH_ALERT_THRESHOLD",
    "HEALTHWATCH_PROBE_TIMEOUT",
    "HEALTHWATCH_RETENTION_DAYS",
    "HEALTHWATCH_CONNECTIVITY_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_no_file(tmp_path: Path) -> None:
    cfg = load_config(str(tmp_path / "missing.yaml"))

    assert cfg.health_check_interval == 30
    assert cfg.connectivity_check_interval == 15
    assert cfg.uptime_snapshot_interval == 300
    assert cfg.alert_threshold == 3
    assert cfg.probe_timeout == 10.0
    assert cfg.history_size == 100
    assert [t.id for t in cfg.build_targets()] == ["api", "backend", "frontend", "database"]
    assert cfg.build_targets()[-1].kind == "database"


def test_yaml_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "hw.yaml"
    path.write_text(
        "\n".join(
            [
                "db_path: /var/lib/hw.db",
                "alert_threshold: 5",
                "targets:",
                "  - id: shop",
                "    name: Shop",
                "    endpoint: https://shop.example.com/health",
                "connectivity:",
                "  status_url: http://backend.internal/status",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.db_path == "/var/lib/hw.db"
    assert cfg.alert_threshold == 5
    assert [t.id for t in cfg.targets] == ["shop"]
    assert cfg.connectivity.status_url == "http://backend.internal/status"
    assert cfg.connectivity.timeout == 10.0


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "hw.yaml"
    path.write_text("health_check_interval: 60\n", encoding="utf-8")
    monkeypatch.setenv("HEALTHWATCH_CONFIG", str(path))
    monkeypatch.setenv("HEALTHWATCH_HEALTH_INTERVAL", "45")
    monkeypatch.setenv("HEALTHWATCH_PROBE_TIMEOUT", "2.5")
    monkeypatch.setenv("HEALTHWATCH_ALERT_THRESHOLD", "not-a-number")
    monkeypatch.setenv("HEALTHWATCH_CONNECTIVITY_URL", "http://other/status")

    cfg = load_config()

    assert cfg.health_check_interval == 45
    assert cfg.probe_timeout == 2.5
    assert cfg.alert_threshold == 3
    assert cfg.connectivity.status_url == "http://other/status"


def test_database_target_follows_db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = str(tmp_path / "elsewhere" / "hw.db")
    monkeypatch.setenv("HEALTHWATCH_DB_PATH", store)

    cfg = load_config(str(tmp_path / "missing.yaml"))

    database = [t for t in cfg.build_targets() if t.kind == "database"]
    assert [t.endpoint for t in database] == [cfg.db_path]
    assert cfg.db_path == store


def test_explicit_database_endpoint_is_kept() -> None:
    cfg = MonitoringConfig(
        db_path="data/main.db",
        targets=[{"id": "replica", "name": "Replica", "kind": "database", "endpoint": "data/replica.db"}],
    )
    assert cfg.build_targets()[0].endpoint == "data/replica.db"


@pytest.mark.asyncio
async def test_database_probe_checks_configured_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HEALTHWATCH_DB_PATH", str(tmp_path / "elsewhere" / "hw.db"))
    cfg = load_config(str(tmp_path / "missing.yaml"))
    database = [t for t in cfg.targets if t.kind == "database"]
    service = MonitoringService(cfg.model_copy(update={"targets": database}))
    try:
        results = await service.run_health_check()
    finally:
        await service.aclose()

    assert results["database"].status == "healthy"


def test_non_mapping_yaml_rejected(tmp_path: Path) -> None:
    path = tmp_path / "hw.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_duplicate_target_ids_rejected() -> None:
    target = {"id": "api", "name": "API", "endpoint": "http://localhost/health"}
    with pytest.raises(ValidationError):
        MonitoringConfig(targets=[target, target])


def test_target_validation() -> None:
    with pytest.raises(ValidationError):
        TargetConfig(id="api", name="API", endpoint="localhost:3001")
    with pytest.raises(ValidationError):
        TargetConfig(id="q", name="Queue", endpoint="amqp://x", kind="amqp")

    db_target = TargetConfig(id="db", name="DB", endpoint="data/x.db", kind="database").to_target()
    assert db_target.kind == "database"
    assert db_target.display_name == "DB"


def test_intervals_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        MonitoringConfig(health_check_interval=0)
