from __future__ import annotations

from pathlib import Path

import pytest
from structlog.testing import capture_logs

from healthwatch import db as dbm
from healthwatch.alerts import AlertStore
from healthwatch.errors import NotFound, PersistenceFailure
from healthwatch.models import Alert


@pytest.fixture()
def store(tmp_path: Path) -> AlertStore:
    db_path = str(tmp_path / "alerts.db")
    dbm.ensure_schema(db_path)
    return AlertStore(db_path)


def _alert(ts: float, **kw) -> Alert:
    kw.setdefault("service_id", "api")
    return Alert(type="service_down", message=f"down at {ts}", severity="critical", timestamp=ts, **kw)


def test_record_and_list_newest_first(store: AlertStore) -> None:
    first = store.record(_alert(100.0))
    second = store.record(_alert(200.0))
    third = store.record(_alert(150.0, service_id=None, tenant_id="t-1"))

    recent = store.list_recent(10)
    assert [a.id for a in recent] == [second.id, third.id, first.id]
    assert recent[1].tenant_id == "t-1"
    assert recent[1].service_id is None
    assert [a.id for a in store.list_recent(1)] == [second.id]
    assert store.count_unacknowledged() == 3


def test_acknowledge_sets_actor_and_time(store: AlertStore) -> None:
    alert = store.record(_alert(100.0))
    acked = store.acknowledge(alert.id, "admin-7", at_ts=500.0)

    assert acked.acknowledged is True
    assert acked.acknowledged_by == "admin-7"
    assert acked.acknowledged_at == 500.0
    assert store.count_unacknowledged() == 0
    assert store.get(alert.id).to_dict()["acknowledged"] is True


def test_acknowledge_unknown_alert_raises_not_found(store: AlertStore) -> None:
    store.record(_alert(100.0))
    before = store.count_unacknowledged()

    with pytest.raises(NotFound):
        store.acknowledge("does-not-exist", "admin-7")

    assert store.count_unacknowledged() == before


def test_alert_cannot_target_service_and_tenant() -> None:
    with pytest.raises(ValueError):
        Alert(type="x", message="m", severity="warning", timestamp=1.0, service_id="api", tenant_id="t-1")
    with pytest.raises(ValueError):
        Alert(type="x", message="m", severity="fatal", timestamp=1.0)

    system_wide = Alert(type="x", message="m", severity="info", timestamp=1.0)
    assert system_wide.service_id is None and system_wide.tenant_id is None


def test_store_errors_surface_as_persistence_failure(tmp_path: Path) -> None:
    # A directory is not a database file.
    bad = tmp_path / "not-a-db"
    bad.mkdir()
    store = AlertStore(str(bad))
    with pytest.raises(PersistenceFailure):
        store.record(_alert(1.0))


def test_alert_is_logged_only_once_persisted(tmp_path: Path, store: AlertStore) -> None:
    with capture_logs() as logs:
        store.record(_alert(1.0))
    assert [e["event"] for e in logs] == ["ALERT"]
    assert logs[0]["log_level"] == "error"

    bad = tmp_path / "not-a-db"
    bad.mkdir()
    with capture_logs() as logs:
        with pytest.raises(PersistenceFailure):
            AlertStore(str(bad)).record(_alert(2.0))
    assert [e for e in logs if e["event"] == "ALERT"] == []
