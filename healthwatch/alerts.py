"""Alert persistence and acknowledgement."""

import time
from typing import List, Optional

import structlog

from . import db as dbm
from .errors import NotFound
from .models import SEVERITY_CRITICAL, Alert


logger = structlog.get_logger(__name__)


class AlertStore:
    """Persists alerts in the monitoring_alerts table. Alerts are never deleted here."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def record(self, alert: Alert) -> Alert:
        """Persist an alert, then emit it on the structured log. Nothing is logged when the write fails."""
        dbm.insert_alert(self.db_path, alert)
        log = logger.error if alert.severity == SEVERITY_CRITICAL else logger.warning
        log(
            "ALERT",
            alert_id=alert.id,
            alert_type=alert.type,
            severity=alert.severity,
            service_id=alert.service_id,
            tenant_id=alert.tenant_id,
            message=alert.message,
        )
        return alert

    def get(self, alert_id: str) -> Alert:
        alert = dbm.get_alert(self.db_path, alert_id)
        if alert is None:
            raise NotFound("alert", alert_id)
        return alert

    def acknowledge(self, alert_id: str, user_id: str, at_ts: Optional[float] = None) -> Alert:
        """Mark an alert acknowledged by user_id.

        Raises:
            NotFound: no alert has this id; nothing is changed.
        """
        ts = time.time() if at_ts is None else float(at_ts)
        if not dbm.acknowledge_alert(self.db_path, alert_id, user_id=str(user_id), at_ts=ts):
            raise NotFound("alert", alert_id)
        logger.info("Alert acknowledged", alert_id=alert_id, user_id=user_id)
        return self.get(alert_id)

    def list_recent(self, limit: int = 20) -> List[Alert]:
        """Newest first."""
        return dbm.list_recent_alerts(self.db_path, limit=limit)

    def count_unacknowledged(self) -> int:
        return dbm.count_unacknowledged_alerts(self.db_path)
