from __future__ import annotations

from typing import Sequence

from healthwatch.models import ALERT_SERVICE_DOWN, SEVERITY_CRITICAL, Alert, CheckResult, Target


class AlertThresholdDetector:
    """
    Raises a critical service_down alert when the last `threshold` results of a target are all non-healthy.

    Stateless: only the history passed in is inspected. With repeat_alerts=True every failing tick past
    the threshold alerts again; with repeat_alerts=False only the tick on which the failing run first
    reaches the threshold alerts.
    """

    def __init__(self, threshold: int = 3, *, repeat_alerts: bool = True):
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.threshold = int(threshold)
        self.repeat_alerts = bool(repeat_alerts)

    def evaluate(self, target: Target, history: Sequence[CheckResult]) -> Alert | None:
        k = self.threshold
        if len(history) < k:
            return None

        suffix = list(history)[-k:]
        if any(r.healthy for r in suffix):
            return None

        if not self.repeat_alerts and len(history) > k and not history[-k - 1].healthy:
            return None

        return Alert(
            type=ALERT_SERVICE_DOWN,
            service_id=target.id,
            message=f"Service {target.display_name} has been down for {k} consecutive checks",
            severity=SEVERITY_CRITICAL,
            timestamp=suffix[-1].timestamp,
        )
