"""Typed failures raised by the monitoring engine."""


class MonitoringError(Exception):
    """Base class for all engine errors."""


class ProbeFailure(MonitoringError):
    """A probe could not reach its target.

    Never escapes a probe: it is always turned into an offline/unhealthy CheckResult.
    """


class PersistenceFailure(MonitoringError):
    """A store read or write failed."""


class NotFound(MonitoringError):
    """The referenced alert, tenant or target does not exist."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class UpstreamUnavailable(MonitoringError):
    """The external connectivity-state provider could not be read."""
