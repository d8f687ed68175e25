"""Service health monitoring and per-tenant uptime accounting."""

__version__ = "0.1.0"
