from __future__ import annotations

import asyncio
import time
from typing import Callable

import httpx
import structlog

from healthwatch import db as dbm
from healthwatch.errors import ProbeFailure
from healthwatch.models import (
    STATUS_HEALTHY,
    STATUS_OFFLINE,
    STATUS_UNHEALTHY,
    TARGET_DATABASE,
    CheckResult,
    Target,
)


logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

DatabasePing = Callable[[str], None]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


async def http_probe(
    target: Target,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str | None = None,
) -> CheckResult:
    ts = time.time()
    started = time.perf_counter()
    headers = {"User-Agent": user_agent} if user_agent else None
    try:
        resp = await asyncio.wait_for(
            client.get(target.endpoint, headers=headers, follow_redirects=True, timeout=timeout_seconds),
            timeout=timeout_seconds,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return CheckResult(timestamp=ts, status=STATUS_OFFLINE, response_time_ms=_elapsed_ms(started), error="Timeout")
    except httpx.RequestError as e:
        return CheckResult(
            timestamp=ts,
            status=STATUS_OFFLINE,
            response_time_ms=_elapsed_ms(started),
            error=f"{type(e).__name__}: {e}",
        )

    elapsed_ms = _elapsed_ms(started)
    if resp.is_success:
        return CheckResult(timestamp=ts, status=STATUS_HEALTHY, response_time_ms=elapsed_ms, http_status_code=resp.status_code)
    return CheckResult(
        timestamp=ts,
        status=STATUS_UNHEALTHY,
        response_time_ms=elapsed_ms,
        http_status_code=resp.status_code,
        error=f"HTTP {resp.status_code}",
    )


async def database_probe(
    target: Target,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ping: DatabasePing = dbm.ping,
) -> CheckResult:
    """Binary connectivity check: the relational store is either reachable or offline."""
    ts = time.time()
    started = time.perf_counter()
    try:
        await asyncio.wait_for(asyncio.to_thread(ping, target.endpoint), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        return CheckResult(timestamp=ts, status=STATUS_OFFLINE, response_time_ms=_elapsed_ms(started), error="Timeout")
    except Exception as e:
        return CheckResult(timestamp=ts, status=STATUS_OFFLINE, response_time_ms=_elapsed_ms(started), error=str(e) or type(e).__name__)
    return CheckResult(timestamp=ts, status=STATUS_HEALTHY, response_time_ms=_elapsed_ms(started))


class Prober:
    """Dispatches a target to the matching probe. Never raises."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str | None = None,
        database_ping: DatabasePing = dbm.ping,
    ):
        self.client = client
        self.timeout_seconds = float(timeout_seconds)
        self.user_agent = user_agent
        self.database_ping = database_ping

    async def probe(self, target: Target) -> CheckResult:
        try:
            if target.kind == TARGET_DATABASE:
                return await database_probe(target, timeout_seconds=self.timeout_seconds, ping=self.database_ping)
            return await http_probe(
                target, self.client, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent
            )
        except Exception as e:
            # Anything the probes did not anticipate still resolves to a result.
            failure = ProbeFailure(f"{type(e).__name__}: {e}")
            logger.warning("Probe raised unexpectedly", target_id=target.id, error=str(failure))
            return CheckResult(timestamp=time.time(), status=STATUS_OFFLINE, response_time_ms=0.0, error=str(failure))
