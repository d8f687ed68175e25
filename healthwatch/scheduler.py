"""Periodic health, connectivity and uptime jobs."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import db as dbm
from .alerts import AlertStore
from .connectivity import ConnectivityCorrelator
from .detector import AlertThresholdDetector
from .errors import PersistenceFailure
from .history import HistoryStore
from .models import CheckResult, Target
from .probe import Prober
from .uptime import UptimeAggregator


logger = structlog.get_logger(__name__)

HEALTH_JOB = "health_check"
CONNECTIVITY_JOB = "connectivity_check"
UPTIME_JOB = "uptime_snapshot"


class HealthCheckScheduler:
    """Runs each cadence on its own APScheduler interval job.

    A job never overlaps itself (max_instances=1), and jobs never wait on each other.
    """

    def __init__(
        self,
        targets: List[Target],
        prober: Prober,
        history: HistoryStore,
        detector: AlertThresholdDetector,
        alerts: AlertStore,
        *,
        db_path: Optional[str] = None,
        correlator: Optional[ConnectivityCorrelator] = None,
        uptime: Optional[UptimeAggregator] = None,
        health_interval: int = 30,
        connectivity_interval: int = 15,
        uptime_interval: int = 300,
    ):
        ids = [t.id for t in targets]
        if len(ids) != len(set(ids)):
            raise ValueError("Target ids must be unique")
        self.targets = list(targets)
        self.prober = prober
        self.history = history
        self.detector = detector
        self.alerts = alerts
        self.db_path = db_path
        self.correlator = correlator
        self.uptime = uptime
        self.health_interval = int(health_interval)
        self.connectivity_interval = int(connectivity_interval)
        self.uptime_interval = int(uptime_interval)

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        # Serializes scheduled and manual health ticks.
        self._health_lock = asyncio.Lock()

    def target(self, target_id: str) -> Optional[Target]:
        for t in self.targets:
            if t.id == target_id:
                return t
        return None

    async def start(self):
        """Start all cadences; a health tick runs immediately. No-op when already running."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        await self.warm_history()

        # A fresh scheduler per start keeps stop/start cycles independent.
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._add_interval_job(
            HEALTH_JOB,
            self.run_health_check,
            self.health_interval,
            "Probe all targets",
            next_run_time=datetime.now(timezone.utc),
        )
        if self.correlator is not None:
            self._add_interval_job(
                CONNECTIVITY_JOB, self.run_connectivity_check, self.connectivity_interval, "Reconcile tenant connectivity"
            )
        if self.uptime is not None:
            self._add_interval_job(UPTIME_JOB, self.run_uptime_snapshot, self.uptime_interval, "Snapshot tenant uptime")

        self.scheduler.start()
        self.running = True
        logger.info(
            "Health check scheduler started",
            targets=len(self.targets),
            health_interval=self.health_interval,
            connectivity_interval=self.connectivity_interval if self.correlator else None,
            uptime_interval=self.uptime_interval if self.uptime else None,
        )

    async def stop(self):
        """Cancel all timers. In-flight ticks finish on their own. Safe to call repeatedly."""
        if not self.running:
            return

        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self.running = False
        logger.info("Health check scheduler stopped")

    def _add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        description: str,
        next_run_time: Optional[datetime] = None,
    ):
        kwargs: Dict[str, Any] = {}
        if next_run_time is not None:
            kwargs["next_run_time"] = next_run_time
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=description,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            **kwargs,
        )
        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)

    def get_scheduler_status(self) -> Dict[str, Any]:
        jobs = []
        if self.scheduler is not None:
            for job in self.scheduler.get_jobs():
                jobs.append(
                    {
                        "job_id": job.id,
                        "name": job.name,
                        "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    }
                )
        return {"running": self.running, "jobs": jobs}

    async def warm_history(self):
        """Seed empty rings from persisted results so status survives a restart."""
        if not self.db_path:
            return
        for target in self.targets:
            if not self.history.is_empty(target.id):
                continue
            try:
                results = await asyncio.to_thread(
                    dbm.recent_check_results, self.db_path, target_id=target.id, limit=self.history.capacity
                )
            except PersistenceFailure as e:
                logger.error("Failed to load check history", target_id=target.id, error=str(e))
                continue
            self.history.ring(target.id).extend(results)

    async def run_health_check(self) -> Dict[str, CheckResult]:
        """Probe every target concurrently, then record results in target order.

        Only one tick runs at a time; a manual tick waits for a scheduled one in flight.
        """
        async with self._health_lock:
            results = await asyncio.gather(*(self.prober.probe(t) for t in self.targets))

            out: Dict[str, CheckResult] = {}
            for target, result in zip(self.targets, results):
                out[target.id] = result
                try:
                    await self._handle_result(target, result)
                except Exception as e:
                    logger.error("Failed to handle check result", target_id=target.id, error=str(e))

        unhealthy = [tid for tid, r in out.items() if not r.healthy]
        logger.debug("Health tick done", targets=len(out), unhealthy=unhealthy)
        return out

    async def _handle_result(self, target: Target, result: CheckResult):
        ring = self.history.append(target.id, result)
        if not result.healthy:
            logger.warning("Target not healthy", target_id=target.id, status=result.status, error=result.error)

        if self.db_path:
            try:
                await asyncio.to_thread(dbm.insert_check_result, self.db_path, target_id=target.id, result=result)
            except PersistenceFailure as e:
                logger.error("Failed to persist check result", target_id=target.id, error=str(e))

        alert = self.detector.evaluate(target, ring.snapshot())
        if alert is None:
            return
        try:
            await asyncio.to_thread(self.alerts.record, alert)
        except PersistenceFailure as e:
            logger.error("Failed to persist alert", alert_id=alert.id, target_id=target.id, error=str(e))

    async def run_connectivity_check(self) -> Dict[str, int]:
        if self.correlator is None:
            return {}
        try:
            return await self.correlator.run_once()
        except Exception as e:
            logger.error("Connectivity tick failed", error=str(e))
            return {}

    async def run_uptime_snapshot(self) -> int:
        if self.uptime is None:
            return 0
        try:
            return await asyncio.to_thread(self.uptime.record_snapshot)
        except Exception as e:
            logger.error("Uptime snapshot failed", error=str(e))
            return 0
