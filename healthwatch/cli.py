from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Any

import structlog

from healthwatch.config import MonitoringConfig, load_config
from healthwatch.errors import MonitoringError
from healthwatch.log_config import configure_logging
from healthwatch.service import MonitoringService


logger = structlog.get_logger(__name__)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True, default=str))


async def _run_forever(config: MonitoringConfig) -> int:
    service = MonitoringService(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops lack signal handlers; Ctrl-C still raises KeyboardInterrupt.
            pass

    await service.start()
    try:
        await stop_event.wait()
    finally:
        await service.aclose()
    return 0


async def _check_once(config: MonitoringConfig) -> int:
    service = MonitoringService(config)
    try:
        results = await service.run_health_check()
        _print_json({tid: r.to_dict() for tid, r in results.items()})
        return 0 if all(r.healthy for r in results.values()) else 2
    finally:
        await service.aclose()


async def _dispatch(args: argparse.Namespace, config: MonitoringConfig) -> int:
    if args.command == "run":
        return await _run_forever(config)
    if args.command == "check":
        return await _check_once(config)

    service = MonitoringService(config)
    try:
        if args.command == "alerts":
            _print_json(
                {
                    "alerts": [a.to_dict() for a in service.get_recent_alerts(args.limit)],
                    "unacknowledged": service.count_unacknowledged_alerts(),
                }
            )
        elif args.command == "ack":
            _print_json(service.acknowledge_alert(args.alert_id, args.user).to_dict())
        elif args.command == "uptime":
            _print_json(service.calculate_uptime(args.tenant_id, args.period))
        elif args.command == "report":
            _print_json(service.generate_uptime_report(args.tenant_id, args.period))
        elif args.command == "metrics":
            _print_json(
                {
                    "system": service.get_system_metrics(args.period),
                    "tenants": service.get_all_tenants_uptime(args.period),
                }
            )
        elif args.command == "prune":
            deleted = service.prune_uptime_records(args.days)
            _print_json({"deleted": deleted})
        return 0
    finally:
        await service.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="healthwatch", description="Service health and tenant uptime monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $HEALTHWATCH_CONFIG)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL"),
        help="Logging level (INFO, WARNING, ...)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run all monitoring cadences until interrupted")
    sub.add_parser("check", help="Probe every target once and print the results")

    p = sub.add_parser("alerts", help="List recent alerts")
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("ack", help="Acknowledge an alert")
    p.add_argument("alert_id")
    p.add_argument("--user", required=True, help="Acknowledging user id")

    p = sub.add_parser("uptime", help="Uptime percentage for a tenant")
    p.add_argument("tenant_id")
    p.add_argument("--period", choices=("24h", "7d", "30d"), default="24h")

    p = sub.add_parser("report", help="Full uptime report for a tenant")
    p.add_argument("tenant_id")
    p.add_argument("--period", choices=("24h", "7d", "30d"), default="30d")

    p = sub.add_parser("metrics", help="System-wide uptime metrics")
    p.add_argument("--period", choices=("24h", "7d", "30d"), default="24h")

    p = sub.add_parser("prune", help="Delete uptime records older than the retention window")
    p.add_argument("--days", type=int, default=None, help="Days to keep (default: retention_days)")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level, config.log_format)

    try:
        return asyncio.run(_dispatch(args, config))
    except KeyboardInterrupt:
        return 130
    except MonitoringError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
