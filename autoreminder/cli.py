"""Command line entry point.

Usage:
    autoreminder serve [--host 0.0.0.0] [--port 8000]
    autoreminder run-once
    autoreminder pause | resume | status

Exit codes: 0 clean run, 1 the cycle aborted (configuration, board auth or
board unavailable), 2 invalid process settings (nothing was polled).
"""

import argparse
import asyncio
import sys

import uvicorn

from autoreminder.config import settings, settings_errors
from autoreminder.database import close_database
from autoreminder.logging_config import setup_logging
from autoreminder.services.monitoring import MonitoringService, build_monitoring_service

EXIT_OK = 0
EXIT_CYCLE_ABORTED = 1
EXIT_INVALID_SETTINGS = 2


def _check_settings() -> bool:
    problems = settings_errors()
    for problem in problems:
        print(f"FATAL: {problem}", file=sys.stderr)
    return not problems


async def _with_service(action) -> int:
    service: MonitoringService = build_monitoring_service()
    try:
        return await action(service)
    finally:
        await service.aclose()
        await close_database()


async def _run_once(service: MonitoringService) -> int:
    report = await service.run_cycle()
    print(report.model_dump_json(indent=2))
    return EXIT_CYCLE_ABORTED if report.aborted else EXIT_OK


async def _pause(service: MonitoringService) -> int:
    await service.set_paused(True)
    print("Monitoring paused")
    return EXIT_OK


async def _resume(service: MonitoringService) -> int:
    await service.set_paused(False)
    print("Monitoring resumed")
    return EXIT_OK


async def _status(service: MonitoringService) -> int:
    config = await service.config_store.get()
    active = await service.card_store.count_active()
    attention = await service.card_store.count_needing_attention()
    print(f"Monitoring paused:        {config.monitoring_paused}")
    print(f"Weekend days:             {config.weekend_days}")
    print(f"Max reminder days:        {config.max_reminder_days}")
    print(f"Timezone:                 {config.timezone}")
    print(f"Active cards:             {active}")
    print(f"Cards needing attention:  {attention}")
    return EXIT_OK


COMMANDS = {
    "run-once": _run_once,
    "pause": _pause,
    "resume": _resume,
    "status": _status,
}


def _serve(host: str, port: int) -> int:
    uvicorn.run("autoreminder.main:app", host=host, port=port)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoreminder",
        description="Escalating reminders for stalled board cards",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API and the poll scheduler")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")

    subparsers.add_parser("run-once", help="Run a single poll cycle and exit")
    subparsers.add_parser("pause", help="Pause reminders for all cards")
    subparsers.add_parser("resume", help="Resume reminders")
    subparsers.add_parser("status", help="Show configuration and card counts")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        log_format=settings.log_format,
        log_level=settings.log_level,
        service_name=settings.service_name,
    )

    if args.command in ("serve", "run-once") and not _check_settings():
        return EXIT_INVALID_SETTINGS

    if args.command == "serve":
        return _serve(args.host, args.port)

    return asyncio.run(_with_service(COMMANDS[args.command]))


if __name__ == "__main__":
    sys.exit(main())
