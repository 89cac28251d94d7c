from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Mapping
from typing import Any

import structlog

from uptime_alarms.alarms import AlarmEngine
from uptime_alarms.alerting import NotificationDispatcher, build_channels
from uptime_alarms.checker import CheckOrchestrator
from uptime_alarms.config import Settings, get_settings
from uptime_alarms.models import JsonParsingConfig
from uptime_alarms.probe_context import ProbeContextProvider
from uptime_alarms.signing import HmacSignatureVerifier, SignatureVerifier
from uptime_alarms.sink import JsonLinesResultSink, ResultSink
from uptime_alarms.state import (
    JsonAlarmRepository,
    JsonMonitorStateStore,
    JsonScheduleRepository,
    ScheduleNotFoundError,
    ScheduleRepository,
    StateStoreError,
)

SIGNATURE_HEADER = "x-signature"
SCHEDULE_HEADER = "x-schedule-id"


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ]
    )


def _failure(message: str, error: str) -> dict[str, Any]:
    return {"success": False, "message": message, "error": error}


class CheckRequestHandler:
    def __init__(
        self,
        verifier: SignatureVerifier,
        schedules: ScheduleRepository,
        orchestrator: CheckOrchestrator,
        alarm_engine: AlarmEngine,
        sink: ResultSink,
        log: Any | None = None,
    ) -> None:
        self.verifier = verifier
        self.schedules = schedules
        self.orchestrator = orchestrator
        self.alarm_engine = alarm_engine
        self.sink = sink
        self.log = log or structlog.get_logger().bind(service="uptime-alarms")

    async def handle(self, headers: Mapping[str, str], body: bytes) -> dict[str, Any]:
        lowered = {key.lower(): value for key, value in headers.items()}
        if not self.verifier.verify(body, lowered.get(SIGNATURE_HEADER)):
            self.log.warning("check_request_rejected", reason="invalid_signature")
            return _failure("Invalid signature", "Invalid signature")

        schedule_id = lowered.get(SCHEDULE_HEADER, "").strip()
        if not schedule_id:
            return _failure("Schedule ID is required", f"Missing or invalid {SCHEDULE_HEADER} header")

        return await self.run_schedule(schedule_id)

    async def run_schedule(self, schedule_id: str) -> dict[str, Any]:
        try:
            schedule = await self.schedules.get_schedule(schedule_id)
        except (ScheduleNotFoundError, StateStoreError) as exc:
            self.log.error("schedule_lookup_failed", schedule_id=schedule_id, error=str(exc))
            return _failure("Schedule not found", str(exc))
        return await self.run_check(schedule.state_key, schedule.url, json_config=schedule.json_parsing_config)

    async def run_check(
        self,
        monitor_id: str,
        url: str,
        attempt: int = 1,
        json_config: JsonParsingConfig | None = None,
    ) -> dict[str, Any]:
        try:
            result = await self.orchestrator.check_uptime(monitor_id, url, attempt, json_config)
        except Exception as exc:
            self.log.exception("uptime_check_failed", monitor_id=monitor_id, error=str(exc))
            return _failure("Failed to check uptime", str(exc))

        try:
            await self.sink.write(result)
        except Exception as exc:
            self.log.exception("result_store_failed", monitor_id=monitor_id, error=str(exc))

        self.log.info(
            "uptime_check_complete",
            monitor_id=monitor_id,
            url=result.url,
            status=result.status.label,
            http_code=result.http_code,
            ttfb_ms=result.ttfb_ms,
            retries=result.retries,
            streak=result.failure_streak,
        )

        await self.alarm_engine.check_and_trigger_alarms(
            monitor_id,
            result,
            result.failure_streak,
            result.previous_status,
        )
        return {"success": True, "message": "Uptime check complete", "data": result.model_dump(mode="json")}


def build_handler(settings: Settings) -> CheckRequestHandler:
    state_store = JsonMonitorStateStore(settings.state_path)
    orchestrator = CheckOrchestrator(
        state_store=state_store,
        context_provider=ProbeContextProvider(
            region=settings.probe_region,
            ip_lookup_url=settings.ip_lookup_url,
            timeout_seconds=settings.ip_lookup_timeout_seconds,
        ),
        probe_config=settings.probe_config(),
        tls_timeout_seconds=settings.tls_timeout_seconds,
        env=settings.app_env,
    )
    alarm_engine = AlarmEngine(
        repository=JsonAlarmRepository(settings.alarms_path, settings.trigger_history_path),
        dispatcher=NotificationDispatcher(),
        channel_factory=lambda alarm: build_channels(alarm, settings),
        dashboard_base_url=settings.dashboard_base_url,
        state_store=state_store,
    )
    return CheckRequestHandler(
        verifier=HmacSignatureVerifier(settings.signing_key, settings.next_signing_key),
        schedules=JsonScheduleRepository(settings.schedules_path),
        orchestrator=orchestrator,
        alarm_engine=alarm_engine,
        sink=JsonLinesResultSink(settings.results_path),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uptime-check", description="Run one uptime check and evaluate its alarms.")
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="check a URL directly")
    check.add_argument("monitor_id")
    check.add_argument("url")
    check.add_argument("--attempt", type=int, default=1)

    schedule = commands.add_parser("schedule", help="check a configured schedule by id")
    schedule.add_argument("schedule_id")
    return parser


async def _amain(args: argparse.Namespace) -> int:
    configure_logging()
    handler = build_handler(get_settings())
    if args.command == "check":
        response = await handler.run_check(args.monitor_id, args.url, attempt=args.attempt)
    else:
        response = await handler.run_schedule(args.schedule_id)
    print(json.dumps(response, indent=2, sort_keys=True))
    return 0 if response["success"] else 1


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(_amain(build_parser().parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
