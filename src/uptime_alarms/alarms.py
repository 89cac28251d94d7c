from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlsplit
from uuid import uuid4

import structlog

from uptime_alarms.alerting.base import NotificationChannel
from uptime_alarms.alerting.dispatcher import NotificationDispatcher
from uptime_alarms.models import (
    AlarmConfig,
    AlarmTriggerHistoryRecord,
    CheckResult,
    MonitorStatus,
    NotificationPayload,
    TriggerConditions,
    TriggerEvent,
)
from uptime_alarms.state import AlarmRepository, MonitorStateStore, utc_now

ChannelFactory = Callable[[AlarmConfig], Sequence[NotificationChannel]]


def is_cooldown_active(last_trigger: datetime | None, cooldown_minutes: int, now: datetime) -> bool:
    if last_trigger is None:
        return False
    return now < last_trigger + timedelta(minutes=cooldown_minutes)


def crosses_down_threshold(
    consecutive_failures: int,
    previous_status: MonitorStatus | None,
    conditions: TriggerConditions,
) -> bool:
    """True only on the transition into DOWN from UP or from no prior state.

    The streak is 1 on that transition, so an alarm whose threshold is above
    1 never qualifies. A check whose previous status was already DOWN never
    qualifies either, however long the outage runs.
    """
    if consecutive_failures < conditions.consecutive_failures:
        return False
    return previous_status is None or previous_status == MonitorStatus.UP


def format_downtime(started: datetime, ended: datetime) -> str:
    minutes = max(0, int((ended - started).total_seconds() // 60))
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60} hours {minutes % 60} minutes"


def humanize_since(moment: datetime, now: datetime) -> str:
    seconds = max(0.0, (now - moment).total_seconds())
    minutes = seconds / 60
    hours = minutes / 60
    days = hours / 24
    if seconds < 45:
        return "a few seconds ago"
    if seconds < 90:
        return "a minute ago"
    if minutes < 45:
        return f"{round(minutes)} minutes ago"
    if minutes < 90:
        return "an hour ago"
    if hours < 22:
        return f"{round(hours)} hours ago"
    if hours < 36:
        return "a day ago"
    return f"{round(days)} days ago"


def _hostname(url: str) -> str:
    return urlsplit(url).hostname or url


def dashboard_link(base_url: str, monitor_id: str) -> str:
    return f"{base_url.rstrip('/')}/{monitor_id}"


def build_down_payload(
    result: CheckResult,
    consecutive_failures: int,
    down_since: datetime,
    now: datetime,
    dashboard_base_url: str,
) -> NotificationPayload:
    return NotificationPayload(
        title=f"🔴 Site Down: {_hostname(result.url)}",
        message="Your website is not responding.",
        priority="urgent",
        metadata={
            "url": result.url,
            "status": result.http_code,
            "error": result.error or "Connection failed",
            "downSince": humanize_since(down_since, now),
            "consecutiveFailures": consecutive_failures,
            "responseTime": f"{result.total_ms}ms",
            "probeRegion": result.probe_region,
            "dashboardLink": dashboard_link(dashboard_base_url, result.monitor_id),
        },
    )


def build_recovery_payload(
    result: CheckResult,
    down_since: datetime,
    now: datetime,
    dashboard_base_url: str,
) -> NotificationPayload:
    return NotificationPayload(
        title=f"🟢 Site Recovered: {_hostname(result.url)}",
        message="Your website is back online.",
        priority="normal",
        metadata={
            "url": result.url,
            "downtimeDuration": format_downtime(down_since, now),
            "recoveredAt": now.isoformat(),
            "responseTime": f"{result.total_ms}ms",
            "httpStatus": result.http_code,
            "dashboardLink": dashboard_link(dashboard_base_url, result.monitor_id),
        },
    )


class AlarmEngine:
    """Evaluates a monitor's uptime alarms against a fresh check result.

    Down notifications fire on the transition into DOWN and are gated by the
    alarm's cooldown; recovery notifications fire on every DOWN -> UP
    transition. Every notification attempt is written to trigger history,
    whatever the per-channel outcome.

    Repeated delivery of the same check result is absorbed on a best-effort
    basis only: the cooldown blocks a second down notification, and the
    stored status has already moved on before a second recovery could be
    computed. Nothing here is exactly-once.
    """

    def __init__(
        self,
        repository: AlarmRepository,
        dispatcher: NotificationDispatcher,
        channel_factory: ChannelFactory,
        dashboard_base_url: str,
        *,
        state_store: MonitorStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        log: Any | None = None,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.channel_factory = channel_factory
        self.dashboard_base_url = dashboard_base_url
        self.state_store = state_store
        self.clock = clock
        self.log = log or structlog.get_logger().bind(component="alarm_engine")

    async def check_and_trigger_alarms(
        self,
        monitor_id: str,
        result: CheckResult,
        consecutive_failures: int,
        previous_status: MonitorStatus | None,
    ) -> None:
        try:
            alarms = await self.repository.list_enabled_alarms(monitor_id, trigger_type="uptime")
        except Exception as exc:
            self.log.exception("alarm_lookup_failed", monitor_id=monitor_id, error=str(exc))
            return

        for alarm in alarms:
            try:
                await self._evaluate(alarm, monitor_id, result, consecutive_failures, previous_status)
            except Exception as exc:
                self.log.exception("alarm_trigger_error", monitor_id=monitor_id, alarm_id=alarm.id, error=str(exc))

    async def send_test_notification(self, alarm: AlarmConfig) -> dict[str, bool]:
        payload = NotificationPayload(
            title="🔔 Test Notification",
            message=f"This is a test notification from alarm: {alarm.name}",
            priority="normal",
            metadata={
                "alarmId": alarm.id,
                "alarmName": alarm.name,
                "testTime": self.clock().isoformat(),
            },
        )
        results = await self.dispatcher.dispatch(payload, self.channel_factory(alarm), alarm_id=alarm.id)
        self.log.info("test_notification_sent", alarm_id=alarm.id, results=results)
        return results

    async def _evaluate(
        self,
        alarm: AlarmConfig,
        monitor_id: str,
        result: CheckResult,
        consecutive_failures: int,
        previous_status: MonitorStatus | None,
    ) -> None:
        conditions = alarm.conditions
        now = self.clock()

        if result.status == MonitorStatus.DOWN:
            if not crosses_down_threshold(consecutive_failures, previous_status, conditions):
                return
            last_down = await self.repository.last_trigger_at(alarm.id, "down")
            if is_cooldown_active(last_down, conditions.cooldown_minutes, now):
                self.log.info("alarm_cooldown_active", alarm_id=alarm.id, monitor_id=monitor_id)
                return
            down_since = await self._outage_started(monitor_id, result)
            payload = build_down_payload(result, consecutive_failures, down_since, now, self.dashboard_base_url)
            sent = await self._dispatch(alarm, monitor_id, payload)
            await self._record(
                alarm,
                monitor_id,
                "down",
                sent,
                {
                    "httpCode": result.http_code,
                    "responseTime": result.total_ms,
                    "consecutiveFailures": consecutive_failures,
                    "error": result.error,
                },
                now,
            )
            return

        if result.status == MonitorStatus.UP and previous_status == MonitorStatus.DOWN:
            last_down = await self.repository.last_trigger_at(alarm.id, "down")
            down_since = last_down or now
            payload = build_recovery_payload(result, down_since, now, self.dashboard_base_url)
            sent = await self._dispatch(alarm, monitor_id, payload)
            await self._record(
                alarm,
                monitor_id,
                "up",
                sent,
                {
                    "httpCode": result.http_code,
                    "responseTime": result.total_ms,
                    "downSince": down_since.isoformat(),
                    "downtimeDuration": format_downtime(down_since, now),
                },
                now,
            )

    async def _outage_started(self, monitor_id: str, result: CheckResult) -> datetime:
        if self.state_store is not None:
            state = await self.state_store.get(monitor_id)
            if state is not None and state.status == MonitorStatus.DOWN:
                return state.last_change_at
        return result.checked_at

    async def _dispatch(self, alarm: AlarmConfig, monitor_id: str, payload: NotificationPayload) -> dict[str, bool]:
        return await self.dispatcher.dispatch(
            payload,
            self.channel_factory(alarm),
            alarm_id=alarm.id,
            monitor_id=monitor_id,
        )

    async def _record(
        self,
        alarm: AlarmConfig,
        monitor_id: str,
        event: TriggerEvent,
        sent: dict[str, bool],
        metadata: dict[str, Any],
        now: datetime,
    ) -> None:
        await self.repository.record_trigger(
            AlarmTriggerHistoryRecord(
                id=uuid4().hex,
                alarm_id=alarm.id,
                monitor_id=monitor_id,
                trigger_event=event,
                triggered_at=now,
                notifications_sent=sent,
                metadata=metadata,
            )
        )
        self.log.info("alarm_triggered", alarm_id=alarm.id, monitor_id=monitor_id, event=event, results=sent)
