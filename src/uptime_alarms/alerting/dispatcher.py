from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from uptime_alarms.alerting.base import NotificationChannel
from uptime_alarms.alerting.discord import DiscordChannel
from uptime_alarms.alerting.email import EmailChannel
from uptime_alarms.alerting.slack import SlackChannel
from uptime_alarms.alerting.webhook import WebhookChannel
from uptime_alarms.config import Settings
from uptime_alarms.models import AlarmConfig, NotificationPayload


def build_channels(
    alarm: AlarmConfig,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[NotificationChannel]:
    """Map an alarm's channel names to senders.

    Channels without a destination are left out; the alarm CRUD layer is
    responsible for rejecting such configs, so they are not failures here.
    """
    channels: list[NotificationChannel] = []
    seen: set[str] = set()
    for name in alarm.notification_channels:
        if name in seen:
            continue
        seen.add(name)
        if name == "slack" and alarm.slack_webhook_url:
            channels.append(SlackChannel(alarm.slack_webhook_url, transport=transport))
        elif name == "discord" and alarm.discord_webhook_url:
            channels.append(DiscordChannel(alarm.discord_webhook_url, transport=transport))
        elif name == "webhook" and alarm.webhook_url:
            channels.append(WebhookChannel(alarm.webhook_url, alarm.webhook_headers, transport=transport))
        elif name == "email" and alarm.email_addresses and settings.email_enabled:
            channels.append(
                EmailChannel(
                    sender=settings.email_sender,
                    password=settings.smtp_password or "",
                    recipients=alarm.email_addresses,
                    host=settings.smtp_host,
                    port=settings.smtp_port,
                    username=settings.smtp_username,
                )
            )
    return channels


class NotificationDispatcher:
    def __init__(self, log: Any | None = None) -> None:
        self.log = log or structlog.get_logger().bind(component="notification_dispatcher")

    async def dispatch(
        self,
        payload: NotificationPayload,
        channels: Sequence[NotificationChannel],
        **log_context: Any,
    ) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for channel in channels:
            try:
                await channel.send(payload)
            except Exception as exc:
                self.log.exception("notification_channel_failed", channel=channel.name, error=str(exc), **log_context)
                results[channel.name] = False
                continue
            results[channel.name] = True
        return results
